from __future__ import annotations

from enum import Enum
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, Field

Role = Literal["user", "system", "assistant"]


class Message(BaseModel):
    role: Role
    content: str


class FinishReason(str, Enum):
    STOP = "stop"
    LENGTH = "length"
    MODEL_LENGTH = "model_length"
    ERROR = "error"
    TOOL_CALLS = "tool_calls"


# Known reasons come back as FinishReason members, anything newer stays a str.
OpenFinishReason = Annotated[
    Union[FinishReason, str, None], Field(union_mode="left_to_right")
]


class Delta(BaseModel):
    # Only content is read; role is whatever the service sends.
    role: Optional[str] = None
    content: Optional[str] = None


class ChunkChoice(BaseModel):
    index: Optional[int] = None
    delta: Delta = Field(default_factory=Delta)
    finish_reason: OpenFinishReason = None

    @property
    def is_final(self) -> bool:
        return self.finish_reason is not None


class ChatCompletionChunk(BaseModel):
    """One ``data:`` record of a streaming chat completion."""

    id: Optional[Any] = None
    object: Optional[Any] = None
    created: Optional[Any] = None
    model: Optional[Any] = None
    choices: list[ChunkChoice] = Field(min_length=1)

    @property
    def token(self) -> str:
        # Only the first choice is streamed.
        return self.choices[0].delta.content or ""
