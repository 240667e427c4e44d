from __future__ import annotations

import tomllib
from pathlib import Path
from typing import Any, Optional
from urllib.parse import urlparse

from pydantic import BaseModel, Field, field_validator

MISTRAL_CHAT_COMPLETIONS_API_URL = "https://api.mistral.ai/v1/chat/completions"


class ApiConfig(BaseModel):
    url: str = MISTRAL_CHAT_COMPLETIONS_API_URL
    api_key_env: str = "MISTRAL_API_KEY"
    timeout_s: float = 60.0
    verify_ssl: bool = True
    headers: dict[str, str] = Field(default_factory=dict)

    @field_validator("url")
    @classmethod
    def _validate_url(cls, value: str) -> str:
        parsed = urlparse(value)
        if parsed.scheme not in {"http", "https"} or not parsed.netloc:
            raise ValueError(
                "url must be a full http(s) URL, e.g. https://api.mistral.ai/v1/chat/completions"
            )
        return value.rstrip("/")


class ChatConfig(BaseModel):
    """Sampling parameters sent with every completion request."""

    model: str
    temperature: Optional[float] = None
    max_tokens: Optional[int] = None
    top_p: Optional[float] = None
    random_seed: Optional[int] = None
    safe_mode: Optional[bool] = Field(default=None, serialization_alias="safe_prompt")


class LoggingConfig(BaseModel):
    level: str = "warning"
    transcript: bool = True
    log_dir: str = str(Path("~/.mistralstream/logs").expanduser())
    filename: str = "transcripts.jsonl"
    max_file_bytes: int = 50 * 1024 * 1024
    max_prompt_bytes: int = 256 * 1024


class AppConfig(BaseModel):
    api: ApiConfig = Field(default_factory=ApiConfig)
    chat: Optional[ChatConfig] = None
    logging: LoggingConfig = Field(default_factory=LoggingConfig)


def _load_from_path(path: Path) -> dict[str, Any]:
    suffix = path.suffix.lower()
    raw = path.read_bytes()

    if suffix == ".toml":
        return tomllib.loads(raw.decode("utf-8"))

    raise ValueError(f"Unsupported config type: {suffix} (supported: .toml)")


def load_config(path: Optional[Path]) -> AppConfig:
    if path is None:
        return AppConfig()
    data = _load_from_path(path)
    return AppConfig.model_validate(data)
