"""Common utilities for smoke scripts run against the live API."""

import os

from mistralstream.config import MISTRAL_CHAT_COMPLETIONS_API_URL, ApiConfig, ChatConfig


def get_settings() -> ApiConfig:
    """API settings for the target endpoint."""
    return ApiConfig(url=os.getenv("MISTRAL_API_URL", MISTRAL_CHAT_COMPLETIONS_API_URL))


def get_chat_config() -> ChatConfig:
    """Get the model name from environment or use default."""
    return ChatConfig(model=os.getenv("MISTRAL_MODEL", "mistral-tiny"), temperature=0.2)


def print_section(title: str) -> None:
    """Print a section header."""
    print(f"\n{'=' * 60}")
    print(f" {title}")
    print(f"{'=' * 60}")
    print(f"Model: {get_chat_config().model}")
    print(f"Endpoint: {get_settings().url}")
