from __future__ import annotations

from pathlib import Path

import pytest
from pydantic import ValidationError

from mistralstream.config import (
    MISTRAL_CHAT_COMPLETIONS_API_URL,
    ApiConfig,
    AppConfig,
    ChatConfig,
    load_config,
)


def test_defaults():
    cfg = load_config(None)
    assert cfg == AppConfig()
    assert cfg.api.url == MISTRAL_CHAT_COMPLETIONS_API_URL
    assert cfg.api.api_key_env == "MISTRAL_API_KEY"
    assert cfg.chat is None


def test_load_toml(tmp_path: Path):
    path = tmp_path / "mistralstream.toml"
    path.write_text(
        """
[api]
url = "http://localhost:8080/v1/chat/completions/"
timeout_s = 5

[api.headers]
X-Team = "search"

[chat]
model = "mistral-small"
temperature = 0.3
safe_mode = true

[logging]
level = "debug"
transcript = false
""",
        encoding="utf-8",
    )
    cfg = load_config(path)
    assert cfg.api.url == "http://localhost:8080/v1/chat/completions"
    assert cfg.api.timeout_s == 5.0
    assert cfg.api.headers == {"X-Team": "search"}
    assert cfg.chat == ChatConfig(model="mistral-small", temperature=0.3, safe_mode=True)
    assert cfg.logging.level == "debug"
    assert cfg.logging.transcript is False


def test_rejects_relative_url():
    with pytest.raises(ValidationError):
        ApiConfig(url="api.mistral.ai/v1/chat/completions")


def test_rejects_unknown_suffix(tmp_path: Path):
    path = tmp_path / "config.json"
    path.write_text("{}", encoding="utf-8")
    with pytest.raises(ValueError, match="Unsupported config type"):
        load_config(path)


def test_chat_config_requires_model():
    with pytest.raises(ValidationError):
        ChatConfig()
