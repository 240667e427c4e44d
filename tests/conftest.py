from __future__ import annotations

import asyncio

import pytest


@pytest.fixture
def cancel() -> asyncio.Event:
    return asyncio.Event()


@pytest.fixture(autouse=True)
def _no_ambient_api_key(monkeypatch):
    monkeypatch.delenv("MISTRAL_API_KEY", raising=False)
