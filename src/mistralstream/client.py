"""Streaming chat completions against the Mistral AI API (or a compatible one)."""

from __future__ import annotations

import asyncio
import logging
import os
from contextlib import aclosing
from typing import Any, AsyncIterator, Optional, Sequence, Union

import httpx

from mistralstream.cancellation import race_cancel
from mistralstream.config import ApiConfig, ChatConfig
from mistralstream.decoder import decode_stream
from mistralstream.errors import StreamInterrupted, TransportError
from mistralstream.types import Message

logger = logging.getLogger(__name__)

MessageLike = Union[Message, dict[str, str]]


def build_request_body(
    messages: Sequence[MessageLike], config: ChatConfig
) -> dict[str, Any]:
    body = config.model_dump(by_alias=True, exclude_none=True)
    body["messages"] = [
        Message.model_validate(message).model_dump() for message in messages
    ]
    body["stream"] = True
    return body


def resolve_api_key(
    explicit: Optional[str], env_var: str = "MISTRAL_API_KEY"
) -> Optional[str]:
    if explicit:
        return explicit
    return os.getenv(env_var) or None


def build_headers(
    api_key: Optional[str], extra: Optional[dict[str, str]] = None
) -> dict[str, str]:
    headers = dict(extra or {})
    headers["Content-Type"] = "application/json"
    if api_key:
        headers["Authorization"] = f"Bearer {api_key}"
    else:
        logger.warning("No API key configured, sending request without Authorization")
    return headers


async def _read_error_body(response: httpx.Response) -> Optional[str]:
    try:
        await response.aread()
    except httpx.HTTPError as exc:
        logger.debug("Could not read error body: %s", exc)
        return None
    return response.text


async def open_stream(
    client: httpx.AsyncClient,
    url: str,
    headers: dict[str, str],
    body: dict[str, Any],
    cancel: Optional[asyncio.Event] = None,
) -> httpx.Response:
    """POST ``body`` and return the response with its body still unread.

    Non-success statuses raise ``TransportError`` after the body has been read
    for diagnostics. The caller owns the returned response and must close it.
    """
    request = client.build_request("POST", url, json=body, headers=headers)
    try:
        response = await race_cancel(client.send(request, stream=True), cancel)
    except httpx.RequestError as exc:
        logger.error("Request to %s failed: %s", url, type(exc).__name__)
        raise TransportError(None) from exc

    if response.is_success:
        return response

    try:
        error_body = await _read_error_body(response)
    finally:
        await response.aclose()
    logger.error("Error fetching from Mistral API %s", response.status_code)
    if error_body:
        logger.error("%s", error_body)
    raise TransportError(response.status_code, error_body)


async def stream_chat(
    messages: Sequence[MessageLike],
    config: ChatConfig,
    *,
    api_key: Optional[str] = None,
    api_url: Optional[str] = None,
    cancel: Optional[asyncio.Event] = None,
    client: Optional[httpx.AsyncClient] = None,
    settings: Optional[ApiConfig] = None,
) -> AsyncIterator[str]:
    """Run a streaming chat completion and yield only the text tokens.

    ``api_key`` defaults to the environment variable named by
    ``settings.api_key_env`` (``MISTRAL_API_KEY``); ``api_url`` defaults to
    ``settings.url``. Setting ``cancel`` aborts the request and the stream
    ends with ``StreamCancelled``. A ``client`` passed in is left open.
    """
    settings = settings or ApiConfig()
    url = api_url or settings.url
    body = build_request_body(messages, config)
    headers = build_headers(
        resolve_api_key(api_key, settings.api_key_env), settings.headers
    )

    owns_client = client is None
    if client is None:
        client = httpx.AsyncClient(
            timeout=httpx.Timeout(settings.timeout_s), verify=settings.verify_ssl
        )
    try:
        response = await open_stream(client, url, headers, body, cancel)
        try:
            async with aclosing(
                decode_stream(response.aiter_bytes(), cancel)
            ) as tokens:
                async for token in tokens:
                    yield token
        except httpx.HTTPError as exc:
            logger.error(
                "Stream from %s interrupted: %s", url, type(exc).__name__
            )
            raise StreamInterrupted(response.status_code) from exc
        finally:
            await response.aclose()
    finally:
        if owns_client:
            await client.aclose()
