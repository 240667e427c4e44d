from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Annotated, Any, Optional

import typer
from pydantic import ValidationError

from mistralstream.client import stream_chat
from mistralstream.config import ApiConfig, AppConfig, ChatConfig, load_config
from mistralstream.errors import (
    ChunkDecodeError,
    ProtocolError,
    StreamCancelled,
    TransportError,
)
from mistralstream.transcript import TranscriptLog

EXIT_TRANSPORT_ERROR = 1
EXIT_MALFORMED_STREAM = 2
EXIT_CANCELLED = 130


def _default_config_path() -> Optional[Path]:
    candidate = Path.cwd() / "mistralstream.toml"
    return candidate if candidate.exists() else None


def _version_callback(value: bool) -> None:
    if not value:
        return
    from mistralstream import __version__

    typer.echo(__version__)
    raise typer.Exit()


def _chat_config(cfg: AppConfig, overrides: dict[str, Any]) -> ChatConfig:
    merged = cfg.chat.model_dump() if cfg.chat is not None else {}
    merged.update({k: v for k, v in overrides.items() if v is not None})
    if merged.get("model") is None:
        raise typer.BadParameter(
            "Provide --model or set chat.model in the config file."
        )
    return ChatConfig.model_validate(merged)


async def _run(
    *,
    messages: list[dict[str, str]],
    chat: ChatConfig,
    cfg: AppConfig,
    cancel_after: Optional[float],
    transcript: Optional[TranscriptLog],
) -> int:
    cancel = asyncio.Event()
    timer = None
    if cancel_after is not None:
        timer = asyncio.get_running_loop().call_later(cancel_after, cancel.set)

    parts: list[str] = []
    outcome = "completed"
    error: Optional[str] = None
    exit_code = 0
    interrupted = False
    try:
        async for token in stream_chat(
            messages, chat, cancel=cancel, settings=cfg.api
        ):
            parts.append(token)
            typer.echo(token, nl=False)
    except StreamCancelled as exc:
        outcome, error, exit_code = "cancelled", str(exc), EXIT_CANCELLED
    except TransportError as exc:
        outcome, error, exit_code = "transport_error", str(exc), EXIT_TRANSPORT_ERROR
        if exc.body:
            error = f"{error}: {exc.body}"
    except ProtocolError as exc:
        outcome, error, exit_code = "protocol_error", str(exc), EXIT_MALFORMED_STREAM
    except ChunkDecodeError as exc:
        outcome, error, exit_code = "decode_error", str(exc), EXIT_MALFORMED_STREAM
    except asyncio.CancelledError:
        # Ctrl-C: asyncio.run cancels this task, record it before unwinding.
        outcome, error, exit_code = "cancelled", "Interrupted", EXIT_CANCELLED
        interrupted = True
    finally:
        if timer is not None:
            timer.cancel()

    typer.echo("")
    if error is not None:
        typer.echo(f"Error: {error}", err=True)

    if transcript is not None:
        await transcript.record_completion(
            model=chat.model,
            url=cfg.api.url,
            messages=messages,
            response="".join(parts),
            tokens=len(parts),
            outcome=outcome,
            error=error,
        )
    if interrupted:
        raise asyncio.CancelledError()
    return exit_code


def cli(
    prompt: Annotated[str, typer.Argument(help="User message to send.")],
    system: Annotated[
        Optional[str], typer.Option("--system", help="Optional system message.")
    ] = None,
    model: Annotated[
        Optional[str],
        typer.Option("--model", "-m", help="Model identifier (overrides config)."),
    ] = None,
    temperature: Annotated[
        Optional[float], typer.Option("--temperature", help="Sampling temperature.")
    ] = None,
    max_tokens: Annotated[
        Optional[int],
        typer.Option("--max-tokens", help="Maximum number of tokens to generate."),
    ] = None,
    top_p: Annotated[
        Optional[float], typer.Option("--top-p", help="Nucleus sampling probability.")
    ] = None,
    random_seed: Annotated[
        Optional[int], typer.Option("--random-seed", help="Random seed.")
    ] = None,
    safe_mode: Annotated[
        Optional[bool],
        typer.Option("--safe-mode/--no-safe-mode", help="Request safety prompt."),
    ] = None,
    config: Annotated[
        Optional[Path],
        typer.Option(
            "--config",
            "-c",
            exists=True,
            dir_okay=False,
            readable=True,
            help="Path to TOML config file. Defaults to ./mistralstream.toml if present.",
        ),
    ] = None,
    api_url: Annotated[
        Optional[str],
        typer.Option(
            "--api-url",
            help="Chat completions endpoint (overrides config).",
        ),
    ] = None,
    timeout_s: Annotated[
        Optional[float],
        typer.Option("--timeout", help="Request timeout in seconds (overrides config)."),
    ] = None,
    cancel_after: Annotated[
        Optional[float],
        typer.Option(
            "--cancel-after", help="Cancel the stream after this many seconds."
        ),
    ] = None,
    log_dir: Annotated[
        Optional[Path],
        typer.Option("--log-dir", help="Directory for the JSONL transcript."),
    ] = None,
    no_transcript: Annotated[
        bool, typer.Option("--no-transcript", help="Do not write a transcript.")
    ] = False,
    version: Annotated[
        bool,
        typer.Option(
            "--version",
            callback=_version_callback,
            is_eager=True,
            help="Print version and exit.",
        ),
    ] = False,
) -> None:
    """
    mistralstream: stream a chat completion from the Mistral AI API.

    Tokens are printed as they arrive. The API key is read from
    MISTRAL_API_KEY unless the config names another variable.

    Examples:

        mistralstream -m mistral-small "Write a haiku about rivers"

        # Stop after two seconds
        mistralstream -m mistral-tiny --cancel-after 2 "Count to one hundred"

        # Use config file
        mistralstream --config ./mistralstream.toml "Hello"
    """
    config_path = config or _default_config_path()
    cfg: AppConfig = load_config(config_path) if config_path else AppConfig()

    if api_url is not None:
        try:
            api = ApiConfig.model_validate({**cfg.api.model_dump(), "url": api_url})
        except ValidationError as exc:
            raise typer.BadParameter(
                exc.errors()[0]["msg"], param_hint="--api-url"
            ) from exc
        cfg = cfg.model_copy(update={"api": api})
    if timeout_s is not None:
        cfg = cfg.model_copy(
            update={"api": cfg.api.model_copy(update={"timeout_s": timeout_s})}
        )
    if log_dir is not None:
        cfg = cfg.model_copy(
            update={"logging": cfg.logging.model_copy(update={"log_dir": str(log_dir)})}
        )

    chat = _chat_config(
        cfg,
        {
            "model": model,
            "temperature": temperature,
            "max_tokens": max_tokens,
            "top_p": top_p,
            "random_seed": random_seed,
            "safe_mode": safe_mode,
        },
    )

    logging.basicConfig(
        level=getattr(logging, cfg.logging.level.upper(), logging.WARNING),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    messages: list[dict[str, str]] = []
    if system:
        messages.append({"role": "system", "content": system})
    messages.append({"role": "user", "content": prompt})

    transcript = None
    if cfg.logging.transcript and not no_transcript:
        transcript = TranscriptLog.from_config(cfg.logging)

    try:
        exit_code = asyncio.run(
            _run(
                messages=messages,
                chat=chat,
                cfg=cfg,
                cancel_after=cancel_after,
                transcript=transcript,
            )
        )
    except KeyboardInterrupt:
        typer.echo("", err=True)
        raise typer.Exit(EXIT_CANCELLED)
    if exit_code:
        raise typer.Exit(exit_code)


def main() -> None:
    typer.run(cli)


if __name__ == "__main__":  # pragma: no cover
    main()
