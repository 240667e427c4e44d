from __future__ import annotations

import asyncio
from typing import Awaitable, Optional, TypeVar

from mistralstream.errors import StreamCancelled

T = TypeVar("T")


def raise_if_cancelled(cancel: Optional[asyncio.Event]) -> None:
    if cancel is not None and cancel.is_set():
        raise StreamCancelled()


async def race_cancel(awaitable: Awaitable[T], cancel: Optional[asyncio.Event]) -> T:
    """Await ``awaitable`` unless ``cancel`` fires first.

    When the signal wins, the pending work is cancelled and awaited before
    ``StreamCancelled`` is raised. When both finish together the result wins;
    callers re-check the signal afterwards.
    """
    if cancel is None:
        return await awaitable

    task = asyncio.ensure_future(awaitable)
    if cancel.is_set():
        task.cancel()
        await asyncio.wait({task})
        raise StreamCancelled()

    waiter = asyncio.ensure_future(cancel.wait())
    try:
        await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
    finally:
        waiter.cancel()
        if not task.done():
            task.cancel()
            await asyncio.wait({task})

    if task.cancelled():
        raise StreamCancelled()
    return task.result()
