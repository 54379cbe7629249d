"""Run blocking SDK calls off the event loop with a bounded timeout."""

from __future__ import annotations

import asyncio
from typing import Any, Callable, TypeVar

from errors import CallTimeoutError

T = TypeVar("T")


async def call_blocking(fn: Callable[..., T], *args: Any, timeout: float, **kwargs: Any) -> T:
    """Run ``fn`` in a worker thread and wait at most ``timeout`` seconds.

    The worker thread is not interrupted on expiry; the caller just stops
    waiting for it.
    """

    try:
        return await asyncio.wait_for(asyncio.to_thread(fn, *args, **kwargs), timeout)
    except asyncio.TimeoutError as exc:
        raise CallTimeoutError(getattr(fn, "__name__", repr(fn)), timeout) from exc


__all__ = ["call_blocking"]
