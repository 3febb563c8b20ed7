"""First-to-finish race between one awaitable and a timer."""

from __future__ import annotations

import asyncio
from typing import Awaitable, Optional, TypeVar

T = TypeVar("T")

DISCOVERY_TIMEOUT = 20.0
FETCH_TIMEOUT = 10.0
USERNAME_TIMEOUT = 5.0


async def race(awaitable: Awaitable[T], timeout: Optional[float]) -> T:
    """Await ``awaitable`` for at most ``timeout`` seconds.

    On expiry the underlying task is cancelled and awaited before
    ``asyncio.TimeoutError`` propagates, so nothing keeps running in the
    background.  ``timeout=None`` waits indefinitely.
    """
    return await asyncio.wait_for(awaitable, timeout)


async def race_or_default(
    awaitable: Awaitable[T], timeout: Optional[float], default: T
) -> T:
    """Like :func:`race` but returns ``default`` when the timer wins."""
    try:
        return await race(awaitable, timeout)
    except asyncio.TimeoutError:
        return default
