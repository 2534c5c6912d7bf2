"""Wait strategies for token-guarded operations.

Provides patterns for racing a single awaitable against a cancellation
token:
    - race_token: Step result or token cancellation, whichever is observed first

Example:
    >>> token = CancelToken()
    >>> try:
    ...     value = await race_token(fetch(), token)
    ... except CancelledByToken as stop:
    ...     print(f"aborted: {stop.reason}")
"""

from __future__ import annotations

import asyncio
import inspect
from collections.abc import Awaitable
from typing import TypeVar

from .task import CancelledByToken, CancelToken, abandon

T = TypeVar("T")


async def race_token(aw: Awaitable[T], token: CancelToken) -> T:
    """Race an awaitable against a token.

    If the awaitable finishes first (or in the same loop iteration as the
    cancellation), its result is returned or its exception propagates.
    If the token wins, the awaitable is sent a cancellation request and
    abandoned, and CancelledByToken is raised without waiting for it.

    External cancellation of the caller cancels the awaitable too.

    Raises:
        CancelledByToken: If the token was cancelled first
        Exception: Whatever the awaitable raises
    """
    if token.cancelled:
        if inspect.iscoroutine(aw):
            aw.close()  # Never scheduled
        raise CancelledByToken(token)

    step = asyncio.ensure_future(aw)
    waiter = asyncio.ensure_future(token.wait())

    try:
        done, _ = await asyncio.wait({step, waiter}, return_when=asyncio.FIRST_COMPLETED)
    except asyncio.CancelledError:
        step.cancel()
        waiter.cancel()
        raise

    if step in done:
        waiter.cancel()
        return step.result()

    abandon(step)
    raise CancelledByToken(token)
