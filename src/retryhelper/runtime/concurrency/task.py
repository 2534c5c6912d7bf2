"""Cancellation tokens with structured ownership.

A CancelToken belongs to exactly one retry invocation. Whoever detects a
stop condition out-of-band (a watchdog timer, an external caller) cancels
the token with a reason; the owning loop selects on the token alongside
its current step.

Key Features:
    - Per-invocation: no process-wide emitter, no cross-talk between loops
    - Resolve-once: later cancel() calls are no-ops
    - Awaitable: wait() suspends until the token is cancelled
    - Checkpoints: Cooperative cancellation points

Example:
    >>> token = CancelToken(name="fetch#1")
    >>> token.cancel(TimeoutError("budget spent"))
    True
    >>> token.cancel(RuntimeError("late"))  # stale, ignored
    False
    >>> token.reason
    TimeoutError('budget spent')
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from enum import StrEnum


class TokenState(StrEnum):
    """Token lifecycle states."""
    ACTIVE = "active"        # Not yet resolved
    CANCELLED = "cancelled"  # Cancelled with a reason
    CLOSED = "closed"        # Owner finished; cancellation no longer meaningful


class CancelledByToken(Exception):
    """Raised by token-aware waits when the token wins the race.

    Attributes:
        token: Token that was cancelled
        reason: Exception the canceller supplied
    """

    __slots__ = ("token", "reason")

    def __init__(self, token: CancelToken) -> None:
        self.token = token
        self.reason = token.reason
        super().__init__(f"Token {token.name or id(token)} cancelled: {token.reason!r}")


@dataclass(slots=True)
class CancelToken:
    """Resolve-once cancellation signal owned by a single invocation.

    The first cancel() wins; cancellation after the owner called close()
    is ignored, so a timer that fires late cannot affect a finished loop.
    """

    name: str | None = None
    _state: TokenState = field(default=TokenState.ACTIVE, repr=False)
    _reason: BaseException | None = field(default=None, repr=False)
    _event: asyncio.Event = field(default_factory=asyncio.Event, repr=False)

    @property
    def state(self) -> TokenState:
        return self._state

    @property
    def cancelled(self) -> bool:
        """Whether cancellation was requested while the token was active."""
        return self._state is TokenState.CANCELLED

    @property
    def reason(self) -> BaseException | None:
        return self._reason

    def cancel(self, reason: BaseException) -> bool:
        """Cancel with reason.

        Returns:
            True if this call cancelled the token, False if it was already
            cancelled or closed
        """
        if self._state is not TokenState.ACTIVE:
            return False
        self._state, self._reason = TokenState.CANCELLED, reason
        self._event.set()
        return True

    def close(self) -> None:
        """Mark owner finished. Subsequent cancel() calls are no-ops."""
        if self._state is TokenState.ACTIVE:
            self._state = TokenState.CLOSED

    def raise_if_cancelled(self) -> None:
        if self.cancelled:
            raise CancelledByToken(self)

    async def wait(self) -> BaseException | None:
        """Suspend until cancelled, returning the reason."""
        await self._event.wait()
        return self._reason


async def checkpoint() -> None:
    """Cooperative cancellation checkpoint.

    Yields control to the event loop, allowing pending cancellations
    and timer callbacks to be processed.
    """
    await asyncio.sleep(0)


async def cancel_and_wait(task: asyncio.Task[object] | None) -> None:
    """Cancel a task we own and wait for it to unwind.

    The task's own CancelledError is absorbed. Cancellation of the caller
    while waiting propagates.
    """
    if task is None or task.done():
        return
    task.cancel()
    try:
        await task
    except asyncio.CancelledError:
        current = asyncio.current_task()
        if current is not None and current.cancelling():
            raise


def abandon(task: asyncio.Future[object]) -> None:
    """Request cancellation of a task whose result is no longer wanted.

    Does not wait. The task's eventual exception, if any, is retrieved so
    the event loop does not report it as unhandled.
    """
    if not task.done():
        task.cancel()
    task.add_done_callback(_discard_outcome)


def _discard_outcome(task: asyncio.Future[object]) -> None:
    if not task.cancelled():
        task.exception()
