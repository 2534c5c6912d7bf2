"""Retry engine: drives the attempt loop for one operation.

Each invocation (run() or settle()) walks the state machine

    IDLE -> ATTEMPTING -> SUCCEEDED
                       -> EVALUATING -> FAILED
                                     -> SLEEPING -> ATTEMPTING

On every failure the registered options are consulted in order: all
check() calls first (the first to raise ends the loop), then the
contribute() fold that yields the next delay.

When any option declares a time budget, a watchdog task is armed for the
invocation. It cancels the invocation's CancelToken when the budget runs
out; both the in-flight attempt and the sleep are raced against that
token, so the loop stops without waiting for a hung operation.

Example:
    >>> helper = RetryHelper(fetch_quote, "ACME", options=[
    ...     MaxAttempts(5),
    ...     MaxTotalTime(2.0),
    ...     BackoffDelay(LinearBackoff(0.1)),
    ... ])
    >>> price = await helper.run()
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Iterable
from itertools import count
from typing import Any, Generic, TypeVar

from retryhelper.foundation.errors import (
    MaxTimeoutExceeded,
    RetryCancelled,
    RetryException,
    error_tag,
)
from retryhelper.runtime.concurrency import (
    CancelledByToken,
    CancelToken,
    cancel_and_wait,
    race_token,
)

from .backoff import Backoff, Jitter
from .clock import SYSTEM_CLOCK, Clock
from .invoke import Invocation, bind
from .options import (
    BackoffDelay,
    CanRetry,
    CanRetryFn,
    ErrorMatcher,
    JitterDelay,
    MaxAttempts,
    MaxTotalTime,
    NonRetriableErrors,
    RetriableErrors,
    RetryOption,
)
from .outcome import Outcome
from .state import AttemptState, EngineState

logger = logging.getLogger("retryhelper.retry")

T = TypeVar("T")

_epochs = count(1)


class RetryHelper(Generic[T]):
    """Retry loop over an async operation and an ordered list of options.

    The helper itself holds no per-invocation state: every run() gets a
    fresh AttemptState, CancelToken and watchdog, so one helper may be run
    many times, including concurrently.

    Args:
        operation: Async callable (or sync callable, see bind())
        *args: Positional arguments passed to every attempt
        options: Retry options, consulted in this order
        clock: Time source (default: SystemClock)
        name: Label for logs (default: operation's qualified name)
        **kwargs: Keyword arguments passed to every attempt
    """

    __slots__ = ("_thunk", "_options", "_clock", "_name", "_active", "_last")

    def __init__(
        self,
        operation: Callable[..., Awaitable[T] | T],
        *args: Any,
        options: Iterable[RetryOption] = (),
        clock: Clock | None = None,
        name: str | None = None,
        **kwargs: Any,
    ) -> None:
        opts = tuple(options)
        for opt in opts:
            if not isinstance(opt, RetryOption):
                raise TypeError(f"Expected RetryOption, got {type(opt).__name__}")
        self._thunk: Invocation[T] = bind(operation, *args, **kwargs)
        self._options = opts
        self._clock = clock or SYSTEM_CLOCK
        self._name = name or self._thunk.name
        self._active: set[_Invocation[T]] = set()
        self._last: _Invocation[T] | None = None

    # ─────────────────────────────────────────────────────────────────
    # Introspection
    # ─────────────────────────────────────────────────────────────────

    @property
    def name(self) -> str:
        return self._name

    @property
    def options(self) -> tuple[RetryOption, ...]:
        return self._options

    @property
    def clock(self) -> Clock:
        return self._clock

    @property
    def state(self) -> EngineState:
        """Lifecycle state of the most recent invocation."""
        return self._last.phase if self._last else EngineState.IDLE

    @property
    def last_attempt(self) -> AttemptState | None:
        return self._last.attempt_state if self._last else None

    @property
    def time_budget(self) -> float | None:
        """Smallest time budget declared by any option."""
        budgets = [b for o in self._options if (b := o.time_budget) is not None]
        return min(budgets) if budgets else None

    # ─────────────────────────────────────────────────────────────────
    # Builder
    # ─────────────────────────────────────────────────────────────────

    def with_option(self, *options: RetryOption) -> RetryHelper[T]:
        """Return new helper with options appended (lowest precedence)."""
        return RetryHelper(self._thunk, options=(*self._options, *options), clock=self._clock, name=self._name)

    def with_max_attempts(self, max_attempts: int) -> RetryHelper[T]:
        return self.with_option(MaxAttempts(max_attempts))

    def with_max_total_time(self, total: float) -> RetryHelper[T]:
        return self.with_option(MaxTotalTime(total))

    def with_backoff(self, policy: Backoff) -> RetryHelper[T]:
        return self.with_option(BackoffDelay(policy))

    def with_jitter(self, min_jitter: float, max_jitter: float) -> RetryHelper[T]:
        return self.with_option(JitterDelay(Jitter(min_jitter, max_jitter)))

    def with_retriable(self, *errors: ErrorMatcher) -> RetryHelper[T]:
        return self.with_option(RetriableErrors(*errors))

    def with_nonretriable(self, *errors: ErrorMatcher) -> RetryHelper[T]:
        return self.with_option(NonRetriableErrors(*errors))

    def with_can_retry(self, predicate: CanRetryFn) -> RetryHelper[T]:
        return self.with_option(CanRetry(predicate))

    # ─────────────────────────────────────────────────────────────────
    # Execution
    # ─────────────────────────────────────────────────────────────────

    async def run(self) -> T:
        """Run until success, returning the operation's result.

        Raises:
            MaxAttemptsExceeded: Attempt limit reached
            MaxTimeoutExceeded: Time budget spent (checked or watchdog)
            NonRetriable: A classifier refused to retry the error
            RetryCancelled: cancel() was called
        """
        return (await self.settle()).unwrap()

    async def settle(self) -> Outcome[T]:
        """Run until a terminal state, returning the Outcome instead of raising."""
        invocation = _Invocation(self, CancelToken(name=f"{self._name}#{next(_epochs)}"))
        self._active.add(invocation)
        self._last = invocation
        try:
            return await invocation.execute()
        finally:
            self._active.discard(invocation)

    def cancel(self, message: str = "Retry cancelled") -> int:
        """Cancel every in-flight invocation of this helper.

        No further attempts are scheduled, watchdogs are disarmed, and the
        in-flight attempt's eventual result is discarded.

        Returns:
            Number of invocations cancelled
        """
        cancelled = 0
        for invocation in list(self._active):
            error = RetryCancelled(message, cause=invocation.attempt_state.last_error)
            cancelled += invocation.token.cancel(error)
        return cancelled

    def __repr__(self) -> str:
        return f"RetryHelper({self._name}, options={list(self._options)!r})"


class _Invocation(Generic[T]):
    """One pass of the retry loop. Owns its token, state and watchdog."""

    __slots__ = ("engine", "token", "phase", "attempt_state")

    def __init__(self, engine: RetryHelper[T], token: CancelToken) -> None:
        self.engine = engine
        self.token = token
        self.phase = EngineState.IDLE
        self.attempt_state = AttemptState()

    async def execute(self) -> Outcome[T]:
        clock, thunk = self.engine.clock, self.engine._thunk
        state = self.attempt_state = AttemptState.begin(clock.now())
        budget = self.engine.time_budget
        watchdog = asyncio.create_task(self._watchdog(budget), name=f"watchdog:{self.token.name}") if budget is not None else None

        try:
            while True:
                state = self.attempt_state = state.next_attempt(clock.now())
                self.phase = EngineState.ATTEMPTING
                try:
                    value = await race_token(thunk(), self.token)
                except CancelledByToken as stop:
                    if stop.token is not self.token:
                        state = self.attempt_state = state.failed(stop, clock.now())  # Nested loop's signal
                    else:
                        return self._fail(stop.reason, state)
                except Exception as exc:
                    state = self.attempt_state = state.failed(exc, clock.now())
                else:
                    return self._succeed(value, state)

                self.phase = EngineState.EVALUATING
                try:
                    delay = self._evaluate(state)
                except RetryException as stop:
                    return self._fail(stop, state)

                logger.info(
                    f"[{self.engine.name}] Attempt {state.attempt} failed "
                    f"({error_tag(state.error)}): {state.error!r}. Retrying in {delay:.3f}s"
                )
                state = self.attempt_state = state.with_delay(delay)
                self.phase = EngineState.SLEEPING
                try:
                    await race_token(clock.sleep(delay), self.token)
                except CancelledByToken as stop:
                    return self._fail(stop.reason, state)
        finally:
            self.token.close()
            await cancel_and_wait(watchdog)

    def _evaluate(self, state: AttemptState) -> float:
        """Run every check (first raise wins), then fold delay contributions."""
        options = self.engine.options
        for opt in options:
            opt.check(state)
        delay = state.delay
        for opt in options:
            delay = max(opt.contribute(delay, state), 0.0)
            logger.debug(f"[{self.engine.name}] {opt!r} -> delay {delay:.3f}s")
        return delay

    async def _watchdog(self, budget: float) -> None:
        clock = self.engine.clock
        await clock.sleep(budget)
        state = self.attempt_state
        error = MaxTimeoutExceeded(
            f"Attempt took longer than maximum specified {budget}s",
            cause=state.last_error,
            elapsed=clock.now() - state.started_at,
        )
        if self.token.cancel(error):
            logger.warning(f"[{self.engine.name}] Watchdog fired after {budget}s during {self.phase}")

    def _succeed(self, value: T, state: AttemptState) -> Outcome[T]:
        self.phase = EngineState.SUCCEEDED
        elapsed = self.engine.clock.now() - state.started_at
        if state.attempt > 1:
            logger.info(f"[{self.engine.name}] Succeeded on attempt {state.attempt} after {elapsed:.3f}s")
        return Outcome.success(value, state.attempt, elapsed)

    def _fail(self, reason: BaseException | None, state: AttemptState) -> Outcome[T]:
        self.phase = EngineState.FAILED
        if not isinstance(reason, RetryException):
            reason = RetryCancelled(f"Invocation stopped: {reason!r}", cause=state.last_error)
        elapsed = self.engine.clock.now() - state.started_at
        reason.stamp(state.attempt, elapsed)
        if reason.cause is not None and reason.__cause__ is None:
            reason.__cause__ = reason.cause
        logger.warning(f"[{self.engine.name}] Giving up: {reason.failure}")
        return Outcome.failure(reason, state.attempt, elapsed)
