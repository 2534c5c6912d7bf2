"""Retry options: composable veto checks and delay contributions.

Each option may implement either or both capabilities:
- check(state): raise a RetryException to stop the loop
- contribute(previous_delay, state): transform the running delay

The engine runs every check in registration order (first raise wins and
short-circuits the round), then folds every contribute in registration
order. Options are stateless; loop progress arrives in AttemptState, so
one option list can be shared by concurrent invocations.

Example:
    >>> options = [
    ...     RetriableErrors(ConnectionError, "RATE_LIMITED"),
    ...     MaxAttempts(5),
    ...     MaxTotalTime(10.0),
    ...     BackoffDelay(LinearBackoff(0.1)),
    ...     JitterDelay(Jitter(0.0, 0.05)),
    ... ]
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass
from typing import TypeAlias

from retryhelper.foundation.errors import (
    InvalidConfiguration,
    MaxAttemptsExceeded,
    MaxTimeoutExceeded,
    NonRetriable,
    error_tag,
)

from .backoff import Backoff, Jitter
from .state import AttemptState

logger = logging.getLogger("retryhelper.retry.options")

# Exception class (isinstance match) or error tag (see error_tag)
ErrorMatcher: TypeAlias = type[BaseException] | str


class RetryOption:
    """Base retry option. Both capabilities default to no-ops."""

    __slots__ = ()

    @property
    def time_budget(self) -> float | None:
        """Seconds after which a watchdog should abort the invocation, if any."""
        return None

    def check(self, state: AttemptState) -> None:
        """Raise a RetryException if retrying must stop."""

    def contribute(self, previous_delay: float, state: AttemptState) -> float:
        """Return the running delay after this option's contribution."""
        return previous_delay

    def __repr__(self) -> str:
        return f"{type(self).__name__}()"


def freeze_matchers(members: Iterable[ErrorMatcher]) -> frozenset[ErrorMatcher]:
    frozen: set[ErrorMatcher] = set()
    for m in members:
        if isinstance(m, str):
            frozen.add(str(m))
        elif isinstance(m, type) and issubclass(m, BaseException):
            frozen.add(m)
        else:
            raise InvalidConfiguration(f"Error matcher must be an exception class or tag, got {m!r}")
    return frozenset(frozen)


def matches(error: BaseException | None, members: frozenset[ErrorMatcher]) -> bool:
    """Whether error matches any member (class by isinstance, tag by equality)."""
    if error is None:
        return False
    tag: str | None = None
    for m in members:
        if isinstance(m, str):
            tag = tag if tag is not None else error_tag(error)
            if m == tag:
                return True
        elif isinstance(error, m):
            return True
    return False


def _describe(error: BaseException | None) -> str:
    return type(error).__name__ if error is not None else "None"


class MaxAttempts(RetryOption):
    """Stop once the operation has been invoked `max_attempts` times."""

    __slots__ = ("max_attempts",)

    def __init__(self, max_attempts: int) -> None:
        if max_attempts < 1:
            raise InvalidConfiguration(f"max_attempts must be >= 1, got {max_attempts}")
        self.max_attempts = max_attempts

    def check(self, state: AttemptState) -> None:
        if state.attempt >= self.max_attempts:
            raise MaxAttemptsExceeded(f"Max attempts exceeded: {state.attempt}", cause=state.error)

    def __repr__(self) -> str:
        return f"MaxAttempts({self.max_attempts})"


class MaxTotalTime(RetryOption):
    """Stop once `total` seconds have passed since the invocation began.

    Checked at every failure, and enforced out-of-band by the engine's
    watchdog so a hung attempt or a long sleep cannot outlive the budget.
    """

    __slots__ = ("total",)

    def __init__(self, total: float) -> None:
        if total <= 0:
            raise InvalidConfiguration(f"total must be > 0, got {total}")
        self.total = total

    @property
    def time_budget(self) -> float:
        return self.total

    def exceeded(self, elapsed: float, cause: BaseException | None = None) -> MaxTimeoutExceeded:
        return MaxTimeoutExceeded(
            f"Attempt took longer than maximum specified {self.total}s", cause=cause, elapsed=elapsed,
        )

    def check(self, state: AttemptState) -> None:
        if state.elapsed >= self.total:
            raise self.exceeded(state.elapsed, state.error)

    def __repr__(self) -> str:
        return f"MaxTotalTime({self.total})"


class RetriableErrors(RetryOption):
    """Only errors matching the allow-list are retried."""

    __slots__ = ("allow",)

    def __init__(self, *allow: ErrorMatcher) -> None:
        if not allow:
            raise InvalidConfiguration("RetriableErrors requires at least one matcher")
        self.allow = freeze_matchers(allow)

    def check(self, state: AttemptState) -> None:
        if not matches(state.error, self.allow):
            logger.debug(f"{_describe(state.error)} not in retriable set")
            raise NonRetriable(f"Attempt threw nonretriable exception: {_describe(state.error)}", cause=state.error)

    def __repr__(self) -> str:
        return f"RetriableErrors({len(self.allow)} matchers)"


class NonRetriableErrors(RetryOption):
    """Errors matching the deny-list stop the loop immediately."""

    __slots__ = ("deny",)

    def __init__(self, *deny: ErrorMatcher) -> None:
        if not deny:
            raise InvalidConfiguration("NonRetriableErrors requires at least one matcher")
        self.deny = freeze_matchers(deny)

    def check(self, state: AttemptState) -> None:
        if matches(state.error, self.deny):
            logger.debug(f"{_describe(state.error)} in nonretriable set")
            raise NonRetriable(f"Attempt threw nonretriable exception: {_describe(state.error)}", cause=state.error)

    def __repr__(self) -> str:
        return f"NonRetriableErrors({len(self.deny)} matchers)"


@dataclass(frozen=True, slots=True)
class RetryDecision:
    """Verdict of a caller-supplied retry predicate."""

    retry: bool
    message: str | None = None

    @classmethod
    def coerce(cls, verdict: Verdict) -> RetryDecision:
        """Accept a RetryDecision, a bool, {"retry": ..., "message": ...} or (retry, message)."""
        match verdict:
            case RetryDecision():
                return verdict
            case bool():
                return cls(verdict)
            case {"retry": retry, **rest}:
                msg = rest.get("message")
                return cls(bool(retry), str(msg) if msg is not None else None)
            case (retry, msg):
                return cls(bool(retry), msg)
        raise TypeError(f"can_retry must return bool, RetryDecision, mapping or tuple, got {type(verdict).__name__}")


Verdict: TypeAlias = RetryDecision | bool | Mapping[str, object] | tuple[bool, str | None]
CanRetryFn: TypeAlias = Callable[[BaseException], Verdict]


class CanRetry(RetryOption):
    """Delegate the retry decision to a caller-supplied predicate.

    Register it first to give it precedence over other classifiers.
    """

    __slots__ = ("predicate",)

    def __init__(self, predicate: CanRetryFn) -> None:
        self.predicate = predicate

    def check(self, state: AttemptState) -> None:
        if state.error is None:
            return
        decision = RetryDecision.coerce(self.predicate(state.error))
        if not decision.retry:
            raise NonRetriable(
                decision.message or f"Retry refused for {_describe(state.error)}", cause=state.error,
            )

    def __repr__(self) -> str:
        return f"CanRetry({getattr(self.predicate, '__name__', 'predicate')})"


class BackoffDelay(RetryOption):
    """Replace the running delay with the backoff policy's delay for this attempt."""

    __slots__ = ("policy",)

    def __init__(self, policy: Backoff) -> None:
        self.policy = policy

    def contribute(self, previous_delay: float, state: AttemptState) -> float:
        return self.policy.delay(max(state.attempt, 1))

    def __repr__(self) -> str:
        return f"BackoffDelay({self.policy!r})"


class JitterDelay(RetryOption):
    """Add a uniform random offset to the running delay."""

    __slots__ = ("jitter",)

    def __init__(self, jitter: Jitter) -> None:
        self.jitter = jitter

    def contribute(self, previous_delay: float, state: AttemptState) -> float:
        return self.jitter.apply(previous_delay)

    def __repr__(self) -> str:
        return f"JitterDelay({self.jitter!r})"


class DelayBounds(RetryOption):
    """Clamp the running delay into [min_delay, max_delay]."""

    __slots__ = ("min_delay", "max_delay")

    def __init__(self, min_delay: float = 0.0, max_delay: float | None = None) -> None:
        if min_delay < 0:
            raise InvalidConfiguration(f"min_delay must be non-negative, got {min_delay}")
        if max_delay is not None and max_delay < min_delay:
            raise InvalidConfiguration(f"max_delay ({max_delay}) must be >= min_delay ({min_delay})")
        self.min_delay, self.max_delay = min_delay, max_delay

    def contribute(self, previous_delay: float, state: AttemptState) -> float:
        d = max(previous_delay, self.min_delay)
        return min(d, self.max_delay) if self.max_delay is not None else d

    def __repr__(self) -> str:
        return f"DelayBounds({self.min_delay}, {self.max_delay})"


class OnRetry(RetryOption):
    """Observe each scheduled retry without changing it.

    The callback receives the state and the running delay at this option's
    position, so register it last to see the final delay.
    """

    __slots__ = ("callback",)

    def __init__(self, callback: Callable[[AttemptState, float], None]) -> None:
        self.callback = callback

    def contribute(self, previous_delay: float, state: AttemptState) -> float:
        self.callback(state, previous_delay)
        return previous_delay
