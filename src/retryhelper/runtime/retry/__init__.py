"""Retry orchestration for async operations.

Composes independent retry options (attempt limits, time budgets,
backoff, jitter, error classification) into one retry loop with
deterministic precedence and a watchdog for the time budget.

Example:
    >>> from retryhelper.runtime.retry import (
    ...     RetryHelper, MaxAttempts, MaxTotalTime, BackoffDelay, LinearBackoff,
    ... )
    >>>
    >>> helper = RetryHelper(fetch_quote, "ACME", options=[
    ...     MaxAttempts(5),
    ...     MaxTotalTime(2.0),
    ...     BackoffDelay(LinearBackoff(0.1)),
    ... ])
    >>> price = await helper.run()
"""

from .backoff import (
    Backoff,
    ConstantBackoff,
    ExponentialBackoff,
    Jitter,
    LinearBackoff,
    delays,
)
from .clock import SYSTEM_CLOCK, Clock, RecordingClock, SystemClock
from .engine import RetryHelper
from .invoke import AsyncThunk, Invocation, bind
from .options import (
    BackoffDelay,
    CanRetry,
    DelayBounds,
    ErrorMatcher,
    JitterDelay,
    MaxAttempts,
    MaxTotalTime,
    NonRetriableErrors,
    OnRetry,
    RetriableErrors,
    RetryDecision,
    RetryOption,
    matches,
)
from .outcome import Outcome, OutcomeKind
from .policy import RetryOptions, retry, retrying
from .state import AttemptState, EngineState

__all__ = [
    # Backoff strategies
    "Backoff",
    "LinearBackoff",
    "ExponentialBackoff",
    "ConstantBackoff",
    "Jitter",
    "delays",
    # Options
    "RetryOption",
    "MaxAttempts",
    "MaxTotalTime",
    "RetriableErrors",
    "NonRetriableErrors",
    "CanRetry",
    "RetryDecision",
    "BackoffDelay",
    "JitterDelay",
    "DelayBounds",
    "OnRetry",
    "ErrorMatcher",
    "matches",
    # Engine
    "RetryHelper",
    "AttemptState",
    "EngineState",
    "Outcome",
    "OutcomeKind",
    # Invocation
    "AsyncThunk",
    "Invocation",
    "bind",
    # Clock
    "Clock",
    "SystemClock",
    "RecordingClock",
    "SYSTEM_CLOCK",
    # Configuration
    "RetryOptions",
    "retry",
    "retrying",
]
