"""retryhelper - Retry orchestration for fallible async operations.

Repeatedly invokes an async operation until it succeeds, exhausts its
retry budget, or fails with an error that must not be retried.
Independent options (attempt limits, total time, backoff, jitter, error
classification) compose into one loop with deterministic precedence.

Quick Start (Declarative - Recommended):
    >>> from retryhelper import RetryOptions, LinearBackoff, retry
    >>>
    >>> opts = RetryOptions(
    ...     max_attempts=5,
    ...     maximum_timeout=10.0,
    ...     backoff=LinearBackoff(0.1),
    ...     jitter=(0.0, 0.05),
    ...     retryable_errors={ConnectionError, "RATE_LIMITED"},
    ... )
    >>> data = await retry(fetch_json, "https://example.com/api", options=opts)

Decorator:
    >>> from retryhelper import retrying, ExponentialBackoff
    >>>
    >>> @retrying(max_attempts=3, backoff=ExponentialBackoff(2.0, max_delay=8.0))
    ... async def fetch_json(url: str) -> dict: ...

Option List (Full Control):
    >>> from retryhelper import RetryHelper, CanRetry, MaxAttempts, BackoffDelay
    >>>
    >>> helper = RetryHelper(fetch_json, url, options=[
    ...     CanRetry(lambda e: not isinstance(e, PermissionError)),
    ...     MaxAttempts(5),
    ...     BackoffDelay(LinearBackoff(0.2)),
    ... ])
    >>> outcome = await helper.settle()
    >>> outcome.kind
    <OutcomeKind.SUCCEEDED: 'succeeded'>

Failures:
    MaxAttemptsExceeded, MaxTimeoutExceeded, NonRetriable and
    RetryCancelled all derive from RetryException and carry the triggering
    operation error as `.cause` (also chained as __cause__).
    InvalidConfiguration is raised at construction for contradictory
    parameters.
"""

from retryhelper.foundation.config import (
    LoggingSettings,
    RetryHelperSettings,
    RetrySettings,
    clear_settings_cache,
    get_settings,
)
from retryhelper.foundation.errors import (
    ErrorCode,
    InvalidConfiguration,
    MaxAttemptsExceeded,
    MaxTimeoutExceeded,
    NonRetriable,
    RetryCancelled,
    RetryException,
    RetryFailure,
    StopKind,
    TaggedError,
    classify_exception,
    error_tag,
)
from retryhelper.runtime.observability import configure_logging
from retryhelper.runtime.retry import (
    AttemptState,
    Backoff,
    BackoffDelay,
    CanRetry,
    Clock,
    ConstantBackoff,
    DelayBounds,
    EngineState,
    ExponentialBackoff,
    Invocation,
    Jitter,
    JitterDelay,
    LinearBackoff,
    MaxAttempts,
    MaxTotalTime,
    NonRetriableErrors,
    OnRetry,
    Outcome,
    OutcomeKind,
    RecordingClock,
    RetriableErrors,
    RetryDecision,
    RetryHelper,
    RetryOption,
    RetryOptions,
    SystemClock,
    bind,
    retry,
    retrying,
)

__version__ = "0.1.0"

__all__ = [
    # Engine
    "RetryHelper", "AttemptState", "EngineState", "Outcome", "OutcomeKind",
    # Options
    "RetryOption", "MaxAttempts", "MaxTotalTime", "RetriableErrors", "NonRetriableErrors",
    "CanRetry", "RetryDecision", "BackoffDelay", "JitterDelay", "DelayBounds", "OnRetry",
    # Backoff
    "Backoff", "LinearBackoff", "ExponentialBackoff", "ConstantBackoff", "Jitter",
    # Declarative
    "RetryOptions", "retry", "retrying",
    # Invocation & time
    "Invocation", "bind", "Clock", "SystemClock", "RecordingClock",
    # Errors
    "RetryException", "MaxAttemptsExceeded", "MaxTimeoutExceeded", "NonRetriable",
    "RetryCancelled", "InvalidConfiguration", "RetryFailure", "StopKind",
    "ErrorCode", "TaggedError", "classify_exception", "error_tag",
    # Config & logging
    "RetryHelperSettings", "RetrySettings", "LoggingSettings", "get_settings", "clear_settings_cache",
    "configure_logging",
]
