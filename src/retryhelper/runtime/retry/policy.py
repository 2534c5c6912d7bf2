"""Declarative retry configuration.

RetryOptions gathers the common knobs (attempt limit, total timeout,
backoff, jitter, error classification) in one validated model and
expands them into the ordered option list the engine consumes.

Optimizations:
- Frozen for immutability and sharing across concurrent loops
- Matchers normalized once at construction
- Option list rebuilt per helper, never mutated

Example:
    >>> opts = RetryOptions(
    ...     max_attempts=5,
    ...     maximum_timeout=10.0,
    ...     backoff=ExponentialBackoff(2.0, max_delay=5.0),
    ...     jitter=(0.0, 0.25),
    ...     retryable_errors={ConnectionError, "RATE_LIMITED"},
    ... )
    >>> value = await retry(fetch_quote, "ACME", options=opts)
"""

from __future__ import annotations

import functools
import logging
from collections.abc import Awaitable, Callable
from typing import Any, ParamSpec, TypeVar

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    NonNegativeFloat,
    PositiveFloat,
    PositiveInt,
    ValidationError,
    computed_field,
    field_serializer,
    field_validator,
    model_validator,
)

from retryhelper.foundation.config import RetrySettings, get_settings
from retryhelper.foundation.errors import InvalidConfiguration

from .backoff import Backoff, ConstantBackoff, ExponentialBackoff, Jitter, LinearBackoff
from .clock import Clock
from .engine import RetryHelper
from .invoke import Invocation
from .options import (
    BackoffDelay,
    CanRetry,
    DelayBounds,
    JitterDelay,
    MaxAttempts,
    MaxTotalTime,
    NonRetriableErrors,
    OnRetry,
    RetriableErrors,
    RetryOption,
    freeze_matchers,
)
from .state import AttemptState

logger = logging.getLogger("retryhelper.retry")

T = TypeVar("T")
P = ParamSpec("P")


class RetryOptions(BaseModel):
    """Top-level retry configuration.

    Expanded by to_options() into, in order of precedence:
    can_retry, nonretryable_errors, retryable_errors, max_attempts,
    maximum_timeout, then the delay chain backoff -> jitter -> delay_bounds,
    and finally on_retry.

    Attributes:
        max_attempts: Operation invocations before MaxAttemptsExceeded
        maximum_timeout: Total seconds before MaxTimeoutExceeded
        backoff: Delay policy (default: linear 0.1s steps)
        jitter: (min, max) uniform offset in seconds added to each delay
        delay_bounds: (min, max) clamp applied after jitter; max may be None
        retryable_errors: Only these exception classes / tags are retried
        nonretryable_errors: These exception classes / tags stop immediately
        can_retry: Predicate deciding retry per error (highest precedence)
        on_retry: Callback (state, delay) before each retry sleep
    """

    model_config = ConfigDict(
        frozen=True,
        arbitrary_types_allowed=True,  # For Backoff protocol and matcher classes
        validate_default=True,
        extra="forbid",
        revalidate_instances="never",
        json_schema_extra={
            "title": "Retry Options",
            "description": "Configuration for a retry loop",
            "examples": [{"max_attempts": 5, "maximum_timeout": 10.0, "jitter": [0.0, 0.25]}],
        },
    )

    max_attempts: PositiveInt | None = None
    maximum_timeout: PositiveFloat | None = None
    backoff: Backoff = Field(default_factory=lambda: LinearBackoff(0.1), repr=False)
    jitter: tuple[NonNegativeFloat, NonNegativeFloat] | None = None
    delay_bounds: tuple[NonNegativeFloat, NonNegativeFloat | None] | None = None
    retryable_errors: frozenset[Any] | None = None
    nonretryable_errors: frozenset[Any] | None = None
    can_retry: Callable[[BaseException], Any] | None = Field(default=None, exclude=True, repr=False)
    on_retry: Callable[[AttemptState, float], None] | None = Field(default=None, exclude=True, repr=False)

    def __init__(self, **data: Any) -> None:
        """Validate fields; contradictory parameters raise InvalidConfiguration.

        Raises:
            InvalidConfiguration: Jitter, delay bounds or matchers contradict
            ValidationError: Any other invalid field
        """
        try:
            super().__init__(**data)
        except ValidationError as exc:
            for err in exc.errors():
                cause = err.get("ctx", {}).get("error")
                if isinstance(cause, InvalidConfiguration):
                    raise cause from exc
            raise

    @field_validator("retryable_errors", "nonretryable_errors", mode="before")
    @classmethod
    def _normalize_matchers(cls, v: Any) -> frozenset[Any] | None:
        """Accept any iterable of exception classes / tags, or a single one."""
        if v is None:
            return None
        if isinstance(v, (str, type)):
            v = (v,)
        return freeze_matchers(v)

    @field_serializer("retryable_errors", "nonretryable_errors")
    def _serialize_matchers(self, v: frozenset[Any] | None) -> list[str] | None:
        """Serialize matchers as sorted names."""
        if v is None:
            return None
        return sorted(m if isinstance(m, str) else m.__name__ for m in v)

    @field_serializer("backoff")
    def _serialize_backoff(self, v: Backoff) -> str:
        return repr(v)

    @model_validator(mode="after")
    def _check_delays(self) -> RetryOptions:
        if self.jitter is not None:
            Jitter(*self.jitter)
        if self.delay_bounds is not None:
            DelayBounds(*self.delay_bounds)
        return self

    @computed_field
    @property
    def is_bounded(self) -> bool:
        """Whether an attempt or time limit exists."""
        return self.max_attempts is not None or self.maximum_timeout is not None

    def to_options(self) -> list[RetryOption]:
        """Expand into the ordered option list."""
        options: list[RetryOption] = []
        if self.can_retry is not None:
            options.append(CanRetry(self.can_retry))
        if self.nonretryable_errors:
            options.append(NonRetriableErrors(*self.nonretryable_errors))
        if self.retryable_errors:
            options.append(RetriableErrors(*self.retryable_errors))
        if self.max_attempts is not None:
            options.append(MaxAttempts(self.max_attempts))
        if self.maximum_timeout is not None:
            options.append(MaxTotalTime(self.maximum_timeout))
        options.append(BackoffDelay(self.backoff))
        if self.jitter is not None:
            options.append(JitterDelay(Jitter(*self.jitter)))
        if self.delay_bounds is not None:
            options.append(DelayBounds(*self.delay_bounds))
        if self.on_retry is not None:
            options.append(OnRetry(self.on_retry))
        return options

    def helper(
        self,
        operation: Callable[..., Awaitable[T] | T],
        *args: Any,
        clock: Clock | None = None,
        **kwargs: Any,
    ) -> RetryHelper[T]:
        """Build a RetryHelper for operation with these options."""
        return RetryHelper(operation, *args, options=self.to_options(), clock=clock, **kwargs)

    @classmethod
    def from_settings(cls, settings: RetrySettings | None = None, **overrides: Any) -> RetryOptions:
        """Build options from environment-driven RetrySettings.

        Args:
            settings: Settings to use (default: get_settings().retry)
            **overrides: Field values that take precedence over settings
        """
        s = settings or get_settings().retry
        backoff: Backoff
        match s.backoff:
            case "exponential":
                backoff = ExponentialBackoff(s.exponential_base, s.exponent, s.max_delay)
            case "constant":
                backoff = ConstantBackoff(s.base_delay)
            case _:
                backoff = LinearBackoff(s.base_delay, max_delay=s.max_delay)
        fields: dict[str, Any] = {
            "max_attempts": s.max_attempts,
            "maximum_timeout": s.maximum_timeout,
            "backoff": backoff,
            "jitter": (s.min_jitter, s.max_jitter) if s.jitter_enabled else None,
        }
        return cls(**(fields | overrides))


async def retry(
    operation: Callable[..., Awaitable[T] | T],
    *args: Any,
    options: RetryOptions | None = None,
    clock: Clock | None = None,
    **kwargs: Any,
) -> T:
    """Run operation(*args, **kwargs) under a retry loop.

    Uses RetryOptions.from_settings() when no options are given.

    Returns:
        The first successful result

    Raises:
        RetryException: Subclass describing why retrying stopped
    """
    opts = options or RetryOptions.from_settings()
    return await opts.helper(operation, *args, clock=clock, **kwargs).run()


def retrying(
    options: RetryOptions | None = None, **fields: Any,
) -> Callable[[Callable[P, Awaitable[T]]], Callable[P, Awaitable[T]]]:
    """Decorator retrying an async function on every call.

    Example:
        >>> @retrying(max_attempts=3, backoff=ConstantBackoff(0.5))
        ... async def fetch(url: str) -> bytes: ...
    """
    if options is not None:
        fields = {name: getattr(options, name) for name in RetryOptions.model_fields} | fields
    opts = RetryOptions(**fields)

    def decorator(fn: Callable[P, Awaitable[T]]) -> Callable[P, Awaitable[T]]:
        @functools.wraps(fn)
        async def wrapper(*args: P.args, **kwargs: P.kwargs) -> T:
            helper: RetryHelper[T] = RetryHelper(
                Invocation(fn, args, kwargs), options=opts.to_options(), name=fn.__qualname__,
            )
            return await helper.run()
        wrapper.retry_options = opts  # type: ignore[attr-defined]
        return wrapper

    return decorator
