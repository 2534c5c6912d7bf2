"""Standardized error handling for retry orchestration.

Provides error codes for classifying operation failures and structured
failure records for the terminal conditions of a retry loop.
Uses Pydantic for validation and serialization.
"""

from __future__ import annotations

from enum import StrEnum
from functools import lru_cache
from typing import Annotated, Self

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    NonNegativeFloat,
    NonNegativeInt,
    computed_field,
    field_validator,
)


class ErrorCode(StrEnum):
    """Standard error codes for operation failures.

    Used as default error tags when an exception carries no explicit tag.
    """
    RATE_LIMITED = "RATE_LIMITED"
    NETWORK_ERROR = "NETWORK_ERROR"
    TIMEOUT = "TIMEOUT"
    INVALID_PARAMS = "INVALID_PARAMS"
    PARSE_ERROR = "PARSE_ERROR"
    EXTERNAL_SERVICE_ERROR = "EXTERNAL_SERVICE_ERROR"
    PERMISSION_DENIED = "PERMISSION_DENIED"
    NOT_FOUND = "NOT_FOUND"
    UNKNOWN = "UNKNOWN"


# Flattened pattern -> code mapping for O(1) dict lookup after pattern extraction
_PATTERN_CODES: dict[str, ErrorCode] = {
    "timeout": ErrorCode.TIMEOUT,
    "connection": ErrorCode.NETWORK_ERROR,
    "network": ErrorCode.NETWORK_ERROR,
    "rate": ErrorCode.RATE_LIMITED,
    "limit": ErrorCode.RATE_LIMITED,
    "permission": ErrorCode.PERMISSION_DENIED,
    "forbidden": ErrorCode.PERMISSION_DENIED,
    "parse": ErrorCode.PARSE_ERROR,
    "json": ErrorCode.PARSE_ERROR,
    "decode": ErrorCode.PARSE_ERROR,
    "validation": ErrorCode.INVALID_PARAMS,
    "value": ErrorCode.INVALID_PARAMS,
    "notfound": ErrorCode.NOT_FOUND,
}
_PATTERN_KEYS = tuple(_PATTERN_CODES.keys())  # Ordered for priority


@lru_cache(maxsize=256)
def _classify_cached(exc_key: str) -> ErrorCode:
    """Cached classification by exception signature."""
    haystack = exc_key.lower()
    for pattern in _PATTERN_KEYS:
        if pattern in haystack:
            return _PATTERN_CODES[pattern]
    return ErrorCode.EXTERNAL_SERVICE_ERROR


def classify_exception(exc: BaseException) -> ErrorCode:
    """Map exception to error code via pattern matching on name/message."""
    return _classify_cached(f"{type(exc).__name__} {exc}")


class TaggedError(Exception):
    """Operation failure carrying an explicit error tag.

    Wrap failures in this type so retry classification is a plain tag
    comparison instead of guesswork over exception names.

    Example:
        >>> raise TaggedError("throttled by upstream", tag=ErrorCode.RATE_LIMITED)
    """

    __slots__ = ("tag",)

    def __init__(self, message: str, *, tag: str = ErrorCode.UNKNOWN) -> None:
        self.tag = str(tag)
        super().__init__(message)


def error_tag(exc: BaseException) -> str:
    """Tag of an operation failure: explicit for TaggedError, classified otherwise."""
    if isinstance(exc, TaggedError):
        return exc.tag
    return classify_exception(exc).value


class StopKind(StrEnum):
    """Why a retry loop stopped."""
    MAX_ATTEMPTS = "max_attempts"
    MAX_TIMEOUT = "max_timeout"
    NON_RETRIABLE = "non_retriable"
    CANCELLED = "cancelled"


_DEFAULT_CODES: dict[StopKind, str] = {
    StopKind.MAX_ATTEMPTS: "429",
    StopKind.MAX_TIMEOUT: "408",
    StopKind.NON_RETRIABLE: "500",
    StopKind.CANCELLED: "499",
}


class RetryFailure(BaseModel):
    """Structured record of a terminal retry failure.

    Attributes:
        kind: Which stop condition ended the loop
        message: Human-readable explanation
        attempts: Operation invocations made before stopping
        elapsed: Seconds since the invocation started
        code: Status-like code ("429", "408", "500", "499")
        cause: Repr of the triggering operation error, if any
    """

    model_config = ConfigDict(
        frozen=True,
        str_strip_whitespace=True,
        validate_default=True,
        extra="forbid",
        json_schema_extra={
            "title": "Retry Failure",
            "description": "Terminal stop condition of a retry loop",
            "examples": [{
                "kind": "max_attempts",
                "message": "Max attempts exceeded: 3",
                "attempts": 3,
                "elapsed": 0.42,
                "code": "429",
            }],
        },
    )

    kind: StopKind
    message: Annotated[str, Field(min_length=1)]
    attempts: NonNegativeInt = 0
    elapsed: NonNegativeFloat = 0.0
    code: str | None = None
    cause: str | None = Field(default=None, repr=False)

    @field_validator("message", mode="before")
    @classmethod
    def _ensure_message(cls, v: str | BaseException) -> str:
        """Accept exception objects and extract message."""
        return (str(v) or type(v).__name__) if isinstance(v, BaseException) else v

    @computed_field
    @property
    def is_exhaustion(self) -> bool:
        """Whether the retry budget (attempts or time) ran out."""
        return self.kind in (StopKind.MAX_ATTEMPTS, StopKind.MAX_TIMEOUT)

    def with_progress(self, attempts: int, elapsed: float) -> Self:
        """Return copy stamped with loop progress at the time of stopping."""
        return self.model_copy(update={"attempts": attempts, "elapsed": max(elapsed, 0.0)})

    def render(self) -> str:
        parts = [f"{self.message} (attempts={self.attempts}, elapsed={self.elapsed:.3f}s)"]
        if self.cause:
            parts.append(f" caused by {self.cause}")
        return "".join(parts)

    __str__ = render


class RetryException(Exception):
    """Exception wrapping a RetryFailure for raising.

    The triggering operation error, if any, is available as ``cause`` and
    is chained as ``__cause__`` when the engine raises.
    """

    kind: StopKind = StopKind.NON_RETRIABLE

    def __init__(
        self,
        message: str,
        *,
        cause: BaseException | None = None,
        code: str | None = None,
        attempts: int = 0,
        elapsed: float = 0.0,
    ) -> None:
        self.cause = cause
        self.failure = RetryFailure(
            kind=self.kind,
            message=message,
            attempts=attempts,
            elapsed=max(elapsed, 0.0),
            code=code or _DEFAULT_CODES[self.kind],
            cause=repr(cause) if cause is not None else None,
        )
        super().__init__(message)

    @property
    def message(self) -> str:
        return self.failure.message

    @property
    def attempts(self) -> int:
        return self.failure.attempts

    @property
    def elapsed(self) -> float:
        return self.failure.elapsed

    @property
    def code(self) -> str | None:
        return self.failure.code

    def stamp(self, attempts: int, elapsed: float) -> Self:
        """Record loop progress on this exception (returns self)."""
        self.failure = self.failure.with_progress(attempts, elapsed)
        return self


class MaxAttemptsExceeded(RetryException):
    """Attempt counter reached the configured limit."""
    kind = StopKind.MAX_ATTEMPTS


class MaxTimeoutExceeded(RetryException):
    """Elapsed time, or the watchdog, exceeded the configured total."""
    kind = StopKind.MAX_TIMEOUT


class NonRetriable(RetryException):
    """A classifier decided the triggering error must not be retried."""
    kind = StopKind.NON_RETRIABLE


class RetryCancelled(RetryException):
    """The invocation was cancelled from outside the loop."""
    kind = StopKind.CANCELLED


class InvalidConfiguration(ValueError):
    """Policy constructed with contradictory parameters. Raised at construction."""
