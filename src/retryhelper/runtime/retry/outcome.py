"""Terminal result of one retry invocation.

Similar to a settled promise: exactly one Outcome is produced per
invocation, and it never changes afterwards.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum
from typing import Generic, TypeVar

from retryhelper.foundation.errors import RetryException, StopKind

T = TypeVar("T")


class OutcomeKind(StrEnum):
    """How an invocation ended."""
    SUCCEEDED = "succeeded"
    BUDGET_EXHAUSTED = "budget_exhausted"
    TIMED_OUT = "timed_out"
    NON_RETRIABLE = "non_retriable"
    CANCELLED = "cancelled"


_KIND_BY_STOP: dict[StopKind, OutcomeKind] = {
    StopKind.MAX_ATTEMPTS: OutcomeKind.BUDGET_EXHAUSTED,
    StopKind.MAX_TIMEOUT: OutcomeKind.TIMED_OUT,
    StopKind.NON_RETRIABLE: OutcomeKind.NON_RETRIABLE,
    StopKind.CANCELLED: OutcomeKind.CANCELLED,
}


@dataclass(slots=True, frozen=True)
class Outcome(Generic[T]):
    """Result of a settled invocation (success or terminal failure).

    Attributes:
        kind: Which terminal state was reached
        value: Operation result if succeeded
        error: Taxonomy error if failed
        attempts: Operation invocations made
        elapsed: Seconds from start to settlement
    """

    kind: OutcomeKind
    value: T | None = None
    error: RetryException | None = None
    attempts: int = 0
    elapsed: float = 0.0

    @classmethod
    def success(cls, value: T, attempts: int, elapsed: float) -> Outcome[T]:
        return cls(OutcomeKind.SUCCEEDED, value=value, attempts=attempts, elapsed=elapsed)

    @classmethod
    def failure(cls, error: RetryException, attempts: int, elapsed: float) -> Outcome[T]:
        return cls(_KIND_BY_STOP[error.kind], error=error, attempts=attempts, elapsed=elapsed)

    @property
    def ok(self) -> bool:
        return self.kind == OutcomeKind.SUCCEEDED

    @property
    def cause(self) -> BaseException | None:
        """Operation error that triggered the stop, if any."""
        return self.error.cause if self.error is not None else None

    def unwrap(self) -> T:
        """Get value or raise stored error (the same object on every call)."""
        if self.error is not None:
            raise self.error
        return self.value  # type: ignore[return-value]

    def unwrap_or(self, default: T) -> T:
        return self.value if self.ok else default  # type: ignore[return-value]
