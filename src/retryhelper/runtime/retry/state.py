"""Per-invocation loop state.

AttemptState is immutable: each transition returns a new value, so retry
options receive everything they need as an argument and keep no counters
of their own.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from enum import StrEnum


class EngineState(StrEnum):
    """Retry engine lifecycle states."""
    IDLE = "idle"              # Before the first invocation
    ATTEMPTING = "attempting"  # Operation in flight
    EVALUATING = "evaluating"  # Operation failed, options deciding
    SLEEPING = "sleeping"      # Waiting out the computed delay
    SUCCEEDED = "succeeded"    # Terminal
    FAILED = "failed"          # Terminal


@dataclass(frozen=True, slots=True)
class AttemptState:
    """Snapshot of one invocation's progress.

    Attributes:
        attempt: Operation invocations so far (incremented before each run)
        started_at: Clock reading when the invocation began
        now: Clock reading at the latest check point
        delay: Delay slept before the current attempt
        error: Error raised by the current attempt, if it failed
        last_error: Most recent error of any attempt (survives next_attempt)
    """

    attempt: int = 0
    started_at: float = 0.0
    now: float = 0.0
    delay: float = 0.0
    error: BaseException | None = None
    last_error: BaseException | None = None

    @classmethod
    def begin(cls, now: float) -> AttemptState:
        return cls(started_at=now, now=now)

    @property
    def elapsed(self) -> float:
        return max(self.now - self.started_at, 0.0)

    def next_attempt(self, now: float) -> AttemptState:
        return replace(self, attempt=self.attempt + 1, now=now, error=None)

    def failed(self, error: BaseException, now: float) -> AttemptState:
        return replace(self, error=error, last_error=error, now=now)

    def with_delay(self, delay: float) -> AttemptState:
        return replace(self, delay=max(delay, 0.0))
