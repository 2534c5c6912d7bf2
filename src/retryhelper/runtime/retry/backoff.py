"""Backoff strategies for retry delays.

Provides pluggable delay calculation for retry attempts:
- LinearBackoff: delay + increment * (attempt - 1), capped
- ExponentialBackoff: static base ** exponent, or growing base ** attempt
- ConstantBackoff: Fixed delay
- Jitter: Uniform random offset added on top of a computed delay

Attempt numbers are 1-indexed (delay after the first failure = attempt 1).
Policies are frozen and pure; delays() gives each caller its own
monotonically advancing sequence so one policy can serve many loops.
"""

from __future__ import annotations

import math
import random
from collections.abc import Iterator
from dataclasses import dataclass, field
from itertools import count
from typing import Protocol, runtime_checkable

from retryhelper.foundation.errors import InvalidConfiguration


@runtime_checkable
class Backoff(Protocol):
    """Protocol for backoff delay calculation."""

    def delay(self, attempt: int) -> float:
        """Calculate delay in seconds after the given failed attempt.

        Args:
            attempt: 1-indexed attempt number

        Returns:
            Non-negative delay in seconds
        """
        ...


def delays(policy: Backoff) -> Iterator[float]:
    """Yield policy.delay(1), policy.delay(2), ... from a private counter."""
    for attempt in count(1):
        yield policy.delay(attempt)


def _require_non_negative(**values: float | None) -> None:
    for name, v in values.items():
        if v is not None and v < 0:
            raise InvalidConfiguration(f"{name} must be non-negative, got {v}")


def _require_attempt(attempt: int) -> None:
    if attempt < 1:
        raise ValueError(f"attempt must be >= 1, got {attempt}")


def _cap(d: float, max_delay: float | None) -> float:
    return min(d, max_delay) if max_delay is not None else d


@dataclass(frozen=True, slots=True)
class LinearBackoff:
    """Linear backoff with optional cap.

    Delay = min(delay_seconds + increment * (attempt - 1), max_delay)

    With the default increment (equal to delay_seconds) this is
    attempt * delay_seconds:
    LinearBackoff(0.1) gives 0.1, 0.2, 0.3, ...

    Attributes:
        delay_seconds: Delay after the first failure in seconds
        increment: Growth per further attempt (default: delay_seconds)
        max_delay: Maximum delay cap (default: uncapped)
    """

    delay_seconds: float
    increment: float | None = None
    max_delay: float | None = None

    def __post_init__(self) -> None:
        _require_non_negative(delay=self.delay_seconds, increment=self.increment, max_delay=self.max_delay)

    def delay(self, attempt: int) -> float:
        _require_attempt(attempt)
        step = self.delay_seconds if self.increment is None else self.increment
        return _cap(self.delay_seconds + step * (attempt - 1), self.max_delay)

    def delays(self) -> Iterator[float]:
        return delays(self)


@dataclass(frozen=True, slots=True)
class ExponentialBackoff:
    """Exponential backoff.

    With a fixed exponent the delay is the constant base ** exponent for
    every attempt: ExponentialBackoff(2, 5) always gives 32. Without an
    exponent the delay grows as base ** attempt (2, 4, 8, ... for base=2),
    so base must be at least 1.

    Attributes:
        base: Base of the power, in seconds
        exponent: Fixed exponent (None = use the attempt number)
        max_delay: Maximum delay cap (default: uncapped)
    """

    base: float
    exponent: float | None = None
    max_delay: float | None = None

    def __post_init__(self) -> None:
        _require_non_negative(base=self.base, exponent=self.exponent, max_delay=self.max_delay)
        if self.exponent is None and self.base < 1:
            raise InvalidConfiguration(f"base must be >= 1 when the delay grows per attempt, got {self.base}")

    @property
    def is_static(self) -> bool:
        return self.exponent is not None

    def delay(self, attempt: int) -> float:
        _require_attempt(attempt)
        power = self.exponent if self.exponent is not None else attempt
        try:
            d = float(self.base ** power)
        except OverflowError:
            d = float("inf")
        return _cap(d, self.max_delay)

    def delays(self) -> Iterator[float]:
        return delays(self)


@dataclass(frozen=True, slots=True)
class ConstantBackoff:
    """Fixed delay between retries.

    Simple strategy for rate-limited APIs with known cooldown.
    """

    delay_seconds: float = 1.0

    def __post_init__(self) -> None:
        _require_non_negative(delay=self.delay_seconds)

    def delay(self, attempt: int) -> float:
        _require_attempt(attempt)
        return self.delay_seconds

    def delays(self) -> Iterator[float]:
        return delays(self)


@dataclass(frozen=True, slots=True)
class Jitter:
    """Uniform random offset in [min_jitter, max_jitter) added to a delay.

    Jitter spreads out retries from independent callers that failed at the
    same moment. It reduces collisions; it does not coordinate callers.

    Attributes:
        min_jitter: Lower bound in seconds (inclusive)
        max_jitter: Upper bound in seconds (exclusive)
        rng: Random source (default: module-level random)

    Raises:
        InvalidConfiguration: If max_jitter <= min_jitter or a bound is negative
    """

    min_jitter: float
    max_jitter: float
    rng: random.Random | None = field(default=None, compare=False, repr=False)

    def __post_init__(self) -> None:
        _require_non_negative(min_jitter=self.min_jitter, max_jitter=self.max_jitter)
        if self.max_jitter <= self.min_jitter:
            raise InvalidConfiguration(
                f"max_jitter ({self.max_jitter}) must exceed min_jitter ({self.min_jitter})"
            )

    def offset(self) -> float:
        # Rounding can land on max_jitter even though random() < 1
        r = (self.rng or random).random()
        return min(self.min_jitter + r * (self.max_jitter - self.min_jitter), _below(self.max_jitter))

    def apply(self, previous: float) -> float:
        return previous + self.offset()


def _below(x: float) -> float:
    """Largest float strictly less than x."""
    return math.nextafter(x, float("-inf"))
