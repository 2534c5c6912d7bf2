"""Structured concurrency primitives for the retry loop.

Key Components:
    - CancelToken: Per-invocation, resolve-once cancellation signal
    - race_token: Race a step against a token, first observed wins
    - abandon/cancel_and_wait: Cleanup of losing or owned tasks
    - checkpoint: Cooperative cancellation point

Design Philosophy:
    - Structured: Timers and in-flight steps don't outlive their invocation
    - Explicit: Cancellation travels through a token, never a global emitter
    - Zero external dependencies: Pure asyncio (Python 3.11+)
"""

from __future__ import annotations

from .task import (
    CancelledByToken,
    CancelToken,
    TokenState,
    abandon,
    cancel_and_wait,
    checkpoint,
)
from .wait import race_token

__all__ = [
    "CancelToken",
    "CancelledByToken",
    "TokenState",
    "abandon",
    "cancel_and_wait",
    "checkpoint",
    "race_token",
]
