"""Shared fixtures for retryhelper tests."""

from __future__ import annotations

import asyncio
import logging

import pytest

from retryhelper import RecordingClock, clear_settings_cache


class Flaky:
    """Async operation failing a fixed number of times before succeeding.

    Pass failures=None to fail forever.
    """

    def __init__(self, failures: int | None, value: object = "ok", error: type[BaseException] = ConnectionError) -> None:
        self.failures = failures
        self.value = value
        self.error = error
        self.calls = 0

    async def __call__(self) -> object:
        self.calls += 1
        await asyncio.sleep(0)
        if self.failures is None or self.calls <= self.failures:
            raise self.error(f"attempt {self.calls} failed")
        return self.value


class Hang:
    """Async operation that never resolves on its own."""

    def __init__(self) -> None:
        self.calls = 0
        self.cancelled = 0

    async def __call__(self) -> object:
        self.calls += 1
        try:
            await asyncio.Event().wait()
        except asyncio.CancelledError:
            self.cancelled += 1
            raise
        return None  # pragma: no cover


def watchdog_tasks() -> list[asyncio.Task[object]]:
    return [t for t in asyncio.all_tasks() if t.get_name().startswith("watchdog:") and not t.done()]


@pytest.fixture
def clock() -> RecordingClock:
    return RecordingClock()


@pytest.fixture(autouse=True)
def fresh_settings() -> object:
    """Reload settings from the (test-patched) environment."""
    clear_settings_cache()
    yield
    clear_settings_cache()


@pytest.fixture(autouse=True)
def reset_logging() -> object:
    """Undo configure_logging() so caplog sees records."""
    yield
    logger = logging.getLogger("retryhelper")
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
    logger.setLevel(logging.NOTSET)
    logger.propagate = True
