"""Tests for the retry engine: loop semantics, watchdog, cancellation."""

from __future__ import annotations

import asyncio
import time

import pytest

from conftest import Flaky, Hang, watchdog_tasks
from retryhelper import (
    BackoffDelay,
    CanRetry,
    ConstantBackoff,
    EngineState,
    LinearBackoff,
    MaxAttempts,
    MaxAttemptsExceeded,
    MaxTimeoutExceeded,
    MaxTotalTime,
    NonRetriable,
    NonRetriableErrors,
    OutcomeKind,
    RecordingClock,
    RetriableErrors,
    RetryCancelled,
    RetryHelper,
    RetryOption,
    StopKind,
)


class ErrA(Exception):
    pass


class ErrB(Exception):
    pass


class Spy(RetryOption):
    """Option recording when it is consulted."""

    __slots__ = ("checks", "contributions")

    def __init__(self) -> None:
        self.checks = 0
        self.contributions = 0

    def check(self, state):  # type: ignore[no-untyped-def]
        self.checks += 1

    def contribute(self, previous_delay, state):  # type: ignore[no-untyped-def]
        self.contributions += 1
        return previous_delay



class SlowUnwindClock:
    """System clock whose sleeps take a while to unwind once cancelled."""

    def now(self) -> float:
        return time.monotonic()

    async def sleep(self, seconds: float) -> None:
        try:
            await asyncio.sleep(seconds)
        except asyncio.CancelledError:
            await asyncio.sleep(0.05)
            raise


# ─────────────────────────────────────────────────────────────────────────────
# Success & Exhaustion
# ─────────────────────────────────────────────────────────────────────────────


class TestRunToCompletion:
    @pytest.mark.asyncio
    async def test_first_attempt_success(self, clock: RecordingClock) -> None:
        op = Flaky(0, value=7)
        helper = RetryHelper(op, options=[MaxAttempts(3)], clock=clock)
        assert await helper.run() == 7
        assert op.calls == 1
        assert clock.requested == []
        assert helper.state == EngineState.SUCCEEDED

    @pytest.mark.asyncio
    async def test_fail_twice_then_succeed_with_linear_backoff(self, clock: RecordingClock) -> None:
        op = Flaky(2, value=3)
        helper = RetryHelper(op, options=[MaxAttempts(5), BackoffDelay(LinearBackoff(0.01))], clock=clock)
        assert await helper.run() == 3
        assert op.calls == 3
        assert clock.completed == pytest.approx([0.01, 0.02])
        assert helper.last_attempt is not None and helper.last_attempt.attempt == 3

    @pytest.mark.asyncio
    @pytest.mark.parametrize("n", [1, 2, 4])
    async def test_exactly_n_invocations(self, clock: RecordingClock, n: int) -> None:
        op = Flaky(None)
        helper = RetryHelper(op, options=[MaxAttempts(n)], clock=clock)
        with pytest.raises(MaxAttemptsExceeded) as info:
            await helper.run()
        assert op.calls == n
        assert info.value.attempts == n
        assert isinstance(info.value.cause, ConnectionError)
        assert info.value.__cause__ is info.value.cause
        # Vetoed rounds never sleep
        assert len(clock.requested) == n - 1

    @pytest.mark.asyncio
    async def test_operation_arguments_passed_every_attempt(self, clock: RecordingClock) -> None:
        seen: list[tuple[int, str]] = []

        async def op(x: int, *, label: str) -> int:
            seen.append((x, label))
            if len(seen) < 2:
                raise ErrA()
            return x * 2

        helper = RetryHelper(op, 21, label="q", options=[MaxAttempts(3)], clock=clock)
        assert await helper.run() == 42
        assert seen == [(21, "q"), (21, "q")]

    @pytest.mark.asyncio
    async def test_sync_operation(self) -> None:
        assert await RetryHelper(lambda: "sync", options=[MaxAttempts(1)]).run() == "sync"

    @pytest.mark.asyncio
    async def test_nested_helper_failure_is_retried_by_outer(self, clock: RecordingClock) -> None:
        inner_calls = 0

        async def inner() -> None:
            nonlocal inner_calls
            inner_calls += 1
            raise ErrA()

        async def outer_op() -> None:
            await RetryHelper(inner, options=[MaxAttempts(2)], clock=clock).run()

        with pytest.raises(MaxAttemptsExceeded) as info:
            await RetryHelper(outer_op, options=[MaxAttempts(3)], clock=clock).run()
        assert inner_calls == 6
        assert isinstance(info.value.cause, MaxAttemptsExceeded)


# ─────────────────────────────────────────────────────────────────────────────
# Evaluation Order
# ─────────────────────────────────────────────────────────────────────────────


class TestEvaluation:
    @pytest.mark.asyncio
    async def test_allow_list_miss_stops_after_one_attempt(self, clock: RecordingClock) -> None:
        op = Flaky(None, error=ErrB)
        helper = RetryHelper(op, options=[RetriableErrors(ErrA), MaxAttempts(5)], clock=clock)
        with pytest.raises(NonRetriable) as info:
            await helper.run()
        assert op.calls == 1
        assert isinstance(info.value.cause, ErrB)
        assert clock.requested == []

    @pytest.mark.asyncio
    async def test_deny_list_hit_stops_immediately(self, clock: RecordingClock) -> None:
        op = Flaky(None, error=ErrB)
        helper = RetryHelper(op, options=[NonRetriableErrors(ErrB), MaxAttempts(5)], clock=clock)
        outcome = await helper.settle()
        assert outcome.kind == OutcomeKind.NON_RETRIABLE
        assert op.calls == 1

    @pytest.mark.asyncio
    async def test_first_raising_check_short_circuits(self, clock: RecordingClock) -> None:
        spy = Spy()
        helper = RetryHelper(Flaky(None), options=[MaxAttempts(1), spy], clock=clock)
        with pytest.raises(MaxAttemptsExceeded):
            await helper.run()
        assert (spy.checks, spy.contributions) == (0, 0)

    @pytest.mark.asyncio
    async def test_contributions_run_after_all_checks(self, clock: RecordingClock) -> None:
        spy = Spy()
        helper = RetryHelper(Flaky(2), options=[spy, MaxAttempts(5)], clock=clock)
        await helper.run()
        assert (spy.checks, spy.contributions) == (2, 2)

    @pytest.mark.asyncio
    async def test_fold_starts_from_previous_delay(self, clock: RecordingClock) -> None:
        class Double(RetryOption):
            __slots__ = ()

            def contribute(self, previous_delay, state):  # type: ignore[no-untyped-def]
                return previous_delay * 2 or 0.001

        helper = RetryHelper(Flaky(3), options=[Double(), MaxAttempts(5)], clock=clock)
        await helper.run()
        assert clock.completed == pytest.approx([0.001, 0.002, 0.004])

    @pytest.mark.asyncio
    async def test_negative_contribution_clamped_to_zero(self, clock: RecordingClock) -> None:
        class Negative(RetryOption):
            __slots__ = ()

            def contribute(self, previous_delay, state):  # type: ignore[no-untyped-def]
                return -5.0

        await RetryHelper(Flaky(1), options=[Negative(), MaxAttempts(3)], clock=clock).run()
        assert clock.requested == [0.0]

    @pytest.mark.asyncio
    async def test_predicate_bug_propagates_unchanged(self, clock: RecordingClock) -> None:
        def broken(error: BaseException) -> bool:
            raise KeyError("typo")

        helper = RetryHelper(Flaky(None), options=[CanRetry(broken), MaxAttempts(3)], clock=clock)
        with pytest.raises(KeyError):
            await helper.run()
        assert watchdog_tasks() == []


# ─────────────────────────────────────────────────────────────────────────────
# Time Budget & Watchdog
# ─────────────────────────────────────────────────────────────────────────────


class TestTimeBudget:
    @pytest.mark.asyncio
    async def test_hung_attempt_aborted_by_watchdog(self, clock: RecordingClock) -> None:
        op = Hang()
        helper = RetryHelper(op, options=[MaxTotalTime(0.05)], clock=clock)
        started = time.monotonic()
        with pytest.raises(MaxTimeoutExceeded) as info:
            await helper.run()
        took = time.monotonic() - started

        assert 0.04 <= took < 0.5
        assert info.value.attempts == 1
        assert info.value.elapsed >= 0.04
        assert clock.completed == [0.05]

        await asyncio.sleep(0.01)
        assert op.cancelled == 1
        assert watchdog_tasks() == []

    @pytest.mark.asyncio
    async def test_fast_failures_bounded_by_total_time(self, clock: RecordingClock) -> None:
        op = Flaky(None)
        helper = RetryHelper(op, options=[MaxTotalTime(0.05)], clock=clock)
        started = time.monotonic()
        with pytest.raises(MaxTimeoutExceeded):
            await helper.run()
        assert time.monotonic() - started < 0.5
        calls = op.calls
        assert calls > 1

        await asyncio.sleep(0.06)
        assert op.calls == calls
        assert watchdog_tasks() == []

    @pytest.mark.asyncio
    async def test_watchdog_interrupts_long_sleep(self, clock: RecordingClock) -> None:
        op = Flaky(None)
        helper = RetryHelper(op, options=[MaxTotalTime(0.05), BackoffDelay(ConstantBackoff(10.0))], clock=clock)
        started = time.monotonic()
        outcome = await helper.settle()
        assert outcome.kind == OutcomeKind.TIMED_OUT
        assert time.monotonic() - started < 0.5
        assert op.calls == 1
        assert isinstance(outcome.cause, ConnectionError)

        await asyncio.sleep(0.01)
        assert 10.0 in clock.cancelled

    @pytest.mark.asyncio
    async def test_timeout_cause_is_earlier_attempt_error(self, clock: RecordingClock) -> None:
        calls = 0

        async def fail_then_hang() -> None:
            nonlocal calls
            calls += 1
            if calls == 1:
                raise ConnectionError("reset")
            await asyncio.Event().wait()

        helper = RetryHelper(fail_then_hang, options=[MaxTotalTime(0.05)], clock=clock)
        with pytest.raises(MaxTimeoutExceeded) as info:
            await helper.run()
        assert info.value.attempts == 2
        assert isinstance(info.value.cause, ConnectionError)

    @pytest.mark.asyncio
    async def test_success_disarms_watchdog(self, clock: RecordingClock) -> None:
        helper = RetryHelper(Flaky(0), options=[MaxTotalTime(5.0)], clock=clock)
        assert await helper.run() == "ok"
        assert clock.cancelled == [5.0]
        assert watchdog_tasks() == []

    @pytest.mark.asyncio
    async def test_no_watchdog_without_budget(self, clock: RecordingClock) -> None:
        await RetryHelper(Flaky(0), options=[MaxAttempts(2)], clock=clock).run()
        assert clock.requested == []

    def test_smallest_budget_wins(self) -> None:
        helper = RetryHelper(Flaky(0), options=[MaxTotalTime(3.0), MaxTotalTime(1.5)])
        assert helper.time_budget == 1.5
        assert RetryHelper(Flaky(0)).time_budget is None


# ─────────────────────────────────────────────────────────────────────────────
# Cancellation
# ─────────────────────────────────────────────────────────────────────────────


class TestCancellation:
    @pytest.mark.asyncio
    async def test_cancel_stops_in_flight_attempt(self) -> None:
        op = Hang()
        helper = RetryHelper(op, options=[MaxAttempts(5)])
        task = asyncio.create_task(helper.run())
        await asyncio.sleep(0.01)

        assert helper.state == EngineState.ATTEMPTING
        assert helper.cancel("shutting down") == 1
        with pytest.raises(RetryCancelled, match="shutting down") as info:
            await task
        assert info.value.failure.kind == StopKind.CANCELLED
        assert helper.state == EngineState.FAILED

        await asyncio.sleep(0.01)
        assert op.cancelled == 1

    @pytest.mark.asyncio
    async def test_cancel_during_sleep(self, clock: RecordingClock) -> None:
        helper = RetryHelper(Flaky(None), options=[BackoffDelay(ConstantBackoff(10.0))], clock=clock)
        task = asyncio.create_task(helper.settle())
        await asyncio.sleep(0.01)
        assert helper.state == EngineState.SLEEPING

        helper.cancel()
        outcome = await task
        assert outcome.kind == OutcomeKind.CANCELLED
        assert isinstance(outcome.cause, ConnectionError)

    @pytest.mark.asyncio
    async def test_cancel_without_invocation(self) -> None:
        assert RetryHelper(Flaky(0)).cancel() == 0

    @pytest.mark.asyncio
    async def test_external_task_cancellation_propagates(self, clock: RecordingClock) -> None:
        op = Hang()
        helper = RetryHelper(op, options=[MaxTotalTime(5.0)], clock=clock)
        task = asyncio.create_task(helper.run())
        await asyncio.sleep(0.01)

        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
        await asyncio.sleep(0.01)
        assert op.cancelled == 1
        assert watchdog_tasks() == []

    @pytest.mark.asyncio
    async def test_cancellation_while_disarming_watchdog_propagates(self) -> None:
        async def quick() -> str:
            await asyncio.sleep(0.005)
            return "ok"

        helper = RetryHelper(quick, options=[MaxTotalTime(5.0)], clock=SlowUnwindClock())
        task = asyncio.create_task(helper.run())
        await asyncio.sleep(0.02)

        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task


# ─────────────────────────────────────────────────────────────────────────────
# Concurrency & Outcomes
# ─────────────────────────────────────────────────────────────────────────────


class TestInvocations:
    @pytest.mark.asyncio
    async def test_concurrent_runs_count_independently(self, clock: RecordingClock) -> None:
        op = Flaky(None)
        helper = RetryHelper(op, options=[MaxAttempts(3), BackoffDelay(ConstantBackoff(0.001))], clock=clock)
        outcomes = await asyncio.gather(helper.settle(), helper.settle())
        assert [o.attempts for o in outcomes] == [3, 3]
        assert all(o.kind == OutcomeKind.BUDGET_EXHAUSTED for o in outcomes)
        assert op.calls == 6

    @pytest.mark.asyncio
    async def test_helper_is_reusable(self, clock: RecordingClock) -> None:
        op = Flaky(1)
        helper = RetryHelper(op, options=[MaxAttempts(2)], clock=clock)
        assert await helper.run() == "ok"
        assert await helper.run() == "ok"
        assert op.calls == 3

    @pytest.mark.asyncio
    async def test_settle_success_outcome(self, clock: RecordingClock) -> None:
        outcome = await RetryHelper(Flaky(1, value=5), options=[MaxAttempts(3)], clock=clock).settle()
        assert outcome.ok and outcome.value == 5 and outcome.attempts == 2
        assert outcome.unwrap() == 5
        assert outcome.cause is None

    @pytest.mark.asyncio
    async def test_settle_failure_outcome_unwraps_same_error(self, clock: RecordingClock) -> None:
        outcome = await RetryHelper(Flaky(None), options=[MaxAttempts(2)], clock=clock).settle()
        assert not outcome.ok
        assert outcome.unwrap_or("fallback") == "fallback"
        with pytest.raises(MaxAttemptsExceeded) as first:
            outcome.unwrap()
        with pytest.raises(MaxAttemptsExceeded) as second:
            outcome.unwrap()
        assert first.value is second.value is outcome.error


class TestBuilder:
    def test_with_methods_append_options(self) -> None:
        base = RetryHelper(Flaky(0), name="fetch")
        helper = (
            base.with_nonretriable(ErrB)
            .with_retriable(ErrA, "TIMEOUT")
            .with_max_attempts(4)
            .with_max_total_time(2.0)
            .with_backoff(LinearBackoff(0.1))
            .with_jitter(0.0, 0.1)
            .with_can_retry(lambda e: True)
        )
        assert base.options == ()
        assert [type(o).__name__ for o in helper.options] == [
            "NonRetriableErrors", "RetriableErrors", "MaxAttempts", "MaxTotalTime",
            "BackoffDelay", "JitterDelay", "CanRetry",
        ]
        assert helper.name == "fetch"
        assert helper.time_budget == 2.0

    def test_rejects_non_option(self) -> None:
        with pytest.raises(TypeError):
            RetryHelper(Flaky(0), options=[3])  # type: ignore[list-item]

    def test_default_name_from_operation(self) -> None:
        async def fetch_quote() -> None: ...

        assert RetryHelper(fetch_quote).name.endswith("fetch_quote")
        assert RetryHelper(Flaky(0)).state == EngineState.IDLE
