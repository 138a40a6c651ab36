# tests/engine/test_transient.py
"""Tests for fault classification, backoff and the connection-level retry."""

import random

import pytest
from structlog.testing import capture_logs

from datamanager.contracts.errors import AuthenticationExpiredError, ServiceFault
from datamanager.core.config import RetrySettings
from datamanager.core.logging import JobLogger
from datamanager.engine.transient import (
    CONCURRENCY_LIMIT_EXCEEDED,
    RATE_LIMIT_EXCEEDED,
    TIME_LIMIT_EXCEEDED,
    BackoffPolicy,
    apply_backoff,
    call_with_transient_retry,
    is_transient,
)
from tests.fixtures.factories import SleepRecorder


class TestIsTransient:
    @pytest.mark.parametrize("code", [RATE_LIMIT_EXCEEDED, TIME_LIMIT_EXCEEDED, CONCURRENCY_LIMIT_EXCEEDED])
    def test_allow_listed_codes(self, code: int) -> None:
        assert is_transient(ServiceFault(code, "limit"))

    def test_auth_expired_is_transient(self) -> None:
        assert is_transient(AuthenticationExpiredError("expired"))

    def test_other_fault_codes_are_permanent(self) -> None:
        assert not is_transient(ServiceFault(-2147220969, "Does Not Exist"))

    def test_plain_exceptions_are_permanent(self) -> None:
        assert not is_transient(ValueError("bad input"))


class TestBackoffPolicy:
    def test_production_range(self) -> None:
        policy = BackoffPolicy.from_settings(RetrySettings())

        assert (policy.min_seconds, policy.max_seconds) == (30.0, 60.0)

    def test_delay_stays_within_bounds(self) -> None:
        policy = BackoffPolicy(30.0, 60.0)
        rng = random.Random(7)

        delays = [policy.next_delay(rng) for _ in range(500)]

        assert all(30.0 <= d <= 60.0 for d in delays)

    def test_degenerate_range(self) -> None:
        assert BackoffPolicy(5.0, 5.0).next_delay() == 5.0

    @pytest.mark.parametrize(("low", "high"), [(-1.0, 5.0), (10.0, 5.0)])
    def test_invalid_range(self, low: float, high: float) -> None:
        with pytest.raises(ValueError):
            BackoffPolicy(low, high)

    def test_apply_backoff_sleeps_and_logs(self, sleep: SleepRecorder) -> None:
        with capture_logs() as logs:
            delay = apply_backoff(BackoffPolicy(1.0, 2.0), JobLogger(), ServiceFault(RATE_LIMIT_EXCEEDED, "slow"), sleep=sleep)

        assert sleep.delays == [delay]
        assert 1.0 <= delay <= 2.0
        assert "API Limit reached!" in logs[0]["event"]
        assert logs[0]["error_code"] == RATE_LIMIT_EXCEEDED


class TestCallWithTransientRetry:
    def test_succeeds_after_transient_faults(self, sleep: SleepRecorder) -> None:
        calls = 0

        def flaky() -> str:
            nonlocal calls
            calls += 1
            if calls < 3:
                raise ServiceFault(RATE_LIMIT_EXCEEDED, "slow down")
            return "ok"

        result = call_with_transient_retry(flaky, max_attempts=3, policy=BackoffPolicy(30, 60), logger=JobLogger(), sleep=sleep)

        assert result == "ok"
        assert calls == 3
        assert len(sleep.delays) == 2
        assert all(30 <= d <= 60 for d in sleep.delays)

    def test_exhaustion_reraises_original_error(self, sleep: SleepRecorder) -> None:
        fault = ServiceFault(CONCURRENCY_LIMIT_EXCEEDED, "busy")
        calls = 0

        def always_busy() -> None:
            nonlocal calls
            calls += 1
            raise fault

        with pytest.raises(ServiceFault) as exc_info:
            call_with_transient_retry(always_busy, max_attempts=3, policy=BackoffPolicy(0, 0), logger=JobLogger(), sleep=sleep)

        assert exc_info.value is fault
        assert calls == 3
        assert exc_info.value.retry_budget_exhausted

    def test_permanent_error_not_retried(self, sleep: SleepRecorder) -> None:
        calls = 0

        def broken() -> None:
            nonlocal calls
            calls += 1
            raise KeyError("missing")

        with pytest.raises(KeyError):
            call_with_transient_retry(broken, max_attempts=3, policy=BackoffPolicy(0, 0), logger=JobLogger(), sleep=sleep)

        assert calls == 1
        assert sleep.delays == []


    def test_success_leaves_fault_unflagged(self, sleep: SleepRecorder) -> None:
        fault = ServiceFault(RATE_LIMIT_EXCEEDED, "slow")
        calls = 0

        def recovers() -> str:
            nonlocal calls
            calls += 1
            if calls == 1:
                raise fault
            return "ok"

        call_with_transient_retry(recovers, max_attempts=3, policy=BackoffPolicy(0, 0), logger=JobLogger(), sleep=sleep)

        assert not fault.retry_budget_exhausted

    def test_permanent_fault_unflagged(self, sleep: SleepRecorder) -> None:
        fault = ServiceFault(-2147220969, "Does Not Exist")

        def missing() -> None:
            raise fault

        with pytest.raises(ServiceFault):
            call_with_transient_retry(missing, max_attempts=3, policy=BackoffPolicy(0, 0), logger=JobLogger(), sleep=sleep)

        assert not fault.retry_budget_exhausted

    def test_auth_expiry_reconnects_without_sleeping(self, sleep: SleepRecorder) -> None:
        reconnects: list[int] = []
        calls = 0

        def expiring() -> str:
            nonlocal calls
            calls += 1
            if calls == 1:
                raise AuthenticationExpiredError("token expired")
            return "ok"

        result = call_with_transient_retry(
            expiring,
            max_attempts=3,
            policy=BackoffPolicy(30, 60),
            logger=JobLogger(),
            on_auth_expired=lambda: reconnects.append(calls),
            sleep=sleep,
        )

        assert result == "ok"
        assert reconnects == [1]
        assert sleep.delays == [0.0]

    def test_auth_expiry_without_hook_backs_off(self, sleep: SleepRecorder) -> None:
        calls = 0

        def expiring() -> str:
            nonlocal calls
            calls += 1
            if calls == 1:
                raise AuthenticationExpiredError("token expired")
            return "ok"

        call_with_transient_retry(expiring, max_attempts=2, policy=BackoffPolicy(3, 3), logger=JobLogger(), sleep=sleep)

        assert sleep.delays == [3.0]

    def test_rejects_zero_attempts(self) -> None:
        with pytest.raises(ValueError):
            call_with_transient_retry(lambda: None, max_attempts=0, policy=BackoffPolicy(), logger=JobLogger())
