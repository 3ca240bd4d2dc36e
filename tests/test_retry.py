"""
Tests for RetryPolicy backoff
"""

import pytest
from pydantic import ValidationError

from vehicle_completion.config import Settings
from vehicle_completion.services.retry import RetryPolicy


class Flaky:
    def __init__(self, failures, error=ConnectionError("reset")):
        self.failures = failures
        self.error = error
        self.calls = 0

    def __call__(self):
        self.calls += 1
        if self.calls <= self.failures:
            raise self.error
        return "ok"


@pytest.fixture
def sleeps():
    return []


class TestRetryPolicy:

    def test_default_schedule(self):
        assert RetryPolicy().delays() == [1.0, 2.0]

    def test_delay_capped(self):
        policy = RetryPolicy(max_attempts=5, base_delay=1.0, max_delay=3.0)
        assert policy.delays() == [1.0, 2.0, 3.0, 3.0]

    def test_succeeds_after_transient_failures(self, sleeps):
        policy = RetryPolicy(sleep=sleeps.append)
        operation = Flaky(failures=2)

        outcome = policy.run(operation, lambda e: True)

        assert outcome.succeeded is True
        assert outcome.value == "ok"
        assert outcome.attempts == 3
        assert sleeps == [1.0, 2.0]

    def test_non_retryable_stops_immediately(self, sleeps):
        policy = RetryPolicy(sleep=sleeps.append)
        operation = Flaky(failures=5, error=ValueError("bad key"))

        outcome = policy.run(operation, lambda e: not isinstance(e, ValueError))

        assert outcome.succeeded is False
        assert outcome.attempts == 1
        assert isinstance(outcome.error, ValueError)
        assert sleeps == []

    def test_gives_up_after_max_attempts(self, sleeps):
        policy = RetryPolicy(sleep=sleeps.append)
        operation = Flaky(failures=10)

        outcome = policy.run(operation, lambda e: True)

        assert outcome.succeeded is False
        assert outcome.attempts == 3
        assert operation.calls == 3
        assert isinstance(outcome.error, ConnectionError)

    def test_no_retry_past_deadline(self, sleeps):
        now = [100.0]
        policy = RetryPolicy(sleep=sleeps.append, clock=lambda: now[0])
        operation = Flaky(failures=10)

        outcome = policy.run(operation, lambda e: True, deadline=101.5)

        # 1s backoff fits before the deadline, the following 2s does not
        assert outcome.succeeded is False
        assert outcome.attempts == 2
        assert sleeps == [1.0]


class TestProviderBudget:

    def test_default_fetch_deadline_below_lock_timeout(self):
        config = Settings()

        assert config.provider_fetch_deadline_seconds < config.lock_timeout_seconds

    @pytest.mark.parametrize("overrides", [
        {"provider_fetch_deadline_seconds": 30.0, "lock_timeout_seconds": 30.0},
        {"provider_timeout_seconds": 25.0, "provider_fetch_deadline_seconds": 20.0},
    ])
    def test_inconsistent_budget_rejected(self, overrides):
        with pytest.raises(ValidationError):
            Settings(**overrides)
