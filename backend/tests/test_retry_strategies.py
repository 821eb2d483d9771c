"""Tests for schedule retry strategies."""

import pytest

from workflow.retry_strategies import RetryPolicy, RetryStrategy


# ─── RetryStrategy creation ───

@pytest.mark.unit
class TestRetryStrategyCreation:
    def test_exponential_strategy(self):
        s = RetryStrategy.exponential(base_delay=30, max_delay=600, max_consecutive_failures=5)
        assert s.policy == RetryPolicy.EXPONENTIAL
        assert s.base_delay == 30
        assert s.max_delay == 600
        assert s.max_consecutive_failures == 5
        assert s.jitter is False

    def test_fixed_strategy(self):
        s = RetryStrategy.fixed(delay=120)
        assert s.policy == RetryPolicy.FIXED
        assert s.base_delay == 120
        assert s.max_delay == 120

    def test_linear_strategy(self):
        s = RetryStrategy.linear(base_delay=10, max_delay=100)
        assert s.policy == RetryPolicy.LINEAR

    def test_from_settings_uses_scheduler_defaults(self):
        s = RetryStrategy.from_settings()
        assert s.policy == RetryPolicy.EXPONENTIAL
        assert s.base_delay == 60
        assert s.max_delay == 86400
        assert s.max_consecutive_failures == 10

    def test_to_dict(self):
        d = RetryStrategy.exponential(base_delay=60).to_dict()
        assert d["policy"] == "exponential"
        assert d["base_delay"] == 60
        assert d["max_delay"] == 86400
        assert d["max_consecutive_failures"] == 0


# ─── Delay computation ───

@pytest.mark.unit
class TestDelayComputation:
    def test_exponential_doubles(self):
        s = RetryStrategy.exponential(base_delay=60)
        assert [s.compute_delay(n) for n in range(1, 5)] == [60, 120, 240, 480]

    def test_exponential_capped(self):
        s = RetryStrategy.exponential(base_delay=60, max_delay=86400)
        assert s.compute_delay(11) == 61440
        assert s.compute_delay(12) == 86400
        assert s.compute_delay(500) == 86400

    def test_attempt_below_one_treated_as_first(self):
        s = RetryStrategy.exponential(base_delay=60)
        assert s.compute_delay(0) == 60

    def test_fixed_constant(self):
        s = RetryStrategy.fixed(delay=300)
        assert s.compute_delay(1) == s.compute_delay(9) == 300

    def test_linear_grows_by_base(self):
        s = RetryStrategy.linear(base_delay=10, max_delay=25)
        assert [s.compute_delay(n) for n in (1, 2, 3)] == [10, 20, 25]

    def test_jitter_stays_within_cap(self):
        s = RetryStrategy.exponential(base_delay=100, max_delay=100)
        s.jitter = True
        for _ in range(20):
            assert 90 <= s.compute_delay(3) <= 100


# ─── Deactivation ───

@pytest.mark.unit
class TestDeactivation:
    def test_zero_limit_never_deactivates(self):
        s = RetryStrategy.exponential(max_consecutive_failures=0)
        assert s.should_deactivate(10_000) is False

    def test_limit_reached(self):
        s = RetryStrategy.exponential(max_consecutive_failures=3)
        assert s.should_deactivate(2) is False
        assert s.should_deactivate(3) is True
        assert s.should_deactivate(4) is True
