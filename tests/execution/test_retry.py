"""Tests for conductor.execution.retry."""

import pytest

from conductor.core.errors import DefinitionError, TaskActionError
from conductor.execution.retry import RetryPolicy


class TestNextDelay:
    def test_exponential(self):
        policy = RetryPolicy(base_delay=1.0, multiplier=2.0, max_delay=60.0)
        assert [policy.next_delay(n) for n in range(4)] == [1.0, 2.0, 4.0, 8.0]

    def test_capped_at_max_delay(self):
        policy = RetryPolicy(base_delay=10.0, multiplier=3.0, max_delay=25.0)
        assert [policy.next_delay(n) for n in range(3)] == [10.0, 25.0, 25.0]

    def test_jitter_stays_in_range(self):
        policy = RetryPolicy(base_delay=4.0, jitter=True, jitter_range=0.25)
        for _ in range(50):
            assert 3.0 <= policy.next_delay(0) <= 5.0

    def test_zero_delay(self):
        assert RetryPolicy(base_delay=0.0).next_delay(3) == 0.0

    def test_linear(self):
        policy = RetryPolicy(base_delay=2.0, multiplier=5.0, backoff="linear")
        assert [policy.next_delay(n) for n in range(4)] == [2.0, 4.0, 6.0, 8.0]

    def test_linear_capped_at_max_delay(self):
        policy = RetryPolicy(base_delay=10.0, max_delay=25.0, backoff="linear")
        assert [policy.next_delay(n) for n in range(3)] == [10.0, 20.0, 25.0]


class TestShouldRetry:
    def test_retryable_error_within_budget(self):
        policy = RetryPolicy(max_attempts=3)
        err = TaskActionError("503", retryable=True)

        assert policy.should_retry(1, err) is True
        assert policy.should_retry(2, err) is True
        assert policy.should_retry(3, err) is False

    def test_non_retryable_error(self):
        policy = RetryPolicy(max_attempts=5)
        assert policy.should_retry(1, DefinitionError("bad")) is False
        assert policy.should_retry(1, TaskActionError("400")) is False

    def test_no_retry(self):
        policy = RetryPolicy.no_retry()
        assert policy.max_attempts == 1
        assert policy.should_retry(1, TaskActionError("x", retryable=True)) is False


class TestConstruction:
    def test_rejects_zero_attempts(self):
        with pytest.raises(ValueError, match="max_attempts"):
            RetryPolicy(max_attempts=0)

    def test_rejects_negative_delay(self):
        with pytest.raises(ValueError):
            RetryPolicy(base_delay=-1)

    def test_rejects_unknown_backoff(self):
        with pytest.raises(ValueError, match="backoff"):
            RetryPolicy(backoff="fibonacci")

    def test_from_dict_ignores_unknown_keys(self):
        policy = RetryPolicy.from_dict({"max_attempts": 4, "base_delay": 0.5, "strategy": "x"})
        assert policy == RetryPolicy(max_attempts=4, base_delay=0.5)

    def test_to_dict(self):
        assert RetryPolicy(max_attempts=2).to_dict() == {
            "max_attempts": 2,
            "base_delay": 1.0,
            "multiplier": 2.0,
            "max_delay": 60.0,
            "jitter": False,
            "backoff": "exponential",
        }
