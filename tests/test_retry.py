"""Tests for the retry strategy."""

from unittest.mock import Mock

import pytest

from mlstack.utils.errors import PermanentProviderError, TransientProviderError
from mlstack.utils.retry import RetryStrategy


class TestRetryStrategy:
    """Tests for RetryStrategy."""

    def test_returns_first_success(self, retry):
        func = Mock(return_value="handle")

        assert retry.execute_with_retry(func, "a", flag=True) == "handle"
        func.assert_called_once_with("a", flag=True)

    def test_retries_transient_errors(self, retry):
        func = Mock(side_effect=[TransientProviderError("unavailable"), "handle"])

        assert retry.execute_with_retry(func) == "handle"
        assert func.call_count == 2

    def test_max_retries_is_total_attempts(self, retry):
        func = Mock(side_effect=TransientProviderError("unavailable"))

        with pytest.raises(TransientProviderError):
            retry.execute_with_retry(func)
        assert func.call_count == 3

    def test_permanent_errors_are_not_retried(self, retry):
        func = Mock(side_effect=PermanentProviderError("permission denied"))

        with pytest.raises(PermanentProviderError):
            retry.execute_with_retry(func)
        assert func.call_count == 1

    def test_other_exceptions_are_not_retried(self, retry):
        func = Mock(side_effect=KeyError("x"))

        with pytest.raises(KeyError):
            retry.execute_with_retry(func)
        assert func.call_count == 1

    def test_sleeps_with_backoff(self):
        delays = []
        strategy = RetryStrategy(max_retries=4, base_delay=1.0, max_delay=3.0, jitter=False, sleep=delays.append)
        func = Mock(side_effect=TransientProviderError("unavailable"))

        with pytest.raises(TransientProviderError):
            strategy.execute_with_retry(func)

        assert delays == [1.0, 2.0, 3.0]

    def test_jitter_stays_under_ceiling(self):
        strategy = RetryStrategy(base_delay=10.0, max_delay=10.0, jitter=True)

        for attempt in range(5):
            assert strategy.get_delay(attempt) <= 10.0

    def test_at_least_one_attempt(self):
        assert RetryStrategy(max_retries=0).max_retries == 1
