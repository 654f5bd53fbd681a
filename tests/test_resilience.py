"""
Tests for retry_with_backoff around provider calls.

Covers:
- RetryConfig defaults, from_dict and capped exponential delays
- transient HTTP statuses and network errors are retried
- client errors fail on the first attempt
- retries stop after max_retries
"""

from unittest.mock import MagicMock

import httplib2
import pytest
from googleapiclient.errors import HttpError

from blockos.collectors.resilience import RetryConfig, is_retryable, retry_with_backoff


def http_error(status: int) -> HttpError:
    return HttpError(httplib2.Response({"status": str(status)}), b"")


# =============================================================================
# RETRYCONFIG TESTS
# =============================================================================


class TestRetryConfig:
    def test_defaults(self):
        config = RetryConfig()
        assert config.max_retries == 3
        assert config.base_delay == 1.0
        assert config.max_delay == 30.0
        assert config.exponential_base == 2.0

    def test_from_dict_partial(self):
        config = RetryConfig.from_dict({"max_retries": 5})
        assert config.max_retries == 5
        assert config.base_delay == 1.0

    def test_from_none(self):
        assert RetryConfig.from_dict(None) == RetryConfig()

    def test_delay_is_capped(self):
        config = RetryConfig(base_delay=1.0, max_delay=5.0)
        assert [config.delay_for(n) for n in range(4)] == [1.0, 2.0, 4.0, 5.0]


# =============================================================================
# RETRY TESTS
# =============================================================================


class TestIsRetryable:
    @pytest.mark.parametrize("status", [429, 500, 502, 503, 504])
    def test_transient_statuses(self, status):
        assert is_retryable(http_error(status))

    @pytest.mark.parametrize("status", [400, 401, 403, 404])
    def test_client_errors(self, status):
        assert not is_retryable(http_error(status))

    def test_network_errors(self):
        assert is_retryable(ConnectionResetError())
        assert is_retryable(TimeoutError())


class TestRetryWithBackoff:
    def test_success_first_try(self):
        func = MagicMock(return_value="ok")
        sleep = MagicMock()
        assert retry_with_backoff(func, RetryConfig(), sleep=sleep) == "ok"
        assert func.call_count == 1
        sleep.assert_not_called()

    def test_recovers_after_transient_errors(self):
        func = MagicMock(side_effect=[http_error(503), OSError("reset"), "ok"])
        sleep = MagicMock()

        assert retry_with_backoff(func, RetryConfig(base_delay=1.0), sleep=sleep) == "ok"
        assert func.call_count == 3
        delays = [call.args[0] for call in sleep.call_args_list]
        assert 1.0 <= delays[0] <= 1.1
        assert 2.0 <= delays[1] <= 2.2

    def test_gives_up_after_max_retries(self):
        func = MagicMock(side_effect=http_error(500))
        sleep = MagicMock()

        with pytest.raises(HttpError):
            retry_with_backoff(func, RetryConfig(max_retries=2), sleep=sleep)
        assert func.call_count == 3
        assert sleep.call_count == 2

    def test_client_error_not_retried(self):
        func = MagicMock(side_effect=http_error(404))
        sleep = MagicMock()

        with pytest.raises(HttpError):
            retry_with_backoff(func, RetryConfig(), sleep=sleep)
        assert func.call_count == 1
        sleep.assert_not_called()

    def test_other_exceptions_propagate(self):
        func = MagicMock(side_effect=KeyError("items"))
        with pytest.raises(KeyError):
            retry_with_backoff(func, RetryConfig(), sleep=MagicMock())
        assert func.call_count == 1
