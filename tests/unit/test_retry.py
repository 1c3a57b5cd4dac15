"""Unit tests for bounded provider retries."""

import pytest
from unittest.mock import Mock
from botocore.exceptions import ClientError, ReadTimeoutError
import sys
import os

# Add src directory to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', '..', 'src'))

from shared.retry import (
    RetryExhaustedError,
    backoff_delay,
    is_transient_aws_error,
    provider_client_config,
    retry_call,
)


def client_error(code, status=400):
    return ClientError(
        {'Error': {'Code': code, 'Message': code}, 'ResponseMetadata': {'HTTPStatusCode': status}},
        'DetectDocumentText'
    )


class TestRetryCall:
    """Test cases for retry_call."""

    def test_returns_first_success(self):
        func = Mock(return_value='ok')
        assert retry_call(func, 'a', key='b', sleep=Mock()) == 'ok'
        func.assert_called_once_with('a', key='b')

    def test_retries_transient_errors_with_backoff(self):
        func = Mock(side_effect=[client_error('ThrottlingException'), client_error('ServiceUnavailable', 503), 'ok'])
        sleep = Mock()

        result = retry_call(func, max_attempts=3, base_delay=0.5, max_delay=8.0, sleep=sleep)

        assert result == 'ok'
        assert [call.args[0] for call in sleep.call_args_list] == [0.5, 1.0]

    def test_non_transient_error_raised_immediately(self):
        func = Mock(side_effect=client_error('ValidationException'))

        with pytest.raises(ClientError):
            retry_call(func, sleep=Mock())

        assert func.call_count == 1

    def test_exhaustion(self):
        error = client_error('ThrottlingException')
        func = Mock(side_effect=error)

        with pytest.raises(RetryExhaustedError) as exc_info:
            retry_call(func, max_attempts=3, sleep=Mock())

        assert exc_info.value.attempts == 3
        assert exc_info.value.last_error is error
        assert func.call_count == 3


class TestHelpers:
    """Test cases for retry helpers."""

    def test_backoff_delay_capped(self):
        assert backoff_delay(1, 0.5, 8.0) == 0.5
        assert backoff_delay(3, 0.5, 8.0) == 2.0
        assert backoff_delay(10, 0.5, 8.0) == 8.0

    def test_transient_classification(self):
        assert is_transient_aws_error(client_error('ThrottlingException')) is True
        assert is_transient_aws_error(client_error('SomethingBroke', 500)) is True
        assert is_transient_aws_error(client_error('AccessDeniedException', 403)) is False
        assert is_transient_aws_error(ReadTimeoutError(endpoint_url='https://textract')) is True
        assert is_transient_aws_error(ValueError('bad')) is False

    def test_client_config_disables_botocore_retries(self):
        config = provider_client_config(5, 30)

        assert config.connect_timeout == 5
        assert config.read_timeout == 30
        assert config.retries['total_max_attempts'] == 1
