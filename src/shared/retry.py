"""Bounded retry with exponential backoff for provider calls."""

import logging
import time
from typing import Any, Callable, Optional, TypeVar

from botocore.config import Config
from botocore.exceptions import (
    ClientError,
    ConnectionError as BotocoreConnectionError,
    ConnectTimeoutError,
    ReadTimeoutError,
)

logger = logging.getLogger(__name__)

T = TypeVar('T')

# Error codes AWS services return for conditions that clear on their own
TRANSIENT_ERROR_CODES = {
    'ThrottlingException',
    'Throttling',
    'TooManyRequestsException',
    'ProvisionedThroughputExceededException',
    'LimitExceededException',
    'RequestTimeout',
    'RequestTimeoutException',
    'ServiceUnavailable',
    'ServiceUnavailableException',
    'InternalServerError',
    'InternalServerException',
    'InternalFailure',
    'ModelTimeoutException',
    'ModelNotReadyException',
}


def provider_client_config(connect_timeout: int, read_timeout: int) -> Config:
    """
    Build a botocore config for provider clients.

    botocore's own retries are disabled so that ``retry_call`` is the single
    owner of the retry policy.
    """
    return Config(
        connect_timeout=connect_timeout,
        read_timeout=read_timeout,
        retries={'total_max_attempts': 1, 'mode': 'standard'}
    )


def is_transient_aws_error(error: BaseException) -> bool:
    """Return True for AWS errors worth retrying."""
    if isinstance(error, (ConnectTimeoutError, ReadTimeoutError, BotocoreConnectionError)):
        return True

    if isinstance(error, ClientError):
        code = error.response.get('Error', {}).get('Code', '')
        status = error.response.get('ResponseMetadata', {}).get('HTTPStatusCode', 0)
        return code in TRANSIENT_ERROR_CODES or status >= 500

    return False


def backoff_delay(attempt: int, base_delay: float, max_delay: float) -> float:
    """Delay before retry number ``attempt`` (1-based)."""
    return min(max_delay, base_delay * (2 ** (attempt - 1)))


class RetryExhaustedError(Exception):
    """Raised when every attempt failed with a transient error."""

    def __init__(self, attempts: int, last_error: BaseException):
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(f"Gave up after {attempts} attempts: {last_error}")


def retry_call(
    func: Callable[..., T],
    *args: Any,
    max_attempts: int = 3,
    base_delay: float = 0.5,
    max_delay: float = 8.0,
    is_transient: Callable[[BaseException], bool] = is_transient_aws_error,
    sleep: Optional[Callable[[float], None]] = None,
    **kwargs: Any
) -> T:
    """
    Call ``func`` and retry transient failures with exponential backoff.

    Args:
        func: Callable to invoke
        max_attempts: Total attempts including the first call
        base_delay: Delay before the first retry, in seconds
        max_delay: Upper bound for any single delay
        is_transient: Predicate selecting retryable errors
        sleep: Sleep function (injectable for tests)

    Returns:
        The callable's return value

    Raises:
        RetryExhaustedError: If every attempt failed transiently
        Exception: Any non-transient error, on the first occurrence
    """
    sleep = sleep or time.sleep
    attempt = 0

    while True:
        attempt += 1
        try:
            return func(*args, **kwargs)
        except Exception as e:
            if not is_transient(e):
                raise

            if attempt >= max_attempts:
                logger.error(f"{getattr(func, '__name__', 'call')} failed after {attempt} attempts: {e}")
                raise RetryExhaustedError(attempt, e) from e

            delay = backoff_delay(attempt, base_delay, max_delay)
            logger.warning(
                f"Transient error on attempt {attempt}/{max_attempts}, "
                f"retrying in {delay:.2f}s: {e}"
            )
            sleep(delay)
