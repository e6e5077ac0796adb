"""
Retry utilities for handling transient directory failures.

Only connection establishment is retried. Load and sync never retry
individual object operations; a failed object is reported and picked up again
by the next sync run.
"""

import time
import logging
from typing import Callable, Any, Tuple, Type, Optional

from ldap3.core.exceptions import (
    LDAPSocketOpenError,
    LDAPSocketReceiveError,
    LDAPSessionTerminatedByServerError,
    LDAPBindError,
)

logger = logging.getLogger(__name__)

# LDAP result codes that indicate the server may accept the request later.
TRANSIENT_RESULT_CODES = (
    51,  # busy
    52,  # unavailable
    80,  # other (commonly returned by AD while a DC is starting)
)


class RetryableError(Exception):
    """Base exception for errors that should trigger retries."""
    pass


class MaxRetriesExceeded(Exception):
    """Raised when maximum retry attempts are exceeded."""

    def __init__(self, attempts: int, last_exception: Exception):
        self.attempts = attempts
        self.last_exception = last_exception
        super().__init__(f"Failed after {attempts} attempts: {last_exception}")


def retry_call(
    func: Callable,
    args: tuple = (),
    kwargs: dict = None,
    max_attempts: int = 3,
    delay: float = 1.0,
    backoff: float = 1.0,
    exceptions: Tuple[Type[Exception], ...] = (Exception,),
    on_retry: Optional[Callable[[int, Exception], None]] = None,
    retry_if: Optional[Callable[[Exception], bool]] = None
) -> Any:
    """
    Call a function with retry logic.

    Args:
        func: Function to call
        args: Positional arguments for function
        kwargs: Keyword arguments for function
        max_attempts: Maximum number of attempts
        delay: Initial delay between retries
        backoff: Delay multiplier for exponential backoff
        exceptions: Exception types to catch and retry on
        on_retry: Optional callback for retry events
        retry_if: Optional predicate; a caught exception for which it returns
            False is not retried

    Returns:
        Function result

    Raises:
        MaxRetriesExceeded: If all retry attempts fail
    """
    if kwargs is None:
        kwargs = {}

    last_exception = None
    current_delay = delay
    attempts = 0

    for attempt in range(max_attempts):
        attempts = attempt + 1
        try:
            result = func(*args, **kwargs)
            if attempt > 0:
                logger.info(f"Operation succeeded on attempt {attempt + 1}")
            return result

        except exceptions as e:
            last_exception = e

            if retry_if is not None and not retry_if(e):
                logger.debug(f"Not retrying {type(e).__name__}: {e}")
                break

            # Don't retry on last attempt
            if attempt == max_attempts - 1:
                break

            logger.debug(f"Attempt {attempt + 1} failed with {type(e).__name__}: {e}")
            logger.debug(f"Retrying in {current_delay:.1f} seconds...")

            if on_retry:
                try:
                    on_retry(attempt + 1, e)
                except Exception as callback_error:
                    logger.warning(f"Retry callback failed: {callback_error}")

            time.sleep(current_delay)
            current_delay *= backoff

    raise MaxRetriesExceeded(attempts, last_exception)


def is_retryable_error(exception: Exception) -> bool:
    """
    Determine if an exception should trigger a retry.

    Args:
        exception: Exception to check

    Returns:
        True if the exception indicates a transient failure
    """
    if isinstance(exception, (ConnectionError, TimeoutError, RetryableError)):
        return True

    if isinstance(exception, (LDAPSocketOpenError, LDAPSocketReceiveError,
                              LDAPSessionTerminatedByServerError)):
        return True

    # Wrong credentials will not get better by waiting.
    if isinstance(exception, LDAPBindError):
        return 'invalidcredentials' not in str(exception).lower().replace(' ', '')

    result_code = getattr(exception, 'result', None)
    if isinstance(result_code, int) and result_code in TRANSIENT_RESULT_CODES:
        return True

    error_msg = str(exception).lower()
    transient_patterns = [
        'timeout',
        'timed out',
        'connection reset',
        'connection refused',
        'network is unreachable',
        'temporary failure',
        'server busy',
        'unavailable'
    ]

    for pattern in transient_patterns:
        if pattern in error_msg:
            return True

    return False


def create_retry_callback(operation_name: str) -> Callable[[int, Exception], None]:
    """
    Create a standard retry callback for logging retry attempts.

    Args:
        operation_name: Name of the operation being retried

    Returns:
        Callback function for retry events
    """
    def on_retry(attempt: int, exception: Exception):
        logger.warning(f"{operation_name} failed on attempt {attempt}, "
                      f"retrying due to {type(exception).__name__}: {exception}")

    return on_retry
