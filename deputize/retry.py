"""
Retries for PagerDuty roster requests.

Only the roster fetch is retried: it happens before any sink is touched.
Sink calls are never retried here; the next scheduled run picks up whatever
a failed pass left behind.
"""

import time
import logging
from typing import Callable, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar('T')

# Substrings of error messages from http.client and ssl that mean "try again"
TRANSIENT_MESSAGES = ('timed out', 'timeout', 'connection reset', 'connection refused',
                      'temporarily unavailable')


class MaxRetriesExceeded(Exception):
    """Raised when a request still fails after its last attempt."""

    def __init__(self, attempts: int, last_exception: Exception):
        self.attempts = attempts
        self.last_exception = last_exception
        super().__init__(f"Failed after {attempts} attempts: {last_exception}")


def is_retryable_error(exception: Exception) -> bool:
    """True for network failures, HTTP 429 and HTTP 5xx."""
    if isinstance(exception, (ConnectionError, TimeoutError)):
        return True

    status_code = getattr(exception, 'status_code', None)
    if status_code is not None:
        return status_code == 429 or 500 <= status_code < 600

    message = str(exception).lower()
    return any(fragment in message for fragment in TRANSIENT_MESSAGES)


def call_with_retries(request: Callable[[], T], description: str, attempts: int = 1,
                      wait_seconds: float = 0,
                      is_transient: Callable[[Exception], bool] = is_retryable_error) -> T:
    """
    Run `request` until it succeeds or `attempts` transient failures occur.

    A failure that `is_transient` rejects is raised immediately, unchanged.

    Raises:
        MaxRetriesExceeded: After the last transient failure
    """
    for attempt in range(1, attempts + 1):
        try:
            return request()
        except Exception as e:
            if not is_transient(e):
                raise
            if attempt == attempts:
                raise MaxRetriesExceeded(attempts, e)
            logger.warning(f"{description} failed on attempt {attempt}/{attempts}: {e}; "
                           f"retrying in {wait_seconds}s")
            time.sleep(wait_seconds)
