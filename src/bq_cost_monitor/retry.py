"""
Retry policy for Google Cloud API calls.

Retries on:
- 429 TooManyRequests (rate limiting)
- 500 InternalServerError
- 503 ServiceUnavailable
- 504 DeadlineExceeded
"""

import logging

from google.api_core import exceptions, retry

logger = logging.getLogger(__name__)


def is_transient_error(exc) -> bool:
    """Predicate for google.api_core Retry: True for errors worth another attempt."""
    if isinstance(exc, exceptions.TooManyRequests):
        logger.warning(f"Rate limited (429), will retry: {exc}")
        return True
    if isinstance(exc, exceptions.InternalServerError):
        logger.warning(f"Internal error (500), will retry: {exc}")
        return True
    if isinstance(exc, exceptions.ServiceUnavailable):
        logger.warning(f"Service unavailable (503), will retry: {exc}")
        return True
    if isinstance(exc, exceptions.DeadlineExceeded):
        logger.warning(f"Timeout (504), will retry: {exc}")
        return True
    return False


# - Initial delay: 1 second
# - Maximum delay: 60 seconds
# - Multiplier: 2.0 (exponential backoff)
# - Total deadline: 300 seconds (5 minutes)
TRANSIENT_RETRY = retry.Retry(
    predicate=is_transient_error,
    initial=1.0,
    maximum=60.0,
    multiplier=2.0,
    deadline=300.0,
)
