"""Shared transient-error predicate for in-stage vendor retries.

These retries happen inside a single stage call and are separate from
job-level attempts, which the retry coordinator owns.
"""

import logging

import httpx
from google.genai.errors import ClientError, ServerError
from tenacity import (
    before_sleep_log,
    retry,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
    wait_random,
)

from shortpipe.config import settings

logger = logging.getLogger(__name__)

_RETRIABLE_STATUS = {408, 429, 500, 502, 503, 504}


def is_retriable(exc: BaseException) -> bool:
    """Return True only for transient errors worth retrying."""
    if isinstance(exc, ServerError):
        return True
    if isinstance(exc, ClientError):
        return getattr(exc, "code", 0) == 429
    if isinstance(exc, httpx.HTTPStatusError):
        return exc.response.status_code in _RETRIABLE_STATUS
    if isinstance(exc, httpx.TransportError):
        return True
    # Retry on connection/timeout errors
    if isinstance(exc, (ConnectionError, TimeoutError)):
        return True
    return False


def vendor_retry(attempts: int | None = None):
    """tenacity decorator for one vendor request."""
    return retry(
        stop=stop_after_attempt(attempts or settings.pipeline.vendor_retry_attempts),
        wait=wait_exponential(multiplier=1, min=2, max=30) + wait_random(0, 1),
        retry=retry_if_exception(is_retriable),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True,
    )
