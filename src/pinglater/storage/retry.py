"""Retry policy for transient Qdrant failures.

Storage reads and writes on the delivery path are retried a few times with
exponential backoff before the error reaches the caller. Client errors
(bad filters, missing collections) are not retried.
"""

from __future__ import annotations

import logging

import httpx
from qdrant_client.http.exceptions import ResponseHandlingException, UnexpectedResponse
from tenacity import (
    RetryCallState,
    retry,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

logger = logging.getLogger(__name__)

STORAGE_RETRY_ATTEMPTS = 3


def is_transient(exc: BaseException) -> bool:
    """Whether a Qdrant error is worth retrying.

    Connection failures and timeouts always are. An unexpected response
    only when the server answered with a 5xx status.
    """
    if isinstance(exc, httpx.ConnectError | httpx.TimeoutException | ResponseHandlingException):
        return True
    if isinstance(exc, UnexpectedResponse):
        return exc.status_code is not None and exc.status_code >= 500
    return False


def _log_retry(retry_state: RetryCallState) -> None:
    """Log the failed attempt before tenacity sleeps."""
    exception = retry_state.outcome.exception() if retry_state.outcome else None
    logger.warning(
        "Retrying Qdrant operation",
        extra={
            "attempt": retry_state.attempt_number,
            "fn_name": retry_state.fn.__name__ if retry_state.fn else "unknown",
            "exception": str(exception) if exception else None,
        },
    )


qdrant_retry = retry(
    stop=stop_after_attempt(STORAGE_RETRY_ATTEMPTS),
    wait=wait_exponential(multiplier=1, min=1, max=10),
    retry=retry_if_exception(is_transient),
    before_sleep=_log_retry,
    reraise=True,
)
