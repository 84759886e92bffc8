"""Bounded retry loop around the fetch capability.

429 and 5xx responses and httpx request errors are retried with linear
backoff; every other status is returned to the caller as-is.
"""

import asyncio
import logging
from collections.abc import Callable

import httpx
from tenacity import (
    AsyncRetrying,
    Future,
    RetryCallState,
    RetryError,
    retry_if_exception_type,
    retry_if_result,
    stop_after_attempt,
)

from musejobs.http.session import Fetcher, FetchResult
from musejobs.pipeline.politeness import BackoffKind, backoff_ms

logger = logging.getLogger(__name__)


class RetriesExhausted(Exception):
    """Every attempt for a URL failed with a retryable error."""

    def __init__(
        self,
        url: str,
        attempts: int,
        last_status: int | None = None,
        last_error: str = "",
    ) -> None:
        self.url = url
        self.attempts = attempts
        self.last_status = last_status
        self.last_error = last_error
        reason = f"status {last_status}" if last_status is not None else last_error
        super().__init__(f"{url} failed after {attempts} attempts ({reason})")


def classify_status(status_code: int) -> BackoffKind | None:
    """Return the backoff kind for a retryable status, or None."""
    if status_code == 429:
        return BackoffKind.RATE_LIMIT
    if status_code >= 500:
        return BackoffKind.SERVER_ERROR
    return None


def _retryable_result(result: FetchResult) -> bool:
    return classify_status(result.status_code) is not None


def _describe(outcome: Future) -> tuple[int | None, str]:
    """(status, error text) of a failed attempt."""
    if outcome.failed:
        e = outcome.exception()
        return None, f"{type(e).__name__}: {e}"
    return outcome.result().status_code, ""


async def _pause(seconds: float) -> None:
    await asyncio.sleep(seconds)


async def fetch_with_retry(
    fetcher: Fetcher,
    url: str,
    *,
    retries: int,
    network_kind: BackoffKind = BackoffKind.NETWORK,
    expect_json: bool = False,
    headers: dict[str, str] | None = None,
    on_attempt: Callable[[], None] | None = None,
) -> FetchResult:
    """Fetch ``url`` with up to ``retries`` retries (``retries + 1`` attempts).

    Raises RetriesExhausted when the last attempt is still retryable.
    """
    attempts = max(retries, 0) + 1

    def _wait(retry_state: RetryCallState) -> float:
        outcome = retry_state.outcome
        kind = network_kind
        if outcome is not None and not outcome.failed:
            kind = classify_status(outcome.result().status_code) or network_kind
        wait = backoff_ms(kind, retry_state.attempt_number - 1)
        logger.debug("Backing off %d ms after %s (attempt %d)", wait, kind.value, retry_state.attempt_number)
        return wait / 1000.0

    def _before(retry_state: RetryCallState) -> None:
        if on_attempt is not None:
            on_attempt()

    def _after(retry_state: RetryCallState) -> None:
        if retry_state.outcome is None:
            return
        status, error = _describe(retry_state.outcome)
        if status is None:
            logger.warning(
                "Request error on %s (attempt %d/%d): %s",
                url, retry_state.attempt_number, attempts, error,
            )
        else:
            logger.warning(
                "HTTP %d on %s (attempt %d/%d)", status, url, retry_state.attempt_number, attempts,
            )

    retrying = AsyncRetrying(
        stop=stop_after_attempt(attempts),
        wait=_wait,
        retry=retry_if_exception_type(httpx.RequestError) | retry_if_result(_retryable_result),
        before=_before,
        after=_after,
        sleep=_pause,
    )
    try:
        return await retrying(fetcher.fetch, url, expect_json=expect_json, headers=headers)
    except RetryError as e:
        status, error = _describe(e.last_attempt)
        raise RetriesExhausted(url, e.last_attempt.attempt_number, status, error) from e
