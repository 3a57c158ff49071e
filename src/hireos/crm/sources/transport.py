"""Shared HTTP behaviour for provider adapters.

- parse_retry_after(): Read a Retry-After header as seconds
- wait_retry_after: tenacity wait strategy honouring the provider hint,
  falling back to exponential backoff
- rate_limit_retrying(): Bounded AsyncRetrying for HTTP 429
- check_response(): Map error statuses onto ContactSource errors
"""

from __future__ import annotations

from datetime import datetime, timezone
from email.utils import parsedate_to_datetime

import httpx
import structlog
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)
from tenacity.wait import wait_base

from src.hireos.crm.sources.base import (
    ContactSourceAuthError,
    ContactSourceRequestError,
    RateLimitedError,
)

logger = structlog.get_logger(__name__)


def parse_retry_after(value: str | None) -> float | None:
    """Seconds to wait from a Retry-After header (delta-seconds or HTTP-date)."""
    if not value:
        return None
    try:
        return max(float(value), 0.0)
    except ValueError:
        pass
    try:
        when = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None
    if when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)
    return max((when - datetime.now(timezone.utc)).total_seconds(), 0.0)


class wait_retry_after(wait_base):
    """Wait for the provider's Retry-After hint when one was given.

    Args:
        fallback: Strategy used when the failure carries no hint.
        max_wait: Upper bound applied to provider hints.
    """

    def __init__(self, fallback: wait_base, max_wait: float) -> None:
        self._fallback = fallback
        self._max_wait = max_wait

    def __call__(self, retry_state: RetryCallState) -> float:
        outcome = retry_state.outcome
        exc = outcome.exception() if outcome is not None else None
        if isinstance(exc, RateLimitedError) and exc.retry_after is not None:
            return min(exc.retry_after, self._max_wait)
        return self._fallback(retry_state)


def _log_rate_limited(retry_state: RetryCallState) -> None:
    exc = retry_state.outcome.exception() if retry_state.outcome else None
    logger.warning(
        "provider.rate_limited",
        provider=getattr(exc, "provider", None),
        attempt=retry_state.attempt_number,
        retry_after=getattr(exc, "retry_after", None),
    )


def rate_limit_retrying(max_retries: int = 3, max_wait: float = 30.0) -> AsyncRetrying:
    """AsyncRetrying that retries RateLimitedError up to ``max_retries`` times, then re-raises."""
    return AsyncRetrying(
        stop=stop_after_attempt(max(max_retries, 0) + 1),
        wait=wait_retry_after(
            wait_exponential(multiplier=1, min=1, max=max_wait),
            max_wait=max_wait,
        ),
        retry=retry_if_exception_type(RateLimitedError),
        before_sleep=_log_rate_limited,
        reraise=True,
    )


def raise_if_rate_limited(provider: str, response: httpx.Response) -> None:
    """Raise RateLimitedError for a 429 response."""
    if response.status_code == 429:
        raise RateLimitedError(
            provider=provider,
            retry_after=parse_retry_after(response.headers.get("Retry-After")),
        )


def _error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text or response.reason_phrase
    if isinstance(body, dict):
        error = body.get("error")
        if isinstance(error, dict) and error.get("message"):
            return str(error["message"])
        if isinstance(error, str):
            return body.get("message") or error
        if body.get("message"):
            return str(body["message"])
    return response.text or response.reason_phrase


def check_response(provider: str, response: httpx.Response) -> None:
    """Raise the matching ContactSource error for a failed response."""
    if response.status_code < 400:
        return
    raise_if_rate_limited(provider, response)
    message = _error_message(response)
    if response.status_code == 401:
        raise ContactSourceAuthError(f"{provider} rejected credentials: {message}")
    raise ContactSourceRequestError(
        provider=provider,
        status_code=response.status_code,
        message=message,
    )
