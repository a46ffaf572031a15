"""Shared HTTP request helper with bounded retries for downstream services."""

import random
import time
from typing import Any

import httpx

from settlement.core.errors import ExternalServiceError
from settlement.core.utils import get_logger

logger = get_logger("settlement.http")

RETRYABLE_STATUS_CODES = frozenset({429, 500, 502, 503, 504})
RETRYABLE_EXCEPTIONS = (httpx.ConnectError, httpx.ReadTimeout, httpx.RemoteProtocolError)
BACKOFF_BASE_SECONDS = 0.25
BACKOFF_MAX_SECONDS = 2.0


def build_client(base_url: str, timeout_seconds: float, headers: dict[str, str] | None = None) -> httpx.Client:
    """Create an httpx client with a per-call timeout."""
    timeout = httpx.Timeout(timeout_seconds, connect=min(5.0, timeout_seconds))
    return httpx.Client(base_url=base_url, timeout=timeout, headers=headers or {})


def request_with_retry(
    client: httpx.Client,
    method: str,
    url: str,
    *,
    retries: int = 2,
    json: Any = None,
    params: dict[str, Any] | None = None,
    headers: dict[str, str] | None = None,
) -> httpx.Response:
    """Send a request, retrying transport errors and 429/5xx responses with backoff.

    Raises ExternalServiceError once retries are exhausted or on any other
    non-2xx response.
    """
    for attempt in range(retries + 1):
        try:
            response = client.request(method, url, json=json, params=params, headers=headers)
        except RETRYABLE_EXCEPTIONS as exc:
            if attempt >= retries:
                msg = f"{method} {url} failed after {retries + 1} attempts: {exc.__class__.__name__}"
                raise ExternalServiceError(msg) from exc
            logger.warning(f"{method} {url} transport error ({exc.__class__.__name__}), retrying")
            _sleep_for_retry(attempt)
            continue
        except httpx.HTTPError as exc:
            msg = f"{method} {url} failed: {exc.__class__.__name__}"
            raise ExternalServiceError(msg) from exc

        if response.is_success:
            return response
        if response.status_code in RETRYABLE_STATUS_CODES and attempt < retries:
            logger.warning(f"{method} {url} returned {response.status_code}, retrying")
            _sleep_for_retry(attempt)
            continue
        msg = f"{method} {url} returned HTTP {response.status_code}: {response.text[:300]}"
        raise ExternalServiceError(msg, status_code=response.status_code)

    msg = f"{method} {url} failed"
    raise ExternalServiceError(msg)


def _sleep_for_retry(attempt: int) -> None:
    delay = min(BACKOFF_MAX_SECONDS, BACKOFF_BASE_SECONDS * (2**attempt)) * (0.5 + random.random())
    time.sleep(delay)
