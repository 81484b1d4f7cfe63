"""Outbound HTTP for provider lookups and Slack user group writes.

Every network call on the sync path goes through ``HttpClient``. Timeouts come
from ``settings.http`` unless a client overrides them, failures surface as
``httpx.HTTPError`` for the caller to translate into a domain error, and
retries are opt-in so only idempotent reads repeat.

Usage Examples:

    # On-call lookup with one retry on transient failures
    client = HttpClient(retry_config=RetryConfig(max_attempts=2))
    response = client.get("https://api.pagerduty.com/oncalls", params={...})

    # Membership write, sent exactly once
    client = HttpClient()
    response = client.post("https://slack.com/api/usergroups.users.update", json={...})
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field

import httpx

from config import settings

logger = logging.getLogger(__name__)


@dataclass
class RetryConfig:
    """Retry policy with exponential backoff.

    Args:
        max_attempts: Maximum number of attempts (including initial attempt)
        retry_status_codes: HTTP status codes that should trigger a retry
        backoff_factor: Multiplier for exponential backoff (delay = backoff_factor * 2^attempt)
        max_backoff: Maximum backoff delay in seconds
        retry_exceptions: Exception types that should trigger a retry
    """

    max_attempts: int = 3
    retry_status_codes: set[int] = field(default_factory=lambda: {429, 500, 502, 503, 504})
    backoff_factor: float = 0.5
    max_backoff: float = 5.0
    retry_exceptions: tuple[type[Exception], ...] = (
        httpx.ConnectError,
        httpx.ReadTimeout,
        httpx.PoolTimeout,
    )

    def delay(self, attempt: int) -> float:
        return min(self.backoff_factor * (2**attempt), self.max_backoff)


class HttpClient:
    """Synchronous HTTP client with bounded timeouts and optional retries.

    A fresh ``httpx.Client`` is opened per call so the client is safe to share
    between Celery tasks and threads.

    Args:
        timeout: Request timeout in seconds (default: settings.http.timeout)
        connect_timeout: Connection timeout in seconds (default: settings.http.connect_timeout)
        retry_config: Retry configuration (None = no retries)
    """

    def __init__(
        self,
        timeout: int | None = None,
        connect_timeout: int | None = None,
        retry_config: RetryConfig | None = None,
    ):
        self.timeout = timeout if timeout is not None else settings.http.timeout
        self.connect_timeout = (
            connect_timeout if connect_timeout is not None else settings.http.connect_timeout
        )
        self.retry_config = retry_config

    def get(self, url: str, **kwargs) -> httpx.Response:
        """Perform a GET request.

        Raises:
            httpx.HTTPError: The request failed or returned an error status.
        """
        return self._request("GET", url, **kwargs)

    def post(self, url: str, **kwargs) -> httpx.Response:
        """Perform a POST request.

        Raises:
            httpx.HTTPError: The request failed or returned an error status.
        """
        return self._request("POST", url, **kwargs)

    def _request(self, method: str, url: str, **kwargs) -> httpx.Response:
        if self.retry_config is None:
            return self._send(method, url, **kwargs)
        return self._send_with_retry(self.retry_config, method, url, **kwargs)

    def _timeout(self) -> httpx.Timeout:
        return httpx.Timeout(self.timeout, connect=self.connect_timeout)

    def _send(self, method: str, url: str, **kwargs) -> httpx.Response:
        with httpx.Client(timeout=self._timeout()) as client:
            response = client.request(method, url, **kwargs)
            response.raise_for_status()
            return response

    def _send_with_retry(
        self, retry: RetryConfig, method: str, url: str, **kwargs
    ) -> httpx.Response:
        """Send with exponential backoff on retryable statuses and exceptions."""
        for attempt in range(retry.max_attempts):
            last_attempt = attempt + 1 >= retry.max_attempts
            try:
                return self._send(method, url, **kwargs)
            except httpx.HTTPStatusError as e:
                if last_attempt or e.response.status_code not in retry.retry_status_codes:
                    raise
                reason = f"status {e.response.status_code}"
            except retry.retry_exceptions as e:
                if last_attempt:
                    raise
                reason = type(e).__name__
            delay = retry.delay(attempt)
            logger.warning(
                f"HTTP {method} {url} failed with {reason}, "
                f"retrying in {delay:.1f}s (attempt {attempt + 1}/{retry.max_attempts})"
            )
            time.sleep(delay)
        raise RuntimeError("retry loop exited without a response")
