"""External on-call schedule providers.

Each provider answers one question: who is on call right now for the
schedule described by ``integration_config``. Lookups go through
``HttpClient`` so they carry the configured timeouts. Every failure
(missing credentials, network error, unexpected payload) is raised as
``ExternalProviderError``; the resolver turns it into "nobody on call".
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Callable, Mapping, Protocol

import httpx

from config import Settings, settings as default_settings
from rotation.errors import ExternalProviderError
from services.http_client import HttpClient, RetryConfig

logger = logging.getLogger(__name__)

PAGERDUTY_ACCEPT = "application/vnd.pagerduty+json;version=2"


class ExternalScheduleProvider(Protocol):
    """Capability for resolving the on-call identity of an external schedule."""

    name: str

    def current_user(self, config: Mapping[str, str]) -> str | None:
        """Return the on-call identity, ``None`` when nobody is on call."""


def _schedule_id(provider: str, config: Mapping[str, str]) -> str:
    """Return the provider schedule id from an integration config."""
    value = config.get("schedule_id") or config.get("scheduleId")
    if not value or not str(value).strip():
        raise ExternalProviderError(provider, "integration_config is missing schedule_id")
    return str(value).strip()


class PagerDutyProvider:
    """Resolve the current on-call user from a PagerDuty schedule."""

    name = "pagerduty"

    def __init__(
        self,
        settings: Settings | None = None,
        *,
        http_client: HttpClient | None = None,
        now_provider: Callable[[], datetime] | None = None,
    ) -> None:
        config = (settings or default_settings).pagerduty
        self._api_token = config.api_token
        self._base_url = config.base_url.rstrip("/")
        self._http = http_client or HttpClient()
        self._now_provider = now_provider or (lambda: datetime.now(timezone.utc))

    def current_user(self, config: Mapping[str, str]) -> str | None:
        if not self._api_token:
            raise ExternalProviderError(self.name, "PagerDuty API token is not configured")
        schedule_id = _schedule_id(self.name, config)
        now = self._now_provider()
        # PagerDuty returns users on call anywhere inside [since, until).
        params = {
            "since": now.isoformat(),
            "until": (now + timedelta(minutes=1)).isoformat(),
        }
        headers = {
            "Authorization": f"Token token={self._api_token}",
            "Accept": PAGERDUTY_ACCEPT,
        }
        payload = _get_json(
            self._http,
            self.name,
            f"{self._base_url}/schedules/{schedule_id}/users",
            params=params,
            headers=headers,
        )
        users = payload.get("users") or []
        if not users:
            return None
        user_id = users[0].get("id") if isinstance(users[0], dict) else None
        return str(user_id) if user_id else None


class OpsGenieProvider:
    """Resolve the current on-call recipient from an OpsGenie schedule."""

    name = "opsgenie"

    def __init__(self, settings: Settings | None = None, *, http_client: HttpClient | None = None) -> None:
        config = (settings or default_settings).opsgenie
        self._api_key = config.api_key
        self._base_url = config.base_url.rstrip("/")
        self._http = http_client or HttpClient()

    def current_user(self, config: Mapping[str, str]) -> str | None:
        if not self._api_key:
            raise ExternalProviderError(self.name, "OpsGenie API key is not configured")
        schedule_id = _schedule_id(self.name, config)
        payload = _get_json(
            self._http,
            self.name,
            f"{self._base_url}/v2/schedules/{schedule_id}/on-calls",
            params={"flat": "true"},
            headers={"Authorization": f"GenieKey {self._api_key}"},
        )
        data = payload.get("data") or {}
        recipients = data.get("onCallRecipients") or []
        if not recipients:
            return None
        return str(recipients[0])


def _get_json(http: HttpClient, provider: str, url: str, **kwargs) -> dict:
    """GET a JSON object, mapping transport and payload failures to ExternalProviderError."""
    try:
        response = http.get(url, **kwargs)
    except httpx.HTTPStatusError as exc:
        raise ExternalProviderError(
            provider,
            f"HTTP {exc.response.status_code}",
            {"url": url},
        ) from exc
    except httpx.HTTPError as exc:
        raise ExternalProviderError(provider, f"{type(exc).__name__}: {exc}", {"url": url}) from exc
    try:
        payload = response.json()
    except ValueError as exc:
        raise ExternalProviderError(provider, "response was not JSON", {"url": url}) from exc
    if not isinstance(payload, dict):
        raise ExternalProviderError(provider, "unexpected response payload", {"url": url})
    return payload


def default_providers(settings: Settings | None = None) -> dict[str, ExternalScheduleProvider]:
    """Return the provider registry keyed by schedule kind."""
    resolved = settings or default_settings
    http = HttpClient(
        timeout=resolved.http.timeout,
        connect_timeout=resolved.http.connect_timeout,
        retry_config=RetryConfig(max_attempts=2),
    )
    return {
        PagerDutyProvider.name: PagerDutyProvider(resolved, http_client=http),
        OpsGenieProvider.name: OpsGenieProvider(resolved, http_client=http),
    }
