"""Unit tests for outbound HTTP: timeouts and retries on provider and Slack calls."""

from __future__ import annotations

import logging
import time

import httpx
import pytest
import respx

from config import Settings, settings
from rotation.errors import ExternalProviderError, MembershipWriteError
from rotation.group_membership import SlackUserGroupClient
from rotation.providers import default_providers
from services.http_client import HttpClient, RetryConfig

PD_URL = "https://api.pagerduty.com/schedules/P123/users"
OG_URL = "https://api.opsgenie.com/v2/schedules/OG1/on-calls"
UPDATE_URL = "https://slack.com/api/usergroups.users.update"


def _settings(**overrides) -> Settings:
    values = {
        "pagerduty": {"api_token": "pd-token"},
        "opsgenie": {"api_key": "og-key"},
        "slack": {"bot_token": "xoxb-test"},
    }
    values.update(overrides)
    return Settings(**values)


def _no_sleep(monkeypatch) -> list[float]:
    delays: list[float] = []
    monkeypatch.setattr(time, "sleep", delays.append)
    return delays


def test_default_timeout_from_settings(monkeypatch) -> None:
    """HttpClient uses settings.http timeouts by default."""
    monkeypatch.setattr(settings.http, "timeout", 42, raising=False)
    monkeypatch.setattr(settings.http, "connect_timeout", 7, raising=False)

    client = HttpClient()
    assert client.timeout == 42
    assert client.connect_timeout == 7
    assert client.retry_config is None


@respx.mock
def test_provider_lookup_carries_configured_timeouts() -> None:
    """Provider requests are bounded by the http timeouts from settings."""
    route = respx.get(PD_URL).mock(return_value=httpx.Response(200, json={"users": [{"id": "PU1"}]}))
    pagerduty = default_providers(_settings(http={"timeout": 3, "connect_timeout": 2}))["pagerduty"]

    pagerduty.current_user({"schedule_id": "P123"})

    timeout = route.calls.last.request.extensions["timeout"]
    assert timeout == {"connect": 2, "read": 3, "write": 3, "pool": 3}


@respx.mock
def test_provider_lookup_retries_transient_status(monkeypatch) -> None:
    """A 503 from PagerDuty is retried once before the lookup succeeds."""
    route = respx.get(PD_URL).mock(
        side_effect=[
            httpx.Response(503, json={"error": "unavailable"}),
            httpx.Response(200, json={"users": [{"id": "PU1"}]}),
        ]
    )
    delays = _no_sleep(monkeypatch)
    pagerduty = default_providers(_settings())["pagerduty"]

    assert pagerduty.current_user({"schedule_id": "P123"}) == "PU1"
    assert route.call_count == 2
    assert delays == [0.5]


@respx.mock
def test_provider_lookup_retries_connect_error(monkeypatch) -> None:
    """A refused connection to OpsGenie is retried."""
    route = respx.get(OG_URL).mock(
        side_effect=[
            httpx.ConnectError("refused"),
            httpx.Response(200, json={"data": {"onCallRecipients": ["alice@example.com"]}}),
        ]
    )
    _no_sleep(monkeypatch)
    opsgenie = default_providers(_settings())["opsgenie"]

    assert opsgenie.current_user({"schedule_id": "OG1"}) == "alice@example.com"
    assert route.call_count == 2


@respx.mock
def test_provider_lookup_gives_up_after_retries(monkeypatch, caplog) -> None:
    """Retries are bounded and the last failure becomes a provider error."""
    route = respx.get(PD_URL).mock(return_value=httpx.Response(503, json={"error": "unavailable"}))
    _no_sleep(monkeypatch)
    pagerduty = default_providers(_settings())["pagerduty"]

    with caplog.at_level(logging.WARNING):
        with pytest.raises(ExternalProviderError, match="503"):
            pagerduty.current_user({"schedule_id": "P123"})

    assert route.call_count == 2
    assert "retrying" in caplog.text


@respx.mock
def test_provider_lookup_does_not_retry_not_found(monkeypatch) -> None:
    """A 404 is final."""
    route = respx.get(PD_URL).mock(return_value=httpx.Response(404, json={"error": "no schedule"}))
    delays = _no_sleep(monkeypatch)
    pagerduty = default_providers(_settings())["pagerduty"]

    with pytest.raises(ExternalProviderError, match="404"):
        pagerduty.current_user({"schedule_id": "P123"})

    assert route.call_count == 1
    assert delays == []


@respx.mock
def test_membership_write_is_sent_once(monkeypatch) -> None:
    """Slack writes are not retried, even on a retryable status."""
    route = respx.post(UPDATE_URL).mock(return_value=httpx.Response(503, json={"ok": False}))
    delays = _no_sleep(monkeypatch)
    client = SlackUserGroupClient(_settings())

    with pytest.raises(MembershipWriteError, match="HTTPStatusError"):
        client.update_members("S0001", ["U1"])

    assert route.call_count == 1
    assert delays == []


@respx.mock
def test_retry_backoff_is_capped(monkeypatch) -> None:
    """Backoff doubles per attempt up to max_backoff."""
    respx.get(PD_URL).mock(return_value=httpx.Response(502))
    delays = _no_sleep(monkeypatch)
    client = HttpClient(retry_config=RetryConfig(max_attempts=4, backoff_factor=1.0, max_backoff=3.0))

    with pytest.raises(httpx.HTTPStatusError):
        client.get(PD_URL)

    assert delays == [1.0, 2.0, 3.0]
