"""
Shared fixtures for Bitnovo Pay tests.

Time is always injected: `MonotonicClock` drives the nonce and QR caches,
`UtcClock` drives the event store and the webhook handler.
"""
import json
from datetime import datetime, timedelta, timezone
from typing import List, Optional

import pytest

from bitnovo_pay.config import load_settings
from bitnovo_pay.models.tunnel import TunnelProviderName
from bitnovo_pay.models.webhooks import WebhookEvent
from bitnovo_pay.services.event_store import WebhookEventStore
from bitnovo_pay.services.nonce_cache import NonceCache
from bitnovo_pay.services.webhook_handler import WebhookHandler

DEVICE_SECRET = "test_device_secret_0123456789"
BASE_TIME = datetime(2026, 1, 15, 12, 0, 0, tzinfo=timezone.utc)


class MonotonicClock:
    """Manually advanced stand-in for time.monotonic."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class UtcClock:
    """Manually advanced stand-in for datetime.now(timezone.utc)."""

    def __init__(self, start: datetime = BASE_TIME):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


class FakeTunnelProvider:
    """
    Scriptable tunnel provider.

    `connect_results` is consumed in order; an Exception entry is raised,
    a string is returned as the public URL. When exhausted, `default_url`
    is returned.
    """

    def __init__(
        self,
        name: TunnelProviderName = TunnelProviderName.NGROK,
        connect_results: Optional[List] = None,
        default_url: str = "https://fake.tunnel.test",
        healthy: bool = True
    ):
        self.name = name
        self.connect_results = list(connect_results or [])
        self.default_url = default_url
        self.healthy = healthy
        self.connect_calls = 0
        self.disconnect_calls = 0
        self.health_calls = 0

    async def connect(self) -> str:
        self.connect_calls += 1
        if self.connect_results:
            result = self.connect_results.pop(0)
            if isinstance(result, Exception):
                raise result
            return result
        return self.default_url

    async def disconnect(self) -> None:
        self.disconnect_calls += 1

    async def check_health(self) -> bool:
        self.health_calls += 1
        return self.healthy


def make_payload(identifier: str = "pay_123", status: str = "CO", **extra) -> dict:
    payload = {
        "identifier": identifier,
        "status": status,
        "fiat_amount": 25.5,
        "fiat": "EUR",
        "input_currency": "BTC",
    }
    payload.update(extra)
    return payload


def make_raw_body(identifier: str = "pay_123", status: str = "CO", **extra) -> str:
    return json.dumps(make_payload(identifier, status, **extra), separators=(",", ":"))


def make_event(
    event_id: str,
    identifier: str = "pay_123",
    received_at: datetime = BASE_TIME,
    validated: bool = True,
    status: str = "CO"
) -> WebhookEvent:
    return WebhookEvent(
        event_id=event_id,
        identifier=identifier,
        status=status,
        received_at=received_at,
        payload={"identifier": identifier, "status": status},
        signature=None,
        nonce=f"nonce_{event_id}",
        validated=validated,
    )


@pytest.fixture
def monotonic_clock():
    return MonotonicClock()


@pytest.fixture
def utc_clock():
    return UtcClock()


@pytest.fixture
def event_store(utc_clock):
    return WebhookEventStore(max_entries=100, ttl_seconds=3600, clock=utc_clock)


@pytest.fixture
def nonce_cache(monotonic_clock):
    return NonceCache(max_age_seconds=300, clock=monotonic_clock)


@pytest.fixture
def handler(event_store, nonce_cache, utc_clock):
    return WebhookHandler(event_store, nonce_cache, device_secret=DEVICE_SECRET, clock=utc_clock)


@pytest.fixture
def unsigned_handler(event_store, nonce_cache, utc_clock):
    return WebhookHandler(event_store, nonce_cache, device_secret=None, clock=utc_clock)


@pytest.fixture
def settings():
    """Settings isolated from the caller's environment for webhook tests."""
    return load_settings(
        _env_file=None,
        bitnovo_device_secret=DEVICE_SECRET,
        webhook_enabled=True,
        webhook_port=3999,
        webhook_path="/webhook/bitnovo",
        webhook_public_url=None,
        tunnel_enabled=False,
        tunnel_provider=None,
    )
