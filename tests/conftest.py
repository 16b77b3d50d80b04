"""
HOOKWATCH - Pytest Configuration
Global fixtures and configuration for tests.
"""

from typing import Callable, List

import httpx
import pytest

from hookwatch.config import EngineSettings
from hookwatch.models.entities import WebhookConfig
from hookwatch.realtime.events import EventBus, MonitoringEvent
from hookwatch.storage.change_feed import InMemoryChangeFeed
from hookwatch.storage.repository import InMemoryRepository


# =============================================================================
# SETTINGS & STORAGE
# =============================================================================

@pytest.fixture
def settings() -> EngineSettings:
    """Settings with short pauses so timing-based tests stay fast."""
    return EngineSettings(
        batch_pause_ms=10,
        health_check_interval_seconds=30,
        initial_reconnect_delay_seconds=1,
        max_reconnect_delay_seconds=30,
        max_reconnect_attempts=5,
        execution_cache_size=50,
        sendgrid_api_key=None,
        slack_webhook_url=None,
        configure_logging=False,
    )


@pytest.fixture
def change_feed() -> InMemoryChangeFeed:
    return InMemoryChangeFeed()


@pytest.fixture
def repository(change_feed) -> InMemoryRepository:
    return InMemoryRepository(change_feed=change_feed)


@pytest.fixture
def event_bus() -> EventBus:
    return EventBus()


@pytest.fixture
def captured_events(event_bus) -> List[MonitoringEvent]:
    """Every event published on the bus, in order."""
    events: List[MonitoringEvent] = []
    event_bus.subscribe(MonitoringEvent, events.append)
    return events


# =============================================================================
# HTTP FIXTURES
# =============================================================================

@pytest.fixture
def make_client() -> Callable[..., httpx.AsyncClient]:
    """Factory for an AsyncClient routed through httpx.MockTransport."""

    def _make(handler) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(handler))

    return _make


@pytest.fixture
def ok_handler():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"received": True, "status": "ok"})
    return handler


# =============================================================================
# SAMPLE DATA FIXTURES
# =============================================================================

@pytest.fixture
def sample_webhook() -> WebhookConfig:
    """Active webhook pointing at a mock endpoint."""
    return WebhookConfig(
        id="wh_test_0001",
        organization_id="org_456",
        element_id="el_button_1",
        name="Signup hook",
        endpoint_url="https://hooks.example.com/signup",
        headers={"X-Api-Key": "secret-key"},
        timeout_seconds=5,
    )
