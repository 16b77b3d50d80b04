"""
HOOKWATCH - Monitoring Engine
=============================
Explicitly constructed service container wiring the repository, change feed,
event bus, invoker, orchestrator, realtime manager, alert evaluator and
notification dispatcher together.

Usage:
    engine = WebhookMonitoringEngine(repository=repo, change_feed=feed)
    await engine.start()
    result = await engine.execute_test(webhook_id, element_id, configuration)
    await engine.stop()
"""

import logging
from typing import Optional, Dict, List, Set

import httpx

from hookwatch.config import EngineSettings
from hookwatch.core.exceptions import ConfigurationException
from hookwatch.core.logging_config import setup_logging
from hookwatch.channels.notifications import (
    NotificationChannel,
    NotificationDispatcher,
    build_default_channels,
)
from hookwatch.models.entities import (
    Alert,
    NotificationHistory,
    TestConfiguration,
    TestResult,
)
from hookwatch.realtime.events import EventBus, AlertTriggered
from hookwatch.realtime.subscription_manager import RealtimeSubscriptionManager
from hookwatch.services.alert_service import AlertEvaluator
from hookwatch.services.invoker import WebhookInvoker
from hookwatch.services.testing_engine import TestOrchestrator, CancellationToken
from hookwatch.services.validator import ResultValidator
from hookwatch.storage.change_feed import ChangeFeed, InMemoryChangeFeed
from hookwatch.storage.repository import Repository, InMemoryRepository

logger = logging.getLogger(__name__)


class WebhookMonitoringEngine:
    """
    Owns every engine service and their lifecycles.

    Nothing is created lazily or shared through module globals: build one
    engine per application and call start()/stop() around its use.
    """

    def __init__(
        self,
        settings: Optional[EngineSettings] = None,
        repository: Optional[Repository] = None,
        change_feed: Optional[ChangeFeed] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        channels: Optional[Dict[str, NotificationChannel]] = None,
        validator: Optional[ResultValidator] = None,
    ):
        self.settings = settings or EngineSettings()

        problems = self.settings.validate()
        if problems:
            raise ConfigurationException(
                f"Invalid engine settings: {'; '.join(problems)}",
                details={"problems": problems},
            )

        if self.settings.configure_logging:
            setup_logging(level=self.settings.log_level, format=self.settings.log_format)

        if change_feed is None:
            change_feed = InMemoryChangeFeed()
        if repository is None:
            repository = InMemoryRepository(
                change_feed=change_feed if isinstance(change_feed, InMemoryChangeFeed) else None
            )

        self.repository = repository
        self.change_feed = change_feed
        self.event_bus = EventBus()

        self._owns_client = http_client is None
        self.http_client = http_client or httpx.AsyncClient(
            timeout=self.settings.default_timeout_seconds,
            follow_redirects=True
        )

        self.dispatcher = NotificationDispatcher(
            repository,
            channels if channels is not None else build_default_channels(self.settings, self.event_bus, self.http_client),
            self.settings,
        )
        self.invoker = WebhookInvoker(repository, self.http_client, self.settings)
        self.orchestrator = TestOrchestrator(
            repository,
            self.invoker,
            validator=validator,
            event_bus=self.event_bus,
            dispatcher=self.dispatcher,
            settings=self.settings,
        )
        self.realtime = RealtimeSubscriptionManager(repository, change_feed, self.event_bus, self.settings)
        self.alerts = AlertEvaluator(repository, self.dispatcher)

        # Alerts observed on the change feed are routed like raised ones
        self._raising: Set[str] = set()
        self.event_bus.subscribe(AlertTriggered, self._on_alert_triggered)

        self._started = False

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    async def start(self, connect: bool = True):
        """Start background loops and, by default, connect the realtime view."""
        if self._started:
            return

        await self.alerts.start()
        await self.realtime.start()
        if connect:
            await self.realtime.connect()

        self._started = True
        logger.info("Webhook monitoring engine started")

    async def stop(self):
        """Stop background work and release owned resources."""
        await self.alerts.stop()
        await self.realtime.stop()
        await self.dispatcher.close()

        if self._owns_client:
            await self.http_client.aclose()

        self._started = False
        logger.info("Webhook monitoring engine stopped")

    async def __aenter__(self):
        await self.start()
        return self

    async def __aexit__(self, *args):
        await self.stop()

    # =========================================================================
    # FACADE
    # =========================================================================

    async def execute_test(
        self,
        webhook_id: str,
        element_id: Optional[str],
        configuration: TestConfiguration,
        cancellation: Optional[CancellationToken] = None,
    ) -> TestResult:
        return await self.orchestrator.execute_test(webhook_id, element_id, configuration, cancellation)

    def cancel_test(self, test_id: str) -> bool:
        return self.orchestrator.cancel_test(test_id)

    async def raise_alert(self, alert: Alert) -> List[NotificationHistory]:
        """Persist a new alert and route it through the notification rules."""
        self._raising.add(alert.id)
        try:
            await self.repository.save_alert(alert)
        finally:
            self._raising.discard(alert.id)
        return await self.alerts.handle_alert(alert)

    async def _on_alert_triggered(self, event: AlertTriggered):
        if event.alert.id in self._raising:
            return
        await self.alerts.handle_alert(event.alert)

    async def acknowledge_alert(self, alert_id: str, user_id: str) -> Alert:
        return await self.alerts.acknowledge_alert(alert_id, user_id)

    async def resolve_alert(self, alert_id: str) -> Alert:
        return await self.alerts.resolve_alert(alert_id)
