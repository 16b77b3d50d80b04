"""
HOOKWATCH - Realtime Subscription Manager
=========================================
Keeps a live, reconnecting view of executions, metrics and alerts for the
webhooks an operator is watching.

Supports:
- Connection probing with bounded auto-reconnect and exponential backoff
- Per (webhook, element) change subscriptions on three topics
- Capped, newest-first execution caches with periodic eviction
- Typed events on the EventBus for every observed change
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Tuple

from hookwatch.config import EngineSettings
from hookwatch.models.entities import (
    Execution,
    ExecutionStatus,
    PerformanceMetrics,
    Alert,
    utc_now,
)
from hookwatch.realtime.events import (
    EventBus,
    ExecutionStarted,
    ExecutionCompleted,
    ExecutionFailed,
    MetricsUpdated,
    AlertTriggered,
    AlertAcknowledged,
    AlertResolved,
    ConnectionStatusChanged,
    SubscriptionError,
)
from hookwatch.storage.change_feed import (
    ChangeFeed,
    ChangeEvent,
    ChangeOperation,
    ChangeSubscription,
    ChangeTopic,
)
from hookwatch.storage.repository import Repository

logger = logging.getLogger(__name__)

SubscriptionKey = Tuple[str, Optional[str]]


def metrics_key(webhook_id: str, element_id: Optional[str]) -> str:
    return f"{webhook_id}:{element_id}"


@dataclass
class WebhookSubscription:
    """Open change subscriptions for one (webhook, element) pair."""
    webhook_id: str
    element_id: Optional[str]
    handles: Dict[ChangeTopic, ChangeSubscription] = field(default_factory=dict)
    subscribed_at: datetime = field(default_factory=utc_now)


@dataclass
class MonitoringState:
    is_connected: bool = False
    connection_error: Optional[str] = None
    last_update: Optional[datetime] = None
    subscriptions: Dict[SubscriptionKey, WebhookSubscription] = field(default_factory=dict)
    executions: Dict[str, List[Execution]] = field(default_factory=dict)
    metrics: Dict[str, PerformanceMetrics] = field(default_factory=dict)
    alerts: Dict[str, List[Alert]] = field(default_factory=dict)


class RealtimeSubscriptionManager:
    """
    Manages change subscriptions and the cached monitoring state.

    State is mutated only by this manager's change handlers and timers;
    readers get copies.
    """

    def __init__(
        self,
        repository: Repository,
        change_feed: ChangeFeed,
        event_bus: EventBus,
        settings: Optional[EngineSettings] = None,
    ):
        self.repository = repository
        self.change_feed = change_feed
        self.event_bus = event_bus
        self.settings = settings or EngineSettings()

        self.state = MonitoringState()

        # Reconnect bookkeeping
        self.reconnect_attempts = 0
        self._reconnect_delay = self.settings.initial_reconnect_delay_seconds

        # Background tasks
        self._health_task: Optional[asyncio.Task] = None
        self._cleanup_task: Optional[asyncio.Task] = None
        self._running = False

    # =========================================================================
    # CONNECTION MANAGEMENT
    # =========================================================================

    async def connect(self) -> bool:
        """Probe the backing store. An explicit connect re-arms auto-reconnect."""
        self.reconnect_attempts = 0
        return await self._attempt_connect()

    async def _attempt_connect(self) -> bool:
        try:
            await self.repository.probe()
        except Exception as e:
            self.state.is_connected = False
            self.state.connection_error = str(e) or "Unknown connection error"
            logger.error(f"Realtime connection failed: {self.state.connection_error}")
            await self.event_bus.publish(ConnectionStatusChanged(False, self.state.connection_error))
            return False

        self.state.is_connected = True
        self.state.connection_error = None
        self.state.last_update = utc_now()
        self.reconnect_attempts = 0
        self._reconnect_delay = self.settings.initial_reconnect_delay_seconds

        logger.info("Realtime connection established")
        await self.event_bus.publish(ConnectionStatusChanged(True))
        return True

    @property
    def auto_reconnect_exhausted(self) -> bool:
        return self.reconnect_attempts >= self.settings.max_reconnect_attempts

    async def run_health_check(self) -> float:
        """
        One health-check cycle.

        Returns:
            Seconds to wait before the next cycle
        """
        interval = self.settings.health_check_interval_seconds

        if self.state.is_connected or self.auto_reconnect_exhausted:
            return interval

        self.reconnect_attempts += 1
        logger.info(f"Attempting to reconnect ({self.reconnect_attempts}/{self.settings.max_reconnect_attempts})")

        if await self._attempt_connect():
            return interval

        delay = self._reconnect_delay
        self._reconnect_delay = min(self._reconnect_delay * 2, self.settings.max_reconnect_delay_seconds)

        if self.auto_reconnect_exhausted:
            logger.warning("Auto-reconnect attempts exhausted; waiting for an explicit connect")
        return delay

    async def disconnect(self):
        """Tear down every subscription."""
        for key, subscription in list(self.state.subscriptions.items()):
            await self._close_handles(subscription)

        self.state.subscriptions.clear()
        self.state.is_connected = False

        await self.event_bus.publish(ConnectionStatusChanged(False))
        logger.info("Realtime subscriptions closed")

    # =========================================================================
    # SUBSCRIPTIONS
    # =========================================================================

    def is_subscribed(self, webhook_id: str, element_id: Optional[str] = None) -> bool:
        return (webhook_id, element_id) in self.state.subscriptions

    async def subscribe_to_webhook(self, webhook_id: str, element_id: Optional[str] = None) -> bool:
        """
        Open execution, metric and alert subscriptions and load initial data.

        Returns:
            True if subscribed (or already subscribed)
        """
        key = (webhook_id, element_id)
        if key in self.state.subscriptions:
            return True

        subscription = WebhookSubscription(webhook_id=webhook_id, element_id=element_id)
        handlers = {
            ChangeTopic.EXECUTION: self._handle_execution_change,
            ChangeTopic.METRIC: self._handle_metrics_change,
            ChangeTopic.ALERT: self._handle_alert_change,
        }

        try:
            for topic, handler in handlers.items():
                subscription.handles[topic] = await self.change_feed.subscribe(
                    topic, webhook_id, element_id, handler
                )
        except Exception as e:
            await self._close_handles(subscription)
            error = str(e) or "Subscription failed"
            logger.error(f"Failed to subscribe to webhook {webhook_id}/{element_id}: {error}")
            await self.event_bus.publish(SubscriptionError(webhook_id, error, element_id=element_id))
            return False

        self.state.subscriptions[key] = subscription
        await self._load_initial_data(webhook_id, element_id)

        logger.info(f"Subscribed to webhook {webhook_id}/{element_id}")
        return True

    async def unsubscribe_from_webhook(self, webhook_id: str, element_id: Optional[str] = None):
        subscription = self.state.subscriptions.pop((webhook_id, element_id), None)
        if not subscription:
            return

        await self._close_handles(subscription)

        self.state.metrics.pop(metrics_key(webhook_id, element_id), None)
        still_watched = any(w == webhook_id for w, _ in self.state.subscriptions)
        if not still_watched:
            self.state.executions.pop(webhook_id, None)
            self.state.alerts.pop(webhook_id, None)

        logger.info(f"Unsubscribed from webhook {webhook_id}/{element_id}")

    async def _close_handles(self, subscription: WebhookSubscription):
        for topic, handle in list(subscription.handles.items()):
            try:
                await handle.unsubscribe()
            except Exception as e:
                logger.warning(f"Error unsubscribing {topic.value} for {subscription.webhook_id}: {e}")
        subscription.handles.clear()

    async def _load_initial_data(self, webhook_id: str, element_id: Optional[str]):
        try:
            executions = await self.repository.recent_executions(
                webhook_id, element_id, limit=self.settings.execution_cache_size
            )
            # Another element subscription may already share this webhook's cache
            merged = {e.id: e for e in self.state.executions.get(webhook_id, [])}
            merged.update((e.id, e) for e in executions)
            self.state.executions[webhook_id] = sorted(
                merged.values(), key=lambda e: e.execution_started_at, reverse=True
            )[:self.settings.execution_cache_size]

            metrics = await self.repository.latest_metrics(webhook_id, element_id)
            if metrics:
                self.state.metrics[metrics_key(webhook_id, element_id)] = metrics

            cached_alerts = self.state.alerts.setdefault(webhook_id, [])
            known = {a.id for a in cached_alerts}
            for alert in await self.repository.list_open_alerts(webhook_id, element_id):
                if alert.id not in known:
                    cached_alerts.append(alert)
        except Exception as e:
            logger.error(f"Failed to load initial data for webhook {webhook_id}: {e}")

    # =========================================================================
    # CHANGE HANDLERS
    # =========================================================================

    async def _handle_execution_change(self, event: ChangeEvent):
        execution: Execution = event.row
        if execution is None:
            return

        cached = self.state.executions.setdefault(execution.webhook_id, [])
        index = next((i for i, e in enumerate(cached) if e.id == execution.id), None)

        # Overlapping subscriptions deliver the same change more than once
        if event.operation == ChangeOperation.INSERT:
            if index is not None:
                cached[index] = execution
            else:
                cached.insert(0, execution)
                del cached[self.settings.execution_cache_size:]
                await self.event_bus.publish(ExecutionStarted(execution))

        elif event.operation == ChangeOperation.UPDATE:
            if index is not None:
                newly_final = not cached[index].is_finalized
                cached[index] = execution
                if not newly_final:
                    return
                if execution.status == ExecutionStatus.SUCCESS:
                    await self.event_bus.publish(ExecutionCompleted(execution))
                elif execution.status in (ExecutionStatus.ERROR, ExecutionStatus.TIMEOUT):
                    await self.event_bus.publish(ExecutionFailed(execution))

        elif event.operation == ChangeOperation.DELETE:
            self.state.executions[execution.webhook_id] = [e for e in cached if e.id != execution.id]

        self.state.last_update = utc_now()

    async def _handle_metrics_change(self, event: ChangeEvent):
        metrics: PerformanceMetrics = event.row
        if metrics is None:
            return

        key = metrics_key(metrics.webhook_id, metrics.element_id)
        if event.operation in (ChangeOperation.INSERT, ChangeOperation.UPDATE):
            self.state.metrics[key] = metrics
            await self.event_bus.publish(MetricsUpdated(metrics))
        elif event.operation == ChangeOperation.DELETE:
            self.state.metrics.pop(key, None)

        self.state.last_update = utc_now()

    async def _handle_alert_change(self, event: ChangeEvent):
        alert: Alert = event.row
        if alert is None:
            return

        cached = self.state.alerts.setdefault(alert.webhook_id, [])

        if event.operation == ChangeOperation.INSERT:
            if any(a.id == alert.id for a in cached):
                return
            cached.append(alert)
            if not alert.resolved:
                await self.event_bus.publish(AlertTriggered(alert))

        elif event.operation == ChangeOperation.UPDATE:
            index = next((i for i, a in enumerate(cached) if a.id == alert.id), None)
            if index is not None:
                previous = cached[index]
                if previous.is_backward_transition(alert):
                    logger.warning(
                        f"Ignoring backward alert update {alert.id}: {previous.state} -> {alert.state}"
                    )
                    return

                cached[index] = alert
                if alert.resolved and not previous.resolved:
                    await self.event_bus.publish(AlertResolved(alert))
                elif alert.acknowledged and not previous.acknowledged:
                    await self.event_bus.publish(AlertAcknowledged(alert))

        elif event.operation == ChangeOperation.DELETE:
            self.state.alerts[alert.webhook_id] = [a for a in cached if a.id != alert.id]

        self.state.last_update = utc_now()

    # =========================================================================
    # CLEANUP
    # =========================================================================

    def run_cleanup(self, now: Optional[datetime] = None) -> int:
        """Evict cached executions past the retention window. Returns the eviction count."""
        cutoff = (now or utc_now()) - timedelta(hours=self.settings.execution_retention_hours)
        evicted = 0
        for webhook_id, executions in list(self.state.executions.items()):
            kept = [e for e in executions if e.created_at > cutoff]
            if len(kept) != len(executions):
                evicted += len(executions) - len(kept)
                self.state.executions[webhook_id] = kept

        if evicted:
            logger.info(f"Evicted {evicted} cached execution(s)")
        return evicted

    # =========================================================================
    # READERS
    # =========================================================================

    def get_state(self) -> MonitoringState:
        """Shallow copy of the current state."""
        return MonitoringState(
            is_connected=self.state.is_connected,
            connection_error=self.state.connection_error,
            last_update=self.state.last_update,
            subscriptions=dict(self.state.subscriptions),
            executions={k: list(v) for k, v in self.state.executions.items()},
            metrics=dict(self.state.metrics),
            alerts={k: list(v) for k, v in self.state.alerts.items()},
        )

    def get_webhook_executions(self, webhook_id: str) -> List[Execution]:
        return list(self.state.executions.get(webhook_id, []))

    def get_webhook_metrics(self, webhook_id: str, element_id: Optional[str] = None) -> Optional[PerformanceMetrics]:
        return self.state.metrics.get(metrics_key(webhook_id, element_id))

    def get_webhook_alerts(self, webhook_id: str) -> List[Alert]:
        return list(self.state.alerts.get(webhook_id, []))

    # =========================================================================
    # BACKGROUND TASKS
    # =========================================================================

    async def start(self):
        """Start health-check and cleanup loops."""
        if self._running:
            return

        self._running = True
        self._health_task = asyncio.create_task(self._health_check_loop())
        self._cleanup_task = asyncio.create_task(self._cleanup_loop())
        logger.info("Realtime background tasks started")

    async def stop(self):
        """Stop background loops and tear down subscriptions."""
        self._running = False

        for task in (self._health_task, self._cleanup_task):
            if task:
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass
        self._health_task = None
        self._cleanup_task = None

        await self.disconnect()
        logger.info("Realtime background tasks stopped")

    async def _health_check_loop(self):
        delay = self.settings.health_check_interval_seconds
        while self._running:
            try:
                await asyncio.sleep(delay)
                delay = await self.run_health_check()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Health check error: {e}")
                delay = self.settings.health_check_interval_seconds

    async def _cleanup_loop(self):
        while self._running:
            try:
                await asyncio.sleep(self.settings.cleanup_interval_seconds)
                self.run_cleanup()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Cleanup error: {e}")
