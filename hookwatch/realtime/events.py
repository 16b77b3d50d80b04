"""
HOOKWATCH - Monitoring Events
=============================
Typed events and a small publish/subscribe bus.

Handlers are registered per event class and may be plain callables or
coroutine functions. A failing handler is logged and does not stop delivery
to the others.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional, Any, Callable, Type

from hookwatch.models.entities import (
    Execution, PerformanceMetrics, Alert, TestResult, utc_now,
)

logger = logging.getLogger(__name__)


# =============================================================================
# EVENTS
# =============================================================================

@dataclass
class MonitoringEvent:
    """Base class for all bus events."""
    occurred_at: datetime = field(default_factory=utc_now, kw_only=True)


@dataclass
class ExecutionStarted(MonitoringEvent):
    execution: Execution


@dataclass
class ExecutionCompleted(MonitoringEvent):
    execution: Execution


@dataclass
class ExecutionFailed(MonitoringEvent):
    execution: Execution


@dataclass
class MetricsUpdated(MonitoringEvent):
    metrics: PerformanceMetrics


@dataclass
class AlertTriggered(MonitoringEvent):
    alert: Alert


@dataclass
class AlertAcknowledged(MonitoringEvent):
    alert: Alert


@dataclass
class AlertResolved(MonitoringEvent):
    alert: Alert


@dataclass
class ConnectionStatusChanged(MonitoringEvent):
    is_connected: bool
    error: Optional[str] = None


@dataclass
class SubscriptionError(MonitoringEvent):
    webhook_id: str
    error: str
    element_id: Optional[str] = None


@dataclass
class TestStarted(MonitoringEvent):
    __test__ = False

    result: TestResult


@dataclass
class TestProgress(MonitoringEvent):
    __test__ = False

    result: TestResult
    completed_steps: int = 0
    total_steps: Optional[int] = None


@dataclass
class TestCompleted(MonitoringEvent):
    __test__ = False

    result: TestResult


@dataclass
class InAppNotification(MonitoringEvent):
    target: str
    subject: str
    message: str
    metadata: Dict[str, Any] = field(default_factory=dict)


EventHandler = Callable[[MonitoringEvent], Any]


# =============================================================================
# EVENT BUS
# =============================================================================

class EventBus:
    """In-process event bus keyed by event class."""

    def __init__(self):
        self._handlers: Dict[Type[MonitoringEvent], List[EventHandler]] = {}

    def subscribe(self, event_type: Type[MonitoringEvent], handler: EventHandler) -> Callable[[], None]:
        """
        Register a handler.

        Subscribing to MonitoringEvent receives every event.

        Returns:
            Callable that removes the handler
        """
        self._handlers.setdefault(event_type, []).append(handler)

        def _unsubscribe():
            self.unsubscribe(event_type, handler)

        return _unsubscribe

    def unsubscribe(self, event_type: Type[MonitoringEvent], handler: EventHandler) -> None:
        handlers = self._handlers.get(event_type, [])
        if handler in handlers:
            handlers.remove(handler)

    def handler_count(self, event_type: Type[MonitoringEvent]) -> int:
        return len(self._handlers.get(event_type, []))

    async def publish(self, event: MonitoringEvent) -> int:
        """Deliver an event. Returns the number of handlers that ran cleanly."""
        handlers = list(self._handlers.get(type(event), []))
        if type(event) is not MonitoringEvent:
            handlers.extend(self._handlers.get(MonitoringEvent, []))

        delivered = 0
        for handler in handlers:
            try:
                result = handler(event)
                if asyncio.iscoroutine(result):
                    await result
                delivered += 1
            except Exception as e:
                logger.error(f"Event handler {getattr(handler, '__name__', handler)} failed for {type(event).__name__}: {e}")

        return delivered
