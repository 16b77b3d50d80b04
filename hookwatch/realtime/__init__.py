"""Hookwatch realtime monitoring"""
from .events import (
    MonitoringEvent, EventBus,
    ExecutionStarted, ExecutionCompleted, ExecutionFailed, MetricsUpdated,
    AlertTriggered, AlertAcknowledged, AlertResolved,
    ConnectionStatusChanged, SubscriptionError,
    TestStarted, TestProgress, TestCompleted, InAppNotification,
)
from .subscription_manager import RealtimeSubscriptionManager, MonitoringState, WebhookSubscription

__all__ = [
    "MonitoringEvent", "EventBus",
    "ExecutionStarted", "ExecutionCompleted", "ExecutionFailed", "MetricsUpdated",
    "AlertTriggered", "AlertAcknowledged", "AlertResolved",
    "ConnectionStatusChanged", "SubscriptionError",
    "TestStarted", "TestProgress", "TestCompleted", "InAppNotification",
    "RealtimeSubscriptionManager", "MonitoringState", "WebhookSubscription",
]
