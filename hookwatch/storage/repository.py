"""
HOOKWATCH - Repository
======================
Persistence contract used by the engine, plus an in-memory implementation.

Writes made through InMemoryRepository are published to an optional
InMemoryChangeFeed so realtime subscribers see them.
"""

import logging
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Optional, List, Dict, Any

from hookwatch.core.exceptions import ConnectionProbeException, RecordNotFoundException
from hookwatch.models.entities import (
    WebhookConfig, Execution, TestResult, TestTemplate, PerformanceMetrics,
    Alert, NotificationRule, NotificationHistory, HealthStatus, utc_now,
)
from hookwatch.storage.change_feed import InMemoryChangeFeed, ChangeTopic, ChangeOperation

logger = logging.getLogger(__name__)


class Repository(ABC):
    """Abstract persistence collaborator."""

    # Webhooks
    @abstractmethod
    async def get_webhook(self, webhook_id: str) -> Optional[WebhookConfig]:
        pass

    @abstractmethod
    async def save_webhook(self, webhook: WebhookConfig) -> WebhookConfig:
        pass

    @abstractmethod
    async def update_webhook_health(
        self, webhook_id: str, status: HealthStatus, checked_at: Optional[datetime] = None
    ) -> None:
        """Only write path for a webhook's health status."""
        pass

    # Executions
    @abstractmethod
    async def start_execution(self, execution: Execution) -> None:
        pass

    @abstractmethod
    async def complete_execution(self, execution: Execution) -> None:
        pass

    @abstractmethod
    async def recent_executions(
        self,
        webhook_id: str,
        element_id: Optional[str] = None,
        limit: int = 50,
    ) -> List[Execution]:
        """Newest first."""
        pass

    @abstractmethod
    async def latest_successful_payload(
        self, webhook_id: str, element_id: Optional[str] = None
    ) -> Optional[Dict[str, Any]]:
        pass

    # Test results and templates
    @abstractmethod
    async def save_test_result(self, result: TestResult) -> None:
        pass

    @abstractmethod
    async def get_test_template(self, template_id: str) -> Optional[TestTemplate]:
        pass

    # Metrics
    @abstractmethod
    async def save_metrics(self, metrics: PerformanceMetrics) -> None:
        pass

    @abstractmethod
    async def latest_metrics(
        self, webhook_id: str, element_id: Optional[str] = None
    ) -> Optional[PerformanceMetrics]:
        pass

    # Alerts
    @abstractmethod
    async def get_alert(self, alert_id: str) -> Optional[Alert]:
        pass

    @abstractmethod
    async def save_alert(self, alert: Alert) -> None:
        """Insert a new alert."""
        pass

    @abstractmethod
    async def update_alert(self, alert: Alert) -> None:
        pass

    @abstractmethod
    async def list_open_alerts(
        self, webhook_id: str, element_id: Optional[str] = None
    ) -> List[Alert]:
        pass

    # Rules and history
    @abstractmethod
    async def list_rules(self, organization_id: str) -> List[NotificationRule]:
        pass

    @abstractmethod
    async def append_notification(self, history: NotificationHistory) -> None:
        pass

    @abstractmethod
    async def get_last_notification(
        self, rule_id: str, webhook_id: Optional[str]
    ) -> Optional[NotificationHistory]:
        pass

    @abstractmethod
    async def probe(self) -> None:
        """
        Check that the store answers.

        Raises:
            ConnectionProbeException: if it does not
        """
        pass


# =============================================================================
# IN-MEMORY REPOSITORY
# =============================================================================

class InMemoryRepository(Repository):
    """Dict-backed repository."""

    def __init__(self, change_feed: Optional[InMemoryChangeFeed] = None):
        self.change_feed = change_feed
        self.available = True

        self._webhooks: Dict[str, WebhookConfig] = {}
        self._executions: Dict[str, Execution] = {}
        self._test_results: Dict[str, TestResult] = {}
        self._templates: Dict[str, TestTemplate] = {}
        self._metrics: List[PerformanceMetrics] = []
        self._alerts: Dict[str, Alert] = {}
        self._rules: Dict[str, NotificationRule] = {}
        self._history: List[NotificationHistory] = []

    async def _publish(self, topic: ChangeTopic, operation: ChangeOperation, record, old_record=None):
        if self.change_feed:
            await self.change_feed.publish(topic, operation, record, old_record)

    # -------------------------------------------------------------------------
    # Webhooks
    # -------------------------------------------------------------------------

    async def get_webhook(self, webhook_id: str) -> Optional[WebhookConfig]:
        return self._webhooks.get(webhook_id)

    async def save_webhook(self, webhook: WebhookConfig) -> WebhookConfig:
        self._webhooks[webhook.id] = webhook
        return webhook

    async def update_webhook_health(
        self, webhook_id: str, status: HealthStatus, checked_at: Optional[datetime] = None
    ) -> None:
        webhook = self._webhooks.get(webhook_id)
        if not webhook:
            raise RecordNotFoundException("webhook", webhook_id)
        self._webhooks[webhook_id] = webhook.model_copy(update={
            "health_status": HealthStatus(status).value,
            "last_health_check": checked_at or utc_now(),
        })

    # -------------------------------------------------------------------------
    # Executions
    # -------------------------------------------------------------------------

    async def start_execution(self, execution: Execution) -> None:
        record = execution.model_copy(deep=True)
        self._executions[record.id] = record
        await self._publish(ChangeTopic.EXECUTION, ChangeOperation.INSERT, record)

    async def complete_execution(self, execution: Execution) -> None:
        old = self._executions.get(execution.id)
        record = execution.model_copy(deep=True)
        self._executions[record.id] = record
        operation = ChangeOperation.UPDATE if old else ChangeOperation.INSERT
        await self._publish(ChangeTopic.EXECUTION, operation, record, old)

    async def delete_execution(self, execution_id: str) -> None:
        old = self._executions.pop(execution_id, None)
        if old:
            await self._publish(ChangeTopic.EXECUTION, ChangeOperation.DELETE, None, old)

    async def recent_executions(
        self,
        webhook_id: str,
        element_id: Optional[str] = None,
        limit: int = 50,
    ) -> List[Execution]:
        matches = [
            e for e in self._executions.values()
            if e.webhook_id == webhook_id and (element_id is None or e.element_id == element_id)
        ]
        matches.sort(key=lambda e: e.execution_started_at, reverse=True)
        return matches[:limit]

    async def latest_successful_payload(
        self, webhook_id: str, element_id: Optional[str] = None
    ) -> Optional[Dict[str, Any]]:
        for execution in await self.recent_executions(webhook_id, element_id, limit=len(self._executions)):
            if execution.success:
                return dict(execution.request_payload)
        return None

    # -------------------------------------------------------------------------
    # Test results and templates
    # -------------------------------------------------------------------------

    async def save_test_result(self, result: TestResult) -> None:
        self._test_results[result.test_id] = result.model_copy(deep=True)

    async def get_test_result(self, test_id: str) -> Optional[TestResult]:
        return self._test_results.get(test_id)

    async def save_test_template(self, template: TestTemplate) -> TestTemplate:
        self._templates[template.id] = template
        return template

    async def get_test_template(self, template_id: str) -> Optional[TestTemplate]:
        return self._templates.get(template_id)

    # -------------------------------------------------------------------------
    # Metrics
    # -------------------------------------------------------------------------

    async def save_metrics(self, metrics: PerformanceMetrics) -> None:
        previous = await self.latest_metrics(metrics.webhook_id, metrics.element_id)
        self._metrics.append(metrics)
        operation = ChangeOperation.UPDATE if previous else ChangeOperation.INSERT
        await self._publish(ChangeTopic.METRIC, operation, metrics, previous)

    async def latest_metrics(
        self, webhook_id: str, element_id: Optional[str] = None
    ) -> Optional[PerformanceMetrics]:
        for metrics in reversed(self._metrics):
            if metrics.webhook_id == webhook_id and (element_id is None or metrics.element_id == element_id):
                return metrics
        return None

    # -------------------------------------------------------------------------
    # Alerts
    # -------------------------------------------------------------------------

    async def get_alert(self, alert_id: str) -> Optional[Alert]:
        alert = self._alerts.get(alert_id)
        return alert.model_copy(deep=True) if alert else None

    async def save_alert(self, alert: Alert) -> None:
        record = alert.model_copy(deep=True)
        self._alerts[record.id] = record
        await self._publish(ChangeTopic.ALERT, ChangeOperation.INSERT, record)

    async def update_alert(self, alert: Alert) -> None:
        old = self._alerts.get(alert.id)
        if not old:
            raise RecordNotFoundException("alert", alert.id)
        record = alert.model_copy(deep=True)
        self._alerts[record.id] = record
        await self._publish(ChangeTopic.ALERT, ChangeOperation.UPDATE, record, old)

    async def list_open_alerts(
        self, webhook_id: str, element_id: Optional[str] = None
    ) -> List[Alert]:
        return [
            a.model_copy(deep=True) for a in self._alerts.values()
            if a.webhook_id == webhook_id
            and not a.resolved
            and (element_id is None or a.element_id in (None, element_id))
        ]

    # -------------------------------------------------------------------------
    # Rules and history
    # -------------------------------------------------------------------------

    async def save_rule(self, rule: NotificationRule) -> NotificationRule:
        self._rules[rule.id] = rule
        return rule

    async def list_rules(self, organization_id: str) -> List[NotificationRule]:
        return [r for r in self._rules.values() if r.organization_id == organization_id]

    async def append_notification(self, history: NotificationHistory) -> None:
        self._history.append(history)

    async def get_last_notification(
        self, rule_id: str, webhook_id: Optional[str]
    ) -> Optional[NotificationHistory]:
        for entry in reversed(self._history):
            if entry.rule_id == rule_id and entry.webhook_id == webhook_id:
                return entry
        return None

    async def list_notifications(self, organization_id: Optional[str] = None) -> List[NotificationHistory]:
        return [h for h in self._history if organization_id is None or h.organization_id == organization_id]

    async def probe(self) -> None:
        if not self.available:
            raise ConnectionProbeException("Repository is unavailable")
