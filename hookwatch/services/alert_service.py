"""
HOOKWATCH - Alert Service
=========================
Matches alerts against notification rules, enforces per-rule cooldowns,
schedules escalations and tracks acknowledgement.
"""

import asyncio
import logging
from collections import OrderedDict
from datetime import datetime, timedelta
from typing import Optional, Dict, List, Any, Tuple

from hookwatch.core.exceptions import RecordNotFoundException
from hookwatch.models.entities import (
    Alert,
    AlertSeverity,
    NotificationRule,
    NotificationHistory,
    EscalationLevel,
    utc_now,
)
from hookwatch.channels.notifications import NotificationDispatcher
from hookwatch.storage.repository import Repository

logger = logging.getLogger(__name__)

HANDLED_ALERT_MEMORY = 1000


def _number(value: Any) -> Optional[float]:
    if isinstance(value, bool) or value is None:
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def rule_matches_scope(rule: NotificationRule, alert: Alert) -> bool:
    """A rule without a webhook or element id covers the whole organization."""
    if rule.webhook_id and rule.webhook_id != alert.webhook_id:
        return False
    if rule.element_id and rule.element_id != alert.element_id:
        return False
    return True


class AlertEvaluator:
    """
    Service that turns alerts into rule-driven notifications.
    """

    def __init__(self, repository: Repository, dispatcher: NotificationDispatcher):
        self.repository = repository
        self.dispatcher = dispatcher

        # (rule_id, webhook_id) -> last notification time
        self._last_notified: Dict[Tuple[str, Optional[str]], datetime] = {}

        # Alert ids already routed, oldest first
        self._handled: "OrderedDict[str, None]" = OrderedDict()

        # alert_id -> pending escalation tasks
        self._escalations: Dict[str, List[asyncio.Task]] = {}
        self._running = False

    # =========================================================================
    # RULE MATCHING
    # =========================================================================

    async def select_rules(self, alert: Alert) -> List[NotificationRule]:
        """Enabled rules whose scope covers the alert."""
        rules = await self.repository.list_rules(alert.organization_id)
        return [
            rule for rule in rules
            if rule.is_enabled and rule_matches_scope(rule, alert)
        ]

    def should_trigger(self, rule: NotificationRule, alert: Alert) -> bool:
        """Severity or any enabled threshold fires the rule."""
        if alert.severity in (AlertSeverity.CRITICAL, AlertSeverity.WARNING):
            return True

        conditions = rule.trigger_conditions
        data = alert.alert_data

        error_rate = _number(data.get("error_rate"))
        if conditions.error_rate_threshold and error_rate is not None:
            if error_rate >= conditions.error_rate_threshold:
                return True

        response_time = _number(data.get("response_time"))
        if conditions.response_time_threshold and response_time is not None:
            if response_time >= conditions.response_time_threshold:
                return True

        score = _number(data.get("performance_score"))
        if conditions.performance_score_threshold and score is not None:
            if score <= conditions.performance_score_threshold:
                return True

        failures = _number(data.get("consecutive_failures", data.get("failure_count")))
        if conditions.failure_threshold and failures is not None:
            if failures >= conditions.failure_threshold:
                return True

        return False

    # =========================================================================
    # COOLDOWN
    # =========================================================================

    async def last_notified_at(self, rule: NotificationRule, webhook_id: Optional[str]) -> Optional[datetime]:
        key = (rule.id, webhook_id)
        if key in self._last_notified:
            return self._last_notified[key]

        try:
            history = await self.repository.get_last_notification(rule.id, webhook_id)
        except Exception as e:
            logger.warning(f"Could not load notification history for rule {rule.id}: {e}")
            return None

        if history:
            self._last_notified[key] = history.triggered_at
            return history.triggered_at
        return None

    async def in_cooldown(self, rule: NotificationRule, webhook_id: Optional[str], now: Optional[datetime] = None) -> bool:
        last = await self.last_notified_at(rule, webhook_id)
        if last is None:
            return False
        now = now or utc_now()
        return now < last + timedelta(minutes=rule.cooldown_minutes)

    # =========================================================================
    # ALERT HANDLING
    # =========================================================================

    async def handle_alert(self, alert: Alert) -> List[NotificationHistory]:
        """
        Notify every matching rule that fires and is outside its cooldown.

        Returns:
            History entries for the dispatches made
        """
        if alert.resolved:
            return []

        if alert.id in self._handled:
            logger.debug(f"Alert {alert.id} already handled, skipping")
            return []
        self._handled[alert.id] = None
        while len(self._handled) > HANDLED_ALERT_MEMORY:
            self._handled.popitem(last=False)

        dispatched = []
        for rule in await self.select_rules(alert):
            if not self.should_trigger(rule, alert):
                continue

            if await self.in_cooldown(rule, alert.webhook_id):
                logger.info(f"Rule {rule.id} in cooldown for webhook {alert.webhook_id}, skipping alert {alert.id}")
                continue

            # Mark before awaiting so concurrent alerts from the same source are suppressed
            self._last_notified[(rule.id, alert.webhook_id)] = utc_now()

            history = await self.dispatcher.dispatch(rule, alert)
            dispatched.append(history)

            self._schedule_escalations(rule, alert)

        return dispatched

    # =========================================================================
    # ESCALATION
    # =========================================================================

    def _schedule_escalations(self, rule: NotificationRule, alert: Alert):
        for level in rule.escalation_levels:
            task = asyncio.create_task(self._escalate(rule, alert.id, level))
            tasks = self._escalations.setdefault(alert.id, [])
            tasks.append(task)
            task.add_done_callback(lambda t, alert_id=alert.id: self._forget_escalation(alert_id, t))

    def _forget_escalation(self, alert_id: str, task: asyncio.Task):
        tasks = self._escalations.get(alert_id)
        if tasks and task in tasks:
            tasks.remove(task)
            if not tasks:
                del self._escalations[alert_id]

    def pending_escalations(self, alert_id: str) -> int:
        return len(self._escalations.get(alert_id, []))

    async def _escalate(self, rule: NotificationRule, alert_id: str, level: EscalationLevel):
        try:
            await asyncio.sleep(level.delay_minutes * 60)

            alert = await self.repository.get_alert(alert_id)
            if alert is None or alert.acknowledged or alert.resolved:
                logger.info(f"Escalation level {level.level} for alert {alert_id} not needed")
                return

            await self.dispatcher.dispatch(
                rule,
                alert,
                channels=level.channels or None,
                recipients=level.recipients or None,
                escalation_level=level.level,
            )
            logger.warning(f"Alert {alert_id} escalated to level {level.level}")

        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Escalation level {level.level} for alert {alert_id} failed: {e}")

    def _cancel_escalations(self, alert_id: str):
        for task in list(self._escalations.get(alert_id, [])):
            task.cancel()

    # =========================================================================
    # ALERT MANAGEMENT
    # =========================================================================

    async def acknowledge_alert(self, alert_id: str, user_id: str) -> Alert:
        """Acknowledge an alert. Raises AlertStateException for resolved alerts."""
        alert = await self.repository.get_alert(alert_id)
        if not alert:
            raise RecordNotFoundException("alert", alert_id)

        alert.acknowledge(user_id)
        await self.repository.update_alert(alert)
        self._cancel_escalations(alert_id)

        logger.info(f"Alert {alert_id} acknowledged by {user_id}")
        return alert

    async def resolve_alert(self, alert_id: str) -> Alert:
        alert = await self.repository.get_alert(alert_id)
        if not alert:
            raise RecordNotFoundException("alert", alert_id)

        alert.resolve()
        await self.repository.update_alert(alert)
        self._cancel_escalations(alert_id)

        logger.info(f"Alert {alert_id} resolved")
        return alert

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    async def start(self):
        self._running = True

    async def stop(self):
        """Cancel pending escalations."""
        self._running = False

        tasks = [task for tasks in self._escalations.values() for task in tasks]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._escalations.clear()

        logger.info("Alert evaluator stopped")
