"""
HOOKWATCH - Change Feed
=======================
Row-level change notifications for executions, metrics and alerts.

A ChangeFeed delivers ChangeEvents for one (webhook, element) scope to a
handler until the returned ChangeSubscription is unsubscribed.
"""

import asyncio
import logging
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Dict, Any, Callable, Set

from hookwatch.core.exceptions import SubscriptionException

logger = logging.getLogger(__name__)


class ChangeTopic(str, Enum):
    EXECUTION = "execution"
    METRIC = "metric"
    ALERT = "alert"


class ChangeOperation(str, Enum):
    INSERT = "INSERT"
    UPDATE = "UPDATE"
    DELETE = "DELETE"


@dataclass
class ChangeEvent:
    """A single row change. `record` is None for deletes that only carry `old_record`."""
    topic: ChangeTopic
    operation: ChangeOperation
    record: Optional[Any] = None
    old_record: Optional[Any] = None

    @property
    def row(self) -> Optional[Any]:
        return self.record if self.record is not None else self.old_record


ChangeHandler = Callable[[ChangeEvent], Any]


class ChangeSubscription(ABC):
    """Handle for an open change subscription."""

    @abstractmethod
    async def unsubscribe(self) -> None:
        """Stop receiving events."""
        pass


class ChangeFeed(ABC):
    """Abstract change feed."""

    @abstractmethod
    async def subscribe(
        self,
        topic: ChangeTopic,
        webhook_id: str,
        element_id: Optional[str],
        handler: ChangeHandler,
    ) -> ChangeSubscription:
        """
        Open a subscription.

        Raises:
            SubscriptionException: if the feed refuses the subscription
        """
        pass


# =============================================================================
# IN-MEMORY FEED
# =============================================================================

class _InMemorySubscription(ChangeSubscription):

    def __init__(self, feed: "InMemoryChangeFeed", subscription_id: str):
        self._feed = feed
        self.subscription_id = subscription_id

    async def unsubscribe(self) -> None:
        self._feed._subscriptions.pop(self.subscription_id, None)


class InMemoryChangeFeed(ChangeFeed):
    """Process-local change feed; InMemoryRepository publishes into it."""

    def __init__(self):
        self._subscriptions: Dict[str, Dict[str, Any]] = {}
        self.failing_topics: Set[ChangeTopic] = set()

    @property
    def subscription_count(self) -> int:
        return len(self._subscriptions)

    async def subscribe(
        self,
        topic: ChangeTopic,
        webhook_id: str,
        element_id: Optional[str],
        handler: ChangeHandler,
    ) -> ChangeSubscription:
        topic = ChangeTopic(topic)
        if topic in self.failing_topics:
            raise SubscriptionException(
                f"Change feed rejected {topic.value} subscription",
                webhook_id=webhook_id,
                topic=topic.value,
            )

        subscription_id = f"sub_{uuid.uuid4().hex[:12]}"
        self._subscriptions[subscription_id] = {
            "topic": topic,
            "webhook_id": webhook_id,
            "element_id": element_id,
            "handler": handler,
        }
        return _InMemorySubscription(self, subscription_id)

    async def publish(
        self,
        topic: ChangeTopic,
        operation: ChangeOperation,
        record: Optional[Any] = None,
        old_record: Optional[Any] = None,
    ) -> int:
        """Deliver an event to matching subscribers. Returns the delivery count."""
        event = ChangeEvent(ChangeTopic(topic), ChangeOperation(operation), record, old_record)
        row = event.row
        if row is None:
            return 0

        delivered = 0
        for sub in list(self._subscriptions.values()):
            if sub["topic"] != event.topic or sub["webhook_id"] != row.webhook_id:
                continue
            row_element = getattr(row, "element_id", None)
            if sub["element_id"] is not None and row_element is not None and row_element != sub["element_id"]:
                continue

            try:
                result = sub["handler"](event)
                if asyncio.iscoroutine(result):
                    await result
                delivered += 1
            except Exception as e:
                logger.error(f"Change handler failed for {event.topic.value} {event.operation.value}: {e}")

        return delivered
