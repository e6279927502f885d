from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from threading import Lock
from typing import Any, Dict, List, Mapping, Optional
from uuid import UUID, uuid4

logger = logging.getLogger(__name__)


class ChangeType(str, Enum):
    INSERT = "INSERT"
    UPDATE = "UPDATE"
    DELETE = "DELETE"


@dataclass(frozen=True)
class ChangeEvent:
    table: str
    event_type: ChangeType
    record: Dict[str, Any]
    old_record: Optional[Dict[str, Any]] = None
    occurred_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_payload(self) -> Dict[str, Any]:
        return {
            "table": self.table,
            "eventType": self.event_type.value,
            "new": self.record,
            "old": self.old_record,
            "occurred_at": self.occurred_at.isoformat(),
        }


ChangeCallback = Callable[[ChangeEvent], None]


class Subscription:
    """Handle returned by :meth:`ChangeFeed.subscribe`.

    ``unsubscribe`` releases the listener exactly once; later calls are
    no-ops and return False.
    """

    def __init__(self, feed: "ChangeFeed", table: str, filters: Mapping[str, Any], callback: ChangeCallback) -> None:
        self.id: UUID = uuid4()
        self.table = table
        self.filters = dict(filters)
        self.callback = callback
        self._feed = feed
        self._active = True
        self._state_lock = Lock()

    @property
    def active(self) -> bool:
        return self._active

    def matches(self, event: ChangeEvent) -> bool:
        if event.table != self.table:
            return False
        # DELETE events may only carry the old row.
        row = event.record or event.old_record or {}
        return all(str(row.get(key)) == str(value) for key, value in self.filters.items())

    def unsubscribe(self) -> bool:
        with self._state_lock:
            if not self._active:
                return False
            self._active = False
        self._feed._remove(self)
        return True

    def __enter__(self) -> "Subscription":
        return self

    def __exit__(self, exc_type, exc, tb) -> bool:
        self.unsubscribe()
        return False


class ChangeFeed:
    """In-process change feed keyed by table and equality filters.

    Writers call :meth:`publish` after a successful write; listeners such as
    open note-history views register with :meth:`subscribe`.
    """

    def __init__(self) -> None:
        self._subscriptions: Dict[UUID, Subscription] = {}
        self._lock = Lock()

    def subscribe(self, table: str, filters: Mapping[str, Any], callback: ChangeCallback) -> Subscription:
        subscription = Subscription(self, table, filters, callback)
        with self._lock:
            self._subscriptions[subscription.id] = subscription
        logger.debug("Subscribed %s to %s %s", subscription.id, table, dict(filters))
        return subscription

    def _remove(self, subscription: Subscription) -> None:
        with self._lock:
            self._subscriptions.pop(subscription.id, None)
        logger.debug("Unsubscribed %s from %s", subscription.id, subscription.table)

    @property
    def subscription_count(self) -> int:
        return len(self._subscriptions)

    def publish(self, event: ChangeEvent) -> int:
        """Deliver ``event`` to every matching subscriber.

        Returns the number of subscribers notified. A failing subscriber is
        logged and skipped so that it cannot fail the write that produced the
        event.
        """

        with self._lock:
            targets: List[Subscription] = [s for s in self._subscriptions.values() if s.matches(event)]

        delivered = 0
        for subscription in targets:
            try:
                subscription.callback(event)
                delivered += 1
            except Exception:
                logger.exception("Change feed subscriber %s failed", subscription.id)
        return delivered

    def close(self) -> int:
        """Unsubscribe everything; returns how many listeners were released."""

        with self._lock:
            remaining = list(self._subscriptions.values())
        return sum(1 for subscription in remaining if subscription.unsubscribe())
