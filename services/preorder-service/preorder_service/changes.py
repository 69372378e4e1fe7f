from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterable, List, Literal

logger = logging.getLogger(__name__)

EventType = Literal["INSERT", "UPDATE"]


@dataclass(frozen=True)
class ChangeEvent:
    table: str
    event_type: EventType
    record: dict = field(default_factory=dict)


ChangeCallback = Callable[[ChangeEvent], None]


class Subscription:
    """Handle for a registered callback; release it with ``close()`` or ``with``."""

    def __init__(self, feed: "ChangeFeed", tables: Iterable[str], callback: ChangeCallback):
        self._feed = feed
        self.tables = frozenset(tables)
        self.callback = callback
        self.closed = False

    def close(self) -> None:
        if self.closed:
            return
        self._feed._remove(self)
        self.closed = True

    def __enter__(self) -> "Subscription":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()


class ChangeFeed:
    """In-process publisher of row-level change notifications, keyed by table."""

    def __init__(self):
        self._lock = threading.Lock()
        self._subscriptions: Dict[str, List[Subscription]] = {}

    def subscribe(self, tables: Iterable[str] | str, callback: ChangeCallback) -> Subscription:
        if isinstance(tables, str):
            tables = [tables]
        subscription = Subscription(self, tables, callback)
        with self._lock:
            for table in subscription.tables:
                self._subscriptions.setdefault(table, []).append(subscription)
        logger.debug("Subscribed to %s", ", ".join(sorted(subscription.tables)))
        return subscription

    def publish(self, event: ChangeEvent) -> None:
        with self._lock:
            subscribers = list(self._subscriptions.get(event.table, ()))
        for subscription in subscribers:
            try:
                subscription.callback(event)
            except Exception:
                logger.exception(
                    "Change subscriber failed for %s %s", event.event_type, event.table
                )

    def subscriber_count(self, table: str) -> int:
        with self._lock:
            return len(self._subscriptions.get(table, ()))

    def _remove(self, subscription: Subscription) -> None:
        with self._lock:
            for table in subscription.tables:
                entries = self._subscriptions.get(table, [])
                if subscription in entries:
                    entries.remove(subscription)
                if not entries:
                    self._subscriptions.pop(table, None)
        logger.debug("Released subscription on %s", ", ".join(sorted(subscription.tables)))
