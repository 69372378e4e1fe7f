from __future__ import annotations

import logging
from typing import Callable, List, Tuple

from .changes import ChangeEvent, Subscription
from .repository import BackendError, TableStore

logger = logging.getLogger(__name__)


class LiveView:
    """Working set read from a ``TableStore`` and kept current by change notifications.

    Subclasses implement ``_fetch`` (read everything the view shows) and
    ``_apply`` (replace the working set). ``watched_tables`` names the tables
    whose notifications trigger a full re-fetch; an empty tuple means the view
    only refreshes on demand.
    """

    watched_tables: Tuple[str, ...] = ()

    def __init__(self, store: TableStore):
        self._store = store
        self._subscription: Subscription | None = None
        self._listeners: List[Callable[["LiveView"], None]] = []
        self.loaded = False
        self.last_error: BackendError | None = None

    def load(self) -> None:
        """Re-read the working set; on failure the previous one is kept and the error raised."""
        try:
            data = self._fetch()
        except BackendError as exc:
            logger.error("%s failed to load: %s", type(self).__name__, exc)
            self.last_error = exc
            raise
        self._apply(data)
        self.loaded = True
        self.last_error = None
        for listener in list(self._listeners):
            listener(self)

    def activate(self) -> "LiveView":
        if self.watched_tables and self._subscription is None:
            self._subscription = self._store.feed.subscribe(self.watched_tables, self._on_change)
        try:
            self.load()
        except BackendError:
            pass  # logged by load(); callers check last_error
        return self

    def deactivate(self) -> None:
        if self._subscription is not None:
            self._subscription.close()
            self._subscription = None

    @property
    def active(self) -> bool:
        return self._subscription is not None

    def add_listener(self, listener: Callable[["LiveView"], None]) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: Callable[["LiveView"], None]) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def _on_change(self, event: ChangeEvent) -> None:
        logger.debug("%s refreshing after %s on %s", type(self).__name__, event.event_type, event.table)
        try:
            self.load()
        except BackendError:
            pass  # already logged by load(); the previous working set stays on screen

    def _fetch(self):
        raise NotImplementedError

    def _apply(self, data) -> None:
        raise NotImplementedError

    def __enter__(self):
        return self.activate()

    def __exit__(self, *exc_info) -> None:
        self.deactivate()
