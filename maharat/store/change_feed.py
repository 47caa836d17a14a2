from __future__ import annotations

import itertools
import logging
import threading
from collections.abc import Callable, Iterable

ChangeHandler = Callable[[str], None]

logger = logging.getLogger(__name__)


class ChangeFeed:
    """Fan-out of committed collection changes to registered watchers."""

    def __init__(self) -> None:
        self._handlers: dict[str, dict[int, ChangeHandler]] = {}
        self._ids = itertools.count(1)
        self._lock = threading.RLock()

    def subscribe(self, collection: str, handler: ChangeHandler) -> int:
        with self._lock:
            handler_id = next(self._ids)
            self._handlers.setdefault(collection, {})[handler_id] = handler
            return handler_id

    def unsubscribe(self, collection: str, handler_id: int) -> None:
        with self._lock:
            handlers = self._handlers.get(collection)
            if not handlers:
                return
            handlers.pop(handler_id, None)
            if not handlers:
                self._handlers.pop(collection, None)

    def watcher_count(self, collection: str) -> int:
        with self._lock:
            return len(self._handlers.get(collection, {}))

    def publish(self, collections: Iterable[str]) -> None:
        for collection in dict.fromkeys(collections):
            with self._lock:
                handlers = list(self._handlers.get(collection, {}).values())
            for handler in handlers:
                try:
                    handler(collection)
                except Exception:
                    logger.exception('change_feed_handler_failed collection=%s', collection)
