"""
In-process change feed: subscribe to a collection, receive snapshots after each committed write.
Process-local; the API bridges it to WebSocket clients.
"""
from __future__ import annotations

import logging
import threading
from typing import Any, Callable

logger = logging.getLogger(__name__)

Callback = Callable[[str, dict[str, Any]], None]


class ChangeFeed:
    """
    subscribe(collection, callback, encounter_id=None) -> unsubscribe.
    Snapshots are delivered in publish order per publisher thread; a failing
    subscriber is logged and does not affect the writer or other subscribers.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._subscribers: list[tuple[str, str | None, Callback]] = []

    def subscribe(
        self,
        collection: str,
        callback: Callback,
        encounter_id: str | None = None,
    ) -> Callable[[], None]:
        entry = (collection, encounter_id, callback)
        with self._lock:
            self._subscribers.append(entry)

        def unsubscribe() -> None:
            with self._lock:
                if entry in self._subscribers:
                    self._subscribers.remove(entry)

        return unsubscribe

    def publish(self, collection: str, payload: dict[str, Any]) -> int:
        """Deliver payload to matching subscribers. Returns how many were called."""
        encounter_id = payload.get("encounter_id") if collection != "encounters" else payload.get("id")
        with self._lock:
            targets = [
                cb for coll, eid, cb in self._subscribers
                if coll == collection and (eid is None or eid == encounter_id)
            ]
        for cb in targets:
            try:
                cb(collection, payload)
            except Exception:
                logger.exception("Subscriber for %s failed", collection)
        return len(targets)

    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscribers)


# Default feed shared by services and the API
feed = ChangeFeed()
