"""In-process change feed: row changes for one event's photos, pushed to live sessions.

Route handlers publish after their transaction commits; each live session
subscribes with an event callback and a status callback. Delivery is
best-effort and unordered across publishers; sessions reconcile with polls.
"""

from __future__ import annotations

import logging
import threading
from typing import Callable, Dict, List, Tuple

from app.services.live_gallery import ConnectionState
from app.services.photo_record import FeedEvent

logger = logging.getLogger(__name__)

EventCallback = Callable[[FeedEvent], None]
StatusCallback = Callable[[ConnectionState], None]


class ChangeFeed:
    def __init__(self):
        self._lock = threading.Lock()
        self._subscribers: Dict[int, List[Tuple[EventCallback, StatusCallback]]] = {}

    def subscribe(
        self, event_id: int, on_event: EventCallback, on_status: StatusCallback
    ) -> Callable[[], None]:
        """Start delivering events for `event_id`; returns an idempotent unsubscribe handle."""
        entry = (on_event, on_status)
        self._status(on_status, ConnectionState.CONNECTING)
        with self._lock:
            self._subscribers.setdefault(int(event_id), []).append(entry)
        self._status(on_status, ConnectionState.CONNECTED)
        logger.debug("feed.subscribe", extra={"event_id": event_id})

        done = threading.Event()

        def unsubscribe() -> None:
            if done.is_set():
                return
            done.set()
            with self._lock:
                subs = self._subscribers.get(int(event_id), [])
                if entry in subs:
                    subs.remove(entry)
                if not subs:
                    self._subscribers.pop(int(event_id), None)
            self._status(on_status, ConnectionState.DISCONNECTED)
            logger.debug("feed.unsubscribe", extra={"event_id": event_id})

        return unsubscribe

    def publish(self, event_id: int, event: FeedEvent) -> int:
        """Deliver to every subscriber of `event_id`; returns how many received it."""
        with self._lock:
            subs = list(self._subscribers.get(int(event_id), []))
        delivered = 0
        for on_event, _ in subs:
            try:
                on_event(event)
                delivered += 1
            except Exception:
                # One broken session must not starve the others
                logger.exception(
                    "feed.delivery_failed",
                    extra={"event_id": event_id, "kind": event.kind.value, "photo_id": event.photo.id},
                )
        return delivered

    def subscriber_count(self, event_id: int) -> int:
        with self._lock:
            return len(self._subscribers.get(int(event_id), []))

    @staticmethod
    def _status(on_status: StatusCallback, state: ConnectionState) -> None:
        try:
            on_status(state)
        except Exception:
            logger.exception("feed.status_callback_failed", extra={"state": state.value})
