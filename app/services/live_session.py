"""One live-view session: engine + feed subscription + poll timer + viewer heartbeat."""

from __future__ import annotations

import logging
import threading
from typing import Callable, Dict, List, Optional, Tuple

from app.core.errors import TransientNetworkError
from app.services.change_feed import ChangeFeed
from app.services.live_gallery import ConnectionState, ReconciliationEngine
from app.services.photo_record import FeedEvent, PhotoRecord

logger = logging.getLogger(__name__)

SnapshotFetcher = Callable[[], List[PhotoRecord]]


class LiveSession:
    """Keeps a `ReconciliationEngine` fed until `close()`.

    The poll is a correctness backstop for events the feed drops: it runs on
    its own timer whether or not the feed is connected, and a failed poll
    leaves the current state alone.
    """

    def __init__(
        self,
        event_id: int,
        feed: ChangeFeed,
        fetch_snapshot: SnapshotFetcher,
        poll_interval: float = 5.0,
        heartbeat: Optional[Callable[[], None]] = None,
        heartbeat_interval: float = 60.0,
        on_close: Optional[Callable[[], None]] = None,
        engine: Optional[ReconciliationEngine] = None,
    ):
        self.event_id = event_id
        self.engine = engine or ReconciliationEngine(event_id)
        self._feed = feed
        self._fetch_snapshot = fetch_snapshot
        self._poll_interval = float(poll_interval)
        self._heartbeat = heartbeat
        self._heartbeat_interval = float(heartbeat_interval)
        self._on_close = on_close
        self._stop = threading.Event()
        self._threads: List[threading.Thread] = []
        self._unsubscribe: Optional[Callable[[], None]] = None
        self._started = False
        self.poll_failures = 0

    def start(self) -> "LiveSession":
        if self._started:
            return self
        self._started = True
        try:
            self.engine.seed(self._fetch_snapshot())
        except Exception as e:
            # The first poll will fill the gallery in
            self._log_transient("live.seed_failed", e)
        self._unsubscribe = self._feed.subscribe(self.event_id, self._on_event, self._on_status)
        if self._poll_interval > 0:
            self._spawn("live-poll", self._poll_interval, self.poll_once)
        if self._heartbeat is not None and self._heartbeat_interval > 0:
            self._beat()
            self._spawn("live-heartbeat", self._heartbeat_interval, self._beat)
        return self

    def _spawn(self, name: str, interval: float, fn: Callable[[], object]) -> None:
        def run() -> None:
            while not self._stop.wait(interval):
                fn()

        t = threading.Thread(target=run, name=f"{name}-{self.event_id}", daemon=True)
        self._threads.append(t)
        t.start()

    def _on_event(self, event: FeedEvent) -> None:
        self.engine.apply_feed_event(event)

    def _on_status(self, state: ConnectionState) -> None:
        self.engine.set_connection_state(state)

    def poll_once(self) -> bool:
        """Run one full refresh; returns False if the fetch failed."""
        token = self.engine.poll_token()
        try:
            photos = self._fetch_snapshot()
        except Exception as e:
            self.poll_failures += 1
            self._log_transient("live.poll_failed", e)
            return False
        self.engine.apply_poll_refresh(photos, token)
        return True

    def _beat(self) -> None:
        try:
            self._heartbeat()
        except Exception as e:
            self._log_transient("live.heartbeat_failed", e)

    def _log_transient(self, message: str, exc: Exception) -> None:
        err = TransientNetworkError(str(exc))
        logger.warning(message, extra={"event_id": self.event_id, "error": err.message})

    @property
    def closed(self) -> bool:
        return self._stop.is_set()

    def close(self, timeout: float = 5.0) -> None:
        if self._stop.is_set():
            return
        self._stop.set()
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        current = threading.current_thread()
        for t in self._threads:
            if t is not current:
                t.join(timeout)
        self._threads = []
        if self._on_close is not None:
            try:
                self._on_close()
            except Exception as e:
                self._log_transient("live.cleanup_failed", e)

    def __enter__(self) -> "LiveSession":
        return self.start()

    def __exit__(self, *exc) -> None:
        self.close()


class LiveSessionRegistry:
    """Open live sessions by (event, user), so a user's own requests can reach their streams."""

    def __init__(self):
        self._lock = threading.Lock()
        self._sessions: Dict[Tuple[int, str], List[LiveSession]] = {}

    def register(self, session: LiveSession, user_id: str) -> Callable[[], None]:
        """Track `session` for `user_id`; returns an idempotent unregister handle."""
        key = (int(session.event_id), str(user_id))
        with self._lock:
            self._sessions.setdefault(key, []).append(session)

        def unregister() -> None:
            with self._lock:
                sessions = self._sessions.get(key, [])
                if session in sessions:
                    sessions.remove(session)
                if not sessions:
                    self._sessions.pop(key, None)

        return unregister

    def for_user(self, event_id: int, user_id: str) -> List[LiveSession]:
        with self._lock:
            return [s for s in self._sessions.get((int(event_id), str(user_id)), []) if not s.closed]

    def begin_like(self, event_id: int, photo_id: str, user_id: str, delta: int) -> "PendingLike":
        """Show a like toggle on the user's open sessions before the write commits."""
        engines = []
        for session in self.for_user(event_id, user_id):
            session.engine.apply_optimistic_like(photo_id, user_id, delta)
            engines.append(session.engine)
        return PendingLike(engines, str(photo_id), str(user_id))


class PendingLike:
    """An optimistic like shown on some engines, waiting for the write to finish."""

    def __init__(self, engines: List[ReconciliationEngine], photo_id: str, user_id: str):
        self.engines = engines
        self.photo_id = photo_id
        self.user_id = user_id

    def confirm(self, likes_count: Optional[int] = None) -> None:
        for engine in self.engines:
            engine.confirm_like(self.photo_id, self.user_id, likes_count)

    def rollback(self) -> None:
        for engine in self.engines:
            engine.rollback_like(self.photo_id, self.user_id)
