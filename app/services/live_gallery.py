"""Live gallery state for one viewing session.

`ReconciliationEngine` owns the visible photo list of one live session and
merges three unordered inputs into it:

- the initial snapshot (`seed`),
- change-feed events (`apply_feed_event`),
- periodic full refreshes (`apply_poll_refresh`).

On top of that it keeps the session user's unconfirmed like toggles as
`LikeOverlay` values. Overlays are applied when a view is read and are never
written into the stored records, so a refresh carrying the true count cannot
erase a like the user just made, and a failed toggle rolls back cleanly.

Every mutating call takes the same lock, so feed callbacks, the poll thread
and request handlers may call in from different threads. Listeners are
notified after the lock is released.
"""

from __future__ import annotations

import logging
import threading
from collections import defaultdict
from dataclasses import dataclass, replace
from datetime import datetime
from enum import Enum
from typing import Callable, Dict, Iterable, List, Optional, Tuple

from app.services.photo_record import FeedEvent, FeedKind, PhotoRecord

logger = logging.getLogger(__name__)


class ConnectionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


class SortMode(str, Enum):
    NEWEST = "newest"
    POPULAR = "popular"


@dataclass(frozen=True)
class LikeOverlay:
    photo_id: str
    user_id: str
    delta: int


@dataclass(frozen=True)
class _Tombstone:
    clock: int
    created_at: Optional[datetime]
    # True for explicit deletes; hidden photos may come back through an update
    deleted: bool


def sort_photos(photos: Iterable[PhotoRecord], mode: SortMode = SortMode.NEWEST) -> List[PhotoRecord]:
    """Newest first, or most liked first; ties fall back to newest, then id."""
    ordered = sorted(photos, key=lambda p: p.id)
    # list.sort is stable, so each pass keeps the previous order among equal keys
    ordered.sort(key=lambda p: p.created_at, reverse=True)
    if SortMode(mode) == SortMode.POPULAR:
        ordered.sort(key=lambda p: p.likes_count or 0, reverse=True)
    return ordered


class ReconciliationEngine:
    def __init__(self, event_id: int):
        self.event_id = event_id
        self._lock = threading.RLock()
        self._order: List[str] = []
        self._photos: Dict[str, PhotoRecord] = {}
        self._overlays: Dict[Tuple[str, str], LikeOverlay] = {}
        self._tombstones: Dict[str, _Tombstone] = {}
        # photo id -> logical clock of the last feed insert/update touching it
        self._feed_seen: Dict[str, int] = {}
        self._clock = 0
        self._version = 0
        self._state = ConnectionState.DISCONNECTED
        self._listeners: List[Callable[[int], None]] = []

    # -- notifications -------------------------------------------------

    def add_listener(self, callback: Callable[[int], None]) -> Callable[[], None]:
        """Register `callback(version)`; returns a function that removes it."""
        with self._lock:
            self._listeners.append(callback)

        def remove() -> None:
            with self._lock:
                if callback in self._listeners:
                    self._listeners.remove(callback)

        return remove

    def _changed(self) -> int:
        self._version += 1
        return self._version

    def _notify(self, version: Optional[int]) -> None:
        if version is None:
            return
        with self._lock:
            listeners = list(self._listeners)
        for callback in listeners:
            try:
                callback(version)
            except Exception:
                logger.exception(
                    "live.listener_failed", extra={"event_id": self.event_id, "version": version}
                )

    @property
    def version(self) -> int:
        return self._version

    # -- connectivity --------------------------------------------------

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def is_connected(self) -> bool:
        return self._state == ConnectionState.CONNECTED

    def set_connection_state(self, state: ConnectionState) -> None:
        state = ConnectionState(state)
        version = None
        with self._lock:
            if state != self._state:
                logger.info(
                    "live.connection",
                    extra={"event_id": self.event_id, "from": self._state.value, "to": state.value},
                )
                self._state = state
                version = self._changed()
        self._notify(version)

    # -- ingestion -----------------------------------------------------

    def seed(self, photos: Iterable[PhotoRecord]) -> None:
        """Replace the whole collection with a point-in-time snapshot."""
        with self._lock:
            self._order = []
            self._photos = {}
            for photo in photos:
                if not photo.is_visible or photo.id in self._photos:
                    continue
                self._order.append(photo.id)
                self._photos[photo.id] = photo.with_known_counts()
            self._tombstones.clear()
            self._feed_seen.clear()
            version = self._changed()
        self._notify(version)

    def apply_feed_event(self, event: FeedEvent) -> bool:
        """Merge one feed event. Returns False when it changed nothing.

        Unknown ids on update/delete and repeated inserts are no-ops, not errors.
        """
        kind = FeedKind(event.kind)
        photo = event.photo
        with self._lock:
            self._clock += 1
            if kind == FeedKind.INSERTED:
                changed = self._apply_insert(photo)
            elif kind == FeedKind.UPDATED:
                changed = self._apply_update(photo)
            else:
                changed = self._remove(photo.id, photo.created_at, deleted=True)
                for key in [k for k in self._overlays if k[0] == photo.id]:
                    del self._overlays[key]
            if kind != FeedKind.DELETED and event.actor_id is not None and event.liked is not None:
                # The feed echoed a like toggle by this user. Only an echo in the
                # overlay's direction confirms it; an older echo leaves it pending.
                key = (photo.id, str(event.actor_id))
                overlay = self._overlays.get(key)
                if overlay is not None and bool(event.liked) == (overlay.delta > 0):
                    del self._overlays[key]
                    changed = True
            version = self._changed() if changed else None
        self._notify(version)
        return changed

    def _apply_insert(self, photo: PhotoRecord) -> bool:
        if not photo.is_visible:
            return False
        tomb = self._tombstones.get(photo.id)
        if tomb is not None and (tomb.created_at is None or photo.created_at <= tomb.created_at):
            logger.debug("live.feed.stale_insert", extra={"event_id": self.event_id, "photo_id": photo.id})
            return False
        existing = self._photos.get(photo.id)
        if existing is not None:
            return self._merge(existing, photo)
        self._insert_front(photo.with_known_counts())
        return True

    def _apply_update(self, photo: PhotoRecord) -> bool:
        if not photo.is_visible:
            return self._remove(photo.id, photo.created_at, deleted=False)
        existing = self._photos.get(photo.id)
        if existing is not None:
            return self._merge(existing, photo)
        tomb = self._tombstones.get(photo.id)
        if tomb is not None and tomb.deleted:
            logger.debug("live.feed.update_after_delete", extra={"event_id": self.event_id, "photo_id": photo.id})
            return False
        # Newly shown photos go to the front like fresh uploads
        self._insert_front(photo.with_known_counts())
        return True

    def _merge(self, existing: PhotoRecord, photo: PhotoRecord) -> bool:
        self._feed_seen[photo.id] = self._clock
        merged = existing.merged_with(photo)
        if merged == existing:
            return False
        self._photos[photo.id] = merged
        return True

    def _insert_front(self, photo: PhotoRecord) -> None:
        self._order.insert(0, photo.id)
        self._photos[photo.id] = photo
        self._tombstones.pop(photo.id, None)
        self._feed_seen[photo.id] = self._clock

    def _remove(self, photo_id: str, created_at: Optional[datetime], deleted: bool) -> bool:
        prior = self._tombstones.get(photo_id)
        self._tombstones[photo_id] = _Tombstone(
            clock=self._clock,
            created_at=created_at,
            deleted=deleted or bool(prior and prior.deleted),
        )
        self._feed_seen.pop(photo_id, None)
        if photo_id not in self._photos:
            return False
        del self._photos[photo_id]
        self._order.remove(photo_id)
        return True

    def poll_token(self) -> int:
        """Logical clock to capture right before a refresh query starts."""
        with self._lock:
            return self._clock

    def apply_poll_refresh(self, photos: Iterable[PhotoRecord], token: Optional[int] = None) -> bool:
        """Replace the collection with a full visible set, newest first.

        With a `token` from `poll_token()`, feed changes observed after the
        query began win over the (older) snapshot: fresh inserts are kept and
        deleted photos are not resurrected. Overlays are left untouched.
        """
        with self._lock:
            self._clock += 1
            fresh: Dict[str, PhotoRecord] = {}
            for photo in photos:
                if not photo.is_visible or photo.id in fresh:
                    continue
                if token is not None:
                    tomb = self._tombstones.get(photo.id)
                    if tomb is not None and tomb.clock > token:
                        continue
                    existing = self._photos.get(photo.id)
                    if existing is not None and self._feed_seen.get(photo.id, 0) > token:
                        fresh[photo.id] = existing
                        continue
                fresh[photo.id] = photo.with_known_counts()
            if token is not None:
                for photo_id in self._order:
                    if photo_id not in fresh and self._feed_seen.get(photo_id, 0) > token:
                        fresh[photo_id] = self._photos[photo_id]

            for photo_id in self._order:
                if photo_id not in fresh:
                    self._remove_tombstoned_by_poll(photo_id)
            for photo_id in fresh:
                self._tombstones.pop(photo_id, None)

            ordered = sort_photos(fresh.values(), SortMode.NEWEST)
            new_order = [p.id for p in ordered]
            changed = new_order != self._order or any(
                self._photos.get(p.id) != p for p in ordered
            )
            self._order = new_order
            self._photos = {p.id: p for p in ordered}
            self._feed_seen = {
                k: v for k, v in self._feed_seen.items() if token is not None and v > token
            }
            version = self._changed() if changed else None
        self._notify(version)
        return changed

    def _remove_tombstoned_by_poll(self, photo_id: str) -> None:
        photo = self._photos.get(photo_id)
        self._tombstones[photo_id] = _Tombstone(
            clock=self._clock,
            created_at=photo.created_at if photo is not None else None,
            deleted=False,
        )

    # -- optimistic likes ----------------------------------------------

    def apply_optimistic_like(self, photo_id: str, user_id: str, delta: int) -> Optional[LikeOverlay]:
        """Show the user's like (+1) or unlike (-1) immediately.

        Returns the overlay now pending for (photo, user), or None when this
        toggle cancelled an earlier unconfirmed one.
        """
        if delta not in (1, -1):
            raise ValueError("delta must be +1 or -1")
        key = (str(photo_id), str(user_id))
        with self._lock:
            current = self._overlays.get(key)
            total = delta + (current.delta if current is not None else 0)
            if total == 0:
                self._overlays.pop(key, None)
                overlay = None
            else:
                overlay = LikeOverlay(photo_id=key[0], user_id=key[1], delta=total)
                self._overlays[key] = overlay
            version = self._changed()
        self._notify(version)
        return overlay

    def confirm_like(self, photo_id: str, user_id: str, likes_count: Optional[int] = None) -> None:
        """The toggle request succeeded; fold its result into the stored count."""
        key = (str(photo_id), str(user_id))
        with self._lock:
            self._clock += 1
            overlay = self._overlays.pop(key, None)
            changed = overlay is not None
            photo = self._photos.get(key[0])
            if photo is not None:
                # A poll that started before this confirmation must not undo it
                self._feed_seen[key[0]] = self._clock
                if likes_count is not None:
                    new_count = max(0, int(likes_count))
                elif overlay is not None:
                    new_count = max(0, (photo.likes_count or 0) + overlay.delta)
                else:
                    new_count = photo.likes_count
                if new_count != photo.likes_count:
                    self._photos[key[0]] = replace(photo, likes_count=new_count)
                    changed = True
            version = self._changed() if changed else None
        self._notify(version)

    def rollback_like(self, photo_id: str, user_id: str) -> None:
        """The toggle request failed; drop the overlay so the count reverts."""
        with self._lock:
            removed = self._overlays.pop((str(photo_id), str(user_id)), None)
            version = self._changed() if removed is not None else None
        self._notify(version)

    def pending_overlays(self) -> List[LikeOverlay]:
        with self._lock:
            return list(self._overlays.values())

    # -- views ---------------------------------------------------------

    def photos(self) -> List[PhotoRecord]:
        """Current collection in stored order (feed inserts at the front), overlays applied."""
        with self._lock:
            adjust: Dict[str, int] = defaultdict(int)
            for (photo_id, _user), overlay in self._overlays.items():
                adjust[photo_id] += overlay.delta
            view = []
            for photo_id in self._order:
                photo = self._photos[photo_id]
                delta = adjust.get(photo_id, 0)
                if delta:
                    photo = replace(photo, likes_count=max(0, (photo.likes_count or 0) + delta))
                view.append(photo)
            return view

    def get_sorted_view(self, sort_mode: SortMode = SortMode.NEWEST) -> List[PhotoRecord]:
        return sort_photos(self.photos(), sort_mode)

    def __len__(self) -> int:
        return len(self._order)

    def __contains__(self, photo_id: object) -> bool:
        return photo_id in self._photos
