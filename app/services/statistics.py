"""Download counters, viewer presence and per-event statistics."""

from __future__ import annotations

import logging
import threading
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Sequence

from sqlalchemy import func, update
from sqlalchemy.orm import Session

from app.models.event import EventViewer, Photo

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    # Store naive UTC for DB columns that are naive
    return datetime.now(timezone.utc).replace(tzinfo=None)


def increment_download_count(db: Session, photo_id: str) -> None:
    increment_download_counts(db, [photo_id])


def increment_download_counts(db: Session, photo_ids: Sequence[str]) -> int:
    """Atomic `DownloadCount + 1` for each id; returns rows touched."""
    ids = [str(i) for i in photo_ids]
    if not ids:
        return 0
    result = db.execute(
        update(Photo)
        .where(Photo.PhotoID.in_(ids))
        .values(DownloadCount=func.coalesce(Photo.DownloadCount, 0) + 1)
        .execution_options(synchronize_session=False)
    )
    db.commit()
    return int(result.rowcount or 0)


def track_downloads_in_background(photo_ids: Sequence[str]) -> threading.Thread:
    """Fire-and-forget download counting; failures are logged and dropped."""
    ids = list(photo_ids)

    def _job() -> None:
        from db import session_scope  # local import to avoid circulars

        try:
            with session_scope() as db:
                increment_download_counts(db, ids)
        except Exception:
            logger.exception("download.tracking_failed", extra={"photo_count": len(ids)})

    t = threading.Thread(target=_job, name="download-tracking", daemon=True)
    t.start()
    return t


def track_viewer_presence(db: Session, event_id: int, user_id: str) -> None:
    viewer = (
        db.query(EventViewer)
        .filter(EventViewer.EventID == event_id, EventViewer.UserID == str(user_id))
        .first()
    )
    if viewer is None:
        db.add(EventViewer(EventID=event_id, UserID=str(user_id), LastSeenAt=_utcnow()))
    else:
        viewer.LastSeenAt = _utcnow()
    db.commit()


def remove_viewer_presence(db: Session, event_id: int, user_id: str) -> None:
    db.query(EventViewer).filter(
        EventViewer.EventID == event_id, EventViewer.UserID == str(user_id)
    ).delete(synchronize_session=False)
    db.commit()


def upload_distribution(created: Sequence[datetime]) -> List[Dict[str, int]]:
    """Uploads per hour of day (UTC), always 24 buckets."""
    buckets = {hour: 0 for hour in range(24)}
    for ts in created:
        if ts is not None:
            buckets[ts.hour] += 1
    return [{"hour": hour, "count": buckets[hour]} for hour in range(24)]


def get_event_statistics(db: Session, event_id: int, online_window_seconds: int = 300) -> dict:
    now = _utcnow()
    today = now.replace(hour=0, minute=0, second=0, microsecond=0)

    total_photos = db.query(func.count(Photo.PhotoID)).filter(Photo.EventID == event_id).scalar() or 0
    today_photos = (
        db.query(func.count(Photo.PhotoID))
        .filter(Photo.EventID == event_id, Photo.CreatedAt >= today)
        .scalar()
        or 0
    )
    online_viewers = (
        db.query(func.count(EventViewer.EventViewerID))
        .filter(
            EventViewer.EventID == event_id,
            EventViewer.LastSeenAt >= now - timedelta(seconds=online_window_seconds),
        )
        .scalar()
        or 0
    )
    total_downloads = (
        db.query(func.coalesce(func.sum(Photo.DownloadCount), 0))
        .filter(Photo.EventID == event_id)
        .scalar()
        or 0
    )
    recent = (
        db.query(Photo.CreatedAt)
        .filter(Photo.EventID == event_id, Photo.CreatedAt >= now - timedelta(hours=24))
        .all()
    )
    return {
        "total_photos": int(total_photos),
        "today_photos": int(today_photos),
        "online_viewers": int(online_viewers),
        "total_downloads": int(total_downloads),
        "upload_distribution": upload_distribution([r[0] for r in recent]),
    }
