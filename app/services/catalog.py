"""Photo catalog queries shared by the live view and downloads."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, time, timedelta, timezone
from typing import List, Optional, Sequence

from sqlalchemy import func
from sqlalchemy.orm import Session

from app.core.errors import NoPhotosFoundError, NotFoundError, ValidationError
from app.models.event import Event, Photo, PhotoComment, PhotoLike
from app.services.photo_record import FeedEvent, PhotoRecord


def get_event_by_slug(db: Session, slug: str) -> Event:
    event = db.query(Event).filter(Event.Slug == slug).first()
    if event is None:
        raise NotFoundError("Event not found")
    return event


def _counted_photos(db: Session):
    likes = (
        db.query(PhotoLike.PhotoID.label("photo_id"), func.count(PhotoLike.PhotoLikeID).label("n"))
        .group_by(PhotoLike.PhotoID)
        .subquery()
    )
    comments = (
        db.query(PhotoComment.PhotoID.label("photo_id"), func.count(PhotoComment.PhotoCommentID).label("n"))
        .group_by(PhotoComment.PhotoID)
        .subquery()
    )
    return (
        db.query(Photo, likes.c.n, comments.c.n)
        .outerjoin(likes, likes.c.photo_id == Photo.PhotoID)
        .outerjoin(comments, comments.c.photo_id == Photo.PhotoID)
    )


def load_visible_photos(db: Session, event_id: int) -> List[PhotoRecord]:
    """Visible photos with like/comment totals, newest first (ties by id)."""
    rows = (
        _counted_photos(db)
        .filter(Photo.EventID == event_id, Photo.IsVisible == True)  # noqa: E712
        .order_by(Photo.CreatedAt.desc(), Photo.PhotoID.asc())
        .all()
    )
    return [PhotoRecord.from_row(p, likes or 0, comments or 0) for p, likes, comments in rows]


def photo_record(db: Session, photo_id: str) -> Optional[PhotoRecord]:
    row = _counted_photos(db).filter(Photo.PhotoID == photo_id).first()
    if row is None:
        return None
    p, likes, comments = row
    return PhotoRecord.from_row(p, likes or 0, comments or 0)


def get_event_photo(db: Session, event: Event, photo_id: str) -> Photo:
    photo = (
        db.query(Photo)
        .filter(Photo.PhotoID == photo_id, Photo.EventID == event.EventID)
        .first()
    )
    if photo is None:
        raise NotFoundError("Photo not found")
    return photo


@dataclass(frozen=True)
class DownloadFilter:
    """A batch download request: explicit ids and/or a date range, or everything."""

    photo_ids: Sequence[str] = ()
    date_from: Optional[str] = None
    date_to: Optional[str] = None
    download_all: bool = False

    @property
    def is_empty(self) -> bool:
        return not (self.photo_ids or self.date_from or self.date_to or self.download_all)


def _parse_bound(value: str, name: str) -> datetime:
    raw = (value or "").strip()
    if raw.endswith("Z"):
        raw = raw[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(raw)
    except ValueError as e:
        raise ValidationError(f"{name} must be an ISO date") from e
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def date_range_bounds(date_from: Optional[str], date_to: Optional[str]):
    """Half-open [start, end) in naive UTC.

    `date_to` names the last included day, so the end bound is midnight of
    the following day.
    """
    start = _parse_bound(date_from, "dateFrom") if date_from else None
    end = None
    if date_to:
        last_day = _parse_bound(date_to, "dateTo").date()
        end = datetime.combine(last_day + timedelta(days=1), time.min)
    return start, end


def resolve_download_request(db: Session, event: Event, flt: DownloadFilter) -> List[Photo]:
    """Turn a filter into the fixed, oldest-first photo list an archive is built from."""
    # A filter that names nothing selects the whole event, like downloadAll
    start, end = date_range_bounds(flt.date_from, flt.date_to)

    q = db.query(Photo).filter(Photo.EventID == event.EventID)
    if flt.photo_ids:
        q = q.filter(Photo.PhotoID.in_([str(i) for i in flt.photo_ids]))
    if start is not None:
        q = q.filter(Photo.CreatedAt >= start)
    if end is not None:
        q = q.filter(Photo.CreatedAt < end)
    photos = q.order_by(Photo.CreatedAt.asc(), Photo.PhotoID.asc()).all()
    if not photos:
        raise NoPhotosFoundError("No photos found")
    return photos


def publish_photo_change(feed, db: Session, kind, photo_id: str, actor_id=None, liked=None) -> bool:
    """Push the photo's current row (with counts) to live sessions of its event."""
    record = photo_record(db, photo_id)
    if record is None or feed is None:
        return False
    feed.publish(record.event_id, FeedEvent(kind=kind, photo=record, actor_id=actor_id, liked=liked))
    return True
