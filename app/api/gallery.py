"""Host gallery management: event settings, photo listing, visibility, deletion and statistics."""

import logging

from fastapi import APIRouter, Depends, Form
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from app.core.dependencies import get_change_feed, get_object_store, require_user_id
from app.core.errors import PermissionDenied, ValidationError
from app.core.settings import settings
from app.models.event import Event, EventViewer, Photo, PhotoComment, PhotoLike
from app.services.catalog import get_event_by_slug, get_event_photo, publish_photo_change
from app.services.change_feed import ChangeFeed
from app.services.photo_record import FeedEvent, FeedKind, PhotoRecord
from app.services.statistics import get_event_statistics
from db import get_db

router = APIRouter()
audit = logging.getLogger("audit")

EVENT_NAME_MAX_LENGTH = 255


def _require_host(db: Session, event_slug: str, user_id: str) -> Event:
    event = get_event_by_slug(db, event_slug)
    if str(event.HostID) != str(user_id):
        raise PermissionDenied("Only the event host can do this")
    return event


@router.post("/events/{event_slug}/rename", response_class=JSONResponse)
def host_rename_event(
    event_slug: str,
    name: str = Form(...),
    db: Session = Depends(get_db),
    user_id: str = Depends(require_user_id),
):
    event = _require_host(db, event_slug, user_id)
    new_name = (name or "").strip()
    if not new_name:
        raise ValidationError("Event name is required")
    if len(new_name) > EVENT_NAME_MAX_LENGTH:
        raise ValidationError(f"Event name is limited to {EVENT_NAME_MAX_LENGTH} characters")
    old_name = event.Name
    event.Name = new_name
    db.commit()
    audit.info("event.renamed", extra={"event_id": event.EventID, "old": old_name, "new": new_name})
    return JSONResponse({"ok": True, "name": new_name})


@router.post("/events/{event_slug}/delete", response_class=JSONResponse)
def host_delete_event(
    event_slug: str,
    db: Session = Depends(get_db),
    store=Depends(get_object_store),
    feed: ChangeFeed = Depends(get_change_feed),
    user_id: str = Depends(require_user_id),
):
    """Remove the event with every photo, like, comment and viewer record."""
    event = _require_host(db, event_slug, user_id)
    event_id = int(event.EventID)
    records = [
        PhotoRecord.from_row(p) for p in db.query(Photo).filter(Photo.EventID == event_id).all()
    ]
    # Blobs go first: a failed delete leaves the event and its rows intact
    if records:
        store.delete_many([r.storage_path for r in records])

    ids = [r.id for r in records]
    if ids:
        db.query(PhotoLike).filter(PhotoLike.PhotoID.in_(ids)).delete(synchronize_session=False)
        db.query(PhotoComment).filter(PhotoComment.PhotoID.in_(ids)).delete(synchronize_session=False)
    db.query(EventViewer).filter(EventViewer.EventID == event_id).delete(synchronize_session=False)
    db.query(Photo).filter(Photo.EventID == event_id).delete(synchronize_session=False)
    db.delete(event)
    db.commit()

    for record in records:
        feed.publish(event_id, FeedEvent(kind=FeedKind.DELETED, photo=record))
    audit.info("event.deleted", extra={"event_id": event_id, "slug": event_slug, "photos": len(ids)})
    return JSONResponse({"ok": True, "deleted_photos": len(ids)})


@router.get("/events/{event_slug}/photos", response_class=JSONResponse)
def host_photo_list(
    event_slug: str,
    db: Session = Depends(get_db),
    user_id: str = Depends(require_user_id),
):
    """Every stored photo for the event, hidden ones included, newest first."""
    event = _require_host(db, event_slug, user_id)
    photos = (
        db.query(Photo)
        .filter(Photo.EventID == event.EventID)
        .order_by(Photo.CreatedAt.desc(), Photo.PhotoID.asc())
        .all()
    )
    return JSONResponse({"ok": True, "photos": [PhotoRecord.from_row(p).to_dict() for p in photos]})


@router.post("/events/{event_slug}/photos/{photo_id}/visibility", response_class=JSONResponse)
def host_set_visibility(
    event_slug: str,
    photo_id: str,
    visible: bool = Form(...),
    db: Session = Depends(get_db),
    feed: ChangeFeed = Depends(get_change_feed),
    user_id: str = Depends(require_user_id),
):
    event = _require_host(db, event_slug, user_id)
    photo = get_event_photo(db, event, photo_id)
    if bool(photo.IsVisible) != bool(visible):
        photo.IsVisible = bool(visible)
        db.commit()
        publish_photo_change(feed, db, FeedKind.UPDATED, str(photo.PhotoID))
        audit.info(
            "photo.visibility",
            extra={"event_id": event.EventID, "photo_id": str(photo.PhotoID), "visible": bool(visible)},
        )
    return JSONResponse({"ok": True, "id": str(photo.PhotoID), "is_visible": bool(photo.IsVisible)})


@router.post("/events/{event_slug}/photos/delete", response_class=JSONResponse)
def host_delete_photos(
    event_slug: str,
    photo_ids: list[str] = Form([]),
    db: Session = Depends(get_db),
    store=Depends(get_object_store),
    feed: ChangeFeed = Depends(get_change_feed),
    user_id: str = Depends(require_user_id),
):
    event = _require_host(db, event_slug, user_id)
    photos = []
    if photo_ids:
        photos = (
            db.query(Photo)
            .filter(Photo.EventID == event.EventID, Photo.PhotoID.in_(photo_ids))
            .all()
        )
    if not photos:
        return JSONResponse({"ok": False, "error": "not_found"}, status_code=404)

    records = [PhotoRecord.from_row(p) for p in photos]
    # Blobs go first: a failed delete leaves every row (and its blob) in place
    store.delete_many([r.storage_path for r in records])

    ids = [r.id for r in records]
    db.query(PhotoLike).filter(PhotoLike.PhotoID.in_(ids)).delete(synchronize_session=False)
    db.query(PhotoComment).filter(PhotoComment.PhotoID.in_(ids)).delete(synchronize_session=False)
    db.query(Photo).filter(Photo.PhotoID.in_(ids)).delete(synchronize_session=False)
    db.commit()

    for record in records:
        feed.publish(record.event_id, FeedEvent(kind=FeedKind.DELETED, photo=record))
    audit.info("photo.deleted", extra={"event_id": event.EventID, "count": len(ids)})
    return JSONResponse({"ok": True, "deleted": ids})


@router.get("/events/{event_slug}/statistics", response_class=JSONResponse)
def host_statistics(
    event_slug: str,
    db: Session = Depends(get_db),
    user_id: str = Depends(require_user_id),
):
    event = _require_host(db, event_slug, user_id)
    stats = get_event_statistics(
        db, int(event.EventID), online_window_seconds=settings.VIEWER_ONLINE_WINDOW_SECONDS
    )
    return JSONResponse({"ok": True, **stats})
