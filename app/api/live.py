"""Live gallery endpoints (public, event-slug based).

Guests watch an event's photos arrive in near-real time, like and comment on
them. Clients either poll `/data` or hold open `/stream`, a Server-Sent-Events
feed backed by one `LiveSession` per connection.
"""

from __future__ import annotations

import json
import logging
import queue
from typing import Optional

from fastapi import APIRouter, Depends, Form, Path, Query, Request
from fastapi.responses import JSONResponse, StreamingResponse
from sqlalchemy.orm import Session

from app.core.dependencies import get_change_feed, get_live_sessions, get_user_id, require_user_id
from app.core.settings import settings
from app.services.catalog import (
    get_event_by_slug,
    get_event_photo,
    load_visible_photos,
    publish_photo_change,
)
from app.services.change_feed import ChangeFeed
from app.services.live_gallery import ReconciliationEngine, SortMode, sort_photos
from app.services.live_session import LiveSession, LiveSessionRegistry
from app.services.photo_record import FeedKind
from app.services.social import (
    add_photo_comment,
    comment_to_dict,
    delete_photo_comment,
    has_liked,
    list_photo_comments,
    liked_photo_ids,
    toggle_photo_like,
)
from app.services.statistics import remove_viewer_presence, track_viewer_presence
from db import get_db, session_scope

router = APIRouter()
audit = logging.getLogger("audit")


@router.get("/live/{event_slug}/data", response_class=JSONResponse)
def live_gallery_data(
    event_slug: str = Path(..., min_length=1, max_length=64),
    sort: SortMode = Query(SortMode.NEWEST),
    db: Session = Depends(get_db),
    user_id: Optional[str] = Depends(get_user_id),
):
    """Full visible set with counts; the poll refresh clients reconcile against."""
    event = get_event_by_slug(db, event_slug)
    photos = sort_photos(load_visible_photos(db, int(event.EventID)), sort)
    liked = liked_photo_ids(db, user_id, [p.id for p in photos]) if user_id else []
    return JSONResponse(
        {
            "ok": True,
            "event": {"id": int(event.EventID), "name": event.Name, "slug": event.Slug},
            "photos": [p.to_dict() for p in photos],
            "liked": liked,
        }
    )


def _sse_frame(engine: ReconciliationEngine, sort: SortMode) -> str:
    payload = {
        "version": engine.version,
        "connected": engine.is_connected,
        "photos": [p.to_dict() for p in engine.get_sorted_view(sort)],
    }
    return f"event: gallery\ndata: {json.dumps(payload)}\n\n"


@router.get("/live/{event_slug}/stream")
def live_gallery_stream(
    request: Request,
    event_slug: str = Path(..., min_length=1, max_length=64),
    sort: SortMode = Query(SortMode.NEWEST),
    limit: Optional[int] = Query(None, ge=1, description="Close after this many gallery frames"),
    db: Session = Depends(get_db),
    feed: ChangeFeed = Depends(get_change_feed),
    sessions: LiveSessionRegistry = Depends(get_live_sessions),
    user_id: Optional[str] = Depends(get_user_id),
):
    event = get_event_by_slug(db, event_slug)
    event_id = int(event.EventID)

    def fetch():
        with session_scope() as s:
            return load_visible_photos(s, event_id)

    heartbeat = on_close = None
    if user_id:

        def heartbeat():
            with session_scope() as s:
                track_viewer_presence(s, event_id, user_id)

        def on_close():
            with session_scope() as s:
                remove_viewer_presence(s, event_id, user_id)

    session = LiveSession(
        event_id,
        feed,
        fetch,
        poll_interval=settings.LIVE_POLL_INTERVAL_SECONDS,
        heartbeat=heartbeat,
        heartbeat_interval=settings.VIEWER_HEARTBEAT_SECONDS,
        on_close=on_close,
    )
    changes: "queue.Queue[int]" = queue.Queue()
    session.engine.add_listener(changes.put)
    audit.info(
        "live.stream.open",
        extra={
            "event_id": event_id,
            "client": request.client.host if request.client else None,
            "request_id": getattr(request.state, "request_id", None),
        },
    )

    def _drain() -> None:
        while True:
            try:
                changes.get_nowait()
            except queue.Empty:
                return

    def frames():
        session.start()
        unregister = sessions.register(session, user_id) if user_id else None
        sent = 0
        try:
            _drain()
            yield _sse_frame(session.engine, sort)
            sent += 1
            while limit is None or sent < limit:
                try:
                    changes.get(timeout=settings.LIVE_STREAM_KEEPALIVE_SECONDS)
                except queue.Empty:
                    yield ": keepalive\n\n"
                    continue
                # Coalesce bursts into one frame
                _drain()
                yield _sse_frame(session.engine, sort)
                sent += 1
        finally:
            if unregister is not None:
                unregister()
            session.close()
            audit.info("live.stream.closed", extra={"event_id": event_id, "frames": sent})

    return StreamingResponse(
        frames(),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )


@router.post("/live/{event_slug}/photos/{photo_id}/like", response_class=JSONResponse)
def live_toggle_like(
    event_slug: str,
    photo_id: str,
    db: Session = Depends(get_db),
    feed: ChangeFeed = Depends(get_change_feed),
    sessions: LiveSessionRegistry = Depends(get_live_sessions),
    user_id: str = Depends(require_user_id),
):
    event = get_event_by_slug(db, event_slug)
    photo = get_event_photo(db, event, photo_id)
    delta = -1 if has_liked(db, str(photo.PhotoID), user_id) else 1
    # The user's own open streams show the toggle before the write lands
    pending = sessions.begin_like(int(event.EventID), str(photo.PhotoID), user_id, delta)
    try:
        liked, count = toggle_photo_like(db, str(photo.PhotoID), user_id)
    except Exception:
        pending.rollback()
        raise
    pending.confirm(count)
    publish_photo_change(feed, db, FeedKind.UPDATED, str(photo.PhotoID), actor_id=user_id, liked=liked)
    return JSONResponse({"ok": True, "liked": liked, "likes_count": count})


@router.get("/live/{event_slug}/photos/{photo_id}/comments", response_class=JSONResponse)
def live_list_comments(event_slug: str, photo_id: str, db: Session = Depends(get_db)):
    event = get_event_by_slug(db, event_slug)
    photo = get_event_photo(db, event, photo_id)
    comments = list_photo_comments(db, str(photo.PhotoID))
    return JSONResponse({"ok": True, "comments": [comment_to_dict(c) for c in comments]})


@router.post("/live/{event_slug}/photos/{photo_id}/comments", response_class=JSONResponse)
def live_add_comment(
    event_slug: str,
    photo_id: str,
    content: str = Form(...),
    db: Session = Depends(get_db),
    feed: ChangeFeed = Depends(get_change_feed),
    user_id: str = Depends(require_user_id),
):
    event = get_event_by_slug(db, event_slug)
    photo = get_event_photo(db, event, photo_id)
    comment = add_photo_comment(
        db, str(photo.PhotoID), user_id, content, max_length=settings.MAX_COMMENT_LENGTH
    )
    publish_photo_change(feed, db, FeedKind.UPDATED, str(photo.PhotoID))
    return JSONResponse({"ok": True, "comment": comment_to_dict(comment)}, status_code=201)


@router.delete("/live/{event_slug}/comments/{comment_id}", response_class=JSONResponse)
def live_delete_comment(
    event_slug: str,
    comment_id: int,
    db: Session = Depends(get_db),
    feed: ChangeFeed = Depends(get_change_feed),
    user_id: str = Depends(require_user_id),
):
    get_event_by_slug(db, event_slug)
    photo_id = delete_photo_comment(db, comment_id, user_id)
    publish_photo_change(feed, db, FeedKind.UPDATED, photo_id)
    return JSONResponse({"ok": True})


@router.post("/live/{event_slug}/presence", response_class=JSONResponse)
def live_presence(
    event_slug: str,
    db: Session = Depends(get_db),
    user_id: str = Depends(require_user_id),
):
    event = get_event_by_slug(db, event_slug)
    track_viewer_presence(db, int(event.EventID), user_id)
    return JSONResponse({"ok": True})


@router.delete("/live/{event_slug}/presence", response_class=JSONResponse)
def live_presence_leave(
    event_slug: str,
    db: Session = Depends(get_db),
    user_id: str = Depends(require_user_id),
):
    event = get_event_by_slug(db, event_slug)
    remove_viewer_presence(db, int(event.EventID), user_id)
    return JSONResponse({"ok": True})
