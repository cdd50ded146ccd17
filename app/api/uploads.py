"""Guest photo uploads."""

import io
import logging
import time

from fastapi import APIRouter, Depends, File, Request, UploadFile
from fastapi.responses import JSONResponse
from PIL import Image, UnidentifiedImageError
from sqlalchemy.orm import Session

from app.core.dependencies import get_change_feed, get_object_store, require_user_id
from app.core.errors import ValidationError
from app.core.settings import settings
from app.models.event import Photo
from app.services.catalog import get_event_by_slug, publish_photo_change
from app.services.change_feed import ChangeFeed
from app.services.photo_record import FeedKind
from db import get_db

router = APIRouter()
audit = logging.getLogger("audit")

# Pillow format name -> (extension, content type)
IMAGE_FORMATS = {
    "JPEG": ("jpg", "image/jpeg"),
    "PNG": ("png", "image/png"),
    "WEBP": ("webp", "image/webp"),
    "GIF": ("gif", "image/gif"),
}


def detect_image(data: bytes) -> tuple[str, str]:
    """Return (extension, content type) for a supported image, else raise ValidationError."""
    try:
        with Image.open(io.BytesIO(data)) as img:
            fmt = (img.format or "").upper()
            img.verify()
    except (UnidentifiedImageError, OSError, SyntaxError) as e:
        raise ValidationError("File is not a supported image") from e
    if fmt not in IMAGE_FORMATS:
        raise ValidationError(f"Unsupported image format: {fmt or 'unknown'}")
    return IMAGE_FORMATS[fmt]


def storage_key(event_slug: str, user_id: str, extension: str) -> str:
    return f"{event_slug}/{user_id}-{int(time.time() * 1000)}.{extension}"


@router.post("/e/{event_slug}/upload", response_class=JSONResponse)
def guest_upload(
    request: Request,
    event_slug: str,
    file: UploadFile = File(...),
    db: Session = Depends(get_db),
    store=Depends(get_object_store),
    feed: ChangeFeed = Depends(get_change_feed),
    user_id: str = Depends(require_user_id),
):
    event = get_event_by_slug(db, event_slug)
    contents = file.file.read(settings.MAX_UPLOAD_BYTES + 1)
    if not contents:
        raise ValidationError("Empty upload")
    if len(contents) > settings.MAX_UPLOAD_BYTES:
        return JSONResponse({"ok": False, "error": "file_too_large"}, status_code=413)
    extension, content_type = detect_image(contents)

    key = storage_key(str(event.Slug), user_id, extension)
    # The row only exists once its blob does
    store.put(key, contents, content_type)
    photo = Photo(EventID=event.EventID, UserID=user_id, StoragePath=key, IsVisible=True)
    try:
        db.add(photo)
        db.commit()
    except Exception:
        db.rollback()
        # Dangling blobs are tolerated, but try not to leave one
        try:
            store.delete(key)
        except Exception:
            audit.exception("photo.upload.cleanup_failed", extra={"storage_path": key})
        raise
    db.refresh(photo)

    publish_photo_change(feed, db, FeedKind.INSERTED, str(photo.PhotoID))
    audit.info(
        "photo.uploaded",
        extra={
            "event_id": event.EventID,
            "photo_id": str(photo.PhotoID),
            "bytes": len(contents),
            "client": request.client.host if request.client else None,
            "request_id": getattr(request.state, "request_id", None),
        },
    )
    return JSONResponse(
        {"ok": True, "id": str(photo.PhotoID), "storage_path": key, "url": store.public_url_for(key)},
        status_code=201,
    )
