"""Batch downloads: resolve a filter, build the archive, count downloads on the side."""

from __future__ import annotations

import logging
from datetime import date
from typing import Callable, Optional, Sequence

from sqlalchemy.orm import Session

from app.services.archive_service import ArchiveBuilder, ArchiveRecord, ArchiveResult
from app.services.catalog import DownloadFilter, get_event_by_slug, resolve_download_request
from app.services.statistics import track_downloads_in_background

audit = logging.getLogger("audit")

DownloadTracker = Callable[[Sequence[str]], object]


class DownloadOrchestrator:
    def __init__(self, builder: ArchiveBuilder, tracker: Optional[DownloadTracker] = None):
        self.builder = builder
        self.tracker = tracker or track_downloads_in_background

    def download(
        self, db: Session, event_slug: str, flt: DownloadFilter, today: Optional[date] = None
    ) -> ArchiveResult:
        """Raises NotFoundError / NoPhotosFoundError / ValidationError / NoContentError."""
        event = get_event_by_slug(db, event_slug)
        photos = resolve_download_request(db, event, flt)
        # Resolved once; the archive is built from this fixed list
        records = tuple(ArchiveRecord.from_row(p) for p in photos)
        result = self.builder.build(records, label=event.Name, today=today)

        partial = result.partial_failure()
        if partial is not None:
            audit.warning(
                "download.partial",
                extra={
                    "event_id": event.EventID,
                    "included": partial.included,
                    "requested": partial.requested,
                    "failed_ids": partial.failed_ids[:50],
                },
            )
        audit.info(
            "download.completed",
            extra={
                "event_id": event.EventID,
                "included": result.included_count,
                "requested": result.requested_count,
                "bytes": len(result.content),
            },
        )
        self._track([e.photo_id for e in result.included])
        return result

    def _track(self, photo_ids: Sequence[str]) -> None:
        try:
            self.tracker(photo_ids)
        except Exception:
            # Counting never blocks or fails a delivered archive
            audit.exception("download.tracking_failed", extra={"photo_count": len(photo_ids)})
