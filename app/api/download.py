"""Batch ZIP download endpoint."""

from __future__ import annotations

import io
import logging
from typing import List, Optional
from urllib.parse import quote

from fastapi import APIRouter, Depends, Path, Request
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.orm import Session

from app.core.dependencies import get_download_orchestrator
from app.services.catalog import DownloadFilter
from app.services.download_service import DownloadOrchestrator
from db import get_db

router = APIRouter()
audit = logging.getLogger("audit")


class DownloadRequestBody(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    photo_ids: Optional[List[str]] = Field(default=None, alias="photoIds")
    date_from: Optional[str] = Field(default=None, alias="dateFrom")
    date_to: Optional[str] = Field(default=None, alias="dateTo")
    download_all: bool = Field(default=False, alias="downloadAll")

    def to_filter(self) -> DownloadFilter:
        return DownloadFilter(
            photo_ids=tuple(self.photo_ids or ()),
            date_from=self.date_from or None,
            date_to=self.date_to or None,
            download_all=bool(self.download_all),
        )


@router.post("/download/{event_slug}")
def download_photos(
    request: Request,
    body: DownloadRequestBody,
    event_slug: str = Path(..., min_length=1, max_length=64),
    db: Session = Depends(get_db),
    orchestrator: DownloadOrchestrator = Depends(get_download_orchestrator),
):
    # Domain errors (404 / 400 / 500) are mapped by the app-level handler
    flt = body.to_filter()
    result = orchestrator.download(db, event_slug, flt)
    audit.info(
        "download.response",
        extra={
            "event_slug": event_slug,
            "filename": result.filename,
            "whole_event": flt.download_all or flt.is_empty,
            "request_id": getattr(request.state, "request_id", None),
        },
    )
    headers = {
        "Content-Disposition": f'attachment; filename="{quote(result.filename, safe="")}"',
        "Content-Length": str(len(result.content)),
        "X-Included-Count": str(result.included_count),
        "X-Requested-Count": str(result.requested_count),
    }
    return StreamingResponse(io.BytesIO(result.content), media_type="application/zip", headers=headers)
