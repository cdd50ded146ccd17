"""Batch photo archives: fetch blobs in parallel and package them into one ZIP.

Entry names depend only on each record's position in the input list, never
on fetch completion order, so the same request always yields the same names.
"""

from __future__ import annotations

import io
import logging
import math
import re
import zipfile
from concurrent.futures import ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from enum import Enum
from typing import Iterable, List, Optional, Sequence

from app.core.errors import NoContentError, PartialFetchFailure
from app.services.photo_record import as_utc

logger = logging.getLogger(__name__)

DEFAULT_EXTENSION = "jpg"
_EXTENSION_RE = re.compile(r"^[a-z0-9]{1,10}$")
_UNSAFE_LABEL_RE = re.compile(r'[\x00-\x1f\x7f/\\:*?"<>|]+')


class EntryOutcome(str, Enum):
    INCLUDED = "included"
    FETCH_FAILED = "fetch_failed"


@dataclass(frozen=True)
class ArchiveRecord:
    """What the builder needs from a photo: identity, blob key and timestamp."""

    id: str
    storage_path: str
    created_at: datetime

    @classmethod
    def from_row(cls, photo) -> "ArchiveRecord":
        return cls(id=str(photo.PhotoID), storage_path=str(photo.StoragePath), created_at=photo.CreatedAt)


@dataclass(frozen=True)
class ArchiveEntry:
    photo_id: str
    sequence: int
    name: str
    outcome: EntryOutcome
    size: int = 0
    error: Optional[str] = None


@dataclass
class ArchiveResult:
    filename: str
    folder: str
    content: bytes
    entries: List[ArchiveEntry] = field(default_factory=list)

    @property
    def requested_count(self) -> int:
        return len(self.entries)

    @property
    def included(self) -> List[ArchiveEntry]:
        return [e for e in self.entries if e.outcome == EntryOutcome.INCLUDED]

    @property
    def failed(self) -> List[ArchiveEntry]:
        return [e for e in self.entries if e.outcome == EntryOutcome.FETCH_FAILED]

    @property
    def included_count(self) -> int:
        return len(self.included)

    def partial_failure(self) -> Optional[PartialFetchFailure]:
        failed = self.failed
        if not failed:
            return None
        return PartialFetchFailure([e.photo_id for e in failed], self.requested_count)


def normalize_timestamp(value: datetime) -> str:
    """UTC, second precision, with the colons and periods replaced: 2024-01-05T13-45-09."""
    return as_utc(value).strftime("%Y-%m-%dT%H-%M-%S")


def extension_for(storage_path: str) -> str:
    name = (storage_path or "").rsplit("/", 1)[-1]
    stem, dot, ext = name.rpartition(".")
    ext = ext.strip().lower()
    if not dot or not stem or not _EXTENSION_RE.match(ext):
        return DEFAULT_EXTENSION
    return ext


def entry_name(record: ArchiveRecord, sequence: int) -> str:
    return f"{normalize_timestamp(record.created_at)}_{sequence:03d}.{extension_for(record.storage_path)}"


def safe_label(label: Optional[str], default: str = "photos") -> str:
    cleaned = _UNSAFE_LABEL_RE.sub("_", label or "").strip().strip(".")
    return cleaned[:100] or default


def archive_filename(label: str, included: int, today: Optional[date] = None) -> str:
    today = today or datetime.now(timezone.utc).date()
    return f"{label}_{today.strftime('%Y-%m-%d')}_{included}-photos.zip"


class ArchiveBuilder:
    """Fetch every record's blob with bounded parallelism and zip the ones that arrived.

    Args:
        store: object store exposing `get(key) -> bytes`
        max_workers: concurrent fetches
        fetch_timeout: seconds one fetch may take; the batch waits at most
            this long per round of `max_workers` fetches
        default_label: folder/archive label when none is given
    """

    def __init__(self, store, max_workers: int = 16, fetch_timeout: float = 30.0, default_label: str = "photos"):
        self.store = store
        self.max_workers = max(1, int(max_workers))
        self.fetch_timeout = float(fetch_timeout)
        self.default_label = default_label

    def _budget(self, count: int) -> float:
        rounds = max(1, math.ceil(count / self.max_workers))
        return self.fetch_timeout * rounds

    def _fetch(self, key: str) -> bytes:
        data = self.store.get(key)
        if not data:
            raise ValueError("empty object")
        return data

    def build(
        self,
        records: Iterable[ArchiveRecord],
        label: Optional[str] = None,
        today: Optional[date] = None,
    ) -> ArchiveResult:
        records: Sequence[ArchiveRecord] = list(records)
        if not records:
            raise NoContentError("no photos to archive")
        folder = safe_label(label, self.default_label)
        names = [entry_name(r, i) for i, r in enumerate(records, start=1)]
        payloads: List[Optional[bytes]] = [None] * len(records)
        errors: List[Optional[str]] = [None] * len(records)

        executor = ThreadPoolExecutor(
            max_workers=min(self.max_workers, len(records)), thread_name_prefix="archive-fetch"
        )
        try:
            futures = {executor.submit(self._fetch, r.storage_path): i for i, r in enumerate(records)}
            done, not_done = wait(futures, timeout=self._budget(len(records)))
            for fut in done:
                idx = futures[fut]
                try:
                    payloads[idx] = fut.result()
                except Exception as e:
                    errors[idx] = str(e) or e.__class__.__name__
            for fut in not_done:
                fut.cancel()
                errors[futures[fut]] = "timed out"
        finally:
            # Stragglers past the budget are abandoned, not awaited
            executor.shutdown(wait=False, cancel_futures=True)

        entries: List[ArchiveEntry] = []
        buf = io.BytesIO()
        with zipfile.ZipFile(buf, mode="w", compression=zipfile.ZIP_DEFLATED) as zf:
            for idx, record in enumerate(records):
                payload = payloads[idx]
                if payload is None:
                    logger.warning(
                        "archive.fetch_failed",
                        extra={
                            "photo_id": record.id,
                            "storage_path": record.storage_path,
                            "error": errors[idx],
                        },
                    )
                    entries.append(
                        ArchiveEntry(record.id, idx + 1, names[idx], EntryOutcome.FETCH_FAILED, error=errors[idx])
                    )
                    continue
                zf.writestr(f"{folder}/{names[idx]}", payload)
                entries.append(
                    ArchiveEntry(record.id, idx + 1, names[idx], EntryOutcome.INCLUDED, size=len(payload))
                )

        included = sum(1 for e in entries if e.outcome == EntryOutcome.INCLUDED)
        if included == 0:
            raise NoContentError(f"failed to download any of {len(records)} photos")

        return ArchiveResult(
            filename=archive_filename(folder, included, today),
            folder=folder,
            content=buf.getvalue(),
            entries=entries,
        )
