"""In-memory photo records and change-feed events used by the live gallery."""

from __future__ import annotations

from dataclasses import dataclass, fields, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional


def as_utc(value: datetime) -> datetime:
    """Database columns hold naive UTC; make every timestamp aware so they compare."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class FeedKind(str, Enum):
    INSERTED = "inserted"
    UPDATED = "updated"
    DELETED = "deleted"


@dataclass(frozen=True)
class PhotoRecord:
    id: str
    event_id: int
    user_id: str
    storage_path: str
    is_visible: bool
    created_at: datetime
    # None means "not carried by this payload"; merges keep the known value
    likes_count: Optional[int] = None
    comments_count: Optional[int] = None
    download_count: Optional[int] = None

    def __post_init__(self):
        object.__setattr__(self, "created_at", as_utc(self.created_at))

    @classmethod
    def from_row(cls, photo, likes_count=None, comments_count=None) -> "PhotoRecord":
        return cls(
            id=str(photo.PhotoID),
            event_id=int(photo.EventID),
            user_id=str(photo.UserID),
            storage_path=str(photo.StoragePath),
            is_visible=bool(photo.IsVisible),
            created_at=photo.CreatedAt,
            likes_count=None if likes_count is None else int(likes_count),
            comments_count=None if comments_count is None else int(comments_count),
            download_count=int(photo.DownloadCount or 0),
        )

    def merged_with(self, other: "PhotoRecord") -> "PhotoRecord":
        """Take every field `other` carries; keep ours where it carries None."""
        changes = {
            f.name: getattr(other, f.name)
            for f in fields(self)
            if getattr(other, f.name) is not None
        }
        return replace(self, **changes)

    def with_known_counts(self) -> "PhotoRecord":
        return replace(
            self,
            likes_count=self.likes_count or 0,
            comments_count=self.comments_count or 0,
            download_count=self.download_count or 0,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "event_id": self.event_id,
            "user_id": self.user_id,
            "storage_path": self.storage_path,
            "is_visible": self.is_visible,
            "created_at": self.created_at.isoformat().replace("+00:00", "Z"),
            "likes_count": self.likes_count or 0,
            "comments_count": self.comments_count or 0,
            "download_count": self.download_count or 0,
        }


@dataclass(frozen=True)
class FeedEvent:
    """One row change pushed by the change feed.

    Like toggles travel as `UPDATED` events carrying the acting user and the
    resulting like state, which lets a live session confirm its own
    optimistic like.
    """

    kind: FeedKind
    photo: PhotoRecord
    actor_id: Optional[str] = None
    liked: Optional[bool] = None
