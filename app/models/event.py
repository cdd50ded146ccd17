import uuid

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.sql import func

from app.models.base import Base


def _new_photo_id() -> str:
    return str(uuid.uuid4())


class Event(Base):
    __tablename__ = "Event"
    EventID = Column(Integer, primary_key=True, autoincrement=True)
    Slug = Column(String(64), nullable=False, unique=True)
    Name = Column(String(255), nullable=False)
    HostID = Column(String(64), nullable=False)
    CreatedAt = Column(DateTime, server_default=func.now())


class Photo(Base):
    __tablename__ = "Photo"
    # Opaque, server-assigned id
    PhotoID = Column(String(36), primary_key=True, default=_new_photo_id)
    EventID = Column(Integer, ForeignKey("Event.EventID"), nullable=False, index=True)
    UserID = Column(String(64), nullable=False)  # uploader
    # Object store key; uniquely identifies the blob
    StoragePath = Column(String(512), nullable=False, unique=True)
    IsVisible = Column(Boolean, nullable=False, default=True)
    # Naive UTC
    CreatedAt = Column(DateTime, nullable=False, server_default=func.now(), index=True)
    DownloadCount = Column(Integer, nullable=False, default=0)


class PhotoLike(Base):
    __tablename__ = "PhotoLike"
    PhotoLikeID = Column(Integer, primary_key=True, autoincrement=True)
    PhotoID = Column(String(36), ForeignKey("Photo.PhotoID"), nullable=False, index=True)
    UserID = Column(String(64), nullable=False)
    CreatedAt = Column(DateTime, server_default=func.now())

    __table_args__ = (UniqueConstraint("PhotoID", "UserID", name="uq_photo_like_user"),)


class PhotoComment(Base):
    __tablename__ = "PhotoComment"
    PhotoCommentID = Column(Integer, primary_key=True, autoincrement=True)
    PhotoID = Column(String(36), ForeignKey("Photo.PhotoID"), nullable=False, index=True)
    UserID = Column(String(64), nullable=False)
    Content = Column(String(500), nullable=False)
    CreatedAt = Column(DateTime, server_default=func.now())


class EventViewer(Base):
    __tablename__ = "EventViewer"
    EventViewerID = Column(Integer, primary_key=True, autoincrement=True)
    EventID = Column(Integer, ForeignKey("Event.EventID"), nullable=False)
    UserID = Column(String(64), nullable=False)
    CreatedAt = Column(DateTime, server_default=func.now())
    LastSeenAt = Column(DateTime, nullable=False, server_default=func.now())

    __table_args__ = (UniqueConstraint("EventID", "UserID", name="uq_event_viewer_user"),)
