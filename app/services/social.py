"""Likes and comments on photos."""

from __future__ import annotations

from typing import List, Tuple

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.core.errors import NotFoundError, PermissionDenied, ValidationError
from app.models.event import PhotoComment, PhotoLike


def count_likes(db: Session, photo_id: str) -> int:
    return int(
        db.query(func.count(PhotoLike.PhotoLikeID)).filter(PhotoLike.PhotoID == photo_id).scalar() or 0
    )


def has_liked(db: Session, photo_id: str, user_id: str) -> bool:
    return (
        db.query(PhotoLike.PhotoLikeID)
        .filter(PhotoLike.PhotoID == photo_id, PhotoLike.UserID == str(user_id))
        .first()
        is not None
    )


def liked_photo_ids(db: Session, user_id: str, photo_ids: List[str]) -> List[str]:
    if not photo_ids:
        return []
    rows = (
        db.query(PhotoLike.PhotoID)
        .filter(PhotoLike.UserID == str(user_id), PhotoLike.PhotoID.in_(photo_ids))
        .all()
    )
    return [r[0] for r in rows]


def toggle_photo_like(db: Session, photo_id: str, user_id: str) -> Tuple[bool, int]:
    """Like if not yet liked, otherwise unlike. Returns (liked, likes_count)."""
    existing = (
        db.query(PhotoLike)
        .filter(PhotoLike.PhotoID == photo_id, PhotoLike.UserID == str(user_id))
        .first()
    )
    if existing is not None:
        db.delete(existing)
        liked = False
    else:
        db.add(PhotoLike(PhotoID=photo_id, UserID=str(user_id)))
        liked = True
    try:
        db.commit()
    except IntegrityError:
        # A concurrent request from the same user already inserted the like
        db.rollback()
        liked = True
    return liked, count_likes(db, photo_id)


def add_photo_comment(
    db: Session, photo_id: str, user_id: str, content: str, max_length: int = 500
) -> PhotoComment:
    text = (content or "").strip()
    if not text:
        raise ValidationError("Comment cannot be empty")
    if len(text) > max_length:
        raise ValidationError(f"Comment must be less than {max_length} characters")
    comment = PhotoComment(PhotoID=photo_id, UserID=str(user_id), Content=text)
    db.add(comment)
    db.commit()
    db.refresh(comment)
    return comment


def list_photo_comments(db: Session, photo_id: str) -> List[PhotoComment]:
    return (
        db.query(PhotoComment)
        .filter(PhotoComment.PhotoID == photo_id)
        .order_by(PhotoComment.CreatedAt.asc(), PhotoComment.PhotoCommentID.asc())
        .all()
    )


def delete_photo_comment(db: Session, comment_id: int, user_id: str) -> str:
    """Delete a comment written by `user_id`; returns the photo id it belonged to."""
    comment = db.query(PhotoComment).filter(PhotoComment.PhotoCommentID == comment_id).first()
    if comment is None:
        raise NotFoundError("Comment not found")
    if str(comment.UserID) != str(user_id):
        raise PermissionDenied("Only the author can delete a comment")
    photo_id = str(comment.PhotoID)
    db.delete(comment)
    db.commit()
    return photo_id


def comment_to_dict(comment: PhotoComment) -> dict:
    created = getattr(comment, "CreatedAt", None)
    return {
        "id": int(comment.PhotoCommentID),
        "photo_id": str(comment.PhotoID),
        "user_id": str(comment.UserID),
        "content": comment.Content,
        "created_at": created.isoformat() + "Z" if created else None,
    }
