"""
Initial schema: events, photos, likes, comments, viewers, error log.

Revision ID: 20261017_0001
Revises:
Create Date: 2026-10-17
"""

from __future__ import annotations

import sqlalchemy as sa

from alembic import op

# revision identifiers, used by Alembic.
revision = "20261017_0001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "Event",
        sa.Column("EventID", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("Slug", sa.String(length=64), nullable=False, unique=True),
        sa.Column("Name", sa.String(length=255), nullable=False),
        sa.Column("HostID", sa.String(length=64), nullable=False),
        sa.Column("CreatedAt", sa.DateTime(), server_default=sa.func.now()),
    )
    op.create_table(
        "Photo",
        sa.Column("PhotoID", sa.String(length=36), primary_key=True),
        sa.Column("EventID", sa.Integer(), sa.ForeignKey("Event.EventID"), nullable=False),
        sa.Column("UserID", sa.String(length=64), nullable=False),
        sa.Column("StoragePath", sa.String(length=512), nullable=False, unique=True),
        sa.Column("IsVisible", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("CreatedAt", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column("DownloadCount", sa.Integer(), nullable=False, server_default="0"),
    )
    op.create_index("ix_Photo_EventID", "Photo", ["EventID"])
    op.create_index("ix_Photo_CreatedAt", "Photo", ["CreatedAt"])
    op.create_table(
        "PhotoLike",
        sa.Column("PhotoLikeID", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("PhotoID", sa.String(length=36), sa.ForeignKey("Photo.PhotoID"), nullable=False),
        sa.Column("UserID", sa.String(length=64), nullable=False),
        sa.Column("CreatedAt", sa.DateTime(), server_default=sa.func.now()),
        sa.UniqueConstraint("PhotoID", "UserID", name="uq_photo_like_user"),
    )
    op.create_index("ix_PhotoLike_PhotoID", "PhotoLike", ["PhotoID"])
    op.create_table(
        "PhotoComment",
        sa.Column("PhotoCommentID", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("PhotoID", sa.String(length=36), sa.ForeignKey("Photo.PhotoID"), nullable=False),
        sa.Column("UserID", sa.String(length=64), nullable=False),
        sa.Column("Content", sa.String(length=500), nullable=False),
        sa.Column("CreatedAt", sa.DateTime(), server_default=sa.func.now()),
    )
    op.create_index("ix_PhotoComment_PhotoID", "PhotoComment", ["PhotoID"])
    op.create_table(
        "EventViewer",
        sa.Column("EventViewerID", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("EventID", sa.Integer(), sa.ForeignKey("Event.EventID"), nullable=False),
        sa.Column("UserID", sa.String(length=64), nullable=False),
        sa.Column("CreatedAt", sa.DateTime(), server_default=sa.func.now()),
        sa.Column("LastSeenAt", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint("EventID", "UserID", name="uq_event_viewer_user"),
    )
    op.create_table(
        "AppErrorLog",
        sa.Column("ErrorID", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("OccurredAt", sa.DateTime(), server_default=sa.func.now()),
        sa.Column("RequestID", sa.String(length=64), nullable=True),
        sa.Column("Path", sa.String(length=500), nullable=True),
        sa.Column("Method", sa.String(length=16), nullable=True),
        sa.Column("StatusCode", sa.Integer(), nullable=True),
        sa.Column("UserID", sa.String(length=64), nullable=True),
        sa.Column("ClientIP", sa.String(length=45), nullable=True),
        sa.Column("UserAgent", sa.String(length=255), nullable=True),
        sa.Column("Message", sa.Text(), nullable=True),
        sa.Column("StackTrace", sa.Text(), nullable=True),
    )


def downgrade() -> None:
    op.drop_table("AppErrorLog")
    op.drop_table("EventViewer")
    op.drop_index("ix_PhotoComment_PhotoID", table_name="PhotoComment")
    op.drop_table("PhotoComment")
    op.drop_index("ix_PhotoLike_PhotoID", table_name="PhotoLike")
    op.drop_table("PhotoLike")
    op.drop_index("ix_Photo_CreatedAt", table_name="Photo")
    op.drop_index("ix_Photo_EventID", table_name="Photo")
    op.drop_table("Photo")
    op.drop_table("Event")
