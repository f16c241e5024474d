# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Discussion engine tables.

Tables:
    discussions: Conversation containers of every supported kind.
    discussion_participants: Membership rows with role and read state.
    discussion_posts: Messages, optionally replies to another post.
    discussion_attachments: Files owned by a single post.
    discussion_post_reactions: One row per (post, identity, reaction).

Enumerated columns are stored as their string values; the closed sets
live in src.models.discussion.
"""

from datetime import datetime
from typing import Any

from sqlalchemy import (
    JSON,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column, relationship, validates

from src.infrastructure.database.models.base import (
    Base,
    SoftDeleteMixin,
    TimestampMixin,
    UUIDPrimaryKeyMixin,
)
from src.utils.datetime import utc_now

JSONType = JSON().with_variant(JSONB(), "postgresql")

_UNSET = object()


class ImmutableFieldError(ValueError):
    """Raised when a write-once column is re-assigned a different value."""

    def __init__(self, field: str) -> None:
        super().__init__(f"{field} cannot be changed after creation")
        self.field = field


class Discussion(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    """A conversation container."""

    __tablename__ = "discussions"

    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    owner_email: Mapped[str] = mapped_column(String(320), nullable=False, index=True)
    owner_role: Mapped[str | None] = mapped_column(String(50), nullable=True)
    discussion_type: Mapped[str] = mapped_column(String(32), nullable=False, index=True)
    visibility: Mapped[str] = mapped_column(String(32), nullable=False, default="private")
    context_type: Mapped[str | None] = mapped_column(String(50), nullable=True)
    context_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    context_snapshot: Mapped[dict[str, Any] | None] = mapped_column(JSONType, nullable=True)
    extra_metadata: Mapped[dict[str, Any]] = mapped_column(
        "metadata", JSONType, nullable=False, default=dict
    )
    allow_teacher_override: Mapped[bool] = mapped_column(default=False, nullable=False)
    is_archived: Mapped[bool] = mapped_column(default=False, nullable=False)
    last_activity_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now, index=True
    )

    participants: Mapped[list["DiscussionParticipant"]] = relationship(
        back_populates="discussion",
        cascade="all, delete-orphan",
        passive_deletes=True,
        lazy="raise",
    )
    posts: Mapped[list["DiscussionPost"]] = relationship(
        back_populates="discussion",
        cascade="all, delete-orphan",
        passive_deletes=True,
        lazy="raise",
    )

    __table_args__ = (
        Index("ix_discussions_context", "context_type", "context_id"),
    )

    @validates("discussion_type", "context_snapshot")
    def _guard_write_once(self, key: str, value: Any) -> Any:
        current = self.__dict__.get(key, _UNSET)
        if current is not _UNSET and current != value:
            raise ImmutableFieldError(key)
        return value


class DiscussionParticipant(UUIDPrimaryKeyMixin, Base):
    """Membership of one identity in one discussion."""

    __tablename__ = "discussion_participants"

    discussion_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("discussions.id", ondelete="CASCADE"), nullable=False
    )
    user_email: Mapped[str] = mapped_column(String(320), nullable=False, index=True)
    user_role: Mapped[str | None] = mapped_column(String(50), nullable=True)
    participant_role: Mapped[str] = mapped_column(String(32), nullable=False, default="participant")
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="active")
    joined_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )
    last_seen_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    unread_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    discussion: Mapped[Discussion] = relationship(back_populates="participants", lazy="raise")

    __table_args__ = (
        UniqueConstraint("discussion_id", "user_email", name="uq_discussion_participants_member"),
        CheckConstraint("unread_count >= 0", name="unread_non_negative"),
    )


class DiscussionPost(UUIDPrimaryKeyMixin, SoftDeleteMixin, Base):
    """A message within a discussion."""

    __tablename__ = "discussion_posts"

    discussion_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("discussions.id", ondelete="CASCADE"), nullable=False, index=True
    )
    author_email: Mapped[str] = mapped_column(String(320), nullable=False)
    parent_post_id: Mapped[str | None] = mapped_column(
        String(36), ForeignKey("discussion_posts.id", ondelete="SET NULL"), nullable=True
    )
    content: Mapped[str] = mapped_column(Text, nullable=False)
    rich_content: Mapped[dict[str, Any]] = mapped_column(JSONType, nullable=False, default=dict)
    mentions: Mapped[list[str]] = mapped_column(JSONType, nullable=False, default=list)
    edited_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )

    discussion: Mapped[Discussion] = relationship(back_populates="posts", lazy="raise")
    attachments: Mapped[list["DiscussionAttachment"]] = relationship(
        back_populates="post",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="DiscussionAttachment.created_at",
        lazy="raise",
    )
    reactions: Mapped[list["DiscussionPostReaction"]] = relationship(
        back_populates="post",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="DiscussionPostReaction.created_at",
        lazy="raise",
    )

    __table_args__ = (
        Index("ix_discussion_posts_timeline", "discussion_id", "is_deleted", "created_at"),
    )


class DiscussionAttachment(UUIDPrimaryKeyMixin, Base):
    """A file attached to a post."""

    __tablename__ = "discussion_attachments"

    post_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("discussion_posts.id", ondelete="CASCADE"), nullable=False, index=True
    )
    file_url: Mapped[str] = mapped_column(Text, nullable=False)
    file_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    file_type: Mapped[str | None] = mapped_column(String(100), nullable=True)
    file_size: Mapped[int | None] = mapped_column(Integer, nullable=True)
    extra_metadata: Mapped[dict[str, Any]] = mapped_column(
        "metadata", JSONType, nullable=False, default=dict
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )

    post: Mapped[DiscussionPost] = relationship(back_populates="attachments", lazy="raise")


class DiscussionPostReaction(UUIDPrimaryKeyMixin, Base):
    """A reaction left on a post."""

    __tablename__ = "discussion_post_reactions"

    post_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("discussion_posts.id", ondelete="CASCADE"), nullable=False, index=True
    )
    user_email: Mapped[str] = mapped_column(String(320), nullable=False)
    reaction: Mapped[str] = mapped_column(String(32), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )

    post: Mapped[DiscussionPost] = relationship(back_populates="reactions", lazy="raise")

    __table_args__ = (
        UniqueConstraint("post_id", "user_email", "reaction", name="uq_discussion_post_reactions_kind"),
    )
