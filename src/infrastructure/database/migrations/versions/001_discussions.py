# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Create discussion tables.

Revision ID: 001_discussions
Revises:
Create Date: 2025-11-03

This migration creates the discussion engine tables:
- discussions: Conversation containers
- discussion_participants: Membership and read state
- discussion_posts: Messages and replies
- discussion_attachments: Files owned by posts
- discussion_post_reactions: Reactions on posts

The courses table belongs to the LMS and is not managed here.
"""

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

revision: str = "001_discussions"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create discussion tables."""
    # ==========================================================================
    # 1. discussions
    # ==========================================================================
    op.create_table(
        "discussions",
        sa.Column("id", sa.String(36), nullable=False),
        sa.Column("title", sa.String(255), nullable=False),
        sa.Column("description", sa.Text, nullable=True),
        sa.Column("owner_email", sa.String(320), nullable=False),
        sa.Column("owner_role", sa.String(50), nullable=True),
        sa.Column("discussion_type", sa.String(32), nullable=False),
        sa.Column("visibility", sa.String(32), nullable=False, server_default="private"),
        sa.Column("context_type", sa.String(50), nullable=True),
        sa.Column("context_id", sa.String(64), nullable=True),
        sa.Column("context_snapshot", postgresql.JSONB, nullable=True),
        sa.Column(
            "metadata",
            postgresql.JSONB,
            nullable=False,
            server_default=sa.text("'{}'::jsonb"),
        ),
        sa.Column("allow_teacher_override", sa.Boolean, nullable=False, server_default="false"),
        sa.Column("is_archived", sa.Boolean, nullable=False, server_default="false"),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("now()"),
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("now()"),
        ),
        sa.Column(
            "last_activity_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("now()"),
        ),
        sa.PrimaryKeyConstraint("id", name="pk_discussions"),
    )
    op.create_index("ix_discussions_owner_email", "discussions", ["owner_email"])
    op.create_index("ix_discussions_discussion_type", "discussions", ["discussion_type"])
    op.create_index("ix_discussions_last_activity_at", "discussions", ["last_activity_at"])
    op.create_index("ix_discussions_context", "discussions", ["context_type", "context_id"])

    # ==========================================================================
    # 2. discussion_participants
    # ==========================================================================
    op.create_table(
        "discussion_participants",
        sa.Column("id", sa.String(36), nullable=False),
        sa.Column("discussion_id", sa.String(36), nullable=False),
        sa.Column("user_email", sa.String(320), nullable=False),
        sa.Column("user_role", sa.String(50), nullable=True),
        sa.Column(
            "participant_role",
            sa.String(32),
            nullable=False,
            server_default="participant",
        ),
        sa.Column("status", sa.String(16), nullable=False, server_default="active"),
        sa.Column(
            "joined_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("now()"),
        ),
        sa.Column("last_seen_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("unread_count", sa.Integer, nullable=False, server_default="0"),
        sa.PrimaryKeyConstraint("id", name="pk_discussion_participants"),
        sa.ForeignKeyConstraint(
            ["discussion_id"],
            ["discussions.id"],
            name="fk_discussion_participants_discussion_id_discussions",
            ondelete="CASCADE",
        ),
        sa.UniqueConstraint(
            "discussion_id",
            "user_email",
            name="uq_discussion_participants_member",
        ),
        sa.CheckConstraint(
            "unread_count >= 0",
            name="ck_discussion_participants_unread_non_negative",
        ),
    )
    op.create_index(
        "ix_discussion_participants_user_email",
        "discussion_participants",
        ["user_email"],
    )

    # ==========================================================================
    # 3. discussion_posts
    # ==========================================================================
    op.create_table(
        "discussion_posts",
        sa.Column("id", sa.String(36), nullable=False),
        sa.Column("discussion_id", sa.String(36), nullable=False),
        sa.Column("author_email", sa.String(320), nullable=False),
        sa.Column("parent_post_id", sa.String(36), nullable=True),
        sa.Column("content", sa.Text, nullable=False),
        sa.Column(
            "rich_content",
            postgresql.JSONB,
            nullable=False,
            server_default=sa.text("'{}'::jsonb"),
        ),
        sa.Column(
            "mentions",
            postgresql.JSONB,
            nullable=False,
            server_default=sa.text("'[]'::jsonb"),
        ),
        sa.Column("is_deleted", sa.Boolean, nullable=False, server_default="false"),
        sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("edited_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("now()"),
        ),
        sa.PrimaryKeyConstraint("id", name="pk_discussion_posts"),
        sa.ForeignKeyConstraint(
            ["discussion_id"],
            ["discussions.id"],
            name="fk_discussion_posts_discussion_id_discussions",
            ondelete="CASCADE",
        ),
        sa.ForeignKeyConstraint(
            ["parent_post_id"],
            ["discussion_posts.id"],
            name="fk_discussion_posts_parent_post_id_discussion_posts",
            ondelete="SET NULL",
        ),
    )
    op.create_index(
        "ix_discussion_posts_discussion_id",
        "discussion_posts",
        ["discussion_id"],
    )
    op.create_index(
        "ix_discussion_posts_timeline",
        "discussion_posts",
        ["discussion_id", "is_deleted", "created_at"],
    )

    # ==========================================================================
    # 4. discussion_attachments
    # ==========================================================================
    op.create_table(
        "discussion_attachments",
        sa.Column("id", sa.String(36), nullable=False),
        sa.Column("post_id", sa.String(36), nullable=False),
        sa.Column("file_url", sa.Text, nullable=False),
        sa.Column("file_name", sa.String(255), nullable=True),
        sa.Column("file_type", sa.String(100), nullable=True),
        sa.Column("file_size", sa.Integer, nullable=True),
        sa.Column(
            "metadata",
            postgresql.JSONB,
            nullable=False,
            server_default=sa.text("'{}'::jsonb"),
        ),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("now()"),
        ),
        sa.PrimaryKeyConstraint("id", name="pk_discussion_attachments"),
        sa.ForeignKeyConstraint(
            ["post_id"],
            ["discussion_posts.id"],
            name="fk_discussion_attachments_post_id_discussion_posts",
            ondelete="CASCADE",
        ),
    )
    op.create_index(
        "ix_discussion_attachments_post_id",
        "discussion_attachments",
        ["post_id"],
    )

    # ==========================================================================
    # 5. discussion_post_reactions
    # ==========================================================================
    op.create_table(
        "discussion_post_reactions",
        sa.Column("id", sa.String(36), nullable=False),
        sa.Column("post_id", sa.String(36), nullable=False),
        sa.Column("user_email", sa.String(320), nullable=False),
        sa.Column("reaction", sa.String(32), nullable=False),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("now()"),
        ),
        sa.PrimaryKeyConstraint("id", name="pk_discussion_post_reactions"),
        sa.ForeignKeyConstraint(
            ["post_id"],
            ["discussion_posts.id"],
            name="fk_discussion_post_reactions_post_id_discussion_posts",
            ondelete="CASCADE",
        ),
        sa.UniqueConstraint(
            "post_id",
            "user_email",
            "reaction",
            name="uq_discussion_post_reactions_kind",
        ),
    )
    op.create_index(
        "ix_discussion_post_reactions_post_id",
        "discussion_post_reactions",
        ["post_id"],
    )


def downgrade() -> None:
    """Drop discussion tables."""
    op.drop_table("discussion_post_reactions")
    op.drop_table("discussion_attachments")
    op.drop_table("discussion_posts")
    op.drop_table("discussion_participants")
    op.drop_table("discussions")
