# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""SQLAlchemy ORM models."""

from src.infrastructure.database.models.base import (
    Base,
    SoftDeleteMixin,
    TimestampMixin,
    UUIDPrimaryKeyMixin,
    new_id,
)
from src.infrastructure.database.models.course import Course
from src.infrastructure.database.models.discussion import (
    Discussion,
    DiscussionAttachment,
    DiscussionParticipant,
    DiscussionPost,
    DiscussionPostReaction,
    ImmutableFieldError,
)

__all__ = [
    "Base",
    "SoftDeleteMixin",
    "TimestampMixin",
    "UUIDPrimaryKeyMixin",
    "new_id",
    "Course",
    "Discussion",
    "DiscussionAttachment",
    "DiscussionParticipant",
    "DiscussionPost",
    "DiscussionPostReaction",
    "ImmutableFieldError",
]
