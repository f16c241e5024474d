# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Discussion API and service schemas.

This module defines the closed enumerations of the discussion engine and
the request/response models exchanged between the HTTP layer and
DiscussionService.

Identities are e-mail addresses. Every model that accepts one normalizes
it to lower case so that comparisons across the roster, the access gate
and the inbox never depend on the caller's casing.
"""

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator


def normalize_identity(identity: str | None) -> str:
    """Canonical form of an identity (trimmed, lower case)."""
    return (identity or "").strip().lower()


class DiscussionType(str, Enum):
    """Kinds of conversation the engine hosts."""

    DIRECT = "direct"
    COURSE = "course"
    STUDY_GROUP_STUDENT = "study_group_student"
    STUDY_GROUP_COURSE = "study_group_course"
    FORUM_BRIDGE = "forum_bridge"


STUDY_GROUP_TYPES = frozenset(
    {DiscussionType.STUDY_GROUP_STUDENT, DiscussionType.STUDY_GROUP_COURSE}
)


class DiscussionVisibility(str, Enum):
    """Audience a discussion is visible to."""

    PRIVATE = "private"
    COURSE = "course"
    INSTITUTION = "institution"


class ParticipantRole(str, Enum):
    """Role of a participant inside one discussion."""

    OWNER = "owner"
    MODERATOR = "moderator"
    PARTICIPANT = "participant"
    LEADER = "leader"
    CO_LEADER = "co_leader"

    @property
    def is_moderator_class(self) -> bool:
        """Whether the role may moderate the discussion and any post."""
        return self in MODERATOR_ROLES


MODERATOR_ROLES = frozenset(
    {
        ParticipantRole.OWNER,
        ParticipantRole.MODERATOR,
        ParticipantRole.LEADER,
        ParticipantRole.CO_LEADER,
    }
)


class ParticipantStatus(str, Enum):
    """Membership state; removal is a status flip, never a delete."""

    ACTIVE = "active"
    REMOVED = "removed"


# =============================================================================
# Requests
# =============================================================================


class AttachmentInput(BaseModel):
    """File reference attached to a new post."""

    file_url: str = Field(min_length=1, description="Location of the uploaded file")
    file_name: str | None = Field(default=None, max_length=255)
    file_type: str | None = Field(default=None, max_length=100)
    file_size: int | None = Field(default=None, ge=0)
    metadata: dict[str, Any] = Field(default_factory=dict)


class ParticipantInput(BaseModel):
    """An identity to add to a discussion."""

    identity: str = Field(min_length=1, max_length=320, description="Participant e-mail")
    role: ParticipantRole = Field(default=ParticipantRole.PARTICIPANT)

    @field_validator("identity")
    @classmethod
    def _normalize(cls, value: str) -> str:
        return normalize_identity(value)


class InitialMessage(BaseModel):
    """First post created together with a discussion."""

    content: str = Field(min_length=1)
    rich_content: dict[str, Any] | None = None
    mentions: list[str] = Field(default_factory=list)
    attachments: list[AttachmentInput] = Field(default_factory=list)


class DiscussionCreateRequest(BaseModel):
    """Request to create a discussion."""

    title: str = Field(min_length=1, max_length=255)
    description: str | None = None
    discussion_type: DiscussionType
    visibility: DiscussionVisibility = DiscussionVisibility.PRIVATE
    context_type: str | None = Field(default=None, max_length=50)
    context_id: str | None = Field(default=None, max_length=64)
    metadata: dict[str, Any] = Field(default_factory=dict)
    participants: list[ParticipantInput] = Field(default_factory=list)
    initial_message: InitialMessage | None = None


class DiscussionUpdateRequest(BaseModel):
    """Partial update of a discussion.

    Only fields explicitly present are applied. discussion_type and the
    context anchor are fixed at creation and rejected here.
    """

    model_config = ConfigDict(extra="forbid")

    title: str | None = Field(default=None, min_length=1, max_length=255)
    description: str | None = None
    visibility: DiscussionVisibility | None = None
    is_archived: bool | None = None
    metadata: dict[str, Any] | None = None
    allow_teacher_override: bool | None = None


class AddParticipantsRequest(BaseModel):
    """Request to add participants to a discussion."""

    participants: list[ParticipantInput] = Field(default_factory=list)


class PostCreateRequest(BaseModel):
    """Request to create a post."""

    content: str = Field(min_length=1)
    rich_content: dict[str, Any] | None = None
    parent_post_id: str | None = None
    mentions: list[str] = Field(default_factory=list)
    attachments: list[AttachmentInput] = Field(default_factory=list)


class PostUpdateRequest(BaseModel):
    """Partial update of a post."""

    model_config = ConfigDict(extra="forbid")

    content: str | None = Field(default=None, min_length=1)
    rich_content: dict[str, Any] | None = None
    mentions: list[str] | None = None


class DiscussionFilters(BaseModel):
    """Filters for the inbox listing."""

    discussion_type: DiscussionType | None = None
    visibility: DiscussionVisibility | None = None
    context_type: str | None = None
    context_id: str | None = None
    study_group_only: bool = False
    search_text: str | None = None
    limit: int | None = Field(default=None, ge=1)
    offset: int = Field(default=0, ge=0)


# =============================================================================
# Responses
# =============================================================================


class DiscussionResponse(BaseModel):
    """A discussion record."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    title: str
    description: str | None = None
    owner_email: str
    owner_role: str | None = None
    discussion_type: DiscussionType
    visibility: DiscussionVisibility
    context_type: str | None = None
    context_id: str | None = None
    context_snapshot: dict[str, Any] | None = None
    metadata: dict[str, Any] = Field(
        default_factory=dict,
        validation_alias=AliasChoices("extra_metadata", "metadata"),
    )
    allow_teacher_override: bool = False
    is_archived: bool = False
    created_at: datetime
    updated_at: datetime
    last_activity_at: datetime


class ParticipantResponse(BaseModel):
    """A membership row."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    discussion_id: str
    user_email: str
    user_role: str | None = None
    participant_role: ParticipantRole
    status: ParticipantStatus
    joined_at: datetime
    last_seen_at: datetime | None = None
    unread_count: int = 0


class AttachmentResponse(BaseModel):
    """An attachment of a post."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    post_id: str
    file_url: str
    file_name: str | None = None
    file_type: str | None = None
    file_size: int | None = None
    metadata: dict[str, Any] = Field(
        default_factory=dict,
        validation_alias=AliasChoices("extra_metadata", "metadata"),
    )
    created_at: datetime


class ReactionResponse(BaseModel):
    """A reaction left on a post."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    post_id: str
    user_email: str
    reaction: str
    created_at: datetime


class PostResponse(BaseModel):
    """A visible post with its attachments and reactions."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    discussion_id: str
    author_email: str
    parent_post_id: str | None = None
    content: str
    rich_content: dict[str, Any] = Field(default_factory=dict)
    mentions: list[str] = Field(default_factory=list)
    edited_at: datetime | None = None
    created_at: datetime
    attachments: list[AttachmentResponse] = Field(default_factory=list)
    reactions: list[ReactionResponse] = Field(default_factory=list)


class DiscussionDetailResponse(BaseModel):
    """Fully hydrated view returned by every mutating call."""

    discussion: DiscussionResponse
    participants: list[ParticipantResponse]
    posts: list[PostResponse]


class DiscussionSummary(DiscussionResponse):
    """Inbox row: a discussion plus the caller's read state."""

    participant_role: ParticipantRole
    unread_count: int = 0
    last_seen_at: datetime | None = None


class DiscussionListResponse(BaseModel):
    """Paginated inbox listing, most recent activity first."""

    items: list[DiscussionSummary]
    total: int
    limit: int
    offset: int


class MarkReadResponse(BaseModel):
    """Acknowledgement of a mark-read call."""

    success: bool = True


class DiscussionStatsResponse(BaseModel):
    """Participation figures for moderators."""

    discussion_id: str
    total_posts: int
    deleted_posts: int
    replies: int
    unique_authors: int
    active_participants: int
    participation_rate: int = Field(description="Unique authors per active participant, percent")
