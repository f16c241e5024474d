# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Access gate for discussions.

Every discussion operation starts here. The gate resolves the discussion,
derives the actor's role from a fresh read and exposes the permission
tiers used by mutating operations:

- Moderator class (owner, moderator, leader, co_leader): update the
  discussion, manage the roster, edit or delete any post.
- Author: edit or delete their own post.
- Any active participant: read, post, mark read.

The discussion owner is always treated as an owner-role participant, even
when no participant row materializes that role.
"""

import logging
from dataclasses import dataclass

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from src.domains.discussion.errors import (
    DiscussionNotFoundError,
    ForbiddenError,
    UnauthorizedError,
)
from src.infrastructure.database.models.discussion import (
    Discussion,
    DiscussionParticipant,
    DiscussionPost,
)
from src.models.discussion import (
    ParticipantRole,
    ParticipantStatus,
    normalize_identity,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AccessContext:
    """Result of a successful access check.

    Attributes:
        discussion: The resolved discussion row.
        identity: Normalized actor identity.
        role: Effective participant role of the actor.
        participant: The actor's active participant row, if one exists.
    """

    discussion: Discussion
    identity: str
    role: ParticipantRole
    participant: DiscussionParticipant | None = None

    @property
    def is_owner(self) -> bool:
        return self.discussion.owner_email == self.identity

    @property
    def can_moderate(self) -> bool:
        return self.is_owner or self.role.is_moderator_class


def require_identity(identity: str | None) -> str:
    """Normalize an actor identity, rejecting an empty one.

    Raises:
        UnauthorizedError: If no identity was supplied.
    """
    normalized = normalize_identity(identity)
    if not normalized:
        raise UnauthorizedError("user_identity_required")
    return normalized


class AccessGate:
    """Resolves whether an actor may use a discussion and at what role.

    Attributes:
        _db: Async database session.
    """

    def __init__(self, db: AsyncSession) -> None:
        self._db = db

    async def assert_access(self, discussion_id: str, identity: str | None) -> AccessContext:
        """Resolve the discussion and the actor's role.

        Args:
            discussion_id: Discussion identifier.
            identity: Actor identity.

        Returns:
            AccessContext for the actor.

        Raises:
            UnauthorizedError: If identity is empty.
            DiscussionNotFoundError: If the discussion does not exist.
            ForbiddenError: If the actor is neither owner nor active participant.
        """
        actor = require_identity(identity)

        result = await self._db.execute(
            select(Discussion)
            .where(Discussion.id == discussion_id)
            .execution_options(populate_existing=True)
        )
        discussion = result.scalar_one_or_none()
        if discussion is None:
            raise DiscussionNotFoundError("discussion_not_found")

        participant = await self._get_active_participant(discussion_id, actor)

        if discussion.owner_email == actor:
            return AccessContext(
                discussion=discussion,
                identity=actor,
                role=ParticipantRole.OWNER,
                participant=participant,
            )

        if participant is None:
            logger.info(
                "Access denied: discussion=%s, actor=%s",
                discussion_id,
                actor,
            )
            raise ForbiddenError("access_denied")

        return AccessContext(
            discussion=discussion,
            identity=actor,
            role=ParticipantRole(participant.participant_role),
            participant=participant,
        )

    async def assert_moderator(self, discussion_id: str, identity: str | None) -> AccessContext:
        """Access check requiring the moderator-class tier.

        Raises:
            ForbiddenError: If the actor cannot moderate.
        """
        context = await self.assert_access(discussion_id, identity)
        if not context.can_moderate:
            raise ForbiddenError("insufficient_permissions")
        return context

    @staticmethod
    def ensure_can_modify_post(context: AccessContext, post: DiscussionPost) -> None:
        """Author-or-moderator tier check for a post.

        Raises:
            ForbiddenError: If the actor is neither author nor moderator.
        """
        if post.author_email != context.identity and not context.can_moderate:
            raise ForbiddenError("insufficient_permissions")

    async def _get_active_participant(
        self,
        discussion_id: str,
        identity: str,
    ) -> DiscussionParticipant | None:
        result = await self._db.execute(
            select(DiscussionParticipant)
            .where(
                DiscussionParticipant.discussion_id == discussion_id,
                DiscussionParticipant.user_email == identity,
                DiscussionParticipant.status == ParticipantStatus.ACTIVE.value,
            )
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()
