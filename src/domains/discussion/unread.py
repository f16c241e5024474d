# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Per-participant unread counters.

Counters are a derived signal. Increments run after the post has been
committed, one atomic "unread_count + 1" statement per participant, each
in its own short transaction. A failing row is rolled back, logged and
skipped; it never affects the post or the other participants.
"""

import logging

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from src.domains.discussion.errors import WriteFailureError
from src.infrastructure.database.models.discussion import DiscussionParticipant
from src.models.discussion import ParticipantStatus
from src.utils.datetime import utc_now

logger = logging.getLogger(__name__)


class UnreadTracker:
    """Maintains unread_count and last_seen_at of participants.

    Attributes:
        _db: Async database session.
    """

    def __init__(self, db: AsyncSession) -> None:
        self._db = db

    async def increment_unread_counts(self, discussion_id: str, exclude_identity: str) -> int:
        """Add one unread post for every active participant but the author.

        Args:
            discussion_id: Discussion that received a post.
            exclude_identity: Author of the post.

        Returns:
            Number of counters incremented.
        """
        try:
            result = await self._db.execute(
                select(DiscussionParticipant.id).where(
                    DiscussionParticipant.discussion_id == discussion_id,
                    DiscussionParticipant.status == ParticipantStatus.ACTIVE.value,
                    DiscussionParticipant.user_email != exclude_identity,
                )
            )
            participant_ids = list(result.scalars().all())
        except SQLAlchemyError as e:
            await self._db.rollback()
            logger.warning(
                "Unread recipients lookup failed: discussion=%s, error=%s",
                discussion_id,
                str(e),
            )
            return 0

        incremented = 0
        for participant_id in participant_ids:
            try:
                await self._db.execute(
                    update(DiscussionParticipant)
                    .where(DiscussionParticipant.id == participant_id)
                    .values(unread_count=DiscussionParticipant.unread_count + 1)
                )
                await self._db.commit()
                incremented += 1
            except SQLAlchemyError as e:
                await self._db.rollback()
                logger.warning(
                    "Unread increment failed: discussion=%s, participant=%s, error=%s",
                    discussion_id,
                    participant_id,
                    str(e),
                )

        return incremented

    async def mark_read(self, discussion_id: str, identity: str) -> None:
        """Reset the caller's counter and stamp last_seen_at.

        Setting to zero is idempotent and commutes with itself, so no lock
        is taken.

        Raises:
            WriteFailureError: If the store rejects the update.
        """
        try:
            await self._db.execute(
                update(DiscussionParticipant)
                .where(
                    DiscussionParticipant.discussion_id == discussion_id,
                    DiscussionParticipant.user_email == identity,
                )
                .values(unread_count=0, last_seen_at=utc_now())
            )
            await self._db.commit()
        except SQLAlchemyError as e:
            await self._db.rollback()
            logger.error(
                "Mark read failed: discussion=%s, identity=%s",
                discussion_id,
                identity,
                exc_info=True,
            )
            raise WriteFailureError("mark_read_failed", original_error=e) from e
