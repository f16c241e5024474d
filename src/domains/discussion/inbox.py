# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Inbox projection: discussions of one identity with its read state."""

import logging

from sqlalchemy import Select, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from src.infrastructure.database.models.discussion import (
    Discussion,
    DiscussionParticipant,
)
from src.models.discussion import (
    STUDY_GROUP_TYPES,
    DiscussionFilters,
    ParticipantStatus,
)

logger = logging.getLogger(__name__)


class InboxQuery:
    """Builds and runs the inbox listing.

    A discussion appears in an identity's inbox while that identity holds an
    active participant row. Rows are ordered by most recent activity.

    Attributes:
        _db: Async database session.
        _default_limit: Page size when the filters omit one.
        _max_limit: Hard cap on the page size.
    """

    def __init__(self, db: AsyncSession, default_limit: int = 50, max_limit: int = 100) -> None:
        self._db = db
        self._default_limit = default_limit
        self._max_limit = max_limit

    def effective_limit(self, requested: int | None) -> int:
        """Clamp a requested page size to the configured bounds."""
        if requested is None:
            return min(self._default_limit, self._max_limit)
        return max(1, min(requested, self._max_limit))

    async def fetch(
        self,
        identity: str,
        filters: DiscussionFilters,
    ) -> tuple[list[tuple[Discussion, DiscussionParticipant]], int, int]:
        """Run the inbox query.

        Args:
            identity: Normalized caller identity.
            filters: Listing filters.

        Returns:
            Tuple of (rows, total, limit) where rows pairs each discussion
            with the caller's participant row.
        """
        limit = self.effective_limit(filters.limit)
        base = self._filtered(
            select(Discussion, DiscussionParticipant).join(
                DiscussionParticipant,
                DiscussionParticipant.discussion_id == Discussion.id,
            ),
            identity,
            filters,
        )

        count_query = select(func.count()).select_from(base.subquery())
        total = (await self._db.execute(count_query)).scalar() or 0

        result = await self._db.execute(
            base.order_by(Discussion.last_activity_at.desc(), Discussion.id)
            .offset(filters.offset)
            .limit(limit)
            .execution_options(populate_existing=True)
        )
        rows = [(row[0], row[1]) for row in result.all()]

        logger.debug(
            "Inbox listed: identity=%s, returned=%d, total=%d",
            identity,
            len(rows),
            total,
        )
        return rows, total, limit

    @staticmethod
    def _filtered(query: Select, identity: str, filters: DiscussionFilters) -> Select:
        query = query.where(
            DiscussionParticipant.user_email == identity,
            DiscussionParticipant.status == ParticipantStatus.ACTIVE.value,
        )

        if filters.discussion_type is not None:
            query = query.where(Discussion.discussion_type == filters.discussion_type.value)
        if filters.visibility is not None:
            query = query.where(Discussion.visibility == filters.visibility.value)
        if filters.context_type is not None:
            query = query.where(Discussion.context_type == filters.context_type)
        if filters.context_id is not None:
            query = query.where(Discussion.context_id == filters.context_id)
        if filters.study_group_only:
            query = query.where(
                Discussion.discussion_type.in_([t.value for t in STUDY_GROUP_TYPES])
            )
        if filters.search_text:
            query = query.where(Discussion.title.ilike(f"%{filters.search_text.strip()}%"))

        return query
