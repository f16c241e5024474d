# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Participant roster management.

Membership rows are unique per (discussion, identity). Inserts go through
INSERT .. ON CONFLICT DO NOTHING so that two concurrent additions of the
same identity converge on one row. Removal flips status to removed and
re-adding an identity reactivates its existing row.

The roster never commits; the caller owns the transaction.
"""

import logging
from typing import Any, Iterable

from sqlalchemy import select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession

from src.domains.discussion.errors import ForbiddenError, ParticipantNotFoundError
from src.infrastructure.database.models.base import new_id
from src.infrastructure.database.models.discussion import (
    Discussion,
    DiscussionParticipant,
)
from src.models.discussion import (
    ParticipantInput,
    ParticipantRole,
    ParticipantStatus,
    normalize_identity,
)
from src.utils.datetime import utc_now

logger = logging.getLogger(__name__)

# Broader role recorded for participants who join with the owner's role
TEACHER_USER_ROLE = "teacher"


class ParticipantRoster:
    """Owns membership rows of discussions.

    Attributes:
        _db: Async database session.
    """

    def __init__(self, db: AsyncSession) -> None:
        self._db = db

    async def seed(
        self,
        discussion: Discussion,
        participants: Iterable[ParticipantInput],
    ) -> int:
        """Insert the owner row and the initial participants of a new discussion.

        The owner is inserted first with participant role owner. Supplied
        participants are deduplicated by identity and never include the owner.

        Args:
            discussion: The freshly inserted discussion.
            participants: Additional participants requested at creation.

        Returns:
            Number of rows written.
        """
        owner = discussion.owner_email
        rows = [
            self._row_values(
                discussion.id,
                owner,
                ParticipantRole.OWNER,
                user_role=discussion.owner_role,
            )
        ]
        for entry in self._dedupe(participants, exclude=owner):
            rows.append(
                self._row_values(
                    discussion.id,
                    entry.identity,
                    entry.role,
                    user_role=self._broader_role(entry.role),
                )
            )

        return await self._insert_ignoring_duplicates(rows)

    async def add(
        self,
        discussion_id: str,
        actor: str,
        participants: Iterable[ParticipantInput],
    ) -> int:
        """Add participants to an existing discussion.

        The acting identity is dropped from the list. Identities that are
        already active are skipped; removed identities are reactivated with
        the requested role.

        Args:
            discussion_id: Discussion identifier.
            actor: Normalized identity of the caller.
            participants: Requested additions.

        Returns:
            Number of rows inserted or reactivated. Zero means nothing was
            written.
        """
        incoming = self._dedupe(participants, exclude=actor)
        if not incoming:
            return 0

        existing = await self._get_rows(discussion_id, [p.identity for p in incoming])

        to_insert: list[dict[str, Any]] = []
        reactivated = 0
        for entry in incoming:
            row = existing.get(entry.identity)
            if row is None:
                to_insert.append(
                    self._row_values(
                        discussion_id,
                        entry.identity,
                        entry.role,
                        user_role=self._broader_role(entry.role),
                    )
                )
            elif row.status == ParticipantStatus.REMOVED.value:
                await self._db.execute(
                    update(DiscussionParticipant)
                    .where(DiscussionParticipant.id == row.id)
                    .values(
                        status=ParticipantStatus.ACTIVE.value,
                        participant_role=entry.role.value,
                        joined_at=utc_now(),
                        unread_count=0,
                    )
                )
                reactivated += 1

        inserted = await self._insert_ignoring_duplicates(to_insert)

        if inserted or reactivated:
            logger.info(
                "Participants added: discussion=%s, inserted=%d, reactivated=%d, by=%s",
                discussion_id,
                inserted,
                reactivated,
                actor,
            )
        return inserted + reactivated

    async def remove(self, discussion: Discussion, identity: str) -> DiscussionParticipant:
        """Soft-remove a participant.

        Raises:
            ForbiddenError: If the identity is the discussion owner.
            ParticipantNotFoundError: If the identity is not an active member.
        """
        target = normalize_identity(identity)
        if target == discussion.owner_email:
            raise ForbiddenError("owner_cannot_be_removed")

        rows = await self._get_rows(discussion.id, [target])
        row = rows.get(target)
        if row is None or row.status != ParticipantStatus.ACTIVE.value:
            raise ParticipantNotFoundError("participant_not_found")

        row.status = ParticipantStatus.REMOVED.value
        await self._db.flush()
        return row

    async def list_for(self, discussion_id: str) -> list[DiscussionParticipant]:
        """All membership rows of a discussion, moderators first."""
        result = await self._db.execute(
            select(DiscussionParticipant)
            .where(DiscussionParticipant.discussion_id == discussion_id)
            .order_by(
                DiscussionParticipant.participant_role,
                DiscussionParticipant.joined_at,
            )
            .execution_options(populate_existing=True)
        )
        return list(result.scalars().all())

    async def _get_rows(
        self,
        discussion_id: str,
        identities: list[str],
    ) -> dict[str, DiscussionParticipant]:
        if not identities:
            return {}
        result = await self._db.execute(
            select(DiscussionParticipant)
            .where(
                DiscussionParticipant.discussion_id == discussion_id,
                DiscussionParticipant.user_email.in_(identities),
            )
            .execution_options(populate_existing=True)
        )
        return {row.user_email: row for row in result.scalars().all()}

    async def _insert_ignoring_duplicates(self, rows: list[dict[str, Any]]) -> int:
        if not rows:
            return 0

        dialect = self._db.get_bind().dialect.name
        insert_fn = pg_insert if dialect == "postgresql" else sqlite_insert
        stmt = (
            insert_fn(DiscussionParticipant.__table__)
            .values(rows)
            .on_conflict_do_nothing(index_elements=["discussion_id", "user_email"])
        )
        result = await self._db.execute(stmt)
        inserted = result.rowcount if result.rowcount >= 0 else len(rows)
        if inserted < len(rows):
            logger.debug(
                "Ignored %d duplicate participant rows",
                len(rows) - inserted,
            )
        return inserted

    @staticmethod
    def _dedupe(
        participants: Iterable[ParticipantInput],
        exclude: str,
    ) -> list[ParticipantInput]:
        seen: set[str] = {exclude}
        unique: list[ParticipantInput] = []
        for entry in participants:
            identity = normalize_identity(entry.identity)
            if not identity or identity in seen:
                continue
            seen.add(identity)
            unique.append(ParticipantInput(identity=identity, role=entry.role))
        return unique

    @staticmethod
    def _broader_role(role: ParticipantRole) -> str | None:
        return TEACHER_USER_ROLE if role == ParticipantRole.OWNER else None

    @staticmethod
    def _row_values(
        discussion_id: str,
        identity: str,
        role: ParticipantRole,
        user_role: str | None,
    ) -> dict[str, Any]:
        return {
            "id": new_id(),
            "discussion_id": discussion_id,
            "user_email": identity,
            "user_role": user_role,
            "participant_role": role.value,
            "status": ParticipantStatus.ACTIVE.value,
            "joined_at": utc_now(),
            "last_seen_at": None,
            "unread_count": 0,
        }
