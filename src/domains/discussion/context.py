# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Anchor entity lookup for context snapshots.

A discussion anchored to another entity (today only courses) records a
point-in-time copy of the anchor's attributes when it is created. The
lookup is opportunistic: any failure degrades to "no snapshot".
"""

import logging
from typing import Any, Protocol

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from src.infrastructure.database.models.course import Course

logger = logging.getLogger(__name__)


class ContextResolver(Protocol):
    """Fetches anchor attributes for a (context_type, context_id) pair."""

    async def resolve(self, context_type: str, context_id: str) -> dict[str, Any] | None:
        ...


class CourseContextResolver:
    """Reads the course title from the LMS courses table."""

    def __init__(self, db: AsyncSession) -> None:
        self._db = db

    async def resolve(self, context_type: str, context_id: str) -> dict[str, Any] | None:
        if context_type != "course":
            return None

        result = await self._db.execute(
            select(Course.id, Course.title).where(Course.id == context_id)
        )
        row = result.one_or_none()
        if row is None:
            logger.warning("Context course not found: course=%s", context_id)
            return None

        return {"id": row.id, "title": row.title}
