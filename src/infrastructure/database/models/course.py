# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Read-only mapping of the LMS courses table.

The courses table belongs to the course management module. The discussion
engine only reads a course's title when a course-anchored discussion is
created; migrations here never create or alter it.
"""

from sqlalchemy import String
from sqlalchemy.orm import Mapped, mapped_column

from src.infrastructure.database.models.base import Base


class Course(Base):
    """Course row as seen by the discussion engine."""

    __tablename__ = "courses"
    __table_args__ = {"info": {"external": True}}

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
