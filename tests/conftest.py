# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Pytest configuration and shared fixtures.

This module provides fixtures used across all test types:
- Unit tests (in-memory SQLite store through aiosqlite)
- Integration tests (FastAPI TestClient)
"""

from collections.abc import AsyncGenerator, Callable
from datetime import datetime, timedelta, timezone
from typing import Any

import pytest
import pytest_asyncio
from jose import jwt
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, create_async_engine
from sqlalchemy.pool import StaticPool

from src.core.config import DiscussionSettings, JWTSettings
from src.infrastructure.database.connection import create_sessionmaker
from src.infrastructure.database.models import Base, Course

TEST_JWT_SECRET = "test-secret-key-for-testing-only"

TEACHER = "teacher@school.edu"
STUDENT = "student@school.edu"
OTHER_STUDENT = "other.student@school.edu"
OUTSIDER = "outsider@school.edu"


# =============================================================================
# Marker Configuration
# =============================================================================


def pytest_configure(config: pytest.Config) -> None:
    """Configure custom pytest markers."""
    config.addinivalue_line(
        "markers", "unit: mark test as a unit test"
    )
    config.addinivalue_line(
        "markers", "integration: mark test as an integration test"
    )
    config.addinivalue_line(
        "markers", "slow: mark test as slow running"
    )


# =============================================================================
# Database Fixtures
# =============================================================================


@pytest_asyncio.fixture(scope="function")
async def db_engine() -> AsyncGenerator[AsyncEngine, None]:
    """Create an in-memory SQLite engine with every table created."""
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest_asyncio.fixture(scope="function")
async def db_session(db_engine: AsyncEngine) -> AsyncGenerator[AsyncSession, None]:
    """Create an async session configured like request sessions."""
    sessionmaker = create_sessionmaker(db_engine)

    async with sessionmaker() as session:
        yield session


@pytest_asyncio.fixture(scope="function")
async def course(db_session: AsyncSession) -> Course:
    """Insert the course C1 used as a discussion anchor."""
    row = Course(id="C1", title="Algebra I")
    db_session.add(row)
    await db_session.commit()
    return row


@pytest.fixture
def discussion_settings() -> DiscussionSettings:
    """Discussion settings with the default page bounds."""
    return DiscussionSettings(default_page_size=50, max_page_size=100)


# =============================================================================
# Auth Fixtures
# =============================================================================


@pytest.fixture
def jwt_settings() -> JWTSettings:
    """JWT settings signed with the test secret."""
    return JWTSettings(secret_key=TEST_JWT_SECRET, algorithm="HS256")  # type: ignore[arg-type]


@pytest.fixture
def make_token() -> Callable[..., str]:
    """Factory issuing tokens the way the identity provider does."""

    def _make_token(
        sub: str,
        role: str | None = "student",
        expires_in: timedelta = timedelta(minutes=30),
        secret: str = TEST_JWT_SECRET,
    ) -> str:
        now = datetime.now(timezone.utc)
        claims: dict[str, Any] = {
            "sub": sub,
            "iat": int(now.timestamp()),
            "exp": int((now + expires_in).timestamp()),
        }
        if role is not None:
            claims["role"] = role
        return jwt.encode(claims, secret, algorithm="HS256")

    return _make_token
