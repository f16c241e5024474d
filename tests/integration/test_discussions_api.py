# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Integration tests for the discussion API endpoints.

The service layer is mocked; these tests cover request parsing,
authentication dependencies and the error-to-status mapping.
"""

from collections.abc import Generator
from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from slowapi.errors import RateLimitExceeded

from src.api.dependencies import get_db, require_auth
from src.api.middleware.auth import CurrentUser
from src.api.middleware.rate_limit import limiter, rate_limit_exceeded_handler
from src.api.v1 import router as v1_router
from src.domains.discussion import (
    DiscussionNotFoundError,
    ForbiddenError,
    InvalidParentPostError,
    ParticipantNotFoundError,
    PostNotFoundError,
    UnauthorizedError,
    WriteFailureError,
)
from src.models.discussion import (
    DiscussionDetailResponse,
    DiscussionListResponse,
    DiscussionResponse,
    DiscussionStatsResponse,
    DiscussionType,
    MarkReadResponse,
    ParticipantResponse,
    ParticipantRole,
    ParticipantStatus,
)

TEACHER = "teacher@school.edu"
BASE = "/api/v1/discussions"
SERVICE_PATH = "src.api.v1.discussions._get_service"


def _detail(title: str = "Week 3 Q&A") -> DiscussionDetailResponse:
    now = datetime.now(timezone.utc)
    return DiscussionDetailResponse(
        discussion=DiscussionResponse(
            id="d1",
            title=title,
            owner_email=TEACHER,
            owner_role="teacher",
            discussion_type=DiscussionType.COURSE,
            visibility="private",
            created_at=now,
            updated_at=now,
            last_activity_at=now,
        ),
        participants=[
            ParticipantResponse(
                id="p1",
                discussion_id="d1",
                user_email=TEACHER,
                user_role="teacher",
                participant_role=ParticipantRole.OWNER,
                status=ParticipantStatus.ACTIVE,
                joined_at=now,
            )
        ],
        posts=[],
    )


@pytest.fixture
def app() -> Generator[FastAPI, None, None]:
    """Create test app with discussion routes and a fixed caller."""
    app = FastAPI()
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, rate_limit_exceeded_handler)
    app.include_router(v1_router)
    app.dependency_overrides[require_auth] = lambda: CurrentUser(TEACHER, "teacher")
    app.dependency_overrides[get_db] = lambda: AsyncMock()

    limiter.enabled = False
    yield app
    limiter.enabled = True


@pytest.fixture
def client(app: FastAPI) -> TestClient:
    """Create test client."""
    return TestClient(app)


@pytest.fixture
def mock_service() -> Generator[MagicMock, None, None]:
    """Patch the service factory used by the routes."""
    service = MagicMock()
    with patch(SERVICE_PATH, return_value=service):
        yield service


class TestListDiscussions:
    """Tests for GET /discussions."""

    def test_passes_filters(self, client: TestClient, mock_service: MagicMock) -> None:
        """Query parameters become listing filters."""
        mock_service.list_discussions = AsyncMock(
            return_value=DiscussionListResponse(items=[], total=0, limit=10, offset=5)
        )

        response = client.get(
            BASE,
            params={
                "discussion_type": "study_group_student",
                "study_group_only": "true",
                "search": "lab",
                "limit": 10,
                "offset": 5,
            },
        )

        assert response.status_code == 200
        assert response.json() == {"items": [], "total": 0, "limit": 10, "offset": 5}
        identity, filters = mock_service.list_discussions.await_args.args
        assert identity == TEACHER
        assert filters.discussion_type == DiscussionType.STUDY_GROUP_STUDENT
        assert filters.study_group_only is True
        assert filters.search_text == "lab"
        assert filters.limit == 10
        assert filters.offset == 5

    def test_rejects_zero_limit(self, client: TestClient, mock_service: MagicMock) -> None:
        """Non-positive limits fail validation."""
        response = client.get(BASE, params={"limit": 0})

        assert response.status_code == 422

    def test_rejects_unknown_type(self, client: TestClient, mock_service: MagicMock) -> None:
        """Types outside the closed set fail validation."""
        response = client.get(BASE, params={"discussion_type": "chatroom"})

        assert response.status_code == 422


class TestCreateDiscussion:
    """Tests for POST /discussions."""

    def test_creates_with_caller_as_owner(
        self,
        client: TestClient,
        mock_service: MagicMock,
    ) -> None:
        """The authenticated caller and role are passed through."""
        mock_service.create_discussion = AsyncMock(return_value=_detail())

        response = client.post(
            BASE,
            json={
                "title": "Week 3 Q&A",
                "discussion_type": "course",
                "context_type": "course",
                "context_id": "C1",
                "participants": [{"identity": "Student@School.edu"}],
                "initial_message": {"content": "Ask here"},
            },
        )

        assert response.status_code == 201
        assert response.json()["discussion"]["title"] == "Week 3 Q&A"
        owner, role, request = mock_service.create_discussion.await_args.args
        assert owner == TEACHER
        assert role == "teacher"
        assert request.participants[0].identity == "student@school.edu"
        assert request.initial_message.content == "Ask here"

    def test_rejects_invalid_body(self, client: TestClient, mock_service: MagicMock) -> None:
        """Missing title and unknown type fail validation."""
        response = client.post(BASE, json={"discussion_type": "chatroom"})

        assert response.status_code == 422


class TestDiscussionRoutes:
    """Tests for detail, update, stats and mark-read."""

    def test_get_detail(self, client: TestClient, mock_service: MagicMock) -> None:
        """Detail returns discussion, participants and posts."""
        mock_service.get_discussion_detail = AsyncMock(return_value=_detail())

        response = client.get(f"{BASE}/d1")

        assert response.status_code == 200
        body = response.json()
        assert set(body) == {"discussion", "participants", "posts"}
        assert body["participants"][0]["participant_role"] == "owner"
        mock_service.get_discussion_detail.assert_awaited_once_with("d1", TEACHER)

    def test_update_partial(self, client: TestClient, mock_service: MagicMock) -> None:
        """Only fields present in the body are set on the patch."""
        mock_service.update_discussion = AsyncMock(return_value=_detail("Renamed"))

        response = client.patch(f"{BASE}/d1", json={"title": "Renamed"})

        assert response.status_code == 200
        discussion_id, identity, patch_request = mock_service.update_discussion.await_args.args
        assert (discussion_id, identity) == ("d1", TEACHER)
        assert patch_request.model_dump(exclude_unset=True) == {"title": "Renamed"}

    def test_update_rejects_type_change(self, client: TestClient, mock_service: MagicMock) -> None:
        """discussion_type is not part of the patch schema."""
        response = client.patch(f"{BASE}/d1", json={"discussion_type": "direct"})

        assert response.status_code == 422

    def test_stats(self, client: TestClient, mock_service: MagicMock) -> None:
        """Stats are returned for moderators."""
        mock_service.get_discussion_stats = AsyncMock(
            return_value=DiscussionStatsResponse(
                discussion_id="d1",
                total_posts=2,
                deleted_posts=0,
                replies=1,
                unique_authors=2,
                active_participants=2,
                participation_rate=100,
            )
        )

        response = client.get(f"{BASE}/d1/stats")

        assert response.status_code == 200
        assert response.json()["participation_rate"] == 100

    def test_mark_read(self, client: TestClient, mock_service: MagicMock) -> None:
        """Mark read acknowledges with success."""
        mock_service.mark_read = AsyncMock(return_value=MarkReadResponse(success=True))

        response = client.post(f"{BASE}/d1/read")

        assert response.status_code == 200
        assert response.json() == {"success": True}
        mock_service.mark_read.assert_awaited_once_with("d1", TEACHER)


class TestParticipantAndPostRoutes:
    """Tests for roster and post endpoints."""

    def test_add_participants(self, client: TestClient, mock_service: MagicMock) -> None:
        """Participants are parsed with default roles."""
        mock_service.add_participants = AsyncMock(return_value=_detail())

        response = client.post(
            f"{BASE}/d1/participants",
            json={"participants": [{"identity": "a@school.edu"}, {"identity": "b@school.edu", "role": "moderator"}]},
        )

        assert response.status_code == 200
        _, _, participants = mock_service.add_participants.await_args.args
        assert [(p.identity, p.role) for p in participants] == [
            ("a@school.edu", ParticipantRole.PARTICIPANT),
            ("b@school.edu", ParticipantRole.MODERATOR),
        ]

    def test_remove_participant(self, client: TestClient, mock_service: MagicMock) -> None:
        """The path identity is passed to the service."""
        mock_service.remove_participant = AsyncMock(return_value=_detail())

        response = client.delete(f"{BASE}/d1/participants/student@school.edu")

        assert response.status_code == 200
        mock_service.remove_participant.assert_awaited_once_with("d1", TEACHER, "student@school.edu")

    def test_create_post(self, client: TestClient, mock_service: MagicMock) -> None:
        """Posts are created with 201 and full detail."""
        mock_service.add_post = AsyncMock(return_value=_detail())

        response = client.post(
            f"{BASE}/d1/posts",
            json={
                "content": "When is the deadline?",
                "parent_post_id": "p0",
                "attachments": [{"file_url": "https://files.example.edu/a.pdf", "file_size": 10}],
            },
        )

        assert response.status_code == 201
        _, identity, request = mock_service.add_post.await_args.args
        assert identity == TEACHER
        assert request.parent_post_id == "p0"
        assert request.attachments[0].file_size == 10

    def test_create_post_requires_content(self, client: TestClient, mock_service: MagicMock) -> None:
        """Empty content fails validation."""
        response = client.post(f"{BASE}/d1/posts", json={"content": ""})

        assert response.status_code == 422

    def test_update_and_delete_post(self, client: TestClient, mock_service: MagicMock) -> None:
        """Edit and delete address the post within its discussion."""
        mock_service.update_post = AsyncMock(return_value=_detail())
        mock_service.delete_post = AsyncMock(return_value=_detail())

        assert client.patch(f"{BASE}/d1/posts/p1", json={"content": "fixed"}).status_code == 200
        assert client.delete(f"{BASE}/d1/posts/p1").status_code == 200

        assert mock_service.update_post.await_args.args[:3] == ("d1", "p1", TEACHER)
        mock_service.delete_post.assert_awaited_once_with("d1", "p1", TEACHER)


class TestErrorMapping:
    """Domain errors map to HTTP statuses."""

    @pytest.mark.parametrize(
        ("error", "status_code", "detail"),
        [
            (DiscussionNotFoundError("discussion_not_found"), 404, "discussion_not_found"),
            (PostNotFoundError("post_not_found"), 404, "post_not_found"),
            (ParticipantNotFoundError("participant_not_found"), 404, "participant_not_found"),
            (ForbiddenError("access_denied"), 403, "access_denied"),
            (InvalidParentPostError("invalid_parent_post"), 422, "invalid_parent_post"),
            (UnauthorizedError("user_identity_required"), 401, "Not authenticated"),
            (WriteFailureError("add_post_failed"), 500, "Failed to save changes"),
        ],
    )
    def test_post_errors(
        self,
        client: TestClient,
        mock_service: MagicMock,
        error: Exception,
        status_code: int,
        detail: str,
    ) -> None:
        """Each error class has its status."""
        mock_service.add_post = AsyncMock(side_effect=error)

        response = client.post(f"{BASE}/d1/posts", json={"content": "Hi"})

        assert response.status_code == status_code
        assert response.json()["detail"] == detail

    def test_forbidden_update(self, client: TestClient, mock_service: MagicMock) -> None:
        """Participants updating a discussion get 403."""
        mock_service.update_discussion = AsyncMock(
            side_effect=ForbiddenError("insufficient_permissions")
        )

        response = client.patch(f"{BASE}/d1", json={"is_archived": True})

        assert response.status_code == 403
        assert response.json()["detail"] == "insufficient_permissions"


class TestAuthentication:
    """Tests for the require_auth dependency."""

    def test_missing_user_is_unauthorized(self, mock_service: MagicMock) -> None:
        """Routes refuse callers without an authenticated user."""
        app = FastAPI()
        app.include_router(v1_router)
        app.dependency_overrides[get_db] = lambda: AsyncMock()

        response = TestClient(app).get(BASE)

        assert response.status_code == 401
        assert response.headers["www-authenticate"] == "Bearer"


class TestRateLimiting:
    """Tests for slowapi limits on post creation."""

    def test_post_creation_is_limited(self, app: FastAPI, mock_service: MagicMock) -> None:
        """The 31st post within a minute is refused."""
        mock_service.add_post = AsyncMock(return_value=_detail())
        limiter.reset()
        limiter.enabled = True
        client = TestClient(app)

        statuses = [
            client.post(f"{BASE}/d1/posts", json={"content": f"msg {i}"}).status_code
            for i in range(31)
        ]

        limiter.reset()
        assert statuses[:30] == [201] * 30
        assert statuses[30] == 429
