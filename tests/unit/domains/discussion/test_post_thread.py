# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Unit tests for posts, replies and attachments."""

from unittest.mock import MagicMock, patch

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.config import DiscussionSettings
from src.domains.discussion import (
    DiscussionService,
    ForbiddenError,
    InvalidParentPostError,
    PostNotFoundError,
    WriteFailureError,
)
from src.infrastructure.database.models import DiscussionAttachment, DiscussionPost
from src.infrastructure.events import EventTypes
from src.models.discussion import (
    AttachmentInput,
    DiscussionCreateRequest,
    DiscussionDetailResponse,
    DiscussionType,
    ParticipantInput,
    ParticipantRole,
    PostCreateRequest,
    PostUpdateRequest,
)
from src.utils.datetime import ensure_utc

TEACHER = "teacher@school.edu"
STUDENT = "student@school.edu"
OTHER_STUDENT = "other.student@school.edu"
MODERATOR = "moderator@school.edu"
OUTSIDER = "outsider@school.edu"


@pytest.fixture
def notifier() -> MagicMock:
    """Create a recording notifier."""
    return MagicMock()


@pytest.fixture
def service(
    db_session: AsyncSession,
    notifier: MagicMock,
    discussion_settings: DiscussionSettings,
) -> DiscussionService:
    """Create a discussion service bound to the test store."""
    return DiscussionService(db_session, notifier=notifier, settings=discussion_settings)


async def _create(service: DiscussionService, title: str = "Week 3 Q&A") -> DiscussionDetailResponse:
    return await service.create_discussion(
        TEACHER,
        "teacher",
        DiscussionCreateRequest(
            title=title,
            discussion_type=DiscussionType.COURSE,
            participants=[
                ParticipantInput(identity=STUDENT),
                ParticipantInput(identity=OTHER_STUDENT),
                ParticipantInput(identity=MODERATOR, role=ParticipantRole.MODERATOR),
            ],
        ),
    )


async def _count_posts(db: AsyncSession) -> int:
    return (await db.execute(select(func.count(DiscussionPost.id)))).scalar() or 0


class TestAddPost:
    """Tests for DiscussionService.add_post."""

    @pytest.mark.asyncio
    async def test_participant_can_post(
        self,
        service: DiscussionService,
        notifier: MagicMock,
    ) -> None:
        """Any active participant may post."""
        created = await _create(service)
        discussion_id = created.discussion.id
        notifier.reset_mock()

        detail = await service.add_post(
            discussion_id,
            STUDENT,
            PostCreateRequest(
                content="When is the deadline?",
                rich_content={"blocks": [{"type": "paragraph"}]},
                mentions=["Teacher@School.edu", " "],
            ),
        )

        assert len(detail.posts) == 1
        post = detail.posts[0]
        assert post.author_email == STUDENT
        assert post.content == "When is the deadline?"
        assert post.rich_content == {"blocks": [{"type": "paragraph"}]}
        assert post.mentions == [TEACHER]
        assert post.edited_at is None
        assert detail.discussion.last_activity_at >= created.discussion.last_activity_at

        notifier.emit.assert_called_once_with(
            EventTypes.Discussion.POST_CREATED,
            {"discussion_id": discussion_id, "post_id": post.id},
        )

    @pytest.mark.asyncio
    async def test_outsider_cannot_post(
        self,
        service: DiscussionService,
        db_session: AsyncSession,
    ) -> None:
        """Non-members are refused before any write."""
        created = await _create(service)

        with pytest.raises(ForbiddenError):
            await service.add_post(created.discussion.id, OUTSIDER, PostCreateRequest(content="Hi"))

        assert await _count_posts(db_session) == 0

    @pytest.mark.asyncio
    async def test_attachments_are_stored_with_post(self, service: DiscussionService) -> None:
        """Declared attachments come back on the post."""
        created = await _create(service)

        detail = await service.add_post(
            created.discussion.id,
            STUDENT,
            PostCreateRequest(
                content="My draft",
                attachments=[
                    AttachmentInput(
                        file_url="https://files.example.edu/draft.pdf",
                        file_name="draft.pdf",
                        file_type="application/pdf",
                        file_size=2048,
                        metadata={"pages": 3},
                    ),
                    AttachmentInput(file_url="https://files.example.edu/figure.png"),
                ],
            ),
        )

        attachments = detail.posts[0].attachments
        assert len(attachments) == 2
        by_url = {a.file_url: a for a in attachments}
        draft = by_url["https://files.example.edu/draft.pdf"]
        assert draft.file_name == "draft.pdf"
        assert draft.file_size == 2048
        assert draft.metadata == {"pages": 3}
        assert draft.post_id == detail.posts[0].id

    @pytest.mark.asyncio
    async def test_attachment_failure_rolls_back_post(
        self,
        service: DiscussionService,
        db_session: AsyncSession,
        notifier: MagicMock,
    ) -> None:
        """A post is never left without its declared attachments."""
        created = await _create(service)
        discussion_id = created.discussion.id
        notifier.reset_mock()

        original_flush = db_session.flush

        async def failing_flush(*args, **kwargs):
            if any(isinstance(obj, DiscussionAttachment) for obj in db_session.new):
                raise OperationalError("INSERT INTO discussion_attachments", {}, Exception("disk full"))
            return await original_flush(*args, **kwargs)

        with patch.object(db_session, "flush", new=failing_flush):
            with pytest.raises(WriteFailureError) as exc_info:
                await service.add_post(
                    discussion_id,
                    STUDENT,
                    PostCreateRequest(
                        content="With file",
                        attachments=[AttachmentInput(file_url="https://files.example.edu/a.pdf")],
                    ),
                )

        assert str(exc_info.value) == "add_post_failed"
        assert isinstance(exc_info.value.original_error, OperationalError)
        assert await _count_posts(db_session) == 0
        notifier.emit.assert_not_called()

        detail = await service.get_discussion_detail(discussion_id, STUDENT)
        assert detail.posts == []
        assert all(p.unread_count == 0 for p in detail.participants)


class TestReplies:
    """Tests for threaded replies."""

    @pytest.mark.asyncio
    async def test_reply_to_post_in_same_discussion(self, service: DiscussionService) -> None:
        """A reply keeps its parent reference."""
        created = await _create(service)
        discussion_id = created.discussion.id
        question = await service.add_post(discussion_id, STUDENT, PostCreateRequest(content="Q?"))
        parent_id = question.posts[0].id

        detail = await service.add_post(
            discussion_id,
            TEACHER,
            PostCreateRequest(content="Friday.", parent_post_id=parent_id),
        )

        reply = next(p for p in detail.posts if p.id != parent_id)
        assert reply.parent_post_id == parent_id

    @pytest.mark.asyncio
    async def test_reply_to_post_of_other_discussion_is_rejected(
        self,
        service: DiscussionService,
        db_session: AsyncSession,
    ) -> None:
        """A parent from another discussion never forms a thread."""
        first = await _create(service, "First")
        second = await _create(service, "Second")
        foreign = await service.add_post(first.discussion.id, STUDENT, PostCreateRequest(content="Q?"))
        foreign_id = foreign.posts[0].id

        with pytest.raises(InvalidParentPostError):
            await service.add_post(
                second.discussion.id,
                STUDENT,
                PostCreateRequest(content="Reply", parent_post_id=foreign_id),
            )

        assert await _count_posts(db_session) == 1

    @pytest.mark.asyncio
    async def test_reply_to_missing_post_is_rejected(self, service: DiscussionService) -> None:
        """An unknown parent id is rejected."""
        created = await _create(service)

        with pytest.raises(InvalidParentPostError):
            await service.add_post(
                created.discussion.id,
                STUDENT,
                PostCreateRequest(content="Reply", parent_post_id="missing"),
            )

    @pytest.mark.asyncio
    async def test_reply_to_deleted_post_is_rejected(self, service: DiscussionService) -> None:
        """Deleted posts cannot be replied to."""
        created = await _create(service)
        discussion_id = created.discussion.id
        question = await service.add_post(discussion_id, STUDENT, PostCreateRequest(content="Q?"))
        parent_id = question.posts[0].id
        await service.delete_post(discussion_id, parent_id, STUDENT)

        with pytest.raises(InvalidParentPostError):
            await service.add_post(
                discussion_id,
                TEACHER,
                PostCreateRequest(content="Reply", parent_post_id=parent_id),
            )


class TestUpdatePost:
    """Tests for DiscussionService.update_post."""

    @pytest.mark.asyncio
    async def test_author_edit_stamps_edited_at(
        self,
        service: DiscussionService,
        notifier: MagicMock,
    ) -> None:
        """Editing sets content and edited_at."""
        created = await _create(service)
        discussion_id = created.discussion.id
        posted = await service.add_post(discussion_id, STUDENT, PostCreateRequest(content="Draft"))
        post_id = posted.posts[0].id
        notifier.reset_mock()

        detail = await service.update_post(
            discussion_id, post_id, STUDENT, PostUpdateRequest(content="Final")
        )

        post = detail.posts[0]
        assert post.content == "Final"
        assert post.edited_at is not None
        notifier.emit.assert_called_once_with(
            EventTypes.Discussion.POST_UPDATED,
            {"discussion_id": discussion_id, "post_id": post_id},
        )

    @pytest.mark.asyncio
    async def test_edited_at_never_moves_backwards(self, service: DiscussionService) -> None:
        """Each edit stamps a value >= the previous stamp."""
        created = await _create(service)
        discussion_id = created.discussion.id
        posted = await service.add_post(discussion_id, STUDENT, PostCreateRequest(content="v1"))
        post_id = posted.posts[0].id

        stamps = []
        for content in ("v2", "v3", "v4"):
            detail = await service.update_post(
                discussion_id, post_id, STUDENT, PostUpdateRequest(content=content)
            )
            stamps.append(ensure_utc(detail.posts[0].edited_at))

        assert stamps == sorted(stamps)

    @pytest.mark.asyncio
    async def test_metadata_only_edit_still_stamps(self, service: DiscussionService) -> None:
        """Changing only rich content or mentions stamps edited_at."""
        created = await _create(service)
        discussion_id = created.discussion.id
        posted = await service.add_post(discussion_id, STUDENT, PostCreateRequest(content="Hello"))
        post_id = posted.posts[0].id

        detail = await service.update_post(
            discussion_id,
            post_id,
            STUDENT,
            PostUpdateRequest(mentions=["Other.Student@school.edu"]),
        )

        post = detail.posts[0]
        assert post.content == "Hello"
        assert post.mentions == [OTHER_STUDENT]
        assert post.edited_at is not None

    @pytest.mark.asyncio
    async def test_moderator_can_edit_any_post(self, service: DiscussionService) -> None:
        """Moderator-class members may edit other people's posts."""
        created = await _create(service)
        discussion_id = created.discussion.id
        posted = await service.add_post(discussion_id, STUDENT, PostCreateRequest(content="rude"))
        post_id = posted.posts[0].id

        detail = await service.update_post(
            discussion_id, post_id, MODERATOR, PostUpdateRequest(content="[edited by moderator]")
        )

        assert detail.posts[0].content == "[edited by moderator]"
        assert detail.posts[0].author_email == STUDENT

    @pytest.mark.asyncio
    async def test_other_participant_cannot_edit(self, service: DiscussionService) -> None:
        """Plain participants may only edit their own posts."""
        created = await _create(service)
        discussion_id = created.discussion.id
        posted = await service.add_post(discussion_id, STUDENT, PostCreateRequest(content="mine"))
        post_id = posted.posts[0].id

        with pytest.raises(ForbiddenError):
            await service.update_post(
                discussion_id, post_id, OTHER_STUDENT, PostUpdateRequest(content="yours")
            )

        detail = await service.get_discussion_detail(discussion_id, STUDENT)
        assert detail.posts[0].content == "mine"

    @pytest.mark.asyncio
    async def test_post_of_other_discussion_is_not_found(self, service: DiscussionService) -> None:
        """The post must belong to the addressed discussion."""
        first = await _create(service, "First")
        second = await _create(service, "Second")
        posted = await service.add_post(first.discussion.id, STUDENT, PostCreateRequest(content="x"))

        with pytest.raises(PostNotFoundError):
            await service.update_post(
                second.discussion.id,
                posted.posts[0].id,
                STUDENT,
                PostUpdateRequest(content="y"),
            )


class TestDeletePost:
    """Tests for DiscussionService.delete_post."""

    @pytest.mark.asyncio
    async def test_soft_delete_hides_post_but_keeps_row(
        self,
        service: DiscussionService,
        db_session: AsyncSession,
        notifier: MagicMock,
    ) -> None:
        """Deleted posts vanish from detail but still exist."""
        created = await _create(service)
        discussion_id = created.discussion.id
        posted = await service.add_post(discussion_id, STUDENT, PostCreateRequest(content="oops"))
        post_id = posted.posts[0].id
        notifier.reset_mock()

        detail = await service.delete_post(discussion_id, post_id, STUDENT)

        assert detail.posts == []
        assert await service.post_exists(post_id) is True

        row = (
            await db_session.execute(select(DiscussionPost).where(DiscussionPost.id == post_id))
        ).scalar_one()
        assert row.is_deleted is True
        assert row.deleted_at is not None

        notifier.emit.assert_called_once_with(
            EventTypes.Discussion.POST_DELETED,
            {"discussion_id": discussion_id, "post_id": post_id},
        )

    @pytest.mark.asyncio
    async def test_owner_can_delete_any_post(self, service: DiscussionService) -> None:
        """The owner moderates every post."""
        created = await _create(service)
        discussion_id = created.discussion.id
        posted = await service.add_post(discussion_id, STUDENT, PostCreateRequest(content="spam"))

        detail = await service.delete_post(discussion_id, posted.posts[0].id, TEACHER)

        assert detail.posts == []

    @pytest.mark.asyncio
    async def test_other_participant_cannot_delete(self, service: DiscussionService) -> None:
        """Plain participants cannot delete other people's posts."""
        created = await _create(service)
        discussion_id = created.discussion.id
        posted = await service.add_post(discussion_id, STUDENT, PostCreateRequest(content="mine"))

        with pytest.raises(ForbiddenError):
            await service.delete_post(discussion_id, posted.posts[0].id, OTHER_STUDENT)

    @pytest.mark.asyncio
    async def test_deleting_twice_is_not_found(self, service: DiscussionService) -> None:
        """A deleted post is no longer addressable for edits or deletes."""
        created = await _create(service)
        discussion_id = created.discussion.id
        posted = await service.add_post(discussion_id, STUDENT, PostCreateRequest(content="x"))
        post_id = posted.posts[0].id
        await service.delete_post(discussion_id, post_id, STUDENT)

        with pytest.raises(PostNotFoundError):
            await service.delete_post(discussion_id, post_id, STUDENT)
        with pytest.raises(PostNotFoundError):
            await service.update_post(discussion_id, post_id, STUDENT, PostUpdateRequest(content="y"))

    @pytest.mark.asyncio
    async def test_post_exists_for_unknown_id(self, service: DiscussionService) -> None:
        """Existence check is false for ids never written."""
        assert await service.post_exists("missing") is False
