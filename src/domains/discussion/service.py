# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Discussion service.

This module provides the DiscussionService facade consumed by the HTTP
layer. It composes the access gate, roster, post thread manager, unread
tracker and inbox query over one AsyncSession, and publishes events
through an explicitly injected notifier.

Every mutating call:
1. Resolves the actor through the access gate (fresh read, no caching).
2. Writes the primary rows in one transaction.
3. Runs best-effort side effects (unread counters, events).
4. Returns the full discussion detail re-read from the store.
"""

import logging
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.config import DiscussionSettings, get_settings
from src.domains.discussion.access import AccessGate, require_identity
from src.domains.discussion.context import ContextResolver, CourseContextResolver
from src.domains.discussion.errors import DiscussionNotFoundError, WriteFailureError
from src.domains.discussion.inbox import InboxQuery
from src.domains.discussion.notifier import EventNotifier, NullNotifier
from src.domains.discussion.posts import PostThreadManager
from src.domains.discussion.roster import ParticipantRoster
from src.domains.discussion.unread import UnreadTracker
from src.infrastructure.database.models.discussion import (
    Discussion,
    DiscussionParticipant,
    DiscussionPost,
)
from src.infrastructure.events import EventTypes
from src.models.discussion import (
    DiscussionCreateRequest,
    DiscussionDetailResponse,
    DiscussionFilters,
    DiscussionListResponse,
    DiscussionResponse,
    DiscussionStatsResponse,
    DiscussionSummary,
    DiscussionUpdateRequest,
    MarkReadResponse,
    ParticipantInput,
    ParticipantResponse,
    ParticipantStatus,
    PostCreateRequest,
    PostResponse,
    PostUpdateRequest,
)
from src.utils.datetime import utc_now

logger = logging.getLogger(__name__)

COURSE_CONTEXT = "course"

# Discussion fields a patch may set to None
_NULLABLE_UPDATE_FIELDS = frozenset({"description"})


class DiscussionService:
    """Service for discussions, participants and posts.

    Attributes:
        db: Async database session.
        notifier: Event notifier receiving committed changes.
        context_resolver: Anchor lookup used when creating anchored discussions.
    """

    def __init__(
        self,
        db: AsyncSession,
        notifier: EventNotifier | None = None,
        context_resolver: ContextResolver | None = None,
        settings: DiscussionSettings | None = None,
    ) -> None:
        """Initialize the discussion service.

        Args:
            db: Async database session.
            notifier: Event notifier. Defaults to a no-op notifier.
            context_resolver: Anchor lookup. Defaults to the course table.
            settings: Discussion settings. Defaults to application settings.
        """
        self.db = db
        self.notifier = notifier or NullNotifier()
        self.context_resolver = context_resolver or CourseContextResolver(db)

        discussion_settings = settings or get_settings().discussion
        self._gate = AccessGate(db)
        self._roster = ParticipantRoster(db)
        self._posts = PostThreadManager(db)
        self._unread = UnreadTracker(db)
        self._inbox = InboxQuery(
            db,
            default_limit=discussion_settings.default_page_size,
            max_limit=discussion_settings.max_page_size,
        )

    # =========================================================================
    # Reads
    # =========================================================================

    async def list_discussions(
        self,
        identity: str | None,
        filters: DiscussionFilters | None = None,
    ) -> DiscussionListResponse:
        """List the caller's discussions, most recent activity first.

        Args:
            identity: Caller identity.
            filters: Optional listing filters.

        Returns:
            Paginated inbox listing.

        Raises:
            UnauthorizedError: If identity is empty.
        """
        actor = require_identity(identity)
        filters = filters or DiscussionFilters()

        rows, total, limit = await self._inbox.fetch(actor, filters)

        items = [
            DiscussionSummary(
                **DiscussionResponse.model_validate(discussion).model_dump(),
                participant_role=participant.participant_role,
                unread_count=participant.unread_count,
                last_seen_at=participant.last_seen_at,
            )
            for discussion, participant in rows
        ]
        return DiscussionListResponse(
            items=items,
            total=total,
            limit=limit,
            offset=filters.offset,
        )

    async def get_discussion_detail(
        self,
        discussion_id: str,
        identity: str | None,
    ) -> DiscussionDetailResponse:
        """Get a discussion with its participants and visible posts.

        Raises:
            UnauthorizedError: If identity is empty.
            DiscussionNotFoundError: If the discussion does not exist.
            ForbiddenError: If the caller is not a member.
        """
        await self._gate.assert_access(discussion_id, identity)
        return await self._build_detail(discussion_id)

    async def post_exists(self, post_id: str) -> bool:
        """Check whether a post row exists, including soft-deleted posts."""
        return await self._posts.find_post(post_id) is not None

    async def get_discussion_stats(
        self,
        discussion_id: str,
        identity: str | None,
    ) -> DiscussionStatsResponse:
        """Participation figures of a discussion.

        Raises:
            ForbiddenError: If the caller cannot moderate the discussion.
        """
        await self._gate.assert_moderator(discussion_id, identity)

        async def count(query: Any) -> int:
            return (await self.db.execute(query)).scalar() or 0

        in_discussion = DiscussionPost.discussion_id == discussion_id
        visible = DiscussionPost.is_deleted.is_(False)

        total_posts = await count(
            select(func.count(DiscussionPost.id)).where(in_discussion, visible)
        )
        deleted_posts = await count(
            select(func.count(DiscussionPost.id)).where(
                in_discussion, DiscussionPost.is_deleted.is_(True)
            )
        )
        replies = await count(
            select(func.count(DiscussionPost.id)).where(
                in_discussion, visible, DiscussionPost.parent_post_id.is_not(None)
            )
        )
        unique_authors = await count(
            select(func.count(func.distinct(DiscussionPost.author_email))).where(
                in_discussion, visible
            )
        )
        active_participants = await count(
            select(func.count(DiscussionParticipant.id)).where(
                DiscussionParticipant.discussion_id == discussion_id,
                DiscussionParticipant.status == ParticipantStatus.ACTIVE.value,
            )
        )

        participation_rate = (
            round(unique_authors / active_participants * 100) if active_participants else 0
        )

        return DiscussionStatsResponse(
            discussion_id=discussion_id,
            total_posts=total_posts,
            deleted_posts=deleted_posts,
            replies=replies,
            unique_authors=unique_authors,
            active_participants=active_participants,
            participation_rate=participation_rate,
        )

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def create_discussion(
        self,
        owner_identity: str | None,
        owner_role: str | None,
        request: DiscussionCreateRequest,
    ) -> DiscussionDetailResponse:
        """Create a discussion, seed its roster and optional first post.

        Args:
            owner_identity: Creator identity.
            owner_role: Creator's broader role (e.g. "teacher").
            request: Discussion creation data.

        Returns:
            Full detail of the new discussion.

        Raises:
            UnauthorizedError: If owner_identity is empty.
            WriteFailureError: If the discussion or its roster cannot be stored.
        """
        owner = require_identity(owner_identity)

        metadata = dict(request.metadata)
        snapshot: dict[str, Any] | None = None
        if request.context_type == COURSE_CONTEXT and request.context_id:
            snapshot = await self._capture_context(request.context_type, request.context_id)
            if snapshot and snapshot.get("title") and "contextTitle" not in metadata:
                metadata["contextTitle"] = snapshot["title"]

        now = utc_now()
        try:
            discussion = Discussion(
                title=request.title,
                description=request.description,
                owner_email=owner,
                owner_role=owner_role,
                discussion_type=request.discussion_type.value,
                visibility=request.visibility.value,
                context_type=request.context_type,
                context_id=request.context_id,
                context_snapshot=snapshot,
                extra_metadata=metadata,
                created_at=now,
                updated_at=now,
                last_activity_at=now,
            )
            self.db.add(discussion)
            await self.db.flush()

            await self._roster.seed(discussion, request.participants)

            initial_post_id: str | None = None
            if request.initial_message is not None:
                initial_post = await self._posts.create(
                    discussion.id, owner, request.initial_message
                )
                initial_post_id = initial_post.id

            discussion_id = discussion.id
            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            raise self._write_failure("create_discussion", None, e) from e

        logger.info(
            "Created discussion: id=%s, type=%s, owner=%s",
            discussion_id,
            request.discussion_type.value,
            owner,
        )

        if initial_post_id is not None:
            await self._unread.increment_unread_counts(discussion_id, owner)
            self._emit(
                EventTypes.Discussion.POST_CREATED,
                discussion_id,
                post_id=initial_post_id,
            )

        detail = await self._build_detail(discussion_id)
        self._emit(EventTypes.Discussion.CREATED, discussion_id)
        return detail

    async def update_discussion(
        self,
        discussion_id: str,
        identity: str | None,
        patch: DiscussionUpdateRequest,
    ) -> DiscussionDetailResponse:
        """Apply a partial update to a discussion.

        Only fields present in the patch are written. An empty patch returns
        the current detail without writing.

        Raises:
            ForbiddenError: If the caller cannot moderate the discussion.
            WriteFailureError: If the store rejects the update.
        """
        context = await self._gate.assert_moderator(discussion_id, identity)

        changes = patch.model_dump(exclude_unset=True)
        if not changes:
            return await self._build_detail(discussion_id)

        discussion = context.discussion
        try:
            for field, value in changes.items():
                if value is None and field not in _NULLABLE_UPDATE_FIELDS:
                    continue
                if field == "metadata":
                    discussion.extra_metadata = dict(value)
                elif field == "visibility":
                    discussion.visibility = patch.visibility.value
                else:
                    setattr(discussion, field, value)

            discussion.last_activity_at = utc_now()
            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            raise self._write_failure("update_discussion", discussion_id, e) from e

        logger.info(
            "Updated discussion: id=%s, fields=%s, by=%s",
            discussion_id,
            sorted(changes),
            context.identity,
        )

        detail = await self._build_detail(discussion_id)
        self._emit(EventTypes.Discussion.UPDATED, discussion_id)
        return detail

    # =========================================================================
    # Roster
    # =========================================================================

    async def add_participants(
        self,
        discussion_id: str,
        identity: str | None,
        participants: list[ParticipantInput],
    ) -> DiscussionDetailResponse:
        """Add participants to a discussion.

        The caller is excluded from the list and already active identities
        are skipped. When nothing is left to write the current detail is
        returned unchanged.

        Raises:
            ForbiddenError: If the caller cannot moderate the discussion.
            WriteFailureError: If the store rejects the insert.
        """
        context = await self._gate.assert_moderator(discussion_id, identity)

        try:
            written = await self._roster.add(discussion_id, context.identity, participants)
            if written:
                await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            raise self._write_failure("add_participants", discussion_id, e) from e

        detail = await self._build_detail(discussion_id)
        if written:
            self._emit(EventTypes.Discussion.UPDATED, discussion_id)
        return detail

    async def remove_participant(
        self,
        discussion_id: str,
        identity: str | None,
        participant_identity: str,
    ) -> DiscussionDetailResponse:
        """Soft-remove a participant from a discussion.

        Raises:
            ForbiddenError: If the caller cannot moderate or targets the owner.
            ParticipantNotFoundError: If the target is not an active member.
            WriteFailureError: If the store rejects the update.
        """
        context = await self._gate.assert_moderator(discussion_id, identity)

        try:
            removed = await self._roster.remove(context.discussion, participant_identity)
            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            raise self._write_failure("remove_participant", discussion_id, e) from e

        logger.info(
            "Removed participant: discussion=%s, participant=%s, by=%s",
            discussion_id,
            removed.user_email,
            context.identity,
        )

        detail = await self._build_detail(discussion_id)
        self._emit(EventTypes.Discussion.UPDATED, discussion_id)
        return detail

    # =========================================================================
    # Posts
    # =========================================================================

    async def add_post(
        self,
        discussion_id: str,
        identity: str | None,
        request: PostCreateRequest,
    ) -> DiscussionDetailResponse:
        """Create a post with its attachments.

        The post and its attachments commit together. Unread counters of the
        other active participants are incremented afterwards.

        Raises:
            ForbiddenError: If the caller is not a member.
            InvalidParentPostError: If parent_post_id is not a visible post
                of this discussion.
            WriteFailureError: If the post or an attachment cannot be stored.
        """
        context = await self._gate.assert_access(discussion_id, identity)

        try:
            post = await self._posts.create(discussion_id, context.identity, request)
            post_id = post.id
            context.discussion.last_activity_at = utc_now()
            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            raise self._write_failure("add_post", discussion_id, e) from e

        logger.info(
            "Created post: discussion=%s, post=%s, author=%s",
            discussion_id,
            post_id,
            context.identity,
        )

        await self._unread.increment_unread_counts(discussion_id, context.identity)

        detail = await self._build_detail(discussion_id)
        self._emit(EventTypes.Discussion.POST_CREATED, discussion_id, post_id=post_id)
        return detail

    async def update_post(
        self,
        discussion_id: str,
        post_id: str,
        identity: str | None,
        patch: PostUpdateRequest,
    ) -> DiscussionDetailResponse:
        """Edit a post and stamp edited_at.

        Raises:
            PostNotFoundError: If the post is not a visible post of the discussion.
            ForbiddenError: If the caller is neither author nor moderator.
            WriteFailureError: If the store rejects the update.
        """
        context = await self._gate.assert_access(discussion_id, identity)

        try:
            await self._posts.update(context, post_id, patch)
            context.discussion.last_activity_at = utc_now()
            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            raise self._write_failure("update_post", discussion_id, e) from e

        detail = await self._build_detail(discussion_id)
        self._emit(EventTypes.Discussion.POST_UPDATED, discussion_id, post_id=post_id)
        return detail

    async def delete_post(
        self,
        discussion_id: str,
        post_id: str,
        identity: str | None,
    ) -> DiscussionDetailResponse:
        """Soft-delete a post.

        Raises:
            PostNotFoundError: If the post is not a visible post of the discussion.
            ForbiddenError: If the caller is neither author nor moderator.
            WriteFailureError: If the store rejects the update.
        """
        context = await self._gate.assert_access(discussion_id, identity)

        try:
            await self._posts.soft_delete(context, post_id)
            context.discussion.last_activity_at = utc_now()
            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            raise self._write_failure("delete_post", discussion_id, e) from e

        logger.info(
            "Deleted post: discussion=%s, post=%s, by=%s",
            discussion_id,
            post_id,
            context.identity,
        )

        detail = await self._build_detail(discussion_id)
        self._emit(EventTypes.Discussion.POST_DELETED, discussion_id, post_id=post_id)
        return detail

    async def mark_read(
        self,
        discussion_id: str,
        identity: str | None,
    ) -> MarkReadResponse:
        """Reset the caller's unread counter.

        Raises:
            ForbiddenError: If the caller is not a member.
            WriteFailureError: If the store rejects the update.
        """
        context = await self._gate.assert_access(discussion_id, identity)
        await self._unread.mark_read(discussion_id, context.identity)
        return MarkReadResponse(success=True)

    # =========================================================================
    # Helpers
    # =========================================================================

    async def _build_detail(self, discussion_id: str) -> DiscussionDetailResponse:
        result = await self.db.execute(
            select(Discussion)
            .where(Discussion.id == discussion_id)
            .execution_options(populate_existing=True)
        )
        discussion = result.scalar_one_or_none()
        if discussion is None:
            raise DiscussionNotFoundError("discussion_not_found")

        participants = await self._roster.list_for(discussion_id)
        posts = await self._posts.list_visible(discussion_id)

        return DiscussionDetailResponse(
            discussion=DiscussionResponse.model_validate(discussion),
            participants=[ParticipantResponse.model_validate(p) for p in participants],
            posts=[PostResponse.model_validate(p) for p in posts],
        )

    async def _capture_context(self, context_type: str, context_id: str) -> dict[str, Any] | None:
        try:
            return await self.context_resolver.resolve(context_type, context_id)
        except Exception as e:
            await self.db.rollback()
            logger.warning(
                "Context lookup failed: type=%s, id=%s, error=%s",
                context_type,
                context_id,
                str(e),
            )
            return None

    def _write_failure(
        self,
        operation: str,
        discussion_id: str | None,
        error: SQLAlchemyError,
    ) -> WriteFailureError:
        logger.error(
            "Write failed: operation=%s, discussion=%s",
            operation,
            discussion_id,
            exc_info=True,
        )
        return WriteFailureError(f"{operation}_failed", original_error=error)

    def _emit(self, event_type: str, discussion_id: str, **extra: str) -> None:
        self.notifier.emit(event_type, {"discussion_id": discussion_id, **extra})
