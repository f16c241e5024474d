# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Post thread management.

Creates, edits and soft-deletes posts and their attachments. A post and
its attachments are written in the caller's transaction, so they commit
or roll back together. Deleted posts stay in the table and are filtered
out of every visible read.
"""

import logging
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from src.domains.discussion.access import AccessContext, AccessGate
from src.domains.discussion.errors import InvalidParentPostError, PostNotFoundError
from src.infrastructure.database.models.discussion import (
    DiscussionAttachment,
    DiscussionPost,
)
from src.models.discussion import (
    InitialMessage,
    PostCreateRequest,
    PostUpdateRequest,
    normalize_identity,
)
from src.utils.datetime import monotonic_stamp, utc_now

logger = logging.getLogger(__name__)


class PostThreadManager:
    """Writes and reads posts of a discussion.

    Attributes:
        _db: Async database session.
    """

    def __init__(self, db: AsyncSession) -> None:
        self._db = db

    async def create(
        self,
        discussion_id: str,
        author: str,
        request: PostCreateRequest | InitialMessage,
    ) -> DiscussionPost:
        """Insert a post and its attachments without committing.

        Args:
            discussion_id: Target discussion.
            author: Normalized author identity.
            request: Post content. An InitialMessage has no parent.

        Returns:
            The flushed post row.

        Raises:
            InvalidParentPostError: If the parent is missing, deleted or
                belongs to another discussion.
        """
        parent_post_id = getattr(request, "parent_post_id", None)
        if parent_post_id is not None:
            await self._ensure_valid_parent(discussion_id, parent_post_id)

        post = DiscussionPost(
            discussion_id=discussion_id,
            author_email=author,
            parent_post_id=parent_post_id,
            content=request.content,
            rich_content=request.rich_content or {},
            mentions=self._normalize_mentions(request.mentions),
            created_at=utc_now(),
        )
        self._db.add(post)
        await self._db.flush()

        for attachment in request.attachments:
            self._db.add(
                DiscussionAttachment(
                    post_id=post.id,
                    file_url=attachment.file_url,
                    file_name=attachment.file_name,
                    file_type=attachment.file_type,
                    file_size=attachment.file_size,
                    extra_metadata=attachment.metadata,
                )
            )
        if request.attachments:
            await self._db.flush()

        logger.debug(
            "Post staged: discussion=%s, post=%s, attachments=%d",
            discussion_id,
            post.id,
            len(request.attachments),
        )
        return post

    async def update(
        self,
        context: AccessContext,
        post_id: str,
        patch: PostUpdateRequest,
    ) -> DiscussionPost:
        """Apply a partial edit to a post without committing.

        edited_at is stamped on every successful update and never moves
        backwards.

        Raises:
            PostNotFoundError: If the post is not a visible post of the discussion.
            ForbiddenError: If the actor is neither author nor moderator.
        """
        post = await self._get_visible_post(context.discussion.id, post_id)
        AccessGate.ensure_can_modify_post(context, post)

        changes: dict[str, Any] = patch.model_dump(exclude_unset=True)
        if "content" in changes and changes["content"] is not None:
            post.content = changes["content"]
        if "rich_content" in changes:
            post.rich_content = changes["rich_content"] or {}
        if "mentions" in changes:
            post.mentions = self._normalize_mentions(changes["mentions"] or [])

        post.edited_at = monotonic_stamp(post.edited_at)
        await self._db.flush()
        return post

    async def soft_delete(self, context: AccessContext, post_id: str) -> DiscussionPost:
        """Flip is_deleted on a post without committing.

        Raises:
            PostNotFoundError: If the post is not a visible post of the discussion.
            ForbiddenError: If the actor is neither author nor moderator.
        """
        post = await self._get_visible_post(context.discussion.id, post_id)
        AccessGate.ensure_can_modify_post(context, post)

        post.is_deleted = True
        post.deleted_at = utc_now()
        await self._db.flush()
        return post

    async def find_post(self, post_id: str) -> DiscussionPost | None:
        """Look a post up by id, deleted or not."""
        result = await self._db.execute(
            select(DiscussionPost)
            .where(DiscussionPost.id == post_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def list_visible(self, discussion_id: str) -> list[DiscussionPost]:
        """Visible posts of a discussion in creation order."""
        result = await self._db.execute(
            select(DiscussionPost)
            .where(
                DiscussionPost.discussion_id == discussion_id,
                DiscussionPost.is_deleted.is_(False),
            )
            .options(
                selectinload(DiscussionPost.attachments),
                selectinload(DiscussionPost.reactions),
            )
            .order_by(DiscussionPost.created_at, DiscussionPost.id)
            .execution_options(populate_existing=True)
        )
        return list(result.scalars().all())

    async def _get_visible_post(self, discussion_id: str, post_id: str) -> DiscussionPost:
        post = await self.find_post(post_id)
        if post is None or post.discussion_id != discussion_id or post.is_deleted:
            raise PostNotFoundError("post_not_found")
        return post

    async def _ensure_valid_parent(self, discussion_id: str, parent_post_id: str) -> None:
        parent = await self.find_post(parent_post_id)
        if parent is None or parent.discussion_id != discussion_id or parent.is_deleted:
            logger.info(
                "Rejected reply: discussion=%s, parent=%s",
                discussion_id,
                parent_post_id,
            )
            raise InvalidParentPostError("invalid_parent_post")

    @staticmethod
    def _normalize_mentions(mentions: list[str]) -> list[str]:
        return [normalize_identity(m) for m in mentions if normalize_identity(m)]
