# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Discussion API endpoints.

This module provides endpoints for discussions and their posts:
- GET / - List the caller's discussions (inbox)
- POST / - Create a discussion
- GET /{discussion_id} - Get discussion detail
- PATCH /{discussion_id} - Update a discussion
- GET /{discussion_id}/stats - Participation stats (moderators)
- POST /{discussion_id}/read - Mark the discussion read

Participant endpoints:
- POST /{discussion_id}/participants - Add participants
- DELETE /{discussion_id}/participants/{identity} - Remove a participant

Post endpoints:
- POST /{discussion_id}/posts - Create a post
- PATCH /{discussion_id}/posts/{post_id} - Edit a post
- DELETE /{discussion_id}/posts/{post_id} - Delete a post

Real-time:
- WebSocket /ws?token=... - Join discussion rooms and receive events

Every mutating endpoint returns the full discussion detail.
"""

import logging
from typing import Annotated, NoReturn

from fastapi import (
    APIRouter,
    Depends,
    HTTPException,
    Query,
    Request,
    WebSocket,
    WebSocketDisconnect,
    status,
)
from sqlalchemy.ext.asyncio import AsyncSession

from src.api.dependencies import get_db, get_notifier, require_auth
from src.api.middleware.auth import CurrentUser, authenticate_token
from src.api.middleware.rate_limit import RATE_LIMIT_POSTS, RATE_LIMIT_WRITES, limiter
from src.core.config import get_settings
from src.domains.auth.jwt import JWTVerifier
from src.domains.discussion.errors import (
    DiscussionServiceError,
    ForbiddenError,
    ImmutableFieldError,
    InvalidParentPostError,
    NotFoundError,
    UnauthorizedError,
    WriteFailureError,
)
from src.domains.discussion.notifier import EventNotifier
from src.domains.discussion.service import DiscussionService
from src.infrastructure.database.connection import get_session
from src.models.discussion import (
    AddParticipantsRequest,
    DiscussionCreateRequest,
    DiscussionDetailResponse,
    DiscussionFilters,
    DiscussionListResponse,
    DiscussionStatsResponse,
    DiscussionType,
    DiscussionUpdateRequest,
    DiscussionVisibility,
    MarkReadResponse,
    PostCreateRequest,
    PostUpdateRequest,
)

logger = logging.getLogger(__name__)

router = APIRouter()


def _get_service(db: AsyncSession, notifier: EventNotifier | None = None) -> DiscussionService:
    """Get discussion service instance.

    Args:
        db: Database session.
        notifier: Event notifier for committed changes.

    Returns:
        Configured DiscussionService instance.
    """
    return DiscussionService(db=db, notifier=notifier)


def _raise_http_error(error: Exception) -> NoReturn:
    """Translate a discussion service error into an HTTPException."""
    if isinstance(error, UnauthorizedError):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )
    if isinstance(error, NotFoundError):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(error))
    if isinstance(error, ForbiddenError):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(error))
    if isinstance(error, (InvalidParentPostError, ImmutableFieldError)):
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=str(error),
        )
    if isinstance(error, WriteFailureError):
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to save changes",
        )
    raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(error))


_SERVICE_ERRORS = (DiscussionServiceError, ImmutableFieldError)


@router.get(
    "",
    response_model=DiscussionListResponse,
    summary="List discussions",
    description="List the caller's discussions ordered by most recent activity.",
)
async def list_discussions(
    discussion_type: Annotated[DiscussionType | None, Query(description="Filter by kind")] = None,
    visibility: Annotated[DiscussionVisibility | None, Query(description="Filter by visibility")] = None,
    context_type: Annotated[str | None, Query(description="Filter by anchor type")] = None,
    context_id: Annotated[str | None, Query(description="Filter by anchor id")] = None,
    study_group_only: Annotated[bool, Query(description="Only study groups")] = False,
    search: Annotated[str | None, Query(description="Search in titles")] = None,
    limit: Annotated[int | None, Query(ge=1, description="Maximum results (capped at 100)")] = None,
    offset: Annotated[int, Query(ge=0, description="Pagination offset")] = 0,
    current_user: CurrentUser = Depends(require_auth),
    db: AsyncSession = Depends(get_db),
) -> DiscussionListResponse:
    """List the caller's discussions.

    Args:
        discussion_type: Optional kind filter.
        visibility: Optional visibility filter.
        context_type: Optional anchor type filter.
        context_id: Optional anchor id filter.
        study_group_only: Restrict to study groups.
        search: Optional case-insensitive title search.
        limit: Page size.
        offset: Pagination offset.
        current_user: Authenticated user.
        db: Database session.

    Returns:
        Paginated inbox listing.
    """
    filters = DiscussionFilters(
        discussion_type=discussion_type,
        visibility=visibility,
        context_type=context_type,
        context_id=context_id,
        study_group_only=study_group_only,
        search_text=search,
        limit=limit,
        offset=offset,
    )
    service = _get_service(db)

    try:
        return await service.list_discussions(current_user.email, filters)
    except _SERVICE_ERRORS as e:
        _raise_http_error(e)


@router.post(
    "",
    response_model=DiscussionDetailResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create discussion",
    description="Create a discussion. The caller becomes its owner.",
)
@limiter.limit(RATE_LIMIT_WRITES)
async def create_discussion(
    request: Request,
    data: DiscussionCreateRequest,
    current_user: CurrentUser = Depends(require_auth),
    db: AsyncSession = Depends(get_db),
    notifier: EventNotifier = Depends(get_notifier),
) -> DiscussionDetailResponse:
    """Create a new discussion.

    Args:
        request: HTTP request (rate limiting).
        data: Discussion creation request.
        current_user: Authenticated user.
        db: Database session.
        notifier: Event notifier.

    Returns:
        Full detail of the created discussion.
    """
    logger.info(
        "Creating discussion: type=%s by %s",
        data.discussion_type.value,
        current_user.email,
    )
    service = _get_service(db, notifier)

    try:
        return await service.create_discussion(current_user.email, current_user.role, data)
    except _SERVICE_ERRORS as e:
        _raise_http_error(e)


@router.get(
    "/{discussion_id}",
    response_model=DiscussionDetailResponse,
    summary="Get discussion",
    description="Get a discussion with its participants and posts.",
)
async def get_discussion(
    discussion_id: str,
    current_user: CurrentUser = Depends(require_auth),
    db: AsyncSession = Depends(get_db),
) -> DiscussionDetailResponse:
    """Get discussion detail.

    Raises:
        HTTPException: If the discussion is missing or access is denied.
    """
    service = _get_service(db)

    try:
        return await service.get_discussion_detail(discussion_id, current_user.email)
    except _SERVICE_ERRORS as e:
        _raise_http_error(e)


@router.patch(
    "/{discussion_id}",
    response_model=DiscussionDetailResponse,
    summary="Update discussion",
    description="Partially update a discussion. Requires a moderator role.",
)
@limiter.limit(RATE_LIMIT_WRITES)
async def update_discussion(
    request: Request,
    discussion_id: str,
    data: DiscussionUpdateRequest,
    current_user: CurrentUser = Depends(require_auth),
    db: AsyncSession = Depends(get_db),
    notifier: EventNotifier = Depends(get_notifier),
) -> DiscussionDetailResponse:
    """Update a discussion."""
    service = _get_service(db, notifier)

    try:
        return await service.update_discussion(discussion_id, current_user.email, data)
    except _SERVICE_ERRORS as e:
        _raise_http_error(e)


@router.get(
    "/{discussion_id}/stats",
    response_model=DiscussionStatsResponse,
    summary="Discussion stats",
    description="Participation figures. Requires a moderator role.",
)
async def get_discussion_stats(
    discussion_id: str,
    current_user: CurrentUser = Depends(require_auth),
    db: AsyncSession = Depends(get_db),
) -> DiscussionStatsResponse:
    """Get participation stats of a discussion."""
    service = _get_service(db)

    try:
        return await service.get_discussion_stats(discussion_id, current_user.email)
    except _SERVICE_ERRORS as e:
        _raise_http_error(e)


@router.post(
    "/{discussion_id}/read",
    response_model=MarkReadResponse,
    summary="Mark read",
    description="Reset the caller's unread counter for a discussion.",
)
async def mark_discussion_read(
    discussion_id: str,
    current_user: CurrentUser = Depends(require_auth),
    db: AsyncSession = Depends(get_db),
) -> MarkReadResponse:
    """Mark a discussion read for the caller."""
    service = _get_service(db)

    try:
        return await service.mark_read(discussion_id, current_user.email)
    except _SERVICE_ERRORS as e:
        _raise_http_error(e)


# =========================================================================
# Participants
# =========================================================================


@router.post(
    "/{discussion_id}/participants",
    response_model=DiscussionDetailResponse,
    summary="Add participants",
    description="Add participants to a discussion. Requires a moderator role.",
)
@limiter.limit(RATE_LIMIT_WRITES)
async def add_participants(
    request: Request,
    discussion_id: str,
    data: AddParticipantsRequest,
    current_user: CurrentUser = Depends(require_auth),
    db: AsyncSession = Depends(get_db),
    notifier: EventNotifier = Depends(get_notifier),
) -> DiscussionDetailResponse:
    """Add participants to a discussion."""
    service = _get_service(db, notifier)

    try:
        return await service.add_participants(
            discussion_id, current_user.email, data.participants
        )
    except _SERVICE_ERRORS as e:
        _raise_http_error(e)


@router.delete(
    "/{discussion_id}/participants/{identity}",
    response_model=DiscussionDetailResponse,
    summary="Remove participant",
    description="Soft-remove a participant. Requires a moderator role.",
)
@limiter.limit(RATE_LIMIT_WRITES)
async def remove_participant(
    request: Request,
    discussion_id: str,
    identity: str,
    current_user: CurrentUser = Depends(require_auth),
    db: AsyncSession = Depends(get_db),
    notifier: EventNotifier = Depends(get_notifier),
) -> DiscussionDetailResponse:
    """Remove a participant from a discussion."""
    service = _get_service(db, notifier)

    try:
        return await service.remove_participant(discussion_id, current_user.email, identity)
    except _SERVICE_ERRORS as e:
        _raise_http_error(e)


# =========================================================================
# Posts
# =========================================================================


@router.post(
    "/{discussion_id}/posts",
    response_model=DiscussionDetailResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create post",
    description="Post a message, optionally as a reply to another post.",
)
@limiter.limit(RATE_LIMIT_POSTS)
async def create_post(
    request: Request,
    discussion_id: str,
    data: PostCreateRequest,
    current_user: CurrentUser = Depends(require_auth),
    db: AsyncSession = Depends(get_db),
    notifier: EventNotifier = Depends(get_notifier),
) -> DiscussionDetailResponse:
    """Create a post in a discussion."""
    service = _get_service(db, notifier)

    try:
        return await service.add_post(discussion_id, current_user.email, data)
    except _SERVICE_ERRORS as e:
        _raise_http_error(e)


@router.patch(
    "/{discussion_id}/posts/{post_id}",
    response_model=DiscussionDetailResponse,
    summary="Edit post",
    description="Edit a post. Allowed for its author and moderators.",
)
@limiter.limit(RATE_LIMIT_WRITES)
async def update_post(
    request: Request,
    discussion_id: str,
    post_id: str,
    data: PostUpdateRequest,
    current_user: CurrentUser = Depends(require_auth),
    db: AsyncSession = Depends(get_db),
    notifier: EventNotifier = Depends(get_notifier),
) -> DiscussionDetailResponse:
    """Edit a post."""
    service = _get_service(db, notifier)

    try:
        return await service.update_post(discussion_id, post_id, current_user.email, data)
    except _SERVICE_ERRORS as e:
        _raise_http_error(e)


@router.delete(
    "/{discussion_id}/posts/{post_id}",
    response_model=DiscussionDetailResponse,
    summary="Delete post",
    description="Soft-delete a post. Allowed for its author and moderators.",
)
@limiter.limit(RATE_LIMIT_WRITES)
async def delete_post(
    request: Request,
    discussion_id: str,
    post_id: str,
    current_user: CurrentUser = Depends(require_auth),
    db: AsyncSession = Depends(get_db),
    notifier: EventNotifier = Depends(get_notifier),
) -> DiscussionDetailResponse:
    """Delete a post."""
    service = _get_service(db, notifier)

    try:
        return await service.delete_post(discussion_id, post_id, current_user.email)
    except _SERVICE_ERRORS as e:
        _raise_http_error(e)


# =========================================================================
# WebSocket
# =========================================================================


async def _can_join(discussion_id: str, user: CurrentUser) -> bool:
    """Run the access gate for a room join on a short-lived session."""
    async with get_session() as db:
        service = _get_service(db)
        try:
            await service.get_discussion_detail(discussion_id, user.email)
        except _SERVICE_ERRORS as e:
            logger.debug("Room join refused: discussion=%s, reason=%s", discussion_id, str(e))
            return False
    return True


@router.websocket("/ws")
async def discussion_events_websocket(websocket: WebSocket) -> None:
    """WebSocket endpoint for real-time discussion events.

    Authenticates via a JWT token query parameter. Clients then send
    {"type": "join", "discussion_id": "..."} or
    {"type": "leave", "discussion_id": "..."} frames and receive
    {"event": ..., "payload": ...} frames for joined discussions.

    Args:
        websocket: WebSocket connection.
    """
    manager = getattr(websocket.app.state, "connection_manager", None)
    if manager is None:
        await websocket.close(code=1013)
        return

    token = websocket.query_params.get("token")
    user = authenticate_token(JWTVerifier(get_settings().jwt), token) if token else None
    if user is None or not user.email:
        await websocket.close(code=1008)
        return

    await manager.connect(websocket, user.email)

    try:
        while True:
            message = await websocket.receive_json()
            message_type = message.get("type")
            discussion_id = message.get("discussion_id")

            if message_type == "ping":
                await manager.send_personal_message({"type": "pong"}, websocket)
            elif message_type == "join" and discussion_id:
                if await _can_join(discussion_id, user):
                    await manager.join(websocket, discussion_id)
                else:
                    await manager.send_personal_message(
                        {"type": "error", "code": "ACCESS_DENIED", "discussion_id": discussion_id},
                        websocket,
                    )
            elif message_type == "leave" and discussion_id:
                manager.leave(websocket, discussion_id)
            else:
                await manager.send_personal_message(
                    {"type": "error", "code": "UNKNOWN_MESSAGE"},
                    websocket,
                )
    except WebSocketDisconnect:
        logger.debug("WebSocket closed by client: identity=%s", user.email)
    finally:
        manager.disconnect(websocket)
