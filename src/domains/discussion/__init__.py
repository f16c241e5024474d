# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Discussion domain package.

This package provides the conversation engine including:
- Access checks and permission tiers
- Participant roster management
- Posts, replies and attachments
- Unread counters and inbox listing
- Event notification of committed changes
"""

from src.domains.discussion.access import AccessContext, AccessGate
from src.domains.discussion.context import ContextResolver, CourseContextResolver
from src.domains.discussion.errors import (
    DiscussionNotFoundError,
    DiscussionServiceError,
    ForbiddenError,
    ImmutableFieldError,
    InvalidParentPostError,
    NotFoundError,
    ParticipantNotFoundError,
    PostNotFoundError,
    UnauthorizedError,
    WriteFailureError,
)
from src.domains.discussion.notifier import EventBusNotifier, EventNotifier, NullNotifier
from src.domains.discussion.service import DiscussionService

__all__ = [
    "DiscussionService",
    "AccessGate",
    "AccessContext",
    "ContextResolver",
    "CourseContextResolver",
    "EventNotifier",
    "EventBusNotifier",
    "NullNotifier",
    "DiscussionServiceError",
    "UnauthorizedError",
    "NotFoundError",
    "DiscussionNotFoundError",
    "PostNotFoundError",
    "ParticipantNotFoundError",
    "ForbiddenError",
    "InvalidParentPostError",
    "WriteFailureError",
    "ImmutableFieldError",
]
