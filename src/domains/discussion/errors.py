# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Discussion service exceptions.

Permission and existence failures are raised before any write is
attempted. WriteFailureError is only raised for primary rows
(discussion, participant, post, attachment); auxiliary side effects
log and continue instead.
"""

from src.infrastructure.database.models.discussion import ImmutableFieldError


class DiscussionServiceError(Exception):
    """Base exception for discussion service errors."""

    pass


class UnauthorizedError(DiscussionServiceError):
    """Raised when a call carries no actor identity at all."""

    pass


class NotFoundError(DiscussionServiceError):
    """Raised when a referenced entity does not resolve."""

    pass


class DiscussionNotFoundError(NotFoundError):
    """Raised when a discussion id does not resolve."""

    pass


class PostNotFoundError(NotFoundError):
    """Raised when a post id does not resolve within its discussion."""

    pass


class ParticipantNotFoundError(NotFoundError):
    """Raised when an identity is not a member of the discussion."""

    pass


class ForbiddenError(DiscussionServiceError):
    """Raised when the actor lacks the required role tier."""

    pass


class InvalidParentPostError(DiscussionServiceError):
    """Raised when a reply points at a post outside its discussion."""

    pass


class WriteFailureError(DiscussionServiceError):
    """Raised when the store rejects a write of a primary entity.

    Attributes:
        original_error: The underlying SQLAlchemy error.
    """

    def __init__(self, message: str, original_error: Exception | None = None) -> None:
        super().__init__(message)
        self.original_error = original_error


__all__ = [
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
