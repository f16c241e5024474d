# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Centralized event type definitions.

Event names are part of the real-time contract with clients, so they
are defined once here and never spelled out as literals elsewhere.
"""


class EventTypes:
    """All event types organized by domain."""

    class Discussion:
        """Discussion domain events."""

        CREATED = "discussion:created"
        UPDATED = "discussion:updated"
        POST_CREATED = "discussion:post_created"
        POST_UPDATED = "discussion:post_updated"
        POST_DELETED = "discussion:post_deleted"


class EventPatterns:
    """Wildcard patterns for subscribing to multiple events."""

    ALL_DISCUSSION = "discussion:*"
    ALL_DISCUSSION_POST = "discussion:post_*"

    # Global wildcard
    ALL = "*"
