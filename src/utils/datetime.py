# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""DateTime utilities for the discussion engine.

All timestamps are stored in UTC and all Python datetimes are
timezone-aware. Some drivers (SQLite) hand back naive values, so
comparisons go through ensure_utc().

Usage:
------
    from src.utils.datetime import utc_now

    # For SQLAlchemy model defaults
    created_at = mapped_column(DateTime(timezone=True), default=utc_now)
"""

from datetime import datetime, timezone


def utc_now() -> datetime:
    """Get current UTC time as timezone-aware datetime.

    Returns:
        Timezone-aware datetime representing current UTC time.
    """
    return datetime.now(timezone.utc)


def ensure_utc(dt: datetime | None) -> datetime | None:
    """Ensure a datetime is timezone-aware UTC.

    Args:
        dt: A datetime object (naive or aware) or None.

    Returns:
        Timezone-aware UTC datetime or None.

    Note:
        - If dt is None, returns None
        - If dt is naive, assumes UTC and adds tzinfo
        - If dt is aware, converts to UTC
    """
    if dt is None:
        return None

    if dt.tzinfo is None:
        # Naive datetime - assume UTC
        return dt.replace(tzinfo=timezone.utc)

    return dt.astimezone(timezone.utc)


def monotonic_stamp(previous: datetime | None) -> datetime:
    """Return the current UTC time, never earlier than a previous stamp.

    Used for edit stamps so that repeated edits never move backwards
    even when the clock of the serving worker lags behind another.

    Args:
        previous: The previously recorded stamp, if any.

    Returns:
        Timezone-aware UTC datetime >= previous.
    """
    current = utc_now()
    previous_utc = ensure_utc(previous)
    if previous_utc is not None and previous_utc > current:
        return previous_utc
    return current
