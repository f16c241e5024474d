# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Event notification for discussion changes.

The service receives its notifier explicitly. Production wires an
EventBusNotifier around the process event bus; tests and degraded
startup paths use NullNotifier.

emit() is only called after the triggering write has committed. It
never raises and never waits for subscribers.
"""

import asyncio
import logging
from typing import Any, Protocol

from src.infrastructure.events import EventBus

logger = logging.getLogger(__name__)


class EventNotifier(Protocol):
    """Fire-and-forget publisher of discussion events."""

    def emit(self, event_type: str, payload: dict[str, Any]) -> None:
        ...


class NullNotifier:
    """Notifier used when no bus is attached."""

    def emit(self, event_type: str, payload: dict[str, Any]) -> None:
        return None


class EventBusNotifier:
    """Schedules bus publication on the running loop.

    Attributes:
        _bus: Event bus, or None for a silent no-op.
        _pending: Publication tasks not finished yet.
    """

    def __init__(self, bus: EventBus | None) -> None:
        self._bus = bus
        self._pending: set[asyncio.Task[Any]] = set()

    def emit(self, event_type: str, payload: dict[str, Any]) -> None:
        """Schedule publication of an event.

        Args:
            event_type: Event name, e.g. "discussion:post_created".
            payload: Event payload.
        """
        if self._bus is None:
            return

        try:
            loop = asyncio.get_running_loop()
            task = loop.create_task(self._bus.publish(event_type, dict(payload)))
        except Exception as e:
            logger.warning(
                "Failed to schedule event %s: %s",
                event_type,
                str(e),
            )
            return

        self._pending.add(task)
        task.add_done_callback(self._on_done)

    def _on_done(self, task: asyncio.Task[Any]) -> None:
        self._pending.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.warning("Event publication failed: %s", str(error))

    @property
    def pending(self) -> int:
        return len(self._pending)

    async def drain(self) -> None:
        """Wait for scheduled publications to finish (shutdown and tests)."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)
