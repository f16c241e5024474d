# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Real-time delivery of discussion events to WebSocket clients."""

from src.infrastructure.realtime.manager import ConnectionManager

__all__ = ["ConnectionManager"]
