"""Agora Discussions Backend.

Discussion and messaging engine for the learning platform: direct
messages, course discussions, study groups and forum bridges behind one
data model, with per-participant unread tracking and real-time events.

Copyright (C) 2025 Global Digital Labs (gdlabs.io)
SPDX-License-Identifier: LGPL-3.0-or-later
"""

__version__ = "1.0.0"
