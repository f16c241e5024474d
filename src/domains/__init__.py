# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Domain services layer for Agora.

This package contains domain services that encapsulate business logic.

Domains:
    discussion: Discussions, participants, posts and unread tracking.
"""
