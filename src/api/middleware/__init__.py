# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""API middleware components.

This package provides middleware for request processing:
- AuthMiddleware: JWT authentication.
- RequestContextMiddleware: Request id and logging context.
- limiter: slowapi rate limiter shared by the routers.

Exports:
    AuthMiddleware: JWT authentication middleware.
    RequestContextMiddleware: Logging context middleware.
    CurrentUser: Authenticated caller.
"""

from src.api.middleware.auth import AuthMiddleware, CurrentUser
from src.api.middleware.request_context import RequestContextMiddleware

__all__ = [
    "AuthMiddleware",
    "CurrentUser",
    "RequestContextMiddleware",
]
