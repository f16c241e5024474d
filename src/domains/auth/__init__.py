# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Authentication seam.

Users are authenticated by the LMS identity provider. This package only
verifies the bearer tokens it issues.

Exports:
    JWTVerifier: JWT access token verification.
"""

from src.domains.auth.jwt import (
    InvalidTokenError,
    JWTError,
    JWTVerifier,
    TokenExpiredError,
    TokenPayload,
)

__all__ = [
    "JWTVerifier",
    "TokenPayload",
    "JWTError",
    "TokenExpiredError",
    "InvalidTokenError",
]
