# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""JWT access token verification.

Tokens are issued by the LMS identity provider and signed with a shared
secret. This module only verifies them, using python-jose.

Claims used:
    sub: Identity (e-mail address).
    role: Broader LMS role of the user (e.g. "teacher", "student").
    exp: Expiration timestamp.

Example:
    >>> from src.core.config import get_settings
    >>> verifier = JWTVerifier(get_settings().jwt)
    >>> claims = verifier.decode_token(token)
    >>> claims.sub
    'teacher@school.edu'
"""

import logging

from jose import ExpiredSignatureError, JWTError as JoseJWTError, jwt
from pydantic import BaseModel

from src.core.config.settings import JWTSettings

logger = logging.getLogger(__name__)


class TokenPayload(BaseModel):
    """Verified token claims.

    Attributes:
        sub: Identity of the user.
        role: Broader LMS role, if asserted.
        exp: Expiration timestamp.
        iat: Issued at timestamp.
    """

    sub: str
    role: str | None = None
    exp: int | None = None
    iat: int | None = None


class JWTError(Exception):
    """Base exception for JWT operations."""

    pass


class TokenExpiredError(JWTError):
    """Raised when a token has expired."""

    pass


class InvalidTokenError(JWTError):
    """Raised when a token is invalid."""

    pass


class JWTVerifier:
    """Validates bearer tokens against the shared secret.

    Attributes:
        _settings: JWT configuration settings.
    """

    def __init__(self, settings: JWTSettings) -> None:
        self._settings = settings

    def decode_token(self, token: str) -> TokenPayload:
        """Decode and validate a JWT token.

        Args:
            token: JWT token string.

        Returns:
            TokenPayload with decoded claims.

        Raises:
            TokenExpiredError: If the token has expired.
            InvalidTokenError: If the token is invalid or carries no subject.
        """
        try:
            payload = jwt.decode(
                token,
                self._settings.secret_key.get_secret_value(),
                algorithms=[self._settings.algorithm],
            )
        except ExpiredSignatureError:
            raise TokenExpiredError("Token has expired")
        except JoseJWTError as e:
            logger.warning("Token decode failed: %s", str(e))
            raise InvalidTokenError(f"Invalid token: {str(e)}")

        subject = payload.get("sub")
        if not subject:
            raise InvalidTokenError("Token has no subject")

        return TokenPayload(
            sub=str(subject),
            role=payload.get("role"),
            exp=payload.get("exp"),
            iat=payload.get("iat"),
        )

    def verify_token(self, token: str) -> bool:
        """Check whether a token is valid."""
        try:
            self.decode_token(token)
            return True
        except (TokenExpiredError, InvalidTokenError):
            return False
