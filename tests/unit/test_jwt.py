# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Unit tests for JWT token verification.

Tests the JWTVerifier class against tokens issued with the shared secret.
"""

from collections.abc import Callable
from datetime import timedelta

import pytest
from jose import jwt

from src.core.config import JWTSettings
from src.domains.auth.jwt import (
    InvalidTokenError,
    JWTVerifier,
    TokenExpiredError,
    TokenPayload,
)


@pytest.fixture
def verifier(jwt_settings: JWTSettings) -> JWTVerifier:
    """Create JWT verifier with test settings."""
    return JWTVerifier(jwt_settings)


class TestJWTVerifier:
    """Tests for JWTVerifier class."""

    def test_decode_valid_token(
        self,
        verifier: JWTVerifier,
        make_token: Callable[..., str],
    ) -> None:
        """Test that a valid token yields its claims."""
        token = make_token("teacher@school.edu", role="teacher")

        payload = verifier.decode_token(token)

        assert isinstance(payload, TokenPayload)
        assert payload.sub == "teacher@school.edu"
        assert payload.role == "teacher"
        assert payload.exp is not None
        assert payload.iat is not None

    def test_role_is_optional(
        self,
        verifier: JWTVerifier,
        make_token: Callable[..., str],
    ) -> None:
        """Test that tokens without a role claim are accepted."""
        payload = verifier.decode_token(make_token("student@school.edu", role=None))

        assert payload.role is None

    def test_expired_token_raises_error(
        self,
        verifier: JWTVerifier,
        make_token: Callable[..., str],
    ) -> None:
        """Test that expired tokens raise TokenExpiredError."""
        token = make_token("student@school.edu", expires_in=timedelta(minutes=-5))

        with pytest.raises(TokenExpiredError):
            verifier.decode_token(token)

    def test_wrong_secret_raises_error(
        self,
        verifier: JWTVerifier,
        make_token: Callable[..., str],
    ) -> None:
        """Test that tokens signed with another secret are invalid."""
        token = make_token("student@school.edu", secret="some-other-secret")

        with pytest.raises(InvalidTokenError):
            verifier.decode_token(token)

    def test_garbage_token_raises_error(self, verifier: JWTVerifier) -> None:
        """Test that malformed tokens are invalid."""
        with pytest.raises(InvalidTokenError):
            verifier.decode_token("not.a.token")

    def test_missing_subject_raises_error(
        self,
        verifier: JWTVerifier,
        jwt_settings: JWTSettings,
    ) -> None:
        """Test that tokens without a subject are invalid."""
        token = jwt.encode(
            {"role": "student"},
            jwt_settings.secret_key.get_secret_value(),
            algorithm="HS256",
        )

        with pytest.raises(InvalidTokenError, match="no subject"):
            verifier.decode_token(token)

    def test_verify_token(
        self,
        verifier: JWTVerifier,
        make_token: Callable[..., str],
    ) -> None:
        """Test the boolean verification helper."""
        assert verifier.verify_token(make_token("student@school.edu")) is True
        assert verifier.verify_token("invalid") is False
        assert (
            verifier.verify_token(make_token("student@school.edu", expires_in=timedelta(seconds=-1)))
            is False
        )
