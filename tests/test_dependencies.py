"""
Tests for session authentication dependencies.
"""

from datetime import timedelta
from uuid import UUID, uuid4

import jwt
import pytest
from fastapi import HTTPException
from fastapi.security import HTTPAuthorizationCredentials

from creditledger.api.dependencies import (
    decode_session_token,
    get_current_user,
    get_payment_provider,
    ledger_http_error,
    require_admin,
)
from creditledger.config import settings
from creditledger.exceptions import AuthenticationError, CodeNotFoundError
from creditledger.models.domain import SessionUser
from creditledger.services.stripe_provider import StripeProvider
from tests.factories import make_session_token


def bearer(token: str) -> HTTPAuthorizationCredentials:
    return HTTPAuthorizationCredentials(scheme="Bearer", credentials=token)


class TestDecodeSessionToken:
    """Tests for decode_session_token."""

    def test_valid_token(self, user_id: UUID):
        user = decode_session_token(make_session_token(user_id, email="lea@example.com"))

        assert user == SessionUser(user_id=user_id, role="user", email="lea@example.com")

    def test_role_defaults_to_user(self, user_id: UUID):
        token = jwt.encode(
            {"sub": str(user_id)},
            settings.session_jwt_secret,
            algorithm=settings.session_jwt_algorithm,
        )
        assert decode_session_token(token).role == "user"

    def test_expired(self, user_id: UUID):
        token = make_session_token(user_id, expires_in=timedelta(seconds=-10))
        with pytest.raises(AuthenticationError):
            decode_session_token(token)

    def test_wrong_secret(self, user_id: UUID):
        token = make_session_token(user_id, secret="another-secret-entirely-32-chars-long")
        with pytest.raises(AuthenticationError):
            decode_session_token(token)

    def test_missing_subject(self):
        token = jwt.encode(
            {"role": "user"},
            settings.session_jwt_secret,
            algorithm=settings.session_jwt_algorithm,
        )
        with pytest.raises(AuthenticationError):
            decode_session_token(token)

    def test_subject_not_uuid(self):
        token = jwt.encode(
            {"sub": "lea"},
            settings.session_jwt_secret,
            algorithm=settings.session_jwt_algorithm,
        )
        with pytest.raises(AuthenticationError, match="not a user id"):
            decode_session_token(token)


class TestGetCurrentUser:
    """Tests for get_current_user."""

    async def test_missing_credentials(self):
        with pytest.raises(HTTPException) as exc_info:
            await get_current_user(None)

        assert exc_info.value.status_code == 401
        assert exc_info.value.detail["code"] == "UNAUTHENTICATED"

    async def test_invalid_token(self):
        with pytest.raises(HTTPException) as exc_info:
            await get_current_user(bearer("not-a-jwt"))

        assert exc_info.value.status_code == 401
        assert exc_info.value.headers == {"WWW-Authenticate": "Bearer"}

    async def test_valid_token(self, user_id: UUID):
        user = await get_current_user(bearer(make_session_token(user_id)))
        assert user.user_id == user_id


class TestRequireAdmin:
    """Tests for require_admin."""

    async def test_admin_passes(self):
        admin = SessionUser(user_id=uuid4(), role=settings.admin_role_name)
        assert await require_admin(admin) is admin

    async def test_user_forbidden(self):
        with pytest.raises(HTTPException) as exc_info:
            await require_admin(SessionUser(user_id=uuid4(), role="user"))

        assert exc_info.value.status_code == 403
        assert exc_info.value.detail["code"] == "UNAUTHORIZED"


class TestHelpers:
    """Tests for error mapping and provider wiring."""

    def test_ledger_http_error_body(self):
        error = ledger_http_error(404, CodeNotFoundError("NOPE"))

        assert error.status_code == 404
        assert error.detail == {"code": "CODE_NOT_FOUND", "message": "Promo code not found: NOPE"}

    def test_payment_provider_from_settings(self):
        provider = get_payment_provider()

        assert isinstance(provider, StripeProvider)
        assert provider.webhook_secret == settings.stripe_webhook_secret
