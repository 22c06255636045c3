"""
FastAPI Dependencies - Session authentication and error mapping.

NO DICTIONARIES - All dependencies return typed objects.

Session tokens are HS256 JWTs issued by the marketplace auth layer:
sub = user UUID, role = marketplace role, email optional.
"""

from uuid import UUID

import jwt
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from structlog import get_logger

from creditledger.config import settings
from creditledger.exceptions import AuthenticationError, AuthorizationError, LedgerError
from creditledger.models.api import ErrorDetail
from creditledger.models.domain import SessionUser
from creditledger.services.stripe_provider import StripeProvider

logger = get_logger(__name__)

# Bearer token scheme for session JWT auth
bearer_scheme = HTTPBearer(auto_error=False)


def ledger_http_error(status_code: int, exc: LedgerError) -> HTTPException:
    """HTTPException carrying the stable {code, message} error body."""
    return HTTPException(
        status_code=status_code,
        detail=ErrorDetail(code=exc.code, message=str(exc)).model_dump(),
    )


def decode_session_token(token: str) -> SessionUser:
    """
    Verify a session JWT and extract the user.

    Raises:
        AuthenticationError: Bad signature, expired, or malformed claims
    """
    try:
        claims = jwt.decode(
            token,
            settings.session_jwt_secret,
            algorithms=[settings.session_jwt_algorithm],
            options={"require": ["sub"]},
        )
    except jwt.PyJWTError as exc:
        raise AuthenticationError(f"invalid session token: {exc}") from exc

    try:
        user_id = UUID(str(claims["sub"]))
    except ValueError as exc:
        raise AuthenticationError("session subject is not a user id") from exc

    email = claims.get("email")
    return SessionUser(
        user_id=user_id,
        role=str(claims.get("role", "user")),
        email=str(email) if email else None,
    )


async def get_current_user(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
) -> SessionUser:
    """
    Authenticate the caller from the Authorization: Bearer header.

    Raises:
        HTTPException(401): Missing or invalid session token
    """
    if credentials is None:
        logger.warning("session_auth_no_token")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=ErrorDetail(
                code=AuthenticationError.code, message="Not authenticated"
            ).model_dump(),
            headers={"WWW-Authenticate": "Bearer"},
        )

    try:
        return decode_session_token(credentials.credentials)
    except AuthenticationError as exc:
        logger.warning("session_auth_invalid_token", error=exc.message)
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=ErrorDetail(code=exc.code, message="Invalid or expired token").model_dump(),
            headers={"WWW-Authenticate": "Bearer"},
        ) from exc


async def require_admin(user: SessionUser = Depends(get_current_user)) -> SessionUser:
    """
    Require the admin role.

    Raises:
        HTTPException(403): Authenticated user is not an admin
    """
    if user.role != settings.admin_role_name:
        logger.warning("admin_auth_insufficient_role", user_id=str(user.user_id), role=user.role)
        raise ledger_http_error(
            status.HTTP_403_FORBIDDEN, AuthorizationError(settings.admin_role_name)
        )
    return user


def get_payment_provider() -> StripeProvider:
    """Stripe provider from settings."""
    return StripeProvider(
        api_key=settings.stripe_api_key,
        webhook_secret=settings.stripe_webhook_secret,
    )
