"""
FastAPI Dependencies - Authentication, authorization and shared clients.

NO DICTIONARIES - All dependencies return typed objects.
"""

import secrets
from datetime import UTC, datetime

from fastapi import Depends, Header, HTTPException, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from haven.config import settings
from haven.db.models import User
from haven.db.session import get_write_db
from haven.exceptions import AuthenticationError
from haven.models.api import InsufficientCreditsResponse, UserRole
from haven.services.auth import AuthService
from haven.services.credits import is_banned
from haven.services.google_oauth import GoogleOAuthProvider
from haven.services.payment_provider import PaymentProvider
from haven.services.stripe_provider import StripeProvider

logger = get_logger(__name__)


def get_session_token(
    request: Request,
    authorization: str | None = Header(None),
) -> str | None:
    """Session token from the Authorization header, falling back to the cookie."""
    if authorization and authorization.startswith("Bearer "):
        token = authorization.removeprefix("Bearer ").strip()
        if token:
            return token
    return request.cookies.get(settings.session_cookie_name)


async def get_current_user(
    request: Request,
    token: str | None = Depends(get_session_token),
    db: AsyncSession = Depends(get_write_db),
) -> User:
    """
    Get current authenticated user.

    Raises:
        HTTPException(401): If no session or the session is invalid/expired
        HTTPException(403): If the user is banned
    """
    if not token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )

    try:
        user, auth_session = await AuthService(db).resolve_session(token)
    except AuthenticationError as exc:
        logger.info("session_rejected", reason=str(exc))
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=str(exc),
            headers={"WWW-Authenticate": "Bearer"},
        ) from exc

    if is_banned(user, datetime.now(UTC)):
        logger.warning("banned_user_request", user_id=str(user.id))
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=f"Account banned: {user.ban_reason or 'no reason given'}",
        )

    request.state.auth_session = auth_session
    return user


async def require_admin(user: User = Depends(get_current_user)) -> User:
    """
    Require the admin role.

    Raises:
        HTTPException(403): If user is not an admin
    """
    if user.role != UserRole.ADMIN.value:
        logger.warning("admin_auth_insufficient_role", user_id=str(user.id), role=user.role)
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin role required",
        )
    return user


async def require_cron_secret(authorization: str | None = Header(None)) -> None:
    """
    Validate `Authorization: Bearer <CRON_SECRET>` for scheduler calls.

    Raises:
        HTTPException(503): If no cron secret is configured
        HTTPException(401): If the secret is missing or wrong
    """
    if not settings.cron_secret:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Cron endpoints are not configured",
        )
    presented = (authorization or "").removeprefix("Bearer ").strip()
    if not secrets.compare_digest(presented.encode(), settings.cron_secret.encode()):
        logger.warning("cron_auth_failed")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unauthorized",
        )


_payment_provider: StripeProvider | None = None


def get_payment_provider() -> PaymentProvider:
    """
    Process-wide Stripe provider.

    Raises:
        HTTPException(503): If Stripe is not configured
    """
    global _payment_provider
    if not settings.stripe_api_key:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Payment provider not configured",
        )
    if _payment_provider is None:
        _payment_provider = StripeProvider(
            api_key=settings.stripe_api_key,
            webhook_secret=settings.stripe_webhook_secret,
        )
    return _payment_provider


_oauth_provider: GoogleOAuthProvider | None = None


def get_oauth_provider() -> GoogleOAuthProvider:
    global _oauth_provider
    if _oauth_provider is None:
        _oauth_provider = GoogleOAuthProvider(
            client_id=settings.google_client_id,
            client_secret=settings.google_client_secret,
        )
    return _oauth_provider


def client_ip(request: Request) -> str | None:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else None


def insufficient_credits_response(error: str, credits_needed: int | None = None) -> JSONResponse:
    """402 body the clients use to open the upgrade flow."""
    body = InsufficientCreditsResponse(error=error, credits_needed=credits_needed)
    return JSONResponse(
        status_code=status.HTTP_402_PAYMENT_REQUIRED,
        content=body.model_dump(),
    )
