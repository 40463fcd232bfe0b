"""
Auth Routes - sign-up, sign-in, sessions, password reset and Google sign-in.

Session tokens are returned both as an httponly cookie and in the sign-in
response body, so browser and mobile clients can share the endpoints.
"""

from fastapi import APIRouter, Depends, HTTPException, Query, Request, Response, status
from fastapi.responses import RedirectResponse
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from haven.api.dependencies import (
    client_ip,
    get_current_user,
    get_oauth_provider,
    get_session_token,
)
from haven.config import settings
from haven.db.models import User
from haven.db.session import get_write_db
from haven.exceptions import (
    AuthenticationError,
    EmailAlreadyRegisteredError,
    InvalidTokenError,
    UserBannedError,
)
from haven.models.api import (
    ForgotPasswordRequest,
    ResetPasswordRequest,
    SessionResponse,
    SignInRequest,
    SignUpRequest,
    StatusMessageResponse,
    SubscriptionStatus,
    SubscriptionType,
    UserResponse,
    UserRole,
)
from haven.models.domain import IssuedSession
from haven.services.auth import AuthService, WeakPasswordError
from haven.services.email import EmailSender, get_email_sender
from haven.services.google_oauth import GoogleOAuthProvider

logger = get_logger(__name__)

router = APIRouter(prefix="/api/auth")


def user_to_response(user: User) -> UserResponse:
    return UserResponse(
        id=user.id,
        name=user.name,
        email=user.email,
        email_verified=user.email_verified,
        image=user.image,
        role=UserRole(user.role),
        subscription_type=SubscriptionType(user.subscription_type),
        subscription_status=SubscriptionStatus(user.subscription_status),
        created_at=user.created_at,
    )


def set_session_cookie(response: Response, issued: IssuedSession) -> None:
    response.set_cookie(
        key=settings.session_cookie_name,
        value=issued.token,
        max_age=settings.session_ttl_days * 86400,
        httponly=True,
        secure=settings.session_cookie_secure,
        samesite="lax",
        path="/",
    )


def _google_redirect_uri(request: Request) -> str:
    return settings.google_redirect_uri or str(request.url_for("google_callback"))


@router.post("/sign-up", response_model=SessionResponse, status_code=status.HTTP_201_CREATED)
async def sign_up(
    body: SignUpRequest,
    request: Request,
    response: Response,
    db: AsyncSession = Depends(get_write_db),
) -> SessionResponse:
    service = AuthService(db)
    try:
        user = await service.sign_up(body.name, body.email, body.password)
    except WeakPasswordError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(exc),
        ) from exc
    except EmailAlreadyRegisteredError as exc:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Email already registered",
        ) from exc

    issued = await service.issue_session(
        user, ip_address=client_ip(request), user_agent=request.headers.get("user-agent")
    )
    set_session_cookie(response, issued)
    return SessionResponse(
        user=user_to_response(user), expires_at=issued.expires_at, token=issued.token
    )


@router.post("/sign-in", response_model=SessionResponse)
async def sign_in(
    body: SignInRequest,
    request: Request,
    response: Response,
    db: AsyncSession = Depends(get_write_db),
) -> SessionResponse:
    service = AuthService(db)
    try:
        user = await service.sign_in(body.email, body.password)
    except AuthenticationError as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid email or password",
        ) from exc
    except UserBannedError as exc:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=f"Account banned: {exc.reason or 'no reason given'}",
        ) from exc

    issued = await service.issue_session(
        user, ip_address=client_ip(request), user_agent=request.headers.get("user-agent")
    )
    set_session_cookie(response, issued)
    return SessionResponse(
        user=user_to_response(user), expires_at=issued.expires_at, token=issued.token
    )


@router.post("/sign-out", response_model=StatusMessageResponse)
async def sign_out(
    response: Response,
    token: str | None = Depends(get_session_token),
    db: AsyncSession = Depends(get_write_db),
) -> StatusMessageResponse:
    if token:
        await AuthService(db).revoke_session(token)
    response.delete_cookie(settings.session_cookie_name, path="/")
    return StatusMessageResponse(message="Signed out")


@router.get("/session", response_model=SessionResponse)
async def get_session(
    request: Request,
    user: User = Depends(get_current_user),
) -> SessionResponse:
    return SessionResponse(
        user=user_to_response(user), expires_at=request.state.auth_session.expires_at
    )


@router.post("/forgot-password", response_model=StatusMessageResponse)
async def forgot_password(
    body: ForgotPasswordRequest,
    db: AsyncSession = Depends(get_write_db),
    email_sender: EmailSender = Depends(get_email_sender),
) -> StatusMessageResponse:
    """Always succeeds so the endpoint cannot be used to discover which emails have accounts."""
    await AuthService(db, email_sender=email_sender).request_password_reset(body.email)
    return StatusMessageResponse(
        message="If an account exists for that email, a reset link has been sent"
    )


@router.post("/reset-password", response_model=StatusMessageResponse)
async def reset_password(
    body: ResetPasswordRequest,
    db: AsyncSession = Depends(get_write_db),
) -> StatusMessageResponse:
    try:
        await AuthService(db).reset_password(body.token, body.new_password)
    except (InvalidTokenError, WeakPasswordError) as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(exc),
        ) from exc
    return StatusMessageResponse(message="Password updated. Please sign in again.")


@router.get("/google/login")
async def google_login(
    request: Request,
    db: AsyncSession = Depends(get_write_db),
    oauth_provider: GoogleOAuthProvider = Depends(get_oauth_provider),
) -> RedirectResponse:
    try:
        url = await AuthService(db, oauth_provider=oauth_provider).start_google_login(
            _google_redirect_uri(request)
        )
    except AuthenticationError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Google sign-in is not configured",
        ) from exc
    return RedirectResponse(url=url, status_code=status.HTTP_302_FOUND)


@router.get("/google/callback", name="google_callback")
async def google_callback(
    request: Request,
    code: str = Query(...),
    state: str = Query(...),
    db: AsyncSession = Depends(get_write_db),
    oauth_provider: GoogleOAuthProvider = Depends(get_oauth_provider),
) -> RedirectResponse:
    """Finish Google sign-in, set the session cookie and send the user to the app."""
    service = AuthService(db, oauth_provider=oauth_provider)
    try:
        user = await service.complete_google_login(code, state, _google_redirect_uri(request))
    except InvalidTokenError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid or expired OAuth state",
        ) from exc
    except AuthenticationError as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=str(exc),
        ) from exc
    except UserBannedError as exc:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=f"Account banned: {exc.reason or 'no reason given'}",
        ) from exc

    issued = await service.issue_session(
        user, ip_address=client_ip(request), user_agent=request.headers.get("user-agent")
    )
    response = RedirectResponse(url=settings.app_url, status_code=status.HTTP_302_FOUND)
    set_session_cookie(response, issued)
    logger.info("google_sign_in_redirect", user_id=str(user.id))
    return response
