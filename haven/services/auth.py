"""
Auth Service - email/password accounts, opaque sessions, password reset and
Google sign-in.

Sessions are random tokens stored in auth_sessions; revoking a session is a
row delete. One-time tokens (password reset, OAuth state) live in
verifications and are consumed on use.
"""

import secrets
from datetime import UTC, datetime, timedelta
from uuid import UUID

from argon2 import PasswordHasher
from argon2.exceptions import InvalidHashError, VerificationError
from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from haven.config import settings
from haven.db.models import AuthSession, OAuthAccount, User, Verification
from haven.exceptions import (
    AuthenticationError,
    EmailAlreadyRegisteredError,
    EmailDeliveryError,
    InvalidTokenError,
    UserBannedError,
)
from haven.models.api import UserRole
from haven.models.domain import IssuedSession, OAuthProfile
from haven.services.credits import is_banned
from haven.services.email import EmailSender
from haven.services.google_oauth import GoogleOAuthProvider

logger = get_logger(__name__)

_password_hasher = PasswordHasher()

PASSWORD_RESET_PREFIX = "password-reset:"
OAUTH_STATE_IDENTIFIER = "google-oauth-state"
OAUTH_STATE_TTL = timedelta(minutes=10)


class WeakPasswordError(ValueError):
    """Raised when a password is shorter than the configured minimum."""


def _utc_now() -> datetime:
    return datetime.now(UTC)


def hash_password(password: str) -> str:
    return _password_hasher.hash(password)


def verify_password(password_hash: str | None, password: str) -> bool:
    if not password_hash:
        return False
    try:
        return _password_hasher.verify(password_hash, password)
    except (VerificationError, InvalidHashError):
        return False


def check_password_strength(password: str) -> None:
    if len(password) < settings.password_min_length:
        raise WeakPasswordError(
            f"Password must be at least {settings.password_min_length} characters"
        )


def new_token() -> str:
    return secrets.token_urlsafe(32)


class AuthService:
    """Account and session management."""

    def __init__(
        self,
        session: AsyncSession,
        email_sender: EmailSender | None = None,
        oauth_provider: GoogleOAuthProvider | None = None,
    ) -> None:
        self.session = session
        self.email_sender = email_sender
        self.oauth_provider = oauth_provider

    # ------------------------------------------------------------------
    # Accounts
    # ------------------------------------------------------------------

    async def sign_up(self, name: str, email: str, password: str) -> User:
        """
        Register an email/password account. The very first account becomes admin.

        Raises:
            WeakPasswordError: Password below minimum length
            EmailAlreadyRegisteredError: Email already in use
        """
        check_password_strength(password)
        if await self._find_user_by_email(email) is not None:
            raise EmailAlreadyRegisteredError(email)

        user = await self._create_user(
            name=name, email=email, password_hash=hash_password(password)
        )
        logger.info("user_signed_up", user_id=str(user.id), role=user.role)
        return user

    async def sign_in(self, email: str, password: str) -> User:
        """
        Check credentials and record the login.

        Raises:
            AuthenticationError: Unknown email or wrong password
            UserBannedError: Account is banned
        """
        user = await self._find_user_by_email(email)
        if user is None or not verify_password(user.password_hash, password):
            logger.info("sign_in_failed", email_domain=email.rpartition("@")[2])
            raise AuthenticationError("Invalid email or password")

        now = _utc_now()
        if is_banned(user, now):
            raise UserBannedError(user.id, user.ban_reason, user.ban_expires)

        if _password_hasher.check_needs_rehash(user.password_hash or ""):
            user.password_hash = hash_password(password)
        user.last_login = now
        await self.session.flush()
        logger.info("user_signed_in", user_id=str(user.id))
        return user

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    async def issue_session(
        self, user: User, ip_address: str | None = None, user_agent: str | None = None
    ) -> IssuedSession:
        expires_at = _utc_now() + timedelta(days=settings.session_ttl_days)
        auth_session = AuthSession(
            user_id=user.id,
            token=new_token(),
            expires_at=expires_at,
            ip_address=ip_address,
            user_agent=user_agent[:500] if user_agent else None,
        )
        self.session.add(auth_session)
        await self.session.commit()
        return IssuedSession(user_id=user.id, token=auth_session.token, expires_at=expires_at)

    async def resolve_session(self, token: str) -> tuple[User, AuthSession]:
        """
        Look up the user behind a session token.

        Raises:
            AuthenticationError: Unknown or expired token
        """
        result = await self.session.execute(select(AuthSession).where(AuthSession.token == token))
        auth_session = result.scalar_one_or_none()
        if auth_session is None:
            raise AuthenticationError("Invalid session")
        if auth_session.expires_at <= _utc_now():
            await self.session.delete(auth_session)
            await self.session.commit()
            raise AuthenticationError("Session expired")
        return auth_session.user, auth_session

    async def revoke_session(self, token: str) -> None:
        await self.session.execute(delete(AuthSession).where(AuthSession.token == token))
        await self.session.commit()

    async def revoke_all_sessions(self, user_id: UUID) -> None:
        await self.session.execute(delete(AuthSession).where(AuthSession.user_id == user_id))

    # ------------------------------------------------------------------
    # Password reset
    # ------------------------------------------------------------------

    async def request_password_reset(self, email: str) -> None:
        """Store a reset token and email the link. Unknown emails are silently ignored."""
        user = await self._find_user_by_email(email)
        if user is None:
            logger.info("password_reset_unknown_email")
            return

        token = new_token()
        self.session.add(
            Verification(
                identifier=f"{PASSWORD_RESET_PREFIX}{user.id}",
                value=token,
                expires_at=_utc_now() + timedelta(minutes=settings.password_reset_ttl_minutes),
            )
        )
        await self.session.commit()
        logger.info("password_reset_requested", user_id=str(user.id))

        if self.email_sender is None:
            return
        reset_url = f"{settings.app_url.rstrip('/')}/reset-password?token={token}"
        try:
            await self.email_sender.send_password_reset(user.email, user.name, reset_url)
        except EmailDeliveryError as exc:
            logger.error("password_reset_email_failed", user_id=str(user.id), error=str(exc))

    async def reset_password(self, token: str, new_password: str) -> User:
        """
        Consume a reset token, set the new password and sign out everywhere.

        Raises:
            InvalidTokenError: Token unknown, expired or not a reset token
            WeakPasswordError: Password below minimum length
        """
        check_password_strength(new_password)
        verification = await self._consume_verification(token)
        if verification is None or not verification.identifier.startswith(PASSWORD_RESET_PREFIX):
            raise InvalidTokenError("password reset")

        user_id = UUID(verification.identifier.removeprefix(PASSWORD_RESET_PREFIX))
        user = await self.session.get(User, user_id)
        if user is None:
            raise InvalidTokenError("password reset")

        user.password_hash = hash_password(new_password)
        await self.revoke_all_sessions(user.id)
        await self.session.commit()
        logger.info("password_reset_completed", user_id=str(user.id))
        return user

    # ------------------------------------------------------------------
    # Google OAuth
    # ------------------------------------------------------------------

    async def start_google_login(self, redirect_uri: str) -> str:
        """Persist a state value and return the Google consent URL."""
        provider = self._require_oauth()
        state = new_token()
        self.session.add(
            Verification(
                identifier=OAUTH_STATE_IDENTIFIER,
                value=state,
                expires_at=_utc_now() + OAUTH_STATE_TTL,
            )
        )
        await self.session.commit()
        logger.info("oauth_flow_initiated", state=state[:8])
        return provider.get_authorization_url(state, redirect_uri)

    async def complete_google_login(self, code: str, state: str, redirect_uri: str) -> User:
        """
        Validate state, exchange the code and find or create the linked user.

        Raises:
            InvalidTokenError: Missing, expired or reused state
            AuthenticationError: Google rejected the code
            UserBannedError: Linked account is banned
        """
        provider = self._require_oauth()
        verification = await self._consume_verification(state)
        if verification is None or verification.identifier != OAUTH_STATE_IDENTIFIER:
            logger.warning("invalid_oauth_state", state=state[:8])
            raise InvalidTokenError("oauth state")
        await self.session.commit()

        token = await provider.exchange_code_for_token(code, redirect_uri)
        profile = await provider.get_user_info(token.access_token)
        user = await self._find_or_create_oauth_user(provider.PROVIDER, profile)

        now = _utc_now()
        if is_banned(user, now):
            await self.session.commit()
            raise UserBannedError(user.id, user.ban_reason, user.ban_expires)

        user.last_login = now
        await self.session.flush()
        logger.info("oauth_login_completed", user_id=str(user.id), provider=provider.PROVIDER)
        return user

    async def _find_or_create_oauth_user(self, provider: str, profile: OAuthProfile) -> User:
        result = await self.session.execute(
            select(OAuthAccount).where(
                OAuthAccount.provider == provider,
                OAuthAccount.provider_account_id == profile.provider_account_id,
            )
        )
        account = result.scalar_one_or_none()
        if account is not None:
            user = await self.session.get(User, account.user_id)
            if user is not None:
                return user

        user = await self._find_user_by_email(profile.email)
        if user is None:
            user = await self._create_user(
                name=profile.name or profile.email.split("@")[0],
                email=profile.email,
                password_hash=None,
                email_verified=profile.email_verified,
                image=profile.picture,
            )
            logger.info("user_created_from_oauth", user_id=str(user.id), provider=provider)
        elif profile.email_verified and not user.email_verified:
            user.email_verified = True

        if account is None:
            self.session.add(
                OAuthAccount(
                    user_id=user.id,
                    provider=provider,
                    provider_account_id=profile.provider_account_id,
                )
            )
            await self.session.flush()
            logger.info("oauth_account_linked", user_id=str(user.id), provider=provider)
        return user

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _create_user(
        self,
        name: str,
        email: str,
        password_hash: str | None,
        email_verified: bool = False,
        image: str | None = None,
    ) -> User:
        user_count = await self.session.scalar(select(func.count()).select_from(User))
        user = User(
            name=name,
            email=email.lower(),
            email_verified=email_verified,
            password_hash=password_hash,
            image=image,
            role=UserRole.ADMIN.value if not user_count else UserRole.USER.value,
            chat_credits=settings.free_trial_chat_credits,
            voice_credits=settings.free_trial_voice_credits,
            daily_voice_credits=settings.default_daily_voice_credits,
            monthly_voice_credits=settings.default_monthly_voice_credits,
        )
        self.session.add(user)
        await self.session.flush()
        return user

    async def _find_user_by_email(self, email: str) -> User | None:
        result = await self.session.execute(select(User).where(User.email == email.lower()))
        return result.scalar_one_or_none()

    async def _consume_verification(self, value: str) -> Verification | None:
        """Delete and return a live verification row; expired rows are deleted too."""
        result = await self.session.execute(
            select(Verification).where(Verification.value == value).with_for_update()
        )
        verification = result.scalar_one_or_none()
        if verification is None:
            return None
        await self.session.delete(verification)
        if verification.expires_at <= _utc_now():
            await self.session.commit()
            return None
        return verification

    def _require_oauth(self) -> GoogleOAuthProvider:
        if self.oauth_provider is None or not self.oauth_provider.configured:
            raise AuthenticationError("Google sign-in is not configured")
        return self.oauth_provider
