"""
Google OAuth provider for user sign-in.

Authorization-code flow: build the consent URL, exchange the code, then read
the OpenID userinfo endpoint.
"""

from urllib.parse import urlencode

import httpx
from structlog import get_logger

from haven.exceptions import AuthenticationError
from haven.models.domain import OAuthProfile, OAuthToken

logger = get_logger(__name__)


class GoogleOAuthProvider:
    """Google OAuth provider implementation."""

    PROVIDER = "google"
    AUTH_URL = "https://accounts.google.com/o/oauth2/v2/auth"
    TOKEN_URL = "https://oauth2.googleapis.com/token"
    USERINFO_URL = "https://openidconnect.googleapis.com/v1/userinfo"

    def __init__(
        self,
        client_id: str,
        client_secret: str,
        http_client: httpx.AsyncClient | None = None,
    ):
        self.client_id = client_id
        self.client_secret = client_secret
        self._http_client = http_client

    @property
    def configured(self) -> bool:
        return bool(self.client_id and self.client_secret)

    @property
    def http_client(self) -> httpx.AsyncClient:
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=10.0)
        return self._http_client

    def get_authorization_url(self, state: str, redirect_uri: str) -> str:
        params = {
            "client_id": self.client_id,
            "redirect_uri": redirect_uri,
            "response_type": "code",
            "scope": "openid email profile",
            "state": state,
            "prompt": "select_account",
        }
        return f"{self.AUTH_URL}?{urlencode(params)}"

    async def exchange_code_for_token(self, code: str, redirect_uri: str) -> OAuthToken:
        """Exchange authorization code for access token."""
        data = {
            "code": code,
            "client_id": self.client_id,
            "client_secret": self.client_secret,
            "redirect_uri": redirect_uri,
            "grant_type": "authorization_code",
        }

        try:
            response = await self.http_client.post(self.TOKEN_URL, data=data)
            response.raise_for_status()
            token_data = response.json()
        except httpx.HTTPStatusError as e:
            logger.error(
                "token_exchange_failed", status=e.response.status_code, text=e.response.text
            )
            raise AuthenticationError(
                f"Failed to exchange code: {e.response.status_code}"
            ) from e
        except httpx.HTTPError as e:
            logger.error("token_exchange_error", error=str(e))
            raise AuthenticationError("Failed to exchange authorization code") from e

        access_token = token_data.get("access_token")
        if not access_token:
            raise AuthenticationError("Token response missing access_token")
        return OAuthToken(
            access_token=access_token,
            token_type=token_data.get("token_type", "Bearer"),
            expires_in=token_data.get("expires_in"),
        )

    async def get_user_info(self, access_token: str) -> OAuthProfile:
        """Get user information from Google."""
        try:
            response = await self.http_client.get(
                self.USERINFO_URL, headers={"Authorization": f"Bearer {access_token}"}
            )
            response.raise_for_status()
            user_data = response.json()
        except httpx.HTTPStatusError as e:
            logger.error(
                "user_info_fetch_failed", status=e.response.status_code, text=e.response.text
            )
            raise AuthenticationError(
                f"Failed to get user info: {e.response.status_code}"
            ) from e
        except httpx.HTTPError as e:
            logger.error("user_info_error", error=str(e))
            raise AuthenticationError("Failed to get user information") from e

        try:
            return OAuthProfile(
                provider_account_id=str(user_data["sub"]),
                email=str(user_data.get("email", "")).lower(),
                name=user_data.get("name"),
                picture=user_data.get("picture"),
                email_verified=bool(user_data.get("email_verified", False)),
            )
        except (KeyError, ValueError) as e:
            logger.warning("user_info_invalid", error=str(e))
            raise AuthenticationError("Google account has no usable identity") from e

    async def close(self) -> None:
        if self._http_client:
            await self._http_client.aclose()
