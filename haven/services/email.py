"""
Email delivery through the Resend HTTP API.

Without RESEND_API_KEY the message is logged and dropped, which keeps local
development working.
"""

import httpx
from structlog import get_logger

from haven.config import settings
from haven.exceptions import EmailDeliveryError

logger = get_logger(__name__)

PASSWORD_RESET_SUBJECT = "Reset your Haven password"

PASSWORD_RESET_HTML = """<p>Hi {name},</p>
<p>We received a request to reset your Haven password. This link expires in {minutes} minutes.</p>
<p><a href="{url}">Reset password</a></p>
<p>If you didn't ask for this, you can ignore this email.</p>"""


class EmailSender:
    """Send transactional email via Resend."""

    API_URL = "https://api.resend.com/emails"

    def __init__(
        self,
        api_key: str,
        sender: str,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self.api_key = api_key
        self.sender = sender
        self._http_client = http_client

    @property
    def http_client(self) -> httpx.AsyncClient:
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=10.0)
        return self._http_client

    async def send(self, to: str, subject: str, html: str) -> str | None:
        """
        Send one email. Returns the Resend message id, or None when disabled.

        Raises:
            EmailDeliveryError: If Resend rejects the request or is unreachable
        """
        if not self.api_key:
            logger.warning("email_not_sent_no_api_key", to=to, subject=subject)
            return None

        try:
            response = await self.http_client.post(
                self.API_URL,
                headers={"Authorization": f"Bearer {self.api_key}"},
                json={"from": self.sender, "to": [to], "subject": subject, "html": html},
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            logger.error(
                "email_send_failed", status=e.response.status_code, text=e.response.text
            )
            raise EmailDeliveryError(f"Resend returned {e.response.status_code}") from e
        except httpx.HTTPError as e:
            logger.error("email_send_error", error=str(e))
            raise EmailDeliveryError("Could not reach Resend") from e

        message_id = response.json().get("id")
        logger.info("email_sent", to=to, subject=subject, message_id=message_id)
        return message_id

    async def send_password_reset(self, to: str, name: str, reset_url: str) -> str | None:
        html = PASSWORD_RESET_HTML.format(
            name=name, url=reset_url, minutes=settings.password_reset_ttl_minutes
        )
        return await self.send(to, PASSWORD_RESET_SUBJECT, html)

    async def close(self) -> None:
        if self._http_client:
            await self._http_client.aclose()


_email_sender: EmailSender | None = None


def get_email_sender() -> EmailSender:
    """FastAPI dependency returning the process-wide email sender."""
    global _email_sender
    if _email_sender is None:
        _email_sender = EmailSender(api_key=settings.resend_api_key, sender=settings.email_from)
    return _email_sender
