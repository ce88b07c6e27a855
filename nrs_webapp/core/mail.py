"""Outgoing email.

ResendMailer posts to the Resend HTTP API. Without an API key the service
falls back to LogMailer, which only logs that a message would have been
sent (development and tests).

The two account emails (address confirmation and password reset) are
composed here so the link format lives in one place.
"""

import html
import logging
from abc import ABC, abstractmethod
from collections import deque
from dataclasses import dataclass
from urllib.parse import quote, urlencode

import httpx

from nrs_webapp.core.config import Settings
from nrs_webapp.core.logging import mask_email

logger = logging.getLogger(__name__)

_RESEND_API_URL = "https://api.resend.com/emails"
_RESEND_TIMEOUT = 10.0

# LogMailer keeps only the most recent messages
OUTBOX_SIZE = 20

CONFIRM_MAIL_SUBJECT = "nrs-webapp - Please verify your email address"
PASSWORD_RESET_SUBJECT = "nrs-webapp - Password Reset Request"


class MailDeliveryError(Exception):
    """The mail backend refused or failed to accept a message."""


@dataclass(frozen=True)
class MailMessage:
    to: str
    subject: str
    html_body: str


class Mailer(ABC):
    """Sends one HTML email."""

    def __init__(self, sender: str) -> None:
        self.sender = sender

    @abstractmethod
    async def send(self, to: str, from_: str, subject: str, html_body: str) -> None:
        """Deliver a message.

        Raises:
            MailDeliveryError: If the backend rejects the message.
        """

    async def send_message(self, message: MailMessage) -> None:
        await self.send(message.to, self.sender, message.subject, message.html_body)


class ResendMailer(Mailer):
    """Mailer backed by the Resend API.

    Args:
        api_key: Resend API key.
        sender: From address.
        http_client: Shared HTTP client.
    """

    def __init__(self, api_key: str, sender: str, http_client: httpx.AsyncClient) -> None:
        super().__init__(sender)
        self._api_key = api_key
        self._http_client = http_client

    async def send(self, to: str, from_: str, subject: str, html_body: str) -> None:
        try:
            resp = await self._http_client.post(
                _RESEND_API_URL,
                headers={"Authorization": f"Bearer {self._api_key}"},
                json={
                    "from": from_,
                    "to": [to],
                    "subject": subject,
                    "html": html_body,
                },
                timeout=_RESEND_TIMEOUT,
            )
            resp.raise_for_status()
        except httpx.HTTPError as exc:
            raise MailDeliveryError(f"Resend rejected message: {type(exc).__name__}") from exc


class LogMailer(Mailer):
    """Mailer that logs instead of sending.

    The last ``OUTBOX_SIZE`` messages stay in ``outbox`` for tests and local
    development. Production refuses to start without a Resend key, so this
    mailer never holds live links there.
    """

    def __init__(self, sender: str) -> None:
        super().__init__(sender)
        self.outbox: deque[MailMessage] = deque(maxlen=OUTBOX_SIZE)

    async def send(self, to: str, from_: str, subject: str, html_body: str) -> None:
        self.outbox.append(MailMessage(to=to, subject=subject, html_body=html_body))
        logger.info(
            "Email not sent (no mail backend configured)",
            extra={"to": mask_email(to), "subject": subject},
        )


def build_mailer(settings: Settings, http_client: httpx.AsyncClient) -> Mailer:
    api_key = settings.resend_api_key.get_secret_value()
    if api_key:
        return ResendMailer(api_key, settings.email_account_support, http_client)
    return LogMailer(settings.email_account_support)


# =============================================================================
# Account emails
# =============================================================================


def _link(base_url: str, path: str, token: str) -> str:
    query = urlencode({"token": token}, quote_via=quote)
    return f"{base_url.rstrip('/')}{path}?{query}"


def confirm_mail_message(*, to: str, username: str, base_url: str, token: str) -> MailMessage:
    """Compose the address confirmation email.

    Args:
        to: Recipient address.
        username: Account name shown in the greeting.
        base_url: Public base URL of the service.
        token: Plaintext one-time token.
    """
    url = html.escape(_link(base_url, "/auth/confirmmail/confirm", token))
    body = (
        f"<p>Hi {html.escape(username)},</p>"
        "<p>Please confirm your email address for nrs-webapp by opening this link:</p>"
        f'<p><a href="{url}">{url}</a></p>'
        "<p>If you did not create an account, you can ignore this email.</p>"
    )
    return MailMessage(to=to, subject=CONFIRM_MAIL_SUBJECT, html_body=body)


def password_reset_message(*, to: str, username: str, base_url: str, token: str) -> MailMessage:
    """Compose the password reset email."""
    url = html.escape(_link(base_url, "/auth/forgotpass/reset", token))
    body = (
        f"<p>Hi {html.escape(username)},</p>"
        "<p>Someone asked to reset the password of your nrs-webapp account. "
        "Open this link to choose a new one:</p>"
        f'<p><a href="{url}">{url}</a></p>'
        "<p>If you did not request this, you can ignore this email. "
        "Your password stays unchanged.</p>"
    )
    return MailMessage(to=to, subject=PASSWORD_RESET_SUBJECT, html_body=body)
