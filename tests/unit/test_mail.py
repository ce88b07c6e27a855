"""Tests for the mailers and the account email templates."""

import json
from urllib.parse import parse_qs, urlparse

import httpx
import pytest

from nrs_webapp.core.config import Settings
from nrs_webapp.core.mail import (
    CONFIRM_MAIL_SUBJECT,
    OUTBOX_SIZE,
    PASSWORD_RESET_SUBJECT,
    LogMailer,
    MailDeliveryError,
    MailMessage,
    ResendMailer,
    build_mailer,
    confirm_mail_message,
    password_reset_message,
)


def _href(html_body: str) -> str:
    start = html_body.index('href="') + len('href="')
    return html_body[start : html_body.index('"', start)].replace("&amp;", "&")


class TestResendMailer:
    """Tests for ResendMailer."""

    @pytest.mark.asyncio
    async def test_posts_message(self):
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"id": "msg_1"})

        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        mailer = ResendMailer("re_key", "accounts@nrs.dev", client)
        await mailer.send_message(MailMessage("alice@example.com", "Hi", "<p>x</p>"))

        (request,) = seen
        assert str(request.url) == "https://api.resend.com/emails"
        assert request.headers["Authorization"] == "Bearer re_key"
        assert json.loads(request.content) == {
            "from": "accounts@nrs.dev",
            "to": ["alice@example.com"],
            "subject": "Hi",
            "html": "<p>x</p>",
        }

    @pytest.mark.asyncio
    async def test_rejection_raises_delivery_error(self):
        client = httpx.AsyncClient(
            transport=httpx.MockTransport(lambda request: httpx.Response(422))
        )
        mailer = ResendMailer("re_key", "accounts@nrs.dev", client)
        with pytest.raises(MailDeliveryError):
            await mailer.send("alice@example.com", "accounts@nrs.dev", "Hi", "<p>x</p>")


class TestLogMailer:
    """Tests for LogMailer."""

    @pytest.mark.asyncio
    async def test_keeps_outbox(self):
        mailer = LogMailer("accounts@nrs.dev")
        message = MailMessage("alice@example.com", "Subject", "<p>body</p>")
        await mailer.send_message(message)
        assert list(mailer.outbox) == [message]

    @pytest.mark.asyncio
    async def test_outbox_keeps_only_recent_messages(self):
        mailer = LogMailer("accounts@nrs.dev")
        for i in range(OUTBOX_SIZE + 5):
            await mailer.send(f"user{i}@example.com", "accounts@nrs.dev", "Hi", "<p>x</p>")

        assert len(mailer.outbox) == OUTBOX_SIZE
        assert mailer.outbox[0].to == "user5@example.com"
        assert mailer.outbox[-1].to == f"user{OUTBOX_SIZE + 4}@example.com"


class TestBuildMailer:
    """Tests for build_mailer()."""

    def test_api_key_selects_resend(self):
        mailer = build_mailer(Settings(resend_api_key="re_key"), httpx.AsyncClient())
        assert isinstance(mailer, ResendMailer)

    def test_no_api_key_selects_log_mailer(self):
        settings = Settings(resend_api_key="", email_account_support="a@nrs.dev")
        mailer = build_mailer(settings, httpx.AsyncClient())
        assert isinstance(mailer, LogMailer)
        assert mailer.sender == "a@nrs.dev"


class TestAccountEmails:
    """Tests for the confirmation and reset templates."""

    def test_confirm_mail_link(self):
        message = confirm_mail_message(
            to="alice@example.com",
            username="alice",
            base_url="https://nrs.test/",
            token="abc-_123",
        )
        link = urlparse(_href(message.html_body))
        assert message.subject == CONFIRM_MAIL_SUBJECT
        assert message.to == "alice@example.com"
        assert f"{link.scheme}://{link.netloc}{link.path}" == (
            "https://nrs.test/auth/confirmmail/confirm"
        )
        assert parse_qs(link.query) == {"token": ["abc-_123"]}

    def test_password_reset_link(self):
        message = password_reset_message(
            to="alice@example.com",
            username="alice",
            base_url="https://nrs.test",
            token="tok",
        )
        assert message.subject == PASSWORD_RESET_SUBJECT
        assert _href(message.html_body) == "https://nrs.test/auth/forgotpass/reset?token=tok"

    def test_username_is_escaped(self):
        message = confirm_mail_message(
            to="x@example.com",
            username="<script>",
            base_url="https://nrs.test",
            token="tok",
        )
        assert "<script>" not in message.html_body
        assert "&lt;script&gt;" in message.html_body
