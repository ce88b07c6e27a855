"""Tests for the login, registration and sign-out routes.

Service functions are patched at the route modules; the confirmation mail
job is patched where the routes schedule it.
"""

import json
import uuid
from datetime import UTC, datetime
from unittest.mock import AsyncMock, patch

import pytest

from nrs_webapp.core.cookies import SESSION_COOKIE_NAME
from nrs_webapp.core.errors import (
    EmailOrUsernameAlreadyExistsError,
    InvalidCredentialsError,
)
from nrs_webapp.models.user import User
from tests.conftest import HTMX_HEADERS, session_cookie_header

_USER_ID = uuid.UUID("00000000-0000-0000-0000-0000000000e5")
_LOGIN_FORM = {"username": "alice", "password": "Abcd1234"}
_REGISTER_FORM = {
    "username": "alice",
    "email": "alice@example.com",
    "password": "Abcd1234",
}


def _user(*, verified: bool) -> User:
    return User(
        id=_USER_ID,
        username="alice",
        email="alice@example.com",
        password_hash="hash",
        email_verified_at=datetime.now(UTC) if verified else None,
    )


def _set_cookies(response) -> list[str]:
    return response.headers.get_list("set-cookie")


@pytest.fixture
def mock_send_confirm_mail():
    with patch(
        "nrs_webapp.api.auth.common.send_confirm_mail", new_callable=AsyncMock
    ) as mock:
        yield mock


# =============================================================================
# Login
# =============================================================================


class TestLoginPage:
    """GET /auth/login."""

    @pytest.mark.asyncio
    async def test_signed_out(self, client):
        response = await client.get("/auth/login")
        assert response.status_code == 200
        assert response.json() == {"data": {"page": "login", "providers": []}}

    @pytest.mark.asyncio
    async def test_signed_in_redirects_home(self, client, auth_context):
        response = await client.get(
            "/auth/login", headers=session_cookie_header(auth_context, _USER_ID)
        )
        assert response.status_code == 303
        assert response.headers["location"] == "/"

    @pytest.mark.asyncio
    async def test_expired_session_counts_as_signed_out(self, client, auth_context):
        response = await client.get(
            "/auth/login",
            headers=session_cookie_header(auth_context, _USER_ID, now=0.0),
        )
        assert response.status_code == 200

    @pytest.mark.asyncio
    async def test_tampered_session_counts_as_signed_out(self, client):
        response = await client.get(
            "/auth/login", headers={"Cookie": f"{SESSION_COOKIE_NAME}=forged"}
        )
        assert response.status_code == 200


class TestLoginSubmit:
    """POST /auth/login."""

    @pytest.mark.asyncio
    async def test_verified_user_gets_session(self, client, auth_context):
        with patch(
            "nrs_webapp.api.auth.login.authenticate",
            new_callable=AsyncMock,
            return_value=_user(verified=True),
        ) as mock_auth:
            response = await client.post("/auth/login", data=_LOGIN_FORM)

        assert response.status_code == 303
        assert response.headers["location"] == "/"
        (cookie,) = _set_cookies(response)
        assert cookie.startswith(f"{SESSION_COOKIE_NAME}=")
        assert mock_auth.await_args.kwargs == {"username": "alice", "password": "Abcd1234"}

        value = cookie.split(";", 1)[0].split("=", 1)[1]
        session = auth_context.cookies.signer.unsign(value, audience=SESSION_COOKIE_NAME)
        assert auth_context.session_codec.validate(session["session"]) == _USER_ID

    @pytest.mark.asyncio
    async def test_htmx_redirect(self, client):
        with patch(
            "nrs_webapp.api.auth.login.authenticate",
            new_callable=AsyncMock,
            return_value=_user(verified=True),
        ):
            response = await client.post(
                "/auth/login", data=_LOGIN_FORM, headers=HTMX_HEADERS
            )

        assert response.status_code == 204
        assert response.headers["HX-Redirect"] == "/"

    @pytest.mark.asyncio
    async def test_unverified_user_sent_to_confirmation(
        self, client, mock_send_confirm_mail
    ):
        with patch(
            "nrs_webapp.api.auth.login.authenticate",
            new_callable=AsyncMock,
            return_value=_user(verified=False),
        ):
            response = await client.post("/auth/login", data=_LOGIN_FORM)

        assert response.status_code == 303
        assert response.headers["location"] == "/auth/confirmmail?username=alice"
        assert _set_cookies(response) == []
        toast = json.loads(response.headers["HX-Trigger"])["showToast"]
        assert toast["level"] == "info"

        mock_send_confirm_mail.assert_awaited_once()
        args, kwargs = mock_send_confirm_mail.await_args
        assert args[2] == "alice"
        assert kwargs["request_ip"] == "127.0.0.1"

    @pytest.mark.asyncio
    async def test_repeated_unverified_login_sends_one_mail(
        self, client, mock_send_confirm_mail
    ):
        with patch(
            "nrs_webapp.api.auth.login.authenticate",
            new_callable=AsyncMock,
            return_value=_user(verified=False),
        ):
            first = await client.post("/auth/login", data=_LOGIN_FORM)
            second = await client.post("/auth/login", data=_LOGIN_FORM)

        assert first.status_code == second.status_code == 303
        mock_send_confirm_mail.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_bad_credentials(self, client):
        with patch(
            "nrs_webapp.api.auth.login.authenticate",
            new_callable=AsyncMock,
            side_effect=InvalidCredentialsError(),
        ):
            response = await client.post("/auth/login", data=_LOGIN_FORM)

        assert response.status_code == 401
        error = response.json()["error"]
        assert error["code"] == "INVALID_CREDENTIALS"
        assert error["request_id"] == response.headers["X-Request-ID"]

    @pytest.mark.asyncio
    async def test_missing_password(self, client):
        response = await client.post("/auth/login", data={"username": "alice"})
        assert response.status_code == 400
        assert response.json()["error"]["code"] == "VALIDATION_ERROR"


# =============================================================================
# Registration
# =============================================================================


class TestRegister:
    """GET/POST /auth/register."""

    @pytest.mark.asyncio
    async def test_page(self, client):
        response = await client.get("/auth/register")
        assert response.json() == {"data": {"page": "register", "providers": []}}

    @pytest.mark.asyncio
    async def test_creates_account_and_queues_mail(
        self, client, mock_db, mock_send_confirm_mail
    ):
        with patch(
            "nrs_webapp.api.auth.register.register_user",
            new_callable=AsyncMock,
            return_value=_user(verified=False),
        ) as mock_register:
            response = await client.post("/auth/register", data=_REGISTER_FORM)

        assert response.status_code == 303
        assert response.headers["location"] == "/auth/confirmmail?username=alice"
        assert mock_register.await_args.kwargs == _REGISTER_FORM
        mock_db.commit.assert_awaited()
        mock_send_confirm_mail.assert_awaited_once()

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "overrides",
        [
            {"username": "a"},
            {"username": "has space"},
            {"username": "x" * 21},
            {"email": "not-an-email"},
            {"email": f"{'a' * 95}@example.com"},
        ],
    )
    async def test_invalid_form(self, client, overrides):
        with patch(
            "nrs_webapp.api.auth.register.register_user", new_callable=AsyncMock
        ) as mock_register:
            response = await client.post(
                "/auth/register", data={**_REGISTER_FORM, **overrides}
            )

        assert response.status_code == 400
        assert response.json()["error"]["code"] == "VALIDATION_ERROR"
        mock_register.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_validation_errors_do_not_echo_password(self, client):
        response = await client.post(
            "/auth/register",
            data={**_REGISTER_FORM, "email": "bad", "password": "S3cretValue"},
        )
        assert "S3cretValue" not in response.text

    @pytest.mark.asyncio
    async def test_duplicate(self, client, mock_send_confirm_mail):
        with patch(
            "nrs_webapp.api.auth.register.register_user",
            new_callable=AsyncMock,
            side_effect=EmailOrUsernameAlreadyExistsError(),
        ):
            response = await client.post("/auth/register", data=_REGISTER_FORM)

        assert response.status_code == 409
        assert response.json()["error"]["code"] == "EMAIL_OR_USERNAME_EXISTS"
        mock_send_confirm_mail.assert_not_awaited()


# =============================================================================
# Sign-out
# =============================================================================


class TestLogoff:
    """POST /auth/logoff."""

    @pytest.mark.asyncio
    async def test_clears_session_cookie(self, client, auth_context):
        response = await client.post(
            "/auth/logoff",
            data={"logoff": "true"},
            headers=session_cookie_header(auth_context, _USER_ID),
        )

        assert response.status_code == 303
        assert response.headers["location"] == "/"
        (cookie,) = _set_cookies(response)
        assert cookie.startswith(f"{SESSION_COOKIE_NAME}=")
        assert "max-age=0" in cookie.lower()

    @pytest.mark.asyncio
    async def test_without_flag_keeps_cookie(self, client):
        response = await client.post("/auth/logoff", data={"logoff": "false"})
        assert response.status_code == 303
        assert _set_cookies(response) == []
