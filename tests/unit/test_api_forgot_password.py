"""Tests for the password reset routes."""

from unittest.mock import AsyncMock, patch

import pytest

from nrs_webapp.core.errors import InvalidOrExpiredTokenError, ValidationError
from nrs_webapp.core.one_time_token import OneTimeToken
from tests.conftest import HTMX_HEADERS


@pytest.fixture
def mock_send_reset():
    with patch(
        "nrs_webapp.api.auth.forgot_password.send_password_reset",
        new_callable=AsyncMock,
    ) as mock:
        yield mock


class TestForgotPassword:
    """GET/POST /auth/forgotpass."""

    @pytest.mark.asyncio
    async def test_page(self, client):
        response = await client.get("/auth/forgotpass")
        assert response.json() == {"data": {"page": "forgot_password", "providers": []}}

    @pytest.mark.asyncio
    async def test_always_shows_sent_page(self, client, mock_send_reset):
        response = await client.post(
            "/auth/forgotpass", data={"email": "alice@example.com"}
        )

        assert response.status_code == 200
        assert response.json() == {"data": {"page": "forgot_password_sent"}}
        mock_send_reset.assert_awaited_once()
        args, kwargs = mock_send_reset.await_args
        assert args[2] == "alice@example.com"
        assert kwargs["request_ip"] == "127.0.0.1"

    @pytest.mark.asyncio
    async def test_limited_per_email(self, client, mock_send_reset):
        statuses = []
        for _ in range(6):
            response = await client.post(
                "/auth/forgotpass", data={"email": "alice@example.com"}
            )
            statuses.append(response.status_code)

        assert statuses == [200] * 5 + [429]
        assert mock_send_reset.await_count == 5

    @pytest.mark.asyncio
    async def test_invalid_email(self, client, mock_send_reset):
        response = await client.post("/auth/forgotpass", data={"email": "nope"})
        assert response.status_code == 400
        mock_send_reset.assert_not_awaited()


class TestResetPasswordPage:
    """GET /auth/forgotpass/reset."""

    @pytest.mark.asyncio
    async def test_valid_token_format(self, client):
        token = str(OneTimeToken.generate())
        response = await client.get("/auth/forgotpass/reset", params={"token": token})
        assert response.json() == {"data": {"page": "reset_password", "token": token}}

    @pytest.mark.asyncio
    async def test_mangled_token(self, client):
        response = await client.get(
            "/auth/forgotpass/reset", params={"token": "mangled"}
        )
        assert response.status_code == 400
        assert response.json()["error"]["code"] == "INVALID_TOKEN_FORMAT"


class TestResetPasswordSubmit:
    """POST /auth/forgotpass/reset."""

    @pytest.mark.asyncio
    async def test_success_redirects_to_login(self, client):
        with patch(
            "nrs_webapp.api.auth.forgot_password.reset_password",
            new_callable=AsyncMock,
        ) as mock_reset:
            response = await client.post(
                "/auth/forgotpass/reset",
                data={"token": "tok", "password": "Newpass9A"},
                headers=HTMX_HEADERS,
            )

        assert response.status_code == 204
        assert response.headers["HX-Redirect"] == "/auth/login"
        assert mock_reset.await_args.args[2:] == ("tok", "Newpass9A")

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        ("error", "code"),
        [
            (InvalidOrExpiredTokenError(), "INVALID_OR_EXPIRED_TOKEN"),
            (ValidationError("Password must contain at least one digit"), "VALIDATION_ERROR"),
        ],
    )
    async def test_failure(self, client, error, code):
        with patch(
            "nrs_webapp.api.auth.forgot_password.reset_password",
            new_callable=AsyncMock,
            side_effect=error,
        ):
            response = await client.post(
                "/auth/forgotpass/reset",
                data={"token": "tok", "password": "Newpassword"},
            )

        assert response.status_code == 400
        assert response.json()["error"]["code"] == code
