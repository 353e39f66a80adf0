"""
tests/test_api_auth.py -- Integration tests for the sign-in API routes.

These tests exercise the full stack: FastAPI routing -> slowapi middleware ->
Authenticator -> UserStore -> exception handlers -> response envelope.

Coverage:
  - POST /signin: 200 with exactly {"api_token": ...}, token persisted
  - POST /signin: 401 bad_credentials for wrong password and unknown email alike
  - POST /signin: 429 locked_out with Retry-After after 3 attempts / 40s
  - POST /signin: 503 when the store is down, 422 on a malformed body
  - GET /me and DELETE /signout with bearer tokens; revoked tokens stop working
  - Per-IP slowapi guard: actually applied to /signin, 429 when exceeded,
    503 when its counter storage fails
  - Middleware order: TrustedHost -> CORS -> SlowAPI inside the request log

Fixtures used (from conftest.py):
  - api_client: (client, store, authenticator) with user@mail.com / secret123
    seeded and a limiter of 3 attempts per 40 seconds.
"""

from __future__ import annotations

from unittest.mock import MagicMock

from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from limits.errors import StorageError
from slowapi.middleware import SlowAPIMiddleware
from starlette.middleware.base import BaseHTTPMiddleware

from api.limiter import limiter
from api.main import app
from auth.errors import Unavailable
from auth.limiter import storage_options
from auth.tokens import ApiTokenGenerator

SIGNIN = "/api/v1/auth/signin"
SIGNOUT = "/api/v1/auth/signout"
ME = "/api/v1/auth/me"


def _signin(client, **overrides):
    body = {"email": "user@mail.com", "password": "secret123"}
    body.update(overrides)
    return client.post(SIGNIN, json=body)


def _bearer(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}


class TestSignIn:
    def test_guest_can_sign_in_with_email_and_password(self, api_client) -> None:
        client, store, _auth = api_client
        resp = _signin(client)

        assert resp.status_code == 200
        token = resp.json()["api_token"]
        assert token
        assert store.get_by_email("user@mail.com").api_token == token
        assert resp.headers["Cache-Control"] == "no-store"

    def test_response_is_exactly_the_token(self, api_client) -> None:
        client, _store, auth = api_client
        generator = MagicMock(spec=ApiTokenGenerator)
        generator.generate.return_value = "secret-api-token"
        auth.generator = generator

        resp = _signin(client)

        assert resp.json() == {"api_token": "secret-api-token"}

    def test_wrong_password_returns_401(self, api_client) -> None:
        client, store, _auth = api_client
        resp = _signin(client, password="wrong")

        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "bad_credentials"
        assert store.get_by_email("user@mail.com").api_token is None

    def test_unknown_email_is_indistinguishable_from_wrong_password(self, api_client) -> None:
        client, _store, _auth = api_client
        wrong_password = _signin(client, password="wrong")
        unknown_email = _signin(client, email="nobody@mail.com")

        assert unknown_email.status_code == wrong_password.status_code == 401
        assert unknown_email.json() == wrong_password.json()

    def test_lockout_after_three_attempts(self, api_client) -> None:
        client, _store, _auth = api_client
        for _ in range(3):
            assert _signin(client, password="wrong").status_code == 401

        resp = _signin(client)  # correct password, still locked out

        assert resp.status_code == 429
        assert resp.json()["error"]["code"] == "locked_out"
        assert 1 <= int(resp.headers["Retry-After"]) <= 40

    def test_lockout_ignores_email_case(self, api_client) -> None:
        client, _store, _auth = api_client
        _signin(client, email="User@Mail.com", password="wrong")
        _signin(client, email="USER@MAIL.COM", password="wrong")
        _signin(client, email="user@mail.com", password="wrong")

        assert _signin(client).status_code == 429

    def test_store_outage_returns_503(self, api_client) -> None:
        client, store, _auth = api_client
        store.get_by_email = MagicMock(side_effect=Unavailable())

        resp = _signin(client)

        assert resp.status_code == 503
        assert resp.json()["error"]["code"] == "unavailable"
        assert "Retry-After" in resp.headers

    def test_missing_password_is_a_validation_error(self, api_client) -> None:
        client, _store, _auth = api_client
        resp = client.post(SIGNIN, json={"email": "user@mail.com"})

        assert resp.status_code == 422
        assert resp.json()["error"]["code"] == "validation_error"


class TestBearerRoutes:
    def test_me_with_token(self, api_client) -> None:
        client, _store, _auth = api_client
        token = _signin(client).json()["api_token"]

        resp = client.get(ME, headers=_bearer(token))

        assert resp.status_code == 200
        data = resp.json()
        assert data["email"] == "user@mail.com"
        assert data["last_login"]

    def test_me_without_token(self, api_client) -> None:
        client, _store, _auth = api_client
        resp = client.get(ME)

        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "unauthorized"
        assert resp.headers["WWW-Authenticate"] == "Bearer"

    def test_me_with_unknown_token(self, api_client) -> None:
        client, _store, _auth = api_client
        assert client.get(ME, headers=_bearer("not-a-real-token")).status_code == 401

    def test_signout_revokes_token(self, api_client) -> None:
        client, store, _auth = api_client
        token = _signin(client).json()["api_token"]

        resp = client.delete(SIGNOUT, headers=_bearer(token))

        assert resp.status_code == 204
        assert resp.content == b""
        assert store.get_by_email("user@mail.com").api_token is None
        assert client.get(ME, headers=_bearer(token)).status_code == 401

    def test_signout_requires_token(self, api_client) -> None:
        client, _store, _auth = api_client
        assert client.delete(SIGNOUT).status_code == 401

    def test_new_sign_in_invalidates_previous_token(self, api_client) -> None:
        client, _store, _auth = api_client
        first = _signin(client).json()["api_token"]
        second = _signin(client).json()["api_token"]

        assert first != second
        assert client.get(ME, headers=_bearer(first)).status_code == 401
        assert client.get(ME, headers=_bearer(second)).status_code == 200


class TestPerIpGuard:
    """The slowapi per-IP limit on POST /signin runs, and fails closed."""

    def test_signin_is_checked_by_ip_limiter(self, api_client, monkeypatch) -> None:
        client, _store, _auth = api_client
        strategy = MagicMock(wraps=limiter._limiter)
        monkeypatch.setattr(limiter, "_limiter", strategy)

        assert _signin(client).status_code == 200
        strategy.hit.assert_called_once()

    def test_ip_limit_exceeded_returns_429_before_credentials(self, api_client, monkeypatch) -> None:
        client, store, _auth = api_client
        strategy = MagicMock()
        strategy.hit.return_value = False
        monkeypatch.setattr(limiter, "_limiter", strategy)

        resp = _signin(client)

        assert resp.status_code == 429
        assert resp.json()["error"]["code"] == "rate_limited"
        assert store.get_by_email("user@mail.com").api_token is None

    def test_ip_limiter_storage_failure_returns_503(self, api_client, monkeypatch) -> None:
        client, store, _auth = api_client
        strategy = MagicMock()
        strategy.hit.side_effect = StorageError(ConnectionError("connection refused"))
        monkeypatch.setattr(limiter, "_limiter", strategy)

        resp = _signin(client)

        assert resp.status_code == 503
        assert resp.json()["error"]["code"] == "unavailable"
        assert resp.headers["Retry-After"] == "5"
        assert store.get_by_email("user@mail.com").api_token is None

    def test_ip_limiter_storage_has_bounded_redis_timeouts(self) -> None:
        options = storage_options("redis://localhost:6379", 1.5)
        assert options["socket_timeout"] == 1.5
        assert options["socket_connect_timeout"] == 1.5
        assert options["wrap_exceptions"] is True
        assert limiter._storage_options["wrap_exceptions"] is True


class TestMiddlewareOrder:
    def test_trusted_host_wraps_cors_wraps_slowapi(self) -> None:
        """user_middleware is listed outermost first."""
        classes = [m.cls for m in app.user_middleware]
        assert classes == [BaseHTTPMiddleware, TrustedHostMiddleware, CORSMiddleware, SlowAPIMiddleware]
