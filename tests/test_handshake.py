"""
tests/test_handshake.py -- Integration tests for the OIDC handshake routes.

These tests drive /login, /auth/openid/return and /logout through the real
ASGI stack (SessionMiddleware, identity middleware, rate limiter) with the
provider and directory replaced by fakes. The portal client does not follow
redirects, so every Location header is asserted directly.

Coverage:
  - /login delegates to the provider with our state and response mode
  - /login never errors: unconfigured provider and provider failures go home
  - callback via GET and via POST (form_post) establishes the session
  - the session cookie holds exactly the three persisted fields
  - missing subject claim, directory failure, exchange failure: home, no session
  - /logout destroys the cookie and redirects to the provider logout URL
  - session cookie SameSite lets the pending state survive the callback
"""

from __future__ import annotations

import base64
import json

import pytest
from authlib.integrations.starlette_client import OAuthError
from conftest import Portal, login_as
from fastapi import FastAPI, Request
from fastapi.testclient import TestClient
from itsdangerous import TimestampSigner
from starlette.middleware.sessions import SessionMiddleware

from core.config import Settings, get_settings


def _session_payload(portal: Portal) -> dict:
    """Decode the signed session cookie the way SessionMiddleware does."""
    settings = get_settings()
    raw = portal.client.cookies.get(settings.session_cookie)
    assert raw, "no session cookie was set"
    signer = TimestampSigner(str(settings.secret_key))
    data = signer.unsign(raw.encode("utf-8"), max_age=settings.session_max_age)
    return json.loads(base64.b64decode(data))


class TestLogin:
    def test_redirects_to_provider(self, portal: Portal) -> None:
        resp = portal.client.get("/login")
        assert resp.status_code == 302
        assert resp.headers["location"].startswith("https://login.example.test/authorize")

    def test_passes_state_and_response_mode(self, portal: Portal) -> None:
        portal.client.get("/login")
        kwargs = portal.provider.redirect_kwargs
        assert kwargs["state"]
        assert kwargs["response_mode"] == get_settings().oidc_response_mode

    def test_redirect_uri_points_at_callback(self, portal: Portal) -> None:
        portal.client.get("/login")
        assert portal.provider.redirect_uri.endswith("/auth/openid/return")

    def test_each_login_uses_a_fresh_state(self, portal: Portal) -> None:
        portal.client.get("/login")
        first = portal.provider.redirect_kwargs["state"]
        portal.client.get("/login")
        assert portal.provider.redirect_kwargs["state"] != first

    def test_unconfigured_provider_goes_home(self, portal: Portal) -> None:
        portal.registry.client = None
        resp = portal.client.get("/login")
        assert resp.status_code == 302
        assert resp.headers["location"] == "/"

    def test_provider_failure_goes_home(self, portal: Portal) -> None:
        portal.provider.redirect_error = OAuthError(error="discovery_failed")
        resp = portal.client.get("/login")
        assert resp.status_code == 302
        assert resp.headers["location"] == "/"


class TestCallback:
    @pytest.mark.parametrize("method", ["GET", "POST"])
    def test_establishes_session(self, portal: Portal, method: str) -> None:
        resp = login_as(portal, method=method)
        assert resp.status_code == 302
        assert resp.headers["location"] == "/"
        assert portal.client.get("/account").status_code == 200

    def test_ada_scenario(self, portal: Portal) -> None:
        """Subject abc-123 + token tok-1 + directory {name: Ada} survives a full cycle."""
        portal.directory.profile = {"name": "Ada"}
        login_as(portal, oid="abc-123", access_token="tok-1")

        payload = _session_payload(portal)
        assert payload["user"] == {"oid": "abc-123", "access_token": "tok-1", "refresh_token": "ref-1"}

        page = portal.client.get("/account")
        assert page.status_code == 200
        assert "abc-123" in page.text
        assert "Ada" in page.text
        # One lookup during the handshake, one when the cookie was rehydrated.
        assert portal.directory.calls == ["tok-1", "tok-1"]

        assert _session_payload(portal)["user"] == payload["user"]

    def test_cookie_has_no_directory_fields(self, portal: Portal) -> None:
        login_as(portal)
        record = _session_payload(portal)["user"]
        assert set(record) == {"oid", "access_token", "refresh_token"}
        assert "ada@example.com" not in json.dumps(record)

    def test_subject_is_the_oid_claim_not_sub(self, portal: Portal) -> None:
        login_as(portal, oid="abc-123")
        assert _session_payload(portal)["user"]["oid"] == "abc-123"

    def test_missing_subject_goes_home_without_session(self, portal: Portal) -> None:
        portal.provider.token = {"access_token": "tok-1", "userinfo": {"sub": "only-sub"}}
        resp = portal.client.get("/auth/openid/return", params={"code": "c", "state": "s"})
        assert resp.status_code == 302
        assert resp.headers["location"] == "/"
        assert portal.directory.calls == []
        assert portal.client.get("/account").headers["location"] == "/login"

    def test_directory_failure_goes_home_without_session(self, portal: Portal) -> None:
        portal.directory.profile = None
        resp = login_as(portal)
        assert resp.status_code == 302
        assert resp.headers["location"] == "/"
        assert portal.client.get("/account").headers["location"] == "/login"

    def test_directory_exception_is_not_a_server_error(self, portal: Portal) -> None:
        portal.directory.error = RuntimeError("graph is down")
        resp = login_as(portal)
        assert resp.status_code == 302
        assert resp.headers["location"] == "/"

    def test_exchange_failure_goes_home(self, portal: Portal) -> None:
        portal.provider.exchange_error = OAuthError(error="mismatching_state")
        resp = portal.client.get("/auth/openid/return", params={"code": "c", "state": "forged"})
        assert resp.status_code == 302
        assert resp.headers["location"] == "/"
        assert portal.directory.calls == []

    def test_failed_callback_drops_previous_identity(self, authed: Portal) -> None:
        authed.provider.exchange_error = OAuthError(error="access_denied")
        authed.client.get("/auth/openid/return", params={"error": "access_denied"})
        assert authed.client.get("/account").headers["location"] == "/login"

    def test_replayed_callback_last_writer_wins(self, portal: Portal) -> None:
        login_as(portal, oid="first", access_token="tok-a")
        login_as(portal, oid="second", access_token="tok-b")
        assert _session_payload(portal)["user"]["oid"] == "second"


class TestLogout:
    def test_redirects_to_provider_logout(self, authed: Portal) -> None:
        resp = authed.client.get("/logout")
        assert resp.status_code == 302
        assert resp.headers["location"] == get_settings().logout_url

    def test_expires_the_session_cookie(self, authed: Portal) -> None:
        resp = authed.client.get("/logout")
        cookie_name = get_settings().session_cookie
        set_cookies = resp.headers.get_list("set-cookie")
        assert any(h.startswith(f"{cookie_name}=") and "1970" in h for h in set_cookies), set_cookies

    def test_logout_then_account_redirects_to_login(self, authed: Portal) -> None:
        authed.client.get("/logout")
        calls_before = list(authed.directory.calls)
        resp = authed.client.get("/account")
        assert resp.status_code == 302
        assert resp.headers["location"] == "/login"
        assert authed.directory.calls == calls_before

    def test_anonymous_logout_still_redirects(self, portal: Portal) -> None:
        resp = portal.client.get("/logout")
        assert resp.status_code == 302
        assert resp.headers["location"] == get_settings().logout_url


class TestSessionCookie:
    """The pending state must come back on the callback for the configured response mode."""

    def test_login_cookie_matches_response_mode(self, portal: Portal) -> None:
        settings = get_settings()
        resp = portal.client.get("/login")
        assert portal.provider.redirect_kwargs["response_mode"] == settings.oidc_response_mode
        header = next(
            h for h in resp.headers.get_list("set-cookie") if h.startswith(f"{settings.session_cookie}=")
        )
        assert "httponly" in header.lower()
        assert f"samesite={settings.session_same_site}" in header.lower()

    def test_default_query_mode_uses_lax_cookie(self, portal: Portal) -> None:
        resp = portal.client.get("/login")
        assert "samesite=lax" in resp.headers["set-cookie"].lower()

    def test_form_post_cookie_is_samesite_none_and_secure(self) -> None:
        settings = Settings(secret_key="s" * 32, oidc_response_mode="form_post", secure_cookies=True)
        app = FastAPI()

        @app.get("/start")
        def start(request: Request) -> dict:
            request.session["_state_pending"] = {"data": {}}
            return {}

        app.add_middleware(
            SessionMiddleware,
            secret_key=settings.secret_key,
            same_site=settings.session_same_site,
            https_only=settings.secure_cookies,
        )
        header = TestClient(app).get("/start").headers["set-cookie"].lower()
        assert "samesite=none" in header
        assert "secure" in header
