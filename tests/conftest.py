"""
tests/conftest.py -- Shared test fixtures for CloudPortal integration tests.

This module provides:
  - FakeDirectory:      records every lookup, returns a configurable profile
  - FakeProviderClient: stands in for the Authlib remote app (redirect + exchange)
  - _patch_lifespan():  wires fakes and a fresh store into app.state
  - portal:             Portal(client, provider, directory, store) with
                        follow_redirects=False so redirect locations are visible
  - login_as():         drive the real callback route to establish a session

The environment must be prepared before any app import: DEBUG so
get_settings() auto-generates SECRET_KEY, ALLOWED_HOSTS so TrustedHost
accepts the TestClient host, and a generous login rate limit so the
handshake tests never trip slowapi.
"""

from __future__ import annotations

import asyncio
import os
from collections.abc import Generator
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any, Optional

os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("ALLOWED_HOSTS", '["testserver", "localhost"]')
os.environ.setdefault("LOGIN_RATE_LIMIT", "1000/minute")

import pytest
from fastapi.responses import RedirectResponse
from fastapi.testclient import TestClient

from asgi import app
from auth.oauth import PROVIDER
from auth.resolver import IdentityResolver
from connections.store import DEFAULT_CONNECTIONS, ConnectionStore

# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------


class FakeDirectory:
    """Directory client double. Set .profile or .error to steer the next lookup."""

    def __init__(self) -> None:
        self.profile: Optional[dict[str, Any]] = {
            "id": "directory-own-id",
            "displayName": "Ada Lovelace",
            "mail": "ada@example.com",
        }
        self.error: Optional[Exception] = None
        self.calls: list[str] = []

    async def fetch_profile(self, access_token: str) -> Optional[dict[str, Any]]:
        self.calls.append(access_token)
        if self.error is not None:
            raise self.error
        return dict(self.profile) if self.profile is not None else None


class FakeProviderClient:
    """Authlib remote app double.

    authorize_redirect() records its arguments and stores a pending-state
    entry in the session the way Authlib does. authorize_access_token()
    returns .token or raises .exchange_error.
    """

    def __init__(self) -> None:
        self.token: dict[str, Any] = {}
        self.exchange_error: Optional[Exception] = None
        self.redirect_error: Optional[Exception] = None
        self.redirect_uri: Optional[str] = None
        self.redirect_kwargs: dict[str, Any] = {}
        self.exchange_kwargs: dict[str, Any] = {}

    async def authorize_redirect(self, request, redirect_uri: str, **kwargs):
        if self.redirect_error is not None:
            raise self.redirect_error
        self.redirect_uri = redirect_uri
        self.redirect_kwargs = kwargs
        request.session[f"_state_{PROVIDER}_{kwargs['state']}"] = {"data": {"nonce": "n-1"}}
        return RedirectResponse(
            f"https://login.example.test/authorize?state={kwargs['state']}",
            status_code=302,
        )

    async def authorize_access_token(self, request, **kwargs):
        self.exchange_kwargs = kwargs
        if self.exchange_error is not None:
            raise self.exchange_error
        return dict(self.token)


class FakeRegistry:
    """Stands in for authlib's OAuth registry. client=None means 'not configured'."""

    def __init__(self, client: Optional[FakeProviderClient]) -> None:
        self.client = client

    def create_client(self, name: str):
        return self.client if name == PROVIDER else None


@dataclass
class Portal:
    client: TestClient
    provider: FakeProviderClient
    registry: FakeRegistry
    directory: FakeDirectory
    store: ConnectionStore


# ---------------------------------------------------------------------------
# Lifespan patch
# ---------------------------------------------------------------------------


def _patch_lifespan(registry: FakeRegistry, directory: FakeDirectory, store: ConnectionStore):
    """Return an async context manager that replaces the real lifespan."""

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.connections = store
        app.state.oauth = registry
        app.state.directory = directory
        app.state.resolver = IdentityResolver(directory)
        yield

    return test_lifespan


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def portal() -> Generator[Portal, None, None]:
    """Yield a Portal around the real app with fake provider and directory.

    Function-scoped: every test starts with an empty cookie jar, a fresh
    seeded store, and zero recorded directory calls.
    """
    provider = FakeProviderClient()
    registry = FakeRegistry(provider)
    directory = FakeDirectory()
    store = ConnectionStore(DEFAULT_CONNECTIONS)

    app.router.lifespan_context = _patch_lifespan(registry, directory, store)

    with TestClient(app, follow_redirects=False, raise_server_exceptions=True) as client:
        yield Portal(client, provider, registry, directory, store)


def login_as(
    portal: Portal,
    oid: str = "abc-123",
    access_token: str = "tok-1",
    refresh_token: str = "ref-1",
    method: str = "GET",
):
    """Complete a handshake through the real callback route and return its response."""
    portal.provider.token = {
        "access_token": access_token,
        "refresh_token": refresh_token,
        "token_type": "Bearer",
        "userinfo": {"oid": oid, "sub": f"pairwise-{oid}"},
    }
    if method == "POST":
        return portal.client.post("/auth/openid/return", data={"code": "code-1", "state": "s-1"})
    return portal.client.get("/auth/openid/return", params={"code": "code-1", "state": "s-1"})


@pytest.fixture
def authed(portal: Portal) -> Portal:
    """A Portal whose client already holds an authenticated session."""
    resp = login_as(portal)
    assert resp.status_code == 302
    return portal


def run(coro):
    """Drive a coroutine from a synchronous test."""
    return asyncio.run(coro)
