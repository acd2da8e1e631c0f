"""
auth/directory.py -- Directory profile lookup with the user's bearer token.

Calls the directory API (Microsoft Graph /me by default) through the Authlib
remote app registered in auth/oauth.py. The remote app carries api_base_url,
so the call is a relative GET authenticated with the user's access token --
the same way the provider's userinfo-style endpoints are reached elsewhere.

fetch_profile() never raises for transport, HTTP, or payload problems; it
returns None and the resolver turns that into NoProfile. The timeout bounds
the only suspension point of the authentication path.

Layer rule: no imports from api/, web/, or connections/.
"""

from __future__ import annotations

import logging
from typing import Any

import httpx
from authlib.integrations.starlette_client import OAuthError

logger = logging.getLogger("cloudportal.auth.directory")


class DirectoryClient:
    """Fetch the signed-in user's directory profile.

    Args:
        client:       Authlib remote app (oauth.create_client(...)), or None
                      when no provider is configured -- every lookup then
                      returns None.
        profile_path: Path relative to the remote app's api_base_url.
        timeout:      Seconds before a lookup is abandoned.
    """

    def __init__(self, client: Any, profile_path: str = "me", timeout: float = 10.0) -> None:
        self._client = client
        self._profile_path = profile_path
        self._timeout = timeout

    async def fetch_profile(self, access_token: str) -> dict[str, Any] | None:
        if not access_token:
            return None
        if self._client is None:
            logger.warning("Directory lookup skipped: no OIDC provider configured")
            return None

        token = {"access_token": access_token, "token_type": "Bearer"}
        try:
            resp = await self._client.get(self._profile_path, token=token, timeout=self._timeout)
            resp.raise_for_status()
            profile = resp.json()
        except httpx.HTTPStatusError as e:
            logger.warning("Directory lookup rejected: HTTP %d", e.response.status_code)
            return None
        except (httpx.HTTPError, OAuthError) as e:
            logger.warning("Directory lookup failed: %s", e)
            return None
        except ValueError:
            logger.warning("Directory lookup returned a non-JSON body")
            return None

        if not isinstance(profile, dict) or not profile:
            return None
        return profile
