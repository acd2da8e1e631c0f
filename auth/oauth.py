"""
auth/oauth.py -- Authlib OpenID Connect provider configuration and verify step.

Reads configuration from core.config.get_settings() at module load. The
provider is registered only when client id, client secret and the identity
metadata URL are all configured; otherwise login is disabled and /login
falls back to the failure redirect.

Authlib owns the protocol: discovery, the authorization redirect, the state
and nonce round trip through the session, the code exchange, and id_token
signature validation. This module adds what is application-specific:

  make_state()       -- opaque state value sent with the authorization request.
  claims_options()   -- issuer pinning for id_token validation.
  verify_assertion() -- subject check + directory resolution after the
                        exchange; the success/failure branch of the callback.

Security notes:
  [H1] The subject id is read from the validated id_token claims (Authlib
       puts them in token["userinfo"] after signature and nonce checks), never
       from the directory response.

  OAuth state parameter (CSRF protection) is handled by Authlib via Starlette
  SessionMiddleware. The pending state lives in the session between the
  authorization redirect and the callback.

Layer rule: no imports from api/, web/, or connections/. Import from core/
is allowed -- core/ is the kernel layer.
"""

from __future__ import annotations

import logging
import secrets
from collections.abc import Mapping
from typing import Any

import httpx
from authlib.integrations.starlette_client import OAuth, OAuthError
from authlib.jose.errors import JoseError

from auth.errors import NoAssertion
from auth.models import SessionRecord, UserProfile
from auth.resolver import IdentityResolver
from core.config import Settings, get_settings

logger = logging.getLogger("cloudportal.auth.oauth")

PROVIDER = "azuread"

# Everything Authlib can raise for a failed redirect or code exchange:
# protocol errors (state mismatch, provider error response), id_token
# validation errors, and transport errors reaching the provider.
PROVIDER_ERRORS = (OAuthError, JoseError, httpx.HTTPError)

# ---------------------------------------------------------------------------
# Authlib OAuth registry
# ---------------------------------------------------------------------------

oauth = OAuth()

_cfg = get_settings()

if _cfg.oidc_enabled:
    oauth.register(
        name=PROVIDER,
        client_id=_cfg.oidc_client_id,
        client_secret=_cfg.oidc_client_secret,
        server_metadata_url=_cfg.oidc_identity_metadata,
        api_base_url=_cfg.directory_api_url,
        client_kwargs={"scope": _cfg.oidc_scope},
    )
    logger.info("OIDC provider registered (%s)", _cfg.oidc_identity_metadata)
else:
    logger.warning("OIDC provider not configured -- login is disabled")


# ---------------------------------------------------------------------------
# Authorization request helpers
# ---------------------------------------------------------------------------


def make_state(custom_state: str = "") -> str:
    """Return a fresh state value, with the configured custom state appended.

    The random part is what defeats CSRF; the custom part only tags the
    request for the application's own bookkeeping.
    """
    nonce = secrets.token_urlsafe(24)
    return f"{nonce}.{custom_state}" if custom_state else nonce


def authorize_params(settings: Settings) -> dict[str, str]:
    """Extra query parameters for the authorization request."""
    params = {"state": make_state(settings.oidc_custom_state)}
    if settings.oidc_response_mode:
        params["response_mode"] = settings.oidc_response_mode
    return params


def claims_options(settings: Settings) -> dict | None:
    """id_token claim rules passed to Authlib's token validation."""
    if not settings.oidc_validate_issuer:
        return None
    return {"iss": {"essential": True, "values": [settings.oidc_issuer]}}


# ---------------------------------------------------------------------------
# Verify step [H1]
# ---------------------------------------------------------------------------


async def verify_assertion(
    token: Mapping[str, Any],
    resolver: IdentityResolver,
    subject_claim: str = "oid",
) -> UserProfile:
    """Build the application user from an exchanged provider token.

    Args:
        token:         The token dict returned by authorize_access_token().
        resolver:      Identity resolver backed by the directory client.
        subject_claim: Claim carrying the stable subject id.

    Raises:
        NoAssertion: the validated claims carry no subject id.
        NoProfile:   the directory could not materialize a profile.
    """
    claims = token.get("userinfo") or {}
    subject_id = claims.get(subject_claim)
    if not subject_id:
        raise NoAssertion(f"no {subject_claim!r} claim in id_token")

    record = SessionRecord(
        subject_id=str(subject_id),
        access_token=token.get("access_token") or "",
        refresh_token=token.get("refresh_token") or "",
    )
    return await resolver.resolve(record)
