"""
web/routes.py -- Browser routes: the OIDC handshake and the HTML pages.

The handshake is a small state machine carried by the session cookie:

  Anonymous --/login--> PendingProvider --(provider)--> PendingReturn
  PendingReturn --/auth/openid/return--> Authenticated | Failed
  Authenticated --/logout--> Anonymous

PendingReturn is Authlib's state/nonce entry in the session. Authenticated
is a serialized SessionRecord under session["user"]. Failed is never stored:
the browser is sent home with no session user.

None of the handshake routes raise for an authentication failure. A
disabled provider, a protocol error, a missing subject claim or a directory
failure all end in a redirect to the configured failure target.

Routes:
  GET       /                    -- home page, identity optional
  GET       /account             -- account page (page gate)
  GET       /login               -- start the handshake
  GET, POST /auth/openid/return  -- complete the handshake (query or form_post)
  GET       /logout              -- destroy the session, leave via provider logout
"""

import logging
from pathlib import Path

from fastapi import APIRouter, Request
from fastapi.responses import HTMLResponse, RedirectResponse
from fastapi.templating import Jinja2Templates

from api.limiter import limiter
from auth.dependencies import current_user, require_page_user
from auth.errors import AuthError
from auth.oauth import PROVIDER, PROVIDER_ERRORS, authorize_params, claims_options, verify_assertion
from auth.session import SESSION_USER_KEY, serialize
from core.config import get_settings

logger = logging.getLogger("cloudportal.web")

_settings = get_settings()

templates = Jinja2Templates(directory=str(Path(__file__).parent / "templates"))
# layout.html calls current_user(request) to render the sign-in state, so
# page handlers don't each pass the user into the template context.
templates.env.globals["current_user"] = current_user
router = APIRouter()


def _redirect(url: str) -> RedirectResponse:
    resp = RedirectResponse(url, status_code=302)
    resp.headers["Cache-Control"] = "no-store"
    return resp


# ---------------------------------------------------------------------------
# Pages
# ---------------------------------------------------------------------------


@router.get("/", response_class=HTMLResponse)
def index(request: Request) -> HTMLResponse:
    return templates.TemplateResponse(request, "index.html", {"user": current_user(request)})


@router.get("/account", response_class=HTMLResponse)
def account(request: Request) -> HTMLResponse:
    """Identity-bound page. Anonymous visitors are sent to /login."""
    if redirect := require_page_user(request):
        return redirect
    return templates.TemplateResponse(request, "account.html", {"user": current_user(request)})


# ---------------------------------------------------------------------------
# Handshake
# ---------------------------------------------------------------------------


@router.get("/login")
@limiter.limit(_settings.login_rate_limit)
async def login(request: Request) -> RedirectResponse:
    """Redirect the browser to the provider's authorization endpoint.

    Authlib builds the URL, stores the state and nonce in the session and
    returns the redirect. The state value is ours (see make_state()).
    """
    settings = get_settings()
    client = request.app.state.oauth.create_client(PROVIDER)
    if client is None:
        logger.warning("Login attempted but no OIDC provider is configured")
        return _redirect(settings.failure_redirect)

    redirect_uri = settings.oidc_redirect_url or str(request.url_for("oidc_return"))
    try:
        return await client.authorize_redirect(request, redirect_uri, **authorize_params(settings))
    except PROVIDER_ERRORS:
        logger.exception("Could not start the OIDC handshake")
        return _redirect(settings.failure_redirect)


@router.api_route("/auth/openid/return", methods=["GET", "POST"], name="oidc_return")
@limiter.limit(_settings.login_rate_limit)
async def oidc_return(request: Request) -> RedirectResponse:
    """Complete the handshake and establish the session.

    Both methods land here: the provider posts the authorization response
    as a form body in form_post mode and uses the query string otherwise.
    Authlib reads whichever the method implies.

    Flow:
      1. Exchange the code (Authlib checks state, validates the id_token).
      2. verify_assertion(): subject claim present, directory profile found.
      3. Serialize the profile into the session, redirect home.
    Any failure in 1 or 2 redirects home with no session user.
    """
    settings = get_settings()
    failure = settings.failure_redirect
    client = request.app.state.oauth.create_client(PROVIDER)
    if client is None:
        logger.warning("OIDC callback received but no provider is configured")
        return _redirect(failure)

    # Step 1: code exchange
    try:
        token = await client.authorize_access_token(request, claims_options=claims_options(settings))
    except PROVIDER_ERRORS as e:
        logger.warning("OIDC code exchange failed: %s", e)
        request.session.pop(SESSION_USER_KEY, None)
        return _redirect(failure)

    # Step 2: subject check + directory resolution
    try:
        profile = await verify_assertion(token, request.app.state.resolver, settings.oidc_subject_claim)
    except AuthError as e:
        logger.warning("OIDC login rejected (%s): %s", type(e).__name__, e)
        request.session.pop(SESSION_USER_KEY, None)
        return _redirect(failure)

    # Step 3: establish the session
    request.session[SESSION_USER_KEY] = serialize(profile)
    request.state.user = profile
    logger.info("Login completed for subject %s", profile.subject_id)
    return _redirect("/")


@router.get("/logout")
def logout(request: Request) -> RedirectResponse:
    """Destroy the local session and hand off to the provider's logout.

    Clearing the whole session (not just the user key) makes
    SessionMiddleware expire the cookie. The provider redirect ends the
    provider's own session too; the local one alone would let the next
    /login complete silently.
    """
    subject = getattr(current_user(request), "subject_id", None)
    request.session.clear()
    request.state.user = None
    if subject:
        logger.info("Logout for subject %s", subject)
    return _redirect(get_settings().logout_url)
