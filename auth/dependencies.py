"""
auth/dependencies.py -- Identity loading and the access gate.

load_identity() runs once per request (from the identity middleware in
api/main.py, inside SessionMiddleware). It decodes the session record,
resolves it through the directory, and attaches the outcome to
request.state.user. A record that no longer resolves is removed from the
session: the user is logged out, not shown an error.

The gate never resolves anything itself. Both variants share one predicate,
is_authenticated(), and differ only in how they reject:

  require_page_user() -- browser pages: returns a redirect to /login.
  require_api_user()  -- API routes: raises Unauthenticated (HTTP 401),
                         never redirects.

Layer rule: no imports from web/ or connections/.
  auth/dependencies.py may import from fastapi (for Request/RedirectResponse)
  because this module is part of the FastAPI dependency injection system.
"""

from __future__ import annotations

import logging
from typing import Optional

from fastapi import Request
from fastapi.responses import RedirectResponse

from auth.errors import NoProfile, Unauthenticated
from auth.models import UserProfile
from auth.session import SESSION_USER_KEY, deserialize

logger = logging.getLogger("cloudportal.auth")

LOGIN_PATH = "/login"


async def load_identity(request: Request) -> Optional[UserProfile]:
    """Resolve the session record into request.state.user.

    Returns the profile, or None when the request is anonymous. Never raises
    for authentication failures.
    """
    request.state.user = None
    stored = request.session.get(SESSION_USER_KEY)
    if stored is None:
        return None

    resolver = request.app.state.resolver
    try:
        profile = await deserialize(stored, resolver)
    except NoProfile as exc:
        logger.info("Session identity dropped: %s", exc)
        request.session.pop(SESSION_USER_KEY, None)
        return None

    request.state.user = profile
    return profile


def current_user(request: Request) -> Optional[UserProfile]:
    """Return the identity attached to this request, or None."""
    return getattr(request.state, "user", None)


def is_authenticated(request: Request) -> bool:
    """True when a materialized, non-empty identity is attached to the request."""
    user = current_user(request)
    return isinstance(user, UserProfile) and bool(user.subject_id)


def require_page_user(request: Request) -> Optional[RedirectResponse]:
    """Gate for browser pages.

    Returns a RedirectResponse to /login if not authenticated, None if OK.
    Call at the top of protected route handlers:
        if redirect := require_page_user(request):
            return redirect
    """
    if is_authenticated(request):
        return None
    return RedirectResponse(LOGIN_PATH, status_code=302)


def require_api_user(request: Request) -> UserProfile:
    """Gate for API routes. Raises Unauthenticated if the request is not authenticated.

    api/main.py renders Unauthenticated as HTTP 401 with the error envelope,
    so no downstream handler runs and no redirect is ever issued.

    Use as a FastAPI dependency:
        router = APIRouter(dependencies=[Depends(require_api_user)])
    """
    if not is_authenticated(request):
        raise Unauthenticated("Authentication required.")
    return current_user(request)
