"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads for CloudPortal happen here. No module should
call os.getenv() or os.environ.get() directly -- import get_settings() instead.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call.

  BaseSettings (pydantic-settings): Reads values from environment variables
      and an optional .env file automatically. Field names map to env var names
      (e.g. secret_key -> SECRET_KEY, oidc_client_id -> OIDC_CLIENT_ID).

  @model_validator(mode="after"): Cross-field validation once every field is
      resolved. Enforces the SECRET_KEY policy and the redirect-URL / issuer
      rules of the OIDC client configuration.

Security notes:
  [M6] SECRET_KEY shorter than 32 chars is rejected outright. The session
       cookie carries bearer tokens and is signed with this key.

  [M7] In production mode (DEBUG not set or false), a missing SECRET_KEY is a
       hard startup failure.

  [S1] The session cookie lifetime defaults to 8 hours. The cookie holds an
       access token; a year-long cookie outlives every token it could carry.

Layer rule: core/ is the kernel. This module may not import from api/, web/,
auth/, or connections/.
"""

import logging
import secrets
from functools import lru_cache

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("cloudportal.config")


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file.

    All fields have defaults so Settings() can be instantiated in test
    environments without a real .env file. An OIDC provider is only registered
    when client id, client secret and identity metadata URL are all set.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ------------------------------------------------------------------
    # Core
    # ------------------------------------------------------------------

    debug: bool = False
    # Empty string is the sentinel for "not configured". The model_validator
    # below either generates a dev key or raises, so callers never see "".
    secret_key: str = ""
    log_level: str = "INFO"

    # ------------------------------------------------------------------
    # HTTP
    # ------------------------------------------------------------------

    host: str = "127.0.0.1"
    port: int = 3000
    allowed_hosts: list[str] = ["localhost", "127.0.0.1", "*.localhost"]
    cors_origins: list[str] = ["http://localhost", "http://localhost:3000", "http://127.0.0.1"]

    # ------------------------------------------------------------------
    # Session cookie [S1]
    # ------------------------------------------------------------------

    secure_cookies: bool = False
    session_cookie: str = "cloudportal_session"
    session_max_age: int = 8 * 60 * 60

    # ------------------------------------------------------------------
    # OpenID Connect provider (empty client id means login is disabled)
    # ------------------------------------------------------------------

    oidc_identity_metadata: str = (
        "https://login.microsoftonline.com/common/v2.0/.well-known/openid-configuration"
    )
    oidc_client_id: str = ""
    oidc_client_secret: str = ""
    # Empty means "derive from the incoming request" via url_for().
    oidc_redirect_url: str = ""
    oidc_allow_http_redirect: bool = False
    oidc_scope: str = "openid profile offline_access User.Read"
    # "query" or "form_post". form_post arrives as a cross-site POST, which
    # only carries a SameSite=None cookie, so it requires SECURE_COOKIES.
    oidc_response_mode: str = "query"
    oidc_validate_issuer: bool = False
    oidc_issuer: str = ""
    # Claim holding the stable subject id. Azure AD uses "oid"; "sub" is
    # pairwise per application there.
    oidc_subject_claim: str = "oid"
    oidc_custom_state: str = ""

    # ------------------------------------------------------------------
    # Directory (profile) API
    # ------------------------------------------------------------------

    directory_api_url: str = "https://graph.microsoft.com/v1.0/"
    directory_profile_path: str = "me"
    directory_timeout: float = 10.0

    # ------------------------------------------------------------------
    # Redirect targets
    # ------------------------------------------------------------------

    logout_url: str = (
        "https://login.microsoftonline.com/common/oauth2/v2.0/logout"
        "?post_logout_redirect_uri=http://localhost:3000/"
    )
    failure_redirect: str = "/"

    # ------------------------------------------------------------------
    # Rate limiting
    # ------------------------------------------------------------------

    login_rate_limit: str = "10/minute"

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @property
    def oidc_enabled(self) -> bool:
        return bool(self.oidc_client_id and self.oidc_client_secret and self.oidc_identity_metadata)

    @property
    def session_same_site(self) -> str:
        """SameSite attribute for the session cookie.

        The pending OAuth state lives in the session cookie. A form_post
        callback is a cross-site POST, so the cookie must be SameSite=None
        (and therefore Secure) or the state never comes back.
        """
        return "none" if self.oidc_response_mode == "form_post" else "lax"

    @model_validator(mode="after")
    def validate_secret_key(self) -> "Settings":
        """Enforce SECRET_KEY policy [M7].

        Dev mode (DEBUG=true): auto-generate a random key with a warning.
            Sessions will not survive restart -- acceptable for local dev.

        Production mode (DEBUG=false or not set): refuse to start if
            SECRET_KEY is missing.

        Both modes: reject keys shorter than 32 characters [M6].
        """
        if not self.secret_key:
            if self.debug:
                self.secret_key = secrets.token_hex(32)
                logger.warning(
                    "WARNING: Using auto-generated SECRET_KEY. " "Sessions will not persist across restarts."
                )
            else:
                raise ValueError(
                    "SECRET_KEY is required in production mode. "
                    "Set SECRET_KEY in your environment or .env file. "
                    "To run in development mode, set DEBUG=true."
                )
        if len(self.secret_key) < 32:
            raise ValueError("SECRET_KEY must be at least 32 characters.")
        return self

    @model_validator(mode="after")
    def validate_oidc(self) -> "Settings":
        """Reject an insecure redirect URL, an unusable response mode and an unpinned issuer.

        The authorization code travels to the redirect URL. Plain http is only
        accepted when OIDC_ALLOW_HTTP_REDIRECT is set (local development).
        form_post needs a SameSite=None cookie, which browsers only accept
        together with Secure.
        Issuer validation without an issuer value would accept any issuer.
        """
        if self.oidc_redirect_url.startswith("http://") and not self.oidc_allow_http_redirect:
            raise ValueError(
                "OIDC_REDIRECT_URL must use https. " "Set OIDC_ALLOW_HTTP_REDIRECT=true for local development."
            )
        if self.oidc_response_mode not in ("", "query", "form_post"):
            raise ValueError("OIDC_RESPONSE_MODE must be 'query' or 'form_post'.")
        if self.oidc_response_mode == "form_post" and not self.secure_cookies:
            raise ValueError(
                "OIDC_RESPONSE_MODE=form_post requires SECURE_COOKIES=true: "
                "the callback is a cross-site POST and needs a SameSite=None cookie."
            )
        if self.oidc_validate_issuer and not self.oidc_issuer:
            raise ValueError("OIDC_ISSUER is required when OIDC_VALIDATE_ISSUER is enabled.")
        return self


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables.
    """
    return Settings()
