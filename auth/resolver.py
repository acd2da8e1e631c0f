"""
auth/resolver.py -- Turn a SessionRecord into a UserProfile.

The directory response is trusted for attributes only. The subject id always
comes from the record (originally from the provider's validated assertion),
and the tokens are copied in because the directory never returns them.

Every failure mode -- null result, empty profile, an exception escaping the
directory client -- collapses into NoProfile. Callers only need to know that
identity could not be established.

Layer rule: no imports from api/, web/, or connections/.
"""

from __future__ import annotations

import logging
from typing import Any, Protocol

from auth.errors import NoProfile
from auth.models import SessionRecord, UserProfile

logger = logging.getLogger("cloudportal.auth")


class ProfileSource(Protocol):
    async def fetch_profile(self, access_token: str) -> dict[str, Any] | None: ...


class IdentityResolver:
    def __init__(self, directory: ProfileSource) -> None:
        self._directory = directory

    async def resolve(self, record: SessionRecord) -> UserProfile:
        """Materialize the profile for record or raise NoProfile."""
        if not record.access_token:
            raise NoProfile("empty access token")
        try:
            fetched = await self._directory.fetch_profile(record.access_token)
        except Exception as exc:
            logger.warning("Directory lookup raised for subject %s: %s", record.subject_id, exc)
            raise NoProfile("directory lookup failed") from exc
        if not fetched:
            logger.info("No directory profile for subject %s", record.subject_id)
            raise NoProfile("directory returned no profile")
        return UserProfile(
            subject_id=record.subject_id,
            access_token=record.access_token,
            refresh_token=record.refresh_token,
            extra=fetched,
        )
