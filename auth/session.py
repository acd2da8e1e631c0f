"""
auth/session.py -- Session codec: UserProfile <-> cookie payload.

serialize() decides what survives in the session cookie: exactly the subject
id and the two tokens. Directory attributes are dropped so the cookie stays
small and personal data never sits client-side.

deserialize() is the inverse. It refuses a record without an access token
before any network call, and otherwise hands the record to the resolver,
which re-fetches the directory attributes.

Layer rule: no imports from api/, web/, or connections/.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import TYPE_CHECKING, Any

from auth.errors import NoProfile
from auth.models import SessionRecord, UserProfile

if TYPE_CHECKING:
    from auth.resolver import IdentityResolver

# Key of the serialized record inside the Starlette session dict.
SESSION_USER_KEY = "user"


def serialize(profile: UserProfile) -> dict[str, str]:
    """Project a profile onto the three persisted fields."""
    return SessionRecord(
        subject_id=profile.subject_id,
        access_token=profile.access_token,
        refresh_token=profile.refresh_token,
    ).to_dict()


async def deserialize(data: Mapping[str, Any] | None, resolver: IdentityResolver) -> UserProfile:
    """Rehydrate a profile from a cookie payload.

    Raises:
        NoProfile: payload missing, access token empty, or resolution failed.
    """
    if not data:
        raise NoProfile("no session record")
    record = SessionRecord.from_dict(data)
    if not record.access_token:
        raise NoProfile("session record has no access token")
    return await resolver.resolve(record)
