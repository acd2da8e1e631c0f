"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, no I/O). The codec and resolver do
the work; these only own the shape.

Layer rule: no imports from api/, web/, or connections/.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any

# Cookie keys of the serialized record. Kept stable so sessions issued by an
# earlier deployment still decode.
SUBJECT_KEY = "oid"
ACCESS_TOKEN_KEY = "access_token"
REFRESH_TOKEN_KEY = "refresh_token"


@dataclass(frozen=True)
class SessionRecord:
    """The only identity datum that survives between requests.

    Lives client-side inside the signed session cookie. Directory attributes
    are deliberately absent -- they are re-fetched on every request.

    refresh_token is carried but not used: there is no refresh scheduling.
    """

    subject_id: str
    access_token: str
    refresh_token: str = ""

    def to_dict(self) -> dict[str, str]:
        return {
            SUBJECT_KEY: self.subject_id,
            ACCESS_TOKEN_KEY: self.access_token,
            REFRESH_TOKEN_KEY: self.refresh_token,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> SessionRecord:
        """Build a record from a decoded cookie payload.

        Missing or null keys become empty strings; validity is the codec's
        decision, not the parser's.
        """
        return cls(
            subject_id=str(data.get(SUBJECT_KEY) or ""),
            access_token=str(data.get(ACCESS_TOKEN_KEY) or ""),
            refresh_token=str(data.get(REFRESH_TOKEN_KEY) or ""),
        )


@dataclass(frozen=True)
class UserProfile:
    """The resolved application identity for one request.

    subject_id and the two tokens are the trusted fields. extra holds whatever
    the directory returned (displayName, mail, jobTitle, ...) and is exposed
    read-only.
    """

    subject_id: str
    access_token: str
    refresh_token: str = ""
    extra: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "extra", MappingProxyType(dict(self.extra)))

    def __getitem__(self, key: str) -> Any:
        return self.extra[key]

    def get(self, key: str, default: Any = None) -> Any:
        return self.extra.get(key, default)

    @property
    def name(self) -> str:
        return self.extra.get("displayName") or self.extra.get("name") or self.subject_id

    @property
    def email(self) -> str | None:
        return self.extra.get("mail") or self.extra.get("userPrincipalName")
