"""
auth/errors.py -- Authentication failure kinds.

Every failure of the authentication path collapses into one of three kinds.
Callers branch on the kind, never on the underlying cause:

  NoAssertion     -- the provider callback carried no subject identifier.
  NoProfile       -- no identity could be materialized (expired token,
                     directory outage, empty profile, missing session record).
  Unauthenticated -- the access gate found no identity on the request.

Layer rule: no imports from api/, web/, or connections/.
"""


class AuthError(Exception):
    """Base class for expected authentication failures."""


class NoAssertion(AuthError):
    pass


class NoProfile(AuthError):
    pass


class Unauthenticated(AuthError):
    pass
