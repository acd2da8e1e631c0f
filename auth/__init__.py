"""auth/ -- Authentication package for CloudPortal.

Session codec, identity resolution, the OIDC verify step and the access gate.

Layer rule: auth/ imports only stdlib + third-party libraries and core/.
It does NOT import from api/, web/, or connections/.
api/ and web/ import from auth/, not the other way around.
"""
