"""connections/ -- In-memory cloud connection store.

Layer rule: connections/ imports only stdlib. api/ imports from connections/,
not the other way around.
"""
