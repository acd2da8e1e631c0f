"""
connections/store.py -- Lock-guarded in-memory store for cloud connections.

Keys are connection ids, values are opaque JSON documents supplied by API
clients. Nothing is persisted: the store is rebuilt from its seed on every
process start.

One instance is created in the api/main.py lifespan and reached through
request.app.state.connections. Route handlers run concurrently in the
threadpool, so every read and write holds the lock; upsert() and delete()
report what they found inside the same critical section that changes it.

Usage:
    store = ConnectionStore({"connection1": {"foo": "bar"}})
    created = store.upsert("conn9", {"foo": "q"})   # True -> new key
    store.get("conn9")                              # {"foo": "q"}
    store.delete("missing")                         # False
"""

from __future__ import annotations

import copy
import logging
import threading
from collections.abc import Mapping
from typing import Any, Optional

logger = logging.getLogger("cloudportal.connections")

DEFAULT_CONNECTIONS: dict[str, Any] = {
    "connection1": {"foo": "bar"},
    "connection2": {"foo": "baz"},
}


class ConnectionStore:
    def __init__(self, seed: Optional[Mapping[str, Any]] = None) -> None:
        self._lock = threading.Lock()
        self._items: dict[str, Any] = copy.deepcopy(dict(seed or {}))

    def keys(self) -> list[str]:
        with self._lock:
            return list(self._items)

    def get(self, key: str) -> Any:
        """Return a copy of the stored value, or None when the key is absent."""
        with self._lock:
            return copy.deepcopy(self._items.get(key))

    def upsert(self, key: str, value: Any) -> bool:
        """Store value under key. Returns True if the key was new."""
        with self._lock:
            created = key not in self._items
            self._items[key] = copy.deepcopy(value)
        logger.info("Connection %s %s", key, "created" if created else "replaced")
        return created

    def delete(self, key: str) -> bool:
        """Remove key. Returns False (and changes nothing) if it was absent."""
        with self._lock:
            existed = self._items.pop(key, _MISSING) is not _MISSING
        if existed:
            logger.info("Connection %s deleted", key)
        return existed

    def __contains__(self, key: object) -> bool:
        with self._lock:
            return key in self._items

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)


_MISSING = object()
