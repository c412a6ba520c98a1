"""Durable key/value stores backing the caches.

Caches keep their entries in memory and mirror them to a durable store so
that a new client (or a new process) can start warm. Any object exposing
``get_item`` / ``set_item`` / ``remove_item`` with string keys and string
values can be used; two implementations ship with the package:

* :class:`MemoryStorage`: a plain dictionary, handy for tests.
* :class:`RedisStorage`: a Redis database, shared between processes.

:class:`SafeStorage` wraps one of them for a given cache: it prefixes keys
with the cache root key, stores JSON objects only, and never lets a failure
of the durable store escape. After the first failure it keeps working in
memory only, like the distributed schema cache falls back to its local
layer when Redis goes away.

Example::

    from acc_client.storage import RedisStorage, SafeStorage

    backend = RedisStorage.from_url("redis://localhost:6379/0")
    store = SafeStorage(backend, "acc.py.sdk.0.1.0.localhost.cache.OptionCache")
    store.set_item("XtkDatabaseId", {"value": "uFE80000000000000F1FA913DD7CC7C4804BA419F"})
    store.get_item("XtkDatabaseId")
"""

from __future__ import annotations

import json
import logging
from typing import Any, Dict, Optional, Protocol

import redis

logger = logging.getLogger(__name__)


class StorageBackend(Protocol):
    """Minimal durable store interface (string keys, string values)."""

    def get_item(self, key: str) -> Optional[str]:
        ...

    def set_item(self, key: str, value: str) -> None:
        ...

    def remove_item(self, key: str) -> None:
        ...


class MemoryStorage:
    """Dictionary-backed store."""

    def __init__(self) -> None:
        self._items: Dict[str, str] = {}

    def get_item(self, key: str) -> Optional[str]:
        return self._items.get(key)

    def set_item(self, key: str, value: str) -> None:
        self._items[key] = value

    def remove_item(self, key: str) -> None:
        self._items.pop(key, None)

    def keys(self):
        return list(self._items.keys())

    def __len__(self) -> int:
        return len(self._items)


class RedisStorage:
    """Redis-backed store; keys are stored verbatim, values as UTF-8."""

    def __init__(self, redis_client: Any) -> None:
        self._redis = redis_client

    @classmethod
    def from_url(cls, url: str) -> "RedisStorage":
        return cls(redis.from_url(url, decode_responses=False))

    def get_item(self, key: str) -> Optional[str]:
        blob = self._redis.get(key)
        if blob is None:
            return None
        if isinstance(blob, bytes):
            return blob.decode("utf-8")
        return blob

    def set_item(self, key: str, value: str) -> None:
        self._redis.set(key, value.encode("utf-8"))

    def remove_item(self, key: str) -> None:
        self._redis.delete(key)


class SafeStorage:
    """Namespaced JSON-object view over a durable store that never raises.

    Args:
        delegate: Underlying store, or ``None`` to disable persistence.
        root_key: Prefix of every key (``"<root_key>$<key>"``).
    """

    def __init__(self, delegate: Optional[StorageBackend] = None, root_key: str = "") -> None:
        self._delegate = delegate
        self._root_key = root_key or ""
        self._available = delegate is not None

    @property
    def available(self) -> bool:
        return self._available

    def _key(self, key: str) -> str:
        if not self._root_key:
            return key
        return f"{self._root_key}${key}"

    def _degrade(self, operation: str, key: str, error: Exception) -> None:
        logger.warning(
            f"Durable storage {operation} failed for '{key}', continuing in memory only: {error}"
        )
        self._available = False

    def get_item(self, key: str) -> Optional[Dict[str, Any]]:
        if not self._available or self._delegate is None:
            return None
        storage_key = self._key(key)
        try:
            raw = self._delegate.get_item(storage_key)
        except Exception as e:
            self._degrade("read", storage_key, e)
            return None
        if raw is None:
            return None
        try:
            value = json.loads(raw)
        except (TypeError, ValueError):
            value = None
        if not isinstance(value, dict):
            logger.debug(f"Removing invalid durable cache item '{storage_key}'")
            self.remove_item(key)
            return None
        return value

    def set_item(self, key: str, value: Any) -> None:
        if not self._available or self._delegate is None:
            return
        if not isinstance(value, dict):
            self.remove_item(key)
            return
        storage_key = self._key(key)
        try:
            self._delegate.set_item(storage_key, json.dumps(value))
        except Exception as e:
            self._degrade("write", storage_key, e)

    def remove_item(self, key: str) -> None:
        if not self._available or self._delegate is None:
            return
        storage_key = self._key(key)
        try:
            self._delegate.remove_item(storage_key)
        except Exception as e:
            self._degrade("remove", storage_key, e)
