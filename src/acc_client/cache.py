"""Caching layer for server entities (schemas) and options.

Provides:
    * :class:`Cache`: in-memory dictionary cache with optional TTL, mirrored
      to a durable store through :class:`~acc_client.storage.SafeStorage`.
    * :class:`EntityCache`: entity documents (schemas...) keyed by
      ``"<entityType>|<fullName>"``.
    * :class:`OptionCache`: typed option values keyed by option name.

Design goals:
    1. Warm start: a new cache on the same durable store sees what a
       previous one stored, including when it was last cleared.
    2. Predictable invalidation: TTL expiry, explicit removal, or a
       ``clear()`` newer than the entry.
    3. Fail soft: durable store outages degrade to in-memory caching.

Quick examples:

Generic cache::

    from acc_client.cache import Cache
    cache = Cache(ttl=5)
    cache.put("key", {"value": 1})
    assert cache.get("key") == {"value": 1}

Option cache on Redis::

    from acc_client.cache import OptionCache, build_root_key
    from acc_client.storage import RedisStorage
    options = OptionCache(
        RedisStorage.from_url("redis://localhost:6379/0"),
        build_root_key("0.1.0", "https://acc.example.com", "OptionCache"),
        ttl=300,
    )
    options.put("XtkDatabaseId", "uFE80000000000000F1FA913DD7CC7C4804BA419F", 6)
"""

from __future__ import annotations

import logging
import time
import xml.etree.ElementTree as ET
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

from . import caster, dom
from .storage import SafeStorage, StorageBackend

logger = logging.getLogger(__name__)

LAST_CLEARED_KEY = "lastCleared"


def build_root_key(version: str, endpoint: str, name: str) -> str:
    """Durable root key of a cache: ``acc.py.sdk.<version>.<host[:port]>.cache.<name>``."""
    host = endpoint or ""
    if "://" in host:
        host = host.split("://", 1)[1]
    host = host.rstrip("/")
    return f"acc.py.sdk.{version}.{host}.cache.{name}"


@dataclass
class CacheEntry:
    """Cached value with the time it was stored."""

    value: Any
    cached_at: float

    def is_expired(self, ttl: Optional[float], now: float) -> bool:
        if ttl is None:
            return False
        if ttl <= 0:
            return True
        return now - self.cached_at > ttl

    def is_cleared(self, last_cleared: Optional[float]) -> bool:
        return last_cleared is not None and self.cached_at < last_cleared


class Cache:
    """Key/value cache with TTL, mirrored to a durable store.

    Args:
        storage: Durable store, or ``None`` for memory only.
        root_key: Prefix of durable keys.
        ttl: Seconds before an entry expires; ``None`` never expires, zero or
            negative makes every read a miss.
        serializer: Converts a value to its JSON-compatible durable form.
        deserializer: Inverse of ``serializer``.
        clock: Source of the current time in seconds.
    """

    def __init__(
        self,
        storage: Optional[StorageBackend] = None,
        root_key: str = "",
        ttl: Optional[float] = None,
        serializer: Optional[Callable[[Any], Any]] = None,
        deserializer: Optional[Callable[[Any], Any]] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.ttl = ttl
        self._storage = SafeStorage(storage, root_key)
        self._cache: Dict[str, CacheEntry] = {}
        self._serialize = serializer or (lambda value: value)
        self._deserialize = deserializer or (lambda value: value)
        self._clock = clock
        self._hits = 0
        self._misses = 0
        self.last_cleared: Optional[float] = None
        marker = self._storage.get_item(LAST_CLEARED_KEY)
        if marker is not None:
            timestamp = marker.get("timestamp")
            if isinstance(timestamp, (int, float)) and not isinstance(timestamp, bool):
                self.last_cleared = float(timestamp)

    def _load(self, key: str) -> Optional[CacheEntry]:
        item = self._storage.get_item(key)
        if item is None:
            return None
        cached_at = item.get("cachedAt")
        if not isinstance(cached_at, (int, float)) or isinstance(cached_at, bool):
            self._storage.remove_item(key)
            return None
        try:
            value = self._deserialize(item.get("value"))
        except Exception as e:
            logger.warning(f"Dropping unreadable durable cache entry '{key}': {e}")
            self._storage.remove_item(key)
            return None
        return CacheEntry(value=value, cached_at=float(cached_at))

    def get(self, key: str) -> Optional[Any]:
        """Return the cached value, or ``None`` when absent, expired or cleared."""
        now = self._clock()
        entry = self._cache.get(key)
        if entry is None:
            entry = self._load(key)
            if entry is not None:
                self._cache[key] = entry
        if entry is None:
            self._misses += 1
            return None
        if entry.is_expired(self.ttl, now) or entry.is_cleared(self.last_cleared):
            self._cache.pop(key, None)
            self._misses += 1
            return None
        self._hits += 1
        return entry.value

    def put(self, key: str, value: Any) -> Any:
        now = self._clock()
        self._cache[key] = CacheEntry(value=value, cached_at=now)
        self._storage.set_item(key, {"value": self._serialize(value), "cachedAt": now})
        return value

    def remove(self, key: str) -> None:
        self._cache.pop(key, None)
        self._storage.remove_item(key)

    def clear(self) -> None:
        """Drop every entry, including durable ones stored before now."""
        now = self._clock()
        self._cache.clear()
        self.last_cleared = now
        self._storage.set_item(LAST_CLEARED_KEY, {"timestamp": now})

    def keys(self) -> List[str]:
        return list(self._cache.keys())

    def __len__(self) -> int:
        return len(self._cache)

    def get_cache_stats(self) -> Dict[str, Any]:
        """Get current cache statistics."""
        return {
            "cache_size": len(self._cache),
            "hits": self._hits,
            "misses": self._misses,
            "ttl": self.ttl,
            "last_cleared": self.last_cleared,
            "durable": self._storage.available,
        }


class EntityCache(Cache):
    """Cache of entity documents; durable values are XML strings."""

    def __init__(
        self,
        storage: Optional[StorageBackend] = None,
        root_key: str = "",
        ttl: Optional[float] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        super().__init__(
            storage,
            root_key,
            ttl,
            serializer=dom.to_xml_string,
            deserializer=dom.parse,
            clock=clock,
        )

    @staticmethod
    def make_key(entity_type: str, full_name: str) -> str:
        return f"{entity_type}|{full_name}"

    def get(self, entity_type: str, full_name: str) -> Optional[ET.Element]:  # type: ignore[override]
        return super().get(self.make_key(entity_type, full_name))

    def put(self, entity_type: str, full_name: str, element: ET.Element) -> ET.Element:  # type: ignore[override]
        return super().put(self.make_key(entity_type, full_name), element)

    def remove(self, entity_type: str, full_name: str) -> None:  # type: ignore[override]
        super().remove(self.make_key(entity_type, full_name))

    def cached_ids(self, entity_type: str) -> List[str]:
        """Full names of the in-memory entries of ``entity_type``."""
        prefix = f"{entity_type}|"
        return [key[len(prefix):] for key in self.keys() if key.startswith(prefix)]


@dataclass
class OptionValue:
    """Option as returned by the server: type code, raw string and typed value."""

    type: int
    raw_value: str
    value: Any

    @property
    def found(self) -> bool:
        return not (self.type == caster.OPTION_TYPE_NOT_FOUND and self.raw_value == "")

    def to_dict(self) -> Dict[str, Any]:
        value = self.value
        if not isinstance(value, (str, int, float, bool)) and value is not None:
            value = caster.as_string(value)
        return {"type": self.type, "rawValue": self.raw_value, "value": value}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "OptionValue":
        return cls.of(data.get("rawValue", ""), data.get("type", caster.OPTION_TYPE_STRING))

    @classmethod
    def of(cls, raw_value: Any, type_: Any) -> "OptionValue":
        code = caster.as_short(type_)
        raw = caster.as_string(raw_value)
        if code == caster.OPTION_TYPE_NOT_FOUND and raw == "":
            return cls(type=code, raw_value=raw, value=None)
        return cls(type=code, raw_value=raw, value=caster.as_typed(raw, code))


class OptionCache(Cache):
    """Cache of server options keyed by name."""

    def __init__(
        self,
        storage: Optional[StorageBackend] = None,
        root_key: str = "",
        ttl: Optional[float] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        super().__init__(
            storage,
            root_key,
            ttl,
            serializer=lambda option: option.to_dict(),
            deserializer=OptionValue.from_dict,
            clock=clock,
        )

    def get(self, name: str) -> Optional[OptionValue]:  # type: ignore[override]
        return super().get(name)

    def put(self, name: str, raw_value: Any, type_: Any = caster.OPTION_TYPE_STRING) -> OptionValue:  # type: ignore[override]
        return super().put(name, OptionValue.of(raw_value, type_))
