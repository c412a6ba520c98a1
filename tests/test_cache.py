"""Tests for the entity and option caches."""

import xml.etree.ElementTree as ET

import fakeredis
import pytest

from acc_client import dom
from acc_client.cache import Cache, CacheEntry, EntityCache, OptionCache, OptionValue, build_root_key
from acc_client.storage import MemoryStorage, RedisStorage


class Clock:
    """Settable time source."""

    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def clock():
    return Clock()


@pytest.fixture
def fake_redis():
    """Create a fake Redis client for testing."""
    return fakeredis.FakeRedis(decode_responses=False)


def test_build_root_key_ignores_scheme():
    http = build_root_key("0.1.0", "http://acc-sdk:8080", "OptionCache")
    https = build_root_key("0.1.0", "https://acc-sdk:8080/", "OptionCache")
    assert http == https == "acc.py.sdk.0.1.0.acc-sdk:8080.cache.OptionCache"


class TestCacheEntry:
    def test_expiry(self):
        entry = CacheEntry("v", cached_at=100.0)
        assert not entry.is_expired(None, 10_000.0)
        assert entry.is_expired(0, 100.0)
        assert entry.is_expired(-1, 100.0)
        assert not entry.is_expired(10, 110.0)
        assert entry.is_expired(10, 110.5)

    def test_cleared(self):
        entry = CacheEntry("v", cached_at=100.0)
        assert not entry.is_cleared(None)
        assert entry.is_cleared(100.5)
        assert not entry.is_cleared(100.0)


class TestCache:
    """Memory behaviour, TTL and durable mirroring."""

    def test_put_get_remove(self, clock):
        cache = Cache(clock=clock)
        assert cache.put("k", "v") == "v"
        assert cache.get("k") == "v"
        cache.remove("k")
        assert cache.get("k") is None
        stats = cache.get_cache_stats()
        assert stats["hits"] == 1
        assert stats["misses"] == 1
        assert stats["durable"] is False

    def test_ttl(self, clock):
        cache = Cache(ttl=5, clock=clock)
        cache.put("k", "v")
        clock.now += 5
        assert cache.get("k") == "v"
        clock.now += 1
        assert cache.get("k") is None
        assert len(cache) == 0

    def test_zero_ttl_always_misses(self, clock):
        cache = Cache(ttl=0, clock=clock)
        cache.put("k", "v")
        assert cache.get("k") is None

    def test_durable_format(self, clock):
        storage = MemoryStorage()
        cache = Cache(storage, "root", clock=clock)
        cache.put("k", {"a": 1})
        assert storage.get_item("root$k") == '{"value": {"a": 1}, "cachedAt": 1000.0}'

    def test_warm_start_from_durable_store(self, clock):
        storage = MemoryStorage()
        Cache(storage, "root", clock=clock).put("k", "v")
        other = Cache(storage, "root", clock=clock)
        assert other.get("k") == "v"
        assert other.keys() == ["k"]

    def test_durable_entries_respect_ttl(self, clock):
        storage = MemoryStorage()
        Cache(storage, "root", ttl=5, clock=clock).put("k", "v")
        clock.now += 10
        assert Cache(storage, "root", ttl=5, clock=clock).get("k") is None

    def test_clear_is_seen_by_new_caches(self, clock):
        storage = MemoryStorage()
        first = Cache(storage, "root", clock=clock)
        first.put("k", "v")
        clock.now += 1
        first.clear()
        assert first.get("k") is None

        second = Cache(storage, "root", clock=clock)
        assert second.last_cleared == 1001.0
        assert second.get("k") is None

        clock.now += 1
        second.put("k", "v2")
        assert Cache(storage, "root", clock=clock).get("k") == "v2"

    def test_unreadable_durable_entries_are_dropped(self, clock):
        storage = MemoryStorage()
        storage.set_item("root$k", '{"value": "v"}')
        assert Cache(storage, "root", clock=clock).get("k") is None
        assert storage.get_item("root$k") is None


class TestEntityCache:
    def test_elements_survive_the_durable_store(self, clock, fake_redis):
        storage = RedisStorage(fake_redis)
        cache = EntityCache(storage, "root", clock=clock)
        cache.put("xtk:schema", "nms:recipient", dom.parse('<schema name="recipient"><element name="recipient"/></schema>'))

        element = EntityCache(storage, "root", clock=clock).get("xtk:schema", "nms:recipient")
        assert isinstance(element, ET.Element)
        assert dom.to_xml_string(element) == '<schema name="recipient"><element name="recipient"/></schema>'
        assert fake_redis.get("root$xtk:schema|nms:recipient") is not None

    def test_cached_ids(self, clock):
        cache = EntityCache(clock=clock)
        cache.put("xtk:schema", "nms:recipient", ET.Element("schema"))
        cache.put("xtk:schema", "xtk:session", ET.Element("schema"))
        cache.put("xtk:form", "nms:recipient", ET.Element("form"))
        assert sorted(cache.cached_ids("xtk:schema")) == ["nms:recipient", "xtk:session"]
        cache.remove("xtk:schema", "nms:recipient")
        assert cache.cached_ids("xtk:schema") == ["xtk:session"]


class TestOptionCache:
    def test_typed_values(self, clock):
        cache = OptionCache(clock=clock)
        option = cache.put("NmsBroadcast_MaxDelayPerTransac", "30", 3)
        assert option.value == 30
        assert cache.get("NmsBroadcast_MaxDelayPerTransac").raw_value == "30"

    def test_missing_option_is_cached_as_not_found(self, clock):
        cache = OptionCache(clock=clock)
        cache.put("Missing", "", 0)
        option = cache.get("Missing")
        assert option is not None
        assert option.found is False
        assert option.value is None

    def test_warm_start(self, clock):
        storage = MemoryStorage()
        OptionCache(storage, "root", clock=clock).put("XtkDatabaseId", "uFE80", 6)
        option = OptionCache(storage, "root", clock=clock).get("XtkDatabaseId")
        assert option == OptionValue(type=6, raw_value="uFE80", value="uFE80")


class TestOptionValue:
    def test_of(self):
        assert OptionValue.of("5", "1").value == 5
        assert OptionValue.of("", 0).found is False
        assert OptionValue.of("x", 0).found is True

    def test_dict_round_trip_of_timestamp(self):
        option = OptionValue.of("2024-01-02T03:04:05.000Z", 7)
        data = option.to_dict()
        assert data["value"] == "2024-01-02T03:04:05.000Z"
        assert OptionValue.from_dict(data) == option
