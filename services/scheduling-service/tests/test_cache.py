from conftest import FakeClock

from scheduling_service.cache import MemoryCacheStore, RedisCacheStore, TTLCache


class FakeRedis:
    def __init__(self):
        self.data = {}
        self.expiries = {}
        self.fail = False

    async def get(self, key):
        if self.fail:
            raise ConnectionError("redis down")
        return self.data.get(key)

    async def set(self, key, value, ex=None):
        if self.fail:
            raise ConnectionError("redis down")
        self.data[key] = value
        self.expiries[key] = ex

    async def delete(self, key):
        return 1 if self.data.pop(key, None) is not None else 0

    async def scan_iter(self, match=None):
        prefix = (match or "*").rstrip("*")
        for key in list(self.data):
            if key.startswith(prefix):
                yield key


def test_ttl_cache_expires_entries():
    clock = FakeClock()
    cache = TTLCache(ttl_seconds=60, clock=clock)

    cache.set("a", 1)
    clock.advance(59)
    assert cache.get("a") == 1

    clock.advance(1)
    assert cache.get("a") is None
    assert len(cache) == 0


def test_ttl_cache_prune_drops_only_expired_entries():
    clock = FakeClock()
    cache = TTLCache(ttl_seconds=60, clock=clock)
    cache.set("old", 1)
    clock.advance(30)
    cache.set("new", 2)
    clock.advance(30)

    assert cache.prune() == 1
    assert len(cache) == 1
    assert cache.get("new") == 2


def test_ttl_cache_clear():
    cache = TTLCache(ttl_seconds=60, clock=FakeClock())
    cache.set("a", 1)
    cache.set("b", 2)

    cache.clear()

    assert len(cache) == 0
    assert cache.get("a") is None


async def test_memory_store_round_trip_and_expiry():
    clock = FakeClock()
    store = MemoryCacheStore(clock)

    await store.set("geocode:DA51BJ", [0.1, 51.4], ttl_seconds=10)
    assert await store.get("geocode:DA51BJ") == [0.1, 51.4]

    clock.advance(10)
    assert await store.get("geocode:DA51BJ") is None


async def test_memory_store_clear_counts_entries():
    store = MemoryCacheStore(FakeClock())
    await store.set("a", 1, ttl_seconds=10)
    await store.set("b", 2, ttl_seconds=10)

    assert await store.clear() == 2
    assert await store.get("a") is None


async def test_redis_store_prefixes_keys_and_sets_expiry():
    redis = FakeRedis()
    store = RedisCacheStore(redis, prefix="test")

    await store.set("geocode:DA51BJ", [0.1, 51.4], ttl_seconds=86400)

    assert redis.data == {"test:geocode:DA51BJ": "[0.1, 51.4]"}
    assert redis.expiries == {"test:geocode:DA51BJ": 86400}
    assert await store.get("geocode:DA51BJ") == [0.1, 51.4]
    assert await store.get("missing") is None


async def test_redis_store_errors_are_swallowed():
    redis = FakeRedis()
    redis.fail = True
    store = RedisCacheStore(redis)

    await store.set("a", 1, ttl_seconds=10)
    assert await store.get("a") is None


async def test_redis_store_drops_unreadable_values():
    redis = FakeRedis()
    redis.data["scheduling:a"] = "not json"
    store = RedisCacheStore(redis)

    assert await store.get("a") is None


async def test_redis_store_clear_only_touches_own_prefix():
    redis = FakeRedis()
    redis.data.update({"scheduling:a": "1", "scheduling:b": "2", "other:c": "3"})
    store = RedisCacheStore(redis)

    assert await store.clear() == 2
    assert list(redis.data) == ["other:c"]
