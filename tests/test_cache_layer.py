import json

import pytest

from app.cache.layer import CacheLayer, CacheStats, hit_rate


@pytest.mark.parametrize(
    "hits, misses, expected",
    [(0, 0, 0), (1, 0, 100), (1, 1, 50), (1, 2, 33), (1, 7, 13), (0, 5, 0)],
)
def test_hit_rate(hits, misses, expected):
    assert hit_rate(CacheStats(hits=hits, misses=misses)) == expected


def test_hit_rate_ignores_errors():
    assert hit_rate(CacheStats(hits=3, misses=1, errors=40)) == 75


@pytest.mark.asyncio
async def test_get_counts_misses_and_hits(cache, stub_redis):
    assert await cache.get("tasks:all") is None

    await cache.set("tasks:all", [{"id": 1}], ttl=60)
    assert await cache.get("tasks:all") == [{"id": 1}]

    assert cache.get_stats() == {"hits": 1, "misses": 1, "errors": 0, "hitRate": 50}
    assert stub_redis.ttls["tasks:all"] == 60


@pytest.mark.asyncio
async def test_unrecorded_get_leaves_counters_alone(cache):
    await cache.set("tasks:1", {"id": 1})

    await cache.get("tasks:1", record=False)
    await cache.get("tasks:2", record=False)

    assert cache.stats == CacheStats()


@pytest.mark.asyncio
async def test_set_uses_default_ttl(cache, settings, stub_redis):
    await cache.set("tasks:1", {"id": 1})

    assert stub_redis.ttls["tasks:1"] == settings.cache_ttl_seconds


@pytest.mark.asyncio
async def test_expired_entry_is_a_miss(cache, stub_redis):
    await cache.set("tasks:stats", {"total": 0}, ttl=30)
    stub_redis.expire("tasks:stats")

    assert await cache.get("tasks:stats") is None
    assert cache.stats.misses == 1


@pytest.mark.asyncio
async def test_invalidate_removes_only_matching_keys(cache, stub_redis):
    await cache.set("tasks:all", [])
    await cache.set("tasks:7", {"id": 7})
    await cache.set("tasks:stats", {"total": 1})
    await cache.set("sessions:abc", {"user": "x"})

    removed = await cache.invalidate("tasks:*")

    assert removed == 3
    assert list(stub_redis.store) == ["sessions:abc"]


@pytest.mark.asyncio
async def test_undecodable_entry_reads_as_absent(cache, stub_redis):
    stub_redis.store["tasks:all"] = ("not json{", None)

    assert await cache.get("tasks:all") is None
    assert cache.stats.errors == 1
    assert cache.stats.hits == 0


@pytest.mark.asyncio
async def test_namespace_prefixes_every_key(settings, stub_redis):
    settings.cache_namespace = "taskboard:"
    cache = CacheLayer(settings, client=stub_redis)
    await cache.init_cache()

    await cache.set("tasks:1", {"id": 1})
    assert json.loads(stub_redis.store["taskboard:tasks:1"][0]) == {"id": 1}

    assert await cache.invalidate("tasks:*") == 1
    assert stub_redis.store == {}


@pytest.mark.asyncio
async def test_unreachable_at_startup_means_degraded_mode(settings, stub_redis):
    stub_redis.fail = True
    cache = CacheLayer(settings, client=stub_redis)

    await cache.init_cache()

    assert cache.connected is False
    assert await cache.get("tasks:all") is None
    await cache.set("tasks:all", [])
    assert await cache.invalidate("tasks:*") == 0
    assert cache.get_stats() == {"hits": 0, "misses": 1, "errors": 1, "hitRate": 0}


@pytest.mark.asyncio
async def test_failure_mid_flight_is_swallowed_and_counted(cache, stub_redis):
    stub_redis.fail = True

    assert await cache.get("tasks:all") is None

    assert cache.stats.errors == 1
    assert cache.connected is False


@pytest.mark.asyncio
async def test_invalidate_reaches_redis_while_degraded(cache, stub_redis):
    await cache.set("tasks:all", [])
    await cache.set("tasks:7", {"id": 7})
    stub_redis.fail = True
    assert await cache.get("tasks:all") is None
    assert cache.connected is False
    stub_redis.fail = False

    assert await cache.invalidate("tasks:*") == 2

    assert stub_redis.store == {}
    assert cache.connected is True


@pytest.mark.asyncio
async def test_set_failure_is_swallowed(cache, stub_redis):
    stub_redis.fail = True

    await cache.set("tasks:all", [])

    assert cache.stats.errors == 1
    assert stub_redis.store == {}


@pytest.mark.asyncio
async def test_hung_call_times_out(cache, stub_redis):
    stub_redis.hang = True

    assert await cache.get("tasks:all") is None

    assert cache.stats.errors == 1
    assert cache.connected is False


@pytest.mark.asyncio
async def test_reconnects_after_retry_interval(settings, stub_redis):
    settings.cache_retry_interval = 0
    cache = CacheLayer(settings, client=stub_redis)
    await cache.init_cache()

    stub_redis.fail = True
    await cache.get("tasks:all")
    assert cache.connected is False

    stub_redis.fail = False
    await cache.set("tasks:all", [1, 2])

    assert cache.connected is True
    assert await cache.get("tasks:all") == [1, 2]


@pytest.mark.asyncio
async def test_stays_degraded_within_retry_interval(cache, stub_redis):
    stub_redis.fail = True
    await cache.get("tasks:all")

    stub_redis.fail = False
    await cache.set("tasks:all", [])

    assert cache.connected is False
    assert stub_redis.store == {}


@pytest.mark.asyncio
async def test_ping_reports_status(cache, stub_redis):
    assert await cache.ping() == "healthy"

    stub_redis.fail = True
    assert await cache.ping() == "unhealthy"
    assert await cache.ping() == "disconnected"

    stub_redis.fail = False
    assert await cache.ping() == "healthy"
    assert cache.connected is True


@pytest.mark.asyncio
async def test_lock_for_returns_the_same_lock_per_key(cache):
    assert cache.lock_for("tasks:1") is cache.lock_for("tasks:1")
    assert cache.lock_for("tasks:1") is not cache.lock_for("tasks:2")


@pytest.mark.asyncio
async def test_close_releases_client(cache, stub_redis):
    await cache.close()

    assert stub_redis.closed is True
