from __future__ import annotations

import asyncio

import pytest

from lunchfinder.recommendations.cache import (
    CacheHit,
    CacheStore,
    cell_center,
    make_cache_key,
    radius_bucket,
)
from lunchfinder.recommendations.config import CacheConfig
from lunchfinder.recommendations.models import LatLng, PriceBand, SearchFilters


# ── Keys ─────────────────────────────────────────────────────────────────


def test_nearby_origins_share_a_key(origin):
    center = cell_center(origin, 150.0)
    nearby = LatLng(lat=center.lat + 0.0001, lng=center.lng - 0.0001)
    filters = SearchFilters(cuisines=("thai",))
    assert make_cache_key(center, 1000, filters) == make_cache_key(nearby, 1000, filters)


def test_distant_origins_get_different_keys(origin):
    far = LatLng(lat=origin.lat + 0.01, lng=origin.lng)
    assert make_cache_key(origin, 1000, SearchFilters()) != make_cache_key(far, 1000, SearchFilters())


def test_radius_bucketing():
    assert radius_bucket(1200, 500) == 1500
    assert radius_bucket(1500, 500) == 1500
    assert radius_bucket(1501, 500) == 2000


def test_key_covers_radius_bucket(origin):
    f = SearchFilters()
    assert make_cache_key(origin, 1200, f) == make_cache_key(origin, 1400, f)
    assert make_cache_key(origin, 1400, f) != make_cache_key(origin, 1600, f)


def test_key_ignores_cuisine_order_and_case(origin):
    a = SearchFilters(cuisines=("Thai", "italian"))
    b = SearchFilters(cuisines=("italian", "thai"))
    assert make_cache_key(origin, 1000, a) == make_cache_key(origin, 1000, b)


def test_key_distinguishes_filters(origin):
    base = make_cache_key(origin, 1000, SearchFilters())
    assert base != make_cache_key(origin, 1000, SearchFilters(max_price=PriceBand.inexpensive))
    assert base != make_cache_key(origin, 1000, SearchFilters(open_now=True))
    assert len(base) == 16


# ── Store ────────────────────────────────────────────────────────────────


def test_fresh_then_stale_after_ttl(clock, candidate):
    cache = CacheStore(clock=clock)
    cache.put("k", [candidate("a")])

    entry, hit = cache.get("k")
    assert hit is CacheHit.fresh
    assert entry.candidates[0].id == "a"

    clock.advance(hours=24)
    entry, hit = cache.get("k")
    assert hit is CacheHit.stale
    assert entry.stale is True
    assert entry.candidates[0].id == "a"


def test_miss_on_unknown_key(clock):
    cache = CacheStore(clock=clock)
    entry, hit = cache.get("missing")
    assert entry is None
    assert hit is CacheHit.miss


def test_mark_stale_keeps_entry_as_fallback(clock, candidate):
    cache = CacheStore(clock=clock)
    cache.put("k", [candidate("a")])
    assert cache.mark_stale("k") is True
    assert cache.mark_stale("other") is False
    entry, hit = cache.get("k")
    assert hit is CacheHit.stale
    assert entry is not None


def test_invalidate_drops_entry(clock, candidate):
    cache = CacheStore(clock=clock)
    cache.put("k", [candidate("a")])
    assert cache.invalidate("k") is True
    assert cache.invalidate("k") is False
    assert cache.get("k") == (None, CacheHit.miss)
    assert len(cache) == 0


def test_put_replaces_stale_entry(clock, candidate):
    cache = CacheStore(clock=clock)
    cache.put("k", [candidate("a")])
    cache.mark_stale("k")
    cache.put("k", [candidate("b")])
    entry, hit = cache.get("k")
    assert hit is CacheHit.fresh
    assert [c.id for c in entry.candidates] == ["b"]


def test_lru_eviction(clock, candidate):
    cache = CacheStore(CacheConfig(max_entries=2), clock=clock)
    cache.put("a", [candidate("a")])
    cache.put("b", [candidate("b")])
    cache.get("a")
    cache.put("c", [candidate("c")])
    assert len(cache) == 2
    assert cache.get("b")[1] is CacheHit.miss
    assert cache.get("a")[1] is CacheHit.fresh


def test_purge_expired(clock, candidate):
    cache = CacheStore(clock=clock)
    cache.put("old", [candidate("a")])
    clock.advance(days=6)
    cache.put("new", [candidate("b")])
    clock.advance(days=2)
    assert cache.purge_expired() == 1
    assert cache.get("old")[1] is CacheHit.miss
    assert cache.get("new")[1] is CacheHit.stale


def test_stats(clock, candidate):
    cache = CacheStore(clock=clock)
    cache.put("k", [candidate("a")])
    cache.get("k")
    cache.get("missing")
    stats = cache.stats()
    assert stats["size"] == 1
    assert stats["hits"] == 1
    assert stats["misses"] == 1
    assert stats["hit_rate"] == 50.0

    cache.clear()
    assert cache.stats()["hit_rate"] == 0.0


# ── Single flight ────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_single_flight_collapses_concurrent_loads(clock):
    cache = CacheStore(clock=clock)
    calls = 0

    async def loader():
        nonlocal calls
        calls += 1
        await asyncio.sleep(0.01)
        return ["result"]

    first, second = await asyncio.gather(
        cache.single_flight("k", loader),
        cache.single_flight("k", loader),
    )
    assert calls == 1
    assert first is second
    assert not cache.in_flight("k")


@pytest.mark.asyncio
async def test_single_flight_shares_errors(clock):
    cache = CacheStore(clock=clock)

    async def loader():
        await asyncio.sleep(0.01)
        raise RuntimeError("upstream down")

    results = await asyncio.gather(
        cache.single_flight("k", loader),
        cache.single_flight("k", loader),
        return_exceptions=True,
    )
    assert all(isinstance(r, RuntimeError) for r in results)
    assert not cache.in_flight("k")


@pytest.mark.asyncio
async def test_cancelled_waiter_leaves_load_running(clock):
    cache = CacheStore(clock=clock)
    release = asyncio.Event()
    calls = 0

    async def loader():
        nonlocal calls
        calls += 1
        await release.wait()
        return "done"

    first = asyncio.ensure_future(cache.single_flight("k", loader))
    second = asyncio.ensure_future(cache.single_flight("k", loader))
    await asyncio.sleep(0)
    first.cancel()
    release.set()

    assert await second == "done"
    assert first.cancelled()
    assert calls == 1
