"""
Candidate cache for nearby searches.

Entries are keyed by a fingerprint of (geocell, radius bucket, raw filters) so
that searches from roughly the same spot with the same filters share one
upstream call. Entries are fresh for 24 hours; after that, or after an
explicit refresh, they are only served as stale fallbacks.
"""
from __future__ import annotations

import asyncio
import hashlib
import json
import logging
import math
import threading
from collections import OrderedDict
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Awaitable, Callable, TypeVar

from .config import DEFAULT_CACHE_CONFIG, CacheConfig
from .models import Candidate, LatLng, SearchFilters

logger = logging.getLogger(__name__)

T = TypeVar("T")

_METERS_PER_DEGREE = 111_320.0


class CacheHit(str, Enum):
    fresh = "fresh"
    stale = "stale"
    miss = "miss"


@dataclass
class CacheEntry:
    key: str
    candidates: list[Candidate]
    fetched_at: datetime
    ttl_expiry: datetime
    stale: bool = False


def geocell(origin: LatLng, cell_meters: float) -> tuple[int, int]:
    size = cell_meters / _METERS_PER_DEGREE
    return math.floor(origin.lat / size), math.floor(origin.lng / size)


def cell_center(origin: LatLng, cell_meters: float) -> LatLng:
    """Centre of the geocell containing *origin*."""
    size = cell_meters / _METERS_PER_DEGREE
    row, col = geocell(origin, cell_meters)
    return LatLng(
        lat=max(-90.0, min(90.0, (row + 0.5) * size)),
        lng=max(-180.0, min(180.0, (col + 0.5) * size)),
    )


def radius_bucket(radius_meters: float, bucket_meters: float) -> int:
    return int(math.ceil(radius_meters / bucket_meters) * bucket_meters)


def make_cache_key(
    origin: LatLng,
    radius_meters: float,
    filters: SearchFilters,
    config: CacheConfig = DEFAULT_CACHE_CONFIG,
) -> str:
    payload = {
        "cell": list(geocell(origin, config.geocell_meters)),
        "radius": radius_bucket(radius_meters, config.radius_bucket_meters),
        "filters": filters.canonical(),
    }
    normalized = json.dumps(payload, sort_keys=True, default=str)
    return hashlib.sha256(normalized.encode()).hexdigest()[:16]


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class CacheStore:
    def __init__(
        self,
        config: CacheConfig = DEFAULT_CACHE_CONFIG,
        clock: Callable[[], datetime] = _utc_now,
    ) -> None:
        self._config = config
        self._clock = clock
        self._entries: OrderedDict[str, CacheEntry] = OrderedDict()
        self._lock = threading.Lock()
        self._inflight: dict[str, asyncio.Future] = {}
        self._hits = 0
        self._misses = 0
        self._stale_served = 0

    @property
    def config(self) -> CacheConfig:
        return self._config

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, key: str) -> tuple[CacheEntry | None, CacheHit]:
        now = self._clock()
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self._misses += 1
                return None, CacheHit.miss
            self._entries.move_to_end(key)
            if now >= entry.ttl_expiry:
                entry.stale = True
            if entry.stale:
                self._misses += 1
                return entry, CacheHit.stale
            self._hits += 1
            logger.debug("Cache hit for %s", key)
            return entry, CacheHit.fresh

    def put(self, key: str, candidates: list[Candidate]) -> CacheEntry:
        now = self._clock()
        entry = CacheEntry(
            key=key,
            candidates=list(candidates),
            fetched_at=now,
            ttl_expiry=now + self._config.ttl,
        )
        with self._lock:
            self._entries[key] = entry
            self._entries.move_to_end(key)
            while len(self._entries) > self._config.max_entries:
                evicted, _ = self._entries.popitem(last=False)
                logger.debug("Evicted least recently used cache entry %s", evicted)
        return entry

    def invalidate(self, key: str) -> bool:
        """Drop *key* entirely; no stale fallback remains."""
        with self._lock:
            return self._entries.pop(key, None) is not None

    def mark_stale(self, key: str) -> bool:
        """Stop serving *key* as fresh while keeping it as a fallback."""
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return False
            entry.stale = True
            return True

    def note_stale_served(self) -> None:
        with self._lock:
            self._stale_served += 1

    def purge_expired(self, max_age: timedelta | None = None) -> int:
        """Drop entries too old to be useful even as stale fallbacks."""
        cutoff = self._clock() - (max_age or self._config.stale_retention)
        with self._lock:
            expired = [k for k, e in self._entries.items() if e.fetched_at < cutoff]
            for key in expired:
                del self._entries[key]
        if expired:
            logger.info("Purged %d expired cache entries", len(expired))
        return len(expired)

    async def single_flight(self, key: str, loader: Callable[[], Awaitable[T]]) -> T:
        """Run *loader* once per key at a time; concurrent callers share its result.

        Each caller awaits the shared load through a shield, so cancelling one
        caller leaves the load running for the others.
        """
        future = self._inflight.get(key)
        if future is None:
            future = asyncio.ensure_future(loader())
            self._inflight[key] = future
            future.add_done_callback(lambda f: self._finish_flight(key, f))
        else:
            logger.debug("Joining in-flight load for %s", key)
        return await asyncio.shield(future)

    def _finish_flight(self, key: str, future: asyncio.Future) -> None:
        if self._inflight.get(key) is future:
            del self._inflight[key]
        if not future.cancelled():
            # Mark the exception retrieved even if every waiter went away.
            future.exception()

    def in_flight(self, key: str) -> bool:
        return key in self._inflight

    def stats(self) -> dict:
        with self._lock:
            total = self._hits + self._misses
            return {
                "size": len(self._entries),
                "hits": self._hits,
                "misses": self._misses,
                "stale_served": self._stale_served,
                "hit_rate": round(self._hits / total * 100, 1) if total > 0 else 0.0,
            }

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
            self._hits = 0
            self._misses = 0
            self._stale_served = 0
