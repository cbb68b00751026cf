"""
Discovery entry point.

``DiscoveryFacade.discover`` walks one request through
cache lookup -> governor check -> gateway fetch -> scoring -> ranking, falling
back to stale cache whenever a live fetch is disallowed or fails. It is the
only surface the HTTP layer and monitoring depend on.
"""
from __future__ import annotations

import asyncio
import logging
import time

from ..analytics.store import (
    DEGRADED_RESULT,
    DISCOVERY_FAILED,
    RATE_LIMITED,
    SEARCH,
    UPSTREAM_ERROR,
    EventStream,
)
from ..places.config import DEFAULT_PLACES_CONFIG, PlacesConfig
from ..places.errors import (
    InvalidConfiguration,
    NetworkError,
    PlacesError,
    QuotaExceeded,
    RateLimitExceeded,
)
from ..places.factory import build_client
from ..places.gateway import PlacesQuery, SearchGateway
from ..profiles.store import (
    InMemoryBudgetStore,
    InMemoryProfileStore,
    ProfileStore,
    SafetyAnnotationStore,
    seed_demo_data,
)
from ..usage.config import DEFAULT_USAGE_CONFIG, UsageConfig
from ..usage.governor import Governor
from ..usage.ledger import UsageLedger
from ..usage.models import DenialReason, UsageStatus
from .cache import CacheHit, CacheStore, cell_center, make_cache_key, radius_bucket
from .config import (
    DEFAULT_CACHE_CONFIG,
    DEFAULT_RANKING_CONFIG,
    DEFAULT_SCORING_CONFIG,
    CacheConfig,
    RankingConfig,
    ScoringConfig,
)
from .errors import DiscoveryFailed, FailureReason, LiveFetchDenied, RequestSuperseded
from .geo import distance_meters
from .models import (
    Candidate,
    DataSource,
    DietaryProfile,
    LatLng,
    RankedResult,
    ScoredCandidate,
    SearchRequest,
)
from .ranking import RankingAggregator
from .scoring import CompatibilityScorer

logger = logging.getLogger(__name__)


def _failure_reason(error: Exception) -> FailureReason:
    if isinstance(error, LiveFetchDenied):
        if error.reason is DenialReason.rate_limited:
            return FailureReason.rate_limited_no_fallback
        return FailureReason.quota_exceeded_no_fallback
    if isinstance(error, QuotaExceeded):
        return FailureReason.quota_exceeded_no_fallback
    if isinstance(error, RateLimitExceeded):
        return FailureReason.rate_limited_no_fallback
    if isinstance(error, NetworkError):
        return FailureReason.network_error_no_fallback
    return FailureReason.upstream_error_no_fallback


class DiscoveryFacade:
    def __init__(
        self,
        gateway: SearchGateway,
        governor: Governor,
        cache: CacheStore,
        profiles: ProfileStore,
        scorer: CompatibilityScorer | None = None,
        aggregator: RankingAggregator | None = None,
        annotations: SafetyAnnotationStore | None = None,
        events: EventStream | None = None,
    ) -> None:
        self._gateway = gateway
        self._governor = governor
        self._cache = cache
        self._profiles = profiles
        self._scorer = scorer or CompatibilityScorer()
        self._aggregator = aggregator or RankingAggregator()
        self._annotations = annotations
        self._events = events or EventStream()
        self._slots: dict[str, asyncio.Task] = {}

    @property
    def events(self) -> EventStream:
        return self._events

    @property
    def cache(self) -> CacheStore:
        return self._cache

    # ── Public surface ───────────────────────────────────────────────────

    async def discover(
        self,
        request: SearchRequest,
        profile: DietaryProfile | None = None,
        slot: str | None = None,
        force_refresh: bool = False,
    ) -> RankedResult:
        """Rank nearby restaurants for *request*.

        With a *slot*, a newer call for the same slot cancels this one and its
        caller gets ``RequestSuperseded`` instead of a result.
        Raises ``DiscoveryFailed`` only when there is no data at all.
        """
        if slot is None:
            return await self._discover(request, profile, force_refresh)

        previous = self._slots.get(slot)
        if previous is not None and not previous.done():
            logger.info("Superseding in-flight request for slot %s", slot)
            previous.cancel()
        task = asyncio.ensure_future(self._discover(request, profile, force_refresh))
        self._slots[slot] = task
        try:
            return await task
        except asyncio.CancelledError:
            if task.cancelled() and self._slots.get(slot) is not task:
                raise RequestSuperseded(slot) from None
            raise
        finally:
            if self._slots.get(slot) is task:
                del self._slots[slot]

    def usage_status(self) -> UsageStatus:
        state = self._governor.ledger.snapshot()
        stats = self._cache.stats()
        return UsageStatus(
            requests_in_window=state.requests_in_window,
            max_requests_per_minute=state.max_requests_per_minute,
            daily_cost_accrued=state.daily_cost_accrued,
            daily_cost_pending=state.daily_cost_pending,
            daily_cost_limit=state.daily_cost_limit,
            window_reset_at=state.window_reset_at,
            quota_exhausted=state.quota_exhausted,
            cache_only=state.quota_exhausted or state.daily_cost_accrued >= state.daily_cost_limit,
            cache_hit_rate=stats["hit_rate"],
            cache_size=stats["size"],
        )

    def refresh(self, key: str) -> bool:
        """Bypass the TTL for *key*: the next discover fetches live."""
        refreshed = self._cache.mark_stale(key)
        if refreshed:
            logger.info("Cache key %s marked for refresh", key)
        return refreshed

    def invalidate(self, key: str) -> bool:
        dropped = self._cache.invalidate(key)
        if dropped:
            logger.info("Cache key %s invalidated", key)
        return dropped

    def purge_cache(self) -> int:
        return self._cache.purge_expired()

    async def aclose(self) -> None:
        await self._gateway.aclose()

    # ── Pipeline ─────────────────────────────────────────────────────────

    async def _discover(
        self,
        request: SearchRequest,
        profile: DietaryProfile | None,
        force_refresh: bool,
    ) -> RankedResult:
        start_time = time.time()
        profile = profile or self._profiles.get_profile(request.user_id)

        candidates, source, key = await self._load(request, force_refresh)
        sources = [source]

        async def requery(relaxed: SearchRequest) -> list[ScoredCandidate]:
            try:
                more, more_source, _ = await self._load(relaxed, force_refresh=False)
            except DiscoveryFailed as e:
                logger.warning("Relaxed search unavailable: %s", e)
                return []
            sources.append(more_source)
            # Proximity stays on the requested radius so merged scores compare.
            return self._score(more, request.origin, request.radius_meters, profile)

        scored = self._score(candidates, request.origin, request.radius_meters, profile)
        result = await self._aggregator.rank(scored, request, requery=requery)

        stale = DataSource.stale_cache in sources
        result = result.model_copy(update={
            "degraded": result.degraded or stale,
            "stale": stale,
            "data_source": source,
            "cache_key": key,
        })

        elapsed_ms = round((time.time() - start_time) * 1000, 1)
        if result.degraded:
            self._events.record(DEGRADED_RESULT, {
                "cache_key": key,
                "stale": stale,
                "relaxations": [r.value for r in result.relaxations_applied],
                "results_returned": len(result.items),
            })
        self._events.record(SEARCH, {
            "user_id": request.user_id,
            "cuisines": list(request.filters.cuisines),
            "max_price": request.filters.max_price.value if request.filters.max_price else None,
            "data_source": source.value,
            "cache_hit": source is DataSource.cache,
            "degraded": result.degraded,
            "relaxations": [r.value for r in result.relaxations_applied],
            "excluded": result.excluded_count,
            "total_candidates": result.total_candidates,
            "results_returned": len(result.items),
            "response_time_ms": elapsed_ms,
        })
        return result

    def _score(
        self,
        candidates: list[Candidate],
        origin: LatLng,
        radius_meters: float,
        profile: DietaryProfile,
    ) -> list[ScoredCandidate]:
        if self._annotations is not None:
            candidates = self._annotations.annotate(candidates)
        located = [
            c.model_copy(update={"distance_meters": round(distance_meters(origin, c.location), 1)})
            for c in candidates
        ]
        return self._scorer.score_all(located, profile, radius_meters)

    async def _load(
        self,
        request: SearchRequest,
        force_refresh: bool,
    ) -> tuple[list[Candidate], DataSource, str]:
        key = make_cache_key(request.origin, request.radius_meters, request.filters, self._cache.config)
        if force_refresh:
            self._cache.mark_stale(key)

        entry, hit = self._cache.get(key)
        if hit is CacheHit.fresh:
            return entry.candidates, DataSource.cache, key

        try:
            fetched = await self._cache.single_flight(key, lambda: self._fetch_live(key, request))
            return fetched, DataSource.live, key
        except (LiveFetchDenied, PlacesError) as e:
            if isinstance(e, InvalidConfiguration):
                logger.error("Places credentials rejected mid-request: %s", e)
            if entry is None:
                reason = _failure_reason(e)
                logger.warning("No cached data for %s after %s", key, reason.value)
                self._events.record(DISCOVERY_FAILED, {
                    "user_id": request.user_id,
                    "cache_key": key,
                    "reason": reason.value,
                    "error": type(e).__name__,
                })
                raise DiscoveryFailed(reason, str(e)) from e
            logger.warning("Serving stale cache for %s (%s)", key, e)
            self._cache.note_stale_served()
            return entry.candidates, DataSource.stale_cache, key

    async def _fetch_live(self, key: str, request: SearchRequest) -> list[Candidate]:
        cost = self._gateway.estimated_cost
        authorization = self._governor.authorize(cost)
        if not authorization.proceed:
            raise LiveFetchDenied(authorization.reason)

        cache_config = self._cache.config
        query = PlacesQuery(
            origin=cell_center(request.origin, cache_config.geocell_meters),
            # Cover every origin inside the cell for the bucketed radius.
            radius_meters=radius_bucket(request.radius_meters, cache_config.radius_bucket_meters)
            + cache_config.geocell_meters,
            cuisines=request.filters.cuisines,
            open_now=request.filters.open_now,
        )
        try:
            candidates = await self._gateway.fetch(query, allow_retry=self._governor.allow_retry)
        except PlacesError as e:
            self._governor.release(cost)
            self._record_upstream_error(key, e)
            if isinstance(e, QuotaExceeded):
                self._governor.quota_exhausted()
            raise
        except BaseException:
            self._governor.release(cost)
            raise
        self._governor.settle(cost)
        self._cache.put(key, candidates)
        return candidates

    def _record_upstream_error(self, key: str, error: PlacesError) -> None:
        self._events.record(UPSTREAM_ERROR, {
            "cache_key": key,
            "error": type(error).__name__,
            "status_code": error.status_code,
            "message": str(error),
        })
        if isinstance(error, RateLimitExceeded):
            source = "provider" if error.status_code is not None else "retry_window"
            self._events.record(RATE_LIMITED, {"source": source, "cache_key": key})


def build_facade(
    places_config: PlacesConfig = DEFAULT_PLACES_CONFIG,
    usage_config: UsageConfig = DEFAULT_USAGE_CONFIG,
    cache_config: CacheConfig = DEFAULT_CACHE_CONFIG,
    scoring_config: ScoringConfig = DEFAULT_SCORING_CONFIG,
    ranking_config: RankingConfig = DEFAULT_RANKING_CONFIG,
    profiles: ProfileStore | None = None,
    annotations: SafetyAnnotationStore | None = None,
    events: EventStream | None = None,
) -> DiscoveryFacade:
    """Wire the production pipeline; raises ``InvalidConfiguration`` at startup."""
    events = events or EventStream()
    if profiles is None:
        profiles = InMemoryProfileStore()
        seed_demo_data(profiles, InMemoryBudgetStore())
    ledger = UsageLedger(usage_config)
    return DiscoveryFacade(
        gateway=SearchGateway(build_client(places_config), places_config),
        governor=Governor(ledger, events),
        cache=CacheStore(cache_config),
        profiles=profiles,
        scorer=CompatibilityScorer(scoring_config),
        aggregator=RankingAggregator(ranking_config),
        annotations=annotations,
        events=events,
    )
