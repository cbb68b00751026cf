"""
Ranking of scored candidates into the final discovery result.

Responsibilities:
- Drop safety-excluded candidates (never relaxed) and apply the user's filters.
- Relax cuisine, then price, then radius when too few candidates survive.
- Add a small, bounded context adjustment for mood and time of day.
- Attach the budget impact of each pick and truncate to the top N.
"""
from __future__ import annotations

import logging
from enum import Enum
from typing import Awaitable, Callable

from .config import DEFAULT_RANKING_CONFIG, RankingConfig
from .models import (
    BudgetImpact,
    Candidate,
    FilterKind,
    Mood,
    PriceBand,
    RankedItem,
    RankedResult,
    ScoredCandidate,
    SearchContext,
    SearchFilters,
    SearchRequest,
    TimeOfDay,
)
from .scoring import sort_key

logger = logging.getLogger(__name__)

Requery = Callable[[SearchRequest], Awaitable[list[ScoredCandidate]]]

RELAXATION_ORDER = (FilterKind.cuisine, FilterKind.price, FilterKind.radius)


class ContextStrategy(str, Enum):
    neutral = "neutral"
    quick_bite = "quick_bite"
    leisurely = "leisurely"
    treat = "treat"
    healthy = "healthy"
    comfort = "comfort"
    explore = "explore"


_MOOD_STRATEGIES = {
    Mood.quick_bite: ContextStrategy.quick_bite,
    Mood.healthy: ContextStrategy.healthy,
    Mood.comfort: ContextStrategy.comfort,
    Mood.celebrate: ContextStrategy.treat,
    Mood.adventurous: ContextStrategy.explore,
}


def select_strategy(context: SearchContext) -> ContextStrategy:
    """A declared mood wins; otherwise the time of day decides."""
    if context.mood is not None:
        return _MOOD_STRATEGIES[context.mood]
    if context.time_of_day in (TimeOfDay.breakfast, TimeOfDay.lunch):
        return ContextStrategy.quick_bite
    if context.time_of_day is TimeOfDay.dinner:
        return ContextStrategy.leisurely
    return ContextStrategy.neutral


def _cheapness(band: PriceBand | None) -> float:
    if band is None:
        return 0.5
    return {1: 1.0, 2: 0.5}.get(band.level, 0.0)


def _rating(candidate: Candidate) -> float:
    return (candidate.rating / 5.0) if candidate.rating is not None else 0.5


def context_adjustment(strategy: ContextStrategy, scored: ScoredCandidate, max_adjustment: float) -> float:
    """Additive boost in [0, max_adjustment] for the selected strategy."""
    c = scored.candidate
    b = scored.breakdown
    if b is None or strategy is ContextStrategy.neutral:
        return 0.0
    if strategy is ContextStrategy.quick_bite:
        signal = 0.5 * _cheapness(c.price_level) + 0.5 * b.proximity
    elif strategy is ContextStrategy.leisurely:
        signal = _rating(c)
    elif strategy is ContextStrategy.treat:
        upscale = 1.0 if c.price_level is not None and c.price_level.level >= 3 else 0.0
        signal = 0.5 * _rating(c) + 0.5 * upscale
    elif strategy is ContextStrategy.healthy:
        signal = b.dietary
    elif strategy is ContextStrategy.comfort:
        signal = b.cuisine
    elif strategy is ContextStrategy.explore:
        signal = 1.0 - b.cuisine
    else:
        return 0.0
    return round(max(0.0, min(1.0, signal)) * max_adjustment, 6)


def budget_impact(
    candidate: Candidate,
    remaining_budget: float | None,
    config: RankingConfig = DEFAULT_RANKING_CONFIG,
) -> BudgetImpact:
    band = candidate.price_level or config.unknown_price_band
    cost = config.meal_cost[band]
    if remaining_budget is None:
        return BudgetImpact(estimated_cost=cost)
    return BudgetImpact(
        estimated_cost=cost,
        remaining_budget=remaining_budget,
        remaining_after=round(remaining_budget - cost, 2),
        share_of_remaining=round(cost / remaining_budget, 4) if remaining_budget > 0 else None,
    )


def passes_filters(scored: ScoredCandidate, filters: SearchFilters, radius_meters: float) -> bool:
    c = scored.candidate
    if c.distance_meters is not None and c.distance_meters > radius_meters:
        return False
    if filters.cuisines and not set(filters.cuisines) & set(c.cuisines):
        return False
    if filters.max_price is not None and c.price_level is not None:
        if c.price_level.level > filters.max_price.level:
            return False
    return True


def _merge(pool: list[ScoredCandidate], fresh: list[ScoredCandidate]) -> list[ScoredCandidate]:
    merged = {s.candidate.id: s for s in pool}
    merged.update({s.candidate.id: s for s in fresh})
    return list(merged.values())


class RankingAggregator:
    def __init__(self, config: RankingConfig = DEFAULT_RANKING_CONFIG) -> None:
        self._config = config

    async def rank(
        self,
        scored: list[ScoredCandidate],
        request: SearchRequest,
        requery: Requery | None = None,
    ) -> RankedResult:
        pool = [s for s in scored if not s.excluded]
        excluded_count = len(scored) - len(pool)

        filters = request.filters
        radius = request.radius_meters
        relaxations: list[FilterKind] = []
        survivors = [s for s in pool if passes_filters(s, filters, radius)]

        for step in RELAXATION_ORDER:
            if len(survivors) >= self._config.min_results:
                break
            needs_data = False
            if step is FilterKind.cuisine:
                if not filters.cuisines:
                    continue
                filters = filters.model_copy(update={"cuisines": ()})
                # The provider query was narrowed by cuisine.
                needs_data = True
            elif step is FilterKind.price:
                if filters.max_price is None:
                    continue
                filters = filters.model_copy(update={"max_price": None})
            elif step is FilterKind.radius:
                wider = min(radius * self._config.radius_relaxation_factor, self._config.max_radius_meters)
                if wider <= radius:
                    continue
                radius = wider
                needs_data = True

            relaxations.append(step)
            logger.info(
                "Only %d/%d candidates survive, relaxing %s filter",
                len(survivors), self._config.min_results, step.value,
            )
            if needs_data and requery is not None:
                relaxed = request.model_copy(update={"filters": filters, "radius_meters": radius})
                extra = await requery(relaxed)
                pool = _merge(pool, [s for s in extra if not s.excluded])
            survivors = [s for s in pool if passes_filters(s, filters, radius)]

        strategy = select_strategy(request.context)
        ranked = []
        for s in survivors:
            adjustment = context_adjustment(strategy, s, self._config.max_adjustment)
            ranked.append((min(1.0, s.compatibility_score + adjustment), adjustment, s))

        # Same tie-break as the scorer, on the adjusted score.
        ranked.sort(key=lambda entry: (-entry[0],) + sort_key(entry[2])[1:])
        limit = request.limit or self._config.top_n
        remaining = request.context.remaining_budget

        items = [
            RankedItem(
                scored=s,
                rank=i + 1,
                rank_score=round(rank_score, 6),
                context_adjustment=adjustment,
                budget_impact=budget_impact(s.candidate, remaining, self._config),
            )
            for i, (rank_score, adjustment, s) in enumerate(ranked[:limit])
        ]
        return RankedResult(
            items=items,
            degraded=bool(relaxations),
            relaxations_applied=relaxations,
            strategy=strategy.value,
            total_candidates=len(survivors),
            excluded_count=excluded_count,
        )
