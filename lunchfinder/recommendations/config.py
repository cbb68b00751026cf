from __future__ import annotations

from dataclasses import dataclass, field
from datetime import timedelta

from .models import PriceBand


@dataclass(frozen=True)
class ScoringWeights:
    dietary: float = 0.40
    cuisine: float = 0.25
    proximity: float = 0.20
    price: float = 0.15

    def __post_init__(self) -> None:
        values = (self.dietary, self.cuisine, self.proximity, self.price)
        if any(v < 0 for v in values):
            raise ValueError("scoring weights must not be negative")
        if abs(sum(values) - 1.0) > 1e-6:
            raise ValueError(f"scoring weights must sum to 1.0, got {sum(values):.4f}")


@dataclass(frozen=True)
class ScoringConfig:
    weights: ScoringWeights = field(default_factory=ScoringWeights)
    unknown_dietary_score: float = 0.5
    unknown_price_score: float = 0.5
    neutral_score: float = 0.5
    # Used for proximity when the request radius is not known.
    reference_radius_meters: float = 2000.0


@dataclass(frozen=True)
class CacheConfig:
    ttl: timedelta = timedelta(hours=24)
    stale_retention: timedelta = timedelta(days=7)
    max_entries: int = 512
    geocell_meters: float = 150.0
    radius_bucket_meters: float = 500.0


DEFAULT_MEAL_COST: dict[PriceBand, float] = {
    PriceBand.inexpensive: 12.0,
    PriceBand.moderate: 22.0,
    PriceBand.expensive: 40.0,
    PriceBand.very_expensive: 75.0,
}


@dataclass(frozen=True)
class RankingConfig:
    top_n: int = 3
    min_results: int = 3
    max_adjustment: float = 0.1
    radius_relaxation_factor: float = 2.0
    max_radius_meters: float = 50_000.0
    meal_cost: dict[PriceBand, float] = field(default_factory=lambda: dict(DEFAULT_MEAL_COST))
    unknown_price_band: PriceBand = PriceBand.moderate

    def __post_init__(self) -> None:
        if not 0.0 <= self.max_adjustment <= 0.1:
            raise ValueError("max_adjustment must be within [0, 0.1]")
        if self.top_n < 1:
            raise ValueError("top_n must be at least 1")
        if self.radius_relaxation_factor <= 1.0:
            raise ValueError("radius_relaxation_factor must be greater than 1")


DEFAULT_SCORING_CONFIG = ScoringConfig()
DEFAULT_CACHE_CONFIG = CacheConfig()
DEFAULT_RANKING_CONFIG = RankingConfig()
