"""
Compatibility scoring between a restaurant candidate and a dietary profile.

Phase 1 is a zero-tolerance safety gate: a candidate without verified-safe
data for every severe allergen, or one that explicitly cannot accommodate a
strict restriction, is excluded and never scored. Phase 2 computes a weighted
score in [0, 1] from dietary, cuisine, proximity and price fit.
"""
from __future__ import annotations

import math
from typing import Iterable

from .config import DEFAULT_SCORING_CONFIG, ScoringConfig
from .models import (
    AllergenSeverity,
    Candidate,
    DietaryProfile,
    PriceBand,
    SafetyVerdict,
    ScoreBreakdown,
    ScoredCandidate,
)


def _price_distance(a: PriceBand, b: PriceBand) -> int:
    """Return how many bucket steps *a* sits above *b* (0 when cheaper or equal)."""
    return max(0, a.level - b.level)


def _clamp(value: float, low: float = 0.0, high: float = 1.0) -> float:
    return max(low, min(high, value))


def safety_exclusion(candidate: Candidate, profile: DietaryProfile) -> str | None:
    """Return the exclusion reason, or None when the candidate passes."""
    for allergen in profile.severe_allergens:
        verified = candidate.allergen_safety.get(allergen)
        if verified is None:
            return f"allergen_unverified:{allergen.value}"
        if not verified:
            return f"allergen_unsafe:{allergen.value}"
    for restriction in profile.strict_restrictions:
        if candidate.dietary_options.get(restriction) is False:
            return f"restriction_conflict:{restriction.value}"
    return None


def sort_key(scored: ScoredCandidate) -> tuple:
    """Score desc, then rating desc, then distance asc, then id for stability."""
    c = scored.candidate
    distance = c.distance_meters if c.distance_meters is not None else math.inf
    return (-scored.compatibility_score, -(c.rating or 0.0), distance, c.id)


class CompatibilityScorer:
    def __init__(self, config: ScoringConfig = DEFAULT_SCORING_CONFIG) -> None:
        self._config = config

    def _dietary_match(self, candidate: Candidate, profile: DietaryProfile) -> float:
        unknown = self._config.unknown_dietary_score
        values: list[float] = []
        for restriction in profile.restrictions:
            supported = candidate.dietary_options.get(restriction.kind)
            values.append(unknown if supported is None else float(supported))
        for allergen in profile.allergens:
            if allergen.severity is AllergenSeverity.severe:
                continue  # already gated in phase 1
            safe = candidate.allergen_safety.get(allergen.kind)
            values.append(unknown if safe is None else float(safe))
        if not values:
            return 1.0
        return sum(values) / len(values)

    def _cuisine_match(self, candidate: Candidate, profile: DietaryProfile) -> float:
        prefs = profile.cuisine_preferences
        if not prefs:
            return 1.0
        matched = [prefs[c] for c in candidate.cuisines if c in prefs]
        if not matched:
            return self._config.neutral_score
        # Affinity [-1, 1] -> [0, 1]
        return (max(matched) + 1.0) / 2.0

    def _proximity_match(self, candidate: Candidate, radius_meters: float | None) -> float:
        if candidate.distance_meters is None:
            return self._config.neutral_score
        radius = radius_meters or self._config.reference_radius_meters
        return _clamp(1.0 - candidate.distance_meters / radius)

    def _price_match(self, candidate: Candidate, profile: DietaryProfile) -> float:
        if profile.price_band is None:
            return 1.0
        if candidate.price_level is None:
            return self._config.unknown_price_score
        steps = _price_distance(candidate.price_level, profile.price_band)
        return max(0.0, 1.0 - steps * 0.5)

    def score(
        self,
        candidate: Candidate,
        profile: DietaryProfile,
        radius_meters: float | None = None,
    ) -> ScoredCandidate:
        reason = safety_exclusion(candidate, profile)
        if reason is not None:
            return ScoredCandidate(
                candidate=candidate,
                safety_verdict=SafetyVerdict.excluded,
                exclusion_reason=reason,
            )

        breakdown = ScoreBreakdown(
            dietary=round(self._dietary_match(candidate, profile), 6),
            cuisine=round(self._cuisine_match(candidate, profile), 6),
            proximity=round(self._proximity_match(candidate, radius_meters), 6),
            price=round(self._price_match(candidate, profile), 6),
        )
        w = self._config.weights
        total = (
            w.dietary * breakdown.dietary
            + w.cuisine * breakdown.cuisine
            + w.proximity * breakdown.proximity
            + w.price * breakdown.price
        )
        return ScoredCandidate(
            candidate=candidate,
            compatibility_score=round(_clamp(total), 6),
            breakdown=breakdown,
        )

    def score_all(
        self,
        candidates: Iterable[Candidate],
        profile: DietaryProfile,
        radius_meters: float | None = None,
    ) -> list[ScoredCandidate]:
        return [self.score(c, profile, radius_meters) for c in candidates]
