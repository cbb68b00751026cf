from __future__ import annotations

import pytest

from lunchfinder.recommendations.config import ScoringConfig, ScoringWeights
from lunchfinder.recommendations.models import (
    Allergen,
    AllergenKind,
    AllergenSeverity,
    DietaryProfile,
    PriceBand,
    Restriction,
    RestrictionKind,
    RestrictionSeverity,
    SafetyVerdict,
)
from lunchfinder.recommendations.scoring import CompatibilityScorer, safety_exclusion, sort_key

PEANUT_SEVERE = DietaryProfile(allergens=(Allergen(kind=AllergenKind.peanut, severity=AllergenSeverity.severe),))


def test_unverified_severe_allergen_is_excluded(candidate):
    scorer = CompatibilityScorer()
    a = candidate("restaurant_a", rating=4.8)
    b = candidate("restaurant_b", rating=4.1, allergens={AllergenKind.peanut: True})

    scored = {s.candidate.id: s for s in scorer.score_all([a, b], PEANUT_SEVERE)}

    assert scored["restaurant_a"].safety_verdict is SafetyVerdict.excluded
    assert scored["restaurant_a"].exclusion_reason == "allergen_unverified:peanut"
    assert scored["restaurant_a"].breakdown is None
    assert scored["restaurant_b"].safety_verdict is SafetyVerdict.passed
    assert scored["restaurant_b"].compatibility_score > 0


def test_unsafe_severe_allergen_is_excluded(candidate):
    c = candidate("x", allergens={AllergenKind.peanut: False})
    assert safety_exclusion(c, PEANUT_SEVERE) == "allergen_unsafe:peanut"


def test_mild_allergen_only_lowers_score(candidate):
    profile = DietaryProfile(allergens=(Allergen(kind=AllergenKind.dairy, severity=AllergenSeverity.mild),))
    scorer = CompatibilityScorer()
    unknown = scorer.score(candidate("u"), profile)
    safe = scorer.score(candidate("s", allergens={AllergenKind.dairy: True}), profile)
    assert not unknown.excluded
    assert unknown.breakdown.dietary == 0.5
    assert safe.breakdown.dietary == 1.0


def test_strict_restriction_conflict(candidate):
    profile = DietaryProfile(restrictions=(Restriction(kind=RestrictionKind.vegan, severity=RestrictionSeverity.strict),))
    conflict = candidate("c", dietary={RestrictionKind.vegan: False})
    unknown = candidate("u")
    assert safety_exclusion(conflict, profile) == "restriction_conflict:vegan"
    assert safety_exclusion(unknown, profile) is None


def test_perfect_match_scores_one(candidate):
    c = candidate("p", distance=0.0)
    scored = CompatibilityScorer().score(c, DietaryProfile(), radius_meters=1000)
    assert scored.compatibility_score == 1.0


def test_weighted_score(candidate):
    profile = DietaryProfile(
        restrictions=(Restriction(kind=RestrictionKind.vegetarian),),
        cuisine_preferences={"Italian": 0.8},
        price_band=PriceBand.moderate,
    )
    c = candidate(
        "w",
        distance=500.0,
        price=PriceBand.expensive,
        dietary={RestrictionKind.vegetarian: True},
    )
    scored = CompatibilityScorer().score(c, profile, radius_meters=1000)

    assert scored.breakdown.dietary == 1.0
    assert scored.breakdown.cuisine == pytest.approx(0.9)
    assert scored.breakdown.proximity == pytest.approx(0.5)
    assert scored.breakdown.price == pytest.approx(0.5)
    # 0.40*1.0 + 0.25*0.9 + 0.20*0.5 + 0.15*0.5
    assert scored.compatibility_score == pytest.approx(0.8)


def test_disliked_cuisine_scores_low(candidate):
    profile = DietaryProfile(cuisine_preferences={"fast_food": -1.0})
    scored = CompatibilityScorer().score(candidate("f", cuisines=("fast_food",)), profile)
    assert scored.breakdown.cuisine == 0.0


def test_scores_stay_in_bounds(candidate):
    scorer = CompatibilityScorer()
    profile = DietaryProfile(
        cuisine_preferences={"thai": -1.0},
        price_band=PriceBand.inexpensive,
    )
    far = candidate("far", distance=99_000.0, price=PriceBand.very_expensive, cuisines=("thai",))
    scored = scorer.score(far, profile, radius_meters=1000)
    assert 0.0 <= scored.compatibility_score <= 1.0
    assert scored.breakdown.proximity == 0.0
    assert scored.breakdown.price == 0.0


def test_scoring_is_deterministic(candidate):
    scorer = CompatibilityScorer()
    c = candidate("d", distance=321.0)
    profile = DietaryProfile(cuisine_preferences={"italian": 0.3})
    assert scorer.score(c, profile, 1500) == scorer.score(c, profile, 1500)


def test_sort_key_breaks_ties(candidate):
    scorer = CompatibilityScorer()
    profile = DietaryProfile()
    ties = [
        candidate("b", distance=100.0, rating=4.0),
        candidate("a", distance=100.0, rating=4.0),
        candidate("c", distance=100.0, rating=4.5),
    ]
    ranked = sorted(scorer.score_all(ties, profile, 1000), key=sort_key)
    assert [s.candidate.id for s in ranked] == ["c", "a", "b"]


def test_weights_must_sum_to_one():
    with pytest.raises(ValueError):
        ScoringWeights(dietary=0.5, cuisine=0.5, proximity=0.5, price=0.0)
    with pytest.raises(ValueError):
        ScoringWeights(dietary=1.2, cuisine=-0.2, proximity=0.0, price=0.0)


def test_custom_weights(candidate):
    config = ScoringConfig(weights=ScoringWeights(dietary=0.0, cuisine=0.0, proximity=1.0, price=0.0))
    scored = CompatibilityScorer(config).score(candidate("x", distance=250.0), DietaryProfile(), 1000)
    assert scored.compatibility_score == pytest.approx(0.75)
