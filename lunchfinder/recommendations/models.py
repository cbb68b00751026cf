from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, field_validator

PRICE_ORDER = ["$", "$$", "$$$", "$$$$"]


def normalize_cuisine(value: str) -> str:
    """Canonical cuisine token: lowercase with underscores, e.g. "north_indian"."""
    return "_".join(value.strip().lower().replace("-", " ").split())


class PriceBand(str, Enum):
    inexpensive = "$"
    moderate = "$$"
    expensive = "$$$"
    very_expensive = "$$$$"

    @property
    def level(self) -> int:
        return PRICE_ORDER.index(self.value) + 1

    @classmethod
    def from_level(cls, level: int) -> PriceBand:
        return cls(PRICE_ORDER[max(1, min(4, level)) - 1])


# ── Dietary profile (owned by the profile collaborator) ─────────────────


class RestrictionKind(str, Enum):
    vegetarian = "vegetarian"
    vegan = "vegan"
    pescatarian = "pescatarian"
    gluten_free = "gluten_free"
    dairy_free = "dairy_free"
    halal = "halal"
    kosher = "kosher"


class RestrictionSeverity(str, Enum):
    informational = "informational"
    strict = "strict"


class AllergenKind(str, Enum):
    peanut = "peanut"
    tree_nut = "tree_nut"
    dairy = "dairy"
    egg = "egg"
    gluten = "gluten"
    soy = "soy"
    fish = "fish"
    shellfish = "shellfish"
    sesame = "sesame"


class AllergenSeverity(str, Enum):
    mild = "mild"
    severe = "severe"


class Restriction(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: RestrictionKind
    severity: RestrictionSeverity = RestrictionSeverity.informational


class Allergen(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: AllergenKind
    severity: AllergenSeverity = AllergenSeverity.severe


class DietaryProfile(BaseModel):
    model_config = ConfigDict(frozen=True)

    restrictions: tuple[Restriction, ...] = ()
    allergens: tuple[Allergen, ...] = ()
    cuisine_preferences: dict[str, float] = Field(
        default_factory=dict,
        description="Cuisine -> affinity in [-1, 1]",
    )
    price_band: PriceBand | None = None

    @field_validator("cuisine_preferences")
    @classmethod
    def _normalise_affinities(cls, value: dict[str, float]) -> dict[str, float]:
        out: dict[str, float] = {}
        for cuisine, affinity in value.items():
            if not -1.0 <= affinity <= 1.0:
                raise ValueError(f"affinity for {cuisine!r} must be within [-1, 1]")
            out[normalize_cuisine(cuisine)] = float(affinity)
        return out

    @property
    def severe_allergens(self) -> list[AllergenKind]:
        return [a.kind for a in self.allergens if a.severity is AllergenSeverity.severe]

    @property
    def strict_restrictions(self) -> list[RestrictionKind]:
        return [r.kind for r in self.restrictions if r.severity is RestrictionSeverity.strict]


# ── Search request ───────────────────────────────────────────────────────


class LatLng(BaseModel):
    model_config = ConfigDict(frozen=True)

    lat: float = Field(..., ge=-90.0, le=90.0)
    lng: float = Field(..., ge=-180.0, le=180.0)


class SearchFilters(BaseModel):
    """Raw user filters; part of the cache fingerprint."""

    model_config = ConfigDict(frozen=True)

    cuisines: tuple[str, ...] = ()
    max_price: PriceBand | None = None
    open_now: bool = False

    @field_validator("cuisines")
    @classmethod
    def _canonical_cuisines(cls, value: tuple[str, ...]) -> tuple[str, ...]:
        return tuple(sorted({normalize_cuisine(c) for c in value if c.strip()}))

    def canonical(self) -> dict:
        return {
            "cuisines": list(self.cuisines),
            "max_price": self.max_price.value if self.max_price else None,
            "open_now": self.open_now,
        }


class TimeOfDay(str, Enum):
    breakfast = "breakfast"
    lunch = "lunch"
    afternoon = "afternoon"
    dinner = "dinner"
    late_night = "late_night"


class Mood(str, Enum):
    quick_bite = "quick_bite"
    healthy = "healthy"
    comfort = "comfort"
    celebrate = "celebrate"
    adventurous = "adventurous"


class SearchContext(BaseModel):
    model_config = ConfigDict(frozen=True)

    time_of_day: TimeOfDay | None = None
    mood: Mood | None = None
    remaining_budget: float | None = Field(
        default=None, description="Remaining spend for the current budget period",
    )


class SearchRequest(BaseModel):
    model_config = ConfigDict(frozen=True)

    user_id: str = Field(..., min_length=1)
    origin: LatLng
    radius_meters: float = Field(default=1500.0, gt=0, le=50_000)
    filters: SearchFilters = Field(default_factory=SearchFilters)
    context: SearchContext = Field(default_factory=SearchContext)
    limit: int | None = Field(default=None, ge=1, le=20)


# ── Candidates and results ───────────────────────────────────────────────


class Candidate(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    location: LatLng
    price_level: PriceBand | None = None
    cuisines: tuple[str, ...] = ()
    rating: float | None = Field(default=None, ge=0.0, le=5.0)
    dietary_options: dict[RestrictionKind, bool] = Field(
        default_factory=dict,
        description="True when the restaurant accommodates the restriction, False when it cannot",
    )
    allergen_safety: dict[AllergenKind, bool] = Field(
        default_factory=dict,
        description="True when verified safe for the allergen, False when verified unsafe",
    )
    open_now: bool | None = None
    distance_meters: float | None = None


class SafetyVerdict(str, Enum):
    passed = "pass"
    excluded = "excluded"


class ScoreBreakdown(BaseModel):
    model_config = ConfigDict(frozen=True)

    dietary: float
    cuisine: float
    proximity: float
    price: float


class ScoredCandidate(BaseModel):
    model_config = ConfigDict(frozen=True)

    candidate: Candidate
    compatibility_score: float = Field(default=0.0, ge=0.0, le=1.0)
    breakdown: ScoreBreakdown | None = None
    safety_verdict: SafetyVerdict = SafetyVerdict.passed
    exclusion_reason: str | None = None

    @property
    def excluded(self) -> bool:
        return self.safety_verdict is SafetyVerdict.excluded


class FilterKind(str, Enum):
    cuisine = "cuisine"
    price = "price"
    radius = "radius"


class DataSource(str, Enum):
    live = "live"
    cache = "cache"
    stale_cache = "stale_cache"


class BudgetImpact(BaseModel):
    estimated_cost: float
    remaining_budget: float | None = None
    remaining_after: float | None = None
    share_of_remaining: float | None = None


class RankedItem(BaseModel):
    scored: ScoredCandidate
    rank: int
    rank_score: float
    context_adjustment: float = 0.0
    budget_impact: BudgetImpact | None = None


class RankedResult(BaseModel):
    items: list[RankedItem]
    degraded: bool = False
    stale: bool = False
    relaxations_applied: list[FilterKind] = Field(default_factory=list)
    data_source: DataSource = DataSource.live
    strategy: str = "neutral"
    cache_key: str | None = None
    total_candidates: int = 0
    excluded_count: int = 0
