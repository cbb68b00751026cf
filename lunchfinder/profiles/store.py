from __future__ import annotations

import threading
from typing import Iterable, Protocol

from ..recommendations.models import (
    Allergen,
    AllergenKind,
    AllergenSeverity,
    Candidate,
    DietaryProfile,
    PriceBand,
    Restriction,
    RestrictionKind,
    RestrictionSeverity,
)


class ProfileNotFound(LookupError):
    def __init__(self, user_id: str) -> None:
        super().__init__(f"no dietary profile for user {user_id!r}")
        self.user_id = user_id


class ProfileStore(Protocol):
    def get_profile(self, user_id: str) -> DietaryProfile: ...


class BudgetStore(Protocol):
    def remaining_budget(self, user_id: str, period: str) -> float | None: ...


class InMemoryProfileStore:
    def __init__(self, profiles: dict[str, DietaryProfile] | None = None) -> None:
        self._profiles = dict(profiles or {})
        self._lock = threading.Lock()

    def get_profile(self, user_id: str) -> DietaryProfile:
        with self._lock:
            profile = self._profiles.get(user_id)
        if profile is None:
            raise ProfileNotFound(user_id)
        return profile

    def put_profile(self, user_id: str, profile: DietaryProfile) -> None:
        with self._lock:
            self._profiles[user_id] = profile


class InMemoryBudgetStore:
    def __init__(self) -> None:
        self._remaining: dict[tuple[str, str], float] = {}
        self._lock = threading.Lock()

    def set_remaining(self, user_id: str, period: str, amount: float) -> None:
        with self._lock:
            self._remaining[(user_id, period)] = amount

    def remaining_budget(self, user_id: str, period: str) -> float | None:
        with self._lock:
            return self._remaining.get((user_id, period))


class SafetyAnnotationStore:
    """Community-verified allergen and dietary facts per place id.

    When provider data and a community report disagree, the more restrictive
    answer (``False``) wins.
    """

    def __init__(self) -> None:
        self._allergens: dict[str, dict[AllergenKind, bool]] = {}
        self._dietary: dict[str, dict[RestrictionKind, bool]] = {}
        self._lock = threading.Lock()

    def verify_allergen(self, place_id: str, allergen: AllergenKind, safe: bool) -> None:
        with self._lock:
            self._allergens.setdefault(place_id, {})[allergen] = safe

    def verify_dietary(self, place_id: str, restriction: RestrictionKind, supported: bool) -> None:
        with self._lock:
            self._dietary.setdefault(place_id, {})[restriction] = supported

    def annotate(self, candidates: Iterable[Candidate]) -> list[Candidate]:
        with self._lock:
            allergens = {k: dict(v) for k, v in self._allergens.items()}
            dietary = {k: dict(v) for k, v in self._dietary.items()}
        out = []
        for c in candidates:
            extra_a = allergens.get(c.id)
            extra_d = dietary.get(c.id)
            if not extra_a and not extra_d:
                out.append(c)
                continue
            out.append(c.model_copy(update={
                "allergen_safety": _conservative(c.allergen_safety, extra_a),
                "dietary_options": _conservative(c.dietary_options, extra_d),
            }))
        return out


def _conservative(base: dict, extra: dict | None) -> dict:
    merged = dict(base)
    for key, value in (extra or {}).items():
        merged[key] = (merged[key] and value) if key in merged else value
    return merged


DEMO_USER_ID = "demo"


def seed_demo_data(profiles: InMemoryProfileStore, budgets: InMemoryBudgetStore) -> None:
    """Pre-seed a demo user for local development."""
    profiles.put_profile(DEMO_USER_ID, DietaryProfile(
        restrictions=(Restriction(kind=RestrictionKind.vegetarian, severity=RestrictionSeverity.informational),),
        allergens=(Allergen(kind=AllergenKind.peanut, severity=AllergenSeverity.severe),),
        cuisine_preferences={"italian": 0.8, "thai": 0.5, "fast_food": -0.6},
        price_band=PriceBand.moderate,
    ))
    budgets.set_remaining(DEMO_USER_ID, "week", 120.0)
