from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone
from typing import Any

import pytest

from lunchfinder.analytics.store import EventStream
from lunchfinder.places.config import PlacesConfig
from lunchfinder.places.gateway import SearchGateway
from lunchfinder.profiles.store import InMemoryProfileStore
from lunchfinder.recommendations.cache import CacheStore
from lunchfinder.recommendations.facade import DiscoveryFacade
from lunchfinder.recommendations.models import (
    AllergenKind,
    Candidate,
    DietaryProfile,
    LatLng,
    PriceBand,
    RestrictionKind,
)
from lunchfinder.usage.config import UsageConfig
from lunchfinder.usage.governor import Governor
from lunchfinder.usage.ledger import UsageLedger


ORIGIN = LatLng(lat=37.7749, lng=-122.4194)


class FakeClock:
    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2026, 3, 2, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


class FakePlacesClient:
    """In-memory stand-in for the provider; raises queued errors first."""

    def __init__(
        self,
        places: list[dict[str, Any]] | None = None,
        errors: list[Exception] | None = None,
        delay: float = 0.0,
        cost_per_call: float = 0.035,
    ) -> None:
        self.places = list(places or [])
        self.errors = list(errors or [])
        self.delay = delay
        self.cost_per_call = cost_per_call
        self.calls: list[dict[str, Any]] = []
        self.closed = False

    async def nearby_search(self, origin, radius_meters, field_mask, included_types=()):
        self.calls.append({
            "origin": origin,
            "radius_meters": radius_meters,
            "field_mask": tuple(field_mask),
            "included_types": tuple(included_types),
        })
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.errors:
            raise self.errors.pop(0)
        return [dict(p) for p in self.places]

    async def aclose(self) -> None:
        self.closed = True


def make_place(
    place_id: str,
    lat_offset: float = 0.001,
    price: str = "PRICE_LEVEL_MODERATE",
    types: tuple[str, ...] = ("italian_restaurant",),
    rating: float = 4.0,
    allergen_safety: dict[str, bool] | None = None,
    open_now: bool | None = None,
) -> dict[str, Any]:
    place: dict[str, Any] = {
        "id": place_id,
        "displayName": {"text": place_id.title()},
        "location": {"latitude": ORIGIN.lat + lat_offset, "longitude": ORIGIN.lng},
        "priceLevel": price,
        "types": list(types) + ["restaurant"],
        "rating": rating,
    }
    if allergen_safety is not None:
        place["allergenSafety"] = allergen_safety
    if open_now is not None:
        place["currentOpeningHours"] = {"openNow": open_now}
    return place


def make_candidate(
    candidate_id: str,
    distance: float = 100.0,
    price: PriceBand | None = PriceBand.moderate,
    cuisines: tuple[str, ...] = ("italian",),
    rating: float | None = 4.0,
    dietary: dict[RestrictionKind, bool] | None = None,
    allergens: dict[AllergenKind, bool] | None = None,
) -> Candidate:
    return Candidate(
        id=candidate_id,
        name=candidate_id.title(),
        location=ORIGIN,
        price_level=price,
        cuisines=cuisines,
        rating=rating,
        dietary_options=dietary or {},
        allergen_safety=allergens or {},
        distance_meters=distance,
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def origin() -> LatLng:
    return ORIGIN


@pytest.fixture
def fake_client():
    return FakePlacesClient


@pytest.fixture
def place():
    return make_place


@pytest.fixture
def candidate():
    return make_candidate


@pytest.fixture
def sleeps() -> list[float]:
    return []


@pytest.fixture
def fake_sleep(sleeps):
    async def _sleep(delay: float) -> None:
        sleeps.append(delay)

    return _sleep


@pytest.fixture
def make_clock():
    return FakeClock


@pytest.fixture
def places(place):
    return [
        place("alpha", lat_offset=0.001, allergen_safety={"peanut": True}),
        place("bravo", lat_offset=0.002, allergen_safety={"peanut": True}),
        place("charlie", lat_offset=0.003, allergen_safety={"peanut": True}),
    ]


@pytest.fixture
def build(clock, fake_sleep):
    def _build(client, daily_cost_limit=5.0, max_rpm=60, profile=None, annotations=None):
        events = EventStream()
        profiles = InMemoryProfileStore({"u1": profile or DietaryProfile()})
        return DiscoveryFacade(
            gateway=SearchGateway(client, PlacesConfig(api_key=""), sleep=fake_sleep),
            governor=Governor(
                UsageLedger(UsageConfig(max_requests_per_minute=max_rpm, daily_cost_limit=daily_cost_limit), clock),
                events,
            ),
            cache=CacheStore(clock=clock),
            profiles=profiles,
            annotations=annotations,
            events=events,
        )

    return _build
