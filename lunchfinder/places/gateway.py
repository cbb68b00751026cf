from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable

from pydantic import ValidationError

from ..recommendations.models import (
    AllergenKind,
    Candidate,
    LatLng,
    PriceBand,
    RestrictionKind,
)
from .client import PlacesClient
from .config import DEFAULT_PLACES_CONFIG, PlacesConfig
from .errors import NetworkError, RateLimitExceeded

logger = logging.getLogger(__name__)

BASE_FIELD_MASK: tuple[str, ...] = (
    "places.id",
    "places.displayName",
    "places.location",
    "places.priceLevel",
    "places.types",
    "places.rating",
    "places.servesVegetarianFood",
)
OPEN_NOW_FIELD = "places.currentOpeningHours.openNow"

# Cuisine tokens with a matching provider place type ("<cuisine>_restaurant").
PROVIDER_CUISINES = frozenset({
    "afghani", "african", "american", "asian", "barbecue", "brazilian", "breakfast",
    "brunch", "chinese", "fast_food", "french", "greek", "hamburger", "indian",
    "indonesian", "italian", "japanese", "korean", "lebanese", "mediterranean",
    "mexican", "middle_eastern", "pizza", "ramen", "seafood", "spanish", "sushi",
    "thai", "turkish", "vegan", "vegetarian", "vietnamese",
})

_TYPE_ALIASES = {"steak_house": "steak", "sandwich_shop": "sandwich", "cafe": "cafe"}

_PRICE_LEVELS = {
    "PRICE_LEVEL_FREE": PriceBand.inexpensive,
    "PRICE_LEVEL_INEXPENSIVE": PriceBand.inexpensive,
    "PRICE_LEVEL_MODERATE": PriceBand.moderate,
    "PRICE_LEVEL_EXPENSIVE": PriceBand.expensive,
    "PRICE_LEVEL_VERY_EXPENSIVE": PriceBand.very_expensive,
}


@dataclass(frozen=True)
class PlacesQuery:
    origin: LatLng
    radius_meters: float
    cuisines: tuple[str, ...] = ()
    open_now: bool = False

    @property
    def field_mask(self) -> tuple[str, ...]:
        if self.open_now:
            return BASE_FIELD_MASK + (OPEN_NOW_FIELD,)
        return BASE_FIELD_MASK

    @property
    def included_types(self) -> tuple[str, ...]:
        # Narrow the provider query only when every requested cuisine maps to a type.
        if not self.cuisines or any(c not in PROVIDER_CUISINES for c in self.cuisines):
            return ()
        return tuple(f"{c}_restaurant" for c in self.cuisines)


def _cuisines_from_types(types: list[str]) -> tuple[str, ...]:
    tags: list[str] = []
    for t in types:
        if t.endswith("_restaurant"):
            tags.append(t[: -len("_restaurant")])
        elif t in _TYPE_ALIASES:
            tags.append(_TYPE_ALIASES[t])
    return tuple(dict.fromkeys(tags))


def _known(enum_cls, raw: dict[str, Any] | None) -> dict:
    out = {}
    for key, value in (raw or {}).items():
        try:
            out[enum_cls(key)] = bool(value)
        except ValueError:
            continue
    return out


def to_candidate(place: dict[str, Any]) -> Candidate | None:
    """Map one provider record into a Candidate, or None when unusable."""
    location = place.get("location") or {}
    try:
        dietary = _known(RestrictionKind, place.get("dietaryOptions"))
        if "servesVegetarianFood" in place:
            dietary.setdefault(RestrictionKind.vegetarian, bool(place["servesVegetarianFood"]))
        opening = place.get("currentOpeningHours") or {}
        return Candidate(
            id=str(place["id"]),
            name=(place.get("displayName") or {}).get("text", ""),
            location=LatLng(lat=location["latitude"], lng=location["longitude"]),
            price_level=_PRICE_LEVELS.get(place.get("priceLevel", "")),
            cuisines=_cuisines_from_types(place.get("types", [])),
            rating=place.get("rating"),
            dietary_options=dietary,
            allergen_safety=_known(AllergenKind, place.get("allergenSafety")),
            open_now=opening.get("openNow"),
        )
    except (KeyError, TypeError, ValidationError):
        logger.warning("Skipping malformed place record %r", place.get("id"))
        return None


class SearchGateway:
    """Live fetches against the places provider.

    ``NetworkError`` (including per-attempt timeouts) is retried up to
    ``max_retries`` times with exponential backoff. Quota, rate and
    configuration errors propagate immediately.
    """

    def __init__(
        self,
        client: PlacesClient,
        config: PlacesConfig = DEFAULT_PLACES_CONFIG,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._client = client
        self._config = config
        self._sleep = sleep

    @property
    def estimated_cost(self) -> float:
        return self._client.cost_per_call

    async def fetch(
        self,
        query: PlacesQuery,
        allow_retry: Callable[[], bool] | None = None,
    ) -> list[Candidate]:
        delay = self._config.backoff_base
        attempt = 0
        while True:
            try:
                raw = await asyncio.wait_for(
                    self._client.nearby_search(
                        query.origin,
                        query.radius_meters,
                        query.field_mask,
                        query.included_types,
                    ),
                    timeout=self._config.timeout,
                )
                break
            except (NetworkError, asyncio.TimeoutError) as e:
                error = e if isinstance(e, NetworkError) else NetworkError(
                    f"Places request timed out after {self._config.timeout}s"
                )
                if attempt >= self._config.max_retries:
                    logger.error("Places fetch failed after %d attempts: %s", attempt + 1, error)
                    if error is e:
                        raise
                    raise error from e
                if allow_retry is not None and not allow_retry():
                    raise RateLimitExceeded("Rate window full, retry abandoned") from e
                attempt += 1
                logger.warning(
                    "Places fetch failed (%s), retry %d/%d in %.2fs",
                    error, attempt, self._config.max_retries, delay,
                )
                await self._sleep(delay)
                delay = min(delay * 2, self._config.backoff_cap)

        candidates = [c for c in (to_candidate(p) for p in raw) if c is not None]
        if query.open_now:
            candidates = [c for c in candidates if c.open_now is not False]
        logger.info("Places fetch returned %d candidates", len(candidates))
        return candidates

    async def aclose(self) -> None:
        await self._client.aclose()
