from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, HTTPException
from pydantic import BaseModel, Field

from .analytics.aggregator import compute_analytics
from .places.config import DEFAULT_PLACES_CONFIG
from .places.factory import validate_configuration
from .profiles.store import (
    InMemoryBudgetStore,
    InMemoryProfileStore,
    ProfileNotFound,
    SafetyAnnotationStore,
    seed_demo_data,
)
from .recommendations.errors import DiscoveryFailed, RequestSuperseded
from .recommendations.facade import DiscoveryFacade, build_facade
from .recommendations.models import (
    AllergenKind,
    LatLng,
    Mood,
    RankedResult,
    RestrictionKind,
    SearchContext,
    SearchFilters,
    SearchRequest,
    TimeOfDay,
)
from .usage.models import UsageStatus

logger = logging.getLogger(__name__)

_profiles = InMemoryProfileStore()
_budgets = InMemoryBudgetStore()
_annotations = SafetyAnnotationStore()
seed_demo_data(_profiles, _budgets)

_facade: DiscoveryFacade | None = None


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Build the facade before serving; ``InvalidConfiguration`` aborts startup."""
    global _facade
    report = validate_configuration(DEFAULT_PLACES_CONFIG)
    for warning in report["warnings"]:
        logger.warning(warning)
    _facade = build_facade(places_config=DEFAULT_PLACES_CONFIG, profiles=_profiles, annotations=_annotations)
    logger.info("Discovery facade ready (%s)", report["environment"])
    try:
        yield
    finally:
        await _facade.aclose()
        _facade = None


app = FastAPI(title="Lunch Discovery API", version="1.0.0", lifespan=lifespan)


def get_facade() -> DiscoveryFacade:
    if _facade is None:
        raise HTTPException(status_code=503, detail="Service is not started")
    return _facade


def get_budgets() -> InMemoryBudgetStore:
    return _budgets


def get_annotations() -> SafetyAnnotationStore:
    return _annotations


class DiscoverBody(BaseModel):
    user_id: str = Field(..., min_length=1)
    origin: LatLng
    radius_meters: float = Field(default=1500.0, gt=0, le=50_000)
    filters: SearchFilters = Field(default_factory=SearchFilters)
    time_of_day: TimeOfDay | None = None
    mood: Mood | None = None
    budget_period: str = "week"
    limit: int | None = Field(default=None, ge=1, le=20)
    slot: str | None = None
    force_refresh: bool = False


class RefreshBody(BaseModel):
    key: str = Field(..., min_length=1)


class AnnotationBody(BaseModel):
    place_id: str = Field(..., min_length=1)
    allergen: AllergenKind | None = None
    restriction: RestrictionKind | None = None
    safe: bool


# ── Public endpoints ─────────────────────────────────────────────────────


@app.get("/health")
def health() -> dict[str, str]:
    return {"status": "ok"}


@app.get("/config")
def config_report() -> dict:
    return validate_configuration(DEFAULT_PLACES_CONFIG)


@app.post("/discover", response_model=RankedResult)
async def discover(
    body: DiscoverBody,
    facade: DiscoveryFacade = Depends(get_facade),
    budgets: InMemoryBudgetStore = Depends(get_budgets),
) -> RankedResult:
    request = SearchRequest(
        user_id=body.user_id,
        origin=body.origin,
        radius_meters=body.radius_meters,
        filters=body.filters,
        context=SearchContext(
            time_of_day=body.time_of_day,
            mood=body.mood,
            remaining_budget=budgets.remaining_budget(body.user_id, body.budget_period),
        ),
        limit=body.limit,
    )
    try:
        return await facade.discover(request, slot=body.slot, force_refresh=body.force_refresh)
    except ProfileNotFound as e:
        raise HTTPException(status_code=404, detail=str(e))
    except RequestSuperseded as e:
        raise HTTPException(status_code=409, detail=str(e))
    except DiscoveryFailed as e:
        raise HTTPException(
            status_code=503,
            detail={"reason": e.reason.value, "message": e.detail},
        )


# ── Monitoring endpoints ─────────────────────────────────────────────────


@app.get("/usage", response_model=UsageStatus)
def usage(facade: DiscoveryFacade = Depends(get_facade)) -> UsageStatus:
    return facade.usage_status()


@app.post("/cache/refresh")
def cache_refresh(body: RefreshBody, facade: DiscoveryFacade = Depends(get_facade)) -> dict:
    if not facade.refresh(body.key):
        raise HTTPException(status_code=404, detail=f"No cache entry for key {body.key}")
    return {"status": "refreshed", "key": body.key}


@app.delete("/cache/{key}")
def cache_invalidate(key: str, facade: DiscoveryFacade = Depends(get_facade)) -> dict:
    if not facade.invalidate(key):
        raise HTTPException(status_code=404, detail=f"No cache entry for key {key}")
    return {"status": "invalidated", "key": key}


@app.post("/cache/purge")
def cache_purge(facade: DiscoveryFacade = Depends(get_facade)) -> dict:
    return {"status": "purged", "removed": facade.purge_cache()}


@app.get("/cache/stats")
def cache_stats(facade: DiscoveryFacade = Depends(get_facade)) -> dict:
    return facade.cache.stats()


@app.get("/analytics")
def analytics(facade: DiscoveryFacade = Depends(get_facade)) -> dict:
    return compute_analytics(facade.events.events())


@app.get("/events")
def events(
    type: str | None = None,
    advisories_only: bool = False,
    facade: DiscoveryFacade = Depends(get_facade),
) -> list[dict]:
    if advisories_only:
        return facade.events.advisories()
    return facade.events.events(type)


@app.post("/annotations")
def annotate(
    body: AnnotationBody,
    annotations: SafetyAnnotationStore = Depends(get_annotations),
) -> dict:
    """Record a community-verified allergen or dietary fact for a place."""
    if (body.allergen is None) == (body.restriction is None):
        raise HTTPException(status_code=422, detail="Give exactly one of allergen or restriction")
    if body.allergen is not None:
        annotations.verify_allergen(body.place_id, body.allergen, body.safe)
    else:
        annotations.verify_dietary(body.place_id, body.restriction, body.safe)
    return {"status": "recorded", "place_id": body.place_id}
