from __future__ import annotations

import logging
from typing import Any, Protocol, Sequence

import httpx

from ..recommendations.models import LatLng
from .config import DEFAULT_PLACES_CONFIG, PlacesConfig
from .errors import (
    InvalidConfiguration,
    NetworkError,
    PlacesError,
    QuotaExceeded,
    RateLimitExceeded,
)

logger = logging.getLogger(__name__)


class PlacesClient(Protocol):
    """The one upstream operation the gateway depends on."""

    cost_per_call: float

    async def nearby_search(
        self,
        origin: LatLng,
        radius_meters: float,
        field_mask: Sequence[str],
        included_types: Sequence[str] = (),
    ) -> list[dict[str, Any]]: ...

    async def aclose(self) -> None: ...


def _error_details(response: httpx.Response) -> tuple[str, str]:
    try:
        error = response.json().get("error", {})
    except ValueError:
        return "", response.text[:200]
    return str(error.get("status", "")), str(error.get("message", ""))


def _raise_for_status(response: httpx.Response) -> None:
    code = response.status_code
    if code < 400:
        return
    status, message = _error_details(response)
    lowered = message.lower()
    detail = f"Places API {code} {status}: {message}".strip()

    if code == 429:
        if "quota" in lowered or "per day" in lowered:
            raise QuotaExceeded(detail, status_code=code)
        raise RateLimitExceeded(detail, status_code=code)
    if code in (401, 403):
        if "quota" in lowered or "billing" in lowered:
            raise QuotaExceeded(detail, status_code=code)
        raise InvalidConfiguration(detail, status_code=code)
    if code == 400 and "api key" in lowered:
        raise InvalidConfiguration(detail, status_code=code)
    if code >= 500:
        raise NetworkError(detail, status_code=code)
    raise PlacesError(detail, status_code=code)


class GooglePlacesClient:
    """Places API (New) ``places:searchNearby`` over httpx."""

    def __init__(
        self,
        config: PlacesConfig = DEFAULT_PLACES_CONFIG,
        http: httpx.AsyncClient | None = None,
    ) -> None:
        self._config = config
        self._http = http or httpx.AsyncClient(
            base_url=config.base_url,
            timeout=httpx.Timeout(config.timeout),
        )
        self.cost_per_call = config.cost_per_call
        logger.info("GooglePlacesClient initialized: base_url=%s, timeout=%ss", config.base_url, config.timeout)

    async def nearby_search(
        self,
        origin: LatLng,
        radius_meters: float,
        field_mask: Sequence[str],
        included_types: Sequence[str] = (),
    ) -> list[dict[str, Any]]:
        body = {
            "includedTypes": list(included_types) or ["restaurant"],
            "maxResultCount": self._config.max_result_count,
            "rankPreference": "DISTANCE",
            "locationRestriction": {
                "circle": {
                    "center": {"latitude": origin.lat, "longitude": origin.lng},
                    "radius": min(float(radius_meters), 50_000.0),
                }
            },
        }
        headers = {
            "X-Goog-Api-Key": self._config.api_key,
            "X-Goog-FieldMask": ",".join(field_mask),
        }
        try:
            response = await self._http.post("/places:searchNearby", json=body, headers=headers)
        except httpx.TimeoutException as e:
            raise NetworkError(f"Places request timed out: {e}") from e
        except httpx.TransportError as e:
            raise NetworkError(f"Network error calling Places API: {e}") from e

        _raise_for_status(response)
        try:
            return list(response.json().get("places", []))
        except ValueError as e:
            raise NetworkError("Places API returned a malformed body") from e

    async def aclose(self) -> None:
        await self._http.aclose()
