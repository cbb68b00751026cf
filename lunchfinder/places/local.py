from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Sequence

import numpy as np
import pandas as pd

from ..recommendations.data_store import get_dataframe
from ..recommendations.geo import haversine_meters
from ..recommendations.models import LatLng, PriceBand

logger = logging.getLogger(__name__)

_PRICE_LEVELS = {
    1: "PRICE_LEVEL_INEXPENSIVE",
    2: "PRICE_LEVEL_MODERATE",
    3: "PRICE_LEVEL_EXPENSIVE",
    4: "PRICE_LEVEL_VERY_EXPENSIVE",
}


class LocalPlacesClient:
    """Answers nearby searches from a local restaurant CSV.

    Used in development when no provider key is configured. Records come back
    in the provider's wire shape, trimmed to the requested field mask, plus the
    ``dietaryOptions`` and ``allergenSafety`` annotations the dataset carries.
    """

    cost_per_call = 0.0

    def __init__(self, dataset_path: Path, max_result_count: int = 20) -> None:
        self._path = Path(dataset_path)
        self._max_results = max_result_count
        logger.info("LocalPlacesClient serving %s", self._path)

    async def nearby_search(
        self,
        origin: LatLng,
        radius_meters: float,
        field_mask: Sequence[str],
        included_types: Sequence[str] = (),
    ) -> list[dict[str, Any]]:
        df = get_dataframe(self._path)
        if df.empty:
            return []

        distances = haversine_meters(
            origin.lat, origin.lng, df["lat"].to_numpy(), df["lng"].to_numpy(),
        )
        mask = distances <= radius_meters

        wanted = {t.removesuffix("_restaurant") for t in included_types}
        if wanted and "restaurant" not in wanted:
            mask &= df["cuisines_list"].apply(lambda cl: bool(wanted & set(cl))).to_numpy()

        order = np.argsort(distances, kind="stable")
        picked = [i for i in order if mask[i]][: self._max_results]
        fields = set(field_mask)
        return [self._to_place(df.iloc[i], fields) for i in picked]

    def _to_place(self, row: pd.Series, fields: set[str]) -> dict[str, Any]:
        place: dict[str, Any] = {
            "id": row["id"],
            "displayName": {"text": row["name"]},
            "location": {"latitude": float(row["lat"]), "longitude": float(row["lng"])},
            "types": [f"{c}_restaurant" for c in row["cuisines_list"]] + ["restaurant"],
        }
        if pd.notna(row["rating"]):
            place["rating"] = float(row["rating"])
        if pd.notna(row["price_level"]):
            level = int(row["price_level"])
            place["priceLevel"] = _PRICE_LEVELS.get(level, _PRICE_LEVELS[PriceBand.from_level(level).level])

        dietary = {k: True for k in row["dietary_yes_list"]}
        dietary.update({k: False for k in row["dietary_no_list"]})
        if "vegetarian" in dietary:
            place["servesVegetarianFood"] = dietary["vegetarian"]
        if dietary:
            place["dietaryOptions"] = dietary

        allergens = {k: True for k in row["allergen_safe_list"]}
        allergens.update({k: False for k in row["allergen_unsafe_list"]})
        if allergens:
            place["allergenSafety"] = allergens

        if "places.currentOpeningHours.openNow" in fields and pd.notna(row["open_now"]):
            place["currentOpeningHours"] = {"openNow": bool(row["open_now"])}

        return {k: v for k, v in place.items() if _in_mask(k, fields)}

    async def aclose(self) -> None:
        return None


def _in_mask(key: str, fields: set[str]) -> bool:
    if key in ("dietaryOptions", "allergenSafety"):
        return True
    return any(f == f"places.{key}" or f.startswith(f"places.{key}.") for f in fields)
