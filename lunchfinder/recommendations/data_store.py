from __future__ import annotations

from pathlib import Path

import pandas as pd

from .models import normalize_cuisine

REQUIRED_COLUMNS = ["id", "name", "lat", "lng", "price_level", "rating", "cuisines"]
_LIST_COLUMNS = ["cuisines", "dietary_yes", "dietary_no", "allergen_safe", "allergen_unsafe"]

_frames: dict[Path, pd.DataFrame] = {}


def _split(value: object, sep: str) -> list[str]:
    if not isinstance(value, str):
        return []
    return [normalize_cuisine(v) for v in value.split(sep) if v.strip()]


def _load(path: Path) -> pd.DataFrame:
    df = pd.read_csv(path)
    missing = [c for c in REQUIRED_COLUMNS if c not in df.columns]
    if missing:
        raise ValueError(f"dataset {path} is missing columns: {', '.join(missing)}")

    df["id"] = df["id"].astype(str)
    df["price_level"] = pd.to_numeric(df["price_level"], errors="coerce")
    df["rating"] = pd.to_numeric(df["rating"], errors="coerce").clip(0.0, 5.0)

    # Pre-parse list columns for matching
    for col in _LIST_COLUMNS:
        sep = "," if col == "cuisines" else ";"
        source = df[col] if col in df.columns else pd.Series("", index=df.index)
        df[f"{col}_list"] = source.apply(lambda s, sep=sep: _split(s, sep))

    if "open_now" not in df.columns:
        df["open_now"] = pd.NA

    return df.dropna(subset=["lat", "lng"]).reset_index(drop=True)


def get_dataframe(path: Path) -> pd.DataFrame:
    """Return the restaurant DataFrame for *path*, loading it on first call."""
    path = Path(path).resolve()
    if path not in _frames:
        _frames[path] = _load(path)
    return _frames[path]


def clear_dataframes() -> None:
    _frames.clear()
