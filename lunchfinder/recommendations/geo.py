from __future__ import annotations

import numpy as np

from .models import LatLng

EARTH_RADIUS_METERS = 6_371_008.8


def haversine_meters(lat1, lng1, lat2, lng2):
    """Great-circle distance in meters; accepts scalars or numpy arrays."""
    lat1, lng1, lat2, lng2 = map(np.radians, (lat1, lng1, lat2, lng2))
    dlat = lat2 - lat1
    dlng = lng2 - lng1
    a = np.sin(dlat / 2.0) ** 2 + np.cos(lat1) * np.cos(lat2) * np.sin(dlng / 2.0) ** 2
    return 2.0 * EARTH_RADIUS_METERS * np.arcsin(np.sqrt(np.clip(a, 0.0, 1.0)))


def distance_meters(a: LatLng, b: LatLng) -> float:
    return float(haversine_meters(a.lat, a.lng, b.lat, b.lng))
