"""Great-circle distance between GPS coordinates."""

from __future__ import annotations

import math

from ..config import EARTH_RADIUS_M
from ..models import LatLon

__all__ = ["haversine_m", "distance_between"]


def haversine_m(
    lat1: float,
    lon1: float,
    lat2: float,
    lon2: float,
    *,
    radius_m: float = EARTH_RADIUS_M,
) -> float:
    """Return the Haversine distance in meters between two lat/lon points.

    Identical points return exactly ``0.0``.
    """

    if lat1 == lat2 and lon1 == lon2:
        return 0.0
    sin = math.sin
    cos = math.cos
    radians = math.radians
    lat1_rad = radians(lat1)
    lat2_rad = radians(lat2)
    delta_lat = lat2_rad - lat1_rad
    delta_lon = radians(lon2 - lon1)
    sin_half_lat = sin(delta_lat / 2.0)
    sin_half_lon = sin(delta_lon / 2.0)
    a = sin_half_lat**2 + cos(lat1_rad) * cos(lat2_rad) * sin_half_lon**2
    # Rounding can push near-antipodal points slightly past 1.
    a = min(1.0, max(0.0, a))
    c = 2.0 * math.atan2(math.sqrt(a), math.sqrt(1.0 - a))
    return radius_m * c


def distance_between(first: LatLon, second: LatLon) -> float:
    """Haversine distance between two ``(lat, lon)`` tuples."""

    return haversine_m(first[0], first[1], second[0], second[1])
