"""
Covenant — Great-circle distance helpers.
"""

from __future__ import annotations

from math import asin, cos, radians, sin, sqrt

EARTH_RADIUS_KM = 6371.0

Coordinate = tuple[float, float]


def distance_km(coord_a: Coordinate, coord_b: Coordinate) -> float:
    """Haversine distance in kilometres between two (lat, lon) pairs."""
    lat1, lon1 = coord_a
    lat2, lon2 = coord_b
    lat1, lon1, lat2, lon2 = map(radians, (lat1, lon1, lat2, lon2))

    dlat = lat2 - lat1
    dlon = lon2 - lon1
    a = sin(dlat / 2) ** 2 + cos(lat1) * cos(lat2) * sin(dlon / 2) ** 2
    # Rounding can push ``a`` a hair past 1.0 for antipodal points.
    c = 2 * asin(sqrt(min(1.0, a)))
    return EARTH_RADIUS_KM * c


def within_radius(
    reference: Coordinate,
    candidate: Coordinate | None,
    radius_km: float,
) -> bool:
    """True when ``candidate`` lies within ``radius_km`` of ``reference``.

    A candidate without coordinates is never within range.
    """
    if candidate is None:
        return False
    return distance_km(reference, candidate) <= radius_km
