"""Geospatial helper functions."""

from __future__ import annotations

import math
from typing import Sequence

from shapely.geometry import MultiPoint

from ..models.domain import Bounds, Coordinates

EARTH_RADIUS_KM = 6371.0


def haversine_km(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Compute distance between two coordinates using the Haversine formula."""

    phi1, phi2 = math.radians(lat1), math.radians(lat2)
    d_phi = math.radians(lat2 - lat1)
    d_lambda = math.radians(lon2 - lon1)

    a = math.sin(d_phi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(d_lambda / 2) ** 2
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))
    return EARTH_RADIUS_KM * c


def coverage_bounds(points: Sequence[Coordinates]) -> Bounds:
    """Return the bounding box of the given coordinates, all zero when empty."""

    if not points:
        return Bounds()
    # shapely works in (x, y) = (lng, lat)
    min_lng, min_lat, max_lng, max_lat = MultiPoint([(p.longitude, p.latitude) for p in points]).bounds
    return Bounds(min_lat=min_lat, max_lat=max_lat, min_lng=min_lng, max_lng=max_lng)


def centroid(points: Sequence[Coordinates]) -> Coordinates:
    if not points:
        return Coordinates(latitude=0.0, longitude=0.0)
    center = MultiPoint([(p.longitude, p.latitude) for p in points]).centroid
    return Coordinates(latitude=center.y, longitude=center.x)
