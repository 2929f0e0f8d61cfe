"""
Geolocation progress: great-circle distance, percent complete and ETA.

Distances use the Haversine formula rather than road distance; the road
network only enters through the route service's duration estimate, which
is scaled to the remaining distance.  An ETA is never invented when that
estimate is missing.

Complexity: O(1) per call, O(n) for a path of n points.
"""

from __future__ import annotations

import math
from typing import TYPE_CHECKING, Iterable, Optional

if TYPE_CHECKING:
    from .entities import GeoLocation
    from .ports import RouteEstimate

EARTH_RADIUS_KM = 6_371.0


def haversine_km(
    lat1: float, lng1: float, lat2: float, lng2: float
) -> float:
    """Return the great-circle distance in **km** between two points."""
    lat1_r, lat2_r = math.radians(lat1), math.radians(lat2)
    dlat = math.radians(lat2 - lat1)
    dlng = math.radians(lng2 - lng1)

    a = (
        math.sin(dlat / 2) ** 2
        + math.cos(lat1_r) * math.cos(lat2_r) * math.sin(dlng / 2) ** 2
    )
    # Float error can push ``a`` marginally past 1 for antipodal points.
    return 2 * EARTH_RADIUS_KM * math.asin(math.sqrt(min(1.0, a)))


def distance_km(a: GeoLocation, b: GeoLocation) -> float:
    return haversine_km(a.latitude, a.longitude, b.latitude, b.longitude)


def path_length_km(points: Iterable[GeoLocation]) -> float:
    """Sum of the legs between consecutive points; 0 for fewer than two."""
    total = 0.0
    previous = None
    for point in points:
        if previous is not None:
            total += distance_km(previous, point)
        previous = point
    return total


def progress_percent(total_distance_km: float, remaining_distance_km: float) -> float:
    """Share of the route already covered, clamped to [0, 100]."""
    if total_distance_km <= 0:
        return 0.0
    covered = (total_distance_km - remaining_distance_km) / total_distance_km * 100
    return max(0.0, min(100.0, covered))


def estimated_remaining_minutes(
    remaining_distance_km: float, estimate: Optional[RouteEstimate]
) -> Optional[float]:
    """
    Scale the route service's duration for the whole route down to the
    remaining distance.  ``None`` when no estimate is available.
    """
    if estimate is None:
        return None
    if remaining_distance_km <= 0:
        return 0.0
    if estimate.distance_km <= 0:
        return estimate.duration_minutes
    share = min(1.0, remaining_distance_km / estimate.distance_km)
    return estimate.duration_minutes * share
