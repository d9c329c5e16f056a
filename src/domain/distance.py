"""
Distance calculation using the Haversine formula.

Handoff proximity is judged on great-circle distance between the guest's
reported position and the vehicle's registered parking spot.  At handoff
scale (tens of metres) the spherical-earth error is far below typical
phone GPS accuracy, so no ellipsoidal correction is applied.

Complexity: O(1) per call.
"""

import math

EARTH_RADIUS_M = 6_371_000.0


def haversine_m(
    lat1: float, lng1: float, lat2: float, lng2: float
) -> float:
    """Return the great-circle distance in **metres** between two points."""
    lat1_r, lat2_r = math.radians(lat1), math.radians(lat2)
    dlat = math.radians(lat2 - lat1)
    dlng = math.radians(lng2 - lng1)

    a = (
        math.sin(dlat / 2) ** 2
        + math.cos(lat1_r) * math.cos(lat2_r) * math.sin(dlng / 2) ** 2
    )
    return 2 * EARTH_RADIUS_M * math.asin(math.sqrt(a))


def within_radius(distance_m: float, radius_m: float) -> bool:
    """Inclusive radius check: a guest exactly on the boundary is verified."""
    return distance_m <= radius_m
