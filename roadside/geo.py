"""
Great-circle distance between two coordinates.

Uses the haversine formula on a sphere of radius 6371 km. Coordinates outside
[-90, 90] latitude or [-180, 180] longitude are rejected with ValueError
rather than clamped, so a bad stored location can never look "nearby".
"""

import math

EARTH_RADIUS_KM = 6371.0


def validate_coordinates(lat: float, lon: float) -> None:
    """Raise ValueError unless (lat, lon) is a finite, in-range coordinate."""
    if math.isnan(lat) or not -90.0 <= lat <= 90.0:
        raise ValueError(f"latitude {lat} is outside [-90, 90]")
    if math.isnan(lon) or not -180.0 <= lon <= 180.0:
        raise ValueError(f"longitude {lon} is outside [-180, 180]")


def haversine_distance(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Distance in kilometres between (lat1, lon1) and (lat2, lon2)."""
    validate_coordinates(lat1, lon1)
    validate_coordinates(lat2, lon2)

    phi1, phi2 = math.radians(lat1), math.radians(lat2)
    d_phi = math.radians(lat2 - lat1)
    d_lambda = math.radians(lon2 - lon1)

    a = (
        math.sin(d_phi / 2) ** 2
        + math.cos(phi1) * math.cos(phi2) * math.sin(d_lambda / 2) ** 2
    )
    # Float rounding can push a just past 1 for antipodal points
    a = min(a, 1.0)
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))
    return EARTH_RADIUS_KM * c
