"""
Great-circle helpers shared by the spatial index.
"""

from math import radians, sin, cos, sqrt, atan2

EARTH_RADIUS_KM = 6371.0
KM_PER_DEGREE_LAT = 111.32


def haversine_km(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    """
    Great-circle distance between two points using the Haversine formula.

    Args:
        lat1, lng1: First point in decimal degrees
        lat2, lng2: Second point in decimal degrees

    Returns:
        Distance in kilometres
    """
    dlat = radians(lat2 - lat1)
    dlng = radians(lng2 - lng1)

    a = sin(dlat / 2) ** 2 + cos(radians(lat1)) * cos(radians(lat2)) * sin(dlng / 2) ** 2
    c = 2 * atan2(sqrt(a), sqrt(1 - a))
    return EARTH_RADIUS_KM * c


def degree_deltas(lat: float, radius_km: float) -> tuple[float, float]:
    """
    Half-widths in degrees of a box around `lat` covering `radius_km`.

    Longitude uses cos() of the query latitude only. Near the poles the
    longitude delta is capped at the full 180 degrees.
    """
    lat_delta = radius_km / KM_PER_DEGREE_LAT
    cos_lat = cos(radians(lat))
    if cos_lat <= 1e-12:
        return lat_delta, 180.0
    lng_delta = min(180.0, radius_km / (KM_PER_DEGREE_LAT * cos_lat))
    return lat_delta, lng_delta
