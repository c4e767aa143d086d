"""Great-circle distance helpers."""

import math
from typing import Final, NamedTuple

EARTH_RADIUS_METERS: Final = 6371000

# Meters per degree of latitude (constant on a sphere)
_METERS_PER_DEGREE_LAT: Final = math.pi * EARTH_RADIUS_METERS / 180


class BoundingBox(NamedTuple):
    """Latitude/longitude box enclosing a circle, for index-friendly prefiltering.

    A box crossing the antimeridian has ``min_lon > max_lon``; its longitude
    span is ``[min_lon, 180] + [-180, max_lon]``.
    """

    min_lat: float
    max_lat: float
    min_lon: float
    max_lon: float

    @property
    def wraps_antimeridian(self) -> bool:
        return self.min_lon > self.max_lon

    def longitude_ranges(self) -> list[tuple[float, float]]:
        """Closed longitude intervals covered by the box, in query order."""
        if self.wraps_antimeridian:
            return [(self.min_lon, 180.0), (-180.0, self.max_lon)]
        return [(self.min_lon, self.max_lon)]


def haversine_distance(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Calculate distance between two coordinates in meters.

    Args:
        lat1, lon1: First coordinate.
        lat2, lon2: Second coordinate.

    Returns:
        Distance in meters.
    """
    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    delta_phi = math.radians(lat2 - lat1)
    delta_lambda = math.radians(lon2 - lon1)

    a = (
        math.sin(delta_phi / 2) ** 2
        + math.cos(phi1) * math.cos(phi2) * math.sin(delta_lambda / 2) ** 2
    )
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))

    return EARTH_RADIUS_METERS * c


def bounding_box(lat: float, lon: float, radius_meters: float) -> BoundingBox:
    """Box that contains every point within ``radius_meters`` of (lat, lon).

    The box is a superset of the circle; callers must still apply the exact
    haversine check. When the circle reaches a pole the longitude span is
    the full range. Near ±180° the box wraps across the antimeridian.
    """
    # 1% slack covers the cap bulging past the centre latitude
    delta_lat = radius_meters / _METERS_PER_DEGREE_LAT * 1.01
    min_lat = lat - delta_lat
    max_lat = lat + delta_lat
    if min_lat <= -90.0 or max_lat >= 90.0:
        return BoundingBox(max(min_lat, -90.0), min(max_lat, 90.0), -180.0, 180.0)

    delta_lon = delta_lat / math.cos(math.radians(lat))
    if delta_lon >= 180.0:
        return BoundingBox(min_lat, max_lat, -180.0, 180.0)

    min_lon = lon - delta_lon
    max_lon = lon + delta_lon
    if min_lon < -180.0:
        min_lon += 360.0
    elif max_lon > 180.0:
        max_lon -= 360.0
    return BoundingBox(min_lat, max_lat, min_lon, max_lon)
