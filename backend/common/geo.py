"""
Geo Utilities - Pure distance and containment math.

Haversine great-circle distance in meters and a radius check built on it.
No I/O, no state.
"""

import math
from dataclasses import dataclass

# Mean Earth radius in meters
EARTH_RADIUS_M = 6_371_000


@dataclass(frozen=True)
class Coordinates:
    """A latitude/longitude pair in decimal degrees."""
    latitude: float
    longitude: float

    def __post_init__(self):
        if not -90.0 <= self.latitude <= 90.0:
            raise ValueError(f"latitude out of range: {self.latitude}")
        if not -180.0 <= self.longitude <= 180.0:
            raise ValueError(f"longitude out of range: {self.longitude}")

    def to_dict(self) -> dict:
        return {"latitude": self.latitude, "longitude": self.longitude}


def distance(a: Coordinates, b: Coordinates) -> float:
    """Great-circle distance between two coordinates in meters."""
    lat1_rad = math.radians(a.latitude)
    lat2_rad = math.radians(b.latitude)
    delta_lat = math.radians(b.latitude - a.latitude)
    delta_lon = math.radians(b.longitude - a.longitude)

    h = math.sin(delta_lat / 2) ** 2 + math.cos(lat1_rad) * math.cos(lat2_rad) * math.sin(delta_lon / 2) ** 2
    # Clamp rounding noise so antipodal points stay inside asin's domain
    return 2 * EARTH_RADIUS_M * math.asin(math.sqrt(min(1.0, h)))


def is_within(a: Coordinates, b: Coordinates, threshold_meters: float) -> bool:
    """True if `b` lies within `threshold_meters` of `a`."""
    return distance(a, b) <= threshold_meters
