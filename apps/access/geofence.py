"""Geofence checks against a mess's registered coordinates."""
import math
from dataclasses import dataclass
from typing import Optional

from .exceptions import ConfigurationError

# Mean Earth radius in meters
EARTH_RADIUS_M = 6371000.0

LOCATION_REQUIRED = 'location_required'
OUT_OF_RANGE = 'out_of_range'


@dataclass(frozen=True)
class GeoPoint:
    """Immutable latitude/longitude pair in degrees."""

    latitude: float
    longitude: float

    def __post_init__(self) -> None:
        object.__setattr__(self, 'latitude', float(self.latitude))
        object.__setattr__(self, 'longitude', float(self.longitude))
        if not (math.isfinite(self.latitude) and math.isfinite(self.longitude)):
            raise ValueError("Coordinates must be finite numbers")
        if not -90 <= self.latitude <= 90:
            raise ValueError(f"Latitude out of range: {self.latitude}")
        if not -180 <= self.longitude <= 180:
            raise ValueError(f"Longitude out of range: {self.longitude}")

    @classmethod
    def from_mapping(cls, location) -> Optional['GeoPoint']:
        """Parse ``{'latitude': .., 'longitude': ..}``; None when missing or malformed."""
        if not isinstance(location, dict):
            return None
        latitude = location.get('latitude')
        longitude = location.get('longitude')
        if latitude is None or longitude is None or isinstance(latitude, bool) or isinstance(longitude, bool):
            return None
        try:
            return cls(latitude=latitude, longitude=longitude)
        except (TypeError, ValueError):
            return None

    def distance_to(self, other: 'GeoPoint') -> float:
        """Haversine great-circle distance in meters, rounded to the millimeter."""
        lat1 = math.radians(self.latitude)
        lon1 = math.radians(self.longitude)
        lat2 = math.radians(other.latitude)
        lon2 = math.radians(other.longitude)

        dlat = lat2 - lat1
        dlon = lon2 - lon1

        a = math.sin(dlat / 2) ** 2 + math.cos(lat1) * math.cos(lat2) * math.sin(dlon / 2) ** 2
        c = 2 * math.asin(min(1.0, math.sqrt(a)))

        return round(EARTH_RADIUS_M * c, 3)

    def as_dict(self):
        return {'latitude': self.latitude, 'longitude': self.longitude}


@dataclass(frozen=True)
class ProximityResult:
    ok: bool
    distance_meters: Optional[float]
    reason: Optional[str] = None
    point: Optional[GeoPoint] = None


class GeofenceValidator:

    def check_proximity(self, mess, presented_location) -> ProximityResult:
        """Accept iff the presented point is within the mess radius (inclusive).

        The computed distance is always returned so it can be stored for audit.
        A missing or malformed location is rejected outright.
        """
        if not mess.has_geofence:
            raise ConfigurationError(f"Mess {mess.code} has no registered coordinates")

        point = presented_location
        if not isinstance(point, GeoPoint):
            point = GeoPoint.from_mapping(presented_location)
        if point is None:
            return ProximityResult(ok=False, distance_meters=None, reason=LOCATION_REQUIRED)

        center = GeoPoint(latitude=mess.latitude, longitude=mess.longitude)
        distance = center.distance_to(point)
        if distance <= mess.radius_meters:
            return ProximityResult(ok=True, distance_meters=distance, point=point)
        return ProximityResult(ok=False, distance_meters=distance, reason=OUT_OF_RANGE, point=point)
