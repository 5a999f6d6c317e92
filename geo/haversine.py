#Purpose: Great-circle geofencing for donor candidates.
#Builds "eligible by distance" decisions for the ranking pipeline.
#Typical responsibilities:
#Given request origin + donor live position -> compute haversine distance (km)
#Apply the request's search radius
#Exclude donors with no known position (never default them to distance 0)
#Output: distance in km, or an inclusion decision. Pure functions, no I/O.

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Optional

from common.errors import GeoDataMissingError, ValidationError
from common.types import LatLon

EARTH_RADIUS_KM = 6371.0

# widens the prefilter box so float rounding never drops an edge point
BOX_MARGIN_DEGREES = 1e-9


@dataclass(frozen=True)
class BoundingBox:
    """
    Coarse rectangular prefilter around a point.
    Used to narrow database queries; the haversine check stays authoritative.
    """
    min_lat: float
    max_lat: float
    min_lon: float
    max_lon: float

    def contains(self, point: LatLon) -> bool:
        lat, lon = point
        return self.min_lat <= lat <= self.max_lat and self.min_lon <= lon <= self.max_lon


def validate_coordinates(point: Optional[LatLon]) -> LatLon:
    """
    Returns (lat, lon) as floats or raises.
    None -> GeoDataMissingError, out-of-range / non-finite -> ValidationError.
    """
    if point is None:
        raise GeoDataMissingError("no position available")

    lat, lon = float(point[0]), float(point[1])
    if not (math.isfinite(lat) and math.isfinite(lon)):
        raise ValidationError(f"non-finite coordinates: {point!r}")
    if not -90.0 <= lat <= 90.0 or not -180.0 <= lon <= 180.0:
        raise ValidationError(f"coordinates out of range: {point!r}")
    return lat, lon


def distance_km(a: Optional[LatLon], b: Optional[LatLon]) -> float:
    """
    Haversine distance on a spherical Earth (mean radius 6371 km).
    A missing position on either side yields +inf so it can never pass a radius check.
    """
    if a is None or b is None:
        return math.inf

    lat1, lon1 = validate_coordinates(a)
    lat2, lon2 = validate_coordinates(b)

    d_lat = math.radians(lat2 - lat1)
    d_lon = math.radians(lon2 - lon1)

    h = (
        math.sin(d_lat / 2) ** 2
        + math.cos(math.radians(lat1)) * math.cos(math.radians(lat2)) * math.sin(d_lon / 2) ** 2
    )
    # clamp for float drift on antipodal points
    h = min(1.0, max(0.0, h))
    return 2 * EARTH_RADIUS_KM * math.atan2(math.sqrt(h), math.sqrt(1 - h))


def is_within_radius(origin: Optional[LatLon], point: Optional[LatLon], radius_km: float) -> bool:
    """
    True when point lies within radius_km of origin (inclusive).
    Fail closed: unknown positions are outside every radius.
    """
    if origin is None or point is None:
        return False
    if radius_km < 0:
        raise ValidationError("radius_km must be >= 0")
    return distance_km(origin, point) <= radius_km


def distance_score(distance: float, radius_km: float) -> float:
    """
    Normalized proximity in [0, 1]: 1 - distance/radius.
    A donor on the request origin scores 1.0, one on the radius edge 0.0.
    """
    if radius_km <= 0 or not math.isfinite(distance):
        return 0.0
    return max(0.0, min(1.0, 1.0 - distance / radius_km))


def bounding_box(center: LatLon, radius_km: float) -> BoundingBox:
    """
    Smallest lat/lon box holding every point within radius_km of center on the
    same sphere distance_km uses, so the box never excludes an in-radius point.
    Circles reaching a pole or crossing the antimeridian get the full longitude range.
    """
    lat, lon = validate_coordinates(center)
    if radius_km < 0:
        raise ValidationError("radius_km must be >= 0")

    angular = radius_km / EARTH_RADIUS_KM
    lat_offset = math.degrees(angular) + BOX_MARGIN_DEGREES
    min_lat = lat - lat_offset
    max_lat = lat + lat_offset

    if min_lat <= -90.0 or max_lat >= 90.0:
        return BoundingBox(max(-90.0, min_lat), min(90.0, max_lat), -180.0, 180.0)

    # widest longitude reach of the circle, attained away from the center latitude
    ratio = math.sin(angular) / math.cos(math.radians(lat))
    lon_offset = math.degrees(math.asin(min(1.0, ratio))) + BOX_MARGIN_DEGREES

    if lon - lon_offset < -180.0 or lon + lon_offset > 180.0:
        return BoundingBox(min_lat, max_lat, -180.0, 180.0)

    return BoundingBox(min_lat, max_lat, lon - lon_offset, lon + lon_offset)
