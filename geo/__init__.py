#Marks geo as a package.
#Re-exports the great-circle helpers and the live location cache so other
#modules import from geo without knowing internal file names.
#No business logic.

from .haversine import (
    BoundingBox,
    bounding_box,
    distance_km,
    distance_score,
    is_within_radius,
    validate_coordinates,
)
from .location_cache import InMemoryLocationCache, PositionReport

__all__ = [
    "BoundingBox",
    "InMemoryLocationCache",
    "PositionReport",
    "bounding_box",
    "distance_km",
    "distance_score",
    "is_within_radius",
    "validate_coordinates",
]
