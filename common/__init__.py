"""
Shared building blocks for the bloodmatch packages.

Public API:
- Error taxonomy (MatchingError and subclasses)
- LatLon coordinate alias
"""

from .errors import (
    AuthorizationError,
    ConflictError,
    GeoDataMissingError,
    MatchExpiredError,
    MatchingError,
    NotFoundError,
    ScoringFailure,
    SettlementFailure,
    ValidationError,
)
from .types import LatLon, utc_now

__all__ = [
    "AuthorizationError",
    "ConflictError",
    "GeoDataMissingError",
    "LatLon",
    "MatchExpiredError",
    "MatchingError",
    "NotFoundError",
    "ScoringFailure",
    "SettlementFailure",
    "ValidationError",
    "utc_now",
]
