"""
Purpose: Error taxonomy shared by every bloodmatch domain package.
What it does:
Defines one exception root (MatchingError) carrying a machine-readable code
and the HTTP status the REST layer maps it to.

Propagation rules:
- Per-candidate failures (GeoDataMissingError, ScoringFailure) are caught by the
  ranker and never abort a batch.
- Per-transition failures (ConflictError, AuthorizationError, NotFoundError)
  always reach the caller.
- SettlementFailure leaves the match ACCEPTED so settlement can be retried.
"""

from __future__ import annotations


class MatchingError(Exception):
    """Base class for every error raised by the matching core."""

    code = "MATCHING_ERROR"
    status_code = 500

    def __init__(self, message: str = ""):
        super().__init__(message or self.code)
        self.message = message or self.code

    def to_dict(self) -> dict:
        return {"code": self.code, "error": self.message}


class NotFoundError(MatchingError):
    """Unknown request or match, or a request that is no longer open."""

    code = "NOT_FOUND"
    status_code = 404


class ValidationError(MatchingError):
    """Malformed input or a record that does not match its schema."""

    code = "VALIDATION_ERROR"
    status_code = 400


class ConflictError(MatchingError):
    """A transition was attempted on a match that was already actioned."""

    code = "CONFLICT"
    status_code = 409


class MatchExpiredError(ConflictError):
    """The offer window closed before the donor responded."""

    code = "MATCH_EXPIRED"


class AuthorizationError(MatchingError):
    """The acting donor is not the donor the match was offered to."""

    code = "FORBIDDEN"
    status_code = 403


class GeoDataMissingError(MatchingError):
    """Candidate has no usable live position. Internal skip, never surfaced."""

    code = "GEO_DATA_MISSING"
    status_code = 422


class ScoringFailure(MatchingError):
    """Model inference failed for one candidate."""

    code = "SCORING_FAILURE"
    status_code = 500


class SettlementFailure(MatchingError):
    """The external settlement port could not record the donation."""

    code = "SETTLEMENT_FAILURE"
    status_code = 502
