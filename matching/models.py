"""
Purpose: Domain models for the matching capability.
What it does:
- FeatureVector: the fixed, ordered, normalised inputs of a scoring model
- MatchRecord: one proposed donor <-> request pairing with its own lifecycle
- MatchOffer: what the ranker hands back (record + ranking diagnostics)

Defines enums/constants:
- MatchStatus = PENDING | ACCEPTED | REJECTED | COMPLETED | EXPIRED

Rule: No store access, no scoring logic. Models and validation only.
"""
from __future__ import annotations

import math
from dataclasses import astuple, dataclass, fields, replace
from datetime import datetime, timedelta
from enum import Enum
from typing import List, Optional, Sequence
import uuid

from common.errors import ValidationError


class MatchStatus(str, Enum):
    PENDING = "PENDING"
    ACCEPTED = "ACCEPTED"
    REJECTED = "REJECTED"
    COMPLETED = "COMPLETED"
    EXPIRED = "EXPIRED"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES

    @property
    def holds_request(self) -> bool:
        """ACCEPTED/COMPLETED: this match owns its request."""
        return self in (MatchStatus.ACCEPTED, MatchStatus.COMPLETED)


TERMINAL_STATUSES = frozenset({MatchStatus.REJECTED, MatchStatus.EXPIRED, MatchStatus.COMPLETED})


def _unit(name: str, value: float) -> float:
    value = float(value)
    if not math.isfinite(value) or not 0.0 <= value <= 1.0:
        raise ValidationError(f"{name} must be within [0, 1], got {value!r}")
    return value


@dataclass(frozen=True)
class FeatureVector:
    """
    Model input for one (request, candidate) pair. Field order is the
    column order a trained model was fitted on; do not reorder.
    """
    blood_type_compatibility: float
    rh_compatibility: float
    reputation_score: float
    availability: float
    success_rate: float
    response_time_score: float
    recency_penalty: float
    urgency_weight: float
    fraud_risk_inverse: float
    verification_bonus: float

    def __post_init__(self):
        for f in fields(self):
            object.__setattr__(self, f.name, _unit(f.name, getattr(self, f.name)))

    def as_list(self) -> List[float]:
        return list(astuple(self))

    @classmethod
    def from_sequence(cls, values: Sequence[float]) -> FeatureVector:
        """Schema check for raw inbound rows: wrong length is rejected, never padded."""
        if len(values) != len(FEATURE_NAMES):
            raise ValidationError(f"expected {len(FEATURE_NAMES)} features, got {len(values)}")
        return cls(*values)


FEATURE_NAMES = tuple(f.name for f in fields(FeatureVector))


@dataclass(frozen=True)
class MatchRecord:
    """
    Audit-trail row for an offer. Created by the ranker, mutated only by the
    lifecycle manager (through store CAS), never deleted.
    """
    id: str
    request_id: str
    donor_id: str

    # per-factor scores, each in [0, 1]
    compatibility_score: float
    distance_score: float
    reputation_score: float
    availability_score: float
    response_time_score: float
    fraud_risk_score: float
    overall_score: float

    offered_at: datetime
    expires_at: datetime
    status: MatchStatus = MatchStatus.PENDING
    responded_at: Optional[datetime] = None

    def __post_init__(self):
        for name in (
            "compatibility_score",
            "distance_score",
            "reputation_score",
            "availability_score",
            "response_time_score",
            "fraud_risk_score",
            "overall_score",
        ):
            object.__setattr__(self, name, _unit(name, getattr(self, name)))
        try:
            object.__setattr__(self, "status", MatchStatus(self.status))
        except ValueError as exc:
            raise ValidationError(str(exc)) from exc
        if self.expires_at < self.offered_at:
            raise ValidationError("expires_at must not precede offered_at")

    def is_past_deadline(self, now: datetime) -> bool:
        return now > self.expires_at

    def with_status(self, status: MatchStatus, responded_at: Optional[datetime] = None) -> MatchRecord:
        return replace(self, status=status, responded_at=responded_at or self.responded_at)

    @staticmethod  # Factory used by the ranker for a fresh PENDING offer
    def new(
        request_id: str,
        donor_id: str,
        *,
        features: FeatureVector,
        distance_score: float,
        overall_score: float,
        offered_at: datetime,
        offer_window_seconds: int,
    ) -> MatchRecord:
        return MatchRecord(
            id=str(uuid.uuid4()),
            request_id=request_id,
            donor_id=donor_id,
            compatibility_score=min(features.blood_type_compatibility, features.rh_compatibility),
            distance_score=distance_score,
            reputation_score=features.reputation_score,
            availability_score=features.availability,
            response_time_score=features.response_time_score,
            fraud_risk_score=1.0 - features.fraud_risk_inverse,
            overall_score=overall_score,
            offered_at=offered_at,
            expires_at=offered_at + timedelta(seconds=offer_window_seconds),
        )


@dataclass(frozen=True)
class MatchOffer:
    """
    Ranker output: the persisted record plus ranking diagnostics.
    """
    match: MatchRecord
    distance_km: float
    model_score: float
    features: FeatureVector

    @property
    def donor_id(self) -> str:
        return self.match.donor_id

    @property
    def overall_score(self) -> float:
        return self.match.overall_score
