"""
Purpose: Turn one (request, candidate) pair into a FeatureVector.
What it does:

Computes, each normalised into [0, 1]:

blood_type_compatibility = 1.0 exact ABO match, else 0.0
rh_compatibility         = 1.0 same Rh factor, else 0.0
reputation_score         = reputation / max_reputation (clamped)
availability             = 1.0 / 0.0
success_rate             = successful / max(successful + failed, 1)
response_time_score      = 1 - avg_response_seconds / 3600 (floored at 0)
recency_penalty          = days since last donation / 90 (clamped at 1)
urgency_weight           = ordinal urgency / 5
fraud_risk_inverse       = 1 - fraud_risk_score
verification_bonus       = 1.0 strongly verified, else 0.5

Rule: Deterministic given identical inputs (the clock is passed in). No randomness.
Only candidates that already passed compatibility and the geofilter get here.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from common.types import utc_now
from donation_requests.models import MAX_URGENCY_RANK, DonationRequest
from donors.models import DonorCandidate
from .models import FeatureVector
from .policy import MatchingPolicy, default_matching_policy

SECONDS_PER_DAY = 86400.0

# donors who have never answered an offer get a neutral-high score
UNKNOWN_RESPONSE_TIME_SCORE = 0.8


def _clamp(value: float) -> float:
    return max(0.0, min(1.0, value))


class FeatureExtractor:
    def __init__(self, policy: Optional[MatchingPolicy] = None):
        self.policy = policy or default_matching_policy()

    def extract(
        self,
        request: DonationRequest,
        candidate: DonorCandidate,
        *,
        now: Optional[datetime] = None,
    ) -> FeatureVector:
        now = now or utc_now()
        profile = candidate.profile

        if profile.avg_response_seconds is None:
            response_time_score = UNKNOWN_RESPONSE_TIME_SCORE
        else:
            response_time_score = _clamp(1.0 - profile.avg_response_seconds / self.policy.max_response_seconds)

        # Never donated: fully rested.
        if profile.last_donation_at is None:
            recency = 1.0
        else:
            days_since = (now - profile.last_donation_at).total_seconds() / SECONDS_PER_DAY
            recency = _clamp(days_since / self.policy.recency_window_days)

        return FeatureVector(
            blood_type_compatibility=1.0 if profile.blood_type.abo_group == request.blood_type.abo_group else 0.0,
            rh_compatibility=1.0 if profile.rh_factor == request.rh_factor else 0.0,
            reputation_score=_clamp(profile.reputation_score / self.policy.max_reputation),
            availability=1.0 if profile.is_available else 0.0,
            success_rate=_clamp(profile.success_rate),
            response_time_score=response_time_score,
            recency_penalty=recency,
            urgency_weight=_clamp(request.urgency.rank / MAX_URGENCY_RANK),
            fraud_risk_inverse=_clamp(1.0 - profile.fraud_risk_score),
            verification_bonus=1.0 if profile.strongly_verified else 0.5,
        )
