"""
Purpose: Domain models for donor reputation.
What it does:
- ReputationTier = BRONZE | SILVER | GOLD | PLATINUM (pure function of score)
- ReputationEventType (donations, verifications and fraud flags)
- ReputationEvent: one appended ledger entry
- ReputationProfile: running totals, never recomputed from the event log
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional

from common.types import utc_now
from .policy import ReputationPolicy, default_reputation_policy


class ReputationTier(str, Enum):
    BRONZE = "BRONZE"
    SILVER = "SILVER"
    GOLD = "GOLD"
    PLATINUM = "PLATINUM"


class ReputationEventType(str, Enum):
    SUCCESSFUL_DONATION = "SUCCESSFUL_DONATION"
    FAILED_DONATION = "FAILED_DONATION"
    VERIFICATION_PASSED = "VERIFICATION_PASSED"
    FRAUD_FLAG = "FRAUD_FLAG"


def tier_for_score(score: float, policy: Optional[ReputationPolicy] = None) -> ReputationTier:
    policy = policy or default_reputation_policy()
    if score >= policy.platinum_threshold:
        return ReputationTier.PLATINUM
    if score >= policy.gold_threshold:
        return ReputationTier.GOLD
    if score >= policy.silver_threshold:
        return ReputationTier.SILVER
    return ReputationTier.BRONZE


@dataclass(frozen=True)
class ReputationEvent:
    donor_id: str
    event_type: ReputationEventType
    points: int
    score_after: int
    # caller-supplied idempotency key, e.g. the match id of a completed donation
    event_key: Optional[str] = None
    recorded_at: datetime = field(default_factory=utc_now)


@dataclass(frozen=True)
class ReputationProfile:
    donor_id: str
    score: int = 0
    successful_count: int = 0
    failed_count: int = 0
    reward_balance: int = 0

    def tier(self, policy: Optional[ReputationPolicy] = None) -> ReputationTier:
        return tier_for_score(self.score, policy)

    @property
    def success_rate(self) -> float:
        return self.successful_count / max(self.successful_count + self.failed_count, 1)


@dataclass(frozen=True)
class ReputationStats:
    total_score: int
    tier: ReputationTier
    success_rate: float
    total_donations: int
    trust_score: float
    reward_balance: int
