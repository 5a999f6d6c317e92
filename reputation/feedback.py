"""
Purpose: Apply reputation deltas and rewards when a donation settles.
What it does:
- on_donation_completed: +base points (x2 for EMERGENCY), success counter +1,
  reward tokens credited, badge issued on every milestone success
- on_donation_failed: fixed penalty, failure counter +1
- on_verification_passed / on_fraud_flagged: trust events from the
  verification pipeline
- stats: read model for profile screens

Rule: The score is a running total. Nothing here recomputes it from history.
A failing BadgeIssuer is logged and never rolls back the score update.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Optional

from donation_requests.models import UrgencyLevel
from matching.ports import BadgeIssuer, ReputationStore
from .models import ReputationEventType, ReputationProfile, ReputationStats, tier_for_score
from .policy import ReputationPolicy, default_reputation_policy
from .store import InMemoryReputationStore

logger = logging.getLogger(__name__)


class ReputationFeedback:
    def __init__(
        self,
        store: Optional[ReputationStore] = None,
        badge_issuer: Optional[BadgeIssuer] = None,
        policy: Optional[ReputationPolicy] = None,
    ):
        self.store = store or InMemoryReputationStore()
        self.badge_issuer = badge_issuer
        self.policy = policy or default_reputation_policy()
        self.policy.validate()

    def on_donation_completed(
        self,
        donor_id: str,
        urgency: UrgencyLevel,
        *,
        event_key: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> ReputationProfile:
        points = self.points_for(urgency)
        profile, applied = self.store.record(
            donor_id,
            ReputationEventType.SUCCESSFUL_DONATION,
            points,
            success_delta=1,
            reward_delta=points * self.policy.reward_tokens_per_point,
            event_key=event_key,
            now=now,
        )
        if not applied:
            logger.info("Duplicate completion %s for donor %s ignored", event_key, donor_id)
            return profile

        logger.info("Donor %s +%d points (score %d)", donor_id, points, profile.score)
        if profile.successful_count % self.policy.milestone_every == 0:
            self._issue_badge(donor_id, profile.successful_count)
        return profile

    def on_donation_failed(
        self,
        donor_id: str,
        *,
        event_key: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> ReputationProfile:
        profile, applied = self.store.record(
            donor_id,
            ReputationEventType.FAILED_DONATION,
            self.policy.failure_penalty,
            failure_delta=1,
            event_key=event_key,
            now=now,
        )
        if applied:
            logger.info("Donor %s %d points for failed donation (score %d)",
                        donor_id, self.policy.failure_penalty, profile.score)
        return profile

    def on_verification_passed(self, donor_id: str, *, now: Optional[datetime] = None) -> ReputationProfile:
        profile, _ = self.store.record(
            donor_id, ReputationEventType.VERIFICATION_PASSED, self.policy.verification_points, now=now
        )
        return profile

    def on_fraud_flagged(self, donor_id: str, *, now: Optional[datetime] = None) -> ReputationProfile:
        profile, _ = self.store.record(
            donor_id, ReputationEventType.FRAUD_FLAG, self.policy.fraud_flag_penalty, now=now
        )
        logger.warning("Donor %s flagged for fraud (score %d)", donor_id, profile.score)
        return profile

    def stats(self, donor_id: str) -> ReputationStats:
        profile = self.store.get(donor_id)
        total = profile.successful_count + profile.failed_count
        # new donors start at 0.5 and move to their success rate over 10 outcomes
        confidence = min(total, 10) / 10
        return ReputationStats(
            total_score=profile.score,
            tier=tier_for_score(profile.score, self.policy),
            success_rate=profile.success_rate,
            total_donations=total,
            trust_score=round(confidence * profile.success_rate + (1 - confidence) * 0.5, 4),
            reward_balance=profile.reward_balance,
        )

    def points_for(self, urgency: UrgencyLevel) -> int:
        if urgency == UrgencyLevel.EMERGENCY:
            return self.policy.base_points * self.policy.emergency_multiplier
        return self.policy.base_points

    def _issue_badge(self, donor_id: str, milestone: int) -> None:
        if not self.badge_issuer:
            return
        try:
            self.badge_issuer.issue_badge(donor_id, milestone)
            logger.info("Badge issued to donor %s for %d donations", donor_id, milestone)
        except Exception:
            logger.error("Badge issuance for donor %s at %d failed", donor_id, milestone, exc_info=True)
