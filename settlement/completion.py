"""
Purpose: The donation completion saga.
What it does:
1. settlement confirms the donation (external, may fail)
2. match ACCEPTED -> COMPLETED, request -> FULFILLED (one narrow transaction)
3. reputation feedback for the donor (idempotent per match)
4. DONATION_COMPLETED to recipient and donor (fire-and-forget)

Each step can be retried on its own. A SettlementFailure leaves the match
ACCEPTED; nothing is reverted. Re-running on a COMPLETED match skips steps
1, 2 and 4 and replays step 3, which the reputation ledger de-duplicates.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Optional

from common.errors import ConflictError, NotFoundError, SettlementFailure
from matching.models import MatchRecord, MatchStatus
from matching.ports import NotificationPort, RequestStore, SettlementPort
from matching.state_machines.match_state import MatchLifecycleManager
from reputation.feedback import ReputationFeedback
from reputation.models import ReputationProfile

logger = logging.getLogger(__name__)

DONATION_COMPLETED = "DONATION_COMPLETED"
DONATION_FAILED = "DONATION_FAILED"


@dataclass(frozen=True)
class CompletionResult:
    match: MatchRecord
    settlement_id: Optional[str]
    reputation: ReputationProfile
    already_completed: bool = False


class DonationCompletionService:
    def __init__(
        self,
        lifecycle: MatchLifecycleManager,
        settlement: SettlementPort,
        reputation: ReputationFeedback,
        requests: RequestStore,
        notifier: Optional[NotificationPort] = None,
    ):
        self.lifecycle = lifecycle
        self.settlement = settlement
        self.reputation = reputation
        self.requests = requests
        self.notifier = notifier

    def complete(self, match_id: str, proof: Dict[str, Any], *, now: Optional[datetime] = None) -> CompletionResult:
        match = self.lifecycle.get_match(match_id, now=now)

        if match.status == MatchStatus.COMPLETED:
            profile = self._apply_reputation(match, now=now)
            return CompletionResult(match=match, settlement_id=None, reputation=profile, already_completed=True)

        if match.status != MatchStatus.ACCEPTED:
            raise ConflictError(f"Match {match_id} is {match.status.value}, only ACCEPTED matches can complete")

        try:
            settlement_id = self.settlement.confirm_donation(match_id, proof)
        except SettlementFailure:
            logger.error("Settlement failed for match %s, left ACCEPTED for retry", match_id, exc_info=True)
            raise

        completed = self.lifecycle.complete(match_id, now=now)
        profile = self._apply_reputation(completed, now=now)

        payload = {"matchId": match_id, "requestId": completed.request_id, "settlementId": settlement_id}
        request = self.requests.get_request(completed.request_id)
        if request is not None:
            self._notify(request.recipient_id, DONATION_COMPLETED, payload)
        self._notify(completed.donor_id, DONATION_COMPLETED, payload)

        logger.info("Donation for match %s settled as %s", match_id, settlement_id)
        return CompletionResult(match=completed, settlement_id=settlement_id, reputation=profile)

    def record_failure(self, match_id: str, *, now: Optional[datetime] = None) -> ReputationProfile:
        """
        The accepted donor did not donate. The match stays ACCEPTED; the donor
        takes the failure penalty once per match.
        """
        match = self.lifecycle.get_match(match_id, now=now)
        if match.status != MatchStatus.ACCEPTED:
            raise ConflictError(f"Match {match_id} is {match.status.value}, only ACCEPTED matches can fail")

        profile = self.reputation.on_donation_failed(match.donor_id, event_key=match_id, now=now)

        request = self.requests.get_request(match.request_id)
        if request is not None:
            self._notify(request.recipient_id, DONATION_FAILED, {"matchId": match_id, "requestId": match.request_id})
        return profile

    def _apply_reputation(self, match: MatchRecord, *, now: Optional[datetime]) -> ReputationProfile:
        request = self.requests.get_request(match.request_id)
        if request is None:
            raise NotFoundError(f"Request {match.request_id} not found")
        return self.reputation.on_donation_completed(match.donor_id, request.urgency, event_key=match.id, now=now)

    def _notify(self, user_id: str, event_type: str, payload: Dict[str, Any]) -> None:
        if not self.notifier:
            return
        try:
            self.notifier.notify(user_id, event_type, payload)
        except Exception:
            logger.warning("Notification %s to %s failed", event_type, user_id, exc_info=True)
