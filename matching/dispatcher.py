"""
Purpose: Orchestrator / decision pipeline (the "glue").
What it does:
Sits between request handlers / consumers and the matching core. Ranks an
open request, pushes the offers to the donors, relays donor answers to the
lifecycle manager and tells the other side what happened.

Notifications are fire-and-forget: a failing NotificationPort is logged and
never blocks or undoes a matching decision.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from .models import MatchOffer, MatchRecord, MatchStatus
from .ports import NotificationPort, RequestStore
from .ranker import CandidateRanker
from .state_machines.match_state import MatchLifecycleManager

logger = logging.getLogger(__name__)

MATCH_OFFERED = "MATCH_OFFERED"
MATCH_ACCEPTED = "MATCH_ACCEPTED"
MATCH_REJECTED = "MATCH_REJECTED"
MATCH_REVOKED = "MATCH_REVOKED"


class MatchDispatcher:
    """
    Coordinates offering a request to donors and resolving their answers.
    """
    def __init__(
        self,
        ranker: CandidateRanker,
        lifecycle: MatchLifecycleManager,
        requests: RequestStore,
        notifier: Optional[NotificationPort] = None,
    ):
        self.ranker = ranker
        self.lifecycle = lifecycle
        self.requests = requests
        self.notifier = notifier

    def dispatch_request(
        self,
        request_id: str,
        max_results: Optional[int] = None,
        *,
        now: Optional[datetime] = None,
    ) -> List[MatchOffer]:
        offers = self.ranker.rank_candidates(request_id, max_results, now=now)

        request = self.requests.get_request(request_id)
        for offer in offers:
            self._notify(
                offer.donor_id,
                MATCH_OFFERED,
                {
                    "matchId": offer.match.id,
                    "requestId": request_id,
                    "urgency": request.urgency.value if request else None,
                    "overallScore": round(offer.overall_score, 4),
                    "distanceKm": round(offer.distance_km, 2),
                    "expiresAt": offer.match.expires_at.isoformat(),
                },
            )

        logger.info("Dispatched request %s to %d donor(s)", request_id, len(offers))
        return offers

    def accept_offer(self, match_id: str, donor_id: str, *, now: Optional[datetime] = None) -> MatchRecord:
        """
        Called strictly when a donor hits "Accept".
        Race resolution happens in the lifecycle manager; this only fans out the result.
        """
        current = self.lifecycle.get_match(match_id, now=now)
        open_siblings = [
            m for m in self.lifecycle.matches.list_for_request(current.request_id)
            if m.id != match_id and m.status == MatchStatus.PENDING
        ]

        accepted = self.lifecycle.accept(match_id, donor_id, now=now)

        request = self.requests.get_request(accepted.request_id)
        if request is not None:
            self._notify(
                request.recipient_id,
                MATCH_ACCEPTED,
                {"matchId": accepted.id, "requestId": accepted.request_id, "donorId": accepted.donor_id},
            )

        # Silent revoke for everyone else who may still have the offer on screen.
        for sibling in open_siblings:
            self._notify(sibling.donor_id, MATCH_REVOKED, {"matchId": sibling.id, "requestId": sibling.request_id})

        return accepted

    def reject_offer(self, match_id: str, donor_id: str, *, now: Optional[datetime] = None) -> MatchRecord:
        rejected = self.lifecycle.reject(match_id, donor_id, now=now)

        request = self.requests.get_request(rejected.request_id)
        if request is not None:
            self._notify(
                request.recipient_id,
                MATCH_REJECTED,
                {"matchId": rejected.id, "requestId": rejected.request_id, "donorId": rejected.donor_id},
            )
        return rejected

    def _notify(self, user_id: str, event_type: str, payload: Dict[str, Any]) -> None:
        if not self.notifier:
            return
        try:
            self.notifier.notify(user_id, event_type, payload)
        except Exception:
            logger.warning("Notification %s to %s failed", event_type, user_id, exc_info=True)
