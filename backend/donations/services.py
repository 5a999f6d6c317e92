"""
Wires the matching core to the ORM adapters for the REST views.

Push transport is not part of this backend; LoggingNotifier stands in for it
and records every event in the log.
"""

import logging
from typing import Any, Dict, Optional

from geo.haversine import bounding_box
from matching.dispatcher import MatchDispatcher
from matching.policy import MatchingPolicy, policy_from_env
from matching.ranker import CandidateRanker
from matching.scoring import build_scoring_model
from matching.state_machines.match_state import MatchLifecycleManager
from reputation.feedback import ReputationFeedback
from settlement.completion import DonationCompletionService
from settlement.http_client import HttpSettlementClient
from .stores import (
    DjangoDonorDirectory,
    DjangoLocationCache,
    DjangoMatchStore,
    DjangoReputationStore,
    DjangoRequestStore,
)

logger = logging.getLogger(__name__)


class LoggingNotifier:
    def notify(self, user_id: str, event_type: str, payload: Dict[str, Any]) -> None:
        logger.info("notify %s %s %s", user_id, event_type, payload)


class MatchingServices:
    def __init__(self, policy: Optional[MatchingPolicy] = None, notifier=None):
        self.policy = policy or policy_from_env()
        self.requests = DjangoRequestStore()
        self.matches = DjangoMatchStore()
        self.locations = DjangoLocationCache(self.policy.location_max_age_seconds)
        self.notifier = notifier or LoggingNotifier()
        self.model = build_scoring_model(self.policy)
        self.lifecycle = MatchLifecycleManager(self.matches, self.requests)
        self.reputation = ReputationFeedback(store=DjangoReputationStore())

    def dispatcher_for(self, request_id: Optional[str] = None) -> MatchDispatcher:
        """
        A dispatcher whose donor directory is pre-narrowed to the request's
        search area when the request has an origin.
        """
        within = None
        if request_id is not None:
            request = self.requests.get_request(request_id)
            if request is not None and request.origin is not None:
                within = bounding_box(request.origin, request.radius_km)

        ranker = CandidateRanker(
            self.requests,
            DjangoDonorDirectory(within=within),
            self.locations,
            self.matches,
            model=self.model,
            policy=self.policy,
        )
        return MatchDispatcher(ranker, self.lifecycle, self.requests, self.notifier)

    def completion(self, settlement=None) -> DonationCompletionService:
        """
        Completion saga writing reputation straight onto DonorProfile rows.
        settlement defaults to the HTTP gateway configured from the environment.
        """
        return DonationCompletionService(
            self.lifecycle,
            settlement or HttpSettlementClient(),
            self.reputation,
            self.requests,
            self.notifier,
        )
