"""
Purpose: Orchestrator for turning an open request into ranked match offers.
What it does:
Loads the request, pulls an oversized pool of rule-qualified donors, runs each
one through geofilter -> feature extraction -> scoring, blends model and
distance scores, drops everything under the acceptance threshold, sorts,
truncates and finally persists the survivors as PENDING MatchRecords.

Rule: No transaction is open while scoring runs; the batch persist at the end
is the only write. Notifying donors is the caller's job (matching/dispatcher.py).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional

from common.errors import GeoDataMissingError, NotFoundError, ValidationError
from common.types import utc_now
from donation_requests.models import DonationRequest
from donors.compatibility import filter_eligible_donors
from donors.models import DonorCandidate, DonorProfile
from geo.haversine import distance_km, distance_score
from .features import FeatureExtractor
from .models import FeatureVector, MatchOffer, MatchRecord, MatchStatus
from .policy import MatchingPolicy, default_matching_policy
from .ports import DonorDirectory, LocationCache, MatchStore, RequestStore
from .scoring import ScoringModel, build_scoring_model, safe_score

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ScoredCandidate:
    """
    A candidate that survived geo + threshold, before persistence.
    """
    donor_id: str
    distance_km: float
    distance_score: float
    model_score: float
    overall_score: float
    features: FeatureVector

    def sort_key(self):
        # best score first, then closest, then donor id for determinism
        return (-self.overall_score, self.distance_km, self.donor_id)


class CandidateRanker:
    def __init__(
        self,
        requests: RequestStore,
        donors: DonorDirectory,
        locations: LocationCache,
        matches: MatchStore,
        model: Optional[ScoringModel] = None,
        policy: Optional[MatchingPolicy] = None,
    ):
        self.policy = policy or default_matching_policy()
        self.requests = requests
        self.donors = donors
        self.locations = locations
        self.matches = matches
        self.model = model or build_scoring_model(self.policy)
        self.extractor = FeatureExtractor(self.policy)

    def rank_candidates(
        self,
        request_id: str,
        max_results: Optional[int] = None,
        *,
        now: Optional[datetime] = None,
    ) -> List[MatchOffer]:
        """
        Rank donors for an OPEN request and persist the top max_results as PENDING offers.

        Raises NotFoundError if the request is unknown or no longer open,
        ValidationError if it has no origin to measure distance from.
        """
        now = now or utc_now()
        max_results = self.policy.default_max_results if max_results is None else max_results
        if max_results < 1:
            raise ValidationError("max_results must be >= 1")

        request = self.requests.get_open_request(request_id, now)
        if request is None:
            raise NotFoundError(f"no open request {request_id}")
        if request.origin is None:
            raise ValidationError(f"request {request_id} has no origin coordinates for matching")

        scored = self.score_candidates(request, max_results, now=now)
        scored.sort(key=ScoredCandidate.sort_key)
        selected = scored[:max_results]

        offers = [self._persist_offer(request, candidate, now) for candidate in selected]

        logger.info(
            "Ranked request %s: %d offer(s) from %d qualified candidate(s)",
            request_id,
            len(offers),
            len(scored),
        )
        return offers

    def score_candidates(
        self,
        request: DonationRequest,
        max_results: int,
        *,
        now: datetime,
    ) -> List[ScoredCandidate]:
        """
        Read-only part of the pipeline. Never writes.
        """
        pool = self.donors.find_compatible_donors(
            request.blood_type,
            request.rh_factor,
            True,
            self.policy.pool_size(max_results),
        )
        # adapters are trusted to filter, but an ineligible donor must never get an offer
        pool = filter_eligible_donors(pool, request.blood_type, request.rh_factor)
        # at most one live offer per (request, donor)
        already_offered = {
            m.donor_id
            for m in self.matches.list_for_request(request.id)
            if m.status == MatchStatus.PENDING or m.status.holds_request
        }

        scored: List[ScoredCandidate] = []
        for donor in pool:
            if donor.id in already_offered:
                logger.debug("Donor %s already holds an offer on %s, skipped", donor.id, request.id)
                continue
            try:
                candidate = self._score_one(request, donor, now)
            except GeoDataMissingError:
                logger.debug("Donor %s has no live position, excluded", donor.id)
                continue
            except ValidationError as exc:
                logger.warning("Donor %s skipped, bad record: %s", donor.id, exc)
                continue

            if candidate is not None:
                scored.append(candidate)

        return scored

    def _score_one(self, request: DonationRequest, donor: DonorProfile, now: datetime) -> Optional[ScoredCandidate]:
        position = self.locations.get_last_known_position(donor.id)
        if position is None:
            raise GeoDataMissingError(donor.id)

        distance = distance_km(request.origin, position)
        if distance > request.radius_km:
            return None

        candidate = DonorCandidate(profile=donor, position=position)
        features = self.extractor.extract(request, candidate, now=now)
        model_score = safe_score(self.model, features, donor_id=donor.id)

        d_score = distance_score(distance, request.radius_km)
        overall = self.policy.model_weight * model_score + self.policy.distance_weight * d_score
        overall = max(0.0, min(1.0, overall))

        if overall < self.policy.acceptance_threshold:
            return None

        return ScoredCandidate(
            donor_id=donor.id,
            distance_km=distance,
            distance_score=d_score,
            model_score=model_score,
            overall_score=overall,
            features=features,
        )

    def _persist_offer(self, request: DonationRequest, candidate: ScoredCandidate, now: datetime) -> MatchOffer:
        record = MatchRecord.new(
            request.id,
            candidate.donor_id,
            features=candidate.features,
            distance_score=candidate.distance_score,
            overall_score=candidate.overall_score,
            offered_at=now,
            offer_window_seconds=self.policy.offer_window_seconds,
        )
        record = self.matches.create(record)
        return MatchOffer(
            match=record,
            distance_km=candidate.distance_km,
            model_score=candidate.model_score,
            features=candidate.features,
        )
