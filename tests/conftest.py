import math
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Optional

import pytest

from common.types import utc_now
from donation_requests.models import DonationRequest
from donors.models import DonorProfile
from geo.haversine import EARTH_RADIUS_KM
from geo.location_cache import InMemoryLocationCache
from matching.dispatcher import MatchDispatcher
from matching.memory import (
    InMemoryDatabase,
    InMemoryDonorDirectory,
    InMemoryMatchStore,
    InMemoryNotifier,
    InMemoryRequestStore,
)
from matching.policy import default_matching_policy
from matching.ranker import CandidateRanker
from matching.scoring import WeightedHeuristicModel
from matching.state_machines.match_state import MatchLifecycleManager

# Center of Harare
ORIGIN = (-17.824858, 31.053028)


def north_of(origin, km):
    """A point exactly `km` great-circle kilometres due north of origin."""
    return (origin[0] + math.degrees(km / EARTH_RADIUS_KM), origin[1])


def destination(origin, km, bearing_degrees):
    """Point reached travelling `km` along a great circle from origin at the given bearing."""
    lat1, lon1 = math.radians(origin[0]), math.radians(origin[1])
    bearing = math.radians(bearing_degrees)
    d = km / EARTH_RADIUS_KM
    lat2 = math.asin(math.sin(lat1) * math.cos(d) + math.cos(lat1) * math.sin(d) * math.cos(bearing))
    lon2 = lon1 + math.atan2(
        math.sin(bearing) * math.sin(d) * math.cos(lat1),
        math.cos(d) - math.sin(lat1) * math.sin(lat2),
    )
    # normalise into [-180, 180)
    lon2 = (math.degrees(lon2) + 540.0) % 360.0 - 180.0
    return (math.degrees(lat2), lon2)


def make_donor(donor_id, **overrides) -> DonorProfile:
    fields_ = dict(
        id=donor_id,
        blood_type="O_NEGATIVE",
        rh_factor="NEGATIVE",
        reputation_score=900,
        fraud_risk_score=0.05,
        successful_donations=5,
        failed_matches=0,
        avg_response_seconds=600,
        is_available=True,
        is_blocked=False,
        strongly_verified=True,
    )
    fields_.update(overrides)
    return DonorProfile(**fields_)


def make_request(now, request_id="req-1", **overrides) -> DonationRequest:
    fields_ = dict(
        id=request_id,
        recipient_id="recipient-1",
        blood_type="O_NEGATIVE",
        rh_factor="NEGATIVE",
        units_needed=1,
        urgency="HIGH",
        origin=ORIGIN,
        radius_km=50.0,
        created_at=now,
    )
    fields_.update(overrides)
    return DonationRequest(**fields_)


@dataclass
class World:
    """In-memory wiring of the whole matching pipeline."""
    now: object
    db: InMemoryDatabase = field(default_factory=InMemoryDatabase)
    donors: InMemoryDonorDirectory = field(default_factory=InMemoryDonorDirectory)
    locations: InMemoryLocationCache = field(default_factory=InMemoryLocationCache)
    notifier: InMemoryNotifier = field(default_factory=InMemoryNotifier)

    def __post_init__(self):
        self.policy = default_matching_policy()
        self.requests = InMemoryRequestStore(self.db)
        self.matches = InMemoryMatchStore(self.db)
        self.lifecycle = MatchLifecycleManager(self.matches, self.requests)
        self.ranker = CandidateRanker(
            self.requests, self.donors, self.locations, self.matches,
            model=WeightedHeuristicModel(), policy=self.policy,
        )
        self.dispatcher = MatchDispatcher(self.ranker, self.lifecycle, self.requests, self.notifier)

    def add_request(self, request_id="req-1", **overrides) -> DonationRequest:
        return self.requests.add(make_request(self.now, request_id, **overrides))

    def add_donor(self, donor_id, km: Optional[float] = 10.0, **overrides) -> DonorProfile:
        """km=None registers the donor without a live position."""
        donor = make_donor(donor_id, **overrides)
        self.donors.upsert(donor)
        if km is not None:
            self.locations.update(donor_id, *north_of(ORIGIN, km), reported_at=self.now)
        return donor

    def later(self, **delta):
        return self.now + timedelta(**delta)


@pytest.fixture
def now():
    # Positions are checked for staleness against the wall clock, so tests run "now".
    return utc_now().replace(microsecond=0)


@pytest.fixture
def world(now):
    return World(now=now)
