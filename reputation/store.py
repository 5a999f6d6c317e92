from __future__ import annotations

import threading
from dataclasses import replace
from datetime import datetime
from typing import TYPE_CHECKING, Dict, List, Optional, Set, Tuple

from common.types import utc_now
from .models import ReputationEvent, ReputationEventType, ReputationProfile

if TYPE_CHECKING:
    from matching.memory import InMemoryDonorDirectory


class InMemoryReputationStore:
    """
    Append-only event ledger plus running-total profiles.

    record() applies one event atomically: append the event, add the deltas to
    the profile. Events carrying an event_key already seen are ignored, which
    makes saga retries safe.

    donors: optional directory the totals are written through to. A donor's
    first event starts from the score and counters already on their profile,
    and every applied event updates that profile so the next ranking pass sees it.
    """
    def __init__(self, donors: Optional[InMemoryDonorDirectory] = None):
        self.donors = donors
        self._profiles: Dict[str, ReputationProfile] = {}
        self._events: List[ReputationEvent] = []
        self._seen_keys: Set[Tuple[str, str]] = set()
        self._lock = threading.Lock()

    def get(self, donor_id: str) -> ReputationProfile:
        with self._lock:
            return self._profile_for(donor_id)

    def events_for(self, donor_id: str) -> List[ReputationEvent]:
        with self._lock:
            return [e for e in self._events if e.donor_id == donor_id]

    def record(
        self,
        donor_id: str,
        event_type: ReputationEventType,
        points: int,
        *,
        success_delta: int = 0,
        failure_delta: int = 0,
        reward_delta: int = 0,
        event_key: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Tuple[ReputationProfile, bool]:
        """
        Returns (profile, applied). applied is False for a duplicate event_key.
        """
        with self._lock:
            profile = self._profile_for(donor_id)

            if event_key is not None:
                key = (event_type.value, event_key)
                if key in self._seen_keys:
                    return profile, False
                self._seen_keys.add(key)

            # score is floored at zero; counters only grow
            profile = replace(
                profile,
                score=max(0, profile.score + points),
                successful_count=profile.successful_count + success_delta,
                failed_count=profile.failed_count + failure_delta,
                reward_balance=profile.reward_balance + reward_delta,
            )
            self._profiles[donor_id] = profile
            self._write_through(profile)
            self._events.append(
                ReputationEvent(
                    donor_id=donor_id,
                    event_type=event_type,
                    points=points,
                    score_after=profile.score,
                    event_key=event_key,
                    recorded_at=now or utc_now(),
                )
            )
            return profile, True

    def _profile_for(self, donor_id: str) -> ReputationProfile:
        profile = self._profiles.get(donor_id)
        if profile is not None:
            return profile
        donor = self.donors.get(donor_id) if self.donors is not None else None
        if donor is None:
            return ReputationProfile(donor_id=donor_id)
        return ReputationProfile(
            donor_id=donor_id,
            score=int(round(donor.reputation_score)),
            successful_count=donor.successful_donations,
            failed_count=donor.failed_matches,
        )

    def _write_through(self, profile: ReputationProfile) -> None:
        donor = self.donors.get(profile.donor_id) if self.donors is not None else None
        if donor is None:
            return
        self.donors.upsert(
            replace(
                donor,
                reputation_score=float(profile.score),
                successful_donations=profile.successful_count,
                failed_matches=profile.failed_count,
            )
        )
