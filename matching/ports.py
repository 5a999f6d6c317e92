"""
Purpose: Interfaces of the external collaborators the matching core depends on.
What it does:
Declares the shape of every store / port as a typing.Protocol so the core can
run against the in-memory adapters (matching/memory.py), the Django ORM
adapters (backend/donations/stores.py) or anything else with the same methods.

Rule: No implementations here.
"""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, Any, ContextManager, Dict, List, Optional, Protocol, Tuple

from common.types import LatLon
from donation_requests.models import DonationRequest, RequestStatus
from donors.models import BloodType, DonorProfile, RhFactor
from .models import MatchRecord, MatchStatus

if TYPE_CHECKING:
    from reputation.models import ReputationEvent, ReputationEventType, ReputationProfile


class RequestStore(Protocol):
    def get_request(self, request_id: str, *, for_update: bool = False) -> Optional[DonationRequest]:
        ...

    def get_open_request(self, request_id: str, now: Optional[datetime] = None) -> Optional[DonationRequest]:
        """The request if it exists, is OPEN and has not passed its own expiry."""
        ...

    def set_request_status(self, request_id: str, status: RequestStatus) -> None:
        ...

    def compare_and_set_request_status(self, request_id: str, expected: RequestStatus, new: RequestStatus) -> bool:
        ...


class DonorDirectory(Protocol):
    def find_compatible_donors(
        self,
        blood_type: BloodType,
        rh_factor: RhFactor,
        exclude_blocked: bool,
        limit: int,
    ) -> List[DonorProfile]:
        """Available donors with exactly this blood group, ordered by donor id."""
        ...


class LocationCache(Protocol):
    def get_last_known_position(self, donor_id: str) -> Optional[LatLon]:
        ...


class MatchStore(Protocol):
    def create(self, record: MatchRecord) -> MatchRecord:
        ...

    def get(self, match_id: str, *, for_update: bool = False) -> Optional[MatchRecord]:
        ...

    def compare_and_set_status(
        self,
        match_id: str,
        expected: MatchStatus,
        new: MatchStatus,
        *,
        responded_at: Optional[datetime] = None,
    ) -> bool:
        """Atomically move expected -> new. False when the row is not in `expected`."""
        ...

    def list_for_request(self, request_id: str) -> List[MatchRecord]:
        ...

    def list_overdue_pending(self, now: datetime, limit: int) -> List[MatchRecord]:
        ...

    def atomic(self) -> ContextManager[Any]:
        """
        Transaction scope. Everything inside commits together or not at all,
        and rows read with for_update=True stay locked until exit.
        """
        ...


class NotificationPort(Protocol):
    def notify(self, user_id: str, event_type: str, payload: Dict[str, Any]) -> None:
        ...


class SettlementPort(Protocol):
    def confirm_donation(self, match_id: str, proof: Dict[str, Any]) -> str:
        """Durably record the donation; returns a settlement id or raises SettlementFailure."""
        ...


class BadgeIssuer(Protocol):
    def issue_badge(self, donor_id: str, milestone: int) -> None:
        ...


class ReputationStore(Protocol):
    def get(self, donor_id: str) -> ReputationProfile:
        ...

    def events_for(self, donor_id: str) -> List[ReputationEvent]:
        ...

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
        Append the event and apply its deltas to the donor's score (floored at 0)
        and counters in one step. The donor profile read by ranking is updated too.
        Returns (profile, applied); applied is False for an already-seen
        (event_type, event_key).
        """
        ...
