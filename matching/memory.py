"""
Purpose: In-memory adapters for every matching port.
What it does:
- InMemoryDatabase owns the request and match tables plus one re-entrant lock
  that plays the part of the database's row locks / serializable transaction.
- InMemoryRequestStore / InMemoryMatchStore are thin views over it, so the
  lifecycle manager sees the same atomic() scope from both.
- InMemoryDonorDirectory and InMemoryNotifier back tests and simulations.

Rule: Stores own persistence only. State-machine rules live in
matching/state_machines/match_state.py.
"""

from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any, Dict, Iterable, Iterator, List, Optional, Tuple

from common.errors import NotFoundError, ValidationError
from common.types import utc_now
from donation_requests.models import DonationRequest, RequestStatus
from donors.compatibility import filter_eligible_donors
from donors.models import BloodType, DonorProfile, RhFactor
from .models import MatchRecord, MatchStatus

logger = logging.getLogger(__name__)


@dataclass
class InMemoryDatabase:
    """
    Shared storage. Stored objects are never mutated in place; every write
    swaps in a new instance, so a shallow snapshot is enough for rollback.
    """
    requests: Dict[str, DonationRequest] = field(default_factory=dict)
    matches: Dict[str, MatchRecord] = field(default_factory=dict)
    _lock: threading.RLock = field(default_factory=threading.RLock)
    _depth: int = 0

    @contextmanager
    def atomic(self) -> Iterator[None]:
        with self._lock:
            outermost = self._depth == 0
            if outermost:
                snapshot = (dict(self.requests), dict(self.matches))
            self._depth += 1
            try:
                yield
            except BaseException:
                if outermost:
                    self.requests, self.matches = snapshot
                raise
            finally:
                self._depth -= 1


class InMemoryRequestStore:
    def __init__(self, db: InMemoryDatabase):
        self.db = db

    def add(self, request: DonationRequest) -> DonationRequest:
        with self.db.atomic():
            if request.id in self.db.requests:
                raise ValidationError(f"request {request.id} already exists")
            stored = replace(request)
            self.db.requests[request.id] = stored
            return replace(stored)

    def get_request(self, request_id: str, *, for_update: bool = False) -> Optional[DonationRequest]:
        with self.db.atomic():
            request = self.db.requests.get(request_id)
            return replace(request) if request else None

    def get_open_request(self, request_id: str, now: Optional[datetime] = None) -> Optional[DonationRequest]:
        request = self.get_request(request_id)
        if request is None or not request.is_open(now):
            return None
        return request

    def set_request_status(self, request_id: str, status: RequestStatus) -> None:
        with self.db.atomic():
            request = self.db.requests.get(request_id)
            if request is None:
                raise NotFoundError(f"request {request_id} not found")
            self.db.requests[request_id] = replace(request, status=RequestStatus(status))

    def compare_and_set_request_status(self, request_id: str, expected: RequestStatus, new: RequestStatus) -> bool:
        with self.db.atomic():
            request = self.db.requests.get(request_id)
            if request is None or request.status != expected:
                return False
            self.db.requests[request_id] = replace(request, status=RequestStatus(new))
            return True


class InMemoryMatchStore:
    def __init__(self, db: InMemoryDatabase):
        self.db = db

    def atomic(self):
        return self.db.atomic()

    def create(self, record: MatchRecord) -> MatchRecord:
        with self.db.atomic():
            if record.id in self.db.matches:
                raise ValidationError(f"match {record.id} already exists")
            self.db.matches[record.id] = record
            return record

    def get(self, match_id: str, *, for_update: bool = False) -> Optional[MatchRecord]:
        with self.db.atomic():
            return self.db.matches.get(match_id)

    def compare_and_set_status(
        self,
        match_id: str,
        expected: MatchStatus,
        new: MatchStatus,
        *,
        responded_at: Optional[datetime] = None,
    ) -> bool:
        with self.db.atomic():
            record = self.db.matches.get(match_id)
            if record is None or record.status != expected:
                return False
            self.db.matches[match_id] = record.with_status(MatchStatus(new), responded_at=responded_at)
            return True

    def list_for_request(self, request_id: str) -> List[MatchRecord]:
        with self.db.atomic():
            rows = [m for m in self.db.matches.values() if m.request_id == request_id]
        return sorted(rows, key=lambda m: (m.offered_at, m.id))

    def list_overdue_pending(self, now: datetime, limit: int) -> List[MatchRecord]:
        with self.db.atomic():
            rows = [m for m in self.db.matches.values() if m.status == MatchStatus.PENDING and m.is_past_deadline(now)]
        rows.sort(key=lambda m: (m.expires_at, m.id))
        return rows[:limit]


class InMemoryDonorDirectory:
    def __init__(self, donors: Iterable[DonorProfile] = ()):
        self._donors: Dict[str, DonorProfile] = {}
        for donor in donors:
            self.upsert(donor)

    def upsert(self, donor: DonorProfile) -> None:
        self._donors[donor.id] = donor

    def get(self, donor_id: str) -> Optional[DonorProfile]:
        return self._donors.get(donor_id)

    def find_compatible_donors(
        self,
        blood_type: BloodType,
        rh_factor: RhFactor,
        exclude_blocked: bool = True,
        limit: int = 100,
    ) -> List[DonorProfile]:
        if exclude_blocked:
            donors = filter_eligible_donors(self._donors.values(), blood_type, rh_factor)
        else:
            donors = [
                d for d in self._donors.values()
                if d.is_available and d.blood_type == blood_type and d.rh_factor == rh_factor
            ]
        donors.sort(key=lambda d: d.id)
        return donors[:limit]


class InMemoryNotifier:
    """
    Notification outbox. Records (user_id, event_type, payload) tuples.
    """
    def __init__(self):
        self.sent: List[Tuple[str, str, Dict[str, Any]]] = []
        self._lock = threading.Lock()

    def notify(self, user_id: str, event_type: str, payload: Dict[str, Any]) -> None:
        with self._lock:
            self.sent.append((user_id, event_type, dict(payload)))
        logger.debug("Queued %s for %s at %s", event_type, user_id, utc_now().isoformat())

    def events_for(self, user_id: str) -> List[Tuple[str, Dict[str, Any]]]:
        return [(event, payload) for uid, event, payload in self.sent if uid == user_id]
