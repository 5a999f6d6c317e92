"""
Purpose: The match offer state machine.
What it does:

PENDING  -> ACCEPTED | REJECTED | EXPIRED
ACCEPTED -> COMPLETED (after settlement confirms the donation)
REJECTED, EXPIRED, COMPLETED are terminal.

accept() is the single concurrency-control point: inside one store transaction
it re-reads the match (row-locked), checks donor + status + deadline + that the
parent request is still OPEN, then CASes the match to ACCEPTED and the request
to MATCHED. Concurrent accepts serialize on the store, so exactly one wins and
the rest see ConflictError. No in-process locks: the store is the arbiter.

Sibling offers are invalidated twice over: accept() refuses any offer whose
request is no longer OPEN (and expires it), and after a successful accept
cancel_sibling_offers() expires the remaining PENDING siblings in follow-on,
idempotent steps outside the accept transaction.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Dict, FrozenSet, List, Optional

from common.errors import AuthorizationError, ConflictError, MatchExpiredError, NotFoundError
from common.types import utc_now
from donation_requests.models import RequestStatus
from ..models import MatchRecord, MatchStatus
from ..ports import MatchStore, RequestStore

logger = logging.getLogger(__name__)

ALLOWED_TRANSITIONS: Dict[MatchStatus, FrozenSet[MatchStatus]] = {
    MatchStatus.PENDING: frozenset({MatchStatus.ACCEPTED, MatchStatus.REJECTED, MatchStatus.EXPIRED}),
    MatchStatus.ACCEPTED: frozenset({MatchStatus.COMPLETED}),
    MatchStatus.REJECTED: frozenset(),
    MatchStatus.EXPIRED: frozenset(),
    MatchStatus.COMPLETED: frozenset(),
}


def assert_transition(match: MatchRecord, new_status: MatchStatus) -> None:
    """
    Raised when an invalid state transition is attempted.
    """
    if new_status not in ALLOWED_TRANSITIONS[match.status]:
        raise ConflictError(f"Match {match.id} already actioned: cannot move {match.status.value} -> {new_status.value}")


class MatchLifecycleManager:
    def __init__(self, matches: MatchStore, requests: RequestStore):
        self.matches = matches
        self.requests = requests

    # --- Public API ---

    def accept(self, match_id: str, donor_id: str, *, now: Optional[datetime] = None) -> MatchRecord:
        now = now or utc_now()
        expired = False
        stale = False

        with self.matches.atomic():
            match = self._load_for_donor(match_id, donor_id)
            assert_transition(match, MatchStatus.ACCEPTED)

            if match.is_past_deadline(now):
                # commit the expiry, then report it once the transaction is closed
                self.matches.compare_and_set_status(match_id, MatchStatus.PENDING, MatchStatus.EXPIRED)
                expired = True
            else:
                request = self.requests.get_request(match.request_id, for_update=True)
                if request is None or not request.is_open(now):
                    self.matches.compare_and_set_status(match_id, MatchStatus.PENDING, MatchStatus.EXPIRED)
                    stale = True
                else:
                    if not self.matches.compare_and_set_status(
                        match_id, MatchStatus.PENDING, MatchStatus.ACCEPTED, responded_at=now
                    ):
                        raise ConflictError(f"Match {match_id} already actioned")
                    if not self.requests.compare_and_set_request_status(
                        match.request_id, RequestStatus.OPEN, RequestStatus.MATCHED
                    ):
                        # rolls the match CAS back with the transaction
                        raise ConflictError(f"Request {match.request_id} is no longer open")

        if expired:
            logger.info("Accept on expired match %s refused", match_id)
            self.reconcile_request(match.request_id, now=now)
            raise MatchExpiredError(f"Match {match_id} expired at {match.expires_at.isoformat()}")

        if stale:
            logger.info("Accept on stale match %s refused, request %s no longer open", match_id, match.request_id)
            self.reconcile_request(match.request_id, now=now)
            raise ConflictError(f"Request {match.request_id} is no longer open")

        logger.info("Match %s accepted by donor %s", match_id, donor_id)
        self.cancel_sibling_offers(match.request_id, keep_match_id=match_id)
        return self._require(match_id)

    def reject(self, match_id: str, donor_id: str, *, now: Optional[datetime] = None) -> MatchRecord:
        now = now or utc_now()
        expired = False

        with self.matches.atomic():
            match = self._load_for_donor(match_id, donor_id)
            assert_transition(match, MatchStatus.REJECTED)

            if match.is_past_deadline(now):
                self.matches.compare_and_set_status(match_id, MatchStatus.PENDING, MatchStatus.EXPIRED)
                expired = True
            elif not self.matches.compare_and_set_status(
                match_id, MatchStatus.PENDING, MatchStatus.REJECTED, responded_at=now
            ):
                raise ConflictError(f"Match {match_id} already actioned")

        if expired:
            self.reconcile_request(match.request_id, now=now)
            raise MatchExpiredError(f"Match {match_id} expired at {match.expires_at.isoformat()}")

        logger.info("Match %s rejected by donor %s", match_id, donor_id)
        return self._require(match_id)

    def expire(self, match_id: str, *, now: Optional[datetime] = None) -> bool:
        """
        PENDING -> EXPIRED once now > expires_at.
        Returns True only when this call made the transition; calling it on an
        already-expired (or otherwise settled) match is a no-op.
        """
        now = now or utc_now()
        match = self.matches.get(match_id)
        if match is None:
            raise NotFoundError(f"Match {match_id} not found")

        if match.status != MatchStatus.PENDING or not match.is_past_deadline(now):
            return False

        transitioned = self.matches.compare_and_set_status(match_id, MatchStatus.PENDING, MatchStatus.EXPIRED)
        if transitioned:
            logger.info("Match %s expired", match_id)
        self.reconcile_request(match.request_id, now=now)
        return transitioned

    def complete(self, match_id: str, *, now: Optional[datetime] = None) -> MatchRecord:
        """
        ACCEPTED -> COMPLETED and the request -> FULFILLED, together.
        Only called once settlement has confirmed. Re-running is a no-op.
        """
        with self.matches.atomic():
            match = self._require(match_id, for_update=True)
            if match.status == MatchStatus.COMPLETED:
                return match
            assert_transition(match, MatchStatus.COMPLETED)

            if not self.matches.compare_and_set_status(match_id, MatchStatus.ACCEPTED, MatchStatus.COMPLETED):
                raise ConflictError(f"Match {match_id} changed state during completion")
            self.requests.compare_and_set_request_status(
                match.request_id, RequestStatus.MATCHED, RequestStatus.FULFILLED
            )

        logger.info("Match %s completed", match_id)
        return self._require(match_id)

    def get_match(self, match_id: str, *, now: Optional[datetime] = None) -> MatchRecord:
        """
        Read with lazy expiry: a PENDING match past its deadline is expired
        before it is returned, so none survives an interaction past its deadline.
        """
        match = self._require(match_id)
        if match.status == MatchStatus.PENDING and match.is_past_deadline(now or utc_now()):
            self.expire(match_id, now=now)
            match = self._require(match_id)
        return match

    # --- Follow-on steps (outside the accept transaction, idempotent) ---

    def cancel_sibling_offers(self, request_id: str, *, keep_match_id: str) -> List[str]:
        cancelled = []
        for sibling in self.matches.list_for_request(request_id):
            if sibling.id == keep_match_id or sibling.status != MatchStatus.PENDING:
                continue
            if self.matches.compare_and_set_status(sibling.id, MatchStatus.PENDING, MatchStatus.EXPIRED):
                cancelled.append(sibling.id)

        if cancelled:
            logger.info("Cancelled %d sibling offer(s) for request %s", len(cancelled), request_id)
        return cancelled

    def reconcile_request(self, request_id: str, *, now: Optional[datetime] = None) -> Optional[RequestStatus]:
        """
        Bring the request in line with its offers once they settle:
        - some offer ACCEPTED/COMPLETED        -> leave it alone
        - some offer still live (PENDING)      -> leave it alone
        - all offers terminal, none held       -> OPEN again, or EXPIRED if past its own expiry
        """
        now = now or utc_now()
        request = self.requests.get_request(request_id)
        if request is None:
            return None
        if request.status in (RequestStatus.FULFILLED, RequestStatus.EXPIRED):
            return request.status

        offers = self.matches.list_for_request(request_id)
        if any(offer.status.holds_request for offer in offers):
            return request.status
        if any(offer.status == MatchStatus.PENDING and not offer.is_past_deadline(now) for offer in offers):
            return request.status

        if request.status == RequestStatus.MATCHED:
            self.requests.compare_and_set_request_status(request_id, RequestStatus.MATCHED, RequestStatus.OPEN)

        if request.is_expired(now):
            if self.requests.compare_and_set_request_status(request_id, RequestStatus.OPEN, RequestStatus.EXPIRED):
                logger.info("Request %s expired with no accepted offer", request_id)

        refreshed = self.requests.get_request(request_id)
        return refreshed.status if refreshed else None

    # --- Internal helpers ---

    def _require(self, match_id: str, *, for_update: bool = False) -> MatchRecord:
        match = self.matches.get(match_id, for_update=for_update)
        if match is None:
            raise NotFoundError(f"Match {match_id} not found")
        return match

    def _load_for_donor(self, match_id: str, donor_id: str) -> MatchRecord:
        match = self._require(match_id, for_update=True)
        if match.donor_id != donor_id:
            raise AuthorizationError(f"Donor {donor_id} cannot act on match {match_id}")
        return match
