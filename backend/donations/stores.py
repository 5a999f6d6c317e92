"""
Purpose: Django ORM adapters for the matching core's stores.
What it does:
- DjangoRequestStore / DjangoMatchStore: rows <-> domain records, status
  changes as compare-and-set UPDATEs (filter on the expected status, count
  the rows touched), atomic() is transaction.atomic, for_update reads use
  select_for_update so concurrent accepts serialize on the row lock.
- DjangoDonorDirectory: compatible donor pool, optionally narrowed by a
  bounding box on the last known position.
- DjangoLocationCache: the position columns on DonorProfile, with the same
  staleness and monotonic-recency rules as the in-memory cache.
- DjangoReputationStore: running totals live on DonorProfile (the columns
  ranking reads), applied with F() increments under the donor row lock;
  every applied event is appended to ReputationEvent.
"""

from datetime import datetime, timedelta
from typing import List, Optional, Tuple

from django.db import transaction
from django.db.models import F, FloatField, Q, Value
from django.db.models.functions import Greatest

from common.errors import NotFoundError
from common.types import LatLon, utc_now
from donation_requests.models import DonationRequest, RequestStatus
from donors.models import BloodType, DonorProfile as DonorRecord, RhFactor
from geo.haversine import BoundingBox, validate_coordinates
from matching.models import MatchRecord, MatchStatus
from reputation.models import (
    ReputationEvent as ReputationEventRecord,
    ReputationEventType,
    ReputationProfile,
)
from .models import BloodRequest, DonorProfile, ReputationEvent, RequestMatch


def _donor_pk(donor_id) -> Optional[int]:
    try:
        return int(donor_id)
    except (TypeError, ValueError):
        return None


def request_to_domain(row: BloodRequest) -> DonationRequest:
    origin = None
    if row.origin_lat is not None and row.origin_lng is not None:
        origin = (row.origin_lat, row.origin_lng)
    return DonationRequest(
        id=row.id,
        recipient_id=str(row.recipient_id),
        blood_type=row.blood_type,
        rh_factor=row.rh_factor,
        units_needed=row.units_needed,
        urgency=row.urgency,
        origin=origin,
        radius_km=row.radius_km,
        status=row.status,
        auto_matching_enabled=row.auto_matching_enabled,
        created_at=row.created_at,
        expires_at=row.expires_at,
    )


def donor_to_domain(row: DonorProfile) -> DonorRecord:
    return DonorRecord(
        id=str(row.pk),
        blood_type=row.blood_type,
        rh_factor=row.rh_factor,
        reputation_score=row.reputation_score,
        fraud_risk_score=row.fraud_risk_score,
        successful_donations=row.successful_donations,
        failed_matches=row.failed_matches,
        avg_response_seconds=row.avg_response_seconds,
        is_available=row.is_available,
        is_blocked=row.is_blocked,
        strongly_verified=row.strongly_verified,
        last_donation_at=row.last_donation_at,
    )


def match_to_domain(row: RequestMatch) -> MatchRecord:
    return MatchRecord(
        id=row.id,
        request_id=row.request_id,
        donor_id=str(row.donor_id),
        compatibility_score=row.compatibility_score,
        distance_score=row.distance_score,
        reputation_score=row.reputation_score,
        availability_score=row.availability_score,
        response_time_score=row.response_time_score,
        fraud_risk_score=row.fraud_risk_score,
        overall_score=row.overall_score,
        offered_at=row.offered_at,
        expires_at=row.expires_at,
        status=row.status,
        responded_at=row.responded_at,
    )


class DjangoRequestStore:
    def get_request(self, request_id: str, *, for_update: bool = False) -> Optional[DonationRequest]:
        qs = BloodRequest.objects.all()
        if for_update:
            qs = qs.select_for_update()
        row = qs.filter(pk=request_id).first()
        return request_to_domain(row) if row else None

    def get_open_request(self, request_id: str, now: Optional[datetime] = None) -> Optional[DonationRequest]:
        request = self.get_request(request_id)
        if request is None or not request.is_open(now):
            return None
        return request

    def set_request_status(self, request_id: str, status: RequestStatus) -> None:
        BloodRequest.objects.filter(pk=request_id).update(status=status.value)

    def compare_and_set_request_status(self, request_id: str, expected: RequestStatus, new: RequestStatus) -> bool:
        return BloodRequest.objects.filter(pk=request_id, status=expected.value).update(status=new.value) == 1


class DjangoMatchStore:
    def atomic(self):
        return transaction.atomic()

    def create(self, record: MatchRecord) -> MatchRecord:
        RequestMatch.objects.create(
            id=record.id,
            request_id=record.request_id,
            donor_id=_donor_pk(record.donor_id),
            compatibility_score=record.compatibility_score,
            distance_score=record.distance_score,
            reputation_score=record.reputation_score,
            availability_score=record.availability_score,
            response_time_score=record.response_time_score,
            fraud_risk_score=record.fraud_risk_score,
            overall_score=record.overall_score,
            status=record.status.value,
            offered_at=record.offered_at,
            responded_at=record.responded_at,
            expires_at=record.expires_at,
        )
        return record

    def get(self, match_id: str, *, for_update: bool = False) -> Optional[MatchRecord]:
        qs = RequestMatch.objects.all()
        if for_update:
            qs = qs.select_for_update()
        row = qs.filter(pk=match_id).first()
        return match_to_domain(row) if row else None

    def compare_and_set_status(
        self,
        match_id: str,
        expected: MatchStatus,
        new: MatchStatus,
        *,
        responded_at: Optional[datetime] = None,
    ) -> bool:
        updates = {"status": new.value}
        if responded_at is not None:
            updates["responded_at"] = responded_at
        return RequestMatch.objects.filter(pk=match_id, status=expected.value).update(**updates) == 1

    def list_for_request(self, request_id: str) -> List[MatchRecord]:
        rows = RequestMatch.objects.filter(request_id=request_id).order_by('offered_at', 'id')
        return [match_to_domain(row) for row in rows]

    def list_overdue_pending(self, now: datetime, limit: int) -> List[MatchRecord]:
        rows = (
            RequestMatch.objects
            .filter(status=MatchStatus.PENDING.value, expires_at__lt=now)
            .order_by('expires_at', 'id')[:limit]
        )
        return [match_to_domain(row) for row in rows]


class DjangoDonorDirectory:
    """
    within: optional bounding box on the last known position. It only narrows
    the SQL query; the ranker's haversine check still decides inclusion.
    """
    def __init__(self, within: Optional[BoundingBox] = None):
        self.within = within

    def find_compatible_donors(
        self,
        blood_type: BloodType,
        rh_factor: RhFactor,
        exclude_blocked: bool = True,
        limit: int = 100,
    ) -> List[DonorRecord]:
        qs = DonorProfile.objects.filter(
            blood_type=BloodType(blood_type).value,
            rh_factor=RhFactor(rh_factor).value,
            is_available=True,
        )
        if exclude_blocked:
            qs = qs.filter(is_blocked=False)
        if self.within is not None:
            qs = qs.filter(
                last_lat__gte=self.within.min_lat,
                last_lat__lte=self.within.max_lat,
                last_lng__gte=self.within.min_lon,
                last_lng__lte=self.within.max_lon,
            )
        return [donor_to_domain(row) for row in qs.order_by('pk')[:limit]]


class DjangoLocationCache:
    def __init__(self, max_age_seconds: int = 900):
        if max_age_seconds <= 0:
            raise ValueError("max_age_seconds must be > 0")
        self.max_age = timedelta(seconds=max_age_seconds)

    def update(self, donor_id: str, lat: float, lon: float, reported_at: Optional[datetime] = None) -> bool:
        """
        Store a live position. Older reports never overwrite newer ones.
        """
        lat, lon = validate_coordinates((lat, lon))
        reported_at = reported_at or utc_now()
        updated = (
            DonorProfile.objects
            .filter(pk=_donor_pk(donor_id))
            .filter(Q(location_updated_at__isnull=True) | Q(location_updated_at__lte=reported_at))
            .update(last_lat=lat, last_lng=lon, location_updated_at=reported_at)
        )
        return updated == 1

    def get_last_known_position(self, donor_id: str, now: Optional[datetime] = None) -> Optional[LatLon]:
        pk = _donor_pk(donor_id)
        if pk is None:
            return None
        row = (
            DonorProfile.objects
            .filter(pk=pk)
            .values('last_lat', 'last_lng', 'location_updated_at')
            .first()
        )
        if not row or row['last_lat'] is None or row['last_lng'] is None or row['location_updated_at'] is None:
            return None
        if (now or utc_now()) - row['location_updated_at'] > self.max_age:
            return None
        return (row['last_lat'], row['last_lng'])


def reputation_to_domain(row: DonorProfile) -> ReputationProfile:
    return ReputationProfile(
        donor_id=str(row.pk),
        score=int(round(row.reputation_score)),
        successful_count=row.successful_donations,
        failed_count=row.failed_matches,
        reward_balance=row.reward_balance,
    )


class DjangoReputationStore:
    def get(self, donor_id: str) -> ReputationProfile:
        row = DonorProfile.objects.filter(pk=_donor_pk(donor_id)).first()
        return reputation_to_domain(row) if row else ReputationProfile(donor_id=donor_id)

    def events_for(self, donor_id: str) -> List[ReputationEventRecord]:
        rows = ReputationEvent.objects.filter(donor_id=_donor_pk(donor_id))
        return [
            ReputationEventRecord(
                donor_id=str(row.donor_id),
                event_type=ReputationEventType(row.event_type),
                points=row.points,
                score_after=row.score_after,
                event_key=row.event_key,
                recorded_at=row.recorded_at,
            )
            for row in rows
        ]

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
        pk = _donor_pk(donor_id)
        with transaction.atomic():
            # the row lock serializes events for one donor, duplicates included
            row = DonorProfile.objects.select_for_update().filter(pk=pk).first()
            if row is None:
                raise NotFoundError(f"donor {donor_id} not found")

            if event_key is not None and ReputationEvent.objects.filter(
                event_type=event_type.value, event_key=event_key
            ).exists():
                return reputation_to_domain(row), False

            DonorProfile.objects.filter(pk=pk).update(
                reputation_score=Greatest(
                    F('reputation_score') + float(points), Value(0.0), output_field=FloatField()
                ),
                successful_donations=F('successful_donations') + success_delta,
                failed_matches=F('failed_matches') + failure_delta,
                reward_balance=F('reward_balance') + reward_delta,
            )
            row.refresh_from_db()
            profile = reputation_to_domain(row)

            ReputationEvent.objects.create(
                donor=row,
                event_type=event_type.value,
                points=points,
                score_after=profile.score,
                event_key=event_key,
                recorded_at=now or utc_now(),
            )
        return profile, True
