import uuid

from django.conf import settings
from django.db import models

from common.types import utc_now
from donation_requests.models import DEFAULT_REQUEST_TTL, RequestStatus, UrgencyLevel
from donors.models import BloodType, RhFactor
from matching.models import MatchStatus
from reputation.models import ReputationEventType


def _new_id():
    return str(uuid.uuid4())


def _default_expiry():
    return utc_now() + DEFAULT_REQUEST_TTL


def _choices(enum_cls):
    return [(member.value, member.value.replace("_", " ").title()) for member in enum_cls]


class BloodRequest(models.Model):
    """
    A recipient's open call for blood.
    Status moves only through the match lifecycle: OPEN -> MATCHED -> FULFILLED,
    or OPEN -> EXPIRED. Rows are never deleted while matches point at them.
    """
    id = models.CharField(primary_key=True, max_length=36, default=_new_id, editable=False)
    recipient = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.PROTECT, related_name='blood_requests')

    blood_type = models.CharField(max_length=16, choices=_choices(BloodType))
    rh_factor = models.CharField(max_length=8, choices=_choices(RhFactor))
    units_needed = models.PositiveIntegerField(default=1)
    urgency = models.CharField(max_length=16, choices=_choices(UrgencyLevel), default=UrgencyLevel.MEDIUM.value)

    # Origin of the search; requests without it cannot be auto-matched
    origin_lat = models.FloatField(blank=True, null=True)
    origin_lng = models.FloatField(blank=True, null=True)
    radius_km = models.FloatField(default=50.0)

    status = models.CharField(max_length=16, choices=_choices(RequestStatus), default=RequestStatus.OPEN.value)
    auto_matching_enabled = models.BooleanField(default=True)

    created_at = models.DateTimeField(default=utc_now)
    expires_at = models.DateTimeField(default=_default_expiry)

    class Meta:
        indexes = [models.Index(fields=['status', 'expires_at'])]

    def __str__(self):
        return f"Request {self.id} - {self.blood_type} ({self.status})"


class DonorProfile(models.Model):
    """
    Static donor profile plus the last reported live position.
    The position columns are the Django-side location cache.
    """
    user = models.OneToOneField(settings.AUTH_USER_MODEL, on_delete=models.CASCADE, related_name='donor_profile')

    blood_type = models.CharField(max_length=16, choices=_choices(BloodType))
    rh_factor = models.CharField(max_length=8, choices=_choices(RhFactor))

    reputation_score = models.FloatField(default=0.0)
    fraud_risk_score = models.FloatField(default=0.0)
    successful_donations = models.PositiveIntegerField(default=0)
    failed_matches = models.PositiveIntegerField(default=0)
    avg_response_seconds = models.FloatField(blank=True, null=True)

    # is_available: toggles donor visibility for matching
    is_available = models.BooleanField(default=True)
    is_blocked = models.BooleanField(default=False)
    strongly_verified = models.BooleanField(default=False)
    last_donation_at = models.DateTimeField(blank=True, null=True)
    reward_balance = models.PositiveIntegerField(default=0)

    last_lat = models.FloatField(blank=True, null=True)
    last_lng = models.FloatField(blank=True, null=True)
    location_updated_at = models.DateTimeField(blank=True, null=True)

    class Meta:
        indexes = [models.Index(fields=['blood_type', 'rh_factor', 'is_available'])]

    def __str__(self):
        return f"Donor {self.pk} ({self.blood_type})"


class RequestMatch(models.Model):
    """
    One offer of one request to one donor. Audit trail: never deleted.
    At most one row per request may be ACCEPTED or COMPLETED.
    """
    id = models.CharField(primary_key=True, max_length=36, default=_new_id, editable=False)
    request = models.ForeignKey(BloodRequest, on_delete=models.PROTECT, related_name='matches')
    donor = models.ForeignKey(DonorProfile, on_delete=models.PROTECT, related_name='matches')

    compatibility_score = models.FloatField()
    distance_score = models.FloatField()
    reputation_score = models.FloatField()
    availability_score = models.FloatField()
    response_time_score = models.FloatField()
    fraud_risk_score = models.FloatField()
    overall_score = models.FloatField()

    status = models.CharField(max_length=16, choices=_choices(MatchStatus), default=MatchStatus.PENDING.value)
    offered_at = models.DateTimeField()
    responded_at = models.DateTimeField(blank=True, null=True)
    expires_at = models.DateTimeField()

    class Meta:
        indexes = [
            models.Index(fields=['request', 'status']),
            models.Index(fields=['status', 'expires_at']),
        ]
        constraints = [
            models.UniqueConstraint(
                fields=['request', 'donor'],
                condition=models.Q(status=MatchStatus.PENDING.value),
                name='one_pending_offer_per_request_donor',
            ),
        ]

    def __str__(self):
        return f"Match {self.id} - {self.status}"


class ReputationEvent(models.Model):
    """
    Append-only reputation ledger. DonorProfile carries the running totals;
    rows here are never updated or deleted.
    """
    donor = models.ForeignKey(DonorProfile, on_delete=models.PROTECT, related_name='reputation_events')
    event_type = models.CharField(max_length=32, choices=_choices(ReputationEventType))
    points = models.IntegerField()
    score_after = models.IntegerField()
    event_key = models.CharField(max_length=64, blank=True, null=True)
    recorded_at = models.DateTimeField(default=utc_now)

    class Meta:
        ordering = ['recorded_at', 'id']
        constraints = [
            models.UniqueConstraint(
                fields=['event_type', 'event_key'],
                condition=models.Q(event_key__isnull=False),
                name='one_reputation_event_per_key',
            ),
        ]

    def __str__(self):
        return f"{self.event_type} {self.points:+d} for donor {self.donor_id}"
