"""
Purpose: Domain models for blood donation requests.
What it does:
- Defines DonationRequest (blood group, units, urgency, origin, radius, status, timestamps)
- Defines enums:
  - RequestStatus = OPEN | MATCHED | FULFILLED | EXPIRED
  - UrgencyLevel  = LOW < MEDIUM < HIGH < CRITICAL < EMERGENCY

Rule: No geo math, no scoring. Models and their validation only.
Status is changed exclusively by the match lifecycle; everything else by the
request-creation flow.
"""
from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Optional
import uuid

from common.errors import ValidationError
from common.types import LatLon, utc_now
from donors.models import BloodType, RhFactor, check_blood_group

DEFAULT_RADIUS_KM = 50.0
DEFAULT_REQUEST_TTL = timedelta(hours=24)


class RequestStatus(str, Enum):
    OPEN = "OPEN"
    MATCHED = "MATCHED"
    FULFILLED = "FULFILLED"
    EXPIRED = "EXPIRED"


class UrgencyLevel(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"
    EMERGENCY = "EMERGENCY"

    @property
    def rank(self) -> int:
        """Ordinal severity, 1 (LOW) .. 5 (EMERGENCY)."""
        return _URGENCY_RANK[self]

    def __lt__(self, other):
        if not isinstance(other, UrgencyLevel):
            return NotImplemented
        return self.rank < other.rank

    def __le__(self, other):
        if not isinstance(other, UrgencyLevel):
            return NotImplemented
        return self.rank <= other.rank

    def __gt__(self, other):
        if not isinstance(other, UrgencyLevel):
            return NotImplemented
        return self.rank > other.rank

    def __ge__(self, other):
        if not isinstance(other, UrgencyLevel):
            return NotImplemented
        return self.rank >= other.rank


_URGENCY_RANK = {
    UrgencyLevel.LOW: 1,
    UrgencyLevel.MEDIUM: 2,
    UrgencyLevel.HIGH: 3,
    UrgencyLevel.CRITICAL: 4,
    UrgencyLevel.EMERGENCY: 5,
}

MAX_URGENCY_RANK = max(_URGENCY_RANK.values())


@dataclass
class DonationRequest:
    """
    A recipient's open call for blood.
    """

    id: str
    recipient_id: str
    blood_type: BloodType
    rh_factor: RhFactor
    units_needed: int
    urgency: UrgencyLevel

    # (lat, lon); may be missing for requests that are not auto-matched
    origin: Optional[LatLon] = None
    radius_km: float = DEFAULT_RADIUS_KM

    status: RequestStatus = RequestStatus.OPEN
    auto_matching_enabled: bool = True

    created_at: datetime = field(default_factory=utc_now)
    expires_at: Optional[datetime] = None

    def __post_init__(self):
        self.blood_type, self.rh_factor = check_blood_group(self.blood_type, self.rh_factor)
        try:
            self.urgency = UrgencyLevel(self.urgency)
            self.status = RequestStatus(self.status)
        except ValueError as exc:
            raise ValidationError(str(exc)) from exc

        if self.units_needed < 1:
            raise ValidationError("units_needed must be >= 1")
        if not math.isfinite(self.radius_km) or self.radius_km <= 0:
            raise ValidationError("radius_km must be > 0")
        if self.origin is not None:
            lat, lon = float(self.origin[0]), float(self.origin[1])
            if not (math.isfinite(lat) and math.isfinite(lon)) or not -90 <= lat <= 90 or not -180 <= lon <= 180:
                raise ValidationError(f"invalid origin coordinates: {self.origin!r}")
            self.origin = (lat, lon)

        if self.expires_at is None:
            self.expires_at = self.created_at + DEFAULT_REQUEST_TTL

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        now = now or utc_now()
        return self.expires_at is not None and now > self.expires_at

    def is_open(self, now: Optional[datetime] = None) -> bool:
        return self.status == RequestStatus.OPEN and not self.is_expired(now)

    @staticmethod  # Factory for the request-creation flow
    def new(
        recipient_id: str,
        blood_type: BloodType | str,
        rh_factor: RhFactor | str,
        units_needed: int,
        urgency: UrgencyLevel | str,
        origin: Optional[LatLon] = None,
        radius_km: float = DEFAULT_RADIUS_KM,
        now: Optional[datetime] = None,
    ) -> DonationRequest:
        created_at = now or utc_now()
        return DonationRequest(
            id=str(uuid.uuid4()),
            recipient_id=recipient_id,
            blood_type=blood_type,
            rh_factor=rh_factor,
            units_needed=units_needed,
            urgency=urgency,
            origin=origin,
            radius_km=radius_km,
            created_at=created_at,
        )
