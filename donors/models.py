"""
Purpose: Core data models for the donors domain.
What it does:
Defines the blood group vocabulary, a donor's static profile and the
DonorCandidate view (profile + live position) the ranking pipeline consumes,
without relying on Django ORM constraints.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional

from common.errors import ValidationError
from common.types import LatLon


class RhFactor(str, Enum):
    POSITIVE = "POSITIVE"
    NEGATIVE = "NEGATIVE"


class BloodType(str, Enum):
    """
    ABO group with its Rh suffix, as stored on profiles and requests.
    """
    A_POSITIVE = "A_POSITIVE"
    A_NEGATIVE = "A_NEGATIVE"
    B_POSITIVE = "B_POSITIVE"
    B_NEGATIVE = "B_NEGATIVE"
    AB_POSITIVE = "AB_POSITIVE"
    AB_NEGATIVE = "AB_NEGATIVE"
    O_POSITIVE = "O_POSITIVE"
    O_NEGATIVE = "O_NEGATIVE"

    @property
    def abo_group(self) -> str:
        return self.value.rsplit("_", 1)[0]

    @property
    def rh_factor(self) -> RhFactor:
        return RhFactor.POSITIVE if self.value.endswith("_POSITIVE") else RhFactor.NEGATIVE


def check_blood_group(blood_type: BloodType | str, rh_factor: RhFactor | str) -> tuple[BloodType, RhFactor]:
    """
    Coerces raw strings into the enums and rejects inconsistent pairs
    such as (O_NEGATIVE, POSITIVE).
    """
    try:
        blood_type = BloodType(blood_type)
        rh_factor = RhFactor(rh_factor)
    except ValueError as exc:
        raise ValidationError(str(exc)) from exc

    if blood_type.rh_factor != rh_factor:
        raise ValidationError(f"Rh factor {rh_factor.value} contradicts blood type {blood_type.value}")
    return blood_type, rh_factor


def _check_unit_interval(name: str, value: float) -> float:
    value = float(value)
    if not math.isfinite(value) or not 0.0 <= value <= 1.0:
        raise ValidationError(f"{name} must be within [0, 1], got {value!r}")
    return value


@dataclass(frozen=True)
class DonorProfile:
    """
    A donor's static profile as returned by the donor directory.
    """
    id: str
    blood_type: BloodType
    rh_factor: RhFactor

    reputation_score: float = 0.0
    # probability-like risk, 0 = clean, 1 = certainly fraudulent
    fraud_risk_score: float = 0.0
    successful_donations: int = 0
    failed_matches: int = 0
    avg_response_seconds: Optional[float] = None

    is_available: bool = True
    is_blocked: bool = False
    strongly_verified: bool = False
    last_donation_at: Optional[datetime] = None

    def __post_init__(self):
        blood_type, rh_factor = check_blood_group(self.blood_type, self.rh_factor)
        # frozen dataclass: normalise through object.__setattr__
        object.__setattr__(self, "blood_type", blood_type)
        object.__setattr__(self, "rh_factor", rh_factor)
        object.__setattr__(self, "fraud_risk_score", _check_unit_interval("fraud_risk_score", self.fraud_risk_score))

        if self.reputation_score < 0 or not math.isfinite(self.reputation_score):
            raise ValidationError("reputation_score must be a finite value >= 0")
        if self.successful_donations < 0 or self.failed_matches < 0:
            raise ValidationError("donation counters must be >= 0")
        if self.avg_response_seconds is not None and self.avg_response_seconds < 0:
            raise ValidationError("avg_response_seconds must be >= 0")

    @property
    def success_rate(self) -> float:
        return self.successful_donations / max(self.successful_donations + self.failed_matches, 1)


@dataclass(frozen=True)
class DonorCandidate:
    """
    Read-mostly view joining a profile with its latest live position.
    Built fresh for every ranking pass, never persisted.
    """
    profile: DonorProfile
    position: Optional[LatLon] = None

    @property
    def id(self) -> str:
        return self.profile.id

    @property
    def has_position(self) -> bool:
        return self.position is not None
