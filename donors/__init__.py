"""
Donors domain package.

Public API:
- Domain models: BloodType, RhFactor, DonorProfile, DonorCandidate
- Eligibility gates: is_blood_compatible, filter_eligible_donors
"""
from .compatibility import filter_eligible_donors, is_blood_compatible
from .models import BloodType, DonorCandidate, DonorProfile, RhFactor, check_blood_group

__all__ = [
    "BloodType",
    "DonorCandidate",
    "DonorProfile",
    "RhFactor",
    "check_blood_group",
    "filter_eligible_donors",
    "is_blood_compatible",
]
