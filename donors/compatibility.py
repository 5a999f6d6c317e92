"""
Purpose: Hard eligibility gates for donors (rule filtering before geo/scoring).
What it does:
Decides which donor profiles may be considered for a request at all:
exact ABO + Rh match, available, not blocked from the platform.

Output: "rule-qualified donors" (still not geo-filtered, still not ranked).
"""

from __future__ import annotations

from typing import Iterable, List

from .models import BloodType, DonorProfile, RhFactor


def is_blood_compatible(
    donor_type: BloodType,
    donor_rh: RhFactor,
    request_type: BloodType,
    request_rh: RhFactor,
) -> bool:
    return donor_type == request_type and donor_rh == request_rh


def filter_eligible_donors(
    donors: Iterable[DonorProfile],
    blood_type: BloodType,
    rh_factor: RhFactor,
) -> List[DonorProfile]:
    """
    Returns only donors who are compatible, available and not blocked.
    The directory is expected to do this already; the ranker re-checks
    so a sloppy adapter cannot leak an ineligible donor into an offer.
    """
    eligible = []

    for donor in donors:
        if not donor.is_available or donor.is_blocked:
            continue

        if not is_blood_compatible(donor.blood_type, donor.rh_factor, blood_type, rh_factor):
            continue

        eligible.append(donor)

    return eligible
