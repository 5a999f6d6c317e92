"""
Donation requests domain package.

Public API:
- Domain models: DonationRequest, RequestStatus, UrgencyLevel
"""
from .models import MAX_URGENCY_RANK, DonationRequest, RequestStatus, UrgencyLevel

__all__ = [
    "DonationRequest",
    "MAX_URGENCY_RANK",
    "RequestStatus",
    "UrgencyLevel",
]
