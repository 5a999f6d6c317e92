#Donor reputation: running-total points, tiers, rewards and milestone badges.

from .feedback import ReputationFeedback
from .models import (
    ReputationEvent,
    ReputationEventType,
    ReputationProfile,
    ReputationStats,
    ReputationTier,
    tier_for_score,
)
from .policy import ReputationPolicy, default_reputation_policy
from .store import InMemoryReputationStore

__all__ = [
    "InMemoryReputationStore",
    "ReputationEvent",
    "ReputationEventType",
    "ReputationFeedback",
    "ReputationPolicy",
    "ReputationProfile",
    "ReputationStats",
    "ReputationTier",
    "default_reputation_policy",
    "tier_for_score",
]
