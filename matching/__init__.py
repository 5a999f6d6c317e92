#Expose the high-level pipeline pieces:
#Feature extraction + scoring (who is good)
#Candidate ranking (who gets an offer)
#Match lifecycle (accept / reject / expire, race-free)
#Dispatcher orchestrator (the "one call" entry point for handlers)

from .dispatcher import MatchDispatcher
from .features import FeatureExtractor
from .models import FEATURE_NAMES, FeatureVector, MatchOffer, MatchRecord, MatchStatus
from .policy import MatchingPolicy, default_matching_policy, policy_from_env
from .ranker import CandidateRanker
from .scoring import (
    FallbackScoringModel,
    LogisticScoringModel,
    WeightedHeuristicModel,
    build_scoring_model,
    safe_score,
)
from .state_machines.match_state import MatchLifecycleManager
from .sweeper import ExpirySweeper

__all__ = [
    "CandidateRanker",
    "ExpirySweeper",
    "FEATURE_NAMES",
    "FallbackScoringModel",
    "FeatureExtractor",
    "FeatureVector",
    "LogisticScoringModel",
    "MatchDispatcher",
    "MatchLifecycleManager",
    "MatchOffer",
    "MatchRecord",
    "MatchStatus",
    "MatchingPolicy",
    "WeightedHeuristicModel",
    "build_scoring_model",
    "default_matching_policy",
    "policy_from_env",
    "safe_score",
]
