"""
Purpose: Ranking model (the "how good is this donor" layer).
What it does:

Maps a FeatureVector to a score in [0, 1]. Two strategies, chosen by policy:

- trained:   logistic classifier loaded from a numpy .npz artifact
             (arrays `weights` shape (10,) and scalar `bias`),
             returning sigmoid(w . x + b)
- heuristic: deterministic weighted sum of the features

The trained model is always wrapped with the heuristic as fallback, so the
ranking pipeline never blocks on model availability. safe_score() is the
fail-closed boundary the ranker calls: any error scores the candidate 0.

Rule: Scoring rates candidates; it does not filter, persist or sort.
"""

from __future__ import annotations

import logging
import math
import os
from typing import Dict, Optional, Protocol

import numpy as np

from common.errors import ScoringFailure
from .models import FEATURE_NAMES, FeatureVector
from .policy import MatchingPolicy

logger = logging.getLogger(__name__)


class ScoringModel(Protocol):
    def score(self, vector: FeatureVector) -> float:
        ...


# Sums to 1.0 so an all-ones vector scores exactly 1.0.
DEFAULT_HEURISTIC_WEIGHTS: Dict[str, float] = {
    "blood_type_compatibility": 0.10,
    "rh_compatibility": 0.05,
    "reputation_score": 0.15,
    "availability": 0.10,
    "success_rate": 0.15,
    "response_time_score": 0.10,
    "recency_penalty": 0.05,
    "urgency_weight": 0.05,
    "fraud_risk_inverse": 0.15,
    "verification_bonus": 0.10,
}


def _check_score(value: float) -> float:
    value = float(value)
    if not math.isfinite(value) or not 0.0 <= value <= 1.0:
        raise ScoringFailure(f"model produced out-of-range score {value!r}")
    return value


class WeightedHeuristicModel:
    """
    Deterministic fallback: normalised weighted sum of the features.
    """
    def __init__(self, weights: Optional[Dict[str, float]] = None):
        weights = dict(weights or DEFAULT_HEURISTIC_WEIGHTS)

        unknown = set(weights) - set(FEATURE_NAMES)
        if unknown:
            raise ValueError(f"unknown feature weights: {sorted(unknown)}")
        if any(w < 0 for w in weights.values()):
            raise ValueError("heuristic weights must be >= 0")

        total = sum(weights.values())
        if total <= 0:
            raise ValueError("heuristic weights must not all be zero")

        self.weights = {name: weights.get(name, 0.0) / total for name in FEATURE_NAMES}

    def score(self, vector: FeatureVector) -> float:
        total = sum(self.weights[name] * getattr(vector, name) for name in FEATURE_NAMES)
        # float drift can push a perfect vector to 1.0000000000000002
        return max(0.0, min(1.0, total))


class LogisticScoringModel:
    """
    Trained binary classifier: calibrated probability of a successful match.
    """
    def __init__(self, weights, bias: float = 0.0, version: str = "unversioned"):
        weights = np.asarray(weights, dtype=float).reshape(-1)
        if weights.shape != (len(FEATURE_NAMES),):
            raise ValueError(f"expected {len(FEATURE_NAMES)} weights, got shape {weights.shape}")
        if not np.all(np.isfinite(weights)) or not math.isfinite(float(bias)):
            raise ValueError("model parameters must be finite")

        self.weights = weights
        self.bias = float(bias)
        self.version = version

    @classmethod
    def load(cls, path: str) -> LogisticScoringModel:
        """
        Load an artifact written with np.savez(path, weights=..., bias=...).
        """
        with np.load(path) as artifact:
            weights = artifact["weights"]
            bias = float(np.asarray(artifact["bias"]).reshape(-1)[0])
        return cls(weights, bias, version=os.path.basename(path))

    def score(self, vector: FeatureVector) -> float:
        x = np.asarray(vector.as_list(), dtype=float)
        z = float(self.weights @ x + self.bias)
        # numerically stable sigmoid
        if z >= 0:
            return 1.0 / (1.0 + math.exp(-z))
        e = math.exp(z)
        return e / (1.0 + e)


class FallbackScoringModel:
    """
    Try the primary model; on an exception or an invalid result, use the fallback.
    """
    def __init__(self, primary: ScoringModel, fallback: ScoringModel):
        self.primary = primary
        self.fallback = fallback

    def score(self, vector: FeatureVector) -> float:
        try:
            return _check_score(self.primary.score(vector))
        except Exception:
            logger.warning("Primary scoring model failed, using fallback", exc_info=True)
        return _check_score(self.fallback.score(vector))


def safe_score(model: ScoringModel, vector: FeatureVector, *, donor_id: str = "") -> float:
    """
    Fail closed: one bad candidate scores 0 instead of aborting the batch.
    """
    try:
        return _check_score(model.score(vector))
    except Exception:
        logger.error("Scoring failed for donor %s, scoring 0", donor_id or "?", exc_info=True)
        return 0.0


def build_scoring_model(policy: MatchingPolicy) -> ScoringModel:
    """
    Select the scorer from configuration.
    A trained model that cannot be loaded degrades to the heuristic.
    """
    heuristic = WeightedHeuristicModel()
    if policy.scoring_strategy != "trained":
        return heuristic

    try:
        trained = LogisticScoringModel.load(policy.model_path)
    except (OSError, KeyError, ValueError, TypeError):
        logger.warning("Could not load scoring model from %s, using heuristic", policy.model_path, exc_info=True)
        return heuristic

    logger.info("Loaded scoring model %s", trained.version)
    return FallbackScoringModel(trained, heuristic)
