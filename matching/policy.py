"""
Purpose: Central configuration for candidate ranking and match offers.
What it does:

Stores all tunable thresholds/caps for ranking donors and offering matches:

OFFER_WINDOW_SECONDS = 3600
ACCEPTANCE_THRESHOLD = 0.65
BLEND = 0.6 model + 0.4 distance
POOL = max_results * 10 (capped)

Rule: No logic here, just parameters so you can tune without rewriting code.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, replace
from typing import Optional

from dotenv import load_dotenv

SCORING_STRATEGIES = ("heuristic", "trained")


@dataclass(frozen=True)
class MatchingPolicy:
    """
    Central configuration for the ranking pipeline and the offer lifecycle.
    """

    # --- Offer lifecycle ---
    # How long a donor has to answer an offer before it expires.
    offer_window_seconds: int = 3600

    # --- Acceptance ---
    # Candidates whose blended overall score falls below this are discarded.
    acceptance_threshold: float = 0.65

    # overall = model_weight * model_score + distance_weight * distance_score
    model_weight: float = 0.6
    distance_weight: float = 0.4

    # --- Candidate pool (performance / geo exclusions) ---
    # Fetch max_results * pool_multiplier donors so geo/data exclusions
    # still leave enough survivors, but never more than max_pool_size.
    pool_multiplier: int = 10
    max_pool_size: int = 500
    default_max_results: int = 10

    # --- Feature normalisation ---
    max_reputation: float = 1000.0
    max_response_seconds: float = 3600.0
    recency_window_days: float = 90.0

    # --- Live location ---
    # Positions older than this are treated as missing.
    location_max_age_seconds: int = 900

    # --- Scoring model selection ---
    scoring_strategy: str = "heuristic"
    model_path: Optional[str] = None

    # --- Expiry sweep ---
    sweep_batch_size: int = 200

    def pool_size(self, max_results: int) -> int:
        return min(max_results * self.pool_multiplier, self.max_pool_size)

    def validate(self) -> None:
        """
        Basic sanity checks. Call once at startup.
        """
        if self.offer_window_seconds <= 0:
            raise ValueError("offer_window_seconds must be > 0")

        if not 0.0 <= self.acceptance_threshold <= 1.0:
            raise ValueError("acceptance_threshold must be within [0, 1]")

        if self.model_weight < 0 or self.distance_weight < 0:
            raise ValueError("blend weights must be >= 0")

        if abs(self.model_weight + self.distance_weight - 1.0) > 1e-9:
            raise ValueError("model_weight + distance_weight must equal 1.0")

        if self.pool_multiplier < 1:
            raise ValueError("pool_multiplier must be >= 1")

        if self.max_pool_size < 1 or self.default_max_results < 1:
            raise ValueError("pool and result caps must be >= 1")

        if self.max_reputation <= 0 or self.max_response_seconds <= 0 or self.recency_window_days <= 0:
            raise ValueError("normalisation constants must be > 0")

        if self.location_max_age_seconds <= 0:
            raise ValueError("location_max_age_seconds must be > 0")

        if self.scoring_strategy not in SCORING_STRATEGIES:
            raise ValueError(f"scoring_strategy must be one of {SCORING_STRATEGIES}")

        if self.scoring_strategy == "trained" and not self.model_path:
            raise ValueError("the trained scoring strategy needs a model_path")

        if self.sweep_batch_size < 1:
            raise ValueError("sweep_batch_size must be >= 1")


def default_matching_policy() -> MatchingPolicy:
    """
    Convenience factory for the default policy.
    """
    p = MatchingPolicy()
    p.validate()
    return p


def policy_from_env(base: Optional[MatchingPolicy] = None) -> MatchingPolicy:
    """
    Overlay environment settings on a policy.

    Example .env:
    BLOODMATCH_SCORING_STRATEGY=trained
    BLOODMATCH_MODEL_PATH=models/matching.npz
    BLOODMATCH_ACCEPTANCE_THRESHOLD=0.7
    """
    load_dotenv()
    p = base or MatchingPolicy()

    strategy = os.getenv("BLOODMATCH_SCORING_STRATEGY")
    if strategy:
        p = replace(p, scoring_strategy=strategy.strip().lower())

    model_path = os.getenv("BLOODMATCH_MODEL_PATH")
    if model_path:
        p = replace(p, model_path=model_path)

    threshold = os.getenv("BLOODMATCH_ACCEPTANCE_THRESHOLD")
    if threshold:
        p = replace(p, acceptance_threshold=float(threshold))

    p.validate()
    return p
