"""
Purpose: Central configuration for reputation points, tiers and rewards.
What it does:

SUCCESSFUL_DONATION = +100 (x2 for EMERGENCY requests)
FAILED_DONATION     = -50
VERIFICATION_PASSED = +25
FRAUD_FLAG          = -200
MILESTONE           = every 10th successful donation
TIERS               = BRONZE 0 / SILVER 500 / GOLD 1500 / PLATINUM 3000

Rule: No logic here, just parameters so you can tune without rewriting code.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class ReputationPolicy:
    """
    Central configuration for reputation feedback.
    """

    # --- Event points ---
    base_points: int = 100
    emergency_multiplier: int = 2
    failure_penalty: int = -50
    verification_points: int = 25
    fraud_flag_penalty: int = -200

    # --- Milestones ---
    # A badge is issued whenever the success counter reaches a multiple of this.
    milestone_every: int = 10

    # --- Tier thresholds (cumulative score) ---
    silver_threshold: int = 500
    gold_threshold: int = 1500
    platinum_threshold: int = 3000

    # --- Rewards ---
    # Reward tokens credited per positive point earned from a donation.
    reward_tokens_per_point: int = 1

    def validate(self) -> None:
        if self.base_points <= 0:
            raise ValueError("base_points must be > 0")

        if self.emergency_multiplier < 1:
            raise ValueError("emergency_multiplier must be >= 1")

        if self.failure_penalty > 0 or self.fraud_flag_penalty > 0:
            raise ValueError("penalties must be <= 0")

        if self.milestone_every < 1:
            raise ValueError("milestone_every must be >= 1")

        if not 0 < self.silver_threshold < self.gold_threshold < self.platinum_threshold:
            raise ValueError("tier thresholds must be strictly increasing and > 0")

        if self.reward_tokens_per_point < 0:
            raise ValueError("reward_tokens_per_point must be >= 0")


def default_reputation_policy() -> ReputationPolicy:
    """
    Convenience factory for the default policy.
    """
    p = ReputationPolicy()
    p.validate()
    return p
