from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional

from common.types import utc_now
from .policy import MatchingPolicy, default_matching_policy
from .ports import MatchStore
from .state_machines.match_state import MatchLifecycleManager

logger = logging.getLogger(__name__)


@dataclass
class SweepStats:
    examined: int
    expired_ids: List[str] = field(default_factory=list)
    now: datetime = field(default_factory=utc_now)

    @property
    def expired_count(self) -> int:
        return len(self.expired_ids)


class ExpirySweeper:
    """
    The periodic "heartbeat" for offer deadlines.
    Meant to run from a cron job / task queue; each cycle expires overdue
    PENDING offers in bounded batches and reconciles their requests.
    Lazy expiry in MatchLifecycleManager covers the gaps between cycles.
    """
    def __init__(self, matches: MatchStore, lifecycle: MatchLifecycleManager, policy: Optional[MatchingPolicy] = None):
        self.matches = matches
        self.lifecycle = lifecycle
        self.policy = policy or default_matching_policy()

    def run_cycle(self, now: Optional[datetime] = None, *, max_batches: int = 10) -> SweepStats:
        now = now or utc_now()
        stats = SweepStats(examined=0, now=now)

        for _ in range(max_batches):
            overdue = self.matches.list_overdue_pending(now, self.policy.sweep_batch_size)
            if not overdue:
                break

            stats.examined += len(overdue)
            for match in overdue:
                if self.lifecycle.expire(match.id, now=now):
                    stats.expired_ids.append(match.id)

            if len(overdue) < self.policy.sweep_batch_size:
                break

        if stats.expired_count:
            logger.info("Expiry sweep expired %d offer(s)", stats.expired_count)
        return stats
