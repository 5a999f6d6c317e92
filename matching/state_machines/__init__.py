from .match_state import ALLOWED_TRANSITIONS, MatchLifecycleManager, assert_transition

__all__ = ["ALLOWED_TRANSITIONS", "MatchLifecycleManager", "assert_transition"]
