import pytest

from donation_requests.models import UrgencyLevel
from matching.memory import InMemoryDonorDirectory
from reputation.feedback import ReputationFeedback
from reputation.models import ReputationEventType, ReputationTier, tier_for_score
from reputation.policy import ReputationPolicy
from reputation.store import InMemoryReputationStore

from conftest import make_donor


class RecordingBadgeIssuer:
    def __init__(self):
        self.issued = []

    def issue_badge(self, donor_id, milestone):
        self.issued.append((donor_id, milestone))


class FailingBadgeIssuer:
    def issue_badge(self, donor_id, milestone):
        raise RuntimeError("mint failed")


@pytest.fixture
def badges():
    return RecordingBadgeIssuer()


@pytest.fixture
def feedback(badges):
    return ReputationFeedback(badge_issuer=badges)


def test_completed_donation_points(feedback):
    profile = feedback.on_donation_completed("d1", UrgencyLevel.HIGH)

    assert profile.score == 100
    assert profile.successful_count == 1
    assert profile.reward_balance == 100


def test_emergency_donation_doubles_points(feedback):
    profile = feedback.on_donation_completed("d1", UrgencyLevel.EMERGENCY)
    assert profile.score == 200


def test_failed_donation_penalty_and_floor(feedback):
    feedback.on_donation_completed("d1", UrgencyLevel.LOW)
    profile = feedback.on_donation_failed("d1")

    assert profile.score == 50
    assert profile.failed_count == 1

    # score never goes negative
    profile = feedback.on_donation_failed("d1")
    assert profile.score == 0


def test_running_totals_and_event_log(feedback):
    feedback.on_donation_completed("d1", UrgencyLevel.MEDIUM)
    feedback.on_verification_passed("d1")
    feedback.on_fraud_flagged("d1")
    feedback.on_donation_completed("d1", UrgencyLevel.EMERGENCY)

    events = feedback.store.events_for("d1")

    # 1. Assert each event is appended in order
    assert [e.event_type for e in events] == [
        ReputationEventType.SUCCESSFUL_DONATION,
        ReputationEventType.VERIFICATION_PASSED,
        ReputationEventType.FRAUD_FLAG,
        ReputationEventType.SUCCESSFUL_DONATION,
    ]
    # 2. Assert the score is a running total: 100, 125, 0 (floored), 200
    assert [e.score_after for e in events] == [100, 125, 0, 200]
    assert feedback.store.get("d1").score == 200


def test_milestone_badge_every_tenth_success(feedback, badges):
    for _ in range(21):
        feedback.on_donation_completed("d1", UrgencyLevel.LOW)

    assert badges.issued == [("d1", 10), ("d1", 20)]


def test_badge_failure_does_not_roll_back_score():
    feedback = ReputationFeedback(badge_issuer=FailingBadgeIssuer(), policy=ReputationPolicy(milestone_every=1))

    profile = feedback.on_donation_completed("d1", UrgencyLevel.LOW)

    assert profile.score == 100
    assert feedback.store.get("d1").successful_count == 1


def test_duplicate_completion_is_ignored(feedback):
    feedback.on_donation_completed("d1", UrgencyLevel.HIGH, event_key="match-1")
    profile = feedback.on_donation_completed("d1", UrgencyLevel.HIGH, event_key="match-1")

    assert profile.score == 100
    assert profile.successful_count == 1
    assert len(feedback.store.events_for("d1")) == 1


@pytest.mark.parametrize(
    "score, tier",
    [
        (0, ReputationTier.BRONZE),
        (499, ReputationTier.BRONZE),
        (500, ReputationTier.SILVER),
        (1500, ReputationTier.GOLD),
        (2999, ReputationTier.GOLD),
        (3000, ReputationTier.PLATINUM),
    ],
)
def test_tier_thresholds(score, tier):
    assert tier_for_score(score) == tier


def test_stats(feedback):
    for _ in range(3):
        feedback.on_donation_completed("d1", UrgencyLevel.EMERGENCY)
    feedback.on_donation_failed("d1")

    stats = feedback.stats("d1")

    assert stats.total_score == 550
    assert stats.tier == ReputationTier.SILVER
    assert stats.success_rate == pytest.approx(0.75)
    assert stats.total_donations == 4
    assert stats.reward_balance == 600
    assert 0.5 < stats.trust_score < 0.75


def test_stats_for_new_donor(feedback):
    stats = feedback.stats("nobody")

    assert stats.total_score == 0
    assert stats.tier == ReputationTier.BRONZE
    assert stats.trust_score == 0.5


def test_policy_validation():
    with pytest.raises(ValueError):
        ReputationPolicy(silver_threshold=2000).validate()
    with pytest.raises(ValueError):
        ReputationPolicy(failure_penalty=10).validate()


def test_store_starts_from_the_donor_profile_and_writes_back():
    donors = InMemoryDonorDirectory([make_donor("d1", reputation_score=450, successful_donations=3, failed_matches=1)])
    feedback = ReputationFeedback(store=InMemoryReputationStore(donors=donors))

    # 1. Assert a known donor is seeded from their profile
    assert feedback.stats("d1").total_score == 450

    profile = feedback.on_donation_completed("d1", UrgencyLevel.LOW)
    assert profile.score == 550
    assert profile.successful_count == 4

    # 2. Assert the directory profile carries the new totals
    donor = donors.get("d1")
    assert (donor.reputation_score, donor.successful_donations, donor.failed_matches) == (550, 4, 1)

    # 3. Assert a donor missing from the directory starts from zero
    assert feedback.on_donation_completed("ghost", UrgencyLevel.LOW).score == 100
