import pytest

from common.errors import ConflictError
from matching.dispatcher import MATCH_ACCEPTED, MATCH_OFFERED, MATCH_REJECTED, MATCH_REVOKED, MatchDispatcher
from matching.models import MatchStatus


class BrokenNotifier:
    def __init__(self):
        self.calls = 0

    def notify(self, user_id, event_type, payload):
        self.calls += 1
        raise ConnectionError("push gateway down")


@pytest.fixture
def seeded(world):
    world.add_request()
    world.add_donor("donor_a", km=2)
    world.add_donor("donor_b", km=5)
    return world


def test_dispatch_notifies_every_offered_donor(seeded):
    offers = seeded.dispatcher.dispatch_request("req-1", 5, now=seeded.now)

    assert [o.donor_id for o in offers] == ["donor_a", "donor_b"]
    for offer in offers:
        events = seeded.notifier.events_for(offer.donor_id)
        assert [e for e, _ in events] == [MATCH_OFFERED]
        payload = events[0][1]
        assert payload["matchId"] == offer.match.id
        assert payload["requestId"] == "req-1"
        assert payload["urgency"] == "HIGH"
        assert payload["expiresAt"] == offer.match.expires_at.isoformat()


def test_accept_notifies_recipient_and_revokes_siblings(seeded):
    offers = {o.donor_id: o for o in seeded.dispatcher.dispatch_request("req-1", 5, now=seeded.now)}

    accepted = seeded.dispatcher.accept_offer(offers["donor_a"].match.id, "donor_a", now=seeded.later(minutes=1))

    assert accepted.status == MatchStatus.ACCEPTED
    # 1. Assert the recipient hears who accepted
    recipient_events = seeded.notifier.events_for("recipient-1")
    assert recipient_events == [(MATCH_ACCEPTED, {"matchId": accepted.id, "requestId": "req-1", "donorId": "donor_a"})]

    # 2. Assert the other donor's offer is revoked
    assert [e for e, _ in seeded.notifier.events_for("donor_b")] == [MATCH_OFFERED, MATCH_REVOKED]


def test_reject_notifies_recipient(seeded):
    offers = {o.donor_id: o for o in seeded.dispatcher.dispatch_request("req-1", 5, now=seeded.now)}

    seeded.dispatcher.reject_offer(offers["donor_b"].match.id, "donor_b", now=seeded.later(minutes=1))

    assert [e for e, _ in seeded.notifier.events_for("recipient-1")] == [MATCH_REJECTED]


def test_conflicts_propagate_without_notifications(seeded):
    offers = {o.donor_id: o for o in seeded.dispatcher.dispatch_request("req-1", 5, now=seeded.now)}
    match_id = offers["donor_a"].match.id
    seeded.dispatcher.accept_offer(match_id, "donor_a", now=seeded.later(minutes=1))
    sent_before = len(seeded.notifier.sent)

    with pytest.raises(ConflictError):
        seeded.dispatcher.accept_offer(match_id, "donor_a", now=seeded.later(minutes=2))

    assert len(seeded.notifier.sent) == sent_before


def test_notification_failures_never_block_matching(seeded):
    notifier = BrokenNotifier()
    dispatcher = MatchDispatcher(seeded.ranker, seeded.lifecycle, seeded.requests, notifier)

    offers = dispatcher.dispatch_request("req-1", 5, now=seeded.now)
    accepted = dispatcher.accept_offer(offers[0].match.id, offers[0].donor_id, now=seeded.later(minutes=1))

    assert accepted.status == MatchStatus.ACCEPTED
    assert notifier.calls > 0
