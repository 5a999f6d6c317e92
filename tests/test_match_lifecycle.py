import threading
from dataclasses import replace
from concurrent.futures import ThreadPoolExecutor

import pytest

from common.errors import AuthorizationError, ConflictError, MatchExpiredError, NotFoundError
from donation_requests.models import RequestStatus
from matching.memory import InMemoryRequestStore
from matching.models import MatchStatus
from matching.state_machines.match_state import MatchLifecycleManager
from matching.sweeper import ExpirySweeper


def seed_offers(world, *donor_ids, **request_overrides):
    """One open request with one PENDING offer per donor. Returns {donor_id: match_id}."""
    world.add_request(**request_overrides)
    for i, donor_id in enumerate(donor_ids):
        world.add_donor(donor_id, km=1 + i)
    offers = world.ranker.rank_candidates("req-1", len(donor_ids), now=world.now)
    assert len(offers) == len(donor_ids)
    return {o.donor_id: o.match.id for o in offers}


def status_of(world, match_id):
    return world.matches.get(match_id).status


def request_status(world):
    return world.requests.get_request("req-1").status


class RefusingRequestStore(InMemoryRequestStore):
    """Reports the request as open but loses every status CAS."""
    def compare_and_set_request_status(self, request_id, expected, new):
        return False


def test_accept_moves_match_and_request_together(world):
    ids = seed_offers(world, "donor_a")
    when = world.later(minutes=5)

    accepted = world.lifecycle.accept(ids["donor_a"], "donor_a", now=when)

    assert accepted.status == MatchStatus.ACCEPTED
    assert accepted.responded_at == when
    assert request_status(world) == RequestStatus.MATCHED


def test_concurrent_accepts_on_one_match_have_one_winner(world):
    ids = seed_offers(world, "donor_a")
    match_id = ids["donor_a"]
    attempts = 12
    barrier = threading.Barrier(attempts)

    def attempt(_):
        barrier.wait()
        try:
            world.lifecycle.accept(match_id, "donor_a", now=world.later(minutes=1))
            return "ok"
        except ConflictError:
            return "conflict"

    with ThreadPoolExecutor(max_workers=attempts) as pool:
        results = list(pool.map(attempt, range(attempts)))

    # 1. Assert exactly one success, everybody else told "already actioned"
    assert results.count("ok") == 1
    assert results.count("conflict") == attempts - 1

    # 2. Assert the final state carries that single donor
    final = world.matches.get(match_id)
    assert final.status == MatchStatus.ACCEPTED
    assert final.donor_id == "donor_a"
    assert request_status(world) == RequestStatus.MATCHED


def test_concurrent_accepts_on_sibling_offers_have_one_winner(world):
    donors = [f"donor_{i}" for i in range(8)]
    ids = seed_offers(world, *donors)
    barrier = threading.Barrier(len(donors))

    def attempt(donor_id):
        barrier.wait()
        try:
            world.lifecycle.accept(ids[donor_id], donor_id, now=world.later(minutes=1))
            return donor_id
        except ConflictError:
            return None

    with ThreadPoolExecutor(max_workers=len(donors)) as pool:
        winners = [w for w in pool.map(attempt, donors) if w]

    assert len(winners) == 1
    holding = [m for m in world.matches.list_for_request("req-1") if m.status.holds_request]
    assert [m.donor_id for m in holding] == winners
    # everyone else ends up terminal
    for match in world.matches.list_for_request("req-1"):
        if match.donor_id != winners[0]:
            assert match.status == MatchStatus.EXPIRED


def test_sibling_offer_fails_after_request_is_matched(world):
    """
    Donors A and B both hold PENDING offers. A accepts first: the request is
    MATCHED, A's match ACCEPTED and B's later accept is refused.
    """
    ids = seed_offers(world, "donor_a", "donor_b")

    world.lifecycle.accept(ids["donor_a"], "donor_a", now=world.later(minutes=1))

    assert request_status(world) == RequestStatus.MATCHED
    assert status_of(world, ids["donor_a"]) == MatchStatus.ACCEPTED
    # eager follow-on cancellation already expired B's offer
    assert status_of(world, ids["donor_b"]) == MatchStatus.EXPIRED

    with pytest.raises(ConflictError):
        world.lifecycle.accept(ids["donor_b"], "donor_b", now=world.later(minutes=2))


def test_stale_sibling_is_refused_even_without_cancellation(world):
    ids = seed_offers(world, "donor_a", "donor_b")
    # request matched elsewhere, sibling cancellation never ran
    world.requests.set_request_status("req-1", RequestStatus.MATCHED)

    with pytest.raises(ConflictError):
        world.lifecycle.accept(ids["donor_b"], "donor_b", now=world.later(minutes=1))

    # the stale offer is closed on the way out
    assert status_of(world, ids["donor_b"]) == MatchStatus.EXPIRED


def test_failed_request_cas_rolls_back_the_match(world):
    ids = seed_offers(world, "donor_a")
    lifecycle = MatchLifecycleManager(world.matches, RefusingRequestStore(world.db))

    with pytest.raises(ConflictError):
        lifecycle.accept(ids["donor_a"], "donor_a", now=world.later(minutes=1))

    assert status_of(world, ids["donor_a"]) == MatchStatus.PENDING
    assert request_status(world) == RequestStatus.OPEN


def test_accept_after_deadline_is_refused(world):
    ids = seed_offers(world, "donor_a")

    with pytest.raises(MatchExpiredError):
        world.lifecycle.accept(ids["donor_a"], "donor_a", now=world.later(hours=1, seconds=1))

    assert status_of(world, ids["donor_a"]) == MatchStatus.EXPIRED
    # nothing holds the request, so it is open for another ranking pass
    assert request_status(world) == RequestStatus.OPEN


def test_accept_on_the_deadline_still_counts(world):
    ids = seed_offers(world, "donor_a")

    accepted = world.lifecycle.accept(ids["donor_a"], "donor_a", now=world.later(hours=1))

    assert accepted.status == MatchStatus.ACCEPTED


def test_only_the_offered_donor_may_act(world):
    ids = seed_offers(world, "donor_a", "donor_b")

    with pytest.raises(AuthorizationError):
        world.lifecycle.accept(ids["donor_a"], "donor_b", now=world.later(minutes=1))
    with pytest.raises(AuthorizationError):
        world.lifecycle.reject(ids["donor_a"], "donor_b", now=world.later(minutes=1))

    assert status_of(world, ids["donor_a"]) == MatchStatus.PENDING


def test_unknown_match(world):
    with pytest.raises(NotFoundError):
        world.lifecycle.accept("missing", "donor_a")
    with pytest.raises(NotFoundError):
        world.lifecycle.expire("missing")


def test_reject(world):
    ids = seed_offers(world, "donor_a")
    when = world.later(minutes=3)

    rejected = world.lifecycle.reject(ids["donor_a"], "donor_a", now=when)

    assert rejected.status == MatchStatus.REJECTED
    assert rejected.responded_at == when
    # no request-level side effect
    assert request_status(world) == RequestStatus.OPEN

    with pytest.raises(ConflictError):
        world.lifecycle.reject(ids["donor_a"], "donor_a", now=when)
    with pytest.raises(ConflictError):
        world.lifecycle.accept(ids["donor_a"], "donor_a", now=when)


def test_reject_after_deadline(world):
    ids = seed_offers(world, "donor_a")

    with pytest.raises(MatchExpiredError):
        world.lifecycle.reject(ids["donor_a"], "donor_a", now=world.later(hours=2))
    assert status_of(world, ids["donor_a"]) == MatchStatus.EXPIRED


def test_expire_is_idempotent(world):
    ids = seed_offers(world, "donor_a")
    later = world.later(hours=2)

    # 1. Assert nothing happens before the deadline
    assert world.lifecycle.expire(ids["donor_a"], now=world.later(minutes=30)) is False
    assert status_of(world, ids["donor_a"]) == MatchStatus.PENDING

    # 2. Assert the first call after the deadline expires it, the second is a no-op
    assert world.lifecycle.expire(ids["donor_a"], now=later) is True
    assert world.lifecycle.expire(ids["donor_a"], now=later) is False
    assert status_of(world, ids["donor_a"]) == MatchStatus.EXPIRED


def test_expire_leaves_accepted_match_alone(world):
    ids = seed_offers(world, "donor_a")
    world.lifecycle.accept(ids["donor_a"], "donor_a", now=world.later(minutes=1))

    assert world.lifecycle.expire(ids["donor_a"], now=world.later(hours=5)) is False
    assert status_of(world, ids["donor_a"]) == MatchStatus.ACCEPTED


def test_get_match_expires_lazily(world):
    ids = seed_offers(world, "donor_a")

    match = world.lifecycle.get_match(ids["donor_a"], now=world.later(hours=2))

    assert match.status == MatchStatus.EXPIRED


def test_request_expires_once_all_offers_are_dead(world):
    ids = seed_offers(world, "donor_a", "donor_b", expires_at=world.later(minutes=30))
    later = world.later(hours=2)

    world.lifecycle.reject(ids["donor_a"], "donor_a", now=world.later(minutes=1))
    # donor_b is still live: the request is left alone
    assert world.lifecycle.reconcile_request("req-1", now=world.later(minutes=2)) == RequestStatus.OPEN

    world.lifecycle.expire(ids["donor_b"], now=later)

    assert request_status(world) == RequestStatus.EXPIRED
    # running it again changes nothing
    assert world.lifecycle.reconcile_request("req-1", now=later) == RequestStatus.EXPIRED


def test_complete(world):
    ids = seed_offers(world, "donor_a")

    with pytest.raises(ConflictError):
        world.lifecycle.complete(ids["donor_a"])

    world.lifecycle.accept(ids["donor_a"], "donor_a", now=world.later(minutes=1))
    completed = world.lifecycle.complete(ids["donor_a"])

    assert completed.status == MatchStatus.COMPLETED
    assert request_status(world) == RequestStatus.FULFILLED
    # re-running is a no-op
    assert world.lifecycle.complete(ids["donor_a"]).status == MatchStatus.COMPLETED


def test_cancel_sibling_offers_is_idempotent(world):
    ids = seed_offers(world, "donor_a", "donor_b", "donor_c")

    first = world.lifecycle.cancel_sibling_offers("req-1", keep_match_id=ids["donor_a"])
    second = world.lifecycle.cancel_sibling_offers("req-1", keep_match_id=ids["donor_a"])

    assert sorted(first) == sorted([ids["donor_b"], ids["donor_c"]])
    assert second == []
    assert status_of(world, ids["donor_a"]) == MatchStatus.PENDING


class TestExpirySweeper:
    def test_sweeps_overdue_offers(self, world):
        ids = seed_offers(world, "donor_a", "donor_b", "donor_c")
        sweeper = ExpirySweeper(world.matches, world.lifecycle, world.policy)

        # 1. Assert nothing is due inside the offer window
        assert sweeper.run_cycle(now=world.later(minutes=10)).expired_count == 0

        # 2. Assert every PENDING offer goes once the window has passed
        stats = sweeper.run_cycle(now=world.later(hours=2))
        assert sorted(stats.expired_ids) == sorted(ids.values())
        assert all(status_of(world, m) == MatchStatus.EXPIRED for m in ids.values())

        # 3. Assert the next cycle finds nothing
        assert sweeper.run_cycle(now=world.later(hours=3)).expired_count == 0

    def test_batches_are_bounded(self, world):
        seed_offers(world, *[f"donor_{i}" for i in range(5)])
        sweeper = ExpirySweeper(world.matches, world.lifecycle, replace(world.policy, sweep_batch_size=2))

        stats = sweeper.run_cycle(now=world.later(hours=2), max_batches=2)

        assert stats.expired_count == 4
        assert sweeper.run_cycle(now=world.later(hours=2)).expired_count == 1
