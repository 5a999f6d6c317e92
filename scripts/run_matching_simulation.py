import csv
import logging
import os
import random
import time
import uuid
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime
from typing import List, Tuple

import pandas as pd

from common.errors import ConflictError, MatchingError, SettlementFailure
from common.types import utc_now
from donation_requests.models import DonationRequest, UrgencyLevel
from donors.models import DonorProfile
from geo.location_cache import InMemoryLocationCache
from matching.dispatcher import MatchDispatcher
from matching.memory import InMemoryDatabase, InMemoryDonorDirectory, InMemoryMatchStore, InMemoryNotifier, InMemoryRequestStore
from matching.policy import policy_from_env
from matching.ranker import CandidateRanker
from matching.state_machines.match_state import MatchLifecycleManager
from reputation.feedback import ReputationFeedback
from settlement.completion import DonationCompletionService

from generate_mock_donors import generate_mock_donors

CENTER = (-17.824858, 31.053028)


class MockSettlement:
    """Ledger stand-in that fails now and then, like a real gateway."""
    def __init__(self, failure_rate=0.1):
        self.failure_rate = failure_rate

    def confirm_donation(self, match_id, proof):
        if random.random() < self.failure_rate:
            raise SettlementFailure("ledger gateway timeout")
        return f"tx_{uuid.uuid4().hex[:12]}"


class PrintingBadgeIssuer:
    def issue_badge(self, donor_id, milestone):
        print(f"  [BADGE] {donor_id} reached {milestone} donations")


def _value(row, key):
    value = row[key]
    return None if pd.isna(value) else value


def load_donors(filepath: str, locations: InMemoryLocationCache, now: datetime) -> List[DonorProfile]:
    df = pd.read_csv(filepath)
    donors = []
    for _, row in df.iterrows():
        last_donation = _value(row, "last_donation_at")
        donors.append(
            DonorProfile(
                id=row["donor_id"],
                blood_type=row["blood_type"],
                rh_factor=row["rh_factor"],
                reputation_score=float(row["reputation_score"]),
                fraud_risk_score=float(row["fraud_risk_score"]),
                successful_donations=int(row["successful_donations"]),
                failed_matches=int(row["failed_matches"]),
                avg_response_seconds=_value(row, "avg_response_seconds"),
                is_available=bool(row["is_available"]),
                is_blocked=bool(row["is_blocked"]),
                strongly_verified=bool(row["strongly_verified"]),
                last_donation_at=datetime.fromisoformat(last_donation) if last_donation else None,
            )
        )
        lat, lon = _value(row, "lat"), _value(row, "lon")
        if lat is not None and lon is not None:
            locations.update(row["donor_id"], float(lat), float(lon), reported_at=now)
    return donors


def make_requests(count: int, now: datetime) -> List[DonationRequest]:
    requests = []
    for index in range(count):
        blood_type = random.choice(["O_POSITIVE", "A_POSITIVE", "O_NEGATIVE", "B_POSITIVE"])
        requests.append(
            DonationRequest.new(
                recipient_id=f"r_{index + 1:03d}",
                blood_type=blood_type,
                rh_factor="NEGATIVE" if blood_type.endswith("_NEGATIVE") else "POSITIVE",
                units_needed=random.randint(1, 3),
                urgency=random.choice(list(UrgencyLevel)),
                origin=(CENTER[0] + random.uniform(-0.1, 0.1), CENTER[1] + random.uniform(-0.1, 0.1)),
                radius_km=50.0,
                now=now,
            )
        )
    return requests


def race_accepts(dispatcher: MatchDispatcher, offers) -> Tuple[int, int]:
    """
    Every offered donor hits Accept at the same moment. Exactly one wins.
    """
    def attempt(offer):
        try:
            dispatcher.accept_offer(offer.match.id, offer.donor_id)
            return True
        except ConflictError:
            return False

    with ThreadPoolExecutor(max_workers=max(len(offers), 1)) as pool:
        results = list(pool.map(attempt, offers))
    return results.count(True), results.count(False)


def run_simulation(num_requests=20):
    logging.basicConfig(level=logging.WARNING)
    print("=== STARTING END-TO-END MATCHING SIMULATION ===")

    base_dir = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
    donors_path = os.path.join(base_dir, "mock_donors.csv")
    if not os.path.exists(donors_path):
        generate_mock_donors(num_donors=500, output_file=donors_path, seed=7)

    # 1. Load Data
    now = utc_now()
    policy = policy_from_env()
    locations = InMemoryLocationCache(policy.location_max_age_seconds)
    donors = load_donors(donors_path, locations, now)
    print(f"Loaded {len(donors)} donors, {len(locations)} with a live position.\n")

    # 2. Configure System
    db = InMemoryDatabase()
    request_store = InMemoryRequestStore(db)
    match_store = InMemoryMatchStore(db)
    notifier = InMemoryNotifier()
    lifecycle = MatchLifecycleManager(match_store, request_store)
    ranker = CandidateRanker(request_store, InMemoryDonorDirectory(donors), locations, match_store, policy=policy)
    dispatcher = MatchDispatcher(ranker, lifecycle, request_store, notifier)
    reputation = ReputationFeedback(badge_issuer=PrintingBadgeIssuer())
    completion = DonationCompletionService(lifecycle, MockSettlement(), reputation, request_store, notifier)

    requests = make_requests(num_requests, now)
    for request in requests:
        request_store.add(request)

    # 3. Rank, race, settle
    output_path = os.path.join(base_dir, "matching_results.csv")
    matched = 0
    settled = 0
    start_time = time.time()

    with open(output_path, "w", newline='') as file:
        writer = csv.writer(file)
        writer.writerow(["request_id", "blood_type", "urgency", "offers", "winner", "lost_races", "settlement"])

        for request in requests:
            try:
                offers = dispatcher.dispatch_request(request.id, max_results=5)
            except MatchingError as exc:
                writer.writerow([request.id, request.blood_type.value, request.urgency.value, 0, "FAILED", 0, exc.code])
                continue

            if not offers:
                writer.writerow([request.id, request.blood_type.value, request.urgency.value, 0, "NO_CANDIDATES", 0, "N/A"])
                print(f"[NO MATCH] {request.blood_type.value} request {request.id[:8]}")
                continue

            won, lost = race_accepts(dispatcher, offers)
            winner = next(m for m in match_store.list_for_request(request.id) if m.status.holds_request)
            matched += won

            try:
                result = completion.complete(winner.id, {"donationCenter": "SIM", "units": request.units_needed})
                settlement = result.settlement_id
                settled += 1
            except MatchingError as exc:
                settlement = exc.code

            writer.writerow([
                request.id, request.blood_type.value, request.urgency.value,
                len(offers), winner.donor_id, lost, settlement,
            ])
            print(f"[MATCHED] {request.blood_type.value} request {request.id[:8]} -> {winner.donor_id} "
                  f"({len(offers)} offers, {lost} lost races)")

    print("\n=== SIMULATION COMPLETE ===")
    print(f"Requests Matched: {matched} / {len(requests)}")
    print(f"Donations Settled: {settled} / {matched}")
    print(f"Notifications Sent: {len(notifier.sent)}")
    print(f"Elapsed: {time.time() - start_time:.2f}s")
    print(f"Results written to '{output_path}'.")


if __name__ == "__main__":
    run_simulation()
