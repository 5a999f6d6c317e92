import pandas as pd
import numpy as np
from datetime import datetime, timezone, timedelta

# Rough share of each blood type in a donor population
BLOOD_TYPE_MIX = {
    "O_POSITIVE": 0.38,
    "A_POSITIVE": 0.30,
    "B_POSITIVE": 0.09,
    "AB_POSITIVE": 0.03,
    "O_NEGATIVE": 0.08,
    "A_NEGATIVE": 0.07,
    "B_NEGATIVE": 0.03,
    "AB_NEGATIVE": 0.02,
}


def generate_mock_donors(num_donors=500, output_file="mock_donors.csv", seed=None):
    """
    Generates a donor population scattered around one city, with the static
    profile fields the ranker scores on plus a live position.
    Roughly 10% of donors have no position, so the geo exclusion path gets exercised.
    """
    rng = np.random.default_rng(seed)

    # Center around Harare, Zimbabwe
    CENTER_LAT = -17.824858
    CENTER_LON = 31.053028

    now = datetime.now(timezone.utc)
    blood_types = list(BLOOD_TYPE_MIX)
    shares = np.array(list(BLOOD_TYPE_MIX.values()))
    shares = shares / shares.sum()

    data = []
    for donor_index in range(num_donors):
        blood_type = rng.choice(blood_types, p=shares)
        successful = int(rng.poisson(3))
        failed = int(rng.binomial(successful + 2, 0.15))
        has_position = rng.random() > 0.1
        # Donors placed within ~60km (roughly 0.55 degrees) so some fall outside a 50km radius
        lat = CENTER_LAT + rng.uniform(-0.55, 0.55) if has_position else None
        lon = CENTER_LON + rng.uniform(-0.55, 0.55) if has_position else None
        last_donation = now - timedelta(days=int(rng.integers(10, 400))) if successful else None

        data.append({
            "donor_id": f"d_{str(donor_index + 1).zfill(5)}",
            "blood_type": blood_type,
            "rh_factor": "NEGATIVE" if blood_type.endswith("_NEGATIVE") else "POSITIVE",
            "reputation_score": int(np.clip(rng.normal(450, 220), 0, 1000)),
            "fraud_risk_score": np.round(rng.beta(1.2, 12), 3),
            "successful_donations": successful,
            "failed_matches": failed,
            "avg_response_seconds": np.round(rng.exponential(900), 1) if rng.random() > 0.2 else None,
            "is_available": rng.random() < 0.85,
            "is_blocked": rng.random() < 0.02,
            "strongly_verified": rng.random() < 0.4,
            "last_donation_at": last_donation.isoformat() if last_donation else None,
            "lat": np.round(lat, 6) if lat is not None else None,
            "lon": np.round(lon, 6) if lon is not None else None,
        })

    df = pd.DataFrame(data)
    df.to_csv(output_file, index=False)
    print(f"Generated {num_donors} donors and saved to '{output_file}'")

    print("\nBlood type mix:")
    for name, count in df["blood_type"].value_counts().items():
        print(f"  {name}: {count} donors")
    return df


if __name__ == "__main__":
    generate_mock_donors(num_donors=500, seed=7)
