from __future__ import annotations

from datetime import datetime, timezone
from typing import Tuple

# internal coordinate type: (lat, lon)
LatLon = Tuple[float, float]


def utc_now() -> datetime:
    """Timezone-aware 'now'. Every timestamp in the system is UTC."""
    return datetime.now(timezone.utc)
