from __future__ import annotations

import threading
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Dict, Optional

from common.types import LatLon, utc_now
from .haversine import validate_coordinates


@dataclass(frozen=True)
class PositionReport:
    lat: float
    lon: float
    reported_at: datetime

    @property
    def coordinates(self) -> LatLon:
        return (self.lat, self.lon)


class InMemoryLocationCache:
    """
    Last-known donor positions fed by the live location side channel.

    - last-write-wins per donor, but an older report never replaces a newer one
    - reports older than max_age_seconds count as missing (the donor gets excluded)
    - stale entries are dropped on read and by purge_stale(), so retention is bounded

    Any object with get_last_known_position(donor_id) can stand in (Redis, etc.).
    """
    def __init__(self, max_age_seconds: int = 900):
        if max_age_seconds <= 0:
            raise ValueError("max_age_seconds must be > 0")
        self.max_age = timedelta(seconds=max_age_seconds)
        self._positions: Dict[str, PositionReport] = {}
        self._lock = threading.Lock()

    def update(self, donor_id: str, lat: float, lon: float, reported_at: Optional[datetime] = None) -> bool:
        """
        Store a position report. Returns False when the report was ignored
        because a newer one is already cached.
        """
        lat, lon = validate_coordinates((lat, lon))
        report = PositionReport(lat=lat, lon=lon, reported_at=reported_at or utc_now())

        with self._lock:
            current = self._positions.get(donor_id)
            if current is not None and current.reported_at > report.reported_at:
                return False
            self._positions[donor_id] = report
            return True

    def get_last_known_position(self, donor_id: str, now: Optional[datetime] = None) -> Optional[LatLon]:
        now = now or utc_now()
        with self._lock:
            report = self._positions.get(donor_id)
            if report is None:
                return None
            if now - report.reported_at > self.max_age:
                del self._positions[donor_id]
                return None
            return report.coordinates

    def forget(self, donor_id: str) -> None:
        with self._lock:
            self._positions.pop(donor_id, None)

    def purge_stale(self, now: Optional[datetime] = None) -> int:
        """Drop every expired report. Returns how many were removed."""
        now = now or utc_now()
        with self._lock:
            stale = [donor_id for donor_id, report in self._positions.items() if now - report.reported_at > self.max_age]
            for donor_id in stale:
                del self._positions[donor_id]
        return len(stale)

    def __len__(self) -> int:
        return len(self._positions)
