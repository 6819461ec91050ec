# fleet_scheduler/simulation/clock.py

from datetime import datetime, timedelta, timezone
from threading import Lock
from typing import Optional


class ManualClock:
    """
    Clock that only moves when told to.

    Pass the instance wherever a ``clock`` callable is expected.
    """

    def __init__(self, start: Optional[datetime] = None):
        self._now = start or datetime(2024, 1, 1, tzinfo=timezone.utc)
        self._lock = Lock()

    def __call__(self) -> datetime:
        with self._lock:
            return self._now

    def now(self) -> datetime:
        return self()

    def advance(self, seconds: float) -> datetime:
        with self._lock:
            self._now = self._now + timedelta(seconds=seconds)
            return self._now

    def monotonic(self) -> float:
        """Seconds since the epoch, for deadline arithmetic."""
        return self().timestamp()

    def sleep(self, seconds: float) -> None:
        self.advance(seconds)
