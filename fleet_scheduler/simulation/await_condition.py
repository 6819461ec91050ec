# fleet_scheduler/simulation/await_condition.py
"""Bounded polling for asynchronous outcomes."""

import logging
import time
from dataclasses import dataclass
from typing import Callable, Optional

logger = logging.getLogger(__name__)


@dataclass
class AwaitResult:
    name: str
    succeeded: bool
    duration_seconds: float
    attempts: int
    details: Optional[str] = None

    def __bool__(self) -> bool:
        return self.succeeded


def await_condition(
    condition: Callable[[], bool],
    *,
    timeout: float = 60.0,
    interval: float = 1.0,
    step: Optional[Callable[[], None]] = None,
    monotonic: Callable[[], float] = time.monotonic,
    sleep: Callable[[float], None] = time.sleep,
    name: str = "condition",
    describe: Optional[Callable[[], str]] = None,
) -> AwaitResult:
    """
    Poll ``condition`` until it holds or ``timeout`` runs out.

    ``step`` runs before every check (e.g. drive a simulated cluster).
    With a ManualClock pass ``monotonic=clock.monotonic, sleep=clock.sleep``
    so waiting advances simulated time instead of real time.

    Returns:
        AwaitResult; never raises on timeout
    """
    start = monotonic()
    deadline = start + timeout
    attempts = 0

    while True:
        if step is not None:
            step()

        attempts += 1
        if condition():
            return AwaitResult(
                name=name,
                succeeded=True,
                duration_seconds=monotonic() - start,
                attempts=attempts,
            )

        if monotonic() >= deadline:
            details = describe() if describe else None
            logger.warning(f"[await] {name} not met after {timeout}s ({attempts} attempts): {details}")
            return AwaitResult(
                name=name,
                succeeded=False,
                duration_seconds=monotonic() - start,
                attempts=attempts,
                details=details,
            )

        sleep(interval)
