# fleet_scheduler/health_monitor/monitor.py
"""
Health Monitor - per-slot liveness probing for RUNNING executors.

Each RUNNING slot has its own probe schedule and its own window. The window
is anchored at the later of the slot's last acknowledgment and the moment
this monitor started, so a scheduler restart gives every executor a fresh
window instead of killing it for the time the scheduler was away.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional, Set, Tuple

from fleet_scheduler.config import HealthPolicy
from fleet_scheduler.core.models import ExecutorSlot, SlotState, utc_now
from fleet_scheduler.health_monitor.probes import ExecutorProber
from fleet_scheduler.registry.registry import ExecutorRegistry

logger = logging.getLogger(__name__)

SlotKey = Tuple[int, int]


@dataclass(frozen=True)
class ProbeResult:
    """Outcome of one probe, tagged with the binding it was issued for."""
    slot_id: int
    generation: int
    task_id: Optional[str]
    healthy: bool
    at: datetime


@dataclass(frozen=True)
class HealthSignal:
    """A RUNNING slot whose acknowledgment window has run out."""
    slot_id: int
    generation: int
    task_id: Optional[str]
    silent_seconds: float


def run_inline(fn: Callable[[], Any]) -> None:
    fn()


class HealthMonitor:
    """
    Issues probes and reports expired windows.

    ``tick`` only reads the registry. Acknowledgments are written back
    through ``record``, which the coordinator calls on its own loop.
    """

    def __init__(
        self,
        registry: ExecutorRegistry,
        prober: ExecutorProber,
        policy: HealthPolicy,
        *,
        clock: Callable[[], datetime] = utc_now,
        submit: Callable[[Callable[[], Any]], Any] = run_inline,
        on_result: Optional[Callable[[ProbeResult], None]] = None,
    ):
        self.registry = registry
        self.prober = prober
        self.policy = policy
        self._clock = clock
        self._submit = submit
        self._on_result = on_result or self.record

        self.started_at = clock()
        self._next_probe: Dict[SlotKey, datetime] = {}
        self._in_flight: Set[SlotKey] = set()

        logger.info(
            f"[health] Monitor started (delay={policy.delay_seconds}s, "
            f"timeout={policy.timeout_seconds}s, interval={policy.interval_seconds}s)"
        )

    def set_result_handler(self, on_result: Callable[[ProbeResult], None]) -> None:
        self._on_result = on_result

    def window_anchor(self, slot: ExecutorSlot) -> datetime:
        """Start of the slot's current acknowledgment window."""
        candidates = [self.started_at]
        if slot.last_health_ack_time is not None:
            candidates.append(slot.last_health_ack_time)
        if slot.running_since is not None:
            candidates.append(slot.running_since)
        return max(candidates)

    def tick(self, now: Optional[datetime] = None) -> List[HealthSignal]:
        """
        One pass over RUNNING slots.

        Returns:
            Slots whose window expired (``now - anchor > delay + timeout``)
        """
        now = now or self._clock()
        signals: List[HealthSignal] = []
        running: Set[SlotKey] = set()

        for slot in self.registry.in_states([SlotState.RUNNING]):
            key = (slot.slot_id, slot.generation)
            running.add(key)

            anchor = self.window_anchor(slot)
            silent = (now - anchor).total_seconds()

            if silent > self.policy.deadline_seconds:
                signals.append(HealthSignal(
                    slot_id=slot.slot_id,
                    generation=slot.generation,
                    task_id=slot.task_id,
                    silent_seconds=silent,
                ))
                continue

            due = self._next_probe.get(key, anchor + timedelta(seconds=self.policy.delay_seconds))
            if now >= due and key not in self._in_flight:
                self._next_probe[key] = now + timedelta(seconds=self.policy.interval_seconds)
                self._launch_probe(slot)

        # Forget bindings that are no longer RUNNING
        for key in list(self._next_probe):
            if key not in running:
                del self._next_probe[key]

        if signals:
            logger.warning(
                f"[health] {len(signals)} slot(s) past the {self.policy.deadline_seconds}s window: "
                f"{[s.slot_id for s in signals]}"
            )
        return signals

    def record(self, result: ProbeResult) -> bool:
        """
        Apply a probe result. Successful probes move the slot's
        last_health_ack_time forward; results for an earlier binding are dropped.
        """
        self._in_flight.discard((result.slot_id, result.generation))

        if not result.healthy:
            return False

        return self.registry.record_health_ack(result.slot_id, result.generation, result.at)

    def _launch_probe(self, slot: ExecutorSlot) -> None:
        key = (slot.slot_id, slot.generation)
        self._in_flight.add(key)

        def run():
            try:
                healthy = self.prober.probe(slot)
            except Exception as e:
                logger.warning(f"[health] Probe for slot {slot.slot_id} raised: {e}")
                healthy = False

            self._on_result(ProbeResult(
                slot_id=slot.slot_id,
                generation=slot.generation,
                task_id=slot.task_id,
                healthy=healthy,
                at=self._clock(),
            ))

        try:
            self._submit(run)
        except RuntimeError as e:
            # Pool already shut down
            self._in_flight.discard(key)
            logger.warning(f"[health] Could not submit probe for slot {slot.slot_id}: {e}")
