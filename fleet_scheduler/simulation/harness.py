# fleet_scheduler/simulation/harness.py
"""Drives scheduler incarnations against a SimulatedCluster on simulated time."""

import logging
from typing import Callable, List, Optional

from fleet_scheduler.config import SchedulerConfig
from fleet_scheduler.container import SchedulerContainer, build_scheduler
from fleet_scheduler.core.models import SlotState
from fleet_scheduler.core.repository import SchedulerStateRepository
from fleet_scheduler.simulation.await_condition import AwaitResult, await_condition
from fleet_scheduler.simulation.clock import ManualClock
from fleet_scheduler.simulation.cluster import SimulatedCluster, SimulatedProber

logger = logging.getLogger(__name__)


class SimulationHarness:
    """
    One cluster, one store, any number of scheduler incarnations.

    Nothing runs on background threads; ``step`` advances the clock and
    drains every queue, so runs are deterministic.
    """

    def __init__(
        self,
        config: SchedulerConfig,
        *,
        repository: SchedulerStateRepository,
        cluster: SimulatedCluster,
        clock: ManualClock,
        event_history: int = 1000,
    ):
        self.config = config
        self.event_history = event_history
        self.repository = repository
        self.cluster = cluster
        self.clock = clock
        self.container: Optional[SchedulerContainer] = None
        self.incarnations = 0

        # Called inside each step after timers fired, before new offers arrive
        self.after_timers: List[Callable[[], None]] = []

    # -------------------------
    # LIFECYCLE
    # -------------------------

    def start_scheduler(self) -> SchedulerContainer:
        if self.container is not None:
            raise RuntimeError("Scheduler already running")

        prober = SimulatedProber(self.cluster, timeout_seconds=self.config.health_policy.timeout_seconds)
        self.container = build_scheduler(
            self.config,
            repository=self.repository,
            driver=self.cluster,
            prober=prober,
            clock=self.clock,
            event_history=self.event_history,
        )
        self.incarnations += 1
        self.container.boot()
        self.drain()
        logger.info(f"[harness] Scheduler incarnation {self.incarnations} started")
        return self.container

    def stop_scheduler(self) -> None:
        if self.container is None:
            return
        self.container.stop()
        self.container = None
        logger.info(f"[harness] Scheduler incarnation {self.incarnations} stopped")

    def restart_scheduler(self, downtime_seconds: float = 0.0) -> SchedulerContainer:
        self.stop_scheduler()
        if downtime_seconds:
            self.clock.advance(downtime_seconds)
        return self.start_scheduler()

    # -------------------------
    # DRIVING
    # -------------------------

    def drain(self) -> int:
        if self.container is None:
            return 0
        return self.container.coordinator.process_events()

    def step(self, seconds: float = 1.0) -> None:
        """Advance time, run timers, offer free resources, drain."""
        self.clock.advance(seconds)
        if self.container is None:
            return

        self.drain()
        self.container.coordinator.tick()
        self.drain()
        for observer in self.after_timers:
            observer()
        self.cluster.offer_all()
        self.drain()

    def await_(
        self,
        condition: Callable[[], bool],
        *,
        timeout: float = 60.0,
        interval: float = 1.0,
        name: str = "condition",
        on_step: Optional[Callable[[], None]] = None,
    ) -> AwaitResult:
        """Step simulated time until ``condition`` holds or ``timeout`` simulated seconds pass."""

        def step():
            self.drain()
            if on_step is not None:
                on_step()

        return await_condition(
            condition,
            timeout=timeout,
            interval=interval,
            step=step,
            monotonic=self.clock.monotonic,
            sleep=self.step,
            name=name,
            describe=self.describe,
        )

    # -------------------------
    # OBSERVATION
    # -------------------------

    def running_count(self) -> int:
        if self.container is None:
            return 0
        return self.container.registry.count_in([SlotState.RUNNING])

    def bound_task_ids(self) -> List[str]:
        if self.container is None:
            return []
        return self.container.registry.bound_task_ids()

    def describe(self) -> str:
        if self.container is None:
            return "no scheduler running"
        slots = ", ".join(
            f"{s.slot_id}:{s.state.value}:{s.task_id}" for s in self.container.registry.snapshot()
        )
        return f"slots=[{slots}] cluster_running={len(self.cluster.running_task_ids())}"
