#fleet_scheduler\container.py

"""Dependency container - wires one scheduler instance together."""

import logging
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime
from typing import Callable, Optional

from fleet_scheduler.config import SchedulerConfig
from fleet_scheduler.coordinator.coordinator import ReconciliationCoordinator
from fleet_scheduler.core.events import EventEmitter, LogEventEmitter, MultiEventEmitter
from fleet_scheduler.core.factory import TaskIdFactory
from fleet_scheduler.core.repository import SchedulerStateRepository
from fleet_scheduler.desired_state.store import DesiredStateStore
from fleet_scheduler.health_monitor.monitor import HealthMonitor, run_inline
from fleet_scheduler.health_monitor.probes import ExecutorProber
from fleet_scheduler.planner.planner import LaunchPlanner
from fleet_scheduler.registry.registry import ExecutorRegistry
from fleet_scheduler.resource_manager.driver import ResourceManagerDriver
from fleet_scheduler.core.models import utc_now

logger = logging.getLogger(__name__)


class SchedulerContainer:
    """
    Lifecycle-scoped handle for one scheduler incarnation.

    A restart is modelled by stopping this container and building a new one
    over the same repository and driver.
    """

    def __init__(
        self,
        *,
        config: SchedulerConfig,
        repository: SchedulerStateRepository,
        driver: ResourceManagerDriver,
        store: DesiredStateStore,
        registry: ExecutorRegistry,
        planner: LaunchPlanner,
        monitor: HealthMonitor,
        coordinator: ReconciliationCoordinator,
        events: LogEventEmitter,
        probe_pool: Optional[ThreadPoolExecutor] = None,
    ):
        self.config = config
        self.repository = repository
        self.driver = driver
        self.store = store
        self.registry = registry
        self.planner = planner
        self.monitor = monitor
        self.coordinator = coordinator
        self.events = events
        self._probe_pool = probe_pool

    def boot(self) -> bool:
        """Load state and register, without starting the loop thread."""
        return self.coordinator.boot()

    def start(self) -> None:
        self.coordinator.start()

    def stop(self) -> None:
        self.coordinator.stop()
        if self._probe_pool is not None:
            self._probe_pool.shutdown(wait=False)
            self._probe_pool = None


def build_scheduler(
    config: SchedulerConfig,
    *,
    repository: SchedulerStateRepository,
    driver: ResourceManagerDriver,
    prober: ExecutorProber,
    clock: Callable[[], datetime] = utc_now,
    threaded_probes: bool = False,
    probe_workers: int = 4,
    event_history: int = 1000,
    emitters: Optional[list] = None,
) -> SchedulerContainer:
    """
    Build every component for one scheduler instance.

    Args:
        threaded_probes: Run probes on a thread pool (production); inline otherwise
        emitters: Extra EventEmitter instances fanned out alongside the recording one
        event_history: How many recent events the recording emitter keeps
    """
    events = LogEventEmitter(max_events=event_history)
    emitter: EventEmitter = MultiEventEmitter([events, *(emitters or [])])

    store = DesiredStateStore(repository, config.desired_spec)
    registry = ExecutorRegistry(
        repository,
        task_ids=TaskIdFactory(config.launch_config.task_prefix),
        emitter=emitter,
        clock=clock,
    )
    planner = LaunchPlanner(
        registry,
        config.launch_config,
        requirements=lambda: store.current().resources,
    )

    probe_pool = None
    submit = run_inline
    if threaded_probes:
        probe_pool = ThreadPoolExecutor(max_workers=probe_workers, thread_name_prefix="health-probe")
        submit = probe_pool.submit

    monitor = HealthMonitor(
        registry,
        prober,
        config.health_policy,
        clock=clock,
        submit=submit,
    )

    coordinator = ReconciliationCoordinator(
        store=store,
        registry=registry,
        planner=planner,
        monitor=monitor,
        driver=driver,
        repository=repository,
        config=config,
        emitter=emitter,
        clock=clock,
    )

    logger.info(f"[container] Scheduler '{config.framework_name}' wired")

    return SchedulerContainer(
        config=config,
        repository=repository,
        driver=driver,
        store=store,
        registry=registry,
        planner=planner,
        monitor=monitor,
        coordinator=coordinator,
        events=events,
        probe_pool=probe_pool,
    )
