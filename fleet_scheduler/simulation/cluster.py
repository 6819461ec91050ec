# fleet_scheduler/simulation/cluster.py
"""
In-process resource manager.

Agents with fixed resources and port ranges, offers built from what is
free, tasks that start immediately, and hooks to kill tasks behind the
scheduler's back or cut the connection.
"""

import itertools
import logging
from dataclasses import dataclass, field
from datetime import datetime
from threading import RLock
from typing import Callable, Dict, List, Optional, Sequence, Set, Tuple

from fleet_scheduler.core.errors import ResourceManagerUnavailable
from fleet_scheduler.core.models import (
    ClusterSnapshot,
    ExecutorSlot,
    LaunchRequest,
    Offer,
    PortPair,
    TaskStatus,
    TaskStatusUpdate,
    utc_now,
)
from fleet_scheduler.health_monitor.probes import ExecutorProber
from fleet_scheduler.resource_manager.driver import (
    Disconnected,
    DriverListener,
    OfferRescinded,
    OffersReceived,
    ReconcileCompleted,
    Registered,
    ResourceManagerDriver,
    StatusUpdate,
)

logger = logging.getLogger(__name__)


@dataclass
class SimulatedAgent:
    agent_id: str
    hostname: str
    cpu: float = 1.0
    memory: int = 1024
    ports: Tuple[int, ...] = ()


@dataclass
class SimulatedTask:
    task_id: str
    framework_id: str
    agent_id: str
    cpu: float
    memory: int
    ports: PortPair
    status: TaskStatus = TaskStatus.STAGING
    healthy: bool = True
    probe_latency_seconds: float = 0.0
    launched_at: datetime = field(default_factory=utc_now)


class SimulatedCluster(ResourceManagerDriver):
    """A ResourceManagerDriver backed by in-memory agents and tasks."""

    def __init__(
        self,
        agents: Sequence[SimulatedAgent],
        *,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.agents: Dict[str, SimulatedAgent] = {a.agent_id: a for a in agents}
        self.clock = clock

        # Probe latency for newly launched tasks
        self.default_probe_latency_seconds = 0.0
        # When set, reconcile answers wait for release_reconciliations()
        self.hold_reconciliations = False
        # When cleared, launched tasks start but no status is ever sent for them
        self.acknowledge_launches = True
        # Number of upcoming kill requests that are accepted but never carried out
        self.drop_kills = 0

        self._lock = RLock()
        self._listener: Optional[DriverListener] = None
        self._connected = False
        self._framework_id: Optional[str] = None
        self._frameworks: Set[str] = set()
        self._framework_seq = itertools.count(1)
        self._offer_seq = itertools.count(1)

        self._offers: Dict[str, Offer] = {}
        self._held_snapshots: List[ClusterSnapshot] = []
        self.tasks: Dict[str, SimulatedTask] = {}

        # Call history
        self.launched: List[LaunchRequest] = []
        self.killed: List[str] = []
        self.declined: List[str] = []
        self.reconciliations: List[int] = []
        self.revives = 0

    @classmethod
    def with_agents(
        cls,
        count: int,
        *,
        cpu: float = 1.0,
        memory: int = 1024,
        http_base: int = 9200,
        transport_base: int = 9300,
        **kwargs,
    ) -> "SimulatedCluster":
        """``count`` agents; agent i offers ports [http_base+i, transport_base+i]."""
        agents = [
            SimulatedAgent(
                agent_id=f"agent-{i}",
                hostname=f"agent{i}.cluster.local",
                cpu=cpu,
                memory=memory,
                ports=(http_base + i, transport_base + i),
            )
            for i in range(count)
        ]
        return cls(agents, **kwargs)

    # -------------------------
    # DRIVER CONTRACT
    # -------------------------

    def start(self, listener: DriverListener, framework_id: Optional[str] = None) -> None:
        with self._lock:
            self._listener = listener
            reregistered = framework_id is not None and framework_id in self._frameworks

            if not reregistered:
                framework_id = f"framework-{next(self._framework_seq)}"
                self._frameworks.add(framework_id)

            self._framework_id = framework_id
            self._connected = True
            logger.info(f"[cluster] Framework {framework_id} {'re' if reregistered else ''}registered")
            self._emit(Registered(framework_id=framework_id, reregistered=reregistered))

    def stop(self, failover: bool = True) -> None:
        with self._lock:
            if not failover:
                for task_id in [t.task_id for t in self._framework_tasks()]:
                    del self.tasks[task_id]
            self._listener = None
            self._connected = False
            self._offers.clear()
            logger.info(f"[cluster] Framework {self._framework_id} detached (failover={failover})")

    def launch(self, requests: Sequence[LaunchRequest]) -> None:
        with self._lock:
            self._require_connected()

            by_offer: Dict[str, List[LaunchRequest]] = {}
            for request in requests:
                by_offer.setdefault(request.offer_id, []).append(request)

            for offer_id, batch in by_offer.items():
                offer = self._offers.pop(offer_id, None)

                if offer is None:
                    for request in batch:
                        self._send_status(request.task_id, TaskStatus.LOST, "offer no longer valid")
                    continue

                if not self._fits(offer, batch):
                    for request in batch:
                        self._send_status(request.task_id, TaskStatus.ERROR, "insufficient resources")
                    continue

                for request in batch:
                    self._start_task(request)

    def kill(self, task_id: str) -> None:
        with self._lock:
            self._require_connected()
            self.killed.append(task_id)

            if self.drop_kills > 0:
                self.drop_kills -= 1
                logger.info(f"[cluster] Kill of {task_id} lost")
                return

            task = self.tasks.pop(task_id, None)
            if task is None:
                self._send_status(task_id, TaskStatus.LOST, "unknown task")
                return

            task.status = TaskStatus.KILLED
            self._send_status(task_id, TaskStatus.KILLED, "killed by scheduler")

    def reconcile(self, task_ids: Sequence[str], sweep_id: int) -> None:
        with self._lock:
            self._require_connected()
            self.reconciliations.append(sweep_id)

            snapshot = ClusterSnapshot(
                sweep_id=sweep_id,
                statuses={t.task_id: t.status for t in self._framework_tasks()},
                taken_at=self.clock(),
            )

            if self.hold_reconciliations:
                self._held_snapshots.append(snapshot)
                return

            self._emit(ReconcileCompleted(snapshot))

    def decline(self, offer_id: str) -> None:
        with self._lock:
            self._require_connected()
            if self._offers.pop(offer_id, None) is not None:
                self.declined.append(offer_id)

    def revive(self) -> None:
        with self._lock:
            self._require_connected()
            self.revives += 1

    # -------------------------
    # SIMULATION CONTROLS
    # -------------------------

    @property
    def connected(self) -> bool:
        return self._connected

    @property
    def framework_id(self) -> Optional[str]:
        return self._framework_id

    def offer_all(self) -> List[Offer]:
        """Offer the free resources of every agent that has no outstanding offer."""
        with self._lock:
            if not self._connected:
                return []

            offered_agents = {o.agent_id for o in self._offers.values()}
            offers: List[Offer] = []

            for agent in self.agents.values():
                if agent.agent_id in offered_agents:
                    continue

                cpu, memory, ports = self._free_resources(agent)
                if cpu <= 0 or memory <= 0:
                    continue

                offer = Offer(
                    offer_id=f"offer-{next(self._offer_seq)}",
                    agent_id=agent.agent_id,
                    hostname=agent.hostname,
                    cpu=cpu,
                    memory=memory,
                    ports=ports,
                )
                self._offers[offer.offer_id] = offer
                offers.append(offer)

            if offers:
                self._emit(OffersReceived(offers=offers))
            return offers

    def rescind(self, offer_id: str, notify: bool = True) -> None:
        """Withdraw an offer. With ``notify`` off the scheduler is not told, so a launch on it fails."""
        with self._lock:
            if self._offers.pop(offer_id, None) is not None and notify:
                self._emit(OfferRescinded(offer_id=offer_id))

    def kill_externally(self, task_id: str, status: TaskStatus = TaskStatus.KILLED) -> None:
        """Terminate a task without the scheduler asking. Dropped if nobody listens."""
        with self._lock:
            task = self.tasks.pop(task_id)
            task.status = status
            logger.info(f"[cluster] Task {task_id} terminated externally ({status.value})")
            self._send_status(task_id, status, "terminated externally")

    def crash(self, task_id: str) -> None:
        self.kill_externally(task_id, TaskStatus.FAILED)

    def set_probe_latency(self, seconds: float, task_id: Optional[str] = None) -> None:
        """Latency for one task, or for every current and future task."""
        with self._lock:
            if task_id is None:
                self.default_probe_latency_seconds = seconds
                targets = list(self.tasks.values())
            else:
                targets = [self.tasks[task_id]]
            for task in targets:
                task.probe_latency_seconds = seconds

    def set_healthy(self, task_id: str, healthy: bool) -> None:
        with self._lock:
            self.tasks[task_id].healthy = healthy

    def disconnect(self, reason: str = "connection lost") -> None:
        with self._lock:
            self._emit(Disconnected(reason=reason))
            self._connected = False
            self._offers.clear()

    def reconnect(self) -> None:
        with self._lock:
            if self._listener is None or self._framework_id is None:
                raise ResourceManagerUnavailable("No framework to reconnect")
            self._connected = True
            self._emit(Registered(framework_id=self._framework_id, reregistered=True))

    def release_reconciliations(self, newest_first: bool = False) -> None:
        """Deliver held reconcile answers (optionally out of order)."""
        with self._lock:
            held = list(reversed(self._held_snapshots)) if newest_first else list(self._held_snapshots)
            self._held_snapshots.clear()
            for snapshot in held:
                self._emit(ReconcileCompleted(snapshot))

    def probe(self, task_id: Optional[str], timeout_seconds: float) -> bool:
        with self._lock:
            task = self.tasks.get(task_id) if task_id else None
            if task is None or task.status != TaskStatus.RUNNING:
                return False
            return task.healthy and task.probe_latency_seconds <= timeout_seconds

    def running_task_ids(self) -> List[str]:
        with self._lock:
            return sorted(t.task_id for t in self.tasks.values() if t.status == TaskStatus.RUNNING)

    # -------------------------
    # INTERNAL HELPERS
    # -------------------------

    def _require_connected(self) -> None:
        if not self._connected:
            raise ResourceManagerUnavailable("Not connected to the resource manager")

    def _emit(self, event: object) -> None:
        if self._listener is not None:
            self._listener(event)

    def _send_status(self, task_id: str, status: TaskStatus, message: Optional[str] = None) -> None:
        if not self._connected:
            logger.info(f"[cluster] No scheduler connected, {status.value} for {task_id} dropped")
            return
        self._emit(StatusUpdate(TaskStatusUpdate(
            task_id=task_id,
            status=status,
            timestamp=self.clock(),
            message=message,
        )))

    def _framework_tasks(self) -> List[SimulatedTask]:
        return [t for t in self.tasks.values() if t.framework_id == self._framework_id]

    def _free_resources(self, agent: SimulatedAgent) -> Tuple[float, int, Tuple[int, ...]]:
        cpu, memory = agent.cpu, agent.memory
        used_ports: Set[int] = set()
        for task in self.tasks.values():
            if task.agent_id == agent.agent_id:
                cpu -= task.cpu
                memory -= task.memory
                used_ports.update(task.ports.as_tuple())
        ports = tuple(p for p in agent.ports if p not in used_ports)
        return round(cpu, 6), memory, ports

    @staticmethod
    def _fits(offer: Offer, batch: List[LaunchRequest]) -> bool:
        cpu = sum(r.cpu for r in batch)
        memory = sum(r.memory for r in batch)
        ports = [p for r in batch for p in r.ports.as_tuple()]
        return (
            cpu <= offer.cpu + 1e-9
            and memory <= offer.memory
            and len(ports) == len(set(ports))
            and all(p in offer.ports for p in ports)
        )

    def _start_task(self, request: LaunchRequest) -> None:
        task = SimulatedTask(
            task_id=request.task_id,
            framework_id=self._framework_id,
            agent_id=request.agent_id,
            cpu=request.cpu,
            memory=request.memory,
            ports=request.ports,
            probe_latency_seconds=self.default_probe_latency_seconds,
            launched_at=self.clock(),
        )
        self.tasks[task.task_id] = task
        self.launched.append(request)
        logger.info(f"[cluster] Task {task.task_id} started on {request.hostname} ports {request.ports}")

        if not self.acknowledge_launches:
            return

        self._send_status(task.task_id, TaskStatus.STAGING)
        task.status = TaskStatus.RUNNING
        self._send_status(task.task_id, TaskStatus.RUNNING)


class SimulatedProber(ExecutorProber):
    """Asks the simulated cluster whether the slot's task would answer within the timeout."""

    def __init__(self, cluster: SimulatedCluster, timeout_seconds: float):
        self.cluster = cluster
        self.timeout_seconds = timeout_seconds

    def probe(self, slot: ExecutorSlot) -> bool:
        return self.cluster.probe(slot.task_id, self.timeout_seconds)
