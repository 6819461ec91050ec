"""Core domain models for the executor fleet."""

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, List, Optional, Tuple


class SlotState(Enum):
    """Slot lifecycle state."""

    EMPTY = "EMPTY"
    LAUNCH_PENDING = "LAUNCH_PENDING"
    STAGING = "STAGING"
    RUNNING = "RUNNING"
    UNHEALTHY = "UNHEALTHY"
    KILLING = "KILLING"
    LOST = "LOST"
    FAILED = "FAILED"


# Slots counted as capacity when computing the deficit
LIVE_STATES = frozenset({
    SlotState.LAUNCH_PENDING,
    SlotState.STAGING,
    SlotState.RUNNING,
})

# Slots whose task the resource manager is expected to know about
BOUND_STATES = frozenset({
    SlotState.LAUNCH_PENDING,
    SlotState.STAGING,
    SlotState.RUNNING,
    SlotState.UNHEALTHY,
    SlotState.KILLING,
})


class TaskStatus(Enum):
    """Task status as reported by the resource manager."""

    STAGING = "STAGING"
    STARTING = "STARTING"
    RUNNING = "RUNNING"
    FINISHED = "FINISHED"
    FAILED = "FAILED"
    KILLED = "KILLED"
    LOST = "LOST"
    ERROR = "ERROR"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset({
    TaskStatus.FINISHED,
    TaskStatus.FAILED,
    TaskStatus.KILLED,
    TaskStatus.LOST,
    TaskStatus.ERROR,
})


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class PortPair:
    """Ordered (http, transport) port pair used by one executor."""

    http: int
    transport: int

    def as_tuple(self) -> Tuple[int, int]:
        return (self.http, self.transport)

    def __str__(self) -> str:
        return f"{self.http}/{self.transport}"


@dataclass(frozen=True)
class ResourceRequirements:
    """Per-executor resources. ``ports`` is an ordered set of preferred pairs."""

    cpu: float
    memory: int
    ports: Tuple[PortPair, ...] = ()


@dataclass(frozen=True)
class DesiredSpec:
    """Target executor count plus per-executor requirements."""

    count: int
    resources: ResourceRequirements


@dataclass(frozen=True)
class ExecutorSlot:
    """
    One unit of desired capacity.

    Instances are immutable; the registry swaps in a new instance for every
    mutation after it has been persisted.
    """

    slot_id: int
    state: SlotState = SlotState.EMPTY
    task_id: Optional[str] = None
    generation: int = 0

    # Binding details
    agent_id: Optional[str] = None
    hostname: Optional[str] = None
    ports: Optional[PortPair] = None
    bound_at: Optional[datetime] = None

    # Health
    running_since: Optional[datetime] = None
    last_health_ack_time: Optional[datetime] = None

    updated_at: datetime = field(default_factory=utc_now)

    def evolve(self, **changes) -> "ExecutorSlot":
        """Return a copy with ``changes`` applied."""
        return replace(self, **changes)


@dataclass(frozen=True)
class Offer:
    """A unit of resources advertised by the resource manager."""

    offer_id: str
    agent_id: str
    hostname: str
    cpu: float
    memory: int
    ports: Tuple[int, ...] = ()

    def has_ports(self, pair: PortPair) -> bool:
        return pair.http in self.ports and pair.transport in self.ports


@dataclass(frozen=True)
class LaunchRequest:
    """A request to start one executor task from an offer."""

    task_id: str
    slot_id: int
    generation: int
    offer_id: str
    agent_id: str
    hostname: str
    cpu: float
    memory: int
    ports: PortPair
    image: str
    command: Tuple[str, ...] = ()
    environment: Dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class TaskStatusUpdate:
    """A status event for one task."""

    task_id: str
    status: TaskStatus
    timestamp: datetime = field(default_factory=utc_now)
    message: Optional[str] = None


@dataclass
class ClusterSnapshot:
    """
    Resource-manager view of the framework's tasks.

    Not trusted until cross-checked against the registry.
    """

    sweep_id: int
    statuses: Dict[str, TaskStatus] = field(default_factory=dict)
    taken_at: datetime = field(default_factory=utc_now)

    def status_of(self, task_id: str) -> Optional[TaskStatus]:
        return self.statuses.get(task_id)

    def live_task_ids(self) -> List[str]:
        return [
            task_id for task_id, status in self.statuses.items()
            if not status.is_terminal
        ]
