# fleet_scheduler/resource_manager/driver.py
"""
Resource manager contract.

Every call is fire-and-forget. Results (registration, offers, task statuses,
reconciliation snapshots) come back later as events handed to the listener
given at ``start``.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Sequence

from fleet_scheduler.core.models import ClusterSnapshot, LaunchRequest, Offer, TaskStatusUpdate


# -----------------------------
# Driver events
# -----------------------------

@dataclass(frozen=True)
class Registered:
    """Connected to the resource manager (``reregistered`` after a failover or reconnect)."""
    framework_id: str
    reregistered: bool = False


@dataclass(frozen=True)
class Disconnected:
    reason: str = ""


@dataclass(frozen=True)
class OffersReceived:
    offers: List[Offer] = field(default_factory=list)


@dataclass(frozen=True)
class OfferRescinded:
    offer_id: str


@dataclass(frozen=True)
class StatusUpdate:
    update: TaskStatusUpdate


@dataclass(frozen=True)
class ReconcileCompleted:
    snapshot: ClusterSnapshot


DriverListener = Callable[[object], None]


class ResourceManagerDriver(ABC):
    """Abstract connection to the cluster resource manager."""

    @abstractmethod
    def start(self, listener: DriverListener, framework_id: Optional[str] = None) -> None:
        """
        Register with the resource manager.

        Args:
            listener: Receives every driver event
            framework_id: Previously assigned id to fail over to, if any
        """
        pass

    @abstractmethod
    def stop(self, failover: bool = True) -> None:
        """Disconnect. With ``failover`` the framework's tasks keep running."""
        pass

    @abstractmethod
    def launch(self, requests: Sequence[LaunchRequest]) -> None:
        """
        Launch tasks on the offers named in ``requests``.

        Raises:
            ResourceManagerUnavailable: If disconnected
        """
        pass

    @abstractmethod
    def kill(self, task_id: str) -> None:
        pass

    @abstractmethod
    def reconcile(self, task_ids: Sequence[str], sweep_id: int) -> None:
        """
        Ask for the state of ``task_ids`` and of every other task of this
        framework. Answered by a ``ReconcileCompleted`` for ``sweep_id``.
        """
        pass

    @abstractmethod
    def decline(self, offer_id: str) -> None:
        pass

    @abstractmethod
    def revive(self) -> None:
        """Ask for new offers."""
        pass
