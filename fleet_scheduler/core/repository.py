# fleet_scheduler/core/repository.py

from abc import ABC, abstractmethod
from typing import Iterable, Optional

from fleet_scheduler.core.models import DesiredSpec, ExecutorSlot


class SchedulerStateRepository(ABC):
    """
    Persistence contract for the scheduler's cross-restart state.

    Implementations raise StoreUnavailableError when the store cannot be
    reached and PersistenceError for any other write failure.
    """

    @abstractmethod
    def ping(self) -> None:
        """
        Verify the store is reachable.
        Raises StoreUnavailableError otherwise.
        """
        raise NotImplementedError

    @abstractmethod
    def load_desired_spec(self) -> Optional[DesiredSpec]:
        """
        Return the persisted desired spec.
        Returns None if none was ever saved.
        """
        raise NotImplementedError

    @abstractmethod
    def save_desired_spec(self, spec: DesiredSpec) -> None:
        raise NotImplementedError

    @abstractmethod
    def load_slots(self) -> Iterable[ExecutorSlot]:
        """
        Return every persisted slot, ordered by slot_id.
        """
        raise NotImplementedError

    @abstractmethod
    def save_slot(self, slot: ExecutorSlot) -> None:
        """
        Insert or replace one slot.
        Must be durable when it returns.
        """
        raise NotImplementedError

    @abstractmethod
    def delete_slot(self, slot_id: int) -> None:
        raise NotImplementedError

    @abstractmethod
    def load_framework_id(self) -> Optional[str]:
        raise NotImplementedError

    @abstractmethod
    def save_framework_id(self, framework_id: str) -> None:
        raise NotImplementedError
