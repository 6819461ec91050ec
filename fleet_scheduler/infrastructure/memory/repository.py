# fleet_scheduler/infrastructure/memory/repository.py

from threading import Lock
from typing import Dict, Iterable, Optional

from fleet_scheduler.core.errors import PersistenceError, StoreUnavailableError
from fleet_scheduler.core.models import DesiredSpec, ExecutorSlot
from fleet_scheduler.core.repository import SchedulerStateRepository


class InMemorySchedulerStateRepository(SchedulerStateRepository):
    """
    Process-local store. Survives a scheduler "restart" as long as the same
    instance is handed to the new coordinator.
    """

    def __init__(self):
        self._spec: Optional[DesiredSpec] = None
        self._slots: Dict[int, ExecutorSlot] = {}
        self._framework_id: Optional[str] = None
        self._lock = Lock()
        self.available = True
        self.fail_writes = False
        # Number of upcoming writes to reject
        self.writes_to_fail = 0
        self.writes = 0

    def _check(self) -> None:
        if not self.available:
            raise StoreUnavailableError("in-memory store marked unavailable")

    def _check_write(self) -> None:
        self._check()
        if self.fail_writes:
            raise PersistenceError("in-memory store rejected write")
        if self.writes_to_fail > 0:
            self.writes_to_fail -= 1
            raise PersistenceError("in-memory store rejected write")

    def ping(self) -> None:
        self._check()

    def load_desired_spec(self) -> Optional[DesiredSpec]:
        with self._lock:
            self._check()
            return self._spec

    def save_desired_spec(self, spec: DesiredSpec) -> None:
        with self._lock:
            self._check_write()
            self._spec = spec
            self.writes += 1

    def load_slots(self) -> Iterable[ExecutorSlot]:
        with self._lock:
            self._check()
            return [self._slots[slot_id] for slot_id in sorted(self._slots)]

    def save_slot(self, slot: ExecutorSlot) -> None:
        with self._lock:
            self._check_write()
            self._slots[slot.slot_id] = slot
            self.writes += 1

    def delete_slot(self, slot_id: int) -> None:
        with self._lock:
            self._check_write()
            self._slots.pop(slot_id, None)
            self.writes += 1

    def load_framework_id(self) -> Optional[str]:
        with self._lock:
            self._check()
            return self._framework_id

    def save_framework_id(self, framework_id: str) -> None:
        with self._lock:
            self._check_write()
            self._framework_id = framework_id
            self.writes += 1
