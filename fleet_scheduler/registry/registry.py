# fleet_scheduler/registry/registry.py
"""Executor registry - the single writer of slot state."""

import logging
from datetime import datetime
from threading import RLock
from typing import Callable, Dict, Iterable, List, Optional, Tuple

from fleet_scheduler.core.errors import DuplicateTaskBinding, SlotNotFound
from fleet_scheduler.core.events import EventEmitter, NullEventEmitter
from fleet_scheduler.core.events_model import SlotEvent
from fleet_scheduler.core.factory import TaskIdFactory
from fleet_scheduler.core.models import (
    BOUND_STATES,
    ExecutorSlot,
    PortPair,
    SlotState,
    TaskStatus,
    utc_now,
)
from fleet_scheduler.core.repository import SchedulerStateRepository
from fleet_scheduler.core.state_machine import SlotStateMachine

logger = logging.getLogger(__name__)


class ExecutorRegistry:
    """
    Mapping of slot_id -> ExecutorSlot.

    Writers are serialized by a lock; every mutation is persisted before the
    new slot is published. Readers get the last published view without
    taking the lock.

    Persistence is synchronous: the store write happens while the lock is
    held, on the control loop thread. A slow store therefore stalls the
    control loop and any other writer for the duration of the write, while
    API and probe readers keep seeing the previous view. A failed write
    raises PersistenceError and leaves the published view unchanged.
    """

    def __init__(
        self,
        repository: SchedulerStateRepository,
        *,
        task_ids: Optional[TaskIdFactory] = None,
        emitter: Optional[EventEmitter] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self._repo = repository
        self._task_ids = task_ids or TaskIdFactory()
        self._emitter = emitter or NullEventEmitter()
        self._clock = clock
        self._lock = RLock()
        self._view: Dict[int, ExecutorSlot] = {}

    # -------------------------
    # LOAD / RESIZE
    # -------------------------

    def load(self) -> List[ExecutorSlot]:
        """Replace the in-memory view with the persisted slots."""
        with self._lock:
            slots = list(self._repo.load_slots())

            seen: Dict[str, int] = {}
            for slot in slots:
                if slot.task_id is None:
                    continue
                if slot.task_id in seen:
                    raise DuplicateTaskBinding(
                        f"Task {slot.task_id} bound to slots {seen[slot.task_id]} and {slot.slot_id}"
                    )
                seen[slot.task_id] = slot.slot_id

            self._view = {slot.slot_id: slot for slot in slots}
            logger.info(f"[registry] Loaded {len(slots)} slot(s)")
            return self.snapshot()

    def resize(self, count: int) -> Tuple[List[int], List[ExecutorSlot]]:
        """
        Make exactly ``count`` slots exist.

        New slots are EMPTY with ids 0..count-1 that are not taken; slots with
        the highest ids are removed first.

        Returns:
            (added slot ids, removed slots as they were before removal)
        """
        if count < 0:
            raise ValueError("count must be >= 0")

        with self._lock:
            added: List[int] = []
            removed: List[ExecutorSlot] = []

            existing = sorted(self._view)
            for slot_id in existing[count:] if len(existing) > count else []:
                slot = self._view[slot_id]
                self._repo.delete_slot(slot_id)
                self._publish_without(slot_id)
                removed.append(slot)
                logger.info(f"[registry] Removed slot {slot_id} (task={slot.task_id})")

            slot_id = 0
            while len(self._view) < count:
                if slot_id not in self._view:
                    slot = ExecutorSlot(slot_id=slot_id, updated_at=self._clock())
                    self._commit(slot)
                    added.append(slot_id)
                slot_id += 1

            if added:
                logger.info(f"[registry] Added slot(s) {added}")
            return added, removed

    # -------------------------
    # BIND
    # -------------------------

    def allocate_task_id(self, slot_id: int) -> str:
        """A fresh task id for the next binding of ``slot_id``."""
        slot = self.require(slot_id)
        return self._task_ids.create(slot_id=slot_id, generation=slot.generation + 1)

    def bind(
        self,
        slot_id: int,
        task_id: str,
        *,
        agent_id: Optional[str] = None,
        hostname: Optional[str] = None,
        ports: Optional[PortPair] = None,
    ) -> int:
        """
        Bind ``task_id`` to an EMPTY slot (EMPTY -> LAUNCH_PENDING).

        Returns:
            The new generation of the slot
        """
        with self._lock:
            slot = self.require(slot_id)

            if slot.state != SlotState.EMPTY:
                raise DuplicateTaskBinding(
                    f"Slot {slot_id} is {slot.state.value}, not EMPTY"
                )

            owner = self.find_by_task(task_id)
            if owner is not None:
                raise DuplicateTaskBinding(
                    f"Task {task_id} already bound to slot {owner.slot_id}"
                )

            generation = slot.generation + 1
            identity = self._task_ids.parse(task_id)
            if identity is None or identity.slot_id != slot_id or identity.generation != generation:
                raise ValueError(
                    f"Task id {task_id} was not allocated for slot {slot_id} generation {generation}"
                )

            now = self._clock()
            bound = SlotStateMachine.transition(slot, SlotState.LAUNCH_PENDING, now=now).evolve(
                task_id=task_id,
                generation=generation,
                agent_id=agent_id,
                hostname=hostname,
                ports=ports,
                bound_at=now,
            )
            self._commit(bound)

        logger.info(f"[registry] Slot {slot_id} bound to {task_id} (generation {generation})")
        self._emitter.emit([SlotEvent.slot_bound(bound)])
        return generation

    # -------------------------
    # STATUS
    # -------------------------

    def generation_of(self, task_id: str) -> Optional[int]:
        """Generation encoded in ``task_id`` (None for foreign ids)."""
        identity = self._task_ids.parse(task_id)
        return identity.generation if identity else None

    def apply_status(
        self,
        task_id: str,
        status: TaskStatus,
        generation: Optional[int],
    ) -> Optional[ExecutorSlot]:
        """
        Apply a resource-manager status to the slot bound to ``task_id``.

        A no-op (returns None) when the task is not bound or ``generation``
        is stale.
        """
        with self._lock:
            slot = self.find_by_task(task_id)

            if slot is None or generation is None or slot.generation != generation:
                reason = "unbound task" if slot is None else "stale generation"
                logger.debug(
                    f"[registry] Discarding {status.value} for {task_id} ({reason})"
                )
                self._emitter.emit([SlotEvent.stale_discarded(task_id, status, generation, reason)])
                return None

            previous = slot.state

            if status.is_terminal:
                return self._retire(slot, SlotStateMachine.state_for_status(status), status)

            target = SlotStateMachine.state_for_status(status)
            if target == previous:
                return slot

            if not SlotStateMachine.can_transition(previous, target):
                # Late or duplicate non-terminal status (e.g. STAGING after RUNNING)
                logger.debug(
                    f"[registry] Ignoring {status.value} for slot {slot.slot_id} in {previous.value}"
                )
                return slot

            updated = SlotStateMachine.transition(slot, target, now=self._clock())
            self._commit(updated)

        logger.info(
            f"[registry] Slot {updated.slot_id} {previous.value} -> {updated.state.value} ({task_id})"
        )
        self._emitter.emit([SlotEvent.status_applied(updated, previous, status)])
        return updated

    def mark_lost(self, slot_id: int, generation: int) -> Optional[ExecutorSlot]:
        """Retire a binding the resource manager no longer knows about."""
        with self._lock:
            slot = self.get(slot_id)
            if slot is None or slot.generation != generation or slot.state not in BOUND_STATES:
                return None
            return self._retire(slot, SlotState.LOST, TaskStatus.LOST)

    def expire_launch(self, slot_id: int, generation: int) -> Optional[ExecutorSlot]:
        """LAUNCH_PENDING -> EMPTY when no status arrived in the launch-ack window."""
        with self._lock:
            slot = self.get(slot_id)
            if slot is None or slot.generation != generation or slot.state != SlotState.LAUNCH_PENDING:
                return None

            task_id = slot.task_id
            updated = SlotStateMachine.transition(slot, SlotState.EMPTY, now=self._clock())
            self._commit(updated)

        logger.info(f"[registry] Slot {slot_id} launch of {task_id} timed out, slot is free again")
        self._emitter.emit([SlotEvent.slot_retired(updated, task_id, SlotState.EMPTY)])
        return updated

    # -------------------------
    # HEALTH
    # -------------------------

    def record_health_ack(self, slot_id: int, generation: int, at: datetime) -> bool:
        """RUNNING -> RUNNING self-loop; moves last_health_ack_time forward."""
        with self._lock:
            slot = self.get(slot_id)
            if slot is None or slot.generation != generation or slot.state != SlotState.RUNNING:
                return False

            if slot.last_health_ack_time is not None and slot.last_health_ack_time >= at:
                return True

            self._commit(slot.evolve(last_health_ack_time=at, updated_at=self._clock()))
            return True

    def mark_unhealthy(self, slot_id: int) -> Optional[ExecutorSlot]:
        """RUNNING -> UNHEALTHY. Returns None if the slot is not RUNNING."""
        with self._lock:
            slot = self.require(slot_id)
            if slot.state != SlotState.RUNNING:
                return None

            updated = SlotStateMachine.transition(slot, SlotState.UNHEALTHY, now=self._clock())
            self._commit(updated)

        logger.warning(f"[registry] Slot {slot_id} marked UNHEALTHY ({updated.task_id})")
        return updated

    def mark_killing(self, slot_id: int) -> Optional[ExecutorSlot]:
        """Record that a kill was issued for the slot's task."""
        with self._lock:
            slot = self.require(slot_id)
            if slot.state == SlotState.KILLING:
                return slot
            if not SlotStateMachine.can_transition(slot.state, SlotState.KILLING):
                return None

            updated = SlotStateMachine.transition(slot, SlotState.KILLING, now=self._clock())
            self._commit(updated)
            return updated

    # -------------------------
    # READ
    # -------------------------

    def snapshot(self) -> List[ExecutorSlot]:
        view = self._view
        return [view[slot_id] for slot_id in sorted(view)]

    def get(self, slot_id: int) -> Optional[ExecutorSlot]:
        return self._view.get(slot_id)

    def require(self, slot_id: int) -> ExecutorSlot:
        slot = self.get(slot_id)
        if slot is None:
            raise SlotNotFound(f"Slot {slot_id} not found")
        return slot

    def find_by_task(self, task_id: str) -> Optional[ExecutorSlot]:
        for slot in self._view.values():
            if slot.task_id == task_id:
                return slot
        return None

    def in_states(self, states: Iterable[SlotState]) -> List[ExecutorSlot]:
        states = set(states)
        return [slot for slot in self.snapshot() if slot.state in states]

    def count_in(self, states: Iterable[SlotState]) -> int:
        return len(self.in_states(states))

    def bound_task_ids(self) -> List[str]:
        return [slot.task_id for slot in self.snapshot() if slot.task_id is not None]

    def __len__(self) -> int:
        return len(self._view)

    # -------------------------
    # INTERNAL HELPERS
    # -------------------------

    def _retire(self, slot: ExecutorSlot, terminal_state: SlotState, status: TaskStatus) -> ExecutorSlot:
        """Terminal status: record LOST/FAILED then free the slot (-> EMPTY)."""
        now = self._clock()
        previous = slot.state
        task_id = slot.task_id

        if previous == SlotState.KILLING:
            retired = SlotStateMachine.transition(slot, SlotState.EMPTY, now=now)
            terminal_state = SlotState.KILLING
        else:
            terminal = SlotStateMachine.transition(slot, terminal_state, now=now)
            retired = SlotStateMachine.transition(terminal, SlotState.EMPTY, now=now)

        self._commit(retired)

        if previous == SlotState.KILLING:
            logger.info(f"[registry] Slot {slot.slot_id} killed task {task_id} is gone, slot is free")
        else:
            logger.warning(
                f"[registry] Slot {slot.slot_id} lost task {task_id} "
                f"({previous.value} -> {terminal_state.value} -> EMPTY)"
            )

        self._emitter.emit([
            SlotEvent.status_applied(retired, previous, status),
            SlotEvent.slot_retired(retired, task_id, terminal_state),
        ])
        return retired

    def _commit(self, slot: ExecutorSlot) -> None:
        """Persist, then publish. A failed save leaves the view untouched."""
        self._repo.save_slot(slot)
        view = dict(self._view)
        view[slot.slot_id] = slot
        self._view = view

    def _publish_without(self, slot_id: int) -> None:
        view = dict(self._view)
        view.pop(slot_id, None)
        self._view = view
