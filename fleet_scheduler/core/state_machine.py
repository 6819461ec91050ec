#fleet_scheduler\core\state_machine.py

from datetime import datetime
from typing import Optional

from fleet_scheduler.core.errors import InvalidSlotTransition
from fleet_scheduler.core.models import ExecutorSlot, SlotState, TaskStatus, utc_now


ALLOWED_TRANSITIONS = {
    SlotState.EMPTY: {
        SlotState.LAUNCH_PENDING,
    },
    SlotState.LAUNCH_PENDING: {
        SlotState.STAGING,
        SlotState.RUNNING,
        SlotState.KILLING,
        SlotState.LOST,
        SlotState.FAILED,
        SlotState.EMPTY,  # launch-ack timeout
    },
    SlotState.STAGING: {
        SlotState.RUNNING,
        SlotState.KILLING,
        SlotState.LOST,
        SlotState.FAILED,
    },
    SlotState.RUNNING: {
        SlotState.UNHEALTHY,
        SlotState.KILLING,
        SlotState.LOST,
        SlotState.FAILED,
    },
    SlotState.UNHEALTHY: {
        SlotState.KILLING,
        SlotState.LOST,
        SlotState.FAILED,
    },
    SlotState.KILLING: {
        SlotState.EMPTY,
        SlotState.LOST,
        SlotState.FAILED,
    },
    SlotState.LOST: {
        SlotState.EMPTY,
    },
    SlotState.FAILED: {
        SlotState.EMPTY,
    },
}


STATUS_TO_STATE = {
    TaskStatus.STAGING: SlotState.STAGING,
    TaskStatus.STARTING: SlotState.STAGING,
    TaskStatus.RUNNING: SlotState.RUNNING,
    TaskStatus.FINISHED: SlotState.LOST,
    TaskStatus.KILLED: SlotState.LOST,
    TaskStatus.LOST: SlotState.LOST,
    TaskStatus.FAILED: SlotState.FAILED,
    TaskStatus.ERROR: SlotState.FAILED,
}


class SlotStateMachine:
    @staticmethod
    def can_transition(current: SlotState, new_state: SlotState) -> bool:
        if current == new_state:
            return True
        return new_state in ALLOWED_TRANSITIONS.get(current, set())

    @staticmethod
    def transition(
        slot: ExecutorSlot,
        new_state: SlotState,
        *,
        now: Optional[datetime] = None,
    ) -> ExecutorSlot:
        now = now or utc_now()

        current = slot.state

        if current == new_state:
            return slot

        if not SlotStateMachine.can_transition(current, new_state):
            raise InvalidSlotTransition(
                f"Slot {slot.slot_id}: cannot transition from {current.value} to {new_state.value}"
            )

        # Timestamp semantics
        if new_state == SlotState.RUNNING:
            return slot.evolve(
                state=new_state,
                running_since=now,
                last_health_ack_time=now,
                updated_at=now,
            )

        if new_state == SlotState.EMPTY:
            # Retire the binding; generation moves on at the next bind
            return slot.evolve(
                state=new_state,
                task_id=None,
                agent_id=None,
                hostname=None,
                ports=None,
                bound_at=None,
                running_since=None,
                last_health_ack_time=None,
                updated_at=now,
            )

        return slot.evolve(state=new_state, updated_at=now)

    @staticmethod
    def state_for_status(status: TaskStatus) -> SlotState:
        return STATUS_TO_STATE[status]
