"""Event models for the scheduler."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional

from fleet_scheduler.core.models import utc_now


@dataclass
class SlotEvent:
    """Base scheduler event."""

    event_type: str
    slot_id: Optional[int]
    task_id: Optional[str]
    timestamp: datetime = field(default_factory=utc_now)
    metadata: Dict[str, Any] = field(default_factory=dict)

    @staticmethod
    def slot_bound(slot):
        """Slot bound to a new task (EMPTY -> LAUNCH_PENDING)."""
        return SlotEvent(
            event_type="slot.bound",
            slot_id=slot.slot_id,
            task_id=slot.task_id,
            metadata={
                "generation": slot.generation,
                "agent_id": slot.agent_id,
            }
        )

    @staticmethod
    def status_applied(slot, previous_state, status):
        return SlotEvent(
            event_type="slot.status_applied",
            slot_id=slot.slot_id,
            task_id=slot.task_id,
            metadata={
                "from": previous_state.value,
                "to": slot.state.value,
                "status": status.value,
                "generation": slot.generation,
            }
        )

    @staticmethod
    def slot_retired(slot, task_id, terminal_state):
        """Binding retired after a terminal status (-> EMPTY)."""
        return SlotEvent(
            event_type="slot.retired",
            slot_id=slot.slot_id,
            task_id=task_id,
            metadata={
                "terminal_state": terminal_state.value,
                "generation": slot.generation,
            }
        )

    @staticmethod
    def stale_discarded(task_id, status, generation, reason):
        return SlotEvent(
            event_type="slot.stale_discarded",
            slot_id=None,
            task_id=task_id,
            metadata={
                "status": status.value,
                "generation": generation,
                "reason": reason,
            }
        )

    @staticmethod
    def slot_unhealthy(slot, silent_seconds):
        return SlotEvent(
            event_type="slot.unhealthy",
            slot_id=slot.slot_id,
            task_id=slot.task_id,
            metadata={
                "silent_seconds": silent_seconds,
                "last_health_ack_time": (
                    slot.last_health_ack_time.isoformat() if slot.last_health_ack_time else None
                ),
            }
        )

    @staticmethod
    def kill_requested(task_id, slot_id=None, reason=""):
        return SlotEvent(
            event_type="task.kill_requested",
            slot_id=slot_id,
            task_id=task_id,
            metadata={"reason": reason}
        )

    @staticmethod
    def orphan_killed(task_id, status):
        return SlotEvent(
            event_type="task.orphan_killed",
            slot_id=None,
            task_id=task_id,
            metadata={"observed_status": status.value}
        )

    @staticmethod
    def launch_requested(request):
        return SlotEvent(
            event_type="task.launch_requested",
            slot_id=request.slot_id,
            task_id=request.task_id,
            metadata={
                "offer_id": request.offer_id,
                "agent_id": request.agent_id,
                "ports": str(request.ports),
                "generation": request.generation,
            }
        )

    @staticmethod
    def sweep_started(sweep_id, trigger):
        return SlotEvent(
            event_type="reconcile.started",
            slot_id=None,
            task_id=None,
            metadata={"sweep_id": sweep_id, "trigger": trigger}
        )

    @staticmethod
    def sweep_applied(sweep_id, lost, orphans, deficit):
        return SlotEvent(
            event_type="reconcile.applied",
            slot_id=None,
            task_id=None,
            metadata={
                "sweep_id": sweep_id,
                "lost": list(lost),
                "orphans": list(orphans),
                "deficit": deficit,
            }
        )

    @staticmethod
    def sweep_superseded(sweep_id, applied_sweep_id):
        return SlotEvent(
            event_type="reconcile.superseded",
            slot_id=None,
            task_id=None,
            metadata={"sweep_id": sweep_id, "applied_sweep_id": applied_sweep_id}
        )

    @staticmethod
    def reconfigured(previous_count, count):
        return SlotEvent(
            event_type="desired.reconfigured",
            slot_id=None,
            task_id=None,
            metadata={"previous_count": previous_count, "count": count}
        )
