#fleet_scheduler\core\factory.py
import secrets
from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class TaskIdentity:
    slot_id: int
    generation: int


class TaskIdFactory:
    """
    Task ids carry the slot and generation they were launched for:
    ``<prefix>-<slot_id>-<generation>-<random>``.
    """

    def __init__(self, prefix: str = "executor"):
        if not prefix or "-" in prefix:
            raise ValueError("prefix must be non-empty and must not contain '-'")
        self.prefix = prefix

    def create(self, *, slot_id: int, generation: int) -> str:
        return f"{self.prefix}-{slot_id}-{generation}-{secrets.token_hex(4)}"

    def parse(self, task_id: str) -> Optional[TaskIdentity]:
        """Return the identity encoded in ``task_id``, or None if it is foreign."""
        parts = task_id.split("-")
        if len(parts) != 4 or parts[0] != self.prefix:
            return None
        try:
            slot_id = int(parts[1])
            generation = int(parts[2])
        except ValueError:
            return None
        if slot_id < 0 or generation < 1:
            return None
        return TaskIdentity(slot_id=slot_id, generation=generation)
