#fleet_scheduler\infrastructure\sql\models.py
"""SQLAlchemy ORM models for database tables."""

from datetime import datetime, timezone

from sqlalchemy import JSON, Column, DateTime, Enum as SQLEnum, Float, Integer, String

from fleet_scheduler.core.models import SlotState
from fleet_scheduler.infrastructure.sql.database import Base


def _utcnow():
    return datetime.now(timezone.utc)


class DesiredSpecORM(Base):
    """
    Desired state - single row (id=1).

    ``ports`` holds the ordered list of preferred [http, transport] pairs.
    """

    __tablename__ = "desired_spec"

    id = Column(Integer, primary_key=True, default=1)

    count = Column(Integer, nullable=False)
    cpu = Column(Float, nullable=False)
    memory = Column(Integer, nullable=False)
    ports = Column(JSON, nullable=False, default=list)

    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)

    def __repr__(self) -> str:
        return f"<DesiredSpecORM(count={self.count}, cpu={self.cpu}, memory={self.memory})>"


class ExecutorSlotORM(Base):
    """
    Executor slot table.

    task_id is unique: no two slots may hold the same task.
    """

    __tablename__ = "executor_slots"

    slot_id = Column(Integer, primary_key=True, autoincrement=False)

    state = Column(
        SQLEnum(SlotState, name="slot_state"),
        nullable=False,
        default=SlotState.EMPTY,
        index=True
    )
    task_id = Column(String(255), nullable=True, unique=True)
    generation = Column(Integer, nullable=False, default=0)

    # Binding
    agent_id = Column(String(255), nullable=True)
    hostname = Column(String(255), nullable=True)
    http_port = Column(Integer, nullable=True)
    transport_port = Column(Integer, nullable=True)
    bound_at = Column(DateTime(timezone=True), nullable=True)

    # Health
    running_since = Column(DateTime(timezone=True), nullable=True)
    last_health_ack_time = Column(DateTime(timezone=True), nullable=True)

    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)

    def __repr__(self) -> str:
        return (
            f"<ExecutorSlotORM(slot_id={self.slot_id}, "
            f"state={self.state.value if self.state else None}, "
            f"task_id={self.task_id}, generation={self.generation})>"
        )


class FrameworkStateORM(Base):
    """Key/value facts about the framework registration (framework_id)."""

    __tablename__ = "framework_state"

    key = Column(String(100), primary_key=True)
    value = Column(String(255), nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)
