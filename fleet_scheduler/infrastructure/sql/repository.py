#fleet_scheduler\infrastructure\sql\repository.py

"""SQL repository implementation using SQLAlchemy."""

import logging
from datetime import datetime, timezone
from typing import Iterable, Optional

from sqlalchemy import text
from sqlalchemy.exc import DBAPIError, OperationalError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from fleet_scheduler.core.errors import PersistenceError, StoreUnavailableError
from fleet_scheduler.core.models import (
    DesiredSpec,
    ExecutorSlot,
    PortPair,
    ResourceRequirements,
)
from fleet_scheduler.core.repository import SchedulerStateRepository
from fleet_scheduler.infrastructure.sql.models import (
    DesiredSpecORM,
    ExecutorSlotORM,
    FrameworkStateORM,
)

logger = logging.getLogger(__name__)

FRAMEWORK_ID_KEY = "framework_id"


# ============================================
# Mapping Functions
# ============================================

def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """SQLite hands back naive datetimes; everything in the domain is UTC-aware."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def orm_to_domain(orm: ExecutorSlotORM) -> ExecutorSlot:
    """Convert ORM model to domain model."""
    ports = None
    if orm.http_port is not None and orm.transport_port is not None:
        ports = PortPair(http=orm.http_port, transport=orm.transport_port)

    return ExecutorSlot(
        slot_id=orm.slot_id,
        state=orm.state,
        task_id=orm.task_id,
        generation=orm.generation,
        agent_id=orm.agent_id,
        hostname=orm.hostname,
        ports=ports,
        bound_at=_as_utc(orm.bound_at),
        running_since=_as_utc(orm.running_since),
        last_health_ack_time=_as_utc(orm.last_health_ack_time),
        updated_at=_as_utc(orm.updated_at),
    )


def domain_to_orm(slot: ExecutorSlot) -> ExecutorSlotORM:
    """Convert domain model to ORM model."""
    return ExecutorSlotORM(
        slot_id=slot.slot_id,
        state=slot.state,
        task_id=slot.task_id,
        generation=slot.generation,
        agent_id=slot.agent_id,
        hostname=slot.hostname,
        http_port=slot.ports.http if slot.ports else None,
        transport_port=slot.ports.transport if slot.ports else None,
        bound_at=slot.bound_at,
        running_since=slot.running_since,
        last_health_ack_time=slot.last_health_ack_time,
        updated_at=slot.updated_at,
    )


def spec_to_orm(spec: DesiredSpec) -> DesiredSpecORM:
    return DesiredSpecORM(
        id=1,
        count=spec.count,
        cpu=spec.resources.cpu,
        memory=spec.resources.memory,
        ports=[list(pair.as_tuple()) for pair in spec.resources.ports],
    )


def orm_to_spec(orm: DesiredSpecORM) -> DesiredSpec:
    return DesiredSpec(
        count=orm.count,
        resources=ResourceRequirements(
            cpu=orm.cpu,
            memory=orm.memory,
            ports=tuple(PortPair(http=p[0], transport=p[1]) for p in (orm.ports or [])),
        ),
    )


# ============================================
# Repository Implementation
# ============================================

class SqlSchedulerStateRepository(SchedulerStateRepository):
    """SQLAlchemy implementation with an injected session factory."""

    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory

    def _get_session(self) -> Session:
        return self._session_factory()

    @staticmethod
    def _translate(action: str, error: SQLAlchemyError) -> PersistenceError:
        if isinstance(error, OperationalError) or (
            isinstance(error, DBAPIError) and error.connection_invalidated
        ):
            return StoreUnavailableError(f"Store unreachable during {action}: {error}")
        return PersistenceError(f"Failed to {action}: {error}")

    # -------------------------
    # HEALTH
    # -------------------------

    def ping(self) -> None:
        session = self._get_session()
        try:
            session.execute(text("SELECT 1"))
        except SQLAlchemyError as e:
            raise self._translate("ping", e) from e
        finally:
            session.close()

    # -------------------------
    # DESIRED SPEC
    # -------------------------

    def load_desired_spec(self) -> Optional[DesiredSpec]:
        session = self._get_session()
        try:
            orm = session.get(DesiredSpecORM, 1)
            return orm_to_spec(orm) if orm else None
        except SQLAlchemyError as e:
            raise self._translate("load desired spec", e) from e
        finally:
            session.close()

    def save_desired_spec(self, spec: DesiredSpec) -> None:
        session = self._get_session()
        try:
            session.merge(spec_to_orm(spec))
            session.commit()
            logger.debug(f"[sql] saved desired spec count={spec.count}")
        except SQLAlchemyError as e:
            session.rollback()
            raise self._translate("save desired spec", e) from e
        finally:
            session.close()

    # -------------------------
    # SLOTS
    # -------------------------

    def load_slots(self) -> Iterable[ExecutorSlot]:
        session = self._get_session()
        try:
            rows = session.query(ExecutorSlotORM).order_by(ExecutorSlotORM.slot_id.asc()).all()
            return [orm_to_domain(row) for row in rows]
        except SQLAlchemyError as e:
            raise self._translate("load slots", e) from e
        finally:
            session.close()

    def save_slot(self, slot: ExecutorSlot) -> None:
        session = self._get_session()
        try:
            session.merge(domain_to_orm(slot))
            session.commit()
            logger.debug(
                f"[sql] saved slot {slot.slot_id} state={slot.state.value} gen={slot.generation}"
            )
        except SQLAlchemyError as e:
            session.rollback()
            raise self._translate(f"save slot {slot.slot_id}", e) from e
        finally:
            session.close()

    def delete_slot(self, slot_id: int) -> None:
        session = self._get_session()
        try:
            orm = session.get(ExecutorSlotORM, slot_id)
            if orm is not None:
                session.delete(orm)
                session.commit()
        except SQLAlchemyError as e:
            session.rollback()
            raise self._translate(f"delete slot {slot_id}", e) from e
        finally:
            session.close()

    # -------------------------
    # FRAMEWORK
    # -------------------------

    def load_framework_id(self) -> Optional[str]:
        session = self._get_session()
        try:
            orm = session.get(FrameworkStateORM, FRAMEWORK_ID_KEY)
            return orm.value if orm else None
        except SQLAlchemyError as e:
            raise self._translate("load framework id", e) from e
        finally:
            session.close()

    def save_framework_id(self, framework_id: str) -> None:
        session = self._get_session()
        try:
            session.merge(FrameworkStateORM(key=FRAMEWORK_ID_KEY, value=framework_id))
            session.commit()
        except SQLAlchemyError as e:
            session.rollback()
            raise self._translate("save framework id", e) from e
        finally:
            session.close()
