#tests\test_repository.py

"""Test repository implementations (in-memory and SQLAlchemy on SQLite)."""

import pytest
from datetime import datetime, timezone

from fleet_scheduler.core.errors import PersistenceError, StoreUnavailableError
from fleet_scheduler.core.models import ExecutorSlot, PortPair, SlotState
from fleet_scheduler.infrastructure.memory.repository import InMemorySchedulerStateRepository
from fleet_scheduler.infrastructure.sql.config import DatabaseSettings
from fleet_scheduler.infrastructure.sql.database import (
    create_db_engine,
    drop_db,
    get_session_factory,
    init_db,
)
from fleet_scheduler.infrastructure.sql.repository import SqlSchedulerStateRepository

from conftest import make_spec


NOW = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def sql_engine():
    """In-memory SQLite engine with all tables."""
    engine = create_db_engine(DatabaseSettings(url="sqlite://"))
    init_db(engine)
    yield engine
    drop_db(engine)
    engine.dispose()


@pytest.fixture(params=["memory", "sql"])
def repo(request):
    """Each test runs against both implementations."""
    if request.param == "memory":
        return InMemorySchedulerStateRepository()
    engine = request.getfixturevalue("sql_engine")
    return SqlSchedulerStateRepository(get_session_factory(engine))


def running_slot(slot_id=0, task_id="executor-0-1-abcd"):
    return ExecutorSlot(
        slot_id=slot_id,
        state=SlotState.RUNNING,
        task_id=task_id,
        generation=1,
        agent_id="agent-0",
        hostname="agent0.local",
        ports=PortPair(9200, 9300),
        bound_at=NOW,
        running_since=NOW,
        last_health_ack_time=NOW,
        updated_at=NOW,
    )


class TestSchedulerStateRepository:
    """Test the persistence contract."""

    def test_empty_store(self, repo):
        repo.ping()
        assert repo.load_desired_spec() is None
        assert list(repo.load_slots()) == []
        assert repo.load_framework_id() is None

    def test_desired_spec_roundtrip(self, repo):
        spec = make_spec(4, ports=((9200, 9300), (9201, 9301)))

        repo.save_desired_spec(spec)

        assert repo.load_desired_spec() == spec

    def test_desired_spec_overwrite(self, repo):
        repo.save_desired_spec(make_spec(3))
        repo.save_desired_spec(make_spec(1))

        assert repo.load_desired_spec().count == 1

    def test_slot_roundtrip_keeps_utc(self, repo):
        repo.save_slot(running_slot())

        [loaded] = list(repo.load_slots())

        assert loaded == running_slot()
        assert loaded.running_since.tzinfo is not None

    def test_slots_ordered_by_id(self, repo):
        for slot_id in (2, 0, 1):
            repo.save_slot(ExecutorSlot(slot_id=slot_id, updated_at=NOW))

        assert [s.slot_id for s in repo.load_slots()] == [0, 1, 2]

    def test_save_replaces_slot(self, repo):
        repo.save_slot(running_slot())
        repo.save_slot(ExecutorSlot(slot_id=0, generation=1, updated_at=NOW))

        [loaded] = list(repo.load_slots())

        assert loaded.state == SlotState.EMPTY
        assert loaded.task_id is None
        assert loaded.ports is None
        assert loaded.generation == 1

    def test_delete_slot(self, repo):
        repo.save_slot(running_slot(0))
        repo.save_slot(running_slot(1, task_id="executor-1-1-abcd"))

        repo.delete_slot(1)
        repo.delete_slot(5)

        assert [s.slot_id for s in repo.load_slots()] == [0]

    def test_framework_id(self, repo):
        repo.save_framework_id("framework-1")
        repo.save_framework_id("framework-2")

        assert repo.load_framework_id() == "framework-2"


class TestSqlErrors:
    """Test SQLAlchemy errors are translated."""

    def test_duplicate_task_id_is_persistence_error(self, sql_engine):
        repo = SqlSchedulerStateRepository(get_session_factory(sql_engine))
        repo.save_slot(running_slot(0, task_id="dup"))

        with pytest.raises(PersistenceError) as exc:
            repo.save_slot(running_slot(1, task_id="dup"))

        assert not isinstance(exc.value, StoreUnavailableError)

    def test_unreachable_database(self, tmp_path):
        url = f"sqlite:///{tmp_path / 'missing' / 'fleet.db'}"
        engine = create_db_engine(DatabaseSettings(url=url))
        repo = SqlSchedulerStateRepository(get_session_factory(engine))

        with pytest.raises(StoreUnavailableError):
            repo.ping()

        engine.dispose()


class TestInMemoryFaults:
    """Test fault switches used by other tests."""

    def test_unavailable(self):
        repo = InMemorySchedulerStateRepository()
        repo.available = False

        with pytest.raises(StoreUnavailableError):
            repo.load_slots()

    def test_fail_writes(self):
        repo = InMemorySchedulerStateRepository()
        repo.fail_writes = True

        with pytest.raises(PersistenceError):
            repo.save_framework_id("x")
        assert repo.load_framework_id() is None
