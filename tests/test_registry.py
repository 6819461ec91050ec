#tests\test_registry.py

"""Test executor registry."""

import pytest

from fleet_scheduler.core.errors import DuplicateTaskBinding, PersistenceError, SlotNotFound
from fleet_scheduler.core.factory import TaskIdFactory
from fleet_scheduler.core.models import ExecutorSlot, PortPair, SlotState, TaskStatus
from fleet_scheduler.registry.registry import ExecutorRegistry

from conftest import bind_running


class TestResize:
    """Test slot set changes."""

    def test_initial_slots_are_empty(self, registry):
        slots = registry.snapshot()

        assert [s.slot_id for s in slots] == [0, 1, 2]
        assert all(s.state == SlotState.EMPTY for s in slots)

    def test_grow_appends_slots(self, registry, repository):
        added, removed = registry.resize(5)

        assert added == [3, 4]
        assert removed == []
        assert [s.slot_id for s in repository.load_slots()] == [0, 1, 2, 3, 4]

    def test_shrink_removes_highest_and_returns_bound_tasks(self, registry, repository):
        task_id = bind_running(registry, 2)

        added, removed = registry.resize(1)

        assert added == []
        assert [s.slot_id for s in removed] == [1, 2]
        assert removed[1].task_id == task_id
        assert [s.slot_id for s in registry.snapshot()] == [0]
        assert [s.slot_id for s in repository.load_slots()] == [0]

    def test_resize_same_count_is_noop(self, registry):
        assert registry.resize(3) == ([], [])


class TestBind:
    """Test binding tasks to slots."""

    def test_bind_increments_generation(self, registry):
        task_id = registry.allocate_task_id(0)

        generation = registry.bind(0, task_id, agent_id="agent-0", hostname="h0", ports=PortPair(9200, 9300))

        slot = registry.get(0)
        assert generation == 1
        assert slot.state == SlotState.LAUNCH_PENDING
        assert slot.task_id == task_id
        assert slot.ports == PortPair(9200, 9300)
        assert slot.bound_at is not None

    def test_bind_occupied_slot_fails(self, registry):
        registry.bind(0, registry.allocate_task_id(0))

        with pytest.raises(DuplicateTaskBinding):
            registry.bind(0, registry.allocate_task_id(0))

    def test_bind_task_already_bound_elsewhere_fails(self, registry):
        task_id = registry.allocate_task_id(0)
        registry.bind(0, task_id)

        with pytest.raises(DuplicateTaskBinding):
            registry.bind(1, task_id)

    def test_bind_id_for_other_slot_fails(self, registry):
        with pytest.raises(ValueError):
            registry.bind(1, registry.allocate_task_id(0))

    def test_bind_unknown_slot(self, registry):
        with pytest.raises(SlotNotFound):
            registry.bind(9, "executor-9-1-abcd")

    def test_rebind_after_retire_moves_generation_on(self, registry):
        first = bind_running(registry, 0)
        registry.apply_status(first, TaskStatus.KILLED, 1)

        second = registry.allocate_task_id(0)
        generation = registry.bind(0, second)

        assert generation == 2
        assert registry.get(0).task_id == second

    def test_bind_emits_event(self, registry, events):
        registry.bind(0, registry.allocate_task_id(0))

        assert len(events.of_type("slot.bound")) == 1


class TestApplyStatus:
    """Test status application and stale-event discard."""

    def test_staging_then_running(self, registry):
        task_id = registry.allocate_task_id(0)
        generation = registry.bind(0, task_id)

        registry.apply_status(task_id, TaskStatus.STAGING, generation)
        assert registry.get(0).state == SlotState.STAGING

        registry.apply_status(task_id, TaskStatus.RUNNING, generation)
        slot = registry.get(0)
        assert slot.state == SlotState.RUNNING
        assert slot.running_since is not None

    def test_running_directly_from_launch_pending(self, registry):
        task_id = registry.allocate_task_id(0)
        generation = registry.bind(0, task_id)

        registry.apply_status(task_id, TaskStatus.RUNNING, generation)

        assert registry.get(0).state == SlotState.RUNNING

    def test_late_staging_after_running_is_ignored(self, registry):
        task_id = bind_running(registry, 0)

        slot = registry.apply_status(task_id, TaskStatus.STAGING, 1)

        assert slot.state == SlotState.RUNNING

    def test_terminal_status_retires_slot(self, registry, events):
        task_id = bind_running(registry, 0)

        slot = registry.apply_status(task_id, TaskStatus.FAILED, 1)

        assert slot.state == SlotState.EMPTY
        assert slot.task_id is None
        assert slot.generation == 1
        retired = events.of_type("slot.retired")
        assert retired[-1].metadata["terminal_state"] == "FAILED"

    def test_terminal_while_killing_goes_to_empty(self, registry):
        task_id = bind_running(registry, 0)
        registry.mark_unhealthy(0)
        registry.mark_killing(0)

        slot = registry.apply_status(task_id, TaskStatus.KILLED, 1)

        assert slot.state == SlotState.EMPTY

    def test_stale_generation_is_discarded(self, registry, events):
        task_id = bind_running(registry, 0)
        before = registry.get(0)

        result = registry.apply_status(task_id, TaskStatus.KILLED, 7)

        assert result is None
        assert registry.get(0) == before
        assert len(events.of_type("slot.stale_discarded")) == 1

    def test_status_for_previous_binding_is_discarded(self, registry):
        """Test a late terminal status for the old task cannot hit the new binding."""
        old = bind_running(registry, 0)
        registry.apply_status(old, TaskStatus.KILLED, 1)
        new = bind_running(registry, 0)
        before = registry.get(0)

        result = registry.apply_status(old, TaskStatus.FAILED, 1)

        assert result is None
        assert registry.get(0) == before
        assert before.task_id == new

    def test_unknown_task_is_discarded(self, registry):
        assert registry.apply_status("executor-1-1-ffff", TaskStatus.RUNNING, 1) is None
        assert registry.get(1).state == SlotState.EMPTY


class TestHealthTransitions:
    """Test unhealthy / killing / ack bookkeeping."""

    def test_mark_unhealthy_only_from_running(self, registry):
        assert registry.mark_unhealthy(0) is None

        bind_running(registry, 0)
        slot = registry.mark_unhealthy(0)

        assert slot.state == SlotState.UNHEALTHY

    def test_record_health_ack_moves_forward(self, registry, clock):
        bind_running(registry, 0)
        later = clock.advance(30)

        assert registry.record_health_ack(0, 1, later)
        assert registry.get(0).last_health_ack_time == later

    def test_record_health_ack_ignores_older_time(self, registry, clock):
        bind_running(registry, 0)
        start = clock()
        later = clock.advance(30)
        registry.record_health_ack(0, 1, later)

        registry.record_health_ack(0, 1, start)

        assert registry.get(0).last_health_ack_time == later

    def test_record_health_ack_stale_generation(self, registry, clock):
        bind_running(registry, 0)

        assert not registry.record_health_ack(0, 2, clock.advance(5))

    def test_mark_lost_retires_binding(self, registry):
        bind_running(registry, 0)

        slot = registry.mark_lost(0, 1)

        assert slot.state == SlotState.EMPTY

    def test_mark_lost_stale_generation_is_noop(self, registry):
        bind_running(registry, 0)

        assert registry.mark_lost(0, 3) is None
        assert registry.get(0).state == SlotState.RUNNING

    def test_expire_launch(self, registry):
        task_id = registry.allocate_task_id(0)
        registry.bind(0, task_id)

        slot = registry.expire_launch(0, 1)

        assert slot.state == SlotState.EMPTY
        assert registry.find_by_task(task_id) is None

    def test_expire_launch_after_staging_is_noop(self, registry):
        task_id = registry.allocate_task_id(0)
        registry.bind(0, task_id)
        registry.apply_status(task_id, TaskStatus.STAGING, 1)

        assert registry.expire_launch(0, 1) is None


class TestPersistence:
    """Test persist-before-publish and reload."""

    def test_failed_write_is_not_visible(self, registry, repository):
        repository.fail_writes = True
        task_id = registry.allocate_task_id(0)

        with pytest.raises(PersistenceError):
            registry.bind(0, task_id)

        assert registry.get(0).state == SlotState.EMPTY
        assert registry.find_by_task(task_id) is None

    def test_reload_from_repository(self, registry, repository, clock):
        task_id = bind_running(registry, 1)

        fresh = ExecutorRegistry(repository, task_ids=TaskIdFactory("executor"), clock=clock)
        slots = fresh.load()

        assert len(slots) == 3
        assert fresh.get(1).task_id == task_id
        assert fresh.get(1).state == SlotState.RUNNING

    def test_load_rejects_duplicate_task(self, repository):
        repository.save_slot(ExecutorSlot(slot_id=0, state=SlotState.RUNNING, task_id="t", generation=1))
        repository.save_slot(ExecutorSlot(slot_id=1, state=SlotState.RUNNING, task_id="t", generation=1))

        with pytest.raises(DuplicateTaskBinding):
            ExecutorRegistry(repository).load()
