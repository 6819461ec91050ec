#tests\conftest.py

"""Pytest configuration and fixtures."""

import pytest

from fleet_scheduler.config import HealthPolicy, LaunchConfig, SchedulerConfig
from fleet_scheduler.core.events import LogEventEmitter
from fleet_scheduler.core.factory import TaskIdFactory
from fleet_scheduler.core.models import DesiredSpec, PortPair, ResourceRequirements, TaskStatus
from fleet_scheduler.infrastructure.memory.repository import InMemorySchedulerStateRepository
from fleet_scheduler.registry.registry import ExecutorRegistry
from fleet_scheduler.simulation.clock import ManualClock
from fleet_scheduler.simulation.cluster import SimulatedCluster
from fleet_scheduler.simulation.harness import SimulationHarness


def make_spec(count=3, cpu=0.2, memory=256, ports=((9200, 9300),)):
    return DesiredSpec(
        count=count,
        resources=ResourceRequirements(
            cpu=cpu,
            memory=memory,
            ports=tuple(PortPair(http=h, transport=t) for h, t in ports),
        ),
    )


def make_config(
    count=3,
    *,
    health_delay=10,
    health_timeout=60,
    health_interval=5,
    launch_ack_timeout=60,
    reconcile_interval=120,
):
    return SchedulerConfig(
        desired_spec=make_spec(count),
        health_policy=HealthPolicy(
            delay_seconds=health_delay,
            timeout_seconds=health_timeout,
            interval_seconds=health_interval,
        ),
        launch_config=LaunchConfig(image="elasticsearch-executor:test"),
        launch_ack_timeout_seconds=launch_ack_timeout,
        reconcile_interval_seconds=reconcile_interval,
        loop_interval_seconds=0.01,
    )


def bind_running(registry, slot_id, agent_id="agent-0", hostname="agent0.cluster.local", ports=PortPair(9200, 9300)):
    """Bind a slot and drive it to RUNNING; returns the task id."""
    task_id = registry.allocate_task_id(slot_id)
    generation = registry.bind(slot_id, task_id, agent_id=agent_id, hostname=hostname, ports=ports)
    registry.apply_status(task_id, TaskStatus.STAGING, generation)
    registry.apply_status(task_id, TaskStatus.RUNNING, generation)
    return task_id


@pytest.fixture
def clock():
    """Manual clock starting at a fixed instant."""
    return ManualClock()


@pytest.fixture
def repository():
    """Fresh in-memory store."""
    return InMemorySchedulerStateRepository()


@pytest.fixture
def events():
    return LogEventEmitter()


@pytest.fixture
def registry(repository, events, clock):
    """Registry with three EMPTY slots."""
    registry = ExecutorRegistry(
        repository,
        task_ids=TaskIdFactory("executor"),
        emitter=events,
        clock=clock,
    )
    registry.resize(3)
    return registry


@pytest.fixture
def cluster(clock):
    """Three agents, each offering one port pair: 9200/9300, 9201/9301, 9202/9302."""
    return SimulatedCluster.with_agents(3, clock=clock)


@pytest.fixture
def harness(repository, cluster, clock):
    """Harness with N=3 and default health policy (scheduler not started)."""
    return SimulationHarness(make_config(3), repository=repository, cluster=cluster, clock=clock)


@pytest.fixture
def converged(harness):
    """Harness with 3 RUNNING executors."""
    harness.start_scheduler()
    result = harness.await_(lambda: harness.running_count() == 3, timeout=60, name="initial convergence")
    assert result.succeeded, result.details
    return harness
