#tests\test_planner.py

"""Test launch planner."""

import pytest

from fleet_scheduler.config import LaunchConfig
from fleet_scheduler.core.models import Offer, PortPair, SlotState
from fleet_scheduler.planner.planner import LaunchPlanner

from conftest import bind_running, make_spec


def offer(offer_id, agent="agent-0", cpu=1.0, memory=1024, ports=(9200, 9300)):
    return Offer(
        offer_id=offer_id,
        agent_id=agent,
        hostname=f"{agent}.local",
        cpu=cpu,
        memory=memory,
        ports=tuple(ports),
    )


@pytest.fixture
def planner(registry):
    spec = make_spec(3)
    return LaunchPlanner(
        registry,
        LaunchConfig(image="executor:test", command=("run",), environment={"A": "1"}),
        requirements=lambda: spec.resources,
    )


class TestFill:
    """Test matching offers to empty slots."""

    def test_binds_before_returning(self, planner, registry):
        plan = planner.fill(1, [offer("o1")])

        assert len(plan.requests) == 1
        request = plan.requests[0]
        slot = registry.get(request.slot_id)
        assert slot.state == SlotState.LAUNCH_PENDING
        assert slot.task_id == request.task_id
        assert slot.generation == request.generation == 1

    def test_request_carries_launch_config(self, planner):
        request = planner.fill(1, [offer("o1")]).requests[0]

        assert request.image == "executor:test"
        assert request.command == ("run",)
        assert request.environment == {"A": "1"}
        assert request.cpu == 0.2
        assert request.memory == 256

    def test_prefers_offer_with_exact_port_pair(self, planner):
        offers = [
            offer("o1", agent="agent-1", ports=(9201, 9301)),
            offer("o2", agent="agent-0", ports=(9200, 9300)),
        ]

        plan = planner.fill(1, offers)

        assert plan.requests[0].offer_id == "o2"
        assert plan.requests[0].ports == PortPair(9200, 9300)
        assert [o.offer_id for o in plan.unused_offers] == ["o1"]

    def test_falls_back_to_lowest_free_ports(self, planner):
        plan = planner.fill(1, [offer("o1", ports=(31005, 31001, 31003))])

        assert plan.requests[0].ports == PortPair(31001, 31003)

    def test_one_launch_per_slot_lowest_first(self, planner):
        offers = [offer(f"o{i}", agent=f"agent-{i}", ports=(9200 + i, 9300 + i)) for i in range(3)]

        plan = planner.fill(3, offers)

        assert [r.slot_id for r in plan.requests] == [0, 1, 2]
        assert len({r.task_id for r in plan.requests}) == 3
        assert plan.unfilled == 0

    def test_insufficient_offers_leave_deficit(self, planner, registry):
        plan = planner.fill(3, [offer("o1")])

        assert len(plan.requests) == 1
        assert plan.unfilled == 2
        assert registry.count_in([SlotState.EMPTY]) == 2

    def test_small_offer_is_unused(self, planner):
        plan = planner.fill(1, [offer("o1", cpu=0.1), offer("o2", memory=128)])

        assert plan.requests == []
        assert len(plan.unused_offers) == 2

    def test_offer_without_two_ports_is_unused(self, planner):
        plan = planner.fill(1, [offer("o1", ports=(9200,))])

        assert plan.requests == []

    def test_large_offer_hosts_several_executors(self, planner):
        plan = planner.fill(2, [offer("o1", ports=(9200, 9300, 9201, 9301))])

        assert len(plan.requests) == 2
        assert {r.offer_id for r in plan.requests} == {"o1"}
        assert plan.requests[0].ports == PortPair(9200, 9300)
        assert plan.requests[1].ports == PortPair(9201, 9301)

    def test_ports_of_colocated_executor_not_reused(self, planner, registry):
        bind_running(registry, 0, agent_id="agent-0", ports=PortPair(9200, 9300))

        plan = planner.fill(1, [offer("o1", agent="agent-0", ports=(9200, 9300, 9400, 9401))])

        assert plan.requests[0].ports == PortPair(9400, 9401)

    def test_zero_deficit_plans_nothing(self, planner):
        plan = planner.fill(0, [offer("o1")])

        assert plan.requests == []
        assert len(plan.unused_offers) == 1

    def test_deficit_limits_launches(self, planner):
        offers = [offer(f"o{i}", agent=f"agent-{i}", ports=(9200 + i, 9300 + i)) for i in range(3)]

        plan = planner.fill(1, offers)

        assert len(plan.requests) == 1
        assert len(plan.unused_offers) == 2
