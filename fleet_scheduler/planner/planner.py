# fleet_scheduler/planner/planner.py
"""Launch planner - turns a deficit plus offers into launch requests."""

import logging
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Set, Tuple

from fleet_scheduler.config import LaunchConfig
from fleet_scheduler.core.errors import PersistenceError
from fleet_scheduler.core.models import (
    BOUND_STATES,
    LaunchRequest,
    Offer,
    PortPair,
    ResourceRequirements,
    SlotState,
)
from fleet_scheduler.registry.registry import ExecutorRegistry

logger = logging.getLogger(__name__)


@dataclass
class _OfferCapacity:
    """What is left of one offer while planning."""
    offer: Offer
    cpu: float
    memory: int
    ports: List[int]
    used: bool = False

    def fits(self, requirements: ResourceRequirements) -> bool:
        return (
            self.cpu >= requirements.cpu
            and self.memory >= requirements.memory
            and len(self.ports) >= 2
        )

    def consume(self, requirements: ResourceRequirements, pair: PortPair) -> None:
        self.cpu -= requirements.cpu
        self.memory -= requirements.memory
        self.ports.remove(pair.http)
        self.ports.remove(pair.transport)
        self.used = True


@dataclass
class LaunchPlan:
    requests: List[LaunchRequest] = field(default_factory=list)
    unused_offers: List[Offer] = field(default_factory=list)
    unfilled: int = 0


class LaunchPlanner:
    """
    Greedy first-fit matcher.

    One launch per EMPTY slot, lowest slot id first. Offers carrying one of
    the preferred port pairs are taken before any other offer; otherwise the
    two lowest free ports of the offer are used.
    """

    def __init__(
        self,
        registry: ExecutorRegistry,
        launch_config: LaunchConfig,
        requirements: Callable[[], ResourceRequirements],
    ):
        self.registry = registry
        self.launch_config = launch_config
        self._requirements = requirements

    def fill(self, deficit: int, offers: List[Offer]) -> LaunchPlan:
        """
        Plan up to ``deficit`` launches from ``offers``.

        Each matched slot is bound (EMPTY -> LAUNCH_PENDING) before its
        request is returned. Whatever cannot be matched stays outstanding.
        """
        plan = LaunchPlan()
        if deficit <= 0:
            plan.unused_offers = list(offers)
            return plan

        requirements = self._requirements()
        capacities = [
            _OfferCapacity(offer=o, cpu=o.cpu, memory=o.memory, ports=sorted(o.ports))
            for o in offers
        ]
        taken = self._ports_in_use()

        empty_slots = self.registry.in_states([SlotState.EMPTY])[:deficit]

        for slot in empty_slots:
            match = self._match(capacities, requirements, taken)
            if match is None:
                logger.info(
                    f"[planner] No offer fits slot {slot.slot_id} "
                    f"(cpu={requirements.cpu}, mem={requirements.memory}), waiting for next offers"
                )
                break

            capacity, pair = match
            offer = capacity.offer

            task_id = self.registry.allocate_task_id(slot.slot_id)
            try:
                generation = self.registry.bind(
                    slot.slot_id,
                    task_id,
                    agent_id=offer.agent_id,
                    hostname=offer.hostname,
                    ports=pair,
                )
            except PersistenceError as e:
                logger.error(f"[planner] Could not bind slot {slot.slot_id}: {e}")
                break

            capacity.consume(requirements, pair)
            taken.setdefault(offer.agent_id, set()).update(pair.as_tuple())

            plan.requests.append(LaunchRequest(
                task_id=task_id,
                slot_id=slot.slot_id,
                generation=generation,
                offer_id=offer.offer_id,
                agent_id=offer.agent_id,
                hostname=offer.hostname,
                cpu=requirements.cpu,
                memory=requirements.memory,
                ports=pair,
                image=self.launch_config.image,
                command=self.launch_config.command,
                environment=dict(self.launch_config.environment),
            ))
            logger.info(
                f"[planner] Slot {slot.slot_id} -> {offer.hostname} ports {pair} ({task_id})"
            )

        plan.unused_offers = [c.offer for c in capacities if not c.used]
        plan.unfilled = len(empty_slots) - len(plan.requests)
        return plan

    def _match(
        self,
        capacities: List[_OfferCapacity],
        requirements: ResourceRequirements,
        taken: Dict[str, Set[int]],
    ) -> Optional[Tuple[_OfferCapacity, PortPair]]:
        candidates = [c for c in capacities if c.fits(requirements)]

        # Exact preferred pair first
        for preferred in requirements.ports:
            for capacity in candidates:
                used = taken.get(capacity.offer.agent_id, set())
                if (
                    preferred.http in capacity.ports
                    and preferred.transport in capacity.ports
                    and preferred.http not in used
                    and preferred.transport not in used
                ):
                    return capacity, preferred

        # Any two free ports
        for capacity in candidates:
            used = taken.get(capacity.offer.agent_id, set())
            free = [p for p in capacity.ports if p not in used]
            if len(free) >= 2:
                return capacity, PortPair(http=free[0], transport=free[1])

        return None

    def _ports_in_use(self) -> Dict[str, Set[int]]:
        """Ports held by bound executors, per agent."""
        taken: Dict[str, Set[int]] = {}
        for slot in self.registry.snapshot():
            if slot.state in BOUND_STATES and slot.agent_id and slot.ports:
                taken.setdefault(slot.agent_id, set()).update(slot.ports.as_tuple())
        return taken
