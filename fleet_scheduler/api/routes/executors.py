# fleet_scheduler/api/routes/executors.py
"""Operator routes: fleet state, desired count, on-demand reconciliation."""

import logging

from fastapi import APIRouter, Depends, HTTPException, Request

from fleet_scheduler.api.schemas.executors import (
    CoordinatorStatusResponse,
    DesiredSpecModel,
    ExecutorSlotResponse,
    ExecutorsResponse,
    PortPairModel,
    ReconcileResponse,
)
from fleet_scheduler.container import SchedulerContainer
from fleet_scheduler.core.errors import ConfigurationError, PersistenceError
from fleet_scheduler.core.models import (
    LIVE_STATES,
    DesiredSpec,
    ExecutorSlot,
    PortPair,
    ResourceRequirements,
    SlotState,
)

logger = logging.getLogger(__name__)

router = APIRouter(tags=["executors"])


def get_container(request: Request) -> SchedulerContainer:
    return request.app.state.container


def _slot_response(slot: ExecutorSlot) -> ExecutorSlotResponse:
    return ExecutorSlotResponse(
        slot_id=slot.slot_id,
        state=slot.state.value,
        task_id=slot.task_id,
        generation=slot.generation,
        agent_id=slot.agent_id,
        hostname=slot.hostname,
        ports=PortPairModel(http=slot.ports.http, transport=slot.ports.transport) if slot.ports else None,
        running_since=slot.running_since,
        last_health_ack_time=slot.last_health_ack_time,
    )


def _spec_model(spec: DesiredSpec) -> DesiredSpecModel:
    return DesiredSpecModel(
        count=spec.count,
        cpu=spec.resources.cpu,
        memory=spec.resources.memory,
        ports=[PortPairModel(http=p.http, transport=p.transport) for p in spec.resources.ports],
    )


@router.get("/executors", response_model=ExecutorsResponse)
def list_executors(container: SchedulerContainer = Depends(get_container)):
    slots = container.registry.snapshot()
    status = container.coordinator.status()

    desired_count = container.store.current().count if container.store.loaded else None

    return ExecutorsResponse(
        desired_count=desired_count,
        running=sum(1 for s in slots if s.state == SlotState.RUNNING),
        live=sum(1 for s in slots if s.state in LIVE_STATES),
        slots=[_slot_response(s) for s in slots],
        coordinator=CoordinatorStatusResponse(
            store_ready=status.store_ready,
            connected=status.connected,
            suspended=status.suspended,
            framework_id=status.framework_id,
            last_applied_sweep=status.last_applied_sweep,
            pending_sweeps=status.pending_sweeps,
        ),
    )


@router.get("/desired", response_model=DesiredSpecModel)
def get_desired(container: SchedulerContainer = Depends(get_container)):
    try:
        return _spec_model(container.store.current())
    except PersistenceError as e:
        raise HTTPException(status_code=503, detail=str(e))


@router.put("/desired", response_model=DesiredSpecModel)
def put_desired(
    request: DesiredSpecModel,
    container: SchedulerContainer = Depends(get_container),
):
    spec = DesiredSpec(
        count=request.count,
        resources=ResourceRequirements(
            cpu=request.cpu,
            memory=request.memory,
            ports=tuple(PortPair(http=p.http, transport=p.transport) for p in request.ports),
        ),
    )

    try:
        updated = container.store.update(spec)
    except ConfigurationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except PersistenceError as e:
        logger.error(f"[api] Could not persist desired spec: {e}")
        raise HTTPException(status_code=503, detail=str(e))

    return _spec_model(updated)


@router.post("/reconcile", response_model=ReconcileResponse, status_code=202)
def reconcile(container: SchedulerContainer = Depends(get_container)):
    container.coordinator.request_reconcile("on-demand")
    return ReconcileResponse()
