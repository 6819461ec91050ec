from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field


class PortPairModel(BaseModel):
    http: int = Field(..., ge=1, le=65535)
    transport: int = Field(..., ge=1, le=65535)


class DesiredSpecModel(BaseModel):
    count: int = Field(..., ge=0)
    cpu: float = Field(..., gt=0)
    memory: int = Field(..., gt=0)
    ports: List[PortPairModel] = Field(default_factory=list)


class ExecutorSlotResponse(BaseModel):
    slot_id: int
    state: str
    task_id: Optional[str]
    generation: int
    agent_id: Optional[str]
    hostname: Optional[str]
    ports: Optional[PortPairModel]
    running_since: Optional[datetime]
    last_health_ack_time: Optional[datetime]


class CoordinatorStatusResponse(BaseModel):
    store_ready: bool
    connected: bool
    suspended: bool
    framework_id: Optional[str]
    last_applied_sweep: int
    pending_sweeps: List[int]


class ExecutorsResponse(BaseModel):
    desired_count: Optional[int]
    running: int
    live: int
    slots: List[ExecutorSlotResponse]
    coordinator: CoordinatorStatusResponse


class ReconcileResponse(BaseModel):
    status: str = "accepted"
