# fleet_scheduler/coordinator/events.py
"""Events the coordinator posts to its own queue (driver events live in resource_manager.driver)."""

from dataclasses import dataclass

from fleet_scheduler.core.models import DesiredSpec
from fleet_scheduler.health_monitor.monitor import ProbeResult


@dataclass(frozen=True)
class SweepRequested:
    trigger: str = "on-demand"


@dataclass(frozen=True)
class ProbeCompleted:
    result: ProbeResult


@dataclass(frozen=True)
class DesiredChanged:
    previous: DesiredSpec
    spec: DesiredSpec
