#fleet_scheduler\config.py

"""Scheduler configuration: operator settings and the value objects built from them."""

from dataclasses import dataclass, field
from typing import Dict, List, Tuple

from pydantic_settings import BaseSettings, SettingsConfigDict

from fleet_scheduler.core.errors import ConfigurationError
from fleet_scheduler.core.models import DesiredSpec, PortPair, ResourceRequirements
from fleet_scheduler.core.validation import (
    validate_desired_spec,
    validate_health_windows,
)


class SchedulerSettings(BaseSettings):
    """Operator-facing options, read from FLEET_* environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="FLEET_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    # Fleet
    desired_count: int = 3
    cpu_per_executor: float = 0.2
    mem_per_executor: int = 256
    ports_per_executor: Tuple[int, int] = (9200, 9300)

    # Health
    health_delay_seconds: int = 10
    health_timeout_seconds: int = 60
    health_interval_seconds: int = 5
    health_path: str = "/"
    # simulated | http | tcp
    health_probe: str = "simulated"

    # Control loop
    launch_ack_timeout_seconds: int = 60
    reconcile_interval_seconds: int = 120
    loop_interval_seconds: float = 1.0

    # Executor launch
    framework_name: str = "fleet-scheduler"
    executor_name_prefix: str = "executor"
    executor_image: str = "elasticsearch-executor:latest"
    executor_command: List[str] = []

    # Operator API / development runner
    api_host: str = "127.0.0.1"
    api_port: int = 8080
    simulated_agents: int = 3
    offer_interval_seconds: float = 2.0


@dataclass(frozen=True)
class HealthPolicy:
    """
    Probe policy for RUNNING slots.

    A slot is unhealthy once ``now - last_ack > delay + timeout``.
    """
    delay_seconds: float
    timeout_seconds: float
    interval_seconds: float = 5.0
    path: str = "/"

    @property
    def deadline_seconds(self) -> float:
        return self.delay_seconds + self.timeout_seconds


@dataclass(frozen=True)
class LaunchConfig:
    """What to launch for each executor."""
    image: str
    command: Tuple[str, ...] = ()
    environment: Dict[str, str] = field(default_factory=dict)
    task_prefix: str = "executor"


@dataclass(frozen=True)
class SchedulerConfig:
    desired_spec: DesiredSpec
    health_policy: HealthPolicy
    launch_config: LaunchConfig

    framework_name: str = "fleet-scheduler"
    launch_ack_timeout_seconds: float = 60.0
    reconcile_interval_seconds: float = 120.0
    loop_interval_seconds: float = 1.0


def build_scheduler_config(settings: SchedulerSettings) -> SchedulerConfig:
    """Validate ``settings`` and turn them into component value objects."""
    http_port, transport_port = settings.ports_per_executor

    desired_spec = DesiredSpec(
        count=settings.desired_count,
        resources=ResourceRequirements(
            cpu=settings.cpu_per_executor,
            memory=settings.mem_per_executor,
            ports=(PortPair(http=http_port, transport=transport_port),),
        ),
    )
    validate_desired_spec(desired_spec)

    validate_health_windows(
        settings.health_delay_seconds,
        settings.health_timeout_seconds,
        settings.health_interval_seconds,
    )

    if not settings.executor_name_prefix or "-" in settings.executor_name_prefix:
        raise ConfigurationError("executor_name_prefix must be non-empty and must not contain '-'")

    return SchedulerConfig(
        desired_spec=desired_spec,
        health_policy=HealthPolicy(
            delay_seconds=settings.health_delay_seconds,
            timeout_seconds=settings.health_timeout_seconds,
            interval_seconds=settings.health_interval_seconds,
            path=settings.health_path,
        ),
        launch_config=LaunchConfig(
            image=settings.executor_image,
            command=tuple(settings.executor_command),
            environment={"FRAMEWORK_NAME": settings.framework_name},
            task_prefix=settings.executor_name_prefix,
        ),
        framework_name=settings.framework_name,
        launch_ack_timeout_seconds=settings.launch_ack_timeout_seconds,
        reconcile_interval_seconds=settings.reconcile_interval_seconds,
        loop_interval_seconds=settings.loop_interval_seconds,
    )
