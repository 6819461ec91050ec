#fleet_scheduler\core\validation.py
from fleet_scheduler.core.errors import ConfigurationError
from fleet_scheduler.core.models import DesiredSpec, PortPair


def validate_port_pair(pair: PortPair) -> None:
    for port in pair.as_tuple():
        if not 1 <= port <= 65535:
            raise ConfigurationError(f"port {port} out of range")
    if pair.http == pair.transport:
        raise ConfigurationError(
            f"port pair must use two distinct ports (got {pair})"
        )


def validate_desired_spec(spec: DesiredSpec) -> None:
    # -------------------------
    # Count
    # -------------------------
    if spec.count < 0:
        raise ConfigurationError("count must be >= 0")

    # -------------------------
    # Resources
    # -------------------------
    resources = spec.resources

    if resources.cpu <= 0:
        raise ConfigurationError("cpu must be positive")

    if resources.memory <= 0:
        raise ConfigurationError("memory must be positive")

    # -------------------------
    # Ports (ordered set)
    # -------------------------
    seen = set()
    for pair in resources.ports:
        validate_port_pair(pair)
        if pair in seen:
            raise ConfigurationError(f"duplicate port pair {pair}")
        seen.add(pair)


def validate_health_windows(delay_seconds: float, timeout_seconds: float, interval_seconds: float) -> None:
    if delay_seconds < 0:
        raise ConfigurationError("health delay must be >= 0")

    if timeout_seconds <= 0:
        raise ConfigurationError("health timeout must be positive")

    if interval_seconds <= 0:
        raise ConfigurationError("health interval must be positive")
