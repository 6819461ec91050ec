#tests\test_config.py

"""Test operator settings and the value objects built from them."""

import pytest

from fleet_scheduler.config import SchedulerSettings, build_scheduler_config
from fleet_scheduler.core.errors import ConfigurationError
from fleet_scheduler.core.models import PortPair


class TestSchedulerSettings:
    """Test settings parsing and conversion."""

    def test_defaults(self):
        config = build_scheduler_config(SchedulerSettings(_env_file=None))

        assert config.desired_spec.count == 3
        assert config.desired_spec.resources.cpu == 0.2
        assert config.desired_spec.resources.memory == 256
        assert config.desired_spec.resources.ports == (PortPair(9200, 9300),)
        assert config.health_policy.deadline_seconds == 70
        assert config.launch_config.task_prefix == "executor"

    def test_reads_environment(self, monkeypatch):
        monkeypatch.setenv("FLEET_DESIRED_COUNT", "5")
        monkeypatch.setenv("FLEET_HEALTH_DELAY_SECONDS", "99")
        monkeypatch.setenv("FLEET_HEALTH_TIMEOUT_SECONDS", "100")
        monkeypatch.setenv("FLEET_PORTS_PER_EXECUTOR", "[9201, 9301]")

        config = build_scheduler_config(SchedulerSettings(_env_file=None))

        assert config.desired_spec.count == 5
        assert config.health_policy.delay_seconds == 99
        assert config.health_policy.timeout_seconds == 100
        assert config.desired_spec.resources.ports == (PortPair(9201, 9301),)

    def test_health_policy_is_a_value_not_a_subclass(self):
        """Test the forced-timeout variant is just different settings."""
        normal = build_scheduler_config(SchedulerSettings(_env_file=None))
        forced = build_scheduler_config(SchedulerSettings(
            _env_file=None, health_delay_seconds=99, health_timeout_seconds=100,
        ))

        assert type(normal.health_policy) is type(forced.health_policy)
        assert forced.health_policy.deadline_seconds == 199

    @pytest.mark.parametrize("overrides", [
        {"desired_count": -1},
        {"cpu_per_executor": 0},
        {"mem_per_executor": -5},
        {"ports_per_executor": (9200, 9200)},
        {"ports_per_executor": (0, 9300)},
        {"health_timeout_seconds": 0},
        {"health_delay_seconds": -1},
        {"health_interval_seconds": 0},
        {"executor_name_prefix": "my-executor"},
    ])
    def test_invalid_settings(self, overrides):
        with pytest.raises(ConfigurationError):
            build_scheduler_config(SchedulerSettings(_env_file=None, **overrides))


class TestProberSelection:
    """Test the runner picks the configured prober."""

    @pytest.fixture
    def config(self):
        return build_scheduler_config(SchedulerSettings(_env_file=None, health_path="/_cluster/health"))

    def test_modes(self, config):
        from fleet_scheduler.health_monitor.probes import HttpExecutorProber, TcpExecutorProber
        from fleet_scheduler.run_scheduler import build_prober
        from fleet_scheduler.simulation.cluster import SimulatedCluster, SimulatedProber

        cluster = SimulatedCluster.with_agents(1)

        assert isinstance(build_prober("simulated", config, cluster), SimulatedProber)
        assert isinstance(build_prober("tcp", config, cluster), TcpExecutorProber)

        http = build_prober("http", config, cluster)
        assert isinstance(http, HttpExecutorProber)
        assert http.timeout_seconds == 60

    def test_unknown_mode(self, config):
        from fleet_scheduler.run_scheduler import build_prober

        with pytest.raises(ConfigurationError):
            build_prober("icmp", config, None)
