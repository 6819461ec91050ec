# fleet_scheduler/run_scheduler.py
"""Run the scheduler against the in-process simulated cluster, with the operator API."""

import logging
import threading

import uvicorn

from fleet_scheduler.api.main import create_app
from fleet_scheduler.config import SchedulerConfig, SchedulerSettings, build_scheduler_config
from fleet_scheduler.container import build_scheduler
from fleet_scheduler.core.errors import ConfigurationError
from fleet_scheduler.health_monitor.probes import ExecutorProber, HttpExecutorProber, TcpExecutorProber
from fleet_scheduler.infrastructure.sql.database import create_db_engine, get_session_factory, init_db
from fleet_scheduler.infrastructure.sql.repository import SqlSchedulerStateRepository
from fleet_scheduler.simulation.cluster import SimulatedCluster, SimulatedProber

# Setup logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)

logger = logging.getLogger(__name__)


def _offer_cycle(cluster: SimulatedCluster, interval: float, stop: threading.Event) -> None:
    """Periodically offer free agent resources, like a real resource manager."""
    while not stop.wait(interval):
        try:
            cluster.offer_all()
        except Exception as e:
            logger.error(f"[offers] Offer cycle failed: {e}", exc_info=True)


def build_prober(mode: str, config: SchedulerConfig, cluster: SimulatedCluster) -> ExecutorProber:
    """Probe timeout is the health timeout for every mode."""
    timeout = config.health_policy.timeout_seconds
    if mode == "simulated":
        return SimulatedProber(cluster, timeout_seconds=timeout)
    if mode == "http":
        return HttpExecutorProber(path=config.health_policy.path, timeout_seconds=timeout)
    if mode == "tcp":
        return TcpExecutorProber(timeout_seconds=timeout)
    raise ConfigurationError(f"Unknown health probe '{mode}' (expected simulated, http or tcp)")


def main():
    """Main entry point."""
    settings = SchedulerSettings()
    config = build_scheduler_config(settings)

    engine = create_db_engine()
    init_db(engine)
    repository = SqlSchedulerStateRepository(get_session_factory(engine))

    cluster = SimulatedCluster.with_agents(settings.simulated_agents)
    prober = build_prober(settings.health_probe, config, cluster)

    container = build_scheduler(
        config,
        repository=repository,
        driver=cluster,
        prober=prober,
        threaded_probes=True,
    )

    logger.info("=" * 80)
    logger.info("🚀 FLEET SCHEDULER")
    logger.info("=" * 80)
    logger.info(f"Framework: {config.framework_name}")
    logger.info(f"Desired executors: {config.desired_spec.count}")
    logger.info(f"Health window: {config.health_policy.deadline_seconds}s")
    logger.info(f"Simulated agents: {settings.simulated_agents}")
    logger.info(f"API: http://{settings.api_host}:{settings.api_port}")
    logger.info("")
    logger.info("Press Ctrl+C to stop")
    logger.info("=" * 80)
    logger.info("")

    container.start()

    stop_offers = threading.Event()
    offers = threading.Thread(
        target=_offer_cycle,
        args=(cluster, settings.offer_interval_seconds, stop_offers),
        daemon=True,
    )
    offers.start()

    try:
        # uvicorn handles SIGINT/SIGTERM and returns
        uvicorn.run(
            create_app(container),
            host=settings.api_host,
            port=settings.api_port,
            log_level="info"
        )
    finally:
        logger.info("🛑 Shutting down scheduler...")
        stop_offers.set()
        container.stop()
        engine.dispose()


if __name__ == "__main__":
    main()
