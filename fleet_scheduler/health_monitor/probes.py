# fleet_scheduler/health_monitor/probes.py
"""Liveness probes for running executors."""

import logging
import socket
from abc import ABC, abstractmethod

import requests

from fleet_scheduler.core.models import ExecutorSlot

logger = logging.getLogger(__name__)


class ExecutorProber(ABC):
    """Checks whether the executor bound to a slot answers."""

    @abstractmethod
    def probe(self, slot: ExecutorSlot) -> bool:
        """
        Probe one executor.

        Args:
            slot: RUNNING slot (hostname and ports are set)

        Returns:
            True if the executor acknowledged in time
        """
        pass


class HttpExecutorProber(ExecutorProber):
    """GET http://<hostname>:<http port><path>; healthy on 2xx/3xx."""

    def __init__(self, *, path: str = "/", timeout_seconds: float = 5.0, scheme: str = "http"):
        self.path = path if path.startswith("/") else f"/{path}"
        self.timeout_seconds = timeout_seconds
        self.scheme = scheme
        self._session = requests.Session()

    def url_for(self, slot: ExecutorSlot) -> str:
        return f"{self.scheme}://{slot.hostname}:{slot.ports.http}{self.path}"

    def probe(self, slot: ExecutorSlot) -> bool:
        if not slot.hostname or slot.ports is None:
            logger.warning(f"[probe] Slot {slot.slot_id} has no address, cannot probe")
            return False

        url = self.url_for(slot)

        try:
            response = self._session.get(url, timeout=self.timeout_seconds)
            is_healthy = 200 <= response.status_code < 400

            if is_healthy:
                logger.debug(f"[probe] Slot {slot.slot_id} ✅ HTTP check OK: {url} ({response.status_code})")
            else:
                logger.warning(
                    f"[probe] Slot {slot.slot_id} ❌ HTTP check FAIL: "
                    f"{url} returned {response.status_code}"
                )

            return is_healthy

        except requests.exceptions.RequestException as e:
            logger.warning(f"[probe] Slot {slot.slot_id} ❌ HTTP check error: {e}")
            return False

    def close(self) -> None:
        self._session.close()


class TcpExecutorProber(ExecutorProber):
    """Healthy when the transport port accepts a connection."""

    def __init__(self, *, timeout_seconds: float = 5.0):
        self.timeout_seconds = timeout_seconds

    def probe(self, slot: ExecutorSlot) -> bool:
        if not slot.hostname or slot.ports is None:
            return False

        try:
            with socket.create_connection(
                (slot.hostname, slot.ports.transport),
                timeout=self.timeout_seconds,
            ):
                pass
            logger.debug(f"[probe] Slot {slot.slot_id} TCP check OK: {slot.hostname}:{slot.ports.transport}")
            return True
        except OSError as e:
            logger.warning(f"[probe] Slot {slot.slot_id} TCP check error: {e}")
            return False
