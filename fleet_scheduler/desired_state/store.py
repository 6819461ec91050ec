# fleet_scheduler/desired_state/store.py
"""Desired state store - the target executor count and its resources."""

import logging
from threading import Lock
from typing import Callable, List, Optional

from fleet_scheduler.core.errors import StoreUnavailableError
from fleet_scheduler.core.models import DesiredSpec
from fleet_scheduler.core.repository import SchedulerStateRepository
from fleet_scheduler.core.validation import validate_desired_spec

logger = logging.getLogger(__name__)


class DesiredStateStore:
    """
    Holds the DesiredSpec and persists it so it survives a scheduler restart.

    The spec is immutable; ``update`` swaps in a new one and notifies listeners
    (the coordinator uses this to resize the registry and reconcile).
    """

    def __init__(self, repository: SchedulerStateRepository, default_spec: DesiredSpec):
        validate_desired_spec(default_spec)
        self._repo = repository
        self._default = default_spec
        self._spec: Optional[DesiredSpec] = None
        self._lock = Lock()
        self._listeners: List[Callable[[DesiredSpec, DesiredSpec], None]] = []

    @property
    def loaded(self) -> bool:
        return self._spec is not None

    def load(self) -> DesiredSpec:
        """
        Load the persisted spec, seeding it with the default on first start.

        Raises:
            StoreUnavailableError: If the store cannot be reached
        """
        self._repo.ping()
        stored = self._repo.load_desired_spec()

        if stored is None:
            logger.info(
                f"[desired] No stored spec, seeding default count={self._default.count}"
            )
            self._repo.save_desired_spec(self._default)
            stored = self._default
        else:
            logger.info(f"[desired] Loaded spec count={stored.count}")

        with self._lock:
            self._spec = stored
        return stored

    def current(self) -> DesiredSpec:
        with self._lock:
            if self._spec is None:
                raise StoreUnavailableError("Desired spec has not been loaded")
            return self._spec

    def on_change(self, listener: Callable[[DesiredSpec, DesiredSpec], None]) -> None:
        self._listeners.append(listener)

    def update(self, spec: DesiredSpec) -> DesiredSpec:
        """
        Persist ``spec`` and make it current.

        The new spec becomes visible only after it was saved.
        """
        validate_desired_spec(spec)
        previous = self.current()

        if spec == previous:
            return previous

        self._repo.save_desired_spec(spec)

        with self._lock:
            self._spec = spec

        logger.info(f"[desired] Reconfigured count {previous.count} -> {spec.count}")

        for listener in self._listeners:
            listener(previous, spec)

        return spec

    def scale(self, count: int) -> DesiredSpec:
        """Change only the executor count."""
        current = self.current()
        return self.update(DesiredSpec(count=count, resources=current.resources))
