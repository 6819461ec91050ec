# fleet_scheduler/coordinator/coordinator.py
"""
Reconciliation Coordinator - the scheduler's control loop.

Driver callbacks, probe results, reconfiguration and on-demand sweep
requests are posted to one queue and handled one at a time, so every
registry write happens on the loop. Calls to the resource manager never
wait for an answer; answers come back as later events.
"""

import itertools
import logging
import queue
import threading
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional, Tuple

from fleet_scheduler.config import SchedulerConfig
from fleet_scheduler.coordinator.events import DesiredChanged, ProbeCompleted, SweepRequested
from fleet_scheduler.core.errors import PersistenceError, ResourceManagerUnavailable
from fleet_scheduler.core.events import EventEmitter, NullEventEmitter
from fleet_scheduler.core.events_model import SlotEvent
from fleet_scheduler.core.models import (
    BOUND_STATES,
    LIVE_STATES,
    ClusterSnapshot,
    Offer,
    SlotState,
    utc_now,
)
from fleet_scheduler.core.repository import SchedulerStateRepository
from fleet_scheduler.desired_state.store import DesiredStateStore
from fleet_scheduler.health_monitor.monitor import HealthMonitor
from fleet_scheduler.planner.planner import LaunchPlanner
from fleet_scheduler.registry.registry import ExecutorRegistry
from fleet_scheduler.resource_manager.driver import (
    Disconnected,
    OfferRescinded,
    OffersReceived,
    ReconcileCompleted,
    Registered,
    ResourceManagerDriver,
    StatusUpdate,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SweepContext:
    """Bindings known when a sweep was requested: (slot_id, generation, task_id)."""
    sweep_id: int
    trigger: str
    known: Tuple[Tuple[int, int, str], ...]
    requested_at: datetime


@dataclass
class CoordinatorStatus:
    store_ready: bool
    connected: bool
    suspended: bool
    framework_id: Optional[str]
    last_applied_sweep: int
    pending_sweeps: List[int] = field(default_factory=list)
    held_offers: int = 0
    kills_in_flight: int = 0


class ReconciliationCoordinator:
    """
    Keeps the registry in line with the resource manager and the desired count.

    Usage:
        coordinator.boot()              # load state, register with the resource manager
        coordinator.process_events()    # drain the queue on the calling thread
        coordinator.tick()              # health, launch-ack and periodic sweep checks

    or ``start()`` / ``stop()`` to run the same loop on a daemon thread.
    """

    def __init__(
        self,
        *,
        store: DesiredStateStore,
        registry: ExecutorRegistry,
        planner: LaunchPlanner,
        monitor: HealthMonitor,
        driver: ResourceManagerDriver,
        repository: SchedulerStateRepository,
        config: SchedulerConfig,
        emitter: Optional[EventEmitter] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.store = store
        self.registry = registry
        self.planner = planner
        self.monitor = monitor
        self.driver = driver
        self.repo = repository
        self.config = config
        self._emitter = emitter or NullEventEmitter()
        self._clock = clock

        self._queue: "queue.Queue[object]" = queue.Queue()
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

        # Lifecycle
        self._store_ready = False
        self._connected = False
        self._framework_id: Optional[str] = None

        # Sweeps
        self._sweep_ids = itertools.count(1)
        self._sweeps: Dict[int, SweepContext] = {}
        self._last_applied_sweep = 0
        self._resume_after: Optional[int] = None
        self._next_sweep_at: Optional[datetime] = None

        # Resource manager bookkeeping
        self._offers: Dict[str, Offer] = {}
        # task_id -> when the kill was last sent
        self._kills_in_flight: Dict[str, datetime] = {}
        self._revive_pending = False

        self._handlers = {
            Registered: self._on_registered,
            Disconnected: self._on_disconnected,
            OffersReceived: self._on_offers,
            OfferRescinded: self._on_offer_rescinded,
            StatusUpdate: self._on_status,
            ReconcileCompleted: self._on_reconcile_completed,
            SweepRequested: self._on_sweep_requested,
            ProbeCompleted: self._on_probe_completed,
            DesiredChanged: self._on_desired_changed,
        }

        self.monitor.set_result_handler(lambda result: self.post(ProbeCompleted(result)))
        self.store.on_change(lambda previous, spec: self.post(DesiredChanged(previous, spec)))

    # -------------------------
    # LIFECYCLE
    # -------------------------

    def boot(self) -> bool:
        """
        Cold start: load persisted state, then register with the resource manager.

        Returns:
            False if the store is unreachable; the coordinator then waits and
            retries on every sweep trigger without planning any launch.
        """
        self._next_sweep_at = self._clock() + timedelta(seconds=self.config.reconcile_interval_seconds)

        if not self._load_state():
            return False

        self._connect()
        return True

    def start(self) -> None:
        """Boot and run the control loop on a daemon thread."""
        logger.info("[coordinator] 🚀 Starting reconciliation coordinator")
        logger.info(f"[coordinator] Desired count: {self.config.desired_spec.count}")
        logger.info(f"[coordinator] Loop interval: {self.config.loop_interval_seconds}s")
        logger.info(f"[coordinator] Reconcile interval: {self.config.reconcile_interval_seconds}s")

        self._stop_event.clear()
        self.boot()

        self._thread = threading.Thread(target=self._run_loop, name="reconciliation-loop", daemon=True)
        self._thread.start()

    def stop(self) -> None:
        """Stop the loop and detach from the resource manager; tasks keep running."""
        logger.info("[coordinator] Stopping coordinator")
        self._stop_event.set()
        if self._thread:
            self._thread.join()
            self._thread = None

        self.driver.stop(failover=True)
        self._connected = False

    def _run_loop(self) -> None:
        interval = self.config.loop_interval_seconds
        while not self._stop_event.is_set():
            try:
                try:
                    event = self._queue.get(timeout=interval)
                except queue.Empty:
                    event = None

                if event is not None:
                    self._dispatch(event)
                    self.process_events()

                self.tick()
            except Exception as e:
                logger.error(f"[coordinator] Error in main loop: {e}", exc_info=True)

    # -------------------------
    # EVENT QUEUE
    # -------------------------

    def post(self, event: object) -> None:
        """Hand an event to the loop. Safe from any thread."""
        self._queue.put(event)

    def request_reconcile(self, trigger: str = "on-demand") -> None:
        self.post(SweepRequested(trigger))

    def process_events(self, max_events: Optional[int] = None) -> int:
        """Handle queued events on the calling thread until the queue is empty."""
        handled = 0
        while max_events is None or handled < max_events:
            try:
                event = self._queue.get_nowait()
            except queue.Empty:
                break
            self._dispatch(event)
            handled += 1
        return handled

    def _dispatch(self, event: object) -> None:
        handler = self._handlers.get(type(event))
        if handler is None:
            logger.warning(f"[coordinator] Unknown event {event!r}")
            return

        try:
            handler(event)
        except Exception as e:
            logger.error(f"[coordinator] Error handling {type(event).__name__}: {e}", exc_info=True)

    # -------------------------
    # STATUS (readers)
    # -------------------------

    @property
    def can_launch(self) -> bool:
        return self._store_ready and self._connected and self._resume_after is None

    def status(self) -> CoordinatorStatus:
        return CoordinatorStatus(
            store_ready=self._store_ready,
            connected=self._connected,
            suspended=not self.can_launch,
            framework_id=self._framework_id,
            last_applied_sweep=self._last_applied_sweep,
            pending_sweeps=sorted(self._sweeps.copy()),
            held_offers=len(self._offers),
            kills_in_flight=len(self._kills_in_flight),
        )

    def deficit(self) -> int:
        return self.store.current().count - self.registry.count_in(LIVE_STATES)

    # -------------------------
    # PERIODIC WORK
    # -------------------------

    def tick(self, now: Optional[datetime] = None) -> None:
        """Timer-driven checks. Runs on the loop (or the test thread driving it)."""
        now = now or self._clock()
        sweep_due = self._next_sweep_at is not None and now >= self._next_sweep_at

        if not self._store_ready:
            if sweep_due:
                self._on_sweep_requested(SweepRequested("store-retry"))
            return

        if sweep_due and self._connected:
            self._start_sweep("periodic")

        self._check_health(now)
        self._check_launch_acks(now)

    def _check_health(self, now: datetime) -> None:
        for signal in self.monitor.tick(now):
            slot = self.registry.get(signal.slot_id)
            if slot is None or slot.generation != signal.generation:
                continue

            unhealthy = self.registry.mark_unhealthy(signal.slot_id)
            if unhealthy is None:
                continue

            self._emitter.emit([SlotEvent.slot_unhealthy(unhealthy, signal.silent_seconds)])
            self._issue_kill(unhealthy.task_id, slot_id=unhealthy.slot_id, reason="health timeout")

    def _check_launch_acks(self, now: datetime) -> None:
        timeout = timedelta(seconds=self.config.launch_ack_timeout_seconds)
        expired = False

        for slot in self.registry.in_states([SlotState.LAUNCH_PENDING]):
            if slot.bound_at is None or now - slot.bound_at <= timeout:
                continue

            task_id = slot.task_id
            if self.registry.expire_launch(slot.slot_id, slot.generation) is None:
                continue

            expired = True
            logger.info(f"[coordinator] Launch of {task_id} not acknowledged, slot {slot.slot_id} retried")
            self._issue_kill(task_id, reason="launch not acknowledged")

        if expired:
            self._plan_launches()

    # -------------------------
    # CONNECTION
    # -------------------------

    def _load_state(self) -> bool:
        try:
            spec = self.store.load()
            self.registry.load()
            added, removed = self.registry.resize(spec.count)
            self._framework_id = self.repo.load_framework_id()
        except PersistenceError as e:
            self._store_ready = False
            logger.error(f"[coordinator] Store unreachable, not planning launches: {e}")
            return False

        for slot in removed:
            if slot.task_id:
                logger.info(f"[coordinator] Task {slot.task_id} lost its slot, next sweep kills it")

        self._store_ready = True
        logger.info(
            f"[coordinator] ✅ State loaded: count={spec.count}, slots={len(self.registry)}, "
            f"framework={self._framework_id}"
        )
        return True

    def _connect(self) -> None:
        logger.info(f"[coordinator] Registering with resource manager (framework={self._framework_id})")
        self.driver.start(self.post, self._framework_id)

    def _on_registered(self, event: Registered) -> None:
        if event.framework_id != self._framework_id:
            try:
                self.repo.save_framework_id(event.framework_id)
            except PersistenceError as e:
                logger.error(f"[coordinator] Could not persist framework id {event.framework_id}: {e}")
            self._framework_id = event.framework_id

        self._connected = True
        self._kills_in_flight.clear()
        self._revive_pending = False

        trigger = "reregistered" if event.reregistered else "registered"
        logger.info(f"[coordinator] ✅ {trigger.capitalize()} as {event.framework_id}")

        # Nothing is launched or killed before this sweep is applied
        self._resume_after = self._start_sweep(trigger)

    def _on_disconnected(self, event: Disconnected) -> None:
        logger.warning(f"[coordinator] Disconnected from resource manager: {event.reason}")
        self._connected = False
        self._offers.clear()
        self._sweeps.clear()

    # -------------------------
    # SWEEPS
    # -------------------------

    def _on_sweep_requested(self, event: SweepRequested) -> None:
        if not self._store_ready:
            self._next_sweep_at = self._clock() + timedelta(seconds=self.config.reconcile_interval_seconds)
            if self._load_state():
                self._connect()
            return

        if not self._connected:
            logger.info(f"[coordinator] Sweep ({event.trigger}) deferred until registered")
            return

        self._start_sweep(event.trigger)

    def _start_sweep(self, trigger: str) -> int:
        sweep_id = next(self._sweep_ids)
        now = self._clock()
        self._next_sweep_at = now + timedelta(seconds=self.config.reconcile_interval_seconds)

        known = tuple(
            (slot.slot_id, slot.generation, slot.task_id)
            for slot in self.registry.snapshot()
            if slot.state in BOUND_STATES and slot.task_id is not None
        )
        self._sweeps[sweep_id] = SweepContext(sweep_id=sweep_id, trigger=trigger, known=known, requested_at=now)

        logger.info(f"[coordinator] Sweep {sweep_id} started ({trigger}, {len(known)} known task(s))")
        self._emitter.emit([SlotEvent.sweep_started(sweep_id, trigger)])

        try:
            self.driver.reconcile([task_id for _, _, task_id in known], sweep_id)
        except ResourceManagerUnavailable as e:
            logger.warning(f"[coordinator] Sweep {sweep_id} not sent: {e}")
            self._sweeps.pop(sweep_id, None)

        return sweep_id

    def _on_reconcile_completed(self, event: ReconcileCompleted) -> None:
        snapshot = event.snapshot
        sweep_id = snapshot.sweep_id
        context = self._sweeps.pop(sweep_id, None)

        if context is None or sweep_id <= self._last_applied_sweep:
            logger.info(
                f"[coordinator] Sweep {sweep_id} superseded (applied: {self._last_applied_sweep}), result discarded"
            )
            self._emitter.emit([SlotEvent.sweep_superseded(sweep_id, self._last_applied_sweep)])
            return

        # Older sweeps still in flight can no longer be applied
        for older in [s for s in self._sweeps if s < sweep_id]:
            del self._sweeps[older]

        self._last_applied_sweep = sweep_id
        lost = self._apply_snapshot(context, snapshot)

        if self._resume_after is not None and sweep_id >= self._resume_after:
            logger.info(f"[coordinator] Sweep {sweep_id} applied, launches and kills resumed")
            self._resume_after = None

        self._sync_slot_count()
        orphans = [
            task_id for task_id in snapshot.live_task_ids()
            if self.registry.find_by_task(task_id) is None
        ]

        for task_id in orphans:
            logger.warning(f"[coordinator] Orphan task {task_id} found by sweep {sweep_id}, killing")
            self._emitter.emit([SlotEvent.orphan_killed(task_id, snapshot.status_of(task_id))])
            self._issue_kill(task_id, reason="orphan")

        self._reissue_pending_kills()

        deficit = self.deficit()
        logger.info(
            f"[coordinator] Sweep {sweep_id} applied: lost={lost} orphans={len(orphans)} deficit={deficit}"
        )
        self._emitter.emit([SlotEvent.sweep_applied(sweep_id, lost, orphans, deficit)])

        self._plan_launches()

    def _apply_snapshot(self, context: SweepContext, snapshot: ClusterSnapshot) -> List[int]:
        """Cross-check the bindings known at request time; returns slots that lost their task."""
        lost: List[int] = []

        for slot_id, generation, task_id in context.known:
            status = snapshot.status_of(task_id)

            if status is None:
                if self.registry.mark_lost(slot_id, generation) is not None:
                    lost.append(slot_id)
                continue

            updated = self.registry.apply_status(task_id, status, generation)
            if status.is_terminal:
                self._kills_in_flight.pop(task_id, None)
                if updated is not None:
                    lost.append(slot_id)

        return lost

    # -------------------------
    # TASK STATUS
    # -------------------------

    def _on_status(self, event: StatusUpdate) -> None:
        update = event.update
        generation = self.registry.generation_of(update.task_id)
        slot = self.registry.apply_status(update.task_id, update.status, generation)

        if update.status.is_terminal:
            self._kills_in_flight.pop(update.task_id, None)

        if slot is None:
            if not update.status.is_terminal:
                logger.warning(
                    f"[coordinator] {update.status.value} for unknown task {update.task_id}, killing"
                )
                self._emitter.emit([SlotEvent.orphan_killed(update.task_id, update.status)])
                self._issue_kill(update.task_id, reason="unknown task")
            return

        if slot.state == SlotState.EMPTY:
            if update.message:
                logger.info(f"[coordinator] Slot {slot.slot_id} freed: {update.message}")
            self._plan_launches()

    def _on_probe_completed(self, event: ProbeCompleted) -> None:
        self.monitor.record(event.result)

    # -------------------------
    # KILLS
    # -------------------------

    def _issue_kill(self, task_id: Optional[str], *, slot_id: Optional[int] = None, reason: str = "") -> bool:
        """
        Send a kill unless one for the same task is still within its retry window.

        Deferred while suspended. A kill with no terminal status after
        ``launch_ack_timeout_seconds`` is sent again by the next caller,
        normally the sweep that still sees the task alive.
        """
        if task_id is None:
            return False

        if not (self._connected and self._resume_after is None):
            logger.info(f"[coordinator] Kill of {task_id} deferred ({reason})")
            return False

        now = self._clock()
        sent_at = self._kills_in_flight.get(task_id)
        if sent_at is not None:
            if now - sent_at < timedelta(seconds=self.config.launch_ack_timeout_seconds):
                return False
            logger.warning(f"[coordinator] Kill of {task_id} sent at {sent_at} not confirmed, retrying")

        try:
            self.driver.kill(task_id)
        except ResourceManagerUnavailable as e:
            logger.warning(f"[coordinator] Kill of {task_id} not sent: {e}")
            return False

        self._kills_in_flight[task_id] = now
        logger.warning(f"[coordinator] Kill requested for {task_id} ({reason})")
        self._emitter.emit([SlotEvent.kill_requested(task_id, slot_id, reason)])

        if slot_id is not None:
            self.registry.mark_killing(slot_id)
        return True

    def _reissue_pending_kills(self) -> None:
        for slot in self.registry.in_states([SlotState.UNHEALTHY, SlotState.KILLING]):
            self._issue_kill(slot.task_id, slot_id=slot.slot_id, reason="pending kill")

    # -------------------------
    # OFFERS / LAUNCHES
    # -------------------------

    def _on_offers(self, event: OffersReceived) -> None:
        self._revive_pending = False
        for offer in event.offers:
            self._offers[offer.offer_id] = offer
        logger.debug(f"[coordinator] {len(event.offers)} offer(s) received")
        self._plan_launches()

    def _on_offer_rescinded(self, event: OfferRescinded) -> None:
        if self._offers.pop(event.offer_id, None) is not None:
            logger.info(f"[coordinator] Offer {event.offer_id} rescinded")

    def _plan_launches(self) -> None:
        if not self.can_launch:
            return

        deficit = self.deficit()
        offers = list(self._offers.values())
        self._offers.clear()

        if deficit <= 0:
            for offer in offers:
                self._decline(offer)
            return

        if not offers:
            self._request_offers()
            return

        plan = self.planner.fill(deficit, offers)

        if plan.requests:
            try:
                self.driver.launch(plan.requests)
            except ResourceManagerUnavailable as e:
                logger.warning(f"[coordinator] Launch not sent, slots retry after ack timeout: {e}")
            else:
                self._emitter.emit([SlotEvent.launch_requested(r) for r in plan.requests])
                logger.info(f"[coordinator] Launched {len(plan.requests)} executor(s)")

        for offer in plan.unused_offers:
            self._decline(offer)

        if plan.unfilled > 0:
            logger.info(f"[coordinator] {plan.unfilled} slot(s) still waiting for offers")
            self._request_offers()

    def _decline(self, offer: Offer) -> None:
        try:
            self.driver.decline(offer.offer_id)
            logger.debug(f"[coordinator] Declined offer {offer.offer_id} from {offer.hostname}")
        except ResourceManagerUnavailable as e:
            logger.debug(f"[coordinator] Decline of {offer.offer_id} not sent: {e}")

    def _request_offers(self) -> None:
        if self._revive_pending:
            return
        try:
            self.driver.revive()
            self._revive_pending = True
        except ResourceManagerUnavailable as e:
            logger.debug(f"[coordinator] Revive not sent: {e}")

    # -------------------------
    # RECONFIGURATION
    # -------------------------

    def _sync_slot_count(self) -> None:
        """
        Resize the registry to the desired count if they differ.

        A resize interrupted by a store failure is completed by the next
        applied sweep. Tasks of removed slots are killed.
        """
        count = self.store.current().count
        if len(self.registry) == count:
            return

        try:
            added, removed = self.registry.resize(count)
        except PersistenceError as e:
            logger.error(f"[coordinator] Resize to {count} slot(s) failed, next sweep retries: {e}")
            return

        for slot in removed:
            if slot.task_id is not None:
                self._issue_kill(slot.task_id, reason="scaled down")

        logger.info(
            f"[coordinator] Slots resized to {count} "
            f"(added={added}, removed={[s.slot_id for s in removed]})"
        )

    def _on_desired_changed(self, event: DesiredChanged) -> None:
        logger.info(f"[coordinator] Reconfigured {event.previous.count} -> {event.spec.count}")
        self._sync_slot_count()
        self._emitter.emit([SlotEvent.reconfigured(event.previous.count, event.spec.count)])
        self._on_sweep_requested(SweepRequested("reconfigured"))
