"""Sync scheduler - decides when pending events are delivered to the collector.

Delivery is attempted on a fixed interval, when connectivity comes back, right
after an enqueue while online, and on demand. Only one delivery pass per
owner runs at a time; a trigger that arrives during a pass is folded into a
single follow-up pass.

Delivery policy
---------------
The collector transport normally gives no readable answer, so the default
``OPTIMISTIC`` policy removes a record as soon as ``send`` returns without
raising. A collector that silently rejects a record therefore loses it; this
is a known limitation and the observable default. ``CONFIRMED`` only removes
records whose result says ``accepted is True`` and needs a non-opaque sink.
"""

import logging
import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

from ..config import DEFAULT_SYNC_INTERVAL
from .connectivity import ConnectivityMonitor
from .protocols import SinkProtocol
from .queue import EventQueue, EventRecord
from .sink import SinkError, build_envelope

__all__ = ["DeliveryPolicy", "FlushStats", "SyncScheduler"]

logger = logging.getLogger(__name__)


class DeliveryPolicy(Enum):
    OPTIMISTIC = "optimistic"
    CONFIRMED = "confirmed"


@dataclass
class FlushStats:
    """Statistics from a flush request."""

    owner: str
    reason: str = "manual"
    passes: int = 0
    sent: int = 0
    remaining: int = 0
    errors: list[str] = field(default_factory=list)

    @property
    def skipped(self) -> bool:
        """No pass ran (offline, or another pass was in flight)."""
        return self.passes == 0

    @property
    def success(self) -> bool:
        return len(self.errors) == 0


class SyncScheduler:
    """Drains per-owner queues through the sink."""

    JOB_ID = "sync_job"
    FLUSH_JOB_INSTANCES = 2

    def __init__(
        self,
        queue: EventQueue,
        sink: SinkProtocol,
        connectivity: ConnectivityMonitor,
        interval_seconds: int = DEFAULT_SYNC_INTERVAL,
        policy: DeliveryPolicy = DeliveryPolicy.OPTIMISTIC,
        scheduler: Optional[BackgroundScheduler] = None,
    ):
        """Initialize the scheduler.

        Args:
            queue: Pending event queue
            sink: Remote collector adapter
            connectivity: Online/offline signal
            interval_seconds: Periodic flush interval
            policy: When a sent record counts as delivered
            scheduler: Optional APScheduler instance (for dependency injection/testing)
        """
        self.queue = queue
        self.sink = sink
        self.connectivity = connectivity
        self.interval_seconds = interval_seconds
        self.policy = policy
        self._scheduler = scheduler or BackgroundScheduler()
        self._busy: dict[str, threading.Lock] = {}
        self._rerun: set[str] = set()
        self._guard = threading.Lock()

    # -- lifecycle --------------------------------------------------------

    def start(self) -> None:
        """Start the periodic timer and listen for connectivity changes."""
        self.connectivity.add_listener(self._on_connectivity_change)
        self._scheduler.add_job(
            self.tick,
            trigger=IntervalTrigger(seconds=self.interval_seconds),
            id=self.JOB_ID,
            replace_existing=True,
        )
        if not self._scheduler.running:
            self._scheduler.start()
        logger.info(f"Sync scheduler started (interval: {self.interval_seconds}s)")

    def stop(self) -> None:
        """Stop the timer and the connectivity listener."""
        self.connectivity.remove_listener(self._on_connectivity_change)
        if self._scheduler.running:
            self._scheduler.shutdown(wait=False)

    @property
    def running(self) -> bool:
        return bool(self._scheduler.running)

    def reschedule(self, interval_seconds: int) -> None:
        """Change the flush interval on the fly."""
        self.interval_seconds = interval_seconds
        if self._scheduler.running:
            self._scheduler.reschedule_job(
                self.JOB_ID,
                trigger=IntervalTrigger(seconds=interval_seconds),
            )

    # -- triggers ---------------------------------------------------------

    def tick(self) -> list[FlushStats]:
        """Timer trigger: flush every owner with pending events."""
        results = []
        for owner in self.queue.owners():
            if self.queue.is_empty(owner):
                continue
            try:
                results.append(self.flush(owner, reason="timer"))
            except Exception as e:
                logger.exception(f"Timer flush failed for {owner}: {e}")
        return results

    def notify_enqueued(self, owner: str) -> None:
        """Enqueue trigger: opportunistic delivery while online."""
        if self.connectivity.is_online:
            self.trigger(owner, "enqueue")

    def trigger(self, owner: str, reason: str) -> None:
        """Schedule a one-off flush.

        Runs on the scheduler's worker thread when the scheduler is running,
        inline otherwise. A second instance may start while one is in flight
        so it can leave the rerun mark on the busy owner.
        """
        if self._scheduler.running:
            self._scheduler.add_job(
                self.flush,
                args=[owner],
                kwargs={"reason": reason},
                id=f"flush_{owner}",
                replace_existing=True,
                max_instances=self.FLUSH_JOB_INSTANCES,
            )
        else:
            self.flush(owner, reason=reason)

    def _on_connectivity_change(self, is_online: bool) -> None:
        if not is_online:
            logger.info("Network offline — deliveries paused, events will queue")
            return
        logger.info("Network back online — flushing pending events")
        for owner in self.queue.owners():
            if not self.queue.is_empty(owner):
                self.trigger(owner, "online")

    # -- delivery ---------------------------------------------------------

    def is_busy(self, owner: str) -> bool:
        return self._owner_lock(owner).locked()

    def flush(self, owner: str, reason: str = "manual") -> FlushStats:
        """Deliver the owner's pending events.

        Returns immediately (``skipped``) when offline or when a pass for the
        same owner is already in flight; in the latter case the running pass
        makes one more pass once it finishes.
        """
        stats = FlushStats(owner=owner, reason=reason)

        if not self.connectivity.is_online:
            stats.remaining = self.queue.size(owner)
            return stats

        lock = self._owner_lock(owner)
        while True:
            # Marked before trying the lock so a holder releasing right now still sees it
            with self._guard:
                self._rerun.add(owner)
            if not lock.acquire(blocking=False):
                logger.debug(f"Flush for {owner} already in flight, deferring ({reason})")
                break
            try:
                with self._guard:
                    self._rerun.discard(owner)
                clean = self._deliver_pass(owner, stats)
                stats.passes += 1
            finally:
                lock.release()

            with self._guard:
                again = owner in self._rerun
            if not (again and clean and self.connectivity.is_online):
                break

        stats.remaining = self.queue.size(owner)
        if stats.sent:
            logger.info(
                f"Flush complete for {owner} ({reason}): {stats.sent} sent, "
                f"{stats.remaining} pending"
            )
        return stats

    def _deliver_pass(self, owner: str, stats: FlushStats) -> bool:
        """One snapshot -> send -> remove pass.

        Stops at the first record that is not delivered so FIFO order holds.

        Returns:
            True if every record in the snapshot was delivered
        """
        snapshot = self.queue.drain(owner)
        if not snapshot:
            return True

        delivered: list[EventRecord] = []
        clean = True
        try:
            for record in snapshot:
                if not self.connectivity.is_online:
                    clean = False
                    break
                if not self._send(owner, record, stats):
                    clean = False
                    break
                delivered.append(record)
        finally:
            stats.sent += self.queue.remove(owner, delivered)
        return clean

    def _send(self, owner: str, record: EventRecord, stats: FlushStats) -> bool:
        envelope = build_envelope(
            record.action,
            record.tool_name,
            owner,
            record.payload,
            record.captured_at,
            session_id=record.session_id,
        )
        try:
            result = self.sink.send(envelope)
        except SinkError as e:
            stats.errors.append(str(e))
            logger.warning(f"Delivery failed for {owner}, keeping event queued: {e}")
            return False
        except Exception as e:
            stats.errors.append(str(e))
            logger.exception(f"Unexpected sink error for {owner}: {e}")
            return False

        if self.policy is DeliveryPolicy.CONFIRMED and result.accepted is not True:
            stats.errors.append(f"{record.action} for {record.tool_name} not confirmed")
            return False
        return True

    def _owner_lock(self, owner: str) -> threading.Lock:
        with self._guard:
            lock = self._busy.get(owner)
            if lock is None:
                lock = self._busy[owner] = threading.Lock()
            return lock
