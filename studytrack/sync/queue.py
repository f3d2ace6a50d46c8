"""Pending event queue, write-through to the local store."""

import json
import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Iterable, Optional

from .protocols import StoreProtocol
from .store import StoreUnavailableError

__all__ = ["EventRecord", "EventQueue", "PENDING_QUEUE_KEY"]

logger = logging.getLogger(__name__)

PENDING_QUEUE_KEY = "pendingQueue"

ACTION_SAVE_DATA = "save_data"
ACTION_TRACK_USAGE = "track_usage"


@dataclass(frozen=True)
class EventRecord:
    """A user action waiting to be delivered to the collector."""

    tool_name: str
    payload: Any
    captured_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    action: str = ACTION_SAVE_DATA
    session_id: Optional[str] = None

    def to_dict(self) -> dict:
        data = {
            "action": self.action,
            "toolName": self.tool_name,
            "data": self.payload,
            "timestamp": self.captured_at.isoformat(),
        }
        if self.session_id:
            data["sessionId"] = self.session_id
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "EventRecord":
        """Create from a persisted entry.

        Raises:
            KeyError, TypeError, ValueError: If the entry is malformed
        """
        return cls(
            tool_name=str(data["toolName"]),
            payload=data.get("data", {}),
            captured_at=datetime.fromisoformat(data["timestamp"]),
            action=data.get("action", ACTION_SAVE_DATA),
            session_id=data.get("sessionId"),
        )


class EventQueue:
    """Per-owner FIFO of undelivered records.

    The in-memory list and its persisted mirror are updated together on every
    mutation. If the store fails, that owner's queue continues in memory only.
    """

    def __init__(self, store: StoreProtocol, max_size: Optional[int] = None):
        """Initialize the queue.

        Args:
            store: Local durable store
            max_size: Optional cap; oldest records are dropped beyond it
        """
        self.store = store
        self.max_size = max_size
        self._queues: dict[str, list[EventRecord]] = {}
        self._memory_only: set[str] = set()
        self._lock = threading.RLock()

    def restore(self, owner: str) -> int:
        """Load the persisted queue for an owner, replacing the in-memory one.

        An owner already running memory-only keeps its in-memory records,
        since the persisted copy is stale or missing.

        Returns:
            Number of records restored
        """
        with self._lock:
            if owner in self._memory_only and owner in self._queues:
                return len(self._queues[owner])

            records: list[EventRecord] = []
            try:
                raw = self.store.get(owner, PENDING_QUEUE_KEY)
            except StoreUnavailableError as e:
                self._mark_memory_only(owner, e)
                raw = None

            if raw:
                try:
                    entries = json.loads(raw.decode("utf-8"))
                    if not isinstance(entries, list):
                        raise ValueError("pending queue is not a list")
                    records = [EventRecord.from_dict(entry) for entry in entries]
                except (ValueError, KeyError, TypeError, UnicodeDecodeError) as e:
                    logger.warning(f"Discarding unreadable pending queue for {owner}: {e}")
                    records = []
                    self._queues[owner] = records
                    self._persist(owner)

            self._queues[owner] = records
            if records:
                logger.info(f"Restored {len(records)} pending events for {owner}")
            return len(records)

    def enqueue(self, owner: str, record: EventRecord) -> int:
        """Append a record and persist the owner's queue.

        Returns:
            Queue size after the append

        Raises:
            TypeError: If the record's payload cannot be encoded as JSON
        """
        try:
            json.dumps(record.to_dict())
        except (TypeError, ValueError) as e:
            raise TypeError(f"Event for {record.tool_name} is not JSON-serialisable: {e}") from e

        with self._lock:
            pending = self._ensure_loaded(owner)
            pending.append(record)
            if self.max_size is not None and len(pending) > self.max_size:
                dropped = len(pending) - self.max_size
                del pending[:dropped]
                logger.warning(f"Queue full for {owner}, removed {dropped} oldest events")
            self._persist(owner)
            return len(pending)

    def drain(self, owner: str) -> list[EventRecord]:
        """Snapshot of the owner's queue, oldest first. Nothing is removed."""
        with self._lock:
            return list(self._ensure_loaded(owner))

    def remove(self, owner: str, delivered: Iterable[EventRecord]) -> int:
        """Remove exactly the delivered records.

        Records appended after the snapshot was taken are kept in order.

        Returns:
            Number of records removed
        """
        with self._lock:
            pending = self._ensure_loaded(owner)
            removed = 0
            for record in delivered:
                for i, candidate in enumerate(pending):
                    if candidate is record:
                        del pending[i]
                        removed += 1
                        break
            if removed:
                self._persist(owner)
            return removed

    def clear(self, owner: str) -> int:
        """Drop every pending record for an owner."""
        with self._lock:
            pending = self._ensure_loaded(owner)
            count = len(pending)
            pending.clear()
            self._persist(owner)
            return count

    def size(self, owner: str) -> int:
        with self._lock:
            return len(self._ensure_loaded(owner))

    def is_empty(self, owner: str) -> bool:
        return self.size(owner) == 0

    def owners(self) -> list[str]:
        """Owners with a loaded queue."""
        with self._lock:
            return list(self._queues)

    def is_memory_only(self, owner: str) -> bool:
        return owner in self._memory_only

    def _ensure_loaded(self, owner: str) -> list[EventRecord]:
        if owner not in self._queues:
            self.restore(owner)
        return self._queues[owner]

    def _persist(self, owner: str) -> None:
        if owner in self._memory_only:
            return
        entries = [record.to_dict() for record in self._queues.get(owner, [])]
        payload = json.dumps(entries).encode("utf-8")
        try:
            self.store.set(owner, PENDING_QUEUE_KEY, payload)
        except StoreUnavailableError as e:
            self._mark_memory_only(owner, e)

    def _mark_memory_only(self, owner: str, error: Exception) -> None:
        if owner not in self._memory_only:
            logger.warning(
                f"Local storage unavailable for {owner} ({error}); "
                "pending events will be kept in memory only"
            )
            self._memory_only.add(owner)
