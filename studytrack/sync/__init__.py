"""Sync module - local persistence, pending queue and collector delivery."""

from .store import SQLiteStore, MemoryStore, StoreUnavailableError
from .queue import EventQueue, EventRecord
from .session import Session, SessionState, SessionTracker
from .sink import CollectorSink, SendResult, SinkError, SinkTransportError
from .connectivity import ConnectivityMonitor
from .scheduler import DeliveryPolicy, FlushStats, SyncScheduler
from .protocols import SinkProtocol, StoreProtocol

__all__ = [
    "SQLiteStore",
    "MemoryStore",
    "StoreUnavailableError",
    "EventQueue",
    "EventRecord",
    "Session",
    "SessionState",
    "SessionTracker",
    "CollectorSink",
    "SendResult",
    "SinkError",
    "SinkTransportError",
    "ConnectivityMonitor",
    "DeliveryPolicy",
    "FlushStats",
    "SyncScheduler",
    "SinkProtocol",
    "StoreProtocol",
]
