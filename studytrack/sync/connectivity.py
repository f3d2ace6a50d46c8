"""Online/offline signal with change listeners and an optional socket poller."""

import logging
import socket
import threading
from typing import Callable, Optional

from ..config import DEFAULT_PROBE_HOST, DEFAULT_PROBE_PORT

__all__ = ["ConnectivityMonitor"]

logger = logging.getLogger(__name__)


class ConnectivityMonitor:
    """Holds the current connectivity state and notifies on transitions.

    The state is normally pushed in by the host (``set_online``). The poller
    derives it by opening a TCP connection to a probe host.
    """

    def __init__(
        self,
        online: bool = True,
        probe_host: str = DEFAULT_PROBE_HOST,
        probe_port: int = DEFAULT_PROBE_PORT,
        poll_interval: int = 5,
    ):
        self._online = online
        self.probe_host = probe_host
        self.probe_port = probe_port
        self.poll_interval = poll_interval
        self._listeners: list[Callable[[bool], None]] = []
        self._lock = threading.Lock()
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def is_online(self) -> bool:
        return self._online

    def add_listener(self, listener: Callable[[bool], None]) -> None:
        """Register fn(is_online) called on every state change."""
        with self._lock:
            if listener not in self._listeners:
                self._listeners.append(listener)

    def remove_listener(self, listener: Callable[[bool], None]) -> None:
        with self._lock:
            if listener in self._listeners:
                self._listeners.remove(listener)

    def set_online(self, online: bool) -> bool:
        """Update the state.

        Returns:
            True if the state changed (listeners were notified)
        """
        with self._lock:
            if online == self._online:
                return False
            self._online = online
            listeners = list(self._listeners)

        status = "online" if online else "offline"
        logger.info(f"Network change detected — {status}")
        for listener in listeners:
            _safe_call(listener, online)
        return True

    def probe(self) -> bool:
        """Check reachability of the probe host."""
        try:
            socket.create_connection((self.probe_host, self.probe_port), timeout=5).close()
            return True
        except OSError:
            return False

    def start_polling(self) -> None:
        """Poll connectivity on a daemon thread until ``stop_polling``."""
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop_event.clear()

        def poll():
            while not self._stop_event.is_set():
                self.set_online(self.probe())
                self._stop_event.wait(self.poll_interval)

        self._thread = threading.Thread(
            target=poll, name="connectivity-poller", daemon=True
        )
        self._thread.start()
        logger.debug(f"Network poller started (interval: {self.poll_interval}s)")

    def stop_polling(self) -> None:
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout=self.poll_interval + 1)
            self._thread = None


def _safe_call(fn: Callable, *args) -> None:
    """Call a function, catching and logging any exceptions."""
    try:
        fn(*args)
    except Exception:
        logger.exception(f"Error in connectivity listener {getattr(fn, '__name__', fn)}")
