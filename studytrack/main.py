"""StudyTrack Sync - root composition and process entry point."""

import logging
import signal
import sys
import threading
from typing import Optional

from . import __version__
from .config import Config, setup_logging
from .sync import (
    CollectorSink,
    ConnectivityMonitor,
    DeliveryPolicy,
    EventQueue,
    MemoryStore,
    SessionTracker,
    SQLiteStore,
    StoreUnavailableError,
    SyncScheduler,
)
from .tracker import DataTracker

logger = logging.getLogger(__name__)


class StudyTrackApp:
    """Main application orchestrator.

    Builds the store, sink, queue, scheduler and tracker from config, and
    owns their lifecycle (start / shutdown).
    """

    def __init__(self, config: Optional[Config] = None, store=None, sink=None):
        """Initialize the application.

        Args:
            config: Loaded config (loads from disk if None)
            store: Optional store override
            sink: Optional sink override
        """
        self.config = config or Config.load()

        self.store = store or self._open_store()
        self.sink = sink or CollectorSink(
            collector_url=self.config.sink.collector_url,
            timeout=self.config.sink.timeout,
            opaque=self.config.sink.opaque,
        )
        self.connectivity = ConnectivityMonitor(
            probe_host=self.config.connectivity.probe_host,
            probe_port=self.config.connectivity.probe_port,
            poll_interval=self.config.connectivity.poll_interval,
        )
        self.queue = EventQueue(self.store, max_size=self.config.sync.max_queue_size)
        self.scheduler = SyncScheduler(
            queue=self.queue,
            sink=self.sink,
            connectivity=self.connectivity,
            interval_seconds=self.config.sync.interval_seconds,
            policy=DeliveryPolicy(self.config.sync.delivery_policy),
        )
        self.sessions = SessionTracker(self.sink)
        self.tracker = DataTracker(
            store=self.store,
            queue=self.queue,
            sink=self.sink,
            sessions=self.sessions,
            scheduler=self.scheduler,
            connectivity=self.connectivity,
        )

        self._shutdown_done = False
        self._shutdown_event = threading.Event()

    def _open_store(self):
        try:
            return SQLiteStore()
        except StoreUnavailableError as e:
            logger.warning(f"{e} — pending events will not survive a restart")
            return MemoryStore()

    def start(self) -> None:
        """Resume the remembered user and start background delivery."""
        remembered = self.tracker.remembered_user()
        if remembered:
            self.tracker.set_user(remembered)
            logger.info(f"Resumed session for {remembered}")
        else:
            logger.info("No remembered user — waiting for login")

        if self.config.connectivity.poll_enabled:
            self.connectivity.start_polling()
        self.tracker.start()

    def run(self) -> None:
        """Run until a shutdown signal arrives."""
        signal.signal(signal.SIGINT, self._signal_handler)
        signal.signal(signal.SIGTERM, self._signal_handler)

        self.start()
        try:
            self._shutdown_event.wait()
        finally:
            self._shutdown()

    def _signal_handler(self, signum, frame) -> None:
        """Handle shutdown signals."""
        logger.info(f"Received signal {signum}")
        self._shutdown_event.set()

    # -- Lifecycle --------------------------------------------------------

    def _shutdown(self) -> None:
        """Shutdown the application. Safe to call multiple times."""
        if self._shutdown_done:
            return
        self._shutdown_done = True
        logger.info("Shutting down...")

        self.tracker.stop()
        self.connectivity.stop_polling()
        self.tracker.on_unload()
        self.sink.close()
        self.store.close()

        logger.info("Shutdown complete")

    def __enter__(self) -> "StudyTrackApp":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self._shutdown()


def main() -> None:
    """Main entry point."""
    config = Config.load()
    setup_logging(config.debug_mode)
    logger.info(f"StudyTrack Sync {__version__} starting...")
    logger.info(f"Using collector URL: {config.sink.collector_url}")

    try:
        with StudyTrackApp(config) as app:
            app.run()
    except KeyboardInterrupt:
        sys.exit(0)


if __name__ == "__main__":
    main()
