"""Configuration management for StudyTrack Sync."""

import json
import logging
from dataclasses import dataclass, field, asdict
from pathlib import Path
from typing import Optional

from platformdirs import user_config_dir, user_data_dir, user_log_dir

__all__ = [
    "Config",
    "SyncSettings",
    "SinkSettings",
    "ConnectivitySettings",
    "setup_logging",
    "DEFAULT_COLLECTOR_URL",
    "DEFAULT_SYNC_INTERVAL",
]

logger = logging.getLogger(__name__)

APP_NAME = "StudyTrack Sync"
APP_AUTHOR = "StudyTrack"

# Collector endpoint (single POST target)
DEFAULT_COLLECTOR_URL = "http://127.0.0.1:8001/collect"

# Sync settings
DEFAULT_SYNC_INTERVAL = 30  # seconds
MIN_SYNC_INTERVAL = 5

# Connectivity probe
DEFAULT_PROBE_HOST = "script.google.com"
DEFAULT_PROBE_PORT = 443

DELIVERY_POLICIES = ("optimistic", "confirmed")


@dataclass
class SyncSettings:
    """Sync configuration."""

    interval_seconds: int = DEFAULT_SYNC_INTERVAL
    max_queue_size: Optional[int] = None  # None = bounded only by storage
    delivery_policy: str = "optimistic"


@dataclass
class SinkSettings:
    """Remote collector settings."""

    collector_url: str = DEFAULT_COLLECTOR_URL
    timeout: int = 30
    opaque: bool = True  # Ignore status/body, like a no-cors POST


@dataclass
class ConnectivitySettings:
    """Network reachability probe settings."""

    probe_host: str = DEFAULT_PROBE_HOST
    probe_port: int = DEFAULT_PROBE_PORT
    poll_interval: int = 5
    poll_enabled: bool = False


@dataclass
class Config:
    """Main configuration object."""

    sync: SyncSettings = field(default_factory=SyncSettings)
    sink: SinkSettings = field(default_factory=SinkSettings)
    connectivity: ConnectivitySettings = field(default_factory=ConnectivitySettings)
    debug_mode: bool = False

    @classmethod
    def get_config_dir(cls) -> Path:
        """Get the configuration directory path."""
        return Path(user_config_dir(APP_NAME, APP_AUTHOR))

    @classmethod
    def get_data_dir(cls) -> Path:
        """Get the data directory path (for the SQLite store)."""
        return Path(user_data_dir(APP_NAME, APP_AUTHOR))

    @classmethod
    def get_log_dir(cls) -> Path:
        """Get the log directory path."""
        return Path(user_log_dir(APP_NAME, APP_AUTHOR))

    @classmethod
    def get_config_file(cls) -> Path:
        """Get the config file path."""
        return cls.get_config_dir() / "config.json"

    @classmethod
    def load(cls, config_file: Optional[Path] = None) -> "Config":
        """Load config from file, or return defaults."""
        config_file = config_file or cls.get_config_file()
        if config_file.exists():
            try:
                with open(config_file, "r") as f:
                    data = json.load(f)
                return cls._from_dict(data)
            except Exception as e:
                logger.warning(f"Failed to load config: {e}, using defaults")
        return cls()

    @classmethod
    def _from_dict(cls, data: dict) -> "Config":
        """Create Config from dictionary."""
        sync_data = _known_fields(SyncSettings, data.pop("sync", {}))
        sink_data = _known_fields(SinkSettings, data.pop("sink", {}))
        connectivity_data = _known_fields(
            ConnectivitySettings, data.pop("connectivity", {})
        )

        sync = SyncSettings(**sync_data)
        sync.interval_seconds = max(MIN_SYNC_INTERVAL, int(sync.interval_seconds))
        if sync.delivery_policy not in DELIVERY_POLICIES:
            logger.warning(
                f"Unknown delivery policy {sync.delivery_policy!r}, using optimistic"
            )
            sync.delivery_policy = "optimistic"

        return cls(
            sync=sync,
            sink=SinkSettings(**sink_data),
            connectivity=ConnectivitySettings(**connectivity_data),
            **{k: v for k, v in data.items() if k in cls.__dataclass_fields__},
        )

    def save(self, config_file: Optional[Path] = None) -> None:
        """Save config to file."""
        config_file = config_file or self.get_config_file()
        config_file.parent.mkdir(parents=True, exist_ok=True)

        data = asdict(self)
        with open(config_file, "w") as f:
            json.dump(data, f, indent=2)
        logger.info(f"Config saved to {config_file}")


def _known_fields(settings_cls, data: dict) -> dict:
    if not isinstance(data, dict):
        return {}
    return {k: v for k, v in data.items() if k in settings_cls.__dataclass_fields__}


def setup_logging(debug: bool = False) -> None:
    """Configure logging."""
    log_dir = Config.get_log_dir()
    log_dir.mkdir(parents=True, exist_ok=True)
    log_file = log_dir / "studytrack-sync.log"

    level = logging.DEBUG if debug else logging.INFO
    format_str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

    logging.basicConfig(
        level=level,
        format=format_str,
        handlers=[
            logging.FileHandler(log_file),
            logging.StreamHandler(),
        ],
    )

    # Reduce noise from libraries
    logging.getLogger("urllib3").setLevel(logging.WARNING)
    logging.getLogger("requests").setLevel(logging.WARNING)
    logging.getLogger("apscheduler").setLevel(logging.WARNING)
