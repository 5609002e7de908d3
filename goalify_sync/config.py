"""Configuration management for Goalify Sync."""

import json
import logging
import os
from dataclasses import dataclass, field, asdict
from pathlib import Path

from platformdirs import user_config_dir, user_data_dir, user_log_dir

__all__ = [
    "Config",
    "SyncSettings",
    "FocusSettings",
    "setup_logging",
    "DEFAULT_API_URL",
    "FETCH_DEBOUNCE_SECONDS",
]

logger = logging.getLogger(__name__)

APP_NAME = "Goalify Sync"
APP_AUTHOR = "Goalify"

# API endpoints
DEFAULT_API_URL = "https://api.goalachieveapp.com"
API_URL_ENV = "GOALIFY_API_URL"

# Sync settings
DEFAULT_SYNC_INTERVAL = 300  # seconds
DEFAULT_SYNC_TIMEOUT = 30
DEFAULT_PROBE_TIMEOUT = 15
FETCH_DEBOUNCE_SECONDS = 60
REACHABILITY_TTL_SECONDS = 30

# Focus timer
DEFAULT_FOCUS_DURATION = 25 * 60
DEFAULT_TICK_INTERVAL = 1.0


@dataclass
class SyncSettings:
    """Sync configuration."""

    api_url: str = DEFAULT_API_URL
    interval_seconds: int = DEFAULT_SYNC_INTERVAL
    timeout_seconds: int = DEFAULT_SYNC_TIMEOUT
    probe_timeout_seconds: int = DEFAULT_PROBE_TIMEOUT
    fetch_debounce_seconds: int = FETCH_DEBOUNCE_SECONDS
    reachability_ttl_seconds: int = REACHABILITY_TTL_SECONDS


@dataclass
class FocusSettings:
    """Focus timer configuration."""

    tick_interval_seconds: float = DEFAULT_TICK_INTERVAL
    default_duration_seconds: int = DEFAULT_FOCUS_DURATION
    notify_on_complete: bool = True


@dataclass
class Config:
    """Main configuration object."""

    sync: SyncSettings = field(default_factory=SyncSettings)
    focus: FocusSettings = field(default_factory=FocusSettings)
    debug_mode: bool = False

    @classmethod
    def get_config_dir(cls) -> Path:
        """Get the configuration directory path."""
        return Path(user_config_dir(APP_NAME, APP_AUTHOR))

    @classmethod
    def get_data_dir(cls) -> Path:
        """Get the data directory path (record store, key-value state)."""
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
    def load(cls) -> "Config":
        """Load config from file, or return defaults.

        The ``GOALIFY_API_URL`` environment variable overrides the stored
        API URL, which is how staging and local servers are targeted.
        """
        config = cls()
        config_file = cls.get_config_file()
        if config_file.exists():
            try:
                with open(config_file, "r") as f:
                    data = json.load(f)
                config = cls._from_dict(data)
            except Exception as e:
                logger.warning(f"Failed to load config: {e}, using defaults")

        env_url = os.getenv(API_URL_ENV)
        if env_url:
            config.sync.api_url = env_url
        return config

    @classmethod
    def _from_dict(cls, data: dict) -> "Config":
        """Create Config from dictionary."""
        sync_data = data.pop("sync", {})
        focus_data = data.pop("focus", {})

        return cls(
            sync=SyncSettings(
                **{k: v for k, v in sync_data.items() if k in SyncSettings.__dataclass_fields__}
            ),
            focus=FocusSettings(
                **{k: v for k, v in focus_data.items() if k in FocusSettings.__dataclass_fields__}
            ),
            **{k: v for k, v in data.items() if k in cls.__dataclass_fields__},
        )

    def save(self) -> None:
        """Save config to file."""
        config_file = self.get_config_file()
        config_file.parent.mkdir(parents=True, exist_ok=True)

        data = asdict(self)
        with open(config_file, "w") as f:
            json.dump(data, f, indent=2)
        logger.info(f"Config saved to {config_file}")


def setup_logging(debug: bool = False) -> None:
    """Configure logging."""
    log_dir = Config.get_log_dir()
    log_dir.mkdir(parents=True, exist_ok=True)
    log_file = log_dir / "goalify-sync.log"

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
