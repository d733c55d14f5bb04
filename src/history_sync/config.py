"""Runtime configuration with environment overrides."""

from __future__ import annotations

import logging
import os
import sys
from dataclasses import dataclass, field
from pathlib import Path

logger = logging.getLogger(__name__)

APP_DIR_NAME = "HistorySearch"
CACHE_DB_FILE = "history.sqlite"

CONFIG_ENV_OVERRIDES = {
    "cache_dir": "HISTORY_SYNC_CACHE_DIR",
    "page_size": "HISTORY_SYNC_PAGE_SIZE",
    "extract_limit": "HISTORY_SYNC_EXTRACT_LIMIT",
    "lookback_hours": "HISTORY_SYNC_LOOKBACK_HOURS",
    "busy_timeout_ms": "HISTORY_SYNC_BUSY_TIMEOUT_MS",
    "favicon_connect_timeout_s": "HISTORY_SYNC_FAVICON_CONNECT_TIMEOUT_S",
    "favicon_read_timeout_s": "HISTORY_SYNC_FAVICON_READ_TIMEOUT_S",
    "favicon_max_retries": "HISTORY_SYNC_FAVICON_MAX_RETRIES",
    "favicon_retry_base_delay_s": "HISTORY_SYNC_FAVICON_RETRY_BASE_DELAY_S",
    "favicon_batch_size": "HISTORY_SYNC_FAVICON_BATCH_SIZE",
    "favicon_request_delay_s": "HISTORY_SYNC_FAVICON_REQUEST_DELAY_S",
    "favicon_size": "HISTORY_SYNC_FAVICON_SIZE",
    "max_workers": "HISTORY_SYNC_MAX_WORKERS",
}


def default_cache_dir() -> Path:
    """Per-OS application data directory for the local cache."""
    home = Path.home()
    if sys.platform == "darwin":
        return home / "Library" / "Application Support" / APP_DIR_NAME
    if sys.platform.startswith("win"):
        local_app_data = os.getenv("LOCALAPPDATA") or str(home / "AppData" / "Local")
        return Path(local_app_data) / APP_DIR_NAME
    xdg_data_home = os.getenv("XDG_DATA_HOME") or str(home / ".local" / "share")
    return Path(xdg_data_home) / APP_DIR_NAME


@dataclass
class SyncConfig:
    cache_dir: Path = field(default_factory=default_cache_dir)
    page_size: int = 1000
    extract_limit: int = 1000
    lookback_hours: int = 24
    busy_timeout_ms: int = 5000
    favicon_connect_timeout_s: float = 5.0
    favicon_read_timeout_s: float = 5.0
    favicon_max_retries: int = 2
    favicon_retry_base_delay_s: float = 0.5
    favicon_batch_size: int = 5
    favicon_request_delay_s: float = 0.1
    favicon_size: int = 64
    max_workers: int = 4

    @property
    def db_path(self) -> Path:
        return Path(self.cache_dir) / CACHE_DB_FILE


def get_env_overrides() -> dict[str, str]:
    overrides: dict[str, str] = {}
    for key, env_var in CONFIG_ENV_OVERRIDES.items():
        value = os.getenv(env_var)
        if value is not None:
            overrides[key] = value
    return overrides


def load_config() -> SyncConfig:
    """Build a config from defaults plus ``HISTORY_SYNC_*`` environment overrides."""
    cfg = SyncConfig()
    for key, raw in get_env_overrides().items():
        current = getattr(cfg, key)
        try:
            if isinstance(current, Path):
                value = Path(raw).expanduser()
            elif isinstance(current, float):
                value = float(raw)
            else:
                value = int(raw)
        except ValueError:
            logger.warning("Ignoring invalid value for %s: %r", CONFIG_ENV_OVERRIDES[key], raw)
            continue
        setattr(cfg, key, value)
    return cfg
