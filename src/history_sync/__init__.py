"""Merged, searchable browser history with background favicon enrichment."""

from history_sync.browser.models import BrowserSelection, BrowserType, HistoryItem
from history_sync.config import SyncConfig, load_config
from history_sync.favicons.models import Favicon
from history_sync.repository import HistoryRepository

__all__ = [
    "BrowserSelection",
    "BrowserType",
    "HistoryItem",
    "SyncConfig",
    "load_config",
    "Favicon",
    "HistoryRepository",
]
