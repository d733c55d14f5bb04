"""Browser history sources (Chromium and Gecko families)."""

from history_sync.browser.models import (
    BrowserSelection,
    BrowserType,
    ExtractResult,
    ExtractStatus,
    HistoryItem,
)
from history_sync.browser.parser import merge_and_dedup, parse_row
from history_sync.browser.reader import (
    ChromeExtractor,
    FirefoxExtractor,
    HistoryExtractor,
    ThoriumExtractor,
    ZenExtractor,
    default_extractors,
)

__all__ = [
    "BrowserSelection",
    "BrowserType",
    "ExtractResult",
    "ExtractStatus",
    "HistoryItem",
    "merge_and_dedup",
    "parse_row",
    "ChromeExtractor",
    "FirefoxExtractor",
    "HistoryExtractor",
    "ThoriumExtractor",
    "ZenExtractor",
    "default_extractors",
]
