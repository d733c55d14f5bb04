"""Data models for the browser history module."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

from history_sync.favicons.models import Favicon


class BrowserType(str, Enum):
    CHROME = "chrome"
    THORIUM = "thorium"
    ZEN = "zen"
    FIREFOX = "firefox"


class BrowserSelection:
    """Either every supported browser or exactly one of them."""

    def __init__(self, browser: BrowserType | None = None):
        self.browser = browser

    @classmethod
    def all(cls) -> BrowserSelection:
        return cls(None)

    @classmethod
    def single(cls, browser: BrowserType) -> BrowserSelection:
        return cls(browser)

    def matches(self, browser: BrowserType) -> bool:
        return self.browser is None or self.browser == browser

    def __eq__(self, other: object) -> bool:
        return isinstance(other, BrowserSelection) and other.browser == self.browser

    def __hash__(self) -> int:
        return hash(self.browser)

    def __repr__(self) -> str:
        return f"BrowserSelection({self.browser.value if self.browser else 'all'})"


@dataclass(frozen=True)
class HistoryItem:
    """One browsing record, keyed by URL across the merged set."""

    browser: BrowserType
    profile: str
    url: str
    title: str
    last_visit: int  # epoch millis, UTC
    visit_count: int
    domain: str
    favicon: Favicon | None = None


class ExtractStatus(str, Enum):
    OK = "ok"
    UNAVAILABLE = "unavailable"  # browser or database not present
    PARTIAL = "partial"  # some profiles failed
    READ_FAILED = "read_failed"


@dataclass
class ExtractResult:
    """Outcome of one adapter run; failures stay inspectable instead of raised."""

    browser: BrowserType
    status: ExtractStatus
    items: list[HistoryItem] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.status in (ExtractStatus.OK, ExtractStatus.UNAVAILABLE)
