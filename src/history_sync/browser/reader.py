"""Read-only extraction of recent visits from Chromium and Gecko history databases."""

from __future__ import annotations

import logging
import shutil
import sqlite3
import tempfile
from abc import ABC, abstractmethod
from pathlib import Path

from history_sync.browser.models import BrowserType, ExtractResult, ExtractStatus, HistoryItem
from history_sync.browser.parser import parse_row
from history_sync.exceptions import BrowserHistoryReadError
from history_sync.utils import (
    MILLIS_PER_HOUR,
    chrome_to_epoch_millis,
    epoch_millis_to_chrome,
    epoch_millis_to_gecko,
    gecko_to_epoch_millis,
    now_millis,
)

logger = logging.getLogger(__name__)

APP_SUPPORT = Path.home() / "Library" / "Application Support"

CHROME_ROOT = APP_SUPPORT / "Google" / "Chrome"
THORIUM_ROOT = APP_SUPPORT / "Thorium"
# Some Zen builds use a lowercase or long-form directory name.
ZEN_ROOT_CANDIDATES = [
    APP_SUPPORT / "Zen",
    APP_SUPPORT / "zen",
    APP_SUPPORT / "Zen Browser",
]
FIREFOX_ROOT_CANDIDATES = [APP_SUPPORT / "Firefox"]

_GECKO_PROFILE_MARKERS = ("Default Profile", "Default (release)", "default")


class HistoryExtractor(ABC):
    """Base class for one browser family's history adapter.

    Subclasses describe where profiles live, which file holds history and how
    to query it; the copy-read-delete cycle and failure handling live here.
    """

    browser: BrowserType
    db_file_name: str
    copy_prefix: str = "history-"

    def __init__(self, root: Path | None = None, lookback_hours: int = 24):
        self._root = root
        self.lookback_hours = lookback_hours

    @classmethod
    @abstractmethod
    def default_roots(cls) -> list[Path]:
        """Candidate installation directories, in preference order."""
        ...

    @abstractmethod
    def profiles(self) -> list[Path]:
        """Profile directories that may contain a history database."""
        ...

    @abstractmethod
    def _query(self, conn: sqlite3.Connection, since_ms: int, limit: int) -> list[sqlite3.Row]:
        ...

    @staticmethod
    @abstractmethod
    def to_epoch_millis(value: int) -> int:
        ...

    @property
    def root(self) -> Path | None:
        if self._root is not None:
            return self._root
        for candidate in self.default_roots():
            if candidate.exists():
                return candidate
        return None

    def is_available(self) -> bool:
        root = self.root
        return root is not None and root.exists()

    def extract(self, limit: int = 1000, since_ms: int | None = None) -> list[HistoryItem]:
        """Recent items from every profile. Never raises; failures yield fewer items."""
        return self.extract_result(limit, since_ms).items

    def extract_result(self, limit: int = 1000, since_ms: int | None = None) -> ExtractResult:
        if not self.is_available():
            logger.info("%s not installed, skipping", self.browser.value)
            return ExtractResult(browser=self.browser, status=ExtractStatus.UNAVAILABLE)

        if since_ms is None:
            since_ms = now_millis() - self.lookback_hours * MILLIS_PER_HOUR

        items: list[HistoryItem] = []
        errors: list[str] = []
        read_any = False
        try:
            profiles = self.profiles()
        except OSError as e:
            logger.warning("Failed listing %s profiles: %s", self.browser.value, e)
            return ExtractResult(
                browser=self.browser, status=ExtractStatus.READ_FAILED, errors=[str(e)]
            )

        for profile_dir in profiles:
            db_path = profile_dir / self.db_file_name
            if not db_path.exists():
                continue
            try:
                items.extend(self._read_profile(profile_dir, db_path, since_ms, limit))
                read_any = True
            except BrowserHistoryReadError as e:
                errors.append(f"{profile_dir.name}: {e}")
                logger.warning("%s history read failed (%s): %s", self.browser.value, profile_dir.name, e)

        if errors:
            status = ExtractStatus.PARTIAL if read_any else ExtractStatus.READ_FAILED
        elif read_any:
            status = ExtractStatus.OK
        else:
            status = ExtractStatus.UNAVAILABLE
        return ExtractResult(browser=self.browser, status=status, items=items, errors=errors)

    def _read_profile(
        self, profile_dir: Path, db_path: Path, since_ms: int, limit: int
    ) -> list[HistoryItem]:
        """Query a private copy of one profile's database."""
        profile = profile_dir.name
        db_copy = self._copy_db(db_path, self.copy_prefix)
        conn: sqlite3.Connection | None = None
        try:
            logger.debug("[%s:%s] reading %s", self.browser.value, profile, db_copy)
            conn = sqlite3.connect(f"file:{db_copy}?mode=ro", uri=True)
            conn.row_factory = sqlite3.Row
            rows = self._query(conn, since_ms, limit)
        except sqlite3.Error as e:
            raise BrowserHistoryReadError(f"Failed querying {db_path.name}: {e}") from e
        finally:
            if conn is not None:
                conn.close()
            _remove_copy(db_copy)

        items = []
        for row in rows:
            item = parse_row(dict(row), self.browser, profile, self.to_epoch_millis)
            if item is not None:
                items.append(item)
        return items

    @staticmethod
    def _copy_db(path: Path, prefix: str) -> Path:
        """The owning browser may hold the database open; read a temporary copy instead."""
        tmp_path: Path | None = None
        try:
            with tempfile.NamedTemporaryFile(prefix=prefix, suffix=".sqlite", delete=False) as tmp:
                tmp_path = Path(tmp.name)
            shutil.copyfile(path, tmp_path)
            return tmp_path
        except OSError as e:
            if tmp_path is not None:
                _remove_copy(tmp_path)
            raise BrowserHistoryReadError(f"Failed to copy {path}: {e}") from e


def _remove_copy(path: Path) -> None:
    for candidate in (path, Path(f"{path}-wal"), Path(f"{path}-shm"), Path(f"{path}-journal")):
        try:
            candidate.unlink(missing_ok=True)
        except OSError as e:
            logger.warning("Failed to remove temporary copy %s: %s", candidate, e)


class ChromiumExtractor(HistoryExtractor):
    """Chromium family: ``<root>/<profile>/History`` with a ``urls`` table."""

    db_file_name = "History"

    def profiles(self) -> list[Path]:
        root = self.root
        if root is None or not root.exists():
            return []
        dirs = [
            child
            for child in root.iterdir()
            if child.is_dir() and (child.name == "Default" or child.name.startswith("Profile "))
        ]
        dirs.sort(key=lambda p: p.stat().st_mtime, reverse=True)
        return dirs

    def _query(self, conn: sqlite3.Connection, since_ms: int, limit: int) -> list[sqlite3.Row]:
        return conn.execute(
            """
            SELECT
                id,
                url,
                title,
                last_visit_time AS last_visit,
                visit_count
            FROM urls
            WHERE last_visit_time >= ?
            ORDER BY last_visit_time DESC
            LIMIT ?
            """,
            (epoch_millis_to_chrome(since_ms), limit),
        ).fetchall()

    @staticmethod
    def to_epoch_millis(value: int) -> int:
        return chrome_to_epoch_millis(value)


class GeckoExtractor(HistoryExtractor):
    """Gecko family: ``places.sqlite`` with a ``moz_places`` table."""

    db_file_name = "places.sqlite"

    def profiles(self) -> list[Path]:
        root = self.root
        if root is None or not root.exists():
            return []
        profiles_root = root / "Profiles"
        base = profiles_root if profiles_root.exists() else root

        dirs: list[Path] = []
        for child in base.iterdir():
            if not child.is_dir():
                continue
            if _is_gecko_profile(child.name):
                dirs.append(child)
            for grandchild in child.iterdir():
                if grandchild.is_dir() and _is_gecko_profile(grandchild.name):
                    dirs.append(grandchild)
        dirs.sort(key=lambda p: p.stat().st_mtime, reverse=True)
        return dirs

    def _query(self, conn: sqlite3.Connection, since_ms: int, limit: int) -> list[sqlite3.Row]:
        return conn.execute(
            """
            SELECT
                id,
                url,
                COALESCE(title, '') AS title,
                last_visit_date AS last_visit,
                visit_count
            FROM moz_places
            WHERE last_visit_date >= ?
            ORDER BY last_visit_date DESC
            LIMIT ?
            """,
            (epoch_millis_to_gecko(since_ms), limit),
        ).fetchall()

    @staticmethod
    def to_epoch_millis(value: int) -> int:
        return gecko_to_epoch_millis(value)


def _is_gecko_profile(name: str) -> bool:
    return any(marker in name for marker in _GECKO_PROFILE_MARKERS)


class ChromeExtractor(ChromiumExtractor):
    browser = BrowserType.CHROME
    copy_prefix = "chrome-history-"

    @classmethod
    def default_roots(cls) -> list[Path]:
        return [CHROME_ROOT]


class ThoriumExtractor(ChromiumExtractor):
    browser = BrowserType.THORIUM
    copy_prefix = "thorium-history-"

    @classmethod
    def default_roots(cls) -> list[Path]:
        return [THORIUM_ROOT]


class ZenExtractor(GeckoExtractor):
    browser = BrowserType.ZEN
    copy_prefix = "zen-places-"

    @classmethod
    def default_roots(cls) -> list[Path]:
        return list(ZEN_ROOT_CANDIDATES)


class FirefoxExtractor(GeckoExtractor):
    browser = BrowserType.FIREFOX
    copy_prefix = "firefox-places-"

    @classmethod
    def default_roots(cls) -> list[Path]:
        return list(FIREFOX_ROOT_CANDIDATES)


def default_extractors(lookback_hours: int = 24) -> list[HistoryExtractor]:
    return [
        ChromeExtractor(lookback_hours=lookback_hours),
        ZenExtractor(lookback_hours=lookback_hours),
        ThoriumExtractor(lookback_hours=lookback_hours),
        FirefoxExtractor(lookback_hours=lookback_hours),
    ]
