"""Data models for favicon enrichment."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


@dataclass(frozen=True)
class Favicon:
    """A cached icon, keyed by the domain string it was fetched for."""

    id: int
    url: str
    image_data: bytes | None = None


class FetchStatus(str, Enum):
    OK = "ok"
    HTTP_ERROR = "http_error"
    NOT_IMAGE = "not_image"
    EMPTY = "empty"
    TRANSPORT_ERROR = "transport_error"


@dataclass
class FetchResult:
    """Outcome of downloading one candidate icon URL."""

    url: str
    status: FetchStatus
    data: bytes | None = None
    attempts: int = 1
    detail: str = ""

    @property
    def ok(self) -> bool:
        return self.status is FetchStatus.OK and bool(self.data)


@dataclass
class EnrichmentReport:
    """Counters for one background enrichment run."""

    domains: int = 0
    fetched: int = 0
    cached: int = 0
    failed: int = 0
    skipped: int = 0
    elapsed_ms: int = 0
