"""Timestamp normalization and URL/domain helpers."""

from __future__ import annotations

import re
import time
from datetime import datetime
from urllib.parse import urlsplit

# Microseconds from 1601-01-01 to 1970-01-01 (Chromium/WebKit epoch).
CHROME_EPOCH_OFFSET_MICROS = 11_644_473_600_000_000
CHROME_EPOCH_OFFSET_MILLIS = CHROME_EPOCH_OFFSET_MICROS // 1000

MILLIS_PER_HOUR = 60 * 60 * 1000
MILLIS_PER_DAY = 24 * MILLIS_PER_HOUR

INTERNAL_URL_PREFIXES = (
    "chrome://",
    "about:",
    "edge://",
    "chrome-extension://",
    "thorium://",
    "moz-extension://",
    "view-source:",
)

_IPV4_RE = re.compile(r"^\d+\.\d+\.\d+\.\d+(:\d+)?$")


def now_millis() -> int:
    return int(time.time() * 1000)


def chrome_to_epoch_millis(chrome_micros: int) -> int:
    """Microseconds since 1601-01-01 to epoch millis, floored at 0."""
    return max(0, (int(chrome_micros) - CHROME_EPOCH_OFFSET_MICROS) // 1000)


def gecko_to_epoch_millis(micros: int) -> int:
    """Microseconds since 1970-01-01 to epoch millis, floored at 0."""
    return max(0, int(micros) // 1000)


def epoch_millis_to_chrome(millis: int) -> int:
    return (int(millis) + CHROME_EPOCH_OFFSET_MILLIS) * 1000


def epoch_millis_to_gecko(millis: int) -> int:
    return int(millis) * 1000


def start_of_today_millis() -> int:
    """Local midnight of the current day, in epoch millis."""
    midnight = datetime.now().replace(hour=0, minute=0, second=0, microsecond=0)
    return int(midnight.timestamp() * 1000)


def is_localhost(domain: str) -> bool:
    return (
        domain == "localhost"
        or domain.startswith("localhost:")
        or domain.endswith(".local")
        or bool(_IPV4_RE.match(domain))
    )


def protocol_for(domain: str) -> str:
    return "http" if is_localhost(domain) else "https"


def domain_of(url: str) -> str:
    """Canonical domain: host without a leading ``www.``, plus port for local hosts."""
    try:
        parts = urlsplit(url)
        host = parts.hostname
        port = parts.port
    except ValueError:
        return ""
    if not host:
        return ""
    domain = host[4:] if host.startswith("www.") else host
    if port is not None and is_localhost(host):
        return f"{domain}:{port}"
    return domain


def is_internal_url(url: str) -> bool:
    return url.startswith(INTERNAL_URL_PREFIXES)
