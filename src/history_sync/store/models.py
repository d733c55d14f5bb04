"""Data models for the local cache store."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class Token:
    """A committed search term used for autocomplete suggestions."""

    text: str
    frequency: int
    last_used: int  # epoch millis
