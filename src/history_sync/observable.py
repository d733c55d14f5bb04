"""Thread-safe value holder that notifies subscribers on every replacement."""

from __future__ import annotations

import logging
import threading
from typing import Callable, Generic, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class Observable(Generic[T]):
    """Holds the latest value and fans each new one out to callbacks."""

    def __init__(self, initial: T) -> None:
        self._value = initial
        self._subscribers: list[Callable[[T], None]] = []
        self._lock = threading.RLock()

    @property
    def value(self) -> T:
        with self._lock:
            return self._value

    def set(self, value: T, notify: bool = True) -> None:
        """Replace the value; with ``notify=False`` delivery waits for ``notify()``."""
        with self._lock:
            self._value = value
            subscribers = list(self._subscribers)
        if notify:
            self._deliver(value, subscribers)

    def notify(self) -> None:
        """Deliver the current value to every subscriber."""
        with self._lock:
            value = self._value
            subscribers = list(self._subscribers)
        self._deliver(value, subscribers)

    @staticmethod
    def _deliver(value: T, subscribers: list[Callable[[T], None]]) -> None:
        for callback in subscribers:
            try:
                callback(value)
            except Exception:
                logger.exception("Subscriber %r raised", callback)

    def subscribe(self, callback: Callable[[T], None], replay: bool = True) -> Callable[[], None]:
        """Register ``callback``; returns a function that removes it.

        With ``replay`` the current value is delivered immediately.
        """
        with self._lock:
            self._subscribers.append(callback)
            current = self._value

        if replay:
            callback(current)

        def unsubscribe() -> None:
            with self._lock:
                if callback in self._subscribers:
                    self._subscribers.remove(callback)

        return unsubscribe
