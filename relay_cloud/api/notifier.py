from __future__ import annotations

import logging
import threading
from typing import Callable


logger = logging.getLogger(__name__)

Observer = Callable[[], None]


class ConfirmedStateNotifier:
    """Broadcast signal fired once per applied acknowledgment.

    Observers are called synchronously, in registration order, and never while the
    command store lock is held.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._observers: list[Observer] = []

    def subscribe(self, observer: Observer) -> Callable[[], None]:
        with self._lock:
            self._observers.append(observer)

        def _unsubscribe() -> None:
            with self._lock:
                try:
                    self._observers.remove(observer)
                except ValueError:
                    pass

        return _unsubscribe

    @property
    def observer_count(self) -> int:
        with self._lock:
            return len(self._observers)

    def fire(self) -> None:
        with self._lock:
            observers = list(self._observers)
        for observer in observers:
            try:
                observer()
            except Exception:
                logger.exception("Confirmed-state observer %r failed", observer)


__all__ = ["ConfirmedStateNotifier", "Observer"]
