from __future__ import annotations

import threading
import time
from dataclasses import dataclass


@dataclass(frozen=True)
class ActuationRecord:
    """A single relay output change."""

    timestamp: float
    relay: int
    state: bool


class LoopbackRelayIO:
    """
    In-memory relay outputs used in place of GPIO lines.
    """

    def __init__(self, relay_count: int = 2) -> None:
        self._relay_count = max(1, relay_count)
        self._lock = threading.Lock()
        self._levels: dict[int, bool] = {
            relay: False for relay in range(1, self._relay_count + 1)
        }
        self._actuation_log: list[ActuationRecord] = []

    @property
    def relay_count(self) -> int:
        return self._relay_count

    def write(self, relay: int, state: bool) -> None:
        """Drive ``relay`` to ``state`` and record the change."""
        if relay not in self._levels:
            raise ValueError(f"Invalid relay number: {relay}")
        with self._lock:
            self._levels[relay] = bool(state)
            self._actuation_log.append(
                ActuationRecord(timestamp=time.time(), relay=relay, state=bool(state))
            )

    def read(self, relay: int) -> bool:
        with self._lock:
            return self._levels.get(relay, False)

    @property
    def actuation_log(self) -> list[ActuationRecord]:
        with self._lock:
            return list(self._actuation_log)


__all__ = ["ActuationRecord", "LoopbackRelayIO"]
