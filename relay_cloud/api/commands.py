from __future__ import annotations

import logging
import threading
import time
import uuid
from dataclasses import dataclass
from typing import Callable, Dict, Optional


logger = logging.getLogger(__name__)

MIN_COMMAND_ID_LENGTH = 8
MAX_COMMAND_ID_LENGTH = 32


@dataclass(frozen=True)
class RelayCommand:
    """A request for one relay to move to one state."""

    command_id: str
    relay: int
    state: bool
    duration: int | None = None

    def to_wire(self) -> dict[str, object]:
        relay_payload: dict[str, object] = {"state": 1 if self.state else 0}
        if self.duration is not None:
            relay_payload["duration"] = self.duration
        return {"command_id": self.command_id, f"relay{self.relay}": relay_payload}


@dataclass(frozen=True)
class InFlightCommand:
    relay: int
    state: bool
    issued_at: float


@dataclass(frozen=True)
class ResolvedCommand:
    command_id: str
    relay: int
    state: bool


def generate_command_id(length: int = 16) -> str:
    length = max(MIN_COMMAND_ID_LENGTH, min(MAX_COMMAND_ID_LENGTH, int(length)))
    return uuid.uuid4().hex[:length]


class CommandStore:
    """Pending slot, in-flight index and confirmed relay states behind one lock.

    The pending slot holds at most one undelivered command and is overwritten, never
    queued. In-flight entries survive an overwrite and are only removed when their
    acknowledgment arrives (or when ``inflight_ttl_seconds`` is set and they expire).
    Confirmed state is only ever written by :meth:`apply_acknowledgment`.
    """

    def __init__(
        self,
        inflight_ttl_seconds: float | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._lock = threading.Lock()
        self._pending: Optional[RelayCommand] = None
        self._in_flight: Dict[str, InFlightCommand] = {}
        self._confirmed: Dict[int, bool] = {}
        self._clock = clock
        self._ttl = (
            float(inflight_ttl_seconds)
            if inflight_ttl_seconds is not None and inflight_ttl_seconds > 0
            else None
        )

    @property
    def inflight_ttl_seconds(self) -> float | None:
        return self._ttl

    def set_pending(self, command: RelayCommand) -> RelayCommand | None:
        """Replace the pending slot and track the command as in-flight.

        Returns the command whose delivery was discarded, if any.
        """
        with self._lock:
            return self._set_pending_locked(command)

    def create_pending(
        self,
        relay: int,
        state: bool,
        duration: int | None,
        id_factory: Callable[[], str],
    ) -> tuple[RelayCommand, RelayCommand | None]:
        """Build a command with an id unused by any in-flight entry and make it pending."""
        with self._lock:
            self._sweep_expired_locked()
            command_id = id_factory()
            while command_id in self._in_flight:
                logger.warning("Command id collision command_id=%s; regenerating", command_id)
                command_id = id_factory()
            command = RelayCommand(
                command_id=command_id, relay=relay, state=state, duration=duration
            )
            return command, self._set_pending_locked(command)

    def take_pending(self) -> RelayCommand | None:
        with self._lock:
            command = self._pending
            self._pending = None
            return command

    def has_pending(self) -> bool:
        with self._lock:
            return self._pending is not None

    def resolve(self, command_id: str) -> tuple[int, bool] | None:
        with self._lock:
            return self._resolve_locked(command_id)

    def apply_acknowledgment(self, command_id: str) -> ResolvedCommand | None:
        """Resolve ``command_id`` and write its target state in one lock hold."""
        with self._lock:
            self._sweep_expired_locked()
            resolved = self._resolve_locked(command_id)
            if resolved is None:
                return None
            relay, state = resolved
            self._confirmed[relay] = state
            return ResolvedCommand(command_id=command_id, relay=relay, state=state)

    def get_state(self, relay: int) -> bool:
        with self._lock:
            return self._confirmed.get(relay, False)

    def set_state(self, relay: int, value: bool) -> None:
        with self._lock:
            self._confirmed[relay] = bool(value)

    def snapshot(self, relay_count: int) -> dict[int, bool]:
        with self._lock:
            return {
                relay: self._confirmed.get(relay, False)
                for relay in range(1, relay_count + 1)
            }

    def inflight_count(self) -> int:
        with self._lock:
            self._sweep_expired_locked()
            return len(self._in_flight)

    def sweep_expired(self) -> int:
        with self._lock:
            return self._sweep_expired_locked()

    def _set_pending_locked(self, command: RelayCommand) -> RelayCommand | None:
        replaced = self._pending
        self._pending = command
        self._in_flight[command.command_id] = InFlightCommand(
            relay=command.relay, state=command.state, issued_at=self._clock()
        )
        return replaced

    def _resolve_locked(self, command_id: str) -> tuple[int, bool] | None:
        entry = self._in_flight.pop(command_id, None)
        if entry is None:
            return None
        return entry.relay, entry.state

    def _sweep_expired_locked(self) -> int:
        if self._ttl is None or not self._in_flight:
            return 0
        cutoff = self._clock() - self._ttl
        expired = [
            command_id
            for command_id, entry in self._in_flight.items()
            if entry.issued_at < cutoff
        ]
        for command_id in expired:
            del self._in_flight[command_id]
        if expired:
            logger.info(
                "Expired unacknowledged commands count=%d ttl=%.1fs remaining=%d",
                len(expired),
                self._ttl,
                len(self._in_flight),
            )
        return len(expired)


__all__ = [
    "CommandStore",
    "InFlightCommand",
    "RelayCommand",
    "ResolvedCommand",
    "generate_command_id",
]
