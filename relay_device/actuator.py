from __future__ import annotations

import math
import threading
from typing import Callable, Protocol

from .loopback import LoopbackRelayIO


MAX_DURATION_MS = 2**31 - 1


class RelayOutput(Protocol):
    relay_count: int

    def write(self, relay: int, state: bool) -> None:
        ...


class RelayBank:
    """Applies relay instructions received from the server to the outputs.

    A relay switched on with a positive ``duration`` (milliseconds) is switched off
    again once the duration elapses.
    """

    def __init__(
        self,
        output: RelayOutput,
        log: Callable[[str], None] | None = None,
    ) -> None:
        self._output = output
        self._log = log or (lambda message: None)
        self._timers: dict[int, threading.Timer] = {}
        self._timers_lock = threading.Lock()

    @property
    def relay_count(self) -> int:
        return self._output.relay_count

    def apply(self, relay: int, instruction: object) -> bool:
        """Apply ``{"state": 0|1, "duration"?: int}`` to ``relay``.

        Returns ``False`` when the instruction is ignored.
        """
        if not isinstance(instruction, dict):
            return False
        state = instruction.get("state")
        if isinstance(state, bool) or not isinstance(state, (int, float)):
            return False
        duration = instruction.get("duration")
        duration_ms = 0
        if (
            isinstance(duration, (int, float))
            and not isinstance(duration, bool)
            and (isinstance(duration, int) or math.isfinite(duration))
        ):
            duration_ms = max(0, min(MAX_DURATION_MS, int(duration)))

        if state == 1:
            self._cancel_timer(relay)
            self._output.write(relay, True)
            self._log(f"[device] Relay {relay} turned ON")
            if duration_ms > 0:
                self._schedule_off(relay, duration_ms)
            return True
        if state == 0:
            self._cancel_timer(relay)
            self._output.write(relay, False)
            self._log(f"[device] Relay {relay} turned OFF")
            return True
        self._log(f"[device] Invalid relay state value: {state} (expected 0 or 1)")
        return False

    def switch(self, relay: int, state: bool) -> None:
        self._cancel_timer(relay)
        self._output.write(relay, state)

    def close(self) -> None:
        with self._timers_lock:
            timers = list(self._timers.values())
            self._timers.clear()
        for timer in timers:
            timer.cancel()

    def _schedule_off(self, relay: int, duration_ms: int) -> None:
        def _turn_off() -> None:
            with self._timers_lock:
                if self._timers.get(relay) is not timer:
                    return
                del self._timers[relay]
            self._output.write(relay, False)
            self._log(f"[device] Relay {relay} auto-turned OFF after {duration_ms} ms")

        timer = threading.Timer(duration_ms / 1000.0, _turn_off)
        timer.daemon = True
        with self._timers_lock:
            self._timers[relay] = timer
        timer.start()
        self._log(f"[device] Relay {relay} will auto-turn OFF after {duration_ms} ms")

    def _cancel_timer(self, relay: int) -> None:
        with self._timers_lock:
            timer = self._timers.pop(relay, None)
        if timer is not None:
            timer.cancel()


__all__ = ["RelayBank", "RelayOutput", "LoopbackRelayIO"]
