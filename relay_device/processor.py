from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Callable, Protocol

from .actuator import RelayBank


ACK_STATUS_RECEIVED = "received"


class RelayApiClient(Protocol):
    def poll(self) -> str:
        ...

    def acknowledge(self, command_id: str, status: str = ACK_STATUS_RECEIVED) -> None:
        ...


@dataclass
class ProcessResult:
    command_id: str | None = None
    applied_relays: tuple[int, ...] = ()
    acknowledged: bool = False
    legacy: bool = False

    @property
    def empty(self) -> bool:
        return self.command_id is None and not self.applied_relays


class CommandProcessor:
    """Interprets a poll response the way the relay firmware does.

    Every ``relay<N>`` entry present is applied, then the command is acknowledged
    with status ``received`` when it carries a string ``command_id``. A bare ``0`` or
    ``1`` body switches relay 1 without any acknowledgment.
    """

    def __init__(
        self,
        relays: RelayBank,
        api_client: RelayApiClient,
        log: Callable[[str], None] | None = None,
    ) -> None:
        self._relays = relays
        self._api = api_client
        self._log = log or (lambda message: None)

    def process(self, response_text: str | None) -> ProcessResult:
        trimmed = (response_text or "").strip()
        if not trimmed:
            return ProcessResult()
        if trimmed in ("0", "1"):
            return self._process_legacy(trimmed)
        try:
            payload = json.loads(trimmed)
        except (ValueError, RecursionError):
            self._log(f"[device] Failed to parse response: {trimmed[:64]!r}")
            return ProcessResult()
        if not isinstance(payload, dict) or not payload:
            return ProcessResult()

        command_id = payload.get("command_id")
        if not isinstance(command_id, str):
            command_id = None
        else:
            self._log(f"[device] Command ID: {command_id}")

        applied: list[int] = []
        for relay in range(1, self._relays.relay_count + 1):
            instruction = payload.get(f"relay{relay}")
            if instruction is None:
                continue
            self._log(f"[device] Processing relay{relay} command")
            if self._relays.apply(relay, instruction):
                applied.append(relay)

        result = ProcessResult(command_id=command_id, applied_relays=tuple(applied))
        if command_id is not None:
            self._log(f"[device] Sending ACK for command_id: {command_id}")
            self._api.acknowledge(command_id, ACK_STATUS_RECEIVED)
            result.acknowledged = True
        return result

    def poll_once(self) -> ProcessResult:
        return self.process(self._api.poll())

    def _process_legacy(self, body: str) -> ProcessResult:
        state = body == "1"
        self._relays.switch(1, state)
        self._log(f"[device] Response is '{body}', turning {'ON' if state else 'OFF'} relay 1")
        return ProcessResult(applied_relays=(1,), legacy=True)


__all__ = ["ACK_STATUS_RECEIVED", "CommandProcessor", "ProcessResult", "RelayApiClient"]
