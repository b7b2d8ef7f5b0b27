from __future__ import annotations

import logging
from dataclasses import dataclass, field
from functools import partial
from typing import Callable

from .commands import CommandStore, RelayCommand, ResolvedCommand, generate_command_id
from .notifier import ConfirmedStateNotifier, Observer


logger = logging.getLogger(__name__)


@dataclass
class RelayCommandService:
    """Issues relay commands, hands them to the polling device and applies its acks."""

    store: CommandStore = field(default_factory=CommandStore)
    notifier: ConfirmedStateNotifier = field(default_factory=ConfirmedStateNotifier)
    relay_count: int = 2
    command_id_length: int = 16

    def __post_init__(self) -> None:
        self.relay_count = max(1, int(self.relay_count))
        self._id_factory: Callable[[], str] = partial(
            generate_command_id, self.command_id_length
        )

    def issue(self, relay: int, state: bool, duration: int | None = None) -> str:
        command, replaced = self.store.create_pending(
            relay, bool(state), duration, self._id_factory
        )
        if replaced is not None:
            logger.info(
                "Pending command superseded before delivery command_id=%s relay=%d; "
                "it stays in-flight",
                replaced.command_id,
                replaced.relay,
            )
        logger.info(
            "Command issued command_id=%s relay=%d state=%s duration=%s",
            command.command_id,
            command.relay,
            "ON" if command.state else "OFF",
            command.duration,
        )
        return command.command_id

    def poll(self) -> RelayCommand | None:
        command = self.store.take_pending()
        if command is not None:
            logger.info(
                "Command delivered command_id=%s relay=%d",
                command.command_id,
                command.relay,
            )
        return command

    def acknowledge(self, command_id: str | None, status: str | None = None) -> bool:
        """Apply the device report for ``command_id``.

        Always returns ``True``: unknown, repeated or malformed ids are logged and
        otherwise ignored.
        """
        if not isinstance(command_id, str) or not command_id.strip():
            logger.warning("Acknowledgment without usable command_id status=%s", status)
            return True
        resolved: ResolvedCommand | None = self.store.apply_acknowledgment(command_id)
        if resolved is None:
            logger.warning(
                "Command %s acknowledged but not found in flight status=%s",
                command_id,
                status,
            )
            return True
        logger.info(
            "Command %s acknowledged status=%s - relay %d set to %s",
            command_id,
            status,
            resolved.relay,
            "ON" if resolved.state else "OFF",
        )
        self.notifier.fire()
        return True

    def set_actuator(self, relay: int, state: bool, duration: int | None = None) -> str:
        return self.issue(relay, state, duration)

    def get_confirmed_state(self, relay: int) -> bool:
        return self.store.get_state(relay)

    def confirmed_states(self) -> dict[int, bool]:
        return self.store.snapshot(self.relay_count)

    def subscribe(self, observer: Observer) -> Callable[[], None]:
        return self.notifier.subscribe(observer)


__all__ = ["RelayCommandService"]
