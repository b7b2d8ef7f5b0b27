from __future__ import annotations

from dataclasses import dataclass, field

import requests


@dataclass
class RelayApiHttpClient:
    """Device-side client for the ``/api/relay`` polling endpoint."""

    base_url: str
    timeout: float = 10.0
    session: requests.Session = field(default_factory=requests.Session)

    @property
    def relay_url(self) -> str:
        return f"{self.base_url.rstrip('/')}/api/relay"

    def poll(self) -> str:
        """Fetch the next command and return the raw response body."""
        try:
            response = self.session.get(self.relay_url, timeout=self.timeout)
            response.raise_for_status()
        except requests.Timeout as exc:  # pragma: no cover - network conditions
            raise RuntimeError("Timed out polling for relay commands") from exc
        except requests.RequestException as exc:
            raise RuntimeError(f"Failed to poll relay API: {exc}") from exc
        return response.text

    def acknowledge(self, command_id: str, status: str = "received") -> None:
        payload = {"command_id": command_id, "status": status}
        try:
            response = self.session.post(
                self.relay_url, json=payload, timeout=self.timeout
            )
            response.raise_for_status()
        except requests.Timeout as exc:  # pragma: no cover - network conditions
            raise RuntimeError(
                f"Timed out acknowledging command {command_id}"
            ) from exc
        except requests.RequestException as exc:
            raise RuntimeError(f"Failed to acknowledge command {command_id}: {exc}") from exc

    def close(self) -> None:
        self.session.close()


__all__ = ["RelayApiHttpClient"]
