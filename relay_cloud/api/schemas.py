from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, Field


class RelayAckPayload(BaseModel):
    command_id: Optional[str] = Field(default=None, description="Identifier of the command being acknowledged")
    status: Optional[str] = Field(default=None, description="Device-reported outcome, e.g. 'received'")


class RelaySetPayload(BaseModel):
    state: bool
    duration: Optional[int] = Field(
        default=None,
        ge=0,
        description="Hold time hint forwarded to the device in milliseconds",
    )


class RelayCommandIssued(BaseModel):
    command_id: str
    relay: int
    state: bool
    confirmed_state: bool


class RelayStatusResponse(BaseModel):
    relay: int
    confirmed_state: bool


__all__ = [
    "RelayAckPayload",
    "RelaySetPayload",
    "RelayCommandIssued",
    "RelayStatusResponse",
]
