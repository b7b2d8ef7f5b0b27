from __future__ import annotations

import asyncio
import json
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

from fastapi import APIRouter, HTTPException, Query, Request
from fastapi.responses import StreamingResponse

from ..api.events import QUEUE_SHUTDOWN, StateEventHub
from ..api.logging_utils import RecentLogBufferHandler
from ..api.schemas import RelayCommandIssued, RelaySetPayload, RelayStatusResponse
from ..api.service import RelayCommandService


logger = logging.getLogger(__name__)

router = APIRouter(tags=["ui"])

_MAX_LOG_LINES = 500


def _service(request: Request) -> RelayCommandService:
    service = getattr(request.app.state, "service", None)
    if service is None:
        raise HTTPException(status_code=503, detail="Relay service unavailable")
    return service


def _checked_relay(service: RelayCommandService, relay: int) -> int:
    if relay < 1 or relay > service.relay_count:
        raise HTTPException(
            status_code=404,
            detail=f"Relay {relay} does not exist (1-{service.relay_count})",
        )
    return relay


@router.get("/ui/state")
async def ui_state(request: Request) -> dict[str, Any]:
    service = _service(request)
    last_seen = getattr(request.app.state, "device_last_seen", None)
    last_ip = getattr(request.app.state, "device_last_ip", None)
    ttl_seconds = float(getattr(request.app.state, "device_status_ttl", 30.0))
    now = datetime.now(timezone.utc)
    connected = False
    last_seen_iso: str | None = None
    if isinstance(last_seen, datetime):
        if now - last_seen <= timedelta(seconds=ttl_seconds):
            connected = True
        last_seen_iso = last_seen.isoformat()
    return {
        "relays": {
            str(relay): state for relay, state in service.confirmed_states().items()
        },
        "relay_count": service.relay_count,
        "pending_command": service.store.has_pending(),
        "inflight_commands": service.store.inflight_count(),
        "inflight_ttl_seconds": service.store.inflight_ttl_seconds,
        "device_status": {
            "connected": connected,
            "last_seen": last_seen_iso,
            "ip": last_ip,
            "ttl_seconds": ttl_seconds,
        },
    }


@router.get("/ui/relays/{relay}", response_model=RelayStatusResponse)
def relay_status(relay: int, request: Request) -> RelayStatusResponse:
    service = _service(request)
    _checked_relay(service, relay)
    return RelayStatusResponse(
        relay=relay, confirmed_state=service.get_confirmed_state(relay)
    )


@router.post("/ui/relays/{relay}", response_model=RelayCommandIssued)
def set_relay(relay: int, payload: RelaySetPayload, request: Request) -> RelayCommandIssued:
    service = _service(request)
    _checked_relay(service, relay)
    command_id = service.set_actuator(relay, payload.state, payload.duration)
    return RelayCommandIssued(
        command_id=command_id,
        relay=relay,
        state=payload.state,
        confirmed_state=service.get_confirmed_state(relay),
    )


@router.get("/ui/logs")
async def recent_logs(
    request: Request,
    limit: Optional[int] = Query(default=100, ge=0, le=_MAX_LOG_LINES),
) -> dict[str, Any]:
    handler: RecentLogBufferHandler | None = getattr(request.app.state, "log_buffer", None)
    if handler is None:
        return {"enabled": False, "lines": []}
    return {"enabled": True, "lines": handler.lines(limit)}


@router.get("/ui/events/stream")
async def state_events_stream(request: Request) -> StreamingResponse:
    hub: StateEventHub = request.app.state.state_hub
    service = _service(request)
    queue = await hub.subscribe()
    logger.info("State stream connected subscribers=%d", hub.subscriber_count)

    async def event_generator():
        shutdown_event: asyncio.Event | None = getattr(
            request.app.state, "shutdown_event", None
        )
        try:
            snapshot = {
                "event": "connected",
                "relays": {
                    str(relay): state
                    for relay, state in service.confirmed_states().items()
                },
            }
            yield f"data: {json.dumps(snapshot)}\n\n"
            while True:
                try:
                    message = (
                        await asyncio.wait_for(queue.get(), timeout=0.1)
                        if shutdown_event is not None
                        else await queue.get()
                    )
                except asyncio.TimeoutError:
                    if shutdown_event is not None and shutdown_event.is_set():
                        logger.debug("State stream shutdown detected")
                        break
                    continue
                except asyncio.CancelledError:
                    logger.debug("State stream cancelled during shutdown")
                    break
                if message == QUEUE_SHUTDOWN:
                    break
                yield f"data: {message}\n\n"
        except asyncio.CancelledError:
            logger.debug("State stream task cancelled")
        finally:
            await hub.unsubscribe(queue)
            logger.info("State stream disconnected")

    return StreamingResponse(event_generator(), media_type="text/event-stream")


__all__ = ["router"]
