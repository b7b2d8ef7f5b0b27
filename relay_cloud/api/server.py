from __future__ import annotations

import asyncio
import json
import logging
from datetime import datetime, timezone

from fastapi import FastAPI, Request, Response
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from .commands import CommandStore
from .events import StateEventHub
from .logging_utils import RecentLogBufferHandler
from .notifier import ConfirmedStateNotifier
from .schemas import RelayAckPayload
from .service import RelayCommandService
from ..web import register_ui


logger = logging.getLogger(__name__)


def create_app(
    relay_count: int = 2,
    command_id_length: int = 16,
    inflight_ttl_seconds: float | None = None,
    device_status_ttl: float = 30.0,
    service: RelayCommandService | None = None,
    log_buffer: RecentLogBufferHandler | None = None,
) -> FastAPI:
    """Build the relay API application.

    When ``service`` is given it is used as-is: ``relay_count``, ``command_id_length``
    and ``inflight_ttl_seconds`` only configure the service built by default.
    """
    relay_service = service or RelayCommandService(
        store=CommandStore(inflight_ttl_seconds=inflight_ttl_seconds),
        notifier=ConfirmedStateNotifier(),
        relay_count=relay_count,
        command_id_length=command_id_length,
    )

    app = FastAPI(title="WebRelay API", version="0.1.0")

    state_hub = StateEventHub()

    def _broadcast_confirmed_state() -> None:
        state_hub.publish_threadsafe(
            {
                "event": "state",
                "relays": {
                    str(relay): state
                    for relay, state in relay_service.confirmed_states().items()
                },
            }
        )

    relay_service.subscribe(_broadcast_confirmed_state)

    app.state.service = relay_service
    app.state.state_hub = state_hub
    app.state.log_buffer = log_buffer
    app.state.device_last_seen = None
    app.state.device_last_ip = None
    app.state.device_status_ttl = float(device_status_ttl)

    logger.info(
        "API server initialised relays=%d id_length=%d inflight_ttl=%s",
        relay_service.relay_count,
        relay_service.command_id_length,
        relay_service.store.inflight_ttl_seconds,
    )

    def _extract_client_ip(req: Request) -> str | None:
        header = req.headers.get("x-forwarded-for")
        if header:
            return header.split(",")[0].strip()
        if req.client:
            return req.client.host
        return None

    def _record_device_presence(req: Request) -> None:
        ip = _extract_client_ip(req)
        app.state.device_last_seen = datetime.now(timezone.utc)
        if ip:
            app.state.device_last_ip = ip

    @app.get("/health", response_model=dict[str, str])
    def healthcheck() -> dict[str, str]:
        return {"status": "ok"}

    @app.get("/api/relay")
    def poll_relay_command(request: Request) -> JSONResponse:
        _record_device_presence(request)
        command = relay_service.poll()
        if command is None:
            return JSONResponse({})
        return JSONResponse(command.to_wire())

    @app.post("/api/relay")
    async def acknowledge_relay_command(request: Request) -> Response:
        _record_device_presence(request)
        body = await request.body()
        try:
            ack = RelayAckPayload.model_validate(json.loads(body))
        except (ValueError, RecursionError, ValidationError) as exc:
            # JSONDecodeError and UnicodeDecodeError are ValueErrors; deep nesting recurses
            logger.warning("Ignoring invalid acknowledgment payload: %s", exc)
            return Response(status_code=200)
        if ack.command_id is None:
            logger.warning("Ignoring acknowledgment without command_id status=%s", ack.status)
            return Response(status_code=200)
        relay_service.acknowledge(ack.command_id, ack.status)
        return Response(status_code=200)

    @app.on_event("startup")
    async def _init_runtime() -> None:
        if getattr(app.state, "shutdown_event", None) is None:
            app.state.shutdown_event = asyncio.Event()
        state_hub.bind_loop(asyncio.get_running_loop())

    @app.on_event("shutdown")
    async def _shutdown_streams() -> None:
        shutdown_event: asyncio.Event | None = getattr(
            app.state, "shutdown_event", None
        )
        if shutdown_event is not None:
            shutdown_event.set()
        await state_hub.close()

    register_ui(app)

    return app


__all__ = ["create_app"]
