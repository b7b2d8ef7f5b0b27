from __future__ import annotations

import argparse
import asyncio
import contextlib
import logging
import os
import signal
import sys
from pathlib import Path
from typing import Any, Sequence

import uvicorn
from dotenv import load_dotenv

from .config_loader import RelayServerConfig, load_config
from .logging_utils import DEFAULT_LOG_FORMAT, install_recent_log_buffer
from .server import create_app

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    """Build argument parser with minimal CLI flags.

    Most configuration is loaded from config/relay.json and WEBRELAY_* variables.
    CLI flags are only for quick overrides.
    """
    parser = argparse.ArgumentParser(
        description="Run the WebRelay command server",
        epilog="Configuration is loaded from config/relay.json. "
               "CLI arguments override config file and environment settings."
    )
    parser.add_argument(
        "--config",
        type=str,
        default="config/relay.json",
        help="Path to JSON configuration file (default: config/relay.json)"
    )
    parser.add_argument(
        "--host",
        type=str,
        default=None,
        help="Override server host (default: from config file)"
    )
    parser.add_argument(
        "--port",
        type=int,
        default=None,
        help="Override server port (default: from config file)"
    )
    return parser


def resolve_config(args: argparse.Namespace) -> RelayServerConfig:
    config_path = Path(args.config) if args.config else None
    if config_path is not None and not config_path.exists():
        logger.info("Configuration file %s not found; using defaults", config_path)
        config_path = None
    cfg = load_config(config_path)
    if args.host:
        cfg.server.host = args.host
    if args.port:
        cfg.server.port = args.port
    return cfg


def main(argv: Sequence[str] | None = None) -> None:
    load_dotenv()
    if not logging.getLogger().handlers:
        logging.basicConfig(level=logging.INFO, format=DEFAULT_LOG_FORMAT)
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        cfg = resolve_config(args)
    except (OSError, ValueError) as exc:
        logger.error("Failed to load configuration: %s", exc)
        sys.exit(1)

    level = logging.getLevelName(cfg.logging.level)
    if not isinstance(level, int):
        logger.warning("Unknown log level %s; using INFO", cfg.logging.level)
        level = logging.INFO
    logging.getLogger().setLevel(level)
    log_buffer = install_recent_log_buffer(capacity=cfg.logging.recent_capacity)

    logger.info("Server configuration: %s:%d", cfg.server.host, cfg.server.port)
    logger.info(
        "Relay configuration: count=%d id_length=%d inflight_ttl=%s",
        cfg.relays.count,
        cfg.relays.command_id_length,
        cfg.relays.inflight_ttl_seconds,
    )

    app = create_app(
        relay_count=cfg.relays.count,
        command_id_length=cfg.relays.command_id_length,
        inflight_ttl_seconds=cfg.relays.inflight_ttl_seconds,
        device_status_ttl=cfg.device.status_ttl_seconds,
        log_buffer=log_buffer,
    )

    config = uvicorn.Config(
        app,
        host=cfg.server.host,
        port=cfg.server.port,
        log_level=logging.getLevelName(level).lower(),
        timeout_graceful_shutdown=1,
    )
    config.install_signal_handlers = False
    server = uvicorn.Server(config)

    async def _serve() -> None:
        loop = asyncio.get_running_loop()
        shutdown_event: asyncio.Event | None = getattr(
            app.state, "shutdown_event", None
        )
        if shutdown_event is None:
            shutdown_event = asyncio.Event()
            app.state.shutdown_event = shutdown_event

        closing_started = False
        shutdown_count = 0

        async def _close_streams() -> None:
            nonlocal closing_started
            if closing_started:
                return
            closing_started = True
            hub = getattr(app.state, "state_hub", None)
            if hub is None:
                return
            try:
                await hub.close()
            except Exception as exc:  # pragma: no cover - shutdown path
                logger.warning("Failed to close state_hub: %s", exc)

        def _handle_signal(signum, frame) -> None:  # pragma: no cover - signal handler
            nonlocal shutdown_count
            shutdown_count += 1
            if shutdown_count == 1:
                logger.info("Signal %s received; initiating graceful shutdown (press Ctrl-C again to force).", signum)
                shutdown_event.set()
                server.should_exit = True
                loop.call_soon_threadsafe(lambda: loop.create_task(_close_streams()))
            elif shutdown_count == 2:
                logger.warning("Second signal received; forcing immediate exit.")
                server.force_exit = True
                for task in asyncio.all_tasks(loop):
                    task.cancel()
                loop.call_soon_threadsafe(loop.stop)
            else:
                logger.error("Multiple signals received; terminating process immediately.")
                os._exit(1)

        previous_handlers: dict[int, Any] = {}
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                previous_handlers[sig] = signal.getsignal(sig)
                signal.signal(sig, _handle_signal)
            except (AttributeError, ValueError):
                continue

        async def _watch_shutdown() -> None:
            await shutdown_event.wait()
            server.should_exit = True
            await _close_streams()

        watcher_task = loop.create_task(_watch_shutdown())

        try:
            await server.serve()
        finally:
            watcher_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await watcher_task
            await _close_streams()
            for sig, handler in previous_handlers.items():
                try:
                    signal.signal(sig, handler)
                except (AttributeError, ValueError):
                    continue
            shutdown_event.set()

    try:
        asyncio.run(_serve())
    except KeyboardInterrupt:
        logger.info("KeyboardInterrupt received during shutdown")


if __name__ == "__main__":
    main()
