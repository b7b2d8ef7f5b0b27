from __future__ import annotations

import argparse
import threading
from typing import Callable, Sequence

from relay_cloud.api.client import RelayApiHttpClient
from relay_device.actuator import RelayBank
from relay_device.loopback import LoopbackRelayIO
from relay_device.processor import CommandProcessor, ProcessResult


MIN_POLL_INTERVAL_SECONDS = 0.1


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Run the WebRelay polling device simulator"
    )
    parser.add_argument(
        "--api-url",
        default="http://127.0.0.1:8000",
        help="Base URL of the relay command server",
    )
    parser.add_argument(
        "--api-timeout", type=float, default=10.0, help="HTTP timeout in seconds"
    )
    parser.add_argument(
        "--poll-interval",
        type=float,
        default=1.0,
        help="Seconds between polls of /api/relay",
    )
    parser.add_argument(
        "--iterations",
        type=int,
        default=0,
        help="number of polls to perform (0 to poll until interrupted)",
    )
    parser.add_argument(
        "--relay-count",
        type=int,
        default=2,
        help="number of relay outputs on the simulated board",
    )
    parser.add_argument(
        "--verbose", action="store_true", help="enable verbose device logging"
    )
    return parser


def run_poll_loop(
    processor: CommandProcessor,
    interval: float,
    stop_event: threading.Event,
    iterations: int = 0,
    on_result: Callable[[ProcessResult], None] | None = None,
    log: Callable[[str], None] = print,
) -> int:
    """Poll until ``stop_event`` is set or ``iterations`` polls were made.

    Returns the number of commands that carried a ``command_id``.
    """
    interval = max(MIN_POLL_INTERVAL_SECONDS, float(interval))
    polls = 0
    commands = 0
    while not stop_event.is_set():
        try:
            result = processor.poll_once()
        except RuntimeError as exc:
            log(f"[device] Poll failed: {exc}")
        else:
            if result.command_id is not None:
                commands += 1
            if on_result is not None:
                on_result(result)
        polls += 1
        if iterations > 0 and polls >= iterations:
            break
        stop_event.wait(interval)
    return commands


def run_device(argv: Sequence[str] | None = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)

    def verbose_log(message: str) -> None:
        if args.verbose:
            print(message)

    io = LoopbackRelayIO(relay_count=max(1, args.relay_count))
    relays = RelayBank(io, log=verbose_log)
    client = RelayApiHttpClient(base_url=args.api_url, timeout=args.api_timeout)
    processor = CommandProcessor(relays, client, log=verbose_log)
    stop_event = threading.Event()

    def report(result: ProcessResult) -> None:
        if result.empty:
            return
        print(
            f"[device] Applied relays={list(result.applied_relays)} "
            f"command_id={result.command_id} acked={result.acknowledged}"
        )

    print(f"[device] Polling {client.relay_url} every {args.poll_interval}s. Press Ctrl+C to stop.")
    try:
        commands = run_poll_loop(
            processor,
            interval=args.poll_interval,
            stop_event=stop_event,
            iterations=max(0, args.iterations),
            on_result=report,
        )
        print(f"[device] Processed {commands} command(s)")
    except KeyboardInterrupt:
        print("[device] Polling stopped by user")
    finally:
        stop_event.set()
        relays.close()
        client.close()
        print("Relay outputs:")
        for relay in range(1, io.relay_count + 1):
            print(f"  relay{relay}={'ON' if io.read(relay) else 'OFF'}")


if __name__ == "__main__":
    run_device()
