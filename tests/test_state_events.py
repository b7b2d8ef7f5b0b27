from __future__ import annotations

import asyncio
import json
import threading

from relay_cloud.api.events import QUEUE_SHUTDOWN, StateEventHub
from relay_cloud.api.service import RelayCommandService


def test_publish_from_worker_thread_reaches_subscriber() -> None:
    async def scenario() -> dict[str, object]:
        hub = StateEventHub()
        hub.bind_loop(asyncio.get_running_loop())
        queue = await hub.subscribe()
        worker = threading.Thread(
            target=hub.publish_threadsafe, args=({"event": "state", "relays": {"1": True}},)
        )
        worker.start()
        worker.join()
        message = await asyncio.wait_for(queue.get(), timeout=2.0)
        await hub.unsubscribe(queue)
        return json.loads(message)

    assert asyncio.run(scenario()) == {"event": "state", "relays": {"1": True}}


def test_notifier_feeds_hub_once_per_acknowledgment() -> None:
    async def scenario() -> list[str]:
        hub = StateEventHub()
        hub.bind_loop(asyncio.get_running_loop())
        service = RelayCommandService()
        service.subscribe(
            lambda: hub.publish_threadsafe(
                {"relays": {str(k): v for k, v in service.confirmed_states().items()}}
            )
        )
        queue = await hub.subscribe()

        service.acknowledge("missing", "received")
        service.acknowledge(service.issue(2, True), "received")
        await asyncio.sleep(0.05)

        messages = []
        while not queue.empty():
            messages.append(queue.get_nowait())
        return messages

    messages = asyncio.run(scenario())
    assert len(messages) == 1
    assert json.loads(messages[0]) == {"relays": {"1": False, "2": True}}


def test_close_releases_subscribers_and_rejects_new_ones() -> None:
    async def scenario() -> tuple[str, str, int]:
        hub = StateEventHub()
        hub.bind_loop(asyncio.get_running_loop())
        queue = await hub.subscribe()
        await hub.close()
        late = await hub.subscribe()
        return queue.get_nowait(), late.get_nowait(), hub.subscriber_count

    first, late, remaining = asyncio.run(scenario())
    assert first == QUEUE_SHUTDOWN
    assert late == QUEUE_SHUTDOWN
    assert remaining == 0


def test_publish_without_loop_is_dropped() -> None:
    StateEventHub().publish_threadsafe({"event": "state"})
