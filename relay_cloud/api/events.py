from __future__ import annotations

import asyncio
import json
import logging


logger = logging.getLogger(__name__)


QUEUE_SHUTDOWN = "__shutdown__"


class StateEventHub:
    """Fan confirmed-state events out to streaming UI clients.

    Queues live on the application's event loop. ``publish_threadsafe`` may be called
    from any thread, typically from a notifier observer.
    """

    def __init__(self) -> None:
        self._loop: asyncio.AbstractEventLoop | None = None
        self._subscribers: set[asyncio.Queue[str]] = set()
        self._closing = False

    def bind_loop(self, loop: asyncio.AbstractEventLoop) -> None:
        self._loop = loop
        self._closing = False

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    async def subscribe(self) -> asyncio.Queue[str]:
        queue: asyncio.Queue[str] = asyncio.Queue()
        if self._closing:
            queue.put_nowait(QUEUE_SHUTDOWN)
            return queue
        self._subscribers.add(queue)
        logger.debug("StateEventHub subscribed total=%d", len(self._subscribers))
        return queue

    async def unsubscribe(self, queue: asyncio.Queue[str]) -> None:
        self._subscribers.discard(queue)
        logger.debug("StateEventHub unsubscribed remaining=%d", len(self._subscribers))

    def publish_threadsafe(self, message: dict[str, object]) -> None:
        loop = self._loop
        if loop is None or loop.is_closed():
            logger.debug("StateEventHub has no running loop; dropping event")
            return
        payload = json.dumps(message)
        loop.call_soon_threadsafe(self._publish_nowait, payload)

    def _publish_nowait(self, payload: str) -> None:
        if self._closing:
            return
        queues = list(self._subscribers)
        logger.debug(
            "Publishing state event subscribers=%d payload=%s", len(queues), payload
        )
        for queue in queues:
            queue.put_nowait(payload)

    async def close(self) -> None:
        self._closing = True
        queues = list(self._subscribers)
        self._subscribers.clear()
        logger.info("StateEventHub closing queues=%d", len(queues))
        for queue in queues:
            queue.put_nowait(QUEUE_SHUTDOWN)


__all__ = ["QUEUE_SHUTDOWN", "StateEventHub"]
