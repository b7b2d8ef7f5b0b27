from __future__ import annotations

import logging
import threading
from collections import deque
from typing import Optional


DEFAULT_LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


class RecentLogBufferHandler(logging.Handler):
    """Keep the most recent formatted log lines in memory for the UI."""

    def __init__(self, capacity: int = 200) -> None:
        super().__init__()
        self._capacity = max(1, capacity)
        self._buffer: deque[str] = deque(maxlen=self._capacity)
        self._lock_buffer = threading.Lock()

    @property
    def capacity(self) -> int:
        return self._capacity

    def emit(self, record: logging.LogRecord) -> None:
        try:
            message = self.format(record)
        except Exception:
            self.handleError(record)
            return
        with self._lock_buffer:
            self._buffer.append(message)

    def lines(self, limit: Optional[int] = None) -> list[str]:
        with self._lock_buffer:
            entries = list(self._buffer)
        if limit is not None and limit >= 0:
            entries = entries[-limit:] if limit else []
        return entries

    def clear(self) -> None:
        with self._lock_buffer:
            self._buffer.clear()


def install_recent_log_buffer(
    capacity: int = 200,
    level: int = logging.INFO,
    formatter: logging.Formatter | None = None,
    logger: logging.Logger | None = None,
) -> RecentLogBufferHandler:
    handler = RecentLogBufferHandler(capacity=capacity)
    handler.setLevel(level)
    handler.setFormatter(formatter or logging.Formatter(DEFAULT_LOG_FORMAT))
    (logger or logging.getLogger()).addHandler(handler)
    logging.getLogger(__name__).info(
        "Recent log buffering enabled; keeping the last %d lines", handler.capacity
    )
    return handler


__all__ = ["DEFAULT_LOG_FORMAT", "RecentLogBufferHandler", "install_recent_log_buffer"]
