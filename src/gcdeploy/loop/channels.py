"""Bounded queues between background readers and the loop thread."""

from __future__ import annotations

import logging as py_logging
import queue
import threading
from typing import Generic, TypeVar

logger = py_logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_CHANNEL_CAPACITY = 100
_BLOCKING_PUT_POLL_SECONDS = 0.05


class Channel(Generic[T]):
    """A bounded FIFO with a lossy and a blocking producer side.

    Producers run on worker threads; only the loop thread drains. An item is
    taken off the queue only by ``drain``, which hands it straight to the
    caller, so nothing enqueued is ever lost on the consumer side.
    """

    def __init__(self, name: str, capacity: int = DEFAULT_CHANNEL_CAPACITY) -> None:
        if capacity < 1:
            raise ValueError(f"Invalid channel capacity: {capacity}")
        self.name = name
        self.capacity = capacity
        self._queue: queue.Queue[T] = queue.Queue(maxsize=capacity)
        self._dropped = 0
        self._lock = threading.Lock()

    @property
    def dropped(self) -> int:
        with self._lock:
            return self._dropped

    def offer(self, item: T) -> bool:
        try:
            self._queue.put_nowait(item)
        except queue.Full:
            with self._lock:
                self._dropped += 1
            logger.debug("channel=%s full; dropped chunk", self.name)
            return False
        return True

    def put(self, item: T, *, cancel: threading.Event | None = None) -> bool:
        while True:
            if cancel is not None and cancel.is_set():
                return False
            try:
                self._queue.put(item, timeout=_BLOCKING_PUT_POLL_SECONDS)
            except queue.Full:
                continue
            return True

    def drain(self, max_items: int | None = None) -> list[T]:
        items: list[T] = []
        while max_items is None or len(items) < max_items:
            try:
                items.append(self._queue.get_nowait())
            except queue.Empty:
                break
        return items

    def pending(self) -> int:
        return self._queue.qsize()
