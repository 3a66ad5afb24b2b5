"""Single-threaded tick loop that folds worker output into pane buffers."""

from __future__ import annotations

import codecs
import logging as py_logging
import queue
import threading
from collections.abc import Callable
from typing import Any

from gcdeploy.loop.buffers import ContentBuffer
from gcdeploy.loop.channels import DEFAULT_CHANNEL_CAPACITY, Channel
from gcdeploy.loop.events import LoopEvent
from gcdeploy.loop.timers import Scheduler

logger = py_logging.getLogger(__name__)

DEFAULT_TICK_INTERVAL_SECONDS = 0.05
DEFAULT_MAX_READS_PER_TICK = 10
DEFAULT_MAX_EVENTS_PER_TICK = 50
DEFAULT_LOG_MAX_LINES = 500

EventHandler = Callable[[Any], None]


class _StreamDecoder:
    def __init__(self) -> None:
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")

    def decode(self, chunk: bytes | str) -> str:
        if isinstance(chunk, str):
            return chunk
        return self._decoder.decode(chunk)


class StreamMultiplexer:
    def __init__(
        self,
        *,
        scheduler: Scheduler | None = None,
        channel_capacity: int = DEFAULT_CHANNEL_CAPACITY,
        max_reads_per_tick: int = DEFAULT_MAX_READS_PER_TICK,
        max_events_per_tick: int = DEFAULT_MAX_EVENTS_PER_TICK,
        log_max_lines: int = DEFAULT_LOG_MAX_LINES,
        on_render: Callable[[], None] | None = None,
    ) -> None:
        if max_reads_per_tick < 1:
            raise ValueError(f"Invalid max_reads_per_tick: {max_reads_per_tick}")
        self.local = ContentBuffer()
        self.remote = ContentBuffer()
        self.log = ContentBuffer(max_lines=log_max_lines)
        self.remote_channel: Channel[bytes] = Channel("remote", channel_capacity)
        self.local_channel: Channel[bytes] = Channel("local", channel_capacity)
        self.scheduler = scheduler or Scheduler()
        self.max_reads_per_tick = max_reads_per_tick
        self.max_events_per_tick = max_events_per_tick
        self.on_render = on_render
        self.ticks = 0
        self.renders = 0
        self._events: queue.Queue[LoopEvent] = queue.Queue()
        self._handlers: dict[type, EventHandler] = {}
        self._remote_decoder = _StreamDecoder()
        self._local_decoder = _StreamDecoder()

    def register(self, event_type: type, handler: EventHandler) -> None:
        self._handlers[event_type] = handler

    def post(self, event: LoopEvent) -> None:
        """Queue a control event; safe to call from any thread."""
        self._events.put(event)

    def dispatch(self, event: LoopEvent) -> None:
        handler = self._handlers.get(type(event))
        if handler is None:
            logger.warning("No handler registered for event type=%s", type(event).__name__)
            return
        handler(event)

    def reset_remote_decoder(self) -> None:
        self._remote_decoder = _StreamDecoder()

    def flush_local(self) -> bool:
        """Append every pending local chunk, ignoring the per-tick bound."""
        chunks = self.local_channel.drain()
        for chunk in chunks:
            self.local.append(self._local_decoder.decode(chunk))
        return bool(chunks)

    def tick(self) -> bool:
        changed = False

        for chunk in self.remote_channel.drain(self.max_reads_per_tick):
            self.remote.append(self._remote_decoder.decode(chunk))
            changed = True

        for chunk in self.local_channel.drain(self.max_reads_per_tick):
            self.local.append(self._local_decoder.decode(chunk))
            changed = True

        for _ in range(self.max_events_per_tick):
            try:
                event = self._events.get_nowait()
            except queue.Empty:
                break
            self.dispatch(event)
            changed = True

        if self.scheduler.run_due():
            changed = True

        self.ticks += 1
        if changed:
            self.render()
        return changed

    def render(self) -> None:
        self.renders += 1
        if self.on_render is not None:
            self.on_render()

    def run(
        self,
        stop: threading.Event,
        *,
        interval: float = DEFAULT_TICK_INTERVAL_SECONDS,
    ) -> None:
        logger.debug("Multiplexer loop started interval=%s", interval)
        while not stop.is_set():
            self.tick()
            stop.wait(interval)
        logger.debug("Multiplexer loop stopped after ticks=%s", self.ticks)
