"""Dispatcher - fans newly stored events out to live listeners."""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Callable

from chainwatch.models.records import EventRecord

log = logging.getLogger(__name__)

EventCallback = Callable[[EventRecord], None]


class Listener:
    """A connected consumer. Receives every event published while connected."""

    def __init__(self) -> None:
        self._queue: asyncio.Queue[EventRecord] = asyncio.Queue()

    def _deliver(self, event: EventRecord) -> None:
        self._queue.put_nowait(event)

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    async def get(self) -> EventRecord:
        return await self._queue.get()

    def get_nowait(self) -> EventRecord:
        return self._queue.get_nowait()

    def __aiter__(self) -> Listener:
        return self

    async def __anext__(self) -> EventRecord:
        return await self._queue.get()


class Dispatcher:
    """Broadcasts events to queue listeners and plain callbacks.

    No backlog is replayed: a listener only sees events published after it
    connected.
    """

    def __init__(self) -> None:
        self._listeners: set[Listener] = set()
        self._callbacks: list[EventCallback] = []
        self.published = 0

    @property
    def listener_count(self) -> int:
        return len(self._listeners) + len(self._callbacks)

    def connect(self) -> Listener:
        listener = Listener()
        self._listeners.add(listener)
        return listener

    def disconnect(self, listener: Listener) -> None:
        self._listeners.discard(listener)

    @asynccontextmanager
    async def listen(self) -> AsyncIterator[Listener]:
        listener = self.connect()
        try:
            yield listener
        finally:
            self.disconnect(listener)

    def add_callback(self, callback: EventCallback) -> None:
        self._callbacks.append(callback)

    def remove_callback(self, callback: EventCallback) -> None:
        if callback in self._callbacks:
            self._callbacks.remove(callback)

    def publish(self, event: EventRecord) -> None:
        self.published += 1
        for listener in list(self._listeners):
            listener._deliver(event)
        for callback in list(self._callbacks):
            try:
                callback(event)
            except Exception as exc:
                log.error("Event listener callback failed for %s: %s", event.id, exc, exc_info=True)
