"""Realtime tailer - consumes push-delivered logs once backfill reached head."""

from __future__ import annotations

import asyncio
import logging

from chainwatch.engine.ingest import EventIngestor
from chainwatch.interfaces.chain import LiveHandle, LogSource
from chainwatch.interfaces.store import SubscriptionRegistry
from chainwatch.models.records import LogFilter, RawLog, Subscription

log = logging.getLogger(__name__)


class TailSession:
    """One live filter registration. Pushed logs queue up until consumed."""

    def __init__(self, sub: Subscription, handle: LiveHandle, queue: asyncio.Queue) -> None:
        self.sub = sub
        self.handle = handle
        self._queue = queue

    async def next_log(self) -> RawLog | None:
        """Next pushed log, or None once live delivery was lost."""
        return await self._queue.get()

    async def close(self) -> None:
        if self.handle.active:
            await self.handle.cancel()


class RealtimeTailer:
    """Registers live filters and runs each delivered log through ingestion.

    Transport loss ends tailing quietly: the subscription stays backfilled
    but not live until it is rescanned or the process restarts.
    """

    def __init__(
        self,
        source: LogSource,
        registry: SubscriptionRegistry,
        ingestor: EventIngestor,
    ) -> None:
        self._source = source
        self._registry = registry
        self._ingestor = ingestor

    async def open(self, sub: Subscription, log_filter: LogFilter) -> TailSession | None:
        """Register the live filter. None if live delivery is unavailable."""
        queue: asyncio.Queue[RawLog | None] = asyncio.Queue()

        def _on_log(raw: RawLog) -> None:
            queue.put_nowait(raw)

        def _on_lost(reason: str) -> None:
            log.warning("Live delivery lost for subscription %s: %s", sub.id, reason)
            queue.put_nowait(None)

        handle = await self._source.subscribe_live(log_filter, _on_log, _on_lost)
        if handle is None:
            log.info("Subscription %s is backfilled but not live (no streaming transport)", sub.id)
            return None
        log.info("Realtime listener started for %s (%s)", sub.id, sub.contract_address)
        return TailSession(sub, handle, queue)

    async def consume(self, session: TailSession) -> None:
        """Process pushed logs until live delivery ends."""
        try:
            while True:
                raw = await session.next_log()
                if raw is None:
                    return
                await self.handle_log(session.sub, raw)
        finally:
            await session.close()

    async def handle_log(self, sub: Subscription, raw: RawLog) -> None:
        if raw.removed:
            log.debug("Ignoring removed log %s", raw.event_id)
            return
        await self._ingestor.ingest(sub, raw)
        # registry keeps max(current, block): reordered deliveries never regress it
        await self._registry.advance_checkpoint(sub.id, raw.block_number)
