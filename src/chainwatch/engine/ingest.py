"""Shared ingestion path used by both backfill and realtime tailing."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Iterable

from chainwatch.abi.decoder import AbiDecoder
from chainwatch.engine.dispatcher import Dispatcher
from chainwatch.interfaces.store import EventStore
from chainwatch.models.records import EventRecord, RawLog, Subscription

log = logging.getLogger(__name__)


class EventIngestor:
    """Dedup, decode, store, and broadcast raw logs.

    The event id is the only dedup key. EventStore.insert_if_absent is atomic
    per id, so a log delivered by both backfill and tail is stored and
    broadcast once.
    """

    def __init__(self, store: EventStore, dispatcher: Dispatcher) -> None:
        self._store = store
        self._dispatcher = dispatcher
        self._decoders: dict[str, AbiDecoder] = {}

    def forget(self, subscription_id: str) -> None:
        """Drop the cached decoder for a subscription."""
        self._decoders.pop(subscription_id, None)

    def _decoder_for(self, sub: Subscription) -> AbiDecoder | None:
        if not sub.interface_descriptor:
            return None
        decoder = self._decoders.get(sub.id)
        if decoder is None:
            decoder = AbiDecoder(sub.interface_descriptor)
            self._decoders[sub.id] = decoder
        return decoder

    async def ingest(self, sub: Subscription, raw: RawLog) -> bool:
        """Ingest one log. Returns True if it was newly stored."""
        event_id = raw.event_id
        if await self._store.contains(event_id):
            return False

        decoder = self._decoder_for(sub)
        decoded = decoder.decode(raw) if decoder else None

        event = EventRecord(
            id=event_id,
            subscription_id=sub.id,
            transaction_hash=raw.transaction_hash,
            log_index=raw.log_index,
            block_number=raw.block_number,
            address=raw.address,
            topics=raw.topics,
            data=raw.data,
            decoded=decoded,
            ingested_at=datetime.now(timezone.utc).isoformat(),
        )
        if not await self._store.insert_if_absent(event):
            return False

        log.debug(
            "Stored event %s (block %d, %s)",
            event_id, raw.block_number, decoded.name if decoded else "raw",
        )
        self._dispatcher.publish(event)
        return True

    async def ingest_many(self, sub: Subscription, logs: Iterable[RawLog]) -> int:
        """Ingest logs in order. Returns how many were newly stored."""
        stored = 0
        for raw in logs:
            if await self.ingest(sub, raw):
                stored += 1
        return stored
