"""Watch API - the collaborator contract handed to a request-handling layer."""

from __future__ import annotations

import logging
from collections import Counter
from typing import Any

from chainwatch.chain.link import ChainLink
from chainwatch.engine.dispatcher import Dispatcher
from chainwatch.engine.manager import SubscriptionManager
from chainwatch.interfaces.store import EventStore, SubscriptionRegistry
from chainwatch.models.snapshots import EventSnapshot, StatusSnapshot, SubscriptionSnapshot

log = logging.getLogger(__name__)


class WatchAPI:
    """Builds JSON-serializable snapshots and forwards commands to the manager.

    Reads go straight to the stores and never wait on a running backfill,
    so ``list_events()`` returns whatever has been ingested so far.
    """

    def __init__(
        self,
        manager: SubscriptionManager,
        registry: SubscriptionRegistry,
        store: EventStore,
        link: ChainLink | None = None,
        dispatcher: Dispatcher | None = None,
    ) -> None:
        self._manager = manager
        self._registry = registry
        self._store = store
        self._link = link
        self._dispatcher = dispatcher

    async def create_subscription(
        self,
        contract_address: str,
        interface_descriptor: Any = None,
        event_signature: str | None = None,
        event_name: str | None = None,
        from_block: int | None = None,
    ) -> str:
        return await self._manager.create_subscription(
            contract_address,
            interface_descriptor=interface_descriptor,
            event_signature=event_signature,
            event_name=event_name,
            from_block=from_block,
        )

    async def list_subscriptions(self) -> list[SubscriptionSnapshot]:
        subs = await self._registry.list_all()
        return [
            SubscriptionSnapshot.from_record(
                sub, self._manager.state_of(sub.id).value, self._skipped(sub.id),
            )
            for sub in subs
        ]

    async def list_events(self, subscription_id: str | None = None) -> list[EventSnapshot]:
        events = await self._store.list_events(subscription_id)
        return [EventSnapshot.from_record(e) for e in events]

    async def rescan(self, subscription_id: str) -> None:
        """Raises NotFound for an unknown subscription id."""
        await self._manager.rescan(subscription_id)

    def _skipped(self, subscription_id: str) -> list[tuple[int, int]]:
        report = self._manager.last_report(subscription_id)
        return list(report.failed_ranges) if report else []

    async def get_status(self) -> StatusSnapshot:
        subs = await self._registry.list_all()
        states = Counter(self._manager.state_of(s.id).value for s in subs)
        return StatusSnapshot(
            transport_mode=self._link.mode.value if self._link else "unknown",
            subscriptions=len(subs),
            events=await self._store.count(),
            states=dict(states),
            listeners=self._dispatcher.listener_count if self._dispatcher else 0,
            skipped_ranges=sum(len(self._skipped(s.id)) for s in subs),
        )
