"""Subscription manager - per-subscription lifecycle: start, resume, rescan."""

from __future__ import annotations

import asyncio
import functools
import logging
import uuid
from typing import Any

from eth_utils import is_address, to_checksum_address

from chainwatch.abi.signatures import load_descriptor
from chainwatch.chain.filters import FilterBuilder
from chainwatch.engine.backfill import BackfillScanner
from chainwatch.engine.ingest import EventIngestor
from chainwatch.engine.tailer import RealtimeTailer
from chainwatch.errors import DecodeError, InvalidSubscription, NotFound
from chainwatch.interfaces.chain import LogSource
from chainwatch.interfaces.store import SubscriptionRegistry
from chainwatch.models.config import DEFAULT_BATCH_SIZE
from chainwatch.models.records import BackfillReport, Subscription, SubscriptionState

log = logging.getLogger(__name__)


def new_subscription(
    contract_address: str,
    interface_descriptor: Any = None,
    event_signature: str | None = None,
    event_name: str | None = None,
    from_block: int | None = None,
) -> Subscription:
    """Validate a create request and build an unsaved Subscription."""
    if not contract_address:
        raise InvalidSubscription("contract_address required")
    if not is_address(contract_address):
        raise InvalidSubscription(f"not a contract address: {contract_address!r}")

    descriptor = None
    if interface_descriptor is not None:
        try:
            descriptor = load_descriptor(interface_descriptor)
        except DecodeError as exc:
            raise InvalidSubscription(str(exc)) from exc

    if from_block is None:
        from_block = 0
    try:
        from_block = int(from_block)
    except (TypeError, ValueError) as exc:
        raise InvalidSubscription(f"from_block must be an integer: {from_block!r}") from exc
    if from_block < 0:
        raise InvalidSubscription("from_block must not be negative")

    return Subscription(
        id=uuid.uuid4().hex,
        contract_address=to_checksum_address(contract_address),
        interface_descriptor=descriptor,
        event_signature=event_signature or None,
        event_name=event_name or None,
        from_block=from_block,
    )


class SubscriptionManager:
    """Runs one supervised task per subscription.

    Lifecycle: registered -> backfilling -> tailing. A rescan cancels the
    running task, resets the checkpoint to from_block, and starts over.
    The active set only grows during a process lifetime (except on rescan),
    so a subscription whose live delivery ended is not restarted implicitly.
    """

    def __init__(
        self,
        registry: SubscriptionRegistry,
        source: LogSource,
        ingestor: EventIngestor,
        batch_size: int = DEFAULT_BATCH_SIZE,
        filter_builder: FilterBuilder | None = None,
    ) -> None:
        self._registry = registry
        self._ingestor = ingestor
        self._filters = filter_builder or FilterBuilder()
        self._scanner = BackfillScanner(source, registry, ingestor, batch_size)
        self._tailer = RealtimeTailer(source, registry, ingestor)
        self._active: set[str] = set()
        self._tasks: dict[str, asyncio.Task] = {}
        self._states: dict[str, SubscriptionState] = {}
        self._reports: dict[str, BackfillReport] = {}

    # ── Queries ────────────────────────────────────────────

    def state_of(self, subscription_id: str) -> SubscriptionState:
        return self._states.get(subscription_id, SubscriptionState.REGISTERED)

    def last_report(self, subscription_id: str) -> BackfillReport | None:
        return self._reports.get(subscription_id)

    def is_active(self, subscription_id: str) -> bool:
        return subscription_id in self._active

    # ── Lifecycle ──────────────────────────────────────────

    async def create_subscription(
        self,
        contract_address: str,
        interface_descriptor: Any = None,
        event_signature: str | None = None,
        event_name: str | None = None,
        from_block: int | None = None,
    ) -> str:
        """Register a subscription and start backfilling it in the background."""
        sub = new_subscription(
            contract_address, interface_descriptor, event_signature, event_name, from_block,
        )
        await self._registry.add(sub)
        log.info(
            "Created subscription %s for %s from block %d",
            sub.id, sub.contract_address, sub.from_block,
        )
        self.start(sub)
        return sub.id

    def start(self, sub: Subscription, start_block: int | None = None) -> bool:
        """Spawn the lifecycle task. Idempotent per subscription id."""
        if sub.id in self._active:
            return False
        self._active.add(sub.id)
        self._states[sub.id] = SubscriptionState.REGISTERED
        task = asyncio.create_task(self._lifecycle(sub, start_block), name=f"subscription-{sub.id}")
        self._tasks[sub.id] = task
        task.add_done_callback(functools.partial(self._on_task_done, sub.id))
        return True

    async def resume_all(self) -> int:
        """Start every persisted subscription from its checkpoint."""
        subs = await self._registry.list_all()
        started = sum(1 for sub in subs if self.start(sub))
        log.info("Resumed %d of %d persisted subscription(s)", started, len(subs))
        return started

    async def rescan(self, subscription_id: str) -> None:
        """Reset the checkpoint to from_block and backfill again.

        Raises NotFound for an unknown id.
        """
        if await self._registry.get(subscription_id) is None:
            raise NotFound(subscription_id)

        # the old task must be gone before the reset, or a queued tail log
        # can push the checkpoint back above from_block
        task = self._tasks.get(subscription_id)
        if task is not None and not task.done():
            task.cancel()
            await asyncio.wait({task})

        sub = await self._registry.reset_checkpoint(subscription_id)
        log.info("Rescanning %s from block %d", subscription_id, sub.from_block)
        self._active.discard(subscription_id)
        self._ingestor.forget(subscription_id)
        self.start(sub, start_block=sub.from_block)

    async def stop(self) -> None:
        """Cancel all subscription tasks and wait for them to finish."""
        tasks = [t for t in self._tasks.values() if not t.done()]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.wait(tasks)
        log.info("Stopped %d subscription task(s)", len(tasks))

    async def _lifecycle(self, sub: Subscription, start_block: int | None) -> None:
        log_filter = self._filters.build(sub)

        self._states[sub.id] = SubscriptionState.BACKFILLING
        report = await self._scanner.run(sub, log_filter, start=start_block)
        self._reports[sub.id] = report

        session = await self._tailer.open(sub, log_filter)
        if session is None:
            self._states[sub.id] = SubscriptionState.STOPPED
            return

        # close the gap between the sweep's head and the live registration;
        # logs pushed meanwhile stay queued and dedup covers the overlap
        current = await self._registry.get(sub.id) or sub
        try:
            catch_up = await self._scanner.run(current, log_filter)
        except BaseException:
            await session.close()
            raise

        report.batches += catch_up.batches
        report.logs_seen += catch_up.logs_seen
        report.events_stored += catch_up.events_stored
        report.failed_ranges.extend(catch_up.failed_ranges)

        self._states[sub.id] = SubscriptionState.TAILING
        await self._tailer.consume(session)
        self._states[sub.id] = SubscriptionState.STOPPED

    def _on_task_done(self, subscription_id: str, task: asyncio.Task) -> None:
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            self._states[subscription_id] = SubscriptionState.FAILED
            log.error(
                "Subscription %s task failed: %s", subscription_id, exc,
                exc_info=(type(exc), exc, exc.__traceback__),
            )
