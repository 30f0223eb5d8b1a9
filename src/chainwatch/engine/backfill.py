"""Backfill scanner - bounded-batch historical catch-up from checkpoint to head."""

from __future__ import annotations

import logging

from chainwatch.engine.ingest import EventIngestor
from chainwatch.errors import ChainwatchError
from chainwatch.interfaces.chain import LogSource
from chainwatch.interfaces.store import SubscriptionRegistry
from chainwatch.models.config import DEFAULT_BATCH_SIZE
from chainwatch.models.records import BackfillReport, LogFilter, Subscription

log = logging.getLogger(__name__)


class BackfillScanner:
    """Walks [start, head] in fixed-size batches, then advances the checkpoint.

    Batches are issued sequentially. A failed batch is logged and skipped;
    it is not retried, so its range stays missing until a rescan.
    """

    def __init__(
        self,
        source: LogSource,
        registry: SubscriptionRegistry,
        ingestor: EventIngestor,
        batch_size: int = DEFAULT_BATCH_SIZE,
    ) -> None:
        self._source = source
        self._registry = registry
        self._ingestor = ingestor
        self._batch_size = max(1, batch_size)

    async def run(
        self, sub: Subscription, log_filter: LogFilter, start: int | None = None,
    ) -> BackfillReport:
        """Sweep from ``start`` (default: checkpoint + 1 or from_block) to the current head."""
        if start is None:
            start = sub.resume_block()
        report = BackfillReport(subscription_id=sub.id, start=start)

        try:
            head = await self._source.latest_height()
        except ChainwatchError as exc:
            log.warning(
                "Could not read chain head for %s (%s); using block %d as best-effort head",
                sub.id, exc, start,
            )
            head = start
        report.head = head

        if start > head:
            log.debug("Subscription %s is at head (next=%d, head=%d)", sub.id, start, head)
            return report

        log.info(
            "Backfilling %s (%s) blocks %d..%d in batches of %d",
            sub.id, sub.contract_address, start, head, self._batch_size,
        )
        for batch_start in range(start, head + 1, self._batch_size):
            batch_end = min(batch_start + self._batch_size - 1, head)
            report.batches += 1
            try:
                logs = await self._source.logs_in_range(batch_start, batch_end, log_filter)
            except ChainwatchError as exc:
                report.failed_ranges.append((batch_start, batch_end))
                log.error(
                    "Backfill batch [%d, %d] failed for subscription %s: %s. This range is "
                    "skipped and will not be retried; its events stay missing until "
                    "`chainwatch rescan %s`.",
                    batch_start, batch_end, sub.id, exc, sub.id,
                )
                continue

            report.logs_seen += len(logs)
            report.events_stored += await self._ingestor.ingest_many(sub, logs)

        # checkpoint is the head targeted at sweep start, not a re-read head
        await self._registry.advance_checkpoint(sub.id, head)

        if report.failed_ranges:
            log.error(
                "Backfill of %s finished with %d skipped range(s): %s",
                sub.id, len(report.failed_ranges),
                ", ".join(f"[{a}, {b}]" for a, b in report.failed_ranges),
            )
        else:
            log.info(
                "Backfill of %s complete: %d batches, %d logs, %d new events (checkpoint %d)",
                sub.id, report.batches, report.logs_seen, report.events_stored, head,
            )
        return report
