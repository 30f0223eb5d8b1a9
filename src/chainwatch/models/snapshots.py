"""JSON-serializable snapshot models handed to request-layer clients."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any

from chainwatch.models.records import EventRecord, Subscription


@dataclass
class SubscriptionSnapshot:
    id: str
    contract_address: str
    interface_descriptor: list[dict[str, Any]] | None
    event_signature: str | None
    event_name: str | None
    from_block: int
    last_processed_block: int | None
    state: str  # registered, backfilling, tailing, stopped, failed
    created_at: str
    skipped_ranges: list[list[int]] = field(default_factory=list)  # need a rescan

    @classmethod
    def from_record(
        cls, sub: Subscription, state: str, skipped_ranges: list[tuple[int, int]] | None = None,
    ) -> SubscriptionSnapshot:
        return cls(
            id=sub.id,
            contract_address=sub.contract_address,
            interface_descriptor=sub.interface_descriptor,
            event_signature=sub.event_signature,
            event_name=sub.event_name,
            from_block=sub.from_block,
            last_processed_block=sub.last_processed_block,
            state=state,
            created_at=sub.created_at,
            skipped_ranges=[[lo, hi] for lo, hi in skipped_ranges or []],
        )

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class EventSnapshot:
    id: str
    subscription_id: str
    transaction_hash: str
    log_index: int
    block_number: int
    address: str
    topics: list[str]
    data: str
    decoded: dict[str, Any] | None
    ingested_at: str

    @classmethod
    def from_record(cls, event: EventRecord) -> EventSnapshot:
        decoded = None
        if event.decoded is not None:
            decoded = {"name": event.decoded.name, "args": dict(event.decoded.args)}
        return cls(
            id=event.id,
            subscription_id=event.subscription_id,
            transaction_hash=event.transaction_hash,
            log_index=event.log_index,
            block_number=event.block_number,
            address=event.address,
            topics=list(event.topics),
            data=event.data,
            decoded=decoded,
            ingested_at=event.ingested_at,
        )

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class StatusSnapshot:
    """Daemon-level status for dashboards and the ``status`` command."""

    transport_mode: str
    subscriptions: int
    events: int
    states: dict[str, int] = field(default_factory=dict)
    listeners: int = 0
    skipped_ranges: int = 0  # across all subscriptions, since last (re)start

    def to_dict(self) -> dict:
        return asdict(self)
