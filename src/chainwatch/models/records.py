"""Core record types: subscriptions, raw logs, filters and stored events."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class SubscriptionState(str, Enum):
    """Lifecycle state of a running subscription."""

    REGISTERED = "registered"
    BACKFILLING = "backfilling"
    TAILING = "tailing"
    STOPPED = "stopped"  # backfilled, but no live delivery available
    FAILED = "failed"


@dataclass
class Subscription:
    """A registered watch on one contract, as persisted in the registry."""

    id: str
    contract_address: str
    interface_descriptor: list[dict[str, Any]] | None = None  # contract ABI
    event_signature: str | None = None  # e.g. "Transfer(address,address,uint256)"
    event_name: str | None = None
    from_block: int = 0
    last_processed_block: int | None = None
    rescan_requested: bool = False
    created_at: str = ""

    def resume_block(self) -> int:
        """First block a backfill should read when resuming this subscription."""
        if self.last_processed_block is not None:
            return self.last_processed_block + 1
        return self.from_block


@dataclass(frozen=True)
class RawLog:
    """A contract log as returned by the node, with quantities normalized."""

    address: str
    topics: tuple[str, ...]
    data: str  # 0x-prefixed hex payload
    block_number: int
    transaction_hash: str  # lower-cased
    log_index: int
    block_hash: str | None = None
    removed: bool = False

    @property
    def event_id(self) -> str:
        """Deterministic identity: ``<transactionHash>-<logIndex>``."""
        return f"{self.transaction_hash}-{self.log_index}"


@dataclass(frozen=True)
class LogFilter:
    """Ephemeral {address, topics} filter. ``topics == (None,)`` matches any event."""

    address: str
    topics: tuple[str | None, ...] = (None,)

    @property
    def topic0(self) -> str | None:
        return self.topics[0] if self.topics else None

    @property
    def is_wildcard(self) -> bool:
        return self.topic0 is None

    def to_rpc(self, from_block: int | None = None, to_block: int | None = None) -> dict:
        """Build the JSON-RPC filter object for eth_getLogs / eth_subscribe."""
        params: dict[str, Any] = {"address": self.address}
        if not self.is_wildcard:
            params["topics"] = list(self.topics)
        if from_block is not None:
            params["fromBlock"] = hex(from_block)
        if to_block is not None:
            params["toBlock"] = hex(to_block)
        return params


@dataclass(frozen=True)
class DecodedEvent:
    """Structured decode of a log: event name plus rendered arguments.

    ``args`` is keyed both by stringified position ("0", "1", ...) and by
    declared parameter name.
    """

    name: str
    args: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class EventRecord:
    """An ingested event. Immutable once stored."""

    id: str
    subscription_id: str
    transaction_hash: str
    log_index: int
    block_number: int
    address: str
    topics: tuple[str, ...]
    data: str
    decoded: DecodedEvent | None = None
    ingested_at: str = ""


@dataclass
class BackfillReport:
    """Outcome of one backfill sweep."""

    subscription_id: str
    start: int
    head: int | None = None
    batches: int = 0
    failed_ranges: list[tuple[int, int]] = field(default_factory=list)
    logs_seen: int = 0
    events_stored: int = 0

    @property
    def complete(self) -> bool:
        return not self.failed_ranges
