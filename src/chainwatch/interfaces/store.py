"""Store protocols - durable subscriptions/checkpoints and append-only events."""

from __future__ import annotations

from typing import Protocol

from chainwatch.models.records import EventRecord, Subscription


class SubscriptionRegistry(Protocol):
    """Durable subscriptions. The sole writer of checkpoints."""

    async def initialize(self) -> None:
        ...

    async def close(self) -> None:
        ...

    async def add(self, sub: Subscription) -> None:
        ...

    async def get(self, subscription_id: str) -> Subscription | None:
        ...

    async def list_all(self) -> list[Subscription]:
        ...

    async def advance_checkpoint(self, subscription_id: str, block: int) -> int | None:
        """Raise the checkpoint to ``max(current, block)``. Returns the stored value."""
        ...

    async def reset_checkpoint(self, subscription_id: str) -> Subscription:
        """Set the checkpoint back to from_block and clear any rescan request."""
        ...

    async def request_rescan(self, subscription_id: str) -> None:
        """Flag a subscription for rescan by the running daemon."""
        ...

    async def pending_rescans(self) -> list[Subscription]:
        ...


class EventStore(Protocol):
    """Append-only, idempotent store of events keyed by event id."""

    async def initialize(self) -> None:
        ...

    async def close(self) -> None:
        ...

    async def contains(self, event_id: str) -> bool:
        ...

    async def insert_if_absent(self, event: EventRecord) -> bool:
        """Store ``event`` unless its id exists. True if this call stored it."""
        ...

    async def get(self, event_id: str) -> EventRecord | None:
        ...

    async def list_events(self, subscription_id: str | None = None) -> list[EventRecord]:
        ...

    async def count(self) -> int:
        ...
