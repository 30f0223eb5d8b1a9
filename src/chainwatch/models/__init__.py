"""Data models for the chainwatch daemon."""

from chainwatch.models.config import DEFAULT_BATCH_SIZE, DaemonConfig
from chainwatch.models.records import (
    BackfillReport,
    DecodedEvent,
    EventRecord,
    LogFilter,
    RawLog,
    Subscription,
    SubscriptionState,
)
from chainwatch.models.snapshots import EventSnapshot, StatusSnapshot, SubscriptionSnapshot

__all__ = [
    "DEFAULT_BATCH_SIZE", "DaemonConfig",
    "BackfillReport", "DecodedEvent", "EventRecord", "LogFilter", "RawLog",
    "Subscription", "SubscriptionState",
    "EventSnapshot", "StatusSnapshot", "SubscriptionSnapshot",
]
