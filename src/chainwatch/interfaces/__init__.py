"""Protocol interfaces for chainwatch components."""

from chainwatch.interfaces.chain import LiveHandle, LogSource
from chainwatch.interfaces.store import EventStore, SubscriptionRegistry

__all__ = ["LiveHandle", "LogSource", "EventStore", "SubscriptionRegistry"]
