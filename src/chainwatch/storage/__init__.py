"""Durable state: subscription registry and event store."""

from chainwatch.storage.sqlite import SQLiteEventStore, SQLiteSubscriptionRegistry, open_database

__all__ = ["SQLiteEventStore", "SQLiteSubscriptionRegistry", "open_database"]
