"""Scanning engine: ingestion, backfill, realtime tailing, lifecycle, fan-out."""

from chainwatch.engine.backfill import BackfillScanner
from chainwatch.engine.dispatcher import Dispatcher, Listener
from chainwatch.engine.ingest import EventIngestor
from chainwatch.engine.manager import SubscriptionManager, new_subscription
from chainwatch.engine.tailer import RealtimeTailer, TailSession

__all__ = [
    "BackfillScanner", "Dispatcher", "Listener", "EventIngestor",
    "SubscriptionManager", "new_subscription", "RealtimeTailer", "TailSession",
]
