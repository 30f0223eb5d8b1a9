"""SQLite implementations of the SubscriptionRegistry and EventStore protocols."""

from __future__ import annotations

import asyncio
import json
import logging
import sqlite3
from datetime import datetime, timezone
from pathlib import Path

import aiosqlite

from chainwatch.errors import NotFound
from chainwatch.models.records import DecodedEvent, EventRecord, Subscription

log = logging.getLogger(__name__)

SCHEMA = """
-- Watch subscriptions and their checkpoints
CREATE TABLE IF NOT EXISTS subscriptions (
    id TEXT PRIMARY KEY,
    contract_address TEXT NOT NULL,
    interface_descriptor TEXT,
    event_signature TEXT,
    event_name TEXT,
    from_block INTEGER NOT NULL DEFAULT 0,
    last_processed_block INTEGER,
    rescan_requested INTEGER NOT NULL DEFAULT 0,
    created_at TEXT NOT NULL DEFAULT (datetime('now')),
    updated_at TEXT NOT NULL DEFAULT (datetime('now'))
);

-- Ingested events, append-only
CREATE TABLE IF NOT EXISTS events (
    id TEXT PRIMARY KEY,
    subscription_id TEXT NOT NULL,
    transaction_hash TEXT NOT NULL,
    log_index INTEGER NOT NULL,
    block_number INTEGER NOT NULL,
    address TEXT NOT NULL,
    topics TEXT NOT NULL,
    data TEXT NOT NULL,
    decoded_name TEXT,
    decoded_args TEXT,
    ingested_at TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_events_subscription ON events(subscription_id);
CREATE INDEX IF NOT EXISTS idx_events_block ON events(block_number);
"""


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _quarantine(db_path: str, exc: Exception) -> None:
    """Move a corrupted database (and its WAL files) aside."""
    stamp = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%SZ")
    target = Path(f"{db_path}.corrupt-{stamp}")
    for suffix in ("", "-wal", "-shm"):
        p = Path(f"{db_path}{suffix}")
        if p.exists():
            p.rename(Path(f"{target}{suffix}"))
    log.critical(
        "State database %s is corrupted (%s). It was moved to %s and chainwatch is "
        "starting from an EMPTY state: all subscriptions and events recorded there "
        "are no longer loaded.",
        db_path, exc, target,
    )


async def _connect(db_path: str) -> aiosqlite.Connection:
    db = await aiosqlite.connect(db_path)
    db.row_factory = aiosqlite.Row
    try:
        async with db.execute("PRAGMA quick_check") as cur:
            row = await cur.fetchone()
        if row is None or row[0] != "ok":
            raise sqlite3.DatabaseError(f"integrity check failed: {row[0] if row else 'no result'}")
        if db_path != ":memory:":
            await db.execute("PRAGMA journal_mode=WAL")
            await db.execute("PRAGMA busy_timeout=5000")
        await db.executescript(SCHEMA)
        await db.commit()
    except sqlite3.DatabaseError:
        await db.close()
        raise
    return db


async def open_database(db_path: str) -> aiosqlite.Connection:
    """Open (creating if needed) the state database.

    A corrupted file is quarantined and replaced by an empty database rather
    than preventing startup.
    """
    if db_path != ":memory:":
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
    try:
        return await _connect(db_path)
    except sqlite3.DatabaseError as exc:
        if db_path == ":memory:":
            raise
        _quarantine(db_path, exc)
        return await _connect(db_path)


class _SQLiteBase:
    def __init__(self, db_path: str) -> None:
        self._db_path = db_path
        self._db: aiosqlite.Connection | None = None
        # single-writer discipline: every mutation runs under this lock
        self._write_lock = asyncio.Lock()

    async def initialize(self) -> None:
        self._db = await open_database(self._db_path)

    async def close(self) -> None:
        if self._db:
            await self._db.close()
            self._db = None

    @property
    def db(self) -> aiosqlite.Connection:
        assert self._db is not None, "Store not initialized. Call initialize() first."
        return self._db


class SQLiteSubscriptionRegistry(_SQLiteBase):
    """SQLite-backed SubscriptionRegistry."""

    async def add(self, sub: Subscription) -> None:
        if not sub.created_at:
            sub.created_at = _now()
        descriptor = json.dumps(sub.interface_descriptor) if sub.interface_descriptor is not None else None
        async with self._write_lock:
            await self.db.execute(
                "INSERT INTO subscriptions"
                " (id, contract_address, interface_descriptor, event_signature, event_name,"
                "  from_block, last_processed_block, rescan_requested, created_at, updated_at)"
                " VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                (
                    sub.id, sub.contract_address, descriptor, sub.event_signature,
                    sub.event_name, sub.from_block, sub.last_processed_block,
                    int(sub.rescan_requested), sub.created_at, sub.created_at,
                ),
            )
            await self.db.commit()

    async def get(self, subscription_id: str) -> Subscription | None:
        async with self.db.execute(
            "SELECT * FROM subscriptions WHERE id=?", (subscription_id,)
        ) as cur:
            row = await cur.fetchone()
            return _row_to_subscription(row) if row else None

    async def list_all(self) -> list[Subscription]:
        async with self.db.execute("SELECT * FROM subscriptions ORDER BY rowid") as cur:
            return [_row_to_subscription(row) async for row in cur]

    async def advance_checkpoint(self, subscription_id: str, block: int) -> int | None:
        async with self._write_lock:
            await self.db.execute(
                "UPDATE subscriptions SET last_processed_block=?, updated_at=?"
                " WHERE id=? AND (last_processed_block IS NULL OR last_processed_block < ?)",
                (block, _now(), subscription_id, block),
            )
            await self.db.commit()
        async with self.db.execute(
            "SELECT last_processed_block FROM subscriptions WHERE id=?", (subscription_id,)
        ) as cur:
            row = await cur.fetchone()
            return row["last_processed_block"] if row else None

    async def reset_checkpoint(self, subscription_id: str) -> Subscription:
        async with self._write_lock:
            cur = await self.db.execute(
                "UPDATE subscriptions SET last_processed_block=from_block,"
                " rescan_requested=0, updated_at=? WHERE id=?",
                (_now(), subscription_id),
            )
            await self.db.commit()
            if cur.rowcount == 0:
                raise NotFound(subscription_id)
        sub = await self.get(subscription_id)
        if sub is None:
            raise NotFound(subscription_id)
        return sub

    async def request_rescan(self, subscription_id: str) -> None:
        async with self._write_lock:
            cur = await self.db.execute(
                "UPDATE subscriptions SET rescan_requested=1, updated_at=? WHERE id=?",
                (_now(), subscription_id),
            )
            await self.db.commit()
            if cur.rowcount == 0:
                raise NotFound(subscription_id)

    async def pending_rescans(self) -> list[Subscription]:
        async with self.db.execute(
            "SELECT * FROM subscriptions WHERE rescan_requested=1 ORDER BY rowid"
        ) as cur:
            return [_row_to_subscription(row) async for row in cur]


class SQLiteEventStore(_SQLiteBase):
    """SQLite-backed EventStore. Rows are never updated or deleted."""

    async def contains(self, event_id: str) -> bool:
        async with self.db.execute("SELECT 1 FROM events WHERE id=?", (event_id,)) as cur:
            return await cur.fetchone() is not None

    async def insert_if_absent(self, event: EventRecord) -> bool:
        decoded_name = event.decoded.name if event.decoded else None
        decoded_args = json.dumps(event.decoded.args) if event.decoded else None
        async with self._write_lock:
            cur = await self.db.execute(
                "INSERT OR IGNORE INTO events"
                " (id, subscription_id, transaction_hash, log_index, block_number,"
                "  address, topics, data, decoded_name, decoded_args, ingested_at)"
                " VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                (
                    event.id, event.subscription_id, event.transaction_hash,
                    event.log_index, event.block_number, event.address,
                    json.dumps(list(event.topics)), event.data,
                    decoded_name, decoded_args, event.ingested_at or _now(),
                ),
            )
            await self.db.commit()
            return cur.rowcount == 1

    async def get(self, event_id: str) -> EventRecord | None:
        async with self.db.execute("SELECT * FROM events WHERE id=?", (event_id,)) as cur:
            row = await cur.fetchone()
            return _row_to_event(row) if row else None

    async def list_events(self, subscription_id: str | None = None) -> list[EventRecord]:
        if subscription_id:
            async with self.db.execute(
                "SELECT * FROM events WHERE subscription_id=? ORDER BY rowid", (subscription_id,)
            ) as cur:
                return [_row_to_event(row) async for row in cur]
        async with self.db.execute("SELECT * FROM events ORDER BY rowid") as cur:
            return [_row_to_event(row) async for row in cur]

    async def count(self) -> int:
        async with self.db.execute("SELECT COUNT(*) AS c FROM events") as cur:
            row = await cur.fetchone()
            return row["c"] if row else 0


# ── Row converters ─────────────────────────────────────────


def _row_to_subscription(row: aiosqlite.Row) -> Subscription:
    descriptor = None
    if row["interface_descriptor"]:
        try:
            descriptor = json.loads(row["interface_descriptor"])
        except ValueError:
            log.warning("Subscription %s has an unreadable interface descriptor", row["id"])
    return Subscription(
        id=row["id"],
        contract_address=row["contract_address"],
        interface_descriptor=descriptor,
        event_signature=row["event_signature"],
        event_name=row["event_name"],
        from_block=row["from_block"],
        last_processed_block=row["last_processed_block"],
        rescan_requested=bool(row["rescan_requested"]),
        created_at=row["created_at"],
    )


def _row_to_event(row: aiosqlite.Row) -> EventRecord:
    decoded = None
    if row["decoded_name"]:
        decoded = DecodedEvent(name=row["decoded_name"], args=json.loads(row["decoded_args"] or "{}"))
    return EventRecord(
        id=row["id"],
        subscription_id=row["subscription_id"],
        transaction_hash=row["transaction_hash"],
        log_index=row["log_index"],
        block_number=row["block_number"],
        address=row["address"],
        topics=tuple(json.loads(row["topics"])),
        data=row["data"],
        decoded=decoded,
        ingested_at=row["ingested_at"],
    )
