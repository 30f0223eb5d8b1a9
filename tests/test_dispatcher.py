"""Tests 45-47: Live fan-out to connected listeners."""

from __future__ import annotations

import logging

from chainwatch.engine.dispatcher import Dispatcher
from chainwatch.models.records import EventRecord


def _record(n: int) -> EventRecord:
    return EventRecord(
        id=f"0x{n:064x}-0",
        subscription_id="sub-1",
        transaction_hash=f"0x{n:064x}",
        log_index=0,
        block_number=n,
        address="0x5FbDB2315678afecb367f032d93F642f64180aa3",
        topics=(),
        data="0x",
    )


# ── Test 45: Every connected listener gets every event ────────────


async def test_broadcast_to_all_listeners():
    dispatcher = Dispatcher()
    seen = []
    dispatcher.add_callback(seen.append)

    async with dispatcher.listen() as a, dispatcher.listen() as b:
        assert dispatcher.listener_count == 3
        dispatcher.publish(_record(1))
        dispatcher.publish(_record(2))

        assert (await a.get()).block_number == 1
        assert (await a.get()).block_number == 2
        assert b.get_nowait().block_number == 1
        assert b.pending == 1

    assert [e.block_number for e in seen] == [1, 2]
    assert dispatcher.listener_count == 1


# ── Test 46: No backlog replay ────────────────────────────────────


async def test_late_listener_sees_only_new_events():
    dispatcher = Dispatcher()
    dispatcher.publish(_record(1))

    listener = dispatcher.connect()
    dispatcher.publish(_record(2))

    assert listener.pending == 1
    assert (await listener.get()).block_number == 2
    dispatcher.disconnect(listener)
    dispatcher.publish(_record(3))
    assert listener.pending == 0


# ── Test 47: A failing callback does not break the others ─────────


async def test_failing_callback_is_logged(caplog):
    dispatcher = Dispatcher()
    seen = []

    def boom(event):
        raise RuntimeError("listener exploded")

    dispatcher.add_callback(boom)
    dispatcher.add_callback(seen.append)

    with caplog.at_level(logging.ERROR):
        dispatcher.publish(_record(1))

    assert len(seen) == 1
    assert "listener exploded" in caplog.text
    dispatcher.remove_callback(boom)
    assert dispatcher.listener_count == 1
