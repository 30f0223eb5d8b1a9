"""Tests 42-44: Full stack against a simulated node over HTTP + WebSocket."""

from __future__ import annotations

from chainwatch.chain.link import ChainLink, TransportMode
from chainwatch.engine.manager import SubscriptionManager
from chainwatch.models.records import SubscriptionState

from tests.conftest import wait_for_state, wait_until
from tests.factories import ERC20_ABI, TOKEN, make_transfer_log


def _link(node) -> ChainLink:
    return ChainLink(
        ws_url=node.ws_url, http_url=node.http_url,
        request_timeout=2.0, rpc_retries=2, retry_backoff=0,
    )


# ── Test 42: Backfill + live push over a real WebSocket ───────────


async def test_websocket_backfill_and_live_push(fake_node, registry, ingestor, event_store, dispatcher):
    fake_node.head = 40
    fake_node.logs.append(make_transfer_log(block_number=12))
    link = _link(fake_node)
    manager = SubscriptionManager(registry, link, ingestor, batch_size=16)
    try:
        sub_id = await manager.create_subscription(
            TOKEN, interface_descriptor=ERC20_ABI, event_name="Transfer",
        )
        await wait_for_state(manager, sub_id, SubscriptionState.TAILING)
        assert await event_store.count() == 1
        assert fake_node.methods.count("eth_getLogs") == 3

        live = make_transfer_log(block_number=41, value=7)
        await fake_node.push(live)
        await wait_until(lambda: dispatcher.published == 2)

        event = await event_store.get(live.event_id)
        assert event.decoded.args["value"] == "7"
        assert link.mode == TransportMode.STREAMING
    finally:
        await manager.stop()
        await link.close()


# ── Test 43: Dropped stream → fallback, backfilled-but-not-live ───


async def test_dropped_stream_falls_back_to_http(fake_node, registry, ingestor, event_store):
    fake_node.head = 10
    link = _link(fake_node)
    manager = SubscriptionManager(registry, link, ingestor)
    try:
        sub_id = await manager.create_subscription(TOKEN)
        await wait_for_state(manager, sub_id, SubscriptionState.TAILING)

        await fake_node.drop_streams()
        await wait_for_state(manager, sub_id, SubscriptionState.STOPPED)
        assert link.mode == TransportMode.FALLBACK

        # queries keep working over HTTP
        fake_node.head = 25
        assert await link.latest_height() == 25
    finally:
        await manager.stop()
        await link.close()


# ── Test 44: Unreachable stream at startup ────────────────────────


async def test_unreachable_stream_uses_fallback(fake_node, registry, ingestor, event_store):
    fake_node.head = 5
    fake_node.logs.append(make_transfer_log(block_number=3))
    link = ChainLink(
        ws_url="ws://127.0.0.1:1/ws", http_url=fake_node.http_url,
        request_timeout=2.0, rpc_retries=2, retry_backoff=0,
    )
    manager = SubscriptionManager(registry, link, ingestor)
    try:
        sub_id = await manager.create_subscription(TOKEN)
        await wait_for_state(manager, sub_id, SubscriptionState.STOPPED)
        assert link.mode == TransportMode.FALLBACK
        assert await event_store.count() == 1
    finally:
        await manager.stop()
        await link.close()
