"""Shared fixtures for chainwatch tests."""

from __future__ import annotations

import asyncio
import json

import pytest
from aiohttp import WSMsgType, web
from aiohttp.test_utils import unused_port
from pytest_metadata.plugin import metadata_key

from chainwatch.api.watch_api import WatchAPI
from chainwatch.engine.dispatcher import Dispatcher
from chainwatch.engine.ingest import EventIngestor
from chainwatch.engine.manager import SubscriptionManager
from chainwatch.models.config import DaemonConfig
from chainwatch.models.records import RawLog, SubscriptionState
from chainwatch.storage.sqlite import SQLiteEventStore, SQLiteSubscriptionRegistry

from tests.factories import log_to_json
from tests.mocks import MockLogSource


# ── Report metadata ──────────────────────────────────────────────


def pytest_configure(config):
    """Add chain info to the HTML report Environment table."""
    meta = config.stash.setdefault(metadata_key, {})
    meta["Chain"] = "simulated EVM node (in-process)"
    meta["Store"] = "SQLite"


def make_test_config(**overrides) -> DaemonConfig:
    """Build a DaemonConfig suitable for testing."""
    defaults = dict(
        sync_interval=1,
        error_backoff=1,
        ws_url="",
        http_url="http://127.0.0.1:8545",
        request_timeout=2.0,
        rpc_retries=2,
        retry_backoff=0.0,
        db_path=":memory:",
    )
    defaults.update(overrides)
    return DaemonConfig(**defaults)


async def wait_until(predicate, timeout: float = 3.0) -> None:
    """Poll an (optionally async) predicate until it is truthy."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while True:
        result = predicate()
        if asyncio.iscoroutine(result):
            result = await result
        if result:
            return
        if loop.time() > deadline:
            raise AssertionError("condition not met before timeout")
        await asyncio.sleep(0.01)


async def wait_for_state(manager: SubscriptionManager, sub_id: str, state: SubscriptionState) -> None:
    await wait_until(lambda: manager.state_of(sub_id) == state)


@pytest.fixture
def test_config():
    """Default DaemonConfig for tests."""
    return make_test_config()


@pytest.fixture
async def registry():
    """Initialized in-memory SQLiteSubscriptionRegistry."""
    r = SQLiteSubscriptionRegistry(":memory:")
    await r.initialize()
    yield r
    await r.close()


@pytest.fixture
async def event_store():
    """Initialized in-memory SQLiteEventStore."""
    s = SQLiteEventStore(":memory:")
    await s.initialize()
    yield s
    await s.close()


@pytest.fixture
def dispatcher():
    return Dispatcher()


@pytest.fixture
def ingestor(event_store, dispatcher):
    return EventIngestor(event_store, dispatcher)


@pytest.fixture
def source():
    return MockLogSource(head=100)


@pytest.fixture
async def manager(registry, source, ingestor):
    """SubscriptionManager over the mock chain; all tasks stopped at teardown."""
    m = SubscriptionManager(registry, source, ingestor)
    yield m
    await m.stop()


@pytest.fixture
def api(manager, registry, event_store, dispatcher):
    return WatchAPI(manager, registry, event_store, dispatcher=dispatcher)


# ── Simulated node over HTTP + WebSocket ─────────────────────────


class FakeNode:
    """Minimal JSON-RPC node: eth_blockNumber, eth_getLogs, eth_subscribe."""

    def __init__(self) -> None:
        self.head = 0
        self.logs: list[RawLog] = []
        self.sockets: list[web.WebSocketResponse] = []
        self.subscriptions: dict[str, dict] = {}
        self.methods: list[str] = []
        self.http_url = ""
        self.ws_url = ""

    def answer(self, req: dict) -> dict:
        method = req.get("method")
        params = req.get("params") or []
        self.methods.append(method)
        if method == "eth_blockNumber":
            result = hex(self.head)
        elif method == "eth_getLogs":
            flt = params[0]
            lo, hi = int(flt["fromBlock"], 16), int(flt["toBlock"], 16)
            topic0 = (flt.get("topics") or [None])[0]
            result = [
                log_to_json(raw) for raw in self.logs
                if lo <= raw.block_number <= hi
                and raw.address.lower() == flt["address"].lower()
                and (topic0 is None or raw.topics[0] == topic0)
            ]
        elif method == "eth_subscribe":
            sub_id = f"0x{len(self.subscriptions) + 1:x}"
            self.subscriptions[sub_id] = params[1]
            result = sub_id
        elif method == "eth_unsubscribe":
            result = self.subscriptions.pop(params[0], None) is not None
        else:
            return {"jsonrpc": "2.0", "id": req.get("id"),
                    "error": {"code": -32601, "message": "method not found"}}
        return {"jsonrpc": "2.0", "id": req.get("id"), "result": result}

    async def push(self, raw: RawLog) -> None:
        """Notify every live subscription whose address matches."""
        for sub_id, flt in list(self.subscriptions.items()):
            if flt["address"].lower() != raw.address.lower():
                continue
            message = {
                "jsonrpc": "2.0",
                "method": "eth_subscription",
                "params": {"subscription": sub_id, "result": log_to_json(raw)},
            }
            for ws in self.sockets:
                await ws.send_str(json.dumps(message))

    async def drop_streams(self) -> None:
        for ws in list(self.sockets):
            await ws.close()
        self.sockets.clear()
        self.subscriptions.clear()


@pytest.fixture
async def fake_node():
    """Local aiohttp server speaking JSON-RPC on / (HTTP) and /ws (WebSocket)."""
    node = FakeNode()

    async def handle_http(request):
        return web.json_response(node.answer(await request.json()))

    async def handle_ws(request):
        ws = web.WebSocketResponse()
        await ws.prepare(request)
        node.sockets.append(ws)
        async for msg in ws:
            if msg.type == WSMsgType.TEXT:
                await ws.send_str(json.dumps(node.answer(json.loads(msg.data))))
        return ws

    app = web.Application()
    app.router.add_post("/", handle_http)
    app.router.add_get("/ws", handle_ws)

    port = unused_port()
    runner = web.AppRunner(app)
    await runner.setup()
    site = web.TCPSite(runner, "127.0.0.1", port)
    await site.start()
    node.http_url = f"http://127.0.0.1:{port}/"
    node.ws_url = f"ws://127.0.0.1:{port}/ws"
    yield node
    await node.drop_streams()
    await runner.cleanup()
