"""JSON-RPC transports: WebSocket streaming (push-capable) and HTTP fallback."""

from __future__ import annotations

import asyncio
import itertools
import json
import logging
from typing import Any, Callable

import httpx
import websockets

from chainwatch.errors import QueryError, TransportError

log = logging.getLogger(__name__)

NotificationHandler = Callable[[Any], None]
FailureCallback = Callable[[TransportError], None]


def _result(method: str, body: Any) -> Any:
    """Unwrap a JSON-RPC response body, raising QueryError on an error payload."""
    if not isinstance(body, dict):
        raise QueryError(method, f"malformed response: {body!r}")
    if body.get("error"):
        err = body["error"]
        if isinstance(err, dict):
            raise QueryError(method, str(err.get("message", err)), err.get("code"))
        raise QueryError(method, str(err))
    return body.get("result")


class HttpTransport:
    """Request/response JSON-RPC over HTTP. Cannot deliver pushed logs."""

    name = "http"

    def __init__(
        self,
        url: str,
        timeout: float = 30.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._url = url
        self._client = client or httpx.AsyncClient(
            timeout=httpx.Timeout(timeout, connect=10),
        )
        self._ids = itertools.count(1)

    async def request(self, method: str, params: list) -> Any:
        payload = {"jsonrpc": "2.0", "id": next(self._ids), "method": method, "params": params}
        try:
            resp = await self._client.post(self._url, json=payload)
            resp.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise QueryError(method, f"HTTP {exc.response.status_code}") from exc
        except httpx.TimeoutException as exc:
            raise QueryError(method, "request timed out") from exc
        except httpx.TransportError as exc:
            raise TransportError(f"{self._url}: {exc}") from exc

        try:
            body = resp.json()
        except ValueError as exc:
            raise QueryError(method, "response is not JSON") from exc
        return _result(method, body)

    async def close(self) -> None:
        await self._client.aclose()


class WebSocketTransport:
    """Persistent JSON-RPC over a WebSocket, with eth_subscribe push delivery.

    One connection carries both requests and subscription notifications. Once
    the connection errors or closes the transport is dead for good: pending
    requests fail with TransportError and failure callbacks fire once.
    """

    name = "websocket"

    def __init__(self, url: str, timeout: float = 30.0) -> None:
        self._url = url
        self._timeout = timeout
        self._ws: Any = None
        self._reader: asyncio.Task | None = None
        self._connect_lock = asyncio.Lock()
        self._ids = itertools.count(1)
        self._pending: dict[int, asyncio.Future] = {}
        self._handlers: dict[str, NotificationHandler] = {}
        self._failure_callbacks: list[FailureCallback] = []
        self._failed: TransportError | None = None

    def add_failure_callback(self, callback: FailureCallback) -> None:
        self._failure_callbacks.append(callback)

    async def _ensure_connected(self) -> None:
        if self._failed is not None:
            raise self._failed
        if self._ws is not None:
            return
        async with self._connect_lock:
            if self._ws is not None:
                return
            try:
                self._ws = await asyncio.wait_for(
                    websockets.connect(self._url, ping_interval=20, ping_timeout=20, max_size=None),
                    timeout=self._timeout,
                )
            except (OSError, asyncio.TimeoutError, websockets.exceptions.WebSocketException) as exc:
                error = TransportError(f"cannot connect to {self._url}: {exc}")
                self._fail(error)
                raise error from exc
            log.info("WebSocket connected to %s", self._url)
            self._reader = asyncio.create_task(self._read_loop())

    async def request(self, method: str, params: list) -> Any:
        await self._ensure_connected()
        req_id = next(self._ids)
        future: asyncio.Future = asyncio.get_running_loop().create_future()
        self._pending[req_id] = future
        try:
            try:
                await self._ws.send(json.dumps(
                    {"jsonrpc": "2.0", "id": req_id, "method": method, "params": params}
                ))
            except websockets.exceptions.ConnectionClosed as exc:
                error = TransportError(f"stream closed: {exc}")
                self._fail(error)
                raise error from exc
            try:
                body = await asyncio.wait_for(future, timeout=self._timeout)
            except asyncio.TimeoutError as exc:
                raise QueryError(method, "request timed out") from exc
        finally:
            self._pending.pop(req_id, None)
        return _result(method, body)

    async def subscribe(self, params: list, handler: NotificationHandler) -> str:
        """eth_subscribe; ``handler`` is called with each notification result."""
        sub_id = await self.request("eth_subscribe", params)
        if not isinstance(sub_id, str):
            raise QueryError("eth_subscribe", f"unexpected subscription id {sub_id!r}")
        self._handlers[sub_id] = handler
        return sub_id

    async def unsubscribe(self, sub_id: str) -> None:
        self._handlers.pop(sub_id, None)
        if self._failed is not None:
            return
        try:
            await self.request("eth_unsubscribe", [sub_id])
        except (TransportError, QueryError) as exc:
            log.debug("eth_unsubscribe %s failed: %s", sub_id, exc)

    async def _read_loop(self) -> None:
        try:
            async for message in self._ws:
                try:
                    payload = json.loads(message)
                except ValueError:
                    log.warning("Ignoring non-JSON WebSocket frame")
                    continue
                self._route(payload)
            self._fail(TransportError("stream closed by node"))
        except asyncio.CancelledError:
            raise
        except websockets.exceptions.ConnectionClosed as exc:
            self._fail(TransportError(f"stream closed: {exc}"))
        except Exception as exc:
            self._fail(TransportError(f"stream error: {exc}"))

    def _route(self, payload: Any) -> None:
        if not isinstance(payload, dict):
            return
        if payload.get("method") == "eth_subscription":
            params = payload.get("params") or {}
            handler = self._handlers.get(params.get("subscription"))
            if handler is not None:
                try:
                    handler(params.get("result"))
                except Exception as exc:
                    log.error("Subscription handler failed: %s", exc, exc_info=True)
            return
        future = self._pending.get(payload.get("id"))
        if future is not None and not future.done():
            future.set_result(payload)

    def _fail(self, error: TransportError) -> None:
        if self._failed is not None:
            return
        self._failed = error
        log.warning("WebSocket transport failed: %s", error)
        for future in self._pending.values():
            if not future.done():
                future.set_exception(error)
        self._handlers.clear()
        for callback in self._failure_callbacks:
            try:
                callback(error)
            except Exception as exc:
                log.error("Transport failure callback raised: %s", exc, exc_info=True)

    async def close(self) -> None:
        if self._reader is not None:
            self._reader.cancel()
            try:
                await self._reader
            except asyncio.CancelledError:
                pass
            self._reader = None
        if self._ws is not None:
            await self._ws.close()
            self._ws = None
