"""ChainLink - node connection with one-way streaming -> fallback failover."""

from __future__ import annotations

import asyncio
import logging
from enum import Enum
from typing import Any, Callable

from eth_utils import to_checksum_address

from chainwatch.chain.transports import HttpTransport, WebSocketTransport
from chainwatch.errors import QueryError, TransportError
from chainwatch.models.records import LogFilter, RawLog

log = logging.getLogger(__name__)

LogHandler = Callable[[RawLog], None]
LostCallback = Callable[[str], None]


class TransportMode(str, Enum):
    STREAMING = "streaming"  # WebSocket, supports push delivery
    FALLBACK = "fallback"  # HTTP request/response only


def _quantity(value: Any) -> int:
    if isinstance(value, int):
        return value
    text = str(value)
    return int(text, 16) if text.startswith(("0x", "0X")) else int(text)


def parse_log(obj: dict) -> RawLog:
    """Normalize a JSON-RPC log object. Raises KeyError/ValueError/TypeError if malformed."""
    return RawLog(
        address=to_checksum_address(obj["address"]),
        topics=tuple(str(t).lower() for t in obj.get("topics") or []),
        data=str(obj.get("data") or "0x"),
        block_number=_quantity(obj["blockNumber"]),
        transaction_hash=str(obj["transactionHash"]).lower(),
        log_index=_quantity(obj["logIndex"]),
        block_hash=obj.get("blockHash"),
        removed=bool(obj.get("removed", False)),
    )


class LiveSubscription:
    """Handle for one live log filter registered on the streaming transport."""

    def __init__(self, link: ChainLink, sub_id: str, log_filter: LogFilter, on_lost: LostCallback) -> None:
        self.id = sub_id
        self.filter = log_filter
        self._link = link
        self._on_lost = on_lost
        self.active = True

    def _lost(self, reason: str) -> None:
        if not self.active:
            return
        self.active = False
        self._on_lost(reason)

    async def cancel(self) -> None:
        if not self.active:
            return
        self.active = False
        await self._link._unsubscribe(self)


class ChainLink:
    """Owns the node connection.

    Starts in streaming mode when a WebSocket transport is available. Any
    transport-level failure of the stream switches to the HTTP fallback for
    the rest of the process lifetime; live subscriptions are dropped and
    their owners notified.
    """

    def __init__(
        self,
        ws_url: str = "",
        http_url: str = "http://127.0.0.1:8545",
        request_timeout: float = 30.0,
        rpc_retries: int = 3,
        retry_backoff: float = 1.0,
        streaming: WebSocketTransport | None = None,
        fallback: HttpTransport | None = None,
    ) -> None:
        self._fallback = fallback or HttpTransport(http_url, request_timeout)
        self._streaming = streaming
        if self._streaming is None and ws_url:
            self._streaming = WebSocketTransport(ws_url, request_timeout)
        self._rpc_retries = max(1, rpc_retries)
        self._retry_backoff = retry_backoff
        self._live: dict[str, LiveSubscription] = {}

        if self._streaming is not None:
            self._streaming.add_failure_callback(self._on_stream_failure)
            self._mode = TransportMode.STREAMING
        else:
            self._mode = TransportMode.FALLBACK
            log.warning("No streaming endpoint configured; realtime delivery disabled")

    @property
    def mode(self) -> TransportMode:
        return self._mode

    def _transport(self):
        if self._mode == TransportMode.STREAMING:
            return self._streaming
        return self._fallback

    def _on_stream_failure(self, error: TransportError) -> None:
        self.downgrade(str(error))

    def downgrade(self, reason: str) -> None:
        """Switch to the fallback transport. There is no way back."""
        if self._mode == TransportMode.FALLBACK:
            return
        self._mode = TransportMode.FALLBACK
        log.warning(
            "Streaming transport unavailable (%s); using HTTP fallback for the rest "
            "of this process. Realtime delivery stopped for %d live filter(s).",
            reason, len(self._live),
        )
        live = list(self._live.values())
        self._live.clear()
        for sub in live:
            sub._lost(reason)

    async def _call(self, method: str, params: list) -> Any:
        attempt = 0
        delay = self._retry_backoff
        while True:
            transport = self._transport()
            try:
                return await transport.request(method, params)
            except TransportError as exc:
                if transport is self._streaming:
                    self.downgrade(f"{method} failed: {exc}")
                    continue
                error = QueryError(method, f"transport failure: {exc}")
            except QueryError as exc:
                error = exc

            attempt += 1
            if attempt >= self._rpc_retries:
                raise error
            log.warning(
                "%s failed (attempt %d/%d), retrying in %.1fs: %s",
                method, attempt, self._rpc_retries, delay, error,
            )
            await asyncio.sleep(delay)
            delay *= 2

    # ── Queries ────────────────────────────────────────────

    async def latest_height(self) -> int:
        result = await self._call("eth_blockNumber", [])
        try:
            return _quantity(result)
        except (TypeError, ValueError) as exc:
            raise QueryError("eth_blockNumber", f"bad block number {result!r}") from exc

    async def logs_in_range(self, from_block: int, to_block: int, log_filter: LogFilter) -> list[RawLog]:
        result = await self._call("eth_getLogs", [log_filter.to_rpc(from_block, to_block)])
        if not isinstance(result, list):
            raise QueryError("eth_getLogs", f"expected a list, got {type(result).__name__}")
        logs: list[RawLog] = []
        for obj in result:
            try:
                logs.append(parse_log(obj))
            except (KeyError, TypeError, ValueError) as exc:
                log.warning("Skipping malformed log in [%d, %d]: %s", from_block, to_block, exc)
        return logs

    # ── Live delivery ──────────────────────────────────────

    async def subscribe_live(
        self, log_filter: LogFilter, handler: LogHandler, on_lost: LostCallback,
    ) -> LiveSubscription | None:
        """Register a push filter. Returns None when live delivery is unavailable."""
        if self._mode != TransportMode.STREAMING:
            log.info("Live delivery unavailable in fallback mode for %s", log_filter.address)
            return None

        def _on_notification(result: Any) -> None:
            try:
                raw = parse_log(result)
            except (KeyError, TypeError, ValueError) as exc:
                log.warning("Ignoring malformed pushed log: %s", exc)
                return
            handler(raw)

        try:
            sub_id = await self._streaming.subscribe(["logs", log_filter.to_rpc()], _on_notification)
        except TransportError as exc:
            self.downgrade(f"eth_subscribe failed: {exc}")
            return None
        except QueryError as exc:
            log.warning("Node rejected live filter for %s: %s", log_filter.address, exc)
            return None

        if self._mode != TransportMode.STREAMING:
            return None
        live = LiveSubscription(self, sub_id, log_filter, on_lost)
        self._live[sub_id] = live
        return live

    async def _unsubscribe(self, live: LiveSubscription) -> None:
        self._live.pop(live.id, None)
        if self._mode == TransportMode.STREAMING:
            await self._streaming.unsubscribe(live.id)

    async def close(self) -> None:
        self._live.clear()
        if self._streaming is not None:
            await self._streaming.close()
        await self._fallback.close()
