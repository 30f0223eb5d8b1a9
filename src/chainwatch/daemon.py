"""Main daemon loop - wires all components together."""

from __future__ import annotations

import asyncio
import logging
import signal

from chainwatch.api.watch_api import WatchAPI
from chainwatch.chain.link import ChainLink
from chainwatch.engine.dispatcher import Dispatcher, EventCallback
from chainwatch.engine.ingest import EventIngestor
from chainwatch.engine.manager import SubscriptionManager
from chainwatch.models.config import DaemonConfig
from chainwatch.storage.sqlite import SQLiteEventStore, SQLiteSubscriptionRegistry

log = logging.getLogger(__name__)


class WatcherDaemon:
    """Contract event watcher.

    Resumes every persisted subscription on boot, then keeps picking up
    subscriptions and rescan requests written to the registry by other
    processes (the CLI) until stopped.
    """

    def __init__(self, cfg: DaemonConfig) -> None:
        self._cfg = cfg
        self._running = False

        # Core components
        self.registry = SQLiteSubscriptionRegistry(cfg.db_path)
        self.events = SQLiteEventStore(cfg.db_path)
        self.link = ChainLink(
            ws_url=cfg.ws_url,
            http_url=cfg.http_url,
            request_timeout=cfg.request_timeout,
            rpc_retries=cfg.rpc_retries,
            retry_backoff=cfg.retry_backoff,
        )
        self.dispatcher = Dispatcher()
        self.ingestor = EventIngestor(self.events, self.dispatcher)
        self.manager = SubscriptionManager(
            self.registry, self.link, self.ingestor, batch_size=cfg.batch_size,
        )
        self.api = WatchAPI(
            self.manager, self.registry, self.events, self.link, self.dispatcher,
        )

    async def start(self) -> None:
        """Initialize components and run the main loop."""
        log.info("Starting chainwatch daemon")
        log.info("  Streaming: %s", self._cfg.ws_url or "(disabled)")
        log.info("  Fallback:  %s", self._cfg.http_url)
        log.info("  Batch:     %d blocks", self._cfg.batch_size)
        log.info("  DB:        %s", self._cfg.db_path)

        await self.registry.initialize()
        await self.events.initialize()

        self._running = True
        await self.manager.resume_all()

        try:
            await self._main_loop()
        finally:
            await self.manager.stop()
            await self.link.close()
            await self.events.close()
            await self.registry.close()
            log.info("Daemon shut down cleanly")

    async def stop(self) -> None:
        """Signal the daemon to stop gracefully."""
        log.info("Stop requested")
        self._running = False

    async def _main_loop(self) -> None:
        while self._running:
            try:
                await self.sync_once()
                await asyncio.sleep(self._cfg.sync_interval)
            except asyncio.CancelledError:
                log.info("Main loop cancelled")
                break
            except Exception as exc:
                log.error("Main loop error: %s", exc, exc_info=True)
                await asyncio.sleep(self._cfg.error_backoff)

    async def sync_once(self) -> None:
        """Start newly registered subscriptions and honor rescan requests."""
        for sub in await self.registry.list_all():
            if self.manager.start(sub):
                log.info("Picked up subscription %s (%s)", sub.id, sub.contract_address)

        for sub in await self.registry.pending_rescans():
            await self.manager.rescan(sub.id)


async def run_daemon(cfg: DaemonConfig, on_event: EventCallback | None = None) -> None:
    """Entry point for running the daemon."""
    daemon = WatcherDaemon(cfg)
    if on_event is not None:
        daemon.dispatcher.add_callback(on_event)

    loop = asyncio.get_running_loop()

    def _signal_handler():
        asyncio.ensure_future(daemon.stop())

    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, _signal_handler)
        except NotImplementedError:
            # Windows doesn't support add_signal_handler
            pass

    await daemon.start()
