"""Configuration models for the daemon."""

from __future__ import annotations

from dataclasses import dataclass

DEFAULT_BATCH_SIZE = 2000  # stays under typical node eth_getLogs result caps


@dataclass
class DaemonConfig:
    """Complete daemon configuration."""

    # Daemon
    sync_interval: int = 5  # seconds between registry sync passes
    error_backoff: int = 30  # seconds
    log_level: str = "info"

    # Chain
    ws_url: str = "ws://127.0.0.1:8546"  # streaming transport; empty disables it
    http_url: str = "http://127.0.0.1:8545"  # fallback transport
    request_timeout: float = 30.0  # seconds per JSON-RPC request
    rpc_retries: int = 3
    retry_backoff: float = 1.0  # seconds, doubled per retry

    # Scanner
    batch_size: int = DEFAULT_BATCH_SIZE

    # Storage
    db_path: str = "~/.chainwatch/state.db"
