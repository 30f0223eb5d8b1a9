"""Configuration loading: TOML file + environment variables."""

from __future__ import annotations

import os
from pathlib import Path

try:
    import tomllib  # Python 3.11+
except ModuleNotFoundError:
    import tomli as tomllib  # type: ignore[no-redef]

from chainwatch.models.config import DaemonConfig


def load_config(
    config_path: str | Path | None = None,
    env_prefix: str = "CHAINWATCH_",
) -> DaemonConfig:
    """Load daemon configuration from a TOML file and env vars.

    Priority (highest wins):
        1. Environment variables (CHAINWATCH_WS_URL, etc.)
        2. TOML config file
        3. Defaults from DaemonConfig
    """
    raw: dict = {}
    if config_path is not None:
        p = Path(config_path).expanduser()
        if p.exists():
            with open(p, "rb") as f:
                raw = tomllib.load(f)

    cfg = DaemonConfig()

    # ── Daemon section ─────────────────────────────────────
    daemon = raw.get("daemon", {})
    if v := daemon.get("sync_interval"):
        cfg.sync_interval = int(v)
    if v := daemon.get("error_backoff"):
        cfg.error_backoff = int(v)
    if v := daemon.get("log_level"):
        cfg.log_level = str(v)

    # ── Chain section ──────────────────────────────────────
    chain = raw.get("chain", {})
    if "ws_url" in chain:
        cfg.ws_url = str(chain["ws_url"])  # "" disables streaming
    if v := chain.get("http_url"):
        cfg.http_url = str(v)
    if v := chain.get("request_timeout"):
        cfg.request_timeout = float(v)
    if v := chain.get("rpc_retries"):
        cfg.rpc_retries = int(v)
    if (v := chain.get("retry_backoff")) is not None:
        cfg.retry_backoff = float(v)

    # ── Scanner section ────────────────────────────────────
    scanner = raw.get("scanner", {})
    if v := scanner.get("batch_size"):
        cfg.batch_size = int(v)

    # ── Storage section ────────────────────────────────────
    storage = raw.get("storage", {})
    if v := storage.get("db_path"):
        cfg.db_path = str(v)

    # ── Environment variable overrides (highest priority) ──
    if (ws := os.environ.get(f"{env_prefix}WS_URL")) is not None:
        cfg.ws_url = ws
    if http := os.environ.get(f"{env_prefix}HTTP_URL"):
        cfg.http_url = http
    if db_path := os.environ.get(f"{env_prefix}DB_PATH"):
        cfg.db_path = db_path
    if level := os.environ.get(f"{env_prefix}LOG_LEVEL"):
        cfg.log_level = level
    if batch := os.environ.get(f"{env_prefix}BATCH_SIZE"):
        cfg.batch_size = int(batch)

    # Expand ~ in paths
    if cfg.db_path != ":memory:":
        cfg.db_path = str(Path(cfg.db_path).expanduser())

    return cfg
