"""LogSource protocol - the node operations the scanning engine depends on."""

from __future__ import annotations

from typing import Callable, Protocol

from chainwatch.models.records import LogFilter, RawLog


class LiveHandle(Protocol):
    active: bool

    async def cancel(self) -> None:
        ...


class LogSource(Protocol):
    """Latest height, ranged log queries and live log delivery."""

    async def latest_height(self) -> int:
        """Current chain head. Raises QueryError on failure."""
        ...

    async def logs_in_range(self, from_block: int, to_block: int, log_filter: LogFilter) -> list[RawLog]:
        """Logs matching ``log_filter`` in [from_block, to_block] inclusive."""
        ...

    async def subscribe_live(
        self,
        log_filter: LogFilter,
        handler: Callable[[RawLog], None],
        on_lost: Callable[[str], None],
    ) -> LiveHandle | None:
        """Register push delivery. None means live delivery is unavailable."""
        ...
