"""Chain connectivity: transports, failover link, and filter construction."""

from chainwatch.chain.filters import FilterBuilder
from chainwatch.chain.link import ChainLink, LiveSubscription, TransportMode, parse_log
from chainwatch.chain.transports import HttpTransport, WebSocketTransport

__all__ = [
    "FilterBuilder",
    "ChainLink", "LiveSubscription", "TransportMode", "parse_log",
    "HttpTransport", "WebSocketTransport",
]
