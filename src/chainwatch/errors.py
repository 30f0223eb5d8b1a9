"""Exception types raised across chainwatch components."""

from __future__ import annotations


class ChainwatchError(Exception):
    """Base class for all chainwatch errors."""


class TransportError(ChainwatchError):
    """The node connection is unreachable or the stream was dropped."""


class QueryError(ChainwatchError):
    """A JSON-RPC call failed (error payload, bad response, or timeout)."""

    def __init__(self, method: str, message: str, code: int | None = None) -> None:
        super().__init__(f"{method}: {message}")
        self.method = method
        self.code = code


class DecodeError(ChainwatchError):
    """A log could not be decoded against an interface descriptor."""


class NotFound(ChainwatchError):
    """No subscription exists with the given id."""

    def __init__(self, subscription_id: str) -> None:
        super().__init__(f"subscription not found: {subscription_id}")
        self.subscription_id = subscription_id


class InvalidSubscription(ChainwatchError):
    """A subscription request was rejected before being registered."""
