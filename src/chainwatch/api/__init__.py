"""Collaborator API for an external request-handling layer."""

from chainwatch.api.watch_api import WatchAPI

__all__ = ["WatchAPI"]
