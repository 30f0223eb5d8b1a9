"""chainwatch - contract event watcher daemon for EVM chains."""

__version__ = "0.1.0"
