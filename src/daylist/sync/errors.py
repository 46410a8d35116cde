"""Exceptions raised by the synchronization layer."""

from __future__ import annotations


class SyncError(Exception):
    """Base class for synchronization failures."""


class ChannelError(SyncError):
    """Raised when a channel is closed, unreachable or fails mid-session."""


class NotFound(SyncError):
    """Raised when the store reports a key as absent."""

    __slots__ = ("key",)

    def __init__(self, key: str) -> None:
        self.key = key
        super().__init__(f"Key {key!r} not found")


class Conflict(SyncError):
    """Raised when the store rejects a write because the key already exists."""

    __slots__ = ("key",)

    def __init__(self, key: str) -> None:
        self.key = key
        super().__init__(f"Key {key!r} already exists")


class ProtocolError(SyncError, ValueError):
    """Raised when an inbound frame or stored value cannot be decoded."""


class TokenAcquisitionFailure(SyncError):
    """Raised when a subscription token cannot be obtained."""


__all__ = [
    "ChannelError",
    "Conflict",
    "NotFound",
    "ProtocolError",
    "SyncError",
    "TokenAcquisitionFailure",
]
