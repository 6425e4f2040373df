"""Error taxonomy for the stats engine.

Malformed server data and inconsistent local state are not exceptions:
decoders default every field and the reconciler logs and drops events it
cannot apply.
"""

from __future__ import annotations


class StatsError(Exception):
    """Base class for all failures surfaced to collaborators."""


class MissingCredentialError(StatsError):
    """No access key is available; network operations fail fast."""

    def __init__(self, operation: str = "") -> None:
        msg = "Access key not found"
        if operation:
            msg = f"{msg} ({operation})"
        super().__init__(msg)
        self.operation = operation


class TransportError(StatsError):
    """Channel not connected, request error, or non-success response."""

    def __init__(self, message: str, channel: str = "") -> None:
        super().__init__(message)
        self.channel = channel


class ImportValidationError(StatsError):
    """An import payload failed required-field or type checks."""

    def __init__(self, message: str, arena_id: str = "", player_id: str = "") -> None:
        super().__init__(message)
        self.arena_id = arena_id
        self.player_id = player_id
