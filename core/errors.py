"""Plughost - Exception taxonomy."""

from __future__ import annotations


class PlughostError(Exception):
    """Base class for plugin host errors."""
    pass


class SpawnFailure(PlughostError):
    """Raised when a plugin process could not be started."""

    def __init__(self, plugin_name: str, reason: str):
        self.plugin_name = plugin_name
        self.reason = reason
        super().__init__(f"Plugin '{plugin_name}' failed to spawn: {reason}")


class DeliveryError(PlughostError):
    """Raised when a command could not be written to a plugin's stdin."""
    pass


# --- Protocol decode failures (recoverable, one line at a time) ---

class ProtocolError(PlughostError):
    pass


class MalformedMessage(ProtocolError):
    pass


class UnsupportedMessage(MalformedMessage):
    """Well-formed, but a shape the host does not accept (plugin responses)."""
    pass


class InvalidCorrelationId(MalformedMessage):
    pass


class UnknownMethod(ProtocolError):
    def __init__(self, method: str):
        self.method = method
        super().__init__(f"Unknown method: {safe_text(method)}")


class MissingCorrelationId(ProtocolError):
    def __init__(self, method: str):
        self.method = method
        super().__init__(f"Method {safe_text(method)!r} requires an id")


def safe_text(value: object, max_len: int = 200) -> str:
    """Sanitize plugin-controlled text for logging: strip CR/LF, truncate."""
    return str(value)[:max_len].replace('\r', ' ').replace('\n', ' ')
