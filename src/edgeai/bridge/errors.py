"""Exceptions raised by the extension bridge.

Every outcome of a bridge call other than success surfaces as one of these,
so callers can tell a user refusal apart from a failure or a timeout.
"""

RELOAD_SIGNATURE = "Extension was reloaded"


class BridgeError(Exception):
    """Base class for all extension bridge errors."""

    pass


class CallDeniedError(BridgeError):
    """The extension refused the request, typically because the user declined it."""

    def __init__(self, reason: str | None = None):
        self.reason = reason or "Search request denied by user"
        super().__init__(self.reason)


class RemoteCallError(BridgeError):
    """The extension reported a failure while executing the request."""

    def __init__(self, message: str | None = None):
        self.message = message or "Search failed"
        super().__init__(self.message)


class ExtensionReloadedError(RemoteCallError):
    """The extension was restarted while the request was in flight."""

    def __init__(self, message: str | None = None):
        super().__init__(message or f"{RELOAD_SIGNATURE}. Please refresh the page to reconnect.")


class CallTimeoutError(BridgeError):
    """No response arrived before the call's deadline."""

    def __init__(self, timeout_seconds: float, message: str | None = None):
        self.timeout_seconds = timeout_seconds
        self.message = message or f"Request timed out after {timeout_seconds}s"
        super().__init__(self.message)


class BridgeClosedError(BridgeError):
    """The bridge was torn down before the call completed."""

    def __init__(self, message: str = "Bridge cleanup"):
        super().__init__(message)


class NotConnectedError(BridgeError):
    """A request was made while the extension is not connected."""

    def __init__(self, message: str | None = None):
        super().__init__(
            message or "Extension not connected. Please install and enable the Edge.AI browser extension."
        )


def is_reload_error(error: str | None) -> bool:
    """Return True if a remote error message signals that the extension restarted."""
    return bool(error) and RELOAD_SIGNATURE in error


__all__ = [
    "RELOAD_SIGNATURE",
    "BridgeClosedError",
    "BridgeError",
    "CallDeniedError",
    "CallTimeoutError",
    "ExtensionReloadedError",
    "NotConnectedError",
    "RemoteCallError",
    "is_reload_error",
]
