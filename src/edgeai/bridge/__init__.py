"""
Bridge to the companion browser extension.

This module lets the assistant request actions only the extension can
perform (web search, page extraction) over a best-effort message channel,
with correlated responses, per-call deadlines and automatic reconnection
after the extension restarts.
"""

from edgeai.bridge.bridge import ExtensionBridge
from edgeai.bridge.channel import BroadcastChannel, MessageChannel, MessageEvent
from edgeai.bridge.errors import (
    BridgeClosedError,
    BridgeError,
    CallDeniedError,
    CallTimeoutError,
    ExtensionReloadedError,
    NotConnectedError,
    RemoteCallError,
)
from edgeai.bridge.protocol import (
    ExtensionSearchResponse,
    ExtensionSearchResult,
    PermissionMode,
    RequestType,
)
from edgeai.bridge.supervisor import ConnectionStatus, ConnectionSupervisor
from edgeai.bridge.websocket_channel import WebSocketChannel

__all__ = [
    "BridgeClosedError",
    "BridgeError",
    "BroadcastChannel",
    "CallDeniedError",
    "CallTimeoutError",
    "ConnectionStatus",
    "ConnectionSupervisor",
    "ExtensionBridge",
    "ExtensionReloadedError",
    "ExtensionSearchResponse",
    "ExtensionSearchResult",
    "MessageChannel",
    "MessageEvent",
    "NotConnectedError",
    "PermissionMode",
    "RemoteCallError",
    "RequestType",
    "WebSocketChannel",
]
