"""
Simulated browser extension for development and tests.

Listens on a :class:`BroadcastChannel` like the real extension's content
script: it answers probes, announces readiness and completes requests
according to a configurable behaviour.

Example usage:

    channel = BroadcastChannel()
    extension = SimulatedExtension(channel, permission_mode="permissive")
    bridge = ExtensionBridge(channel)
    await extension.wait_until_connected(bridge)
    response = await bridge.search("python asyncio")

    # Refuse every request as if the user clicked "deny"
    extension.behaviour = "deny"

    # Custom results based on the request
    def results_for(message_type, data):
        return [{"title": "Only result", "url": "https://example.com", "content": "..."}]

    extension = SimulatedExtension(channel, results_fn=results_for)
"""

import asyncio
import time
from typing import Any, Callable, Literal

from edgeai.bridge.channel import BroadcastChannel, MessageEvent
from edgeai.bridge.errors import RELOAD_SIGNATURE
from edgeai.bridge.protocol import EXTENSION_SOURCE, WEBAPP_SOURCE, PermissionMode, RequestType
from edgeai.config.logging_config import get_logger

log = get_logger(__name__)

Behaviour = Literal["respond", "deny", "error", "reload", "ignore"]
ResultsFn = Callable[[str, dict[str, Any]], list[dict[str, Any]]]

_REQUEST_TYPES = frozenset(t.value for t in RequestType)


def default_results(message_type: str, data: dict[str, Any]) -> list[dict[str, Any]]:
    """Deterministic fake pages for a request."""
    now = time.time() * 1000
    if message_type == RequestType.EXTRACT_URLS.value:
        urls = data.get("urls", [])
        return [
            {
                "title": f"Page {i + 1}",
                "url": url,
                "content": f"Extracted content of {url}",
                "wordCount": 4,
                "extractedAt": now,
            }
            for i, url in enumerate(urls)
        ]

    query = data.get("query", "")
    count = int(data.get("maxResults", 10))
    with_content = message_type == RequestType.SEARCH.value
    results = []
    for i in range(count):
        content = f"Content about {query} from source {i + 1}." if with_content else ""
        results.append(
            {
                "title": f"{query} - result {i + 1}",
                "url": f"https://example.com/{i + 1}",
                "content": content,
                "wordCount": len(content.split()),
                "extractedAt": now,
            }
        )
    return results


class SimulatedExtension:
    """
    In-process stand-in for the browser extension.

    Attributes:
        behaviour: How requests are completed: ``respond`` with results,
            ``deny`` them, fail with an ``error``, fail with the ``reload``
            signature, or ``ignore`` them entirely.
        announce_on_ping: Send CONNECTION_READY after every PONG.
        received: Every webapp message seen, in arrival order.
    """

    def __init__(
        self,
        channel: BroadcastChannel,
        permission_mode: PermissionMode = "ask",
        behaviour: Behaviour = "respond",
        results_fn: ResultsFn | None = None,
        error_message: str = "Search failed",
        deny_reason: str = "User denied the search request",
        announce_on_ping: bool = True,
        responsive: bool = True,
    ) -> None:
        self.channel = channel
        self.permission_mode = permission_mode
        self.behaviour = behaviour
        self.results_fn = results_fn or default_results
        self.error_message = error_message
        self.deny_reason = deny_reason
        self.announce_on_ping = announce_on_ping
        self.responsive = responsive
        self.received: list[dict[str, Any]] = []
        self._unsubscribe: Callable[[], None] | None = channel.subscribe(self._on_message)

    def detach(self) -> None:
        """Stop listening, as if the extension was removed."""
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    def send(self, message_type: str, data: dict[str, Any] | None = None) -> None:
        """Post a raw message from the extension."""
        message: dict[str, Any] = {"source": EXTENSION_SOURCE, "type": message_type}
        if data is not None:
            message["data"] = data
        self.channel.post(message)

    def announce(self) -> None:
        """Post CONNECTION_READY with the current permission mode."""
        self.send("CONNECTION_READY", {"permissionMode": self.permission_mode})

    def requests(self, message_type: str | None = None) -> list[dict[str, Any]]:
        """Return received request messages, optionally filtered by type."""
        return [
            m
            for m in self.received
            if m.get("type") in _REQUEST_TYPES and (message_type is None or m.get("type") == message_type)
        ]

    async def wait_until_connected(self, bridge: Any, timeout: float = 1.0) -> None:
        """Wait until ``bridge`` reports ``connected``."""
        async with asyncio.timeout(timeout):
            while not bridge.is_connected():
                await asyncio.sleep(0)

    def _on_message(self, event: MessageEvent) -> None:
        message = event.data
        if not isinstance(message, dict) or message.get("source") != WEBAPP_SOURCE:
            return
        self.received.append(message)
        if not self.responsive:
            return

        message_type = message.get("type")
        if message_type == "PING":
            self.send("PONG")
            if self.announce_on_ping:
                self.announce()
        elif message_type in _REQUEST_TYPES:
            self._complete(message_type, message.get("data") or {})

    def _complete(self, message_type: str, data: dict[str, Any]) -> None:
        request_id = data.get("requestId")
        log.debug(f"Simulated extension handling {message_type} ({request_id}) with {self.behaviour}")

        if self.behaviour == "ignore":
            return
        if self.behaviour == "deny":
            self.send("SEARCH_DENIED", {"requestId": request_id, "reason": self.deny_reason})
        elif self.behaviour == "error":
            self.send("SEARCH_ERROR", {"requestId": request_id, "error": self.error_message})
        elif self.behaviour == "reload":
            self.send("SEARCH_ERROR", {"requestId": request_id, "error": f"{RELOAD_SIGNATURE}: context invalidated"})
        else:
            results = self.results_fn(message_type, data)
            self.send("SEARCH_RESPONSE", {"requestId": request_id, "results": results})
