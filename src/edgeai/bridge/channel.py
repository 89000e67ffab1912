"""
Message channels carrying bridge traffic.

A channel is a best-effort broadcast medium: every subscriber sees every
posted message, including its own, and messages from one sender arrive in
send order. Nothing is guaranteed to be delivered to anyone.
"""

import asyncio
import copy
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Callable

from edgeai.config.logging_config import get_logger

log = get_logger(__name__)


@dataclass(frozen=True)
class MessageEvent:
    """A message as observed by a subscriber."""

    data: Any
    # Identifier of the execution context (window) that posted the message
    context: str


MessageHandler = Callable[[MessageEvent], None]


class MessageChannel(ABC):
    """
    Broadcast channel shared with the extension.

    Subclasses implement :meth:`post`; subscription and fan-out to handlers
    are shared. A failing handler never prevents delivery to the others.
    """

    def __init__(self, context: str) -> None:
        self.context = context
        self._handlers: list[MessageHandler] = []

    @abstractmethod
    def post(self, message: dict[str, Any]) -> None:
        """Broadcast ``message``. Must not block."""

    def subscribe(self, handler: MessageHandler) -> Callable[[], None]:
        """Register ``handler`` for every delivered message; returns an unsubscribe callable."""
        self._handlers.append(handler)

        def unsubscribe() -> None:
            if handler in self._handlers:
                self._handlers.remove(handler)

        return unsubscribe

    @property
    def subscriber_count(self) -> int:
        return len(self._handlers)

    def _dispatch(self, event: MessageEvent) -> None:
        for handler in list(self._handlers):
            try:
                handler(event)
            except Exception as e:
                log.error(f"Message handler failed: {e}")


class BroadcastChannel(MessageChannel):
    """
    In-process broadcast channel modelled on a browser window's message bus.

    Messages are deep-copied on post (no shared memory between sender and
    receivers) and delivered on a later loop iteration via ``call_soon``,
    which keeps per-sender ordering. ``post`` must be called from a running
    event loop.

    Example:
        channel = BroadcastChannel()
        unsubscribe = channel.subscribe(lambda event: print(event.data))
        channel.post({"source": "edgeai-webapp", "type": "PING"})
    """

    def __init__(self, context: str = "main") -> None:
        super().__init__(context)

    def post(self, message: dict[str, Any], context: str | None = None) -> None:
        """
        Broadcast ``message``.

        Args:
            message: JSON-like dict to deliver.
            context: Originating context; defaults to this channel's own.
                     Frames embedded in the page post with their own context.
        """
        loop = asyncio.get_running_loop()
        event = MessageEvent(data=copy.deepcopy(message), context=context or self.context)
        loop.call_soon(self._dispatch, event)

    def __repr__(self) -> str:
        return f"BroadcastChannel(context={self.context!r}, subscribers={len(self._handlers)})"


__all__ = [
    "BroadcastChannel",
    "MessageChannel",
    "MessageEvent",
    "MessageHandler",
]
