"""
WebSocket channel for talking to the extension through a local relay.

The relay forwards every frame between this process and the extension's
native messaging host. Frames are JSON objects with the same envelope as the
in-page channel. Everything received over the connection is treated as coming
from this channel's own context.
"""

import asyncio
import json
from typing import TYPE_CHECKING, Any, Optional

import websockets

if TYPE_CHECKING:
    from websockets.asyncio.client import ClientConnection

from edgeai.bridge.channel import MessageChannel, MessageEvent
from edgeai.config.logging_config import get_logger


class WebSocketChannel(MessageChannel):
    """
    Message channel backed by a WebSocket connection.

    ``post`` is synchronous: messages go into an outbound queue that a send
    task drains while connected. Messages posted before ``connect`` are sent
    once the connection is up.

    Example:
        channel = WebSocketChannel("ws://127.0.0.1:7777")
        await channel.connect()
        bridge = ExtensionBridge(channel)
        ...
        await channel.close()
    """

    def __init__(self, url: str, context: str = "relay") -> None:
        super().__init__(context)
        self.url = url
        self.websocket: Optional["ClientConnection"] = None
        self.connected = False

        self._outbox: asyncio.Queue[dict[str, Any]] = asyncio.Queue()
        self._receive_task: Optional[asyncio.Task] = None
        self._send_task: Optional[asyncio.Task] = None

        self.log = get_logger(__name__)

    async def connect(self) -> bool:
        """
        Connect to the relay.

        Returns:
            True if connected successfully, False otherwise
        """
        try:
            self.log.info(f"Connecting to extension relay at {self.url}")
            self.websocket = await websockets.connect(self.url)
            self.connected = True

            self._receive_task = asyncio.create_task(self._receive_loop())
            self._send_task = asyncio.create_task(self._send_loop())

            self.log.info("Connected to extension relay")
            return True

        except (OSError, websockets.exceptions.WebSocketException) as e:
            self.log.error(f"Failed to connect to extension relay: {e}")
            self.connected = False
            return False

    async def close(self) -> None:
        """Stop background tasks and close the connection."""
        self.connected = False

        for task in (self._receive_task, self._send_task):
            if task:
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass
        self._receive_task = None
        self._send_task = None

        if self.websocket:
            await self.websocket.close()
            self.websocket = None

        self.log.info("Disconnected from extension relay")

    def post(self, message: dict[str, Any]) -> None:
        self._outbox.put_nowait(message)

    @property
    def pending_outbound(self) -> int:
        return self._outbox.qsize()

    async def _send_loop(self) -> None:
        """Drain the outbound queue onto the socket."""
        try:
            while self.connected and self.websocket:
                message = await self._outbox.get()
                try:
                    await self.websocket.send(json.dumps(message))
                    self.log.debug(f"Sent message: {message.get('type')}")
                except websockets.exceptions.ConnectionClosed:
                    self.log.warning(f"Relay connection closed; dropped {message.get('type')}")
                    self.connected = False
        except asyncio.CancelledError:
            pass

    async def _receive_loop(self) -> None:
        """Receive frames from the relay and fan them out to subscribers."""
        try:
            if not self.websocket:
                return

            async for frame in self.websocket:
                self._handle_frame(frame)

        except websockets.exceptions.ConnectionClosed:
            self.log.warning("Extension relay connection closed")
            self.connected = False
        except asyncio.CancelledError:
            pass

    def _handle_frame(self, frame: str | bytes) -> None:
        try:
            data = json.loads(frame)
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            self.log.warning(f"Ignoring non-JSON frame from relay: {e}")
            return
        self._dispatch(MessageEvent(data=data, context=self.context))

    def __repr__(self) -> str:
        state = "connected" if self.connected else "disconnected"
        return f"WebSocketChannel({self.url!r}, {state})"
