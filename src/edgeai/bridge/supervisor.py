"""Connection state tracking and reconnection for the extension bridge."""

import asyncio
import enum
from typing import Callable

from edgeai.bridge.protocol import PermissionMode
from edgeai.config.logging_config import get_logger

log = get_logger(__name__)


class ConnectionStatus(str, enum.Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    ERROR = "error"


StatusListener = Callable[[ConnectionStatus], None]
ConnectedListener = Callable[[PermissionMode], None]


class ConnectionSupervisor:
    """
    Owns the bridge's connection status and drives reconnection.

    The supervisor never talks to the channel itself; ``probe`` is the
    bridge's callback that broadcasts a liveness probe. Status listeners are
    isolated from each other: an exception in one is logged and the rest
    still run.
    """

    def __init__(self, probe: Callable[[], None], reconnect_delay: float = 1.0) -> None:
        self._probe = probe
        self.reconnect_delay = reconnect_delay
        self._status = ConnectionStatus.DISCONNECTED
        self._permission_mode: PermissionMode = "ask"
        self._listeners: list[StatusListener] = []
        self._connected_listeners: list[ConnectedListener] = []
        self._reconnect_handle: asyncio.TimerHandle | None = None

    @property
    def status(self) -> ConnectionStatus:
        return self._status

    @property
    def permission_mode(self) -> PermissionMode:
        return self._permission_mode

    @property
    def reconnect_scheduled(self) -> bool:
        return self._reconnect_handle is not None

    def on_status_change(self, listener: StatusListener) -> Callable[[], None]:
        """
        Subscribe to status changes.

        The listener is called once immediately with the current status and
        then on every transition.

        Returns:
            A callable that removes the listener.
        """
        self._listeners.append(listener)
        self._call_listener(listener, self._status)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def on_connected(self, listener: ConnectedListener) -> Callable[[], None]:
        """Subscribe to connection announcements; receives the announced permission mode."""
        self._connected_listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._connected_listeners:
                self._connected_listeners.remove(listener)

        return unsubscribe

    def reconnect(self) -> None:
        """Move to ``connecting`` and send a liveness probe."""
        self._cancel_scheduled_reconnect()
        log.info("Reconnecting to extension...")
        self._transition(ConnectionStatus.CONNECTING)
        self._probe()

    def connection_ready(self, permission_mode: PermissionMode) -> None:
        """Handle the extension's readiness announcement."""
        self._permission_mode = permission_mode
        log.info(f"Extension connected (permission mode: {permission_mode})")
        self._transition(ConnectionStatus.CONNECTED)
        for listener in list(self._connected_listeners):
            try:
                listener(permission_mode)
            except Exception as e:
                log.error(f"Connection listener error: {e}")

    def peer_reloaded(self) -> None:
        """Handle a detected extension restart: disconnect and schedule a probe."""
        self._transition(ConnectionStatus.DISCONNECTED)
        if self.schedule_reconnect():
            log.info(f"Extension reloaded, reconnecting in {self.reconnect_delay:g}s")

    def mark_error(self, reason: str) -> None:
        """Record a protocol or integration failure distinct from a disconnect."""
        log.error(f"Extension bridge error: {reason}")
        self._transition(ConnectionStatus.ERROR)

    def schedule_reconnect(self) -> bool:
        """
        Schedule a single reconnect after ``reconnect_delay``.

        Returns:
            False if a reconnect is already scheduled.
        """
        if self._reconnect_handle is not None:
            return False
        loop = asyncio.get_running_loop()
        self._reconnect_handle = loop.call_later(self.reconnect_delay, self._scheduled_reconnect)
        return True

    def close(self) -> None:
        """Cancel any scheduled reconnect and drop all listeners."""
        self._cancel_scheduled_reconnect()
        self._listeners.clear()
        self._connected_listeners.clear()

    def _scheduled_reconnect(self) -> None:
        self._reconnect_handle = None
        self.reconnect()

    def _cancel_scheduled_reconnect(self) -> None:
        if self._reconnect_handle is not None:
            self._reconnect_handle.cancel()
            self._reconnect_handle = None

    def _transition(self, status: ConnectionStatus) -> None:
        old_status = self._status
        self._status = status
        if old_status is not status:
            log.info(f"Status changed: {old_status.value} -> {status.value}")
            for listener in list(self._listeners):
                self._call_listener(listener, status)

    @staticmethod
    def _call_listener(listener: StatusListener, status: ConnectionStatus) -> None:
        try:
            listener(status)
        except Exception as e:
            log.error(f"Status listener error: {e}")
