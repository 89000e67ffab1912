"""
Extension bridge: correlated request/response calls to the browser extension.

Architecture:
1. The bridge subscribes to a message channel and broadcasts a PING.
2. The extension answers with PONG and announces itself with CONNECTION_READY,
   including whether it prompts the user before acting (permission mode).
3. Requests carry a correlation id in ``data.requestId``; the extension
   completes each one with SEARCH_RESPONSE, SEARCH_DENIED or SEARCH_ERROR.
4. Every call has its own deadline. A call resolves, is denied, fails or
   times out; exactly one of these happens.
5. A SEARCH_ERROR saying the extension was reloaded drops the connection and
   schedules a new probe.
"""

import asyncio
from typing import Any, Callable

from pydantic import ValidationError

from edgeai.bridge.channel import MessageChannel, MessageEvent
from edgeai.bridge.errors import (
    BridgeClosedError,
    CallDeniedError,
    ExtensionReloadedError,
    NotConnectedError,
    RemoteCallError,
    is_reload_error,
)
from edgeai.bridge.pending import PendingCall, PendingCallTable
from edgeai.bridge.protocol import (
    ConnectionReady,
    ExtensionSearchResponse,
    PermissionMode,
    Ping,
    Pong,
    RequestType,
    SearchDenied,
    SearchError,
    SearchResponse,
    SearchResponseData,
    build_request,
    correlation_id,
    new_request_id,
    parse_inbound,
    to_wire,
)
from edgeai.bridge.supervisor import (
    ConnectedListener,
    ConnectionStatus,
    ConnectionSupervisor,
    StatusListener,
)
from edgeai.config.environment import Environment
from edgeai.config.logging_config import get_logger

log = get_logger(__name__)


class ExtensionBridge:
    """
    Request/response bridge to the browser extension over a message channel.

    Construct it inside a running event loop with the channel it should use;
    unless ``start=False`` it immediately probes for the extension. Call
    :meth:`cleanup` at the end of its lifetime.

    Example:
        bridge = ExtensionBridge(BroadcastChannel())
        unsubscribe = bridge.on_status_change(print)
        response = await bridge.search("local llm inference", max_results=5)
    """

    def __init__(
        self,
        channel: MessageChannel,
        *,
        reconnect_delay: float | None = None,
        timeouts: dict[RequestType | str, float] | None = None,
        start: bool = True,
    ) -> None:
        """
        Args:
            channel: Channel shared with the extension.
            reconnect_delay: Seconds between a detected reload and the next
                probe. Defaults to ``EXTENSION_RECONNECT_DELAY``.
            timeouts: Per-request-type deadlines in seconds overriding the
                configured ones. Keys may be ``"PING"`` or request kinds.
            start: Send the initial probe right away.
        """
        self.channel = channel
        self._calls = PendingCallTable()
        self._supervisor = ConnectionSupervisor(
            probe=self._send_ping,
            reconnect_delay=(
                reconnect_delay if reconnect_delay is not None else Environment.get_reconnect_delay()
            ),
        )
        self._timeouts: dict[str, float] = {}
        for key, value in (timeouts or {}).items():
            wire_key = "PING" if key == "PING" else RequestType.from_kind(key).value
            self._timeouts[wire_key] = float(value)
        self._probe_waiters: list[asyncio.Future[bool]] = []
        self._closed = False

        self._handlers: dict[type, Callable[[Any], None]] = {
            Pong: self._handle_pong,
            ConnectionReady: self._handle_connection_ready,
            SearchResponse: self._handle_search_response,
            SearchDenied: self._handle_search_denied,
            SearchError: self._handle_search_error,
        }

        self._unsubscribe_channel: Callable[[], None] | None = channel.subscribe(self._on_message)

        if start:
            self.start()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Probe for the extension (``disconnected -> connecting``)."""
        self._supervisor.reconnect()

    def reconnect(self) -> None:
        """Force ``connecting`` and re-send the liveness probe."""
        if self._closed:
            log.warning("Ignoring reconnect on a closed bridge")
            return
        self._supervisor.reconnect()

    def cleanup(self) -> None:
        """
        Tear the bridge down.

        Rejects every outstanding call with :class:`BridgeClosedError`,
        cancels their timers and any scheduled reconnect, clears all
        listeners and detaches from the channel.
        """
        calls = self._calls.drain()
        for call in calls:
            call.reject(BridgeClosedError())
        for fut in self._probe_waiters:
            fut.cancel()
        self._probe_waiters.clear()
        self._supervisor.close()
        if self._unsubscribe_channel is not None:
            self._unsubscribe_channel()
            self._unsubscribe_channel = None
        self._closed = True
        log.info(f"Bridge cleaned up ({len(calls)} pending call(s) rejected)")

    @property
    def closed(self) -> bool:
        return self._closed

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    def get_status(self) -> ConnectionStatus:
        return self._supervisor.status

    def is_connected(self) -> bool:
        return self._supervisor.status is ConnectionStatus.CONNECTED

    def get_permission_mode(self) -> PermissionMode:
        return self._supervisor.permission_mode

    def on_status_change(self, listener: StatusListener) -> Callable[[], None]:
        """
        Register ``listener`` for status changes.

        It is invoked once immediately with the current status, then on every
        transition. Returns an unsubscribe function.
        """
        return self._supervisor.on_status_change(listener)

    def on_connected(self, listener: ConnectedListener) -> Callable[[], None]:
        """Register ``listener`` for CONNECTION_READY announcements (receives the permission mode)."""
        return self._supervisor.on_connected(listener)

    @property
    def supervisor(self) -> ConnectionSupervisor:
        return self._supervisor

    @property
    def pending_count(self) -> int:
        """Number of calls still waiting for an outcome."""
        return len(self._calls)

    def get_timeout(self, kind: RequestType | str) -> float:
        """Deadline in seconds applied to calls of ``kind``."""
        key = "PING" if kind == "PING" else RequestType.from_kind(kind).value
        if key in self._timeouts:
            return self._timeouts[key]
        return Environment.get_call_timeout(key)

    # ------------------------------------------------------------------
    # Calls
    # ------------------------------------------------------------------

    async def call(
        self,
        kind: RequestType | str,
        payload: dict[str, Any] | None = None,
        timeout: float | None = None,
    ) -> Any:
        """
        Send a request to the extension and wait for its outcome.

        Args:
            kind: Request type, its wire name, or an alias such as ``"search"``.
            payload: Request fields other than the correlation id.
            timeout: Deadline in seconds; defaults to the configured deadline for ``kind``.

        Returns:
            The response payload (:class:`SearchResponseData`).

        Raises:
            CallDeniedError: The extension refused the request.
            RemoteCallError: The extension failed to execute it.
            ExtensionReloadedError: The extension restarted meanwhile.
            CallTimeoutError: No response arrived before the deadline.
            BridgeClosedError: The bridge is or was torn down.
            ValueError: Unknown ``kind`` or invalid ``payload``.
        """
        if self._closed:
            raise BridgeClosedError()

        request_type = RequestType.from_kind(kind)
        request_id = new_request_id(request_type)
        try:
            message = build_request(request_type, request_id, payload or {})
        except ValidationError as e:
            raise ValueError(f"Invalid payload for {request_type.value}: {e}") from e

        deadline = timeout if timeout is not None else self.get_timeout(request_type)
        loop = asyncio.get_running_loop()
        call = PendingCall(
            request_id=request_id,
            kind=request_type.value,
            future=loop.create_future(),
            timeout_seconds=deadline,
        )
        self._calls.add(call)
        call.timer = loop.call_later(deadline, self._expire, request_id)

        try:
            self.channel.post(to_wire(message))
        except Exception:
            self._calls.pop(request_id)
            call.timer.cancel()
            raise
        log.debug(f"Sent {request_type.value} ({request_id}), deadline {deadline:g}s")

        try:
            return await call.future
        except asyncio.CancelledError:
            # Local cancellation only; the extension may still run the request
            if self._calls.pop(request_id) is not None and call.timer is not None:
                call.timer.cancel()
                call.timer = None
            raise

    async def search_only(
        self, query: str, max_results: int = 10, timeout: float | None = None
    ) -> ExtensionSearchResponse:
        """Search without extracting page content."""
        self._require_connected()
        log.info(f"Requesting search only: {query}")
        data = await self.call(RequestType.SEARCH_ONLY, {"query": query, "maxResults": max_results}, timeout)
        return ExtensionSearchResponse(success=True, results=data.results)

    async def search(
        self, query: str, max_results: int = 10, timeout: float | None = None
    ) -> ExtensionSearchResponse:
        """Search and extract the content of the result pages."""
        self._require_connected()
        log.info(f"Requesting search: {query}")
        data = await self.call(RequestType.SEARCH, {"query": query, "maxResults": max_results}, timeout)
        return ExtensionSearchResponse(success=True, results=data.results)

    async def extract_urls(self, urls: list[str], timeout: float | None = None) -> ExtensionSearchResponse:
        """Extract the content of specific URLs."""
        self._require_connected("Extension not connected.")
        log.info(f"Requesting extraction for {len(urls)} URL(s)")
        data = await self.call(RequestType.EXTRACT_URLS, {"urls": urls}, timeout)
        return ExtensionSearchResponse(success=True, results=data.results)

    async def probe(self, timeout: float | None = None) -> bool:
        """
        Send a liveness probe and wait for any acknowledgement.

        Returns:
            True if the extension answered with PONG or CONNECTION_READY
            before the deadline, False otherwise.
        """
        if self._closed:
            raise BridgeClosedError()
        deadline = timeout if timeout is not None else self.get_timeout("PING")
        fut: asyncio.Future[bool] = asyncio.get_running_loop().create_future()
        self._probe_waiters.append(fut)
        self._send_ping()
        try:
            return await asyncio.wait_for(fut, timeout=deadline)
        except asyncio.TimeoutError:
            return False
        finally:
            if fut in self._probe_waiters:
                self._probe_waiters.remove(fut)

    def _require_connected(self, message: str | None = None) -> None:
        if self._closed:
            raise BridgeClosedError()
        if not self.is_connected():
            raise NotConnectedError(message)

    def _send_ping(self) -> None:
        log.debug("Checking for extension...")
        self.channel.post(to_wire(Ping()))

    def _expire(self, request_id: str) -> None:
        call = self._calls.pop(request_id)
        if call is None:
            return
        call.timer = None
        if call.time_out():
            log.warning(f"{call.kind} {request_id} timed out after {call.timeout_seconds:g}s")

    # ------------------------------------------------------------------
    # Inbound messages
    # ------------------------------------------------------------------

    def _on_message(self, event: MessageEvent) -> None:
        if self._closed:
            return
        # Only messages posted from our own context are trusted
        if event.context != self.channel.context:
            return
        message = parse_inbound(event.data)
        if message is None:
            self._fail_malformed(event.data)
            return
        log.debug(f"Received: {message.type}")
        self._handlers[type(message)](message)

    def _fail_malformed(self, raw: Any) -> None:
        request_id = correlation_id(raw)
        if request_id is None:
            return
        call = self._calls.pop(request_id)
        if call is None:
            return
        message_type = raw["type"]
        log.error(f"Malformed {message_type} for {request_id}")
        call.reject(RemoteCallError(f"Malformed {message_type} message from extension"))

    def _resolve_probes(self) -> None:
        for fut in self._probe_waiters:
            if not fut.done():
                fut.set_result(True)

    def _handle_pong(self, message: Pong) -> None:
        # Status only changes on CONNECTION_READY
        log.debug("Extension responded to ping")
        self._resolve_probes()

    def _handle_connection_ready(self, message: ConnectionReady) -> None:
        self._supervisor.connection_ready(message.data.permission_mode)
        self._resolve_probes()

    def _take(self, request_id: str, message_type: str) -> PendingCall | None:
        call = self._calls.pop(request_id)
        if call is None:
            log.warning(f"No pending request for {message_type}: {request_id}")
        return call

    def _handle_search_response(self, message: SearchResponse) -> None:
        data: SearchResponseData = message.data
        call = self._take(data.request_id, message.type)
        if call is None:
            return
        log.info(f"Request completed: {len(data.results)} result(s)")
        call.resolve(data)

    def _handle_search_denied(self, message: SearchDenied) -> None:
        call = self._take(message.data.request_id, message.type)
        if call is None:
            return
        log.info(f"Request denied: {message.data.reason}")
        call.reject(CallDeniedError(message.data.reason))

    def _handle_search_error(self, message: SearchError) -> None:
        error = message.data.error
        reloaded = is_reload_error(error)
        if reloaded:
            self._supervisor.peer_reloaded()

        call = self._take(message.data.request_id, message.type)
        if call is None:
            return
        log.error(f"Request failed: {error}")
        if reloaded:
            call.reject(ExtensionReloadedError())
        else:
            call.reject(RemoteCallError(error))

    def __repr__(self) -> str:
        return f"ExtensionBridge(status={self.get_status().value}, pending={len(self._calls)})"
