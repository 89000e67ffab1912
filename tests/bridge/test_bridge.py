"""Tests for the extension bridge."""

import asyncio

import pytest

from edgeai.bridge.bridge import ExtensionBridge
from edgeai.bridge.channel import BroadcastChannel, MessageEvent
from edgeai.bridge.errors import (
    BridgeClosedError,
    CallDeniedError,
    CallTimeoutError,
    ExtensionReloadedError,
    NotConnectedError,
    RemoteCallError,
)
from edgeai.bridge.protocol import EXTENSION_SOURCE, RequestType, SearchResponseData
from edgeai.bridge.simulated import SimulatedExtension
from edgeai.bridge.supervisor import ConnectionStatus


async def settle(iterations: int = 5) -> None:
    for _ in range(iterations):
        await asyncio.sleep(0)


def extension_message(message_type: str, data: dict | None = None) -> dict:
    message = {"source": EXTENSION_SOURCE, "type": message_type}
    if data is not None:
        message["data"] = data
    return message


def record_messages(channel: BroadcastChannel) -> list[dict]:
    seen: list[dict] = []
    channel.subscribe(lambda event: seen.append(event.data))
    return seen


def pings(messages: list[dict]) -> int:
    return sum(1 for m in messages if m.get("type") == "PING")


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_construction_probes_for_extension(self, channel):
        seen = record_messages(channel)
        bridge = ExtensionBridge(channel)
        await settle()

        assert bridge.get_status() is ConnectionStatus.CONNECTING
        assert seen == [{"source": "edgeai-webapp", "type": "PING"}]
        bridge.cleanup()

    @pytest.mark.asyncio
    async def test_construction_without_start(self, channel):
        seen = record_messages(channel)
        bridge = ExtensionBridge(channel, start=False)
        await settle()

        assert bridge.get_status() is ConnectionStatus.DISCONNECTED
        assert seen == []
        bridge.cleanup()

    @pytest.mark.asyncio
    async def test_connection_ready_connects(self, channel, bridge):
        statuses: list[ConnectionStatus] = []
        bridge.on_status_change(statuses.append)
        other: list[ConnectionStatus] = []
        bridge.on_status_change(other.append)

        channel.post(extension_message("CONNECTION_READY", {"permissionMode": "ask"}))
        await settle()

        assert bridge.get_status() is ConnectionStatus.CONNECTED
        assert bridge.is_connected()
        assert bridge.get_permission_mode() == "ask"
        assert statuses == [ConnectionStatus.CONNECTING, ConnectionStatus.CONNECTED]
        assert other == [ConnectionStatus.CONNECTING, ConnectionStatus.CONNECTED]

    @pytest.mark.asyncio
    async def test_permissive_mode_and_connected_listener(self, channel, bridge):
        announced: list[str] = []
        bridge.on_connected(announced.append)

        channel.post(extension_message("CONNECTION_READY", {"permissionMode": "permissive"}))
        await settle()

        assert bridge.get_permission_mode() == "permissive"
        assert announced == ["permissive"]

    @pytest.mark.asyncio
    async def test_pong_does_not_connect(self, channel, bridge):
        channel.post(extension_message("PONG"))
        await settle()
        assert bridge.get_status() is ConnectionStatus.CONNECTING

    @pytest.mark.asyncio
    async def test_simulated_extension_connects(self, connected_bridge, extension):
        assert connected_bridge.is_connected()
        assert extension.received[0]["type"] == "PING"

    @pytest.mark.asyncio
    async def test_reconnect_is_idempotent(self, channel, connected_bridge):
        seen = record_messages(channel)
        statuses: list[ConnectionStatus] = []
        connected_bridge.on_status_change(statuses.append)

        connected_bridge.reconnect()
        connected_bridge.reconnect()

        assert connected_bridge.get_status() is ConnectionStatus.CONNECTING
        assert statuses == [ConnectionStatus.CONNECTED, ConnectionStatus.CONNECTING]
        await settle()
        assert pings(seen) == 2

    @pytest.mark.asyncio
    async def test_cleanup(self, channel, connected_bridge, extension):
        extension.behaviour = "ignore"
        statuses: list[ConnectionStatus] = []
        connected_bridge.on_status_change(statuses.append)
        subscribers = channel.subscriber_count

        pending = [
            asyncio.create_task(connected_bridge.call("search", {"query": f"q{i}"}, timeout=10))
            for i in range(3)
        ]
        await settle()
        assert connected_bridge.pending_count == 3

        connected_bridge.cleanup()

        for task in pending:
            with pytest.raises(BridgeClosedError, match="Bridge cleanup"):
                await task
        assert connected_bridge.pending_count == 0
        assert connected_bridge.closed
        assert channel.subscriber_count == subscribers - 1

        # Listeners were cleared
        channel.post(extension_message("CONNECTION_READY"))
        await settle()
        assert statuses == [ConnectionStatus.CONNECTED]

        with pytest.raises(BridgeClosedError):
            await connected_bridge.call("search", {"query": "late"})


class TestStatusListeners:
    @pytest.mark.asyncio
    async def test_immediate_notification_and_unsubscribe(self, channel, bridge):
        statuses: list[ConnectionStatus] = []
        unsubscribe = bridge.on_status_change(statuses.append)
        assert statuses == [ConnectionStatus.CONNECTING]

        unsubscribe()
        channel.post(extension_message("CONNECTION_READY"))
        await settle()

        assert statuses == [ConnectionStatus.CONNECTING]
        assert bridge.is_connected()

    @pytest.mark.asyncio
    async def test_listener_errors_are_isolated(self, channel, bridge):
        def broken(status: ConnectionStatus) -> None:
            raise RuntimeError("listener bug")

        statuses: list[ConnectionStatus] = []
        bridge.on_status_change(broken)
        bridge.on_status_change(statuses.append)

        channel.post(extension_message("CONNECTION_READY"))
        await settle()

        assert bridge.get_status() is ConnectionStatus.CONNECTED
        assert statuses == [ConnectionStatus.CONNECTING, ConnectionStatus.CONNECTED]


class TestSecurityBoundary:
    @pytest.mark.asyncio
    async def test_foreign_context_ignored(self, channel, bridge):
        channel.post(extension_message("CONNECTION_READY"), context="iframe")
        await settle()
        assert bridge.get_status() is ConnectionStatus.CONNECTING

    @pytest.mark.asyncio
    async def test_foreign_source_ignored(self, channel, bridge):
        channel.post({"source": "evil-extension", "type": "CONNECTION_READY"})
        channel.post({"source": "edgeai-webapp", "type": "CONNECTION_READY"})
        await settle()
        assert bridge.get_status() is ConnectionStatus.CONNECTING

    @pytest.mark.asyncio
    async def test_response_from_foreign_context_does_not_complete_call(self, channel, connected_bridge, extension):
        extension.behaviour = "ignore"
        task = asyncio.create_task(connected_bridge.call("search", {"query": "q"}, timeout=0.2))
        await settle()
        request_id = extension.requests()[-1]["data"]["requestId"]

        channel.post(
            extension_message("SEARCH_RESPONSE", {"requestId": request_id, "results": []}),
            context="iframe",
        )
        with pytest.raises(CallTimeoutError):
            await task

    @pytest.mark.asyncio
    async def test_malformed_messages_are_dropped(self, channel, connected_bridge):
        channel.post(extension_message("SEARCH_RESPONSE", {"results": "not a list"}))
        channel.post(extension_message("SEARCH_ERROR"))
        channel.post(["not", "a", "dict"])
        await settle()
        assert connected_bridge.is_connected()
        assert connected_bridge.pending_count == 0


class TestCall:
    @pytest.mark.asyncio
    async def test_success(self, connected_bridge, extension):
        data = await connected_bridge.call(RequestType.SEARCH, {"query": "python", "maxResults": 2}, timeout=0.05)

        assert isinstance(data, SearchResponseData)
        assert [r.url for r in data.results] == ["https://example.com/1", "https://example.com/2"]
        assert connected_bridge.pending_count == 0

        request = extension.requests("SEARCH_REQUEST")[0]
        assert request["data"]["query"] == "python"
        assert request["data"]["requestId"].startswith("search_")

        # Deadline passes without a late timeout surfacing anywhere
        await asyncio.sleep(0.1)
        assert connected_bridge.pending_count == 0

    @pytest.mark.asyncio
    async def test_timeout_without_peer(self, channel):
        """Disconnected bridge, no response within 100ms -> timeout, table empty."""
        bridge = ExtensionBridge(channel, start=False)
        assert bridge.get_status() is ConnectionStatus.DISCONNECTED

        with pytest.raises(CallTimeoutError) as exc_info:
            await bridge.call("search", {"query": "x"}, timeout=0.1)

        assert exc_info.value.timeout_seconds == 0.1
        assert bridge.pending_count == 0
        bridge.cleanup()

    @pytest.mark.asyncio
    async def test_late_response_is_discarded(self, channel, connected_bridge, extension):
        extension.behaviour = "ignore"
        with pytest.raises(CallTimeoutError):
            await connected_bridge.call("search_only", {"query": "slow"}, timeout=0.05)

        request_id = extension.requests()[-1]["data"]["requestId"]
        channel.post(extension_message("SEARCH_RESPONSE", {"requestId": request_id, "results": []}))
        channel.post(extension_message("SEARCH_ERROR", {"requestId": request_id, "error": "late"}))
        await settle()

        assert connected_bridge.pending_count == 0
        assert connected_bridge.is_connected()

    @pytest.mark.asyncio
    async def test_denied(self, connected_bridge, extension):
        extension.behaviour = "deny"
        with pytest.raises(CallDeniedError) as exc_info:
            await connected_bridge.call("search", {"query": "private"})
        assert exc_info.value.reason == "User denied the search request"
        assert connected_bridge.pending_count == 0

    @pytest.mark.asyncio
    async def test_denied_without_reason(self, channel, connected_bridge, extension):
        extension.behaviour = "ignore"
        task = asyncio.create_task(connected_bridge.call("search", {"query": "q"}))
        await settle()
        request_id = extension.requests()[-1]["data"]["requestId"]

        channel.post(extension_message("SEARCH_DENIED", {"requestId": request_id}))
        with pytest.raises(CallDeniedError, match="denied by user"):
            await task

    @pytest.mark.asyncio
    async def test_remote_error(self, connected_bridge, extension):
        extension.behaviour = "error"
        extension.error_message = "Search engine unreachable"

        with pytest.raises(RemoteCallError, match="Search engine unreachable") as exc_info:
            await connected_bridge.call("extract_urls", {"urls": ["https://example.com"]})

        assert not isinstance(exc_info.value, ExtensionReloadedError)
        assert connected_bridge.is_connected()

    @pytest.mark.asyncio
    async def test_duplicate_response_ignored(self, channel, connected_bridge, extension):
        extension.behaviour = "ignore"
        task = asyncio.create_task(connected_bridge.call("search", {"query": "q"}))
        await settle()
        request_id = extension.requests()[-1]["data"]["requestId"]

        channel.post(
            extension_message(
                "SEARCH_RESPONSE",
                {"requestId": request_id, "results": [{"url": "https://first.example"}]},
            )
        )
        channel.post(extension_message("SEARCH_ERROR", {"requestId": request_id, "error": "second"}))

        data = await task
        await settle()
        assert [r.url for r in data.results] == ["https://first.example"]

    @pytest.mark.asyncio
    async def test_responses_matched_by_correlation_id(self, channel, connected_bridge, extension):
        extension.behaviour = "ignore"
        tasks = [
            asyncio.create_task(connected_bridge.call("search", {"query": f"q{i}"}, timeout=1.0)) for i in range(3)
        ]
        await settle()
        requests = extension.requests()
        assert len(requests) == 3

        for request in reversed(requests):
            data = request["data"]
            channel.post(
                extension_message(
                    "SEARCH_RESPONSE",
                    {"requestId": data["requestId"], "results": [{"url": f"https://{data['query']}.example"}]},
                )
            )

        results = await asyncio.gather(*tasks)
        assert [r.results[0].url for r in results] == [
            "https://q0.example",
            "https://q1.example",
            "https://q2.example",
        ]

    @pytest.mark.asyncio
    async def test_deadlines_are_per_call(self, channel, connected_bridge, extension):
        extension.behaviour = "ignore"
        short = asyncio.create_task(connected_bridge.call("search", {"query": "short"}, timeout=0.05))
        long = asyncio.create_task(connected_bridge.call("search", {"query": "long"}, timeout=1.0))
        await settle()
        long_id = extension.requests()[-1]["data"]["requestId"]

        with pytest.raises(CallTimeoutError):
            await short
        assert not long.done()
        assert connected_bridge.pending_count == 1

        channel.post(extension_message("SEARCH_RESPONSE", {"requestId": long_id, "results": []}))
        data = await long
        assert data.results == []

    @pytest.mark.asyncio
    async def test_cancelled_call_is_removed(self, connected_bridge, extension):
        extension.behaviour = "ignore"
        task = asyncio.create_task(connected_bridge.call("search", {"query": "q"}, timeout=1.0))
        await settle()
        assert connected_bridge.pending_count == 1

        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
        assert connected_bridge.pending_count == 0

    @pytest.mark.asyncio
    async def test_invalid_kind_and_payload(self, connected_bridge):
        with pytest.raises(ValueError):
            await connected_bridge.call("delete_everything", {})
        with pytest.raises(ValueError):
            await connected_bridge.call("extract_urls", {"urls": "not-a-list"})
        assert connected_bridge.pending_count == 0

    @pytest.mark.asyncio
    async def test_post_failure_leaves_no_entry(self, channel, connected_bridge, monkeypatch):
        def broken_post(message):
            raise ConnectionError("channel gone")

        monkeypatch.setattr(channel, "post", broken_post)
        with pytest.raises(ConnectionError):
            await connected_bridge.call("search", {"query": "q"})
        assert connected_bridge.pending_count == 0


class TestReload:
    @pytest.mark.asyncio
    async def test_reload_error_disconnects_and_reconnects(self, channel, connected_bridge, extension):
        seen = record_messages(channel)
        statuses: list[ConnectionStatus] = []
        connected_bridge.on_status_change(statuses.append)
        extension.behaviour = "reload"

        with pytest.raises(ExtensionReloadedError, match="refresh the page"):
            await connected_bridge.call("search", {"query": "q"})

        assert connected_bridge.get_status() is ConnectionStatus.DISCONNECTED
        assert connected_bridge.supervisor.reconnect_scheduled
        assert pings(seen) == 0

        await asyncio.sleep(0.1)
        await settle()

        assert pings(seen) == 1
        assert statuses == [
            ConnectionStatus.CONNECTED,
            ConnectionStatus.DISCONNECTED,
            ConnectionStatus.CONNECTING,
            ConnectionStatus.CONNECTED,
        ]

    @pytest.mark.asyncio
    async def test_reload_schedules_exactly_one_probe(self, channel, connected_bridge, extension):
        seen = record_messages(channel)
        extension.behaviour = "reload"

        results = await asyncio.gather(
            connected_bridge.call("search", {"query": "a"}),
            connected_bridge.call("search", {"query": "b"}),
            return_exceptions=True,
        )
        assert all(isinstance(r, ExtensionReloadedError) for r in results)

        await asyncio.sleep(0.1)
        await settle()
        assert pings(seen) == 1

    @pytest.mark.asyncio
    async def test_reload_signature_without_pending_call(self, channel, connected_bridge):
        channel.post(extension_message("SEARCH_ERROR", {"requestId": "unknown", "error": "Extension was reloaded"}))
        await settle()
        assert connected_bridge.get_status() is ConnectionStatus.DISCONNECTED

    @pytest.mark.asyncio
    async def test_cleanup_cancels_scheduled_reconnect(self, channel, connected_bridge):
        seen = record_messages(channel)
        channel.post(extension_message("SEARCH_ERROR", {"requestId": "x", "error": "Extension was reloaded"}))
        await settle()
        assert connected_bridge.supervisor.reconnect_scheduled

        connected_bridge.cleanup()
        await asyncio.sleep(0.1)
        assert pings(seen) == 0


class TestConvenience:
    @pytest.mark.asyncio
    async def test_requires_connection(self, bridge):
        with pytest.raises(NotConnectedError):
            await bridge.search("q")
        with pytest.raises(NotConnectedError):
            await bridge.search_only("q")
        with pytest.raises(NotConnectedError, match="Extension not connected"):
            await bridge.extract_urls(["https://example.com"])
        assert bridge.pending_count == 0

    @pytest.mark.asyncio
    async def test_search(self, connected_bridge, extension):
        response = await connected_bridge.search("asyncio", max_results=3)

        assert response.success
        assert len(response.results) == 3
        assert all(r.content for r in response.results)
        assert extension.requests()[-1]["data"]["maxResults"] == 3

    @pytest.mark.asyncio
    async def test_search_only(self, connected_bridge, extension):
        response = await connected_bridge.search_only("asyncio")

        assert response.success
        assert len(response.results) == 10
        assert extension.requests()[-1]["type"] == "SEARCH_ONLY_REQUEST"

    @pytest.mark.asyncio
    async def test_extract_urls(self, connected_bridge, extension):
        urls = ["https://a.example", "https://b.example"]
        response = await connected_bridge.extract_urls(urls)

        assert [r.url for r in response.results] == urls
        assert extension.requests()[-1]["type"] == "EXTRACT_URLS_REQUEST"


class TestProbe:
    @pytest.mark.asyncio
    async def test_probe_answered(self, connected_bridge):
        assert await connected_bridge.probe(timeout=0.5) is True

    @pytest.mark.asyncio
    async def test_probe_unanswered(self, bridge):
        assert await bridge.probe(timeout=0.05) is False
        assert bridge.get_status() is ConnectionStatus.CONNECTING


class TestTimeoutPolicy:
    @pytest.mark.asyncio
    async def test_configured_defaults(self, bridge):
        assert bridge.get_timeout("PING") == 5
        assert bridge.get_timeout("search_only") == 30
        assert bridge.get_timeout(RequestType.SEARCH) == 60
        assert bridge.get_timeout("EXTRACT_URLS_REQUEST") == 60

    @pytest.mark.asyncio
    async def test_environment_override(self, channel, monkeypatch):
        monkeypatch.setenv("EXTENSION_SEARCH_TIMEOUT", "12.5")
        bridge = ExtensionBridge(channel, start=False)
        assert bridge.get_timeout("search") == 12.5
        bridge.cleanup()

    @pytest.mark.asyncio
    async def test_constructor_override(self, channel):
        bridge = ExtensionBridge(channel, start=False, timeouts={"search": 1.5, "PING": 0.5})
        assert bridge.get_timeout(RequestType.SEARCH) == 1.5
        assert bridge.get_timeout("PING") == 0.5
        assert bridge.get_timeout("search_only") == 30
        bridge.cleanup()


def test_message_event_is_frozen():
    event = MessageEvent(data={}, context="main")
    with pytest.raises(AttributeError):
        event.context = "other"  # type: ignore[misc]


class TestMalformedCompletions:
    @pytest.mark.asyncio
    async def test_invalid_results_are_skipped(self, channel, connected_bridge, extension):
        extension.behaviour = "ignore"
        task = asyncio.create_task(connected_bridge.call("search", {"query": "x"}, timeout=0.2))
        await settle()
        request_id = extension.requests()[-1]["data"]["requestId"]

        channel.post(
            extension_message(
                "SEARCH_RESPONSE",
                {
                    "requestId": request_id,
                    "results": [{"title": "t", "content": "c"}, {"url": "https://ok.example"}],
                },
            )
        )

        data = await asyncio.wait_for(task, timeout=0.1)
        assert [r.url for r in data.results] == ["https://ok.example"]

    @pytest.mark.asyncio
    async def test_unparseable_response_fails_call_immediately(self, channel, connected_bridge, extension):
        extension.behaviour = "ignore"
        task = asyncio.create_task(connected_bridge.call("search", {"query": "x"}, timeout=0.2))
        await settle()
        request_id = extension.requests()[-1]["data"]["requestId"]

        channel.post(extension_message("SEARCH_RESPONSE", {"requestId": request_id, "results": "oops"}))

        with pytest.raises(RemoteCallError, match="Malformed SEARCH_RESPONSE"):
            await asyncio.wait_for(task, timeout=0.1)
        assert connected_bridge.pending_count == 0

    @pytest.mark.asyncio
    async def test_unknown_permission_mode_still_connects(self, channel, bridge):
        channel.post(extension_message("CONNECTION_READY", {"permissionMode": "auto"}))
        await settle()

        assert bridge.get_status() is ConnectionStatus.CONNECTED
        assert bridge.get_permission_mode() == "ask"
