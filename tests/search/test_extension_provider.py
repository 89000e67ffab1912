import pytest

from edgeai.bridge.errors import CallDeniedError, CallTimeoutError, NotConnectedError
from edgeai.search.extension_provider import ExtensionSearchProvider
from edgeai.search.types import SearchOptions


def long_page(message_type, data):
    return [
        {
            "title": "Long page",
            "url": "https://example.com/long",
            "content": "x" * 500,
            "wordCount": 1,
            "extractedAt": 1700000000000,
        }
    ]


class TestExtensionSearchProvider:
    @pytest.mark.asyncio
    async def test_search_converts_results(self, connected_bridge, extension):
        extension.results_fn = long_page
        provider = ExtensionSearchProvider(connected_bridge)

        results = await provider.search("anything")

        assert len(results) == 1
        result = results[0]
        assert result.source == "extension"
        assert result.url == "https://example.com/long"
        assert result.snippet == "x" * 200 + "..."
        assert result.fetched_at == 1700000000000
        assert result.metadata == {"word_count": 1, "full_content": "x" * 500}

    @pytest.mark.asyncio
    async def test_search_respects_max_results(self, connected_bridge, extension):
        provider = ExtensionSearchProvider(connected_bridge)

        results = await provider.search("python", SearchOptions(max_results=4))

        assert len(results) == 4
        assert extension.requests("SEARCH_REQUEST")[-1]["data"]["maxResults"] == 4

    @pytest.mark.asyncio
    async def test_search_timeout_option(self, connected_bridge, extension):
        extension.behaviour = "ignore"
        provider = ExtensionSearchProvider(connected_bridge)

        with pytest.raises(CallTimeoutError) as exc_info:
            await provider.search("slow", SearchOptions(timeout=0.05))

        assert exc_info.value.timeout_seconds == 0.05
        assert connected_bridge.pending_count == 0

    @pytest.mark.asyncio
    async def test_search_without_bridge(self):
        provider = ExtensionSearchProvider(None)
        assert await provider.is_available() is False
        with pytest.raises(RuntimeError, match="not available"):
            await provider.search("q")

    @pytest.mark.asyncio
    async def test_bridge_errors_propagate(self, connected_bridge, extension):
        extension.behaviour = "deny"
        provider = ExtensionSearchProvider(connected_bridge)

        with pytest.raises(CallDeniedError):
            await provider.search("q")

    @pytest.mark.asyncio
    async def test_not_connected(self, bridge):
        provider = ExtensionSearchProvider(bridge)

        assert await provider.is_available() is False
        with pytest.raises(NotConnectedError):
            await provider.search("q")

    @pytest.mark.asyncio
    async def test_is_available(self, connected_bridge):
        assert await ExtensionSearchProvider(connected_bridge).is_available() is True
