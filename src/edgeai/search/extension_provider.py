"""
Browser extension search provider.

Runs web searches through the extension bridge and converts the pages the
extension returns into :class:`SearchResult` objects.
"""

from edgeai.bridge.bridge import ExtensionBridge
from edgeai.config.logging_config import get_logger
from edgeai.search.types import SearchOptions, SearchResult

log = get_logger(__name__)

SNIPPET_LENGTH = 200


class ExtensionSearchProvider:
    name = "extension"

    def __init__(self, bridge: ExtensionBridge | None) -> None:
        self.bridge = bridge

    async def search(self, query: str, options: SearchOptions | None = None) -> list[SearchResult]:
        """
        Search the web through the extension.

        Errors from the bridge (not connected, denied, timeout, ...) are
        logged and re-raised unchanged.
        """
        options = options or SearchOptions()
        log.info(f'Starting extension search for: "{query}"')

        if self.bridge is None:
            raise RuntimeError("Extension bridge not available")

        try:
            response = await self.bridge.search(query, options.max_results, timeout=options.timeout)
        except Exception as e:
            log.error(f"Extension search error: {e}")
            raise

        if not response.success:
            raise RuntimeError(response.error or "Search failed")

        results = [
            SearchResult(
                title=result.title,
                snippet=result.content[:SNIPPET_LENGTH] + "...",
                url=result.url,
                source="extension",
                fetched_at=result.extracted_at,
                metadata={
                    "word_count": result.word_count,
                    "full_content": result.content,
                },
            )
            for result in response.results
        ]

        log.info(f"Extension search found {len(results)} result(s)")
        return results

    async def is_available(self) -> bool:
        """Return True if the extension is currently connected."""
        if self.bridge is None:
            return False
        connected = self.bridge.is_connected()
        log.debug(f"Extension {'connected' if connected else 'not connected'}")
        return connected
