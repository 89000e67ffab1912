"""Web search result types shared by search providers."""

from typing import Any, Literal

from pydantic import BaseModel, Field

SearchSource = Literal["wikipedia", "duckduckgo", "extension"]


class SearchResult(BaseModel):
    """A single web search hit."""

    title: str
    snippet: str
    url: str
    source: SearchSource
    fetched_at: float | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)


class SearchOptions(BaseModel):
    """Per-search options; ``timeout`` overrides the configured call deadline in seconds."""

    max_results: int = 10
    timeout: float | None = None
