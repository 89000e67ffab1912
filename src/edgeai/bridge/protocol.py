"""
Extension bridge protocol message definitions.

Messages travel over a same-window broadcast channel as plain dicts of the
form ``{"source": ..., "type": ..., "data": {...}}`` with camelCase payload
keys. Everything received from the channel is untrusted; :func:`parse_inbound`
is the single point where a raw dict becomes one of the closed set of inbound
message models below.
"""

import enum
import uuid
from typing import Annotated, Any, Literal, Union, get_args

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError, field_validator
from pydantic.alias_generators import to_camel

from edgeai.config.logging_config import get_logger

log = get_logger(__name__)

WEBAPP_SOURCE = "edgeai-webapp"
EXTENSION_SOURCE = "edgeai-extension"

PermissionMode = Literal["ask", "permissive"]
PERMISSION_MODES = frozenset(get_args(PermissionMode))


class RequestType(str, enum.Enum):
    """Outbound request types that expect a correlated response."""

    SEARCH_ONLY = "SEARCH_ONLY_REQUEST"
    SEARCH = "SEARCH_REQUEST"
    EXTRACT_URLS = "EXTRACT_URLS_REQUEST"

    @property
    def id_prefix(self) -> str:
        return _ID_PREFIXES[self]

    @classmethod
    def from_kind(cls, kind: "str | RequestType") -> "RequestType":
        """Accept a RequestType, its wire value, or a short alias like ``"search"``."""
        if isinstance(kind, RequestType):
            return kind
        key = str(kind)
        if key in _ALIASES:
            return _ALIASES[key]
        try:
            return cls(key)
        except ValueError:
            raise ValueError(f"Unknown request kind: {kind!r}") from None


_ID_PREFIXES = {
    RequestType.SEARCH_ONLY: "search_only",
    RequestType.SEARCH: "search",
    RequestType.EXTRACT_URLS: "extract",
}

_ALIASES = {
    "search_only": RequestType.SEARCH_ONLY,
    "search": RequestType.SEARCH,
    "extract_urls": RequestType.EXTRACT_URLS,
    "extract": RequestType.EXTRACT_URLS,
}


def new_request_id(kind: RequestType) -> str:
    """Return a correlation id that is unique within the process."""
    return f"{kind.id_prefix}_{uuid.uuid4().hex}"


class WireModel(BaseModel):
    """Payload model using camelCase keys on the wire and snake_case in Python."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ---------------------------------------------------------------------------
# Payloads
# ---------------------------------------------------------------------------


class ExtensionSearchResult(WireModel):
    """A single page returned by the extension."""

    title: str = ""
    url: str
    content: str = ""
    word_count: int = 0
    extracted_at: float | None = None


class SearchQueryData(WireModel):
    request_id: str
    query: str
    max_results: int = 10


class ExtractUrlsData(WireModel):
    request_id: str
    urls: list[str]


class ConnectionReadyData(WireModel):
    permission_mode: PermissionMode = "ask"

    @field_validator("permission_mode", mode="before")
    @classmethod
    def _default_mode(cls, value: Any) -> Any:
        if not isinstance(value, str) or value not in PERMISSION_MODES:
            if value:
                log.warning(f"Unknown permission mode {value!r}, using 'ask'")
            return "ask"
        return value


class SearchResponseData(WireModel):
    request_id: str
    results: list[ExtensionSearchResult] = Field(default_factory=list)

    @field_validator("results", mode="before")
    @classmethod
    def _valid_results(cls, value: Any) -> Any:
        """Drop individual results that fail validation instead of the whole response."""
        if not value:
            return []
        if not isinstance(value, list):
            return value
        results = []
        for entry in value:
            try:
                results.append(ExtensionSearchResult.model_validate(entry))
            except ValidationError as e:
                log.warning(f"Skipping malformed search result: {e.error_count()} validation error(s)")
        return results


class SearchDeniedData(WireModel):
    request_id: str
    reason: str | None = None


class SearchErrorData(WireModel):
    request_id: str
    error: str | None = None


# ---------------------------------------------------------------------------
# Outbound messages (webapp -> extension)
# ---------------------------------------------------------------------------


class Ping(BaseModel):
    """Liveness probe."""

    source: Literal["edgeai-webapp"] = WEBAPP_SOURCE
    type: Literal["PING"] = "PING"


class SearchOnlyRequest(BaseModel):
    """Search without content extraction."""

    source: Literal["edgeai-webapp"] = WEBAPP_SOURCE
    type: Literal["SEARCH_ONLY_REQUEST"] = "SEARCH_ONLY_REQUEST"
    data: SearchQueryData


class SearchRequest(BaseModel):
    """Search including content extraction."""

    source: Literal["edgeai-webapp"] = WEBAPP_SOURCE
    type: Literal["SEARCH_REQUEST"] = "SEARCH_REQUEST"
    data: SearchQueryData


class ExtractUrlsRequest(BaseModel):
    """Content extraction for an explicit list of URLs."""

    source: Literal["edgeai-webapp"] = WEBAPP_SOURCE
    type: Literal["EXTRACT_URLS_REQUEST"] = "EXTRACT_URLS_REQUEST"
    data: ExtractUrlsData


OutboundMessage = Annotated[
    Union[Ping, SearchOnlyRequest, SearchRequest, ExtractUrlsRequest],
    Field(discriminator="type"),
]


# ---------------------------------------------------------------------------
# Inbound messages (extension -> webapp)
# ---------------------------------------------------------------------------


class Pong(BaseModel):
    """Probe acknowledgement."""

    source: Literal["edgeai-extension"] = EXTENSION_SOURCE
    type: Literal["PONG"] = "PONG"
    data: dict[str, Any] | None = None


class ConnectionReady(BaseModel):
    """The extension announces that it is available, along with its policy."""

    source: Literal["edgeai-extension"] = EXTENSION_SOURCE
    type: Literal["CONNECTION_READY"] = "CONNECTION_READY"
    data: ConnectionReadyData = Field(default_factory=ConnectionReadyData)

    @field_validator("data", mode="before")
    @classmethod
    def _default_data(cls, value: Any) -> Any:
        return value if value is not None else {}


class SearchResponse(BaseModel):
    """Successful completion of a request."""

    source: Literal["edgeai-extension"] = EXTENSION_SOURCE
    type: Literal["SEARCH_RESPONSE"] = "SEARCH_RESPONSE"
    data: SearchResponseData


class SearchDenied(BaseModel):
    """The user declined the request."""

    source: Literal["edgeai-extension"] = EXTENSION_SOURCE
    type: Literal["SEARCH_DENIED"] = "SEARCH_DENIED"
    data: SearchDeniedData


class SearchError(BaseModel):
    """The extension failed to execute the request."""

    source: Literal["edgeai-extension"] = EXTENSION_SOURCE
    type: Literal["SEARCH_ERROR"] = "SEARCH_ERROR"
    data: SearchErrorData


InboundMessage = Annotated[
    Union[Pong, ConnectionReady, SearchResponse, SearchDenied, SearchError],
    Field(discriminator="type"),
]

INBOUND_TYPES = frozenset({"PONG", "CONNECTION_READY", "SEARCH_RESPONSE", "SEARCH_DENIED", "SEARCH_ERROR"})
# Inbound types that complete a pending call
COMPLETION_TYPES = frozenset({"SEARCH_RESPONSE", "SEARCH_DENIED", "SEARCH_ERROR"})

_inbound_adapter: TypeAdapter[InboundMessage] = TypeAdapter(InboundMessage)
_outbound_adapter: TypeAdapter[OutboundMessage] = TypeAdapter(OutboundMessage)


class ExtensionSearchResponse(BaseModel):
    """Result of a search or extraction request."""

    success: bool
    results: list[ExtensionSearchResult] = Field(default_factory=list)
    error: str | None = None


def parse_inbound(raw: Any) -> InboundMessage | None:
    """
    Convert an untrusted channel payload into an inbound message.

    Returns None for anything that is not a well-formed message from the
    extension: foreign sources, unknown types and invalid payloads are all
    dropped here.
    """
    if not isinstance(raw, dict) or raw.get("source") != EXTENSION_SOURCE:
        return None

    msg_type = raw.get("type")
    if msg_type not in INBOUND_TYPES:
        log.debug(f"Ignoring unknown extension message type: {msg_type!r}")
        return None

    try:
        return _inbound_adapter.validate_python(raw)
    except ValidationError as e:
        log.warning(f"Dropping malformed {msg_type} message: {e.error_count()} validation error(s)")
        return None


def build_request(kind: RequestType, request_id: str, payload: dict[str, Any]) -> OutboundMessage:
    """Build a validated outbound request carrying ``request_id``."""
    return _outbound_adapter.validate_python(
        {
            "source": WEBAPP_SOURCE,
            "type": kind.value,
            "data": {**payload, "requestId": request_id},
        }
    )


def to_wire(message: BaseModel) -> dict[str, Any]:
    """Serialize a message to the dict posted on the channel."""
    return message.model_dump(mode="json", by_alias=True, exclude_none=True)


def correlation_id(raw: Any) -> str | None:
    """
    Return ``data.requestId`` of a raw completion message from the extension.

    Used to fail a pending call fast when its response arrives but does not
    validate. Returns None for anything else.
    """
    if not isinstance(raw, dict) or raw.get("source") != EXTENSION_SOURCE:
        return None
    if raw.get("type") not in COMPLETION_TYPES:
        return None
    data = raw.get("data")
    if not isinstance(data, dict):
        return None
    request_id = data.get("requestId")
    return request_id if isinstance(request_id, str) else None
