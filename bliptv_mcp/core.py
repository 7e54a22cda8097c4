"""
Core business logic for the blip.tv MCP Server.

This module contains all shared code used by both STDIO and SSE transports:
- Constants
- Enums
- Pydantic models (request records, client config, tool inputs, results)
- Query building and the HTTP transport
- The BlipTVClient tying builder, transport and normalizers together
- Formatting helpers
"""

import logging
from enum import Enum
from types import MappingProxyType
from typing import Annotated, Any, Awaitable, Callable, Dict, List, Literal, Optional, Union
from urllib.parse import urlencode

import httpx
from pydantic import BaseModel, ConfigDict, Field, TypeAdapter

from .errors import ErrorKind, NormalizationError
from .parsers import NormalizedJson, RawPayload, normalize_response

logger = logging.getLogger(__name__)


# ============================================================================
# CONSTANTS
# ============================================================================

BLIP_HOST = "blip.tv"
BLIP_SCHEME = "http"
USER_AGENT = "bliptv-mcp/1.0"
REQUEST_TIMEOUT = 30.0
DEFAULT_JSON_VERSION = 3
CHARACTER_LIMIT = 25000

# Logical parameter name -> wire name. Order is the query string order.
PARAMETER_TRANSLATION = MappingProxyType({
    "count": "pagelen",
    "id": "id",
    "search": "search",
    "page": "page",
    "sort": "sort",
    "filetype": "file_type",
    "license": "license",
    "tags": "topic_name",
    "language": "language_code",
    "categories": "categories_id",
})

POST_ONLY_PARAMETERS = frozenset(
    {"count", "filetype", "tags", "license", "language", "sort", "categories"}
)


# ============================================================================
# ENUMS
# ============================================================================

class Section(str, Enum):
    """Resource sections known to the blip.tv API."""
    POPULAR = "popular"
    RECENT = "recent"
    RANDOM = "random"
    FEATURED = "featured"
    POSTS = "posts"
    FILE = "file"
    SEARCH = "search"
    LICENSES = "licenses"


class DataType(str, Enum):
    """Response skin: pseudo-JSON, XML (``api``) or RSS."""
    JSON = "json"
    API = "api"
    RSS = "rss"


class ResponseFormat(str, Enum):
    """Output format for tool responses."""
    MARKDOWN = "markdown"
    JSON = "json"


BROWSE_SECTIONS = frozenset(
    {Section.POPULAR, Section.RECENT, Section.RANDOM, Section.FEATURED, Section.POSTS}
)

# Sections whose JSON skin is unusable; always requested as XML
XML_ONLY_SECTIONS = frozenset({Section.LICENSES})

SECTION_PARAMETERS = MappingProxyType({
    Section.POPULAR: frozenset({"page"}),
    Section.RECENT: frozenset({"page"}),
    Section.RANDOM: frozenset({"page"}),
    Section.FEATURED: frozenset({"page"}),
    Section.POSTS: frozenset({"page"}) | POST_ONLY_PARAMETERS,
    Section.FILE: frozenset({"id", "page"}),
    Section.SEARCH: frozenset({"search", "page"}),
    Section.LICENSES: frozenset({"page"}),
})


# ============================================================================
# PYDANTIC MODELS
# ============================================================================

class ClientConfig(BaseModel):
    """Connection settings for a BlipTVClient."""
    model_config = ConfigDict(frozen=True, extra='forbid')

    host: str = Field(default=BLIP_HOST, description="API host without scheme or subdomain")
    scheme: str = Field(default=BLIP_SCHEME, pattern=r'^https?$')
    timeout: float = Field(default=REQUEST_TIMEOUT, gt=0)
    user_agent: str = Field(default=USER_AGENT, min_length=1)


class RequestDescriptor(BaseModel):
    """A fully validated request: section, optional command, channel and parameters."""
    model_config = ConfigDict(frozen=True, extra='forbid')

    section: Section
    command: Optional[str] = None
    channel: Optional[str] = None
    parameters: Dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def for_section(
        cls,
        section: Union[Section, str],
        parameters: Optional[Dict[str, Any]] = None,
        command: Optional[str] = None,
        channel: Optional[str] = None,
    ) -> "RequestDescriptor":
        """Build a descriptor, silently dropping parameters the section does not accept."""
        section = Section(section)
        parameters = parameters or {}
        allowed = SECTION_PARAMETERS[section]
        kept = {key: value for key, value in parameters.items() if key in allowed}

        dropped = sorted(set(parameters) - set(kept))
        if dropped:
            logger.debug("Dropping parameters %s not accepted by section %s", dropped, section.value)

        return cls(
            section=section,
            command=command or None,
            channel=(channel or None) if section == Section.POSTS else None,
            parameters=kept,
        )


class _SectionParams(BaseModel):
    model_config = ConfigDict(
        str_strip_whitespace=True,
        extra='forbid',
        frozen=True
    )

    command: Optional[str] = Field(
        default=None,
        description="Optional command path segment, usually 'view'."
    )

    page: Optional[int] = Field(
        default=None,
        description="Page number of results to retrieve.",
        ge=1
    )

    def to_descriptor(self) -> RequestDescriptor:
        parameters = self.model_dump(exclude={"section", "command", "channel"}, exclude_none=True)
        return RequestDescriptor.for_section(
            self.section,
            parameters,
            command=self.command,
            channel=getattr(self, "channel", None),
        )


class BrowseParams(_SectionParams):
    """Browse one of the site-wide listings. Only ``page`` is accepted."""
    section: Literal["popular", "recent", "random", "featured"]


class PostsParams(_SectionParams):
    """Browse posts, optionally for a single channel, with filters."""
    section: Literal["posts"] = "posts"

    channel: Optional[str] = Field(
        default=None,
        description="User/channel name; used as the request subdomain.",
        max_length=100
    )
    count: Optional[int] = Field(default=None, description="Number of posts to fetch.", ge=1)
    filetype: Optional[List[str]] = Field(default=None, description="File formats, e.g. ['flv', 'm4v'].")
    tags: Optional[List[str]] = Field(default=None, description="Tags to filter by.")
    license: Optional[List[str]] = Field(default=None, description="License ids to filter by.")
    language: Optional[str] = Field(default=None, description="Two letter language code.", pattern=r'^[a-zA-Z]{2}$')
    sort: Optional[str] = Field(default=None, description="Sort method: 'date', 'popularity' or 'random'.")
    categories: Optional[List[str]] = Field(default=None, description="Category ids to filter by.")


class SearchParams(_SectionParams):
    """Full text search over all posts."""
    section: Literal["search"] = "search"
    search: str = Field(..., min_length=1, max_length=500)


class FileParams(_SectionParams):
    """Details of a single file."""
    section: Literal["file"] = "file"
    id: int = Field(..., ge=1)


class LicensesParams(_SectionParams):
    """Licenses available on blip.tv. The request fails without ``cmd=view``."""
    section: Literal["licenses"] = "licenses"
    command: Optional[str] = "view"


BlipRequest = Annotated[
    Union[BrowseParams, PostsParams, SearchParams, FileParams, LicensesParams],
    Field(discriminator="section"),
]

request_adapter = TypeAdapter(BlipRequest)


class BlipResult(BaseModel):
    """
    Outcome of a single client operation.

    ``data`` is the raw text for the XML skins and the list of records for the
    JSON skin. ``pagination`` is None when the protocol version does not embed
    it; it is never an empty mapping standing in for "not applicable".
    """
    ok: bool
    request_url: str
    data: Any = None
    pagination: Optional[Dict[str, str]] = None
    error: Optional[str] = None
    error_kind: Optional[ErrorKind] = None

    @classmethod
    def failure(cls, request_url: str, error: NormalizationError) -> "BlipResult":
        return cls(
            ok=False,
            request_url=request_url,
            error=str(error),
            error_kind=error.kind,
        )


class BrowseVideosInput(BaseModel):
    """Input model for browsing blip.tv listings."""
    model_config = ConfigDict(
        str_strip_whitespace=True,
        validate_assignment=True,
        extra='forbid'
    )

    section: Literal["popular", "recent", "random", "featured", "posts"] = Field(
        default="recent",
        description="Listing to browse: 'popular', 'recent', 'random', 'featured' or 'posts'. Filters below only apply to 'posts'."
    )

    channel: Optional[str] = Field(
        default=None,
        description="Channel (user) name to restrict 'posts' to. Example: 'mercyscross'.",
        max_length=100
    )

    page: Optional[int] = Field(default=None, description="Page number to retrieve.", ge=1)

    count: Optional[int] = Field(
        default=None,
        description="Number of posts per page ('posts' only).",
        ge=1,
        le=100
    )

    tags: Optional[List[str]] = Field(default=None, description="Tags to filter by ('posts' only).", max_length=20)

    file_types: Optional[List[str]] = Field(
        default=None,
        description="File formats to filter by, e.g. ['flv', 'mov', 'm4v'] ('posts' only).",
        max_length=10
    )

    licenses: Optional[List[str]] = Field(default=None, description="License ids to filter by ('posts' only).", max_length=10)

    language: Optional[str] = Field(
        default=None,
        description="Two letter language code ('posts' only). Example: 'en'.",
        pattern=r'^[a-zA-Z]{2}$'
    )

    sort: Optional[str] = Field(default=None, description="Sort method: 'date', 'popularity' or 'random' ('posts' only).")

    categories: Optional[List[str]] = Field(default=None, description="Category ids to filter by ('posts' only).", max_length=10)

    response_format: ResponseFormat = Field(
        default=ResponseFormat.MARKDOWN,
        description="Output format: 'markdown' for human-readable format (default), 'json' for machine-readable structured data."
    )

    def to_request(self) -> Union[BrowseParams, PostsParams]:
        if self.section != Section.POSTS.value:
            return BrowseParams(section=self.section, page=self.page)
        return PostsParams(
            channel=self.channel,
            page=self.page,
            count=self.count,
            tags=self.tags,
            filetype=self.file_types,
            license=self.licenses,
            language=self.language,
            sort=self.sort,
            categories=self.categories,
        )


class SearchVideosInput(BaseModel):
    """Input model for searching blip.tv videos."""
    model_config = ConfigDict(
        str_strip_whitespace=True,
        validate_assignment=True,
        extra='forbid'
    )

    query: str = Field(
        ...,
        description="Search terms. Examples: 'hail storm', 'cooking show'.",
        min_length=1,
        max_length=500
    )

    page: Optional[int] = Field(default=None, description="Page number of results.", ge=1)

    response_format: ResponseFormat = Field(
        default=ResponseFormat.MARKDOWN,
        description="Output format: 'markdown' for human-readable (default), 'json' for machine-readable."
    )


class VideoDetailsInput(BaseModel):
    """Input model for retrieving a single file's details."""
    model_config = ConfigDict(
        str_strip_whitespace=True,
        validate_assignment=True,
        extra='forbid'
    )

    file_id: int = Field(..., description="Numeric blip.tv file id. Example: 4011705.", ge=1)

    response_format: ResponseFormat = Field(
        default=ResponseFormat.MARKDOWN,
        description="Output format: 'markdown' for human-readable (default), 'json' for machine-readable."
    )


# ============================================================================
# QUERY BUILDING
# ============================================================================

def _wire_value(value: Any) -> str:
    if not value:
        return ""
    if isinstance(value, Enum):
        value = value.value
    if isinstance(value, (list, tuple)):
        return ",".join(str(item) for item in value if item)
    return str(value)


def build_query_params(
    descriptor: RequestDescriptor,
    data_type: Union[DataType, str],
    version: int = DEFAULT_JSON_VERSION,
) -> Dict[str, Any]:
    """Translate descriptor parameters to wire names, omitting empty values."""
    data_type = DataType(data_type)
    params: Dict[str, Any] = {"skin": data_type.value}

    if data_type == DataType.JSON:
        params["version"] = version

    for name, wire_name in PARAMETER_TRANSLATION.items():
        value = _wire_value(descriptor.parameters.get(name))
        if value:
            params[wire_name] = value

    return params


def build_query_url(
    descriptor: RequestDescriptor,
    data_type: Union[DataType, str],
    version: int = DEFAULT_JSON_VERSION,
    config: Optional[ClientConfig] = None,
) -> str:
    """
    Build the request URL for a descriptor.

    Shape: ``scheme://[channel.]host/<section>/[<command>/]?<query>``

    Args:
        descriptor: Validated request
        data_type: Response skin to request
        version: JSON protocol version, only sent for the JSON skin
        config: Host and scheme overrides

    Returns:
        The complete request URL
    """
    config = config or ClientConfig()
    host = f"{descriptor.channel}.{config.host}" if descriptor.channel else config.host

    url = f"{config.scheme}://{host}/{descriptor.section.value}/"
    if descriptor.command:
        url += f"{descriptor.command}/"

    query = urlencode(build_query_params(descriptor, data_type, version))
    return f"{url}?{query}"


# ============================================================================
# TRANSPORT
# ============================================================================

Fetcher = Callable[[str], Awaitable[RawPayload]]


async def make_api_request(
    url: str,
    timeout: float = REQUEST_TIMEOUT,
    user_agent: str = USER_AGENT,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> Optional[bytes]:
    """GET ``url`` and return the body, or None if the request failed."""
    async with httpx.AsyncClient(
        timeout=timeout,
        headers={"User-Agent": user_agent},
        follow_redirects=True,
        transport=transport,
    ) as client:
        try:
            response = await client.get(url)
            response.raise_for_status()
            return response.content
        except httpx.HTTPStatusError as e:
            logger.warning("blip.tv returned %s for %s", e.response.status_code, url)
        except httpx.RequestError as e:
            logger.warning("Network error requesting %s: %s", url, e)
    return None


# ============================================================================
# CLIENT
# ============================================================================

class BlipTVClient:
    """
    Client for the blip.tv Video Details, Video Browsing, Search and
    Licenses APIs.

    Every operation performs one GET and returns a BlipResult; failures are
    reported in the result, never raised. The client holds no per-request
    state, but callers sharing an instance across tasks still get one
    request per call and no coordination between them.
    """

    def __init__(
        self,
        data_type: Union[DataType, str] = DataType.JSON,
        version: int = DEFAULT_JSON_VERSION,
        config: Optional[ClientConfig] = None,
        fetcher: Optional[Fetcher] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        try:
            self.data_type = DataType(str(getattr(data_type, "value", data_type)).lower())
        except ValueError:
            raise ValueError(f"Invalid data type specified: {data_type!r}") from None
        self.version = version or DEFAULT_JSON_VERSION
        self.config = config or ClientConfig()
        self._fetcher = fetcher
        self._transport = transport

    async def get_videos(
        self,
        section: Union[Section, str],
        channel: str = "",
        params: Optional[Dict[str, Any]] = None,
    ) -> BlipResult:
        """
        Fetch a listing: 'popular', 'recent', 'random', 'featured' or 'posts'.

        ``channel`` and the filter parameters (count, filetype, tags, license,
        language, sort, categories) are only used for 'posts'; for any other
        section they are dropped. Pagination only comes back for the JSON skin.
        """
        try:
            section = Section(section)
        except ValueError:
            raise ValueError(f"Invalid section `{section}` specified!") from None
        if section not in BROWSE_SECTIONS:
            raise ValueError(f"Invalid section `{section.value}` specified!")

        descriptor = RequestDescriptor.for_section(section, params, channel=channel)
        return await self._execute(descriptor, self.data_type)

    async def search_videos(self, phrase: str, params: Optional[Dict[str, Any]] = None) -> BlipResult:
        """Search all posts for ``phrase``. The API has no per-user search."""
        parameters = dict(params or {})
        parameters["search"] = phrase
        descriptor = RequestDescriptor.for_section(Section.SEARCH, parameters)
        return await self._execute(descriptor, self.data_type)

    async def get_video_info(self, file_id: int) -> BlipResult:
        descriptor = RequestDescriptor.for_section(Section.FILE, {"id": file_id})
        return await self._execute(descriptor, self.data_type)

    async def get_licenses(self) -> BlipResult:
        """Licenses are always requested as XML; their JSON skin is not decodable."""
        return await self.fetch(LicensesParams())

    async def fetch(self, request: Union[BlipRequest, Dict[str, Any]]) -> BlipResult:
        """Run a request record; a plain mapping is validated against its section first."""
        if isinstance(request, dict):
            request = request_adapter.validate_python(request)
        descriptor = request.to_descriptor()
        data_type = DataType.API if descriptor.section in XML_ONLY_SECTIONS else self.data_type
        return await self._execute(descriptor, data_type)

    async def _fetch(self, url: str) -> RawPayload:
        if self._fetcher is not None:
            return await self._fetcher(url)
        return await make_api_request(
            url,
            timeout=self.config.timeout,
            user_agent=self.config.user_agent,
            transport=self._transport,
        )

    async def _execute(self, descriptor: RequestDescriptor, data_type: DataType) -> BlipResult:
        url = build_query_url(descriptor, data_type, self.version, self.config)
        logger.debug("Requesting %s", url)

        raw = await self._fetch(url)

        try:
            normalized = normalize_response(raw, data_type.value, self.version, url)
        except NormalizationError as e:
            logger.warning("%s: %s", e.kind.value, e)
            return BlipResult.failure(url, e)

        if isinstance(normalized, NormalizedJson):
            return BlipResult(
                ok=True,
                request_url=url,
                data=normalized.results,
                pagination=normalized.pagination,
            )
        return BlipResult(ok=True, request_url=url, data=normalized)


# ============================================================================
# UTILITY FUNCTIONS
# ============================================================================

def format_post_markdown(post: Dict[str, Any]) -> str:
    """Format a single post in Markdown format."""
    title = post.get('title', 'Untitled')
    item_id = post.get('itemId', post.get('postsId', 'N/A'))
    author = post.get('login', post.get('userLogin', 'N/A'))
    date = post.get('datestamp', 'N/A')
    url = post.get('url', 'N/A')
    media = post.get('media') if isinstance(post.get('media'), dict) else {}
    media_url = post.get('mediaUrl', media.get('url'))
    description = post.get('description')

    md = f"### {title}\n\n"
    md += f"**Item ID:** {item_id}\n"
    md += f"**Author:** {author}\n"
    md += f"**Date:** {date}\n"
    md += f"**URL:** {url}\n"

    if post.get('tags'):
        tags = ', '.join(post['tags']) if isinstance(post['tags'], list) else post['tags']
        md += f"**Tags:** {tags}\n"

    if media.get('duration'):
        md += f"**Duration:** {media['duration']}s\n"

    if description:
        md += f"\n**Description:**\n{description}\n"

    if media_url:
        md += f"\n**Media URL:** {media_url}\n"

    return md + "\n---\n"


def format_post_json(post: Dict[str, Any]) -> Dict[str, Any]:
    """Format a post in a flat JSON structure."""
    media = post.get('media') if isinstance(post.get('media'), dict) else {}
    return {
        "id": post.get('itemId', post.get('postsId')),
        "title": post.get('title'),
        "author": post.get('login', post.get('userLogin')),
        "date": post.get('datestamp'),
        "description": post.get('description'),
        "url": post.get('url'),
        "tags": post.get('tags', []),
        "thumbnail_url": post.get('thumbnailUrl'),
        "media_url": post.get('mediaUrl', media.get('url')),
        "mime_type": media.get('mimeType'),
        "duration": media.get('duration'),
    }


def next_page(
    pagination: Optional[Dict[str, str]],
    shown: int,
    page_size: Optional[int] = None,
) -> Optional[int]:
    """
    Next page number if the pagination record says more results exist.

    Without a known ``page_size`` only page 1 can be judged: there ``shown``
    is the page size, or everything when the page is also the last one.
    """
    if not pagination or not shown:
        return None
    page = pagination.get('page', '')
    total = pagination.get('total', '')
    if not (page.isdigit() and total.isdigit()):
        return None
    if page_size is None:
        if int(page) != 1:
            return None
        page_size = shown
    if int(page) * page_size < int(total):
        return int(page) + 1
    return None


def truncate_if_needed(content: str, data: List[Any], limit: int = CHARACTER_LIMIT) -> str:
    """Check response size and truncate if it exceeds the character limit."""
    if len(content) <= limit:
        return content

    truncated = content[:limit]

    notice = f"\n\n**TRUNCATED**: Response exceeded {limit} characters.\n"
    notice += f"Showing partial results. Original had {len(data)} items.\n"
    notice += "To see more results:\n"
    notice += "- Use the 'page' parameter for pagination\n"
    notice += "- Lower 'count' or add filters (tags, file_types, language)\n"

    return truncated + notice


def truncate_document(content: str, limit: int = CHARACTER_LIMIT) -> str:
    """Truncate a single unparsed document, such as the licenses XML."""
    if len(content) <= limit:
        return content
    return content[:limit] + f"\n\n**TRUNCATED**: Document exceeded {limit} characters.\n"
