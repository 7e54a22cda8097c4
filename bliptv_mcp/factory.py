"""
Factory for creating blip.tv MCP servers with different transport configurations.

This module handles server creation and tool registration, injecting the
BlipTVClient the tools query through.
"""

import json
from typing import Any, Dict, List, Optional

from mcp.server.fastmcp import FastMCP

from .core import (
    BlipTVClient,
    BrowseVideosInput,
    DataType,
    FileParams,
    ResponseFormat,
    SearchParams,
    SearchVideosInput,
    VideoDetailsInput,
    format_post_json,
    format_post_markdown,
    next_page,
    truncate_document,
    truncate_if_needed,
)

READ_ONLY_ANNOTATIONS = {
    "readOnlyHint": True,
    "destructiveHint": False,
    "idempotentHint": True,
    "openWorldHint": True
}


def create_bliptv_server(
    transport: str,
    port: Optional[int] = None,
    client: Optional[BlipTVClient] = None
) -> FastMCP:
    """
    Create a blip.tv MCP server with specified transport configuration.

    Args:
        transport: Transport type ("stdio" or "sse")
        port: Port number (required for SSE, ignored for STDIO)
        client: Client used by the tools; must use the JSON skin.
                Defaults to a JSON version 3 client.

    Returns:
        Configured FastMCP server instance
    """
    if transport not in ("stdio", "sse"):
        raise ValueError(f"Unsupported transport: {transport}")

    if port:
        mcp = FastMCP("bliptv_mcp", port=port)
    else:
        mcp = FastMCP("bliptv_mcp")

    client = client or BlipTVClient(DataType.JSON)
    if client.data_type != DataType.JSON:
        raise ValueError("MCP tools need a client using the 'json' data type")

    mcp._client = client

    _register_browse_tool(mcp)
    _register_search_tool(mcp)
    _register_details_tool(mcp)
    _register_licenses_tool(mcp)

    return mcp


def render_posts(
    heading: str,
    posts: List[Dict[str, Any]],
    pagination: Optional[Dict[str, str]],
    response_format: ResponseFormat,
    context: Dict[str, Any],
    page_size: Optional[int] = None,
) -> str:
    """Render a result page of posts as Markdown or JSON."""
    following = next_page(pagination, len(posts), page_size)

    if response_format == ResponseFormat.MARKDOWN:
        output = f"# {heading}\n\n"
        for label, value in context.items():
            if value:
                output += f"**{label.replace('_', ' ').title()}:** {value}\n"
        output += f"**Showing:** {len(posts)} videos\n"
        if pagination:
            output += "**Pagination:** " + ", ".join(f"{k}={v}" for k, v in pagination.items()) + "\n"
        output += "\n---\n\n"

        for post in posts:
            output += format_post_markdown(post)

        if following:
            output += f"\n**More results available.** Use page={following} to see the next page.\n"

        return truncate_if_needed(output, posts)

    result = dict(context)
    result.update({
        "count": len(posts),
        "pagination": pagination,
        "next_page": following,
        "videos": [format_post_json(post) for post in posts],
    })
    return truncate_if_needed(json.dumps(result, indent=2), posts)


def _register_browse_tool(mcp: FastMCP):
    """Register the listing browse tool."""

    @mcp.tool(
        name="bliptv_browse_videos",
        annotations={"title": "Browse blip.tv Videos", **READ_ONLY_ANNOTATIONS}
    )
    async def bliptv_browse_videos(params: BrowseVideosInput) -> str:
        """Browse blip.tv listings (popular, recent, random, featured) or a channel's posts."""
        try:
            result = await mcp._client.fetch(params.to_request())
            if not result.ok:
                return f"Error browsing blip.tv videos: {result.error}"

            if not result.data:
                return (
                    f"No videos found in '{params.section}'.\n\n"
                    "Suggestions:\n"
                    "- Check the channel name\n"
                    "- Remove some filters\n"
                    "- Try an earlier page"
                )

            return render_posts(
                "blip.tv Videos",
                result.data,
                result.pagination,
                params.response_format,
                {"section": params.section, "channel": params.channel, "page": params.page},
                params.count if params.section == "posts" else None,
            )

        except Exception as e:
            return f"Error browsing blip.tv videos: {str(e)}"


def _register_search_tool(mcp: FastMCP):
    """Register the video search tool."""

    @mcp.tool(
        name="bliptv_search_videos",
        annotations={"title": "Search blip.tv Videos", **READ_ONLY_ANNOTATIONS}
    )
    async def bliptv_search_videos(params: SearchVideosInput) -> str:
        """Search all blip.tv posts by keyword."""
        try:
            result = await mcp._client.fetch(SearchParams(search=params.query, page=params.page))
            if not result.ok:
                return f"Error searching blip.tv videos: {result.error}"

            if not result.data:
                return (
                    "No videos found matching your query.\n\n"
                    "Suggestions:\n"
                    "- Try broader search terms\n"
                    "- Check the spelling"
                )

            return render_posts(
                "blip.tv Search Results",
                result.data,
                result.pagination,
                params.response_format,
                {"query": params.query, "page": params.page},
            )

        except Exception as e:
            return f"Error searching blip.tv videos: {str(e)}"


def _register_details_tool(mcp: FastMCP):
    """Register the video details tool."""

    @mcp.tool(
        name="bliptv_get_video_details",
        annotations={"title": "Get blip.tv Video Details", **READ_ONLY_ANNOTATIONS}
    )
    async def bliptv_get_video_details(params: VideoDetailsInput) -> str:
        """Retrieve details for a single blip.tv file by its numeric id."""
        try:
            result = await mcp._client.fetch(FileParams(id=params.file_id))
            if not result.ok:
                return f"Error retrieving video details: {result.error}"

            if not result.data:
                return (
                    f"File with ID '{params.file_id}' not found.\n\n"
                    "Try bliptv_search_videos to find the correct file id."
                )

            post = result.data[0]

            if params.response_format == ResponseFormat.MARKDOWN:
                return "# blip.tv Video Details\n\n" + format_post_markdown(post)

            return json.dumps(format_post_json(post), indent=2)

        except Exception as e:
            return f"Error retrieving video details: {str(e)}"


def _register_licenses_tool(mcp: FastMCP):
    """Register the licenses tool."""

    @mcp.tool(
        name="bliptv_list_licenses",
        annotations={"title": "List blip.tv Licenses", **READ_ONLY_ANNOTATIONS}
    )
    async def bliptv_list_licenses() -> str:
        """List the licenses blip.tv supports, as the service's XML document."""
        try:
            result = await mcp._client.get_licenses()
            if not result.ok:
                return f"Error listing licenses: {result.error}"
            return truncate_document(result.data)

        except Exception as e:
            return f"Error listing licenses: {str(e)}"
