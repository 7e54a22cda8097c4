#!/usr/bin/env -S uv run
"""
blip.tv MCP Server (SSE Transport)

Thin wrapper that configures the server for SSE transport.
All business logic is in bliptv_mcp package.

This version uses SSE (Server-Sent Events) transport for web and API clients.
"""

import logging

from bliptv_mcp import BlipTVClient, DataType, create_bliptv_server

logging.basicConfig(level=logging.INFO, format="%(asctime)s %(name)s %(levelname)s %(message)s")

mcp = create_bliptv_server(
    transport="sse",
    port=8002,
    client=BlipTVClient(DataType.JSON, version=3)
)

if __name__ == "__main__":
    mcp.run(transport="sse")
