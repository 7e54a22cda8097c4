#!/usr/bin/env -S uv run
"""
blip.tv MCP Server (STDIO Transport)

Thin wrapper that configures the server for STDIO transport.
All business logic is in bliptv_mcp package.

This version uses STDIO transport for Claude Desktop and CLI clients.
"""

import logging

from bliptv_mcp import BlipTVClient, DataType, create_bliptv_server

# Logs go to stderr; stdout carries the protocol
logging.basicConfig(level=logging.INFO, format="%(asctime)s %(name)s %(levelname)s %(message)s")

mcp = create_bliptv_server(
    transport="stdio",
    port=None,
    client=BlipTVClient(DataType.JSON, version=3)
)

if __name__ == "__main__":
    mcp.run(transport="stdio")
