"""
blip.tv MCP Server

Client for the blip.tv legacy HTTP API with support for multiple MCP transports.
"""

__version__ = "1.0.0"

from .core import BlipResult, BlipTVClient, ClientConfig, DataType, Section
from .factory import create_bliptv_server
from .parsers import NormalizedJson, normalize_response

__all__ = [
    "BlipResult",
    "BlipTVClient",
    "ClientConfig",
    "DataType",
    "Section",
    "NormalizedJson",
    "create_bliptv_server",
    "normalize_response",
]
