"""
WebSocket Gateway module.

Accepts sensor and observer WebSocket connections, routes inbound messages
to the status store and fans out status updates to every client. The aiohttp
application itself lives in ``http_server``.
"""

from .broadcaster import Broadcaster
from .connection import ClientConnection
from .ingest import ConnectionState, IngestHandler
from .liveness import LivenessSweeper
from .registry import ClientRegistry

__all__ = [
    "Broadcaster",
    "ClientConnection",
    "ClientRegistry",
    "ConnectionState",
    "IngestHandler",
    "LivenessSweeper",
]
