"""WebSocket connection wrapper used by the registry, broadcaster and sweeper."""

from __future__ import annotations

import asyncio
import uuid
from typing import Optional

from aiohttp import web


class ClientConnection:
    """One connected WebSocket client (sensor or observer).

    ``pending`` is the liveness mark: set by the sweeper when it sends a
    ping, cleared when the matching pong arrives.
    """

    def __init__(self, ws: web.WebSocketResponse, remote: Optional[str] = None):
        self.id = uuid.uuid4().hex[:12]
        self.remote = remote
        self.pending = False
        self._ws = ws

    @property
    def is_open(self) -> bool:
        return not self._ws.closed

    async def send(self, text: str, timeout: Optional[float] = None) -> None:
        """Send a text frame, optionally bounded by ``timeout`` seconds.

        Raises:
            asyncio.TimeoutError: If the send does not complete in time
            ConnectionError: If the transport is gone
        """
        if timeout is None:
            await self._ws.send_str(text)
        else:
            await asyncio.wait_for(self._ws.send_str(text), timeout)

    async def ping(self) -> None:
        await self._ws.ping()

    def mark_alive(self) -> None:
        self.pending = False

    async def close(self) -> None:
        await self._ws.close()

    def __repr__(self) -> str:
        return f"ClientConnection(id={self.id!r}, remote={self.remote!r})"
