"""Registry of connected WebSocket clients."""

from __future__ import annotations

import asyncio
import threading
from collections.abc import Awaitable, Callable

import structlog

from .connection import ClientConnection

logger = structlog.get_logger(__name__)


class ClientRegistry:
    """Set of live connections with lock-guarded mutation.

    The registry never owns a connection: entries are added on connect and
    removed by the close handler or the liveness sweep.
    """

    def __init__(self):
        self._connections: set[ClientConnection] = set()
        self._lock = threading.Lock()

    def register(self, connection: ClientConnection) -> None:
        with self._lock:
            self._connections.add(connection)
            count = len(self._connections)
        logger.info("client_registered", connection_id=connection.id, clients=count)

    def unregister(self, connection: ClientConnection) -> bool:
        """Remove a connection. Removing an absent connection is a no-op.

        Returns:
            True if the connection was registered
        """
        with self._lock:
            if connection not in self._connections:
                return False
            self._connections.discard(connection)
            count = len(self._connections)
        logger.info("client_unregistered", connection_id=connection.id, clients=count)
        return True

    def __contains__(self, connection: ClientConnection) -> bool:
        with self._lock:
            return connection in self._connections

    def __len__(self) -> int:
        with self._lock:
            return len(self._connections)

    def connections(self) -> list[ClientConnection]:
        """Snapshot of the currently registered connections."""
        with self._lock:
            return list(self._connections)

    async def for_each(self, fn: Callable[[ClientConnection], Awaitable[None]]) -> None:
        """Apply ``fn`` concurrently to every registered, open connection.

        Connections that are already closed are skipped. An exception
        raised for one connection is logged and does not affect the
        others. Entries are never removed here.
        """
        targets = [conn for conn in self.connections() if conn.is_open]
        if not targets:
            return
        await asyncio.gather(*(self._apply(fn, conn) for conn in targets))

    async def _apply(self, fn: Callable[[ClientConnection], Awaitable[None]], conn: ClientConnection) -> None:
        try:
            await fn(conn)
        except Exception as exc:
            logger.warning(
                "client_iteration_error",
                connection_id=conn.id,
                error=str(exc),
                error_type=type(exc).__name__,
            )
