"""Fan-out of ESD status updates to connected clients."""

from __future__ import annotations

import asyncio
from typing import Any

import structlog

from ..status.store import StatusStore
from . import messages
from .connection import ClientConnection
from .registry import ClientRegistry

logger = structlog.get_logger(__name__)

TIMEOUT_KEY = "broadcast.send_timeout_seconds"


class Broadcaster:
    """Push ``esd_status_update`` messages to every registered client."""

    def __init__(self, registry: ClientRegistry, send_timeout_seconds: float = 2.0):
        self.registry = registry
        self.send_timeout_seconds = send_timeout_seconds

    @staticmethod
    def build_status_message(store: StatusStore) -> str:
        return messages.encode(
            messages.status_update(store.get_status(), store.get_classification())
        )

    async def broadcast_status(self, store: StatusStore) -> int:
        """Send the current status to every registered client.

        The message is serialized once and the same string goes to every
        recipient. Per-client failures are logged and never raised.

        Returns:
            Number of clients the message was delivered to
        """
        payload = self.build_status_message(store)
        delivered = 0

        async def _deliver(conn: ClientConnection) -> None:
            nonlocal delivered
            if await self._send(conn, payload):
                delivered += 1

        await self.registry.for_each(_deliver)
        logger.debug("status_broadcast", delivered=delivered, clients=len(self.registry))
        return delivered

    async def send_status(self, conn: ClientConnection, store: StatusStore) -> bool:
        """Push the current status to a single client (initial connect)."""
        return await self._send(conn, self.build_status_message(store))

    async def _send(self, conn: ClientConnection, payload: str) -> bool:
        try:
            await conn.send(payload, timeout=self.send_timeout_seconds)
            return True
        except asyncio.TimeoutError:
            logger.warning(
                "broadcast_send_timeout",
                connection_id=conn.id,
                timeout_seconds=self.send_timeout_seconds,
            )
        except Exception as exc:
            logger.warning(
                "broadcast_send_failed",
                connection_id=conn.id,
                error=str(exc),
                error_type=type(exc).__name__,
            )
        return False

    def on_config_updated(self, key: str, value: Any) -> None:
        """Config subscriber: apply a new per-send timeout."""
        if key == TIMEOUT_KEY:
            self.send_timeout_seconds = float(value)
            logger.info("broadcast_timeout_updated", timeout_seconds=self.send_timeout_seconds)
