"""
Inbound message handling for one WebSocket connection.

Sensor readings update the StatusStore and trigger a broadcast to every
client; system commands query or clear the alert log. Malformed input is
answered with an ``error`` message and never closes the connection.
"""

from __future__ import annotations

import json
from enum import Enum
from typing import Any

import structlog

from ..status.store import StatusStore
from . import messages
from .broadcaster import Broadcaster
from .connection import ClientConnection
from .registry import ClientRegistry

logger = structlog.get_logger(__name__)

SENSOR_DATA = "esd_sensor_data"
SYSTEM_COMMAND = "system_command"


class ConnectionState(str, Enum):
    CONNECTED = "CONNECTED"
    CLOSED = "CLOSED"


def sensor_flag(value: Any) -> bool:
    """A sensor channel is active only when it reports the number 1."""
    return value == 1 and not isinstance(value, bool)


class IngestHandler:
    """Per-connection state machine: CONNECTED until closed, then CLOSED."""

    def __init__(
        self,
        connection: ClientConnection,
        store: StatusStore,
        broadcaster: Broadcaster,
        registry: ClientRegistry,
    ):
        self.connection = connection
        self.store = store
        self.broadcaster = broadcaster
        self.registry = registry
        self.state = ConnectionState.CONNECTED
        self._commands = {
            "get_status": self._cmd_get_status,
            "get_alerts": self._cmd_get_alerts,
            "clear_alerts": self._cmd_clear_alerts,
        }

    async def handle_message(self, raw: str) -> None:
        """Process one inbound text frame."""
        if self.state is ConnectionState.CLOSED:
            logger.debug("ingest_message_after_close", connection_id=self.connection.id)
            return

        try:
            message = json.loads(raw)
        except (TypeError, ValueError, RecursionError) as exc:
            await self._reject(f"unparsable JSON: {exc}")
            return
        if not isinstance(message, dict):
            await self._reject(f"expected JSON object, got {type(message).__name__}")
            return

        msg_type = message.get("type")
        try:
            if msg_type == SENSOR_DATA:
                await self._handle_sensor_data(message)
            elif msg_type == SYSTEM_COMMAND:
                await self._handle_command(message.get("command"))
            else:
                logger.debug(
                    "ingest_message_ignored",
                    connection_id=self.connection.id,
                    message_type=msg_type,
                )
        except Exception as exc:
            # Already-applied readings stay applied
            logger.error(
                "ingest_message_failed",
                connection_id=self.connection.id,
                message_type=msg_type,
                error=str(exc),
                error_type=type(exc).__name__,
            )
            await self._reply(messages.error())

    async def _handle_sensor_data(self, message: dict[str, Any]) -> None:
        result = self.store.apply_reading(
            operator_present=sensor_flag(message.get("irSensor")),
            wrist_strap_connected=sensor_flag(message.get("touchSensor")),
            properly_grounded=sensor_flag(message.get("groundStatus")),
        )
        logger.info(
            "sensor_reading_applied",
            connection_id=self.connection.id,
            safety_status=result.classification.value,
            changed_fields=sorted(result.changed_fields),
            events=len(result.events),
        )

        # Every reading is broadcast, changed or not
        await self.broadcaster.broadcast_status(self.store)
        await self._reply(messages.data_ack())

    async def _handle_command(self, command: Any) -> None:
        handler = self._commands.get(command) if isinstance(command, str) else None
        if handler is None:
            # Unknown commands get no reply
            logger.debug(
                "ingest_unknown_command",
                connection_id=self.connection.id,
                command=command,
            )
            return
        logger.info("system_command_received", connection_id=self.connection.id, command=command)
        await handler()

    async def _cmd_get_status(self) -> None:
        await self._reply(
            messages.status_response(self.store.get_status(), self.store.get_classification())
        )

    async def _cmd_get_alerts(self) -> None:
        await self._reply(messages.alerts_response(self.store.get_alerts()))

    async def _cmd_clear_alerts(self) -> None:
        self.store.clear_alerts()
        await self._reply(messages.alerts_cleared())

    async def _reject(self, reason: str) -> None:
        logger.warning(
            "ingest_invalid_message",
            connection_id=self.connection.id,
            reason=reason,
        )
        await self._reply(messages.error())

    async def _reply(self, message: dict[str, Any]) -> bool:
        try:
            await self.connection.send(
                messages.encode(message),
                timeout=self.broadcaster.send_timeout_seconds,
            )
            return True
        except Exception as exc:
            logger.warning(
                "ingest_reply_failed",
                connection_id=self.connection.id,
                reply_type=message.get("type"),
                error=str(exc),
                error_type=type(exc).__name__,
            )
            return False

    def handle_close(self, reason: str = "closed") -> None:
        """Transport closed or failed: drop the client and stop processing."""
        if self.state is ConnectionState.CLOSED:
            return
        self.registry.unregister(self.connection)
        self.state = ConnectionState.CLOSED
        logger.info("connection_closed", connection_id=self.connection.id, reason=reason)
