"""Background liveness sweep for WebSocket clients."""

from __future__ import annotations

import asyncio
import time
from typing import Any

import structlog

from .connection import ClientConnection
from .registry import ClientRegistry

logger = structlog.get_logger(__name__)

INTERVAL_KEY = "liveness.interval_seconds"


class LivenessSweeper:
    """Ping every client on a fixed interval and evict the unresponsive.

    Each sweep first evicts connections still marked pending from the
    previous sweep (no pong since the last ping), then marks every
    remaining connection pending and pings it. A client therefore
    survives one missed pong but not two in a row.
    """

    def __init__(self, registry: ClientRegistry, interval_seconds: int = 30):
        self.registry = registry
        self.interval_seconds = interval_seconds
        self.last_sweep_timestamp = 0
        self._running = False
        self._task: asyncio.Task | None = None
        self._restart_task: asyncio.Task | None = None

    @property
    def is_running(self) -> bool:
        return self._running and self._task is not None and not self._task.done()

    async def start(self) -> None:
        """Start sweeping in a background task."""
        if self.is_running:
            return
        self._running = True
        self._spawn_sweep_task()
        logger.info("liveness_sweeper_started", interval_seconds=self.interval_seconds)

    async def stop(self) -> None:
        """Stop sweeping; pending sleeps are cancelled."""
        self._running = False
        if self._restart_task:
            self._restart_task.cancel()
            self._restart_task = None
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            except Exception:
                # Crash is already logged by done callback; stop should still complete.
                pass
            self._task = None
        logger.info("liveness_sweeper_stopped")

    def on_config_updated(self, key: str, value: Any) -> None:
        """Config subscriber: pick up a new interval on the next tick."""
        if key == INTERVAL_KEY:
            self.interval_seconds = int(value)
            logger.info("liveness_interval_updated", interval_seconds=self.interval_seconds)

    def _spawn_sweep_task(self) -> None:
        self._task = asyncio.create_task(self._run(), name="liveness-sweeper")
        self._task.add_done_callback(self._on_sweep_done)

    def _on_sweep_done(self, task: asyncio.Task) -> None:
        if not self._running:
            return
        if task.cancelled():
            logger.warning("liveness_sweeper_cancelled_unexpectedly")
        else:
            exc = task.exception()
            if exc is not None:
                logger.error("liveness_sweeper_crashed", error=str(exc))
            else:
                logger.warning("liveness_sweeper_exited_unexpectedly")

        if self._restart_task and not self._restart_task.done():
            return
        self._restart_task = asyncio.create_task(self._restart_after_delay())

    async def _restart_after_delay(self) -> None:
        await asyncio.sleep(self.interval_seconds)
        if self._running and (self._task is None or self._task.done()):
            self._spawn_sweep_task()
            logger.info("liveness_sweeper_restarted")

    async def _run(self) -> None:
        while self._running:
            await asyncio.sleep(self.interval_seconds)
            await self.sweep_once()

    async def sweep_once(self) -> list[ClientConnection]:
        """Run one evict-then-probe cycle.

        Returns:
            The connections evicted by this sweep
        """
        evicted = [
            conn for conn in self.registry.connections()
            if conn.pending or not conn.is_open
        ]
        for conn in evicted:
            self.registry.unregister(conn)
            logger.warning(
                "client_liveness_evicted",
                connection_id=conn.id,
                missed_pong=conn.pending,
            )
        if evicted:
            await asyncio.gather(*(self._terminate(conn) for conn in evicted))

        await self.registry.for_each(self._probe)
        self.last_sweep_timestamp = int(time.time())
        logger.debug(
            "liveness_sweep_complete",
            evicted=len(evicted),
            clients=len(self.registry),
        )
        return evicted

    async def _probe(self, conn: ClientConnection) -> None:
        conn.pending = True
        await conn.ping()

    async def _terminate(self, conn: ClientConnection) -> None:
        try:
            await conn.close()
        except Exception as exc:
            logger.debug("client_close_failed", connection_id=conn.id, error=str(exc))
