"""ESD monitor entry point.

Loads configuration, wires the status core into the aiohttp gateway and
serves until SIGINT/SIGTERM.
"""

from __future__ import annotations

import asyncio
import signal
import sys
from pathlib import Path
from typing import Optional

import structlog
from aiohttp import web

from .config.manager import ConfigManager, initialize_config
from .gateway.broadcaster import Broadcaster
from .gateway.http_server import create_app
from .gateway.liveness import LivenessSweeper
from .gateway.registry import ClientRegistry
from .observability import log_setup
from .status.store import StatusStore

logger = structlog.get_logger(__name__)


def build_app(config: ConfigManager) -> web.Application:
    """Create the core components and the web application around them."""
    store = StatusStore()
    registry = ClientRegistry()
    broadcaster = Broadcaster(
        registry,
        send_timeout_seconds=config.get("broadcast.send_timeout_seconds"),
    )
    sweeper = LivenessSweeper(
        registry,
        interval_seconds=config.get("liveness.interval_seconds"),
    )

    config.subscribe(log_setup.on_config_updated)
    config.subscribe(broadcaster.on_config_updated)
    config.subscribe(sweeper.on_config_updated)

    return create_app(
        store,
        registry,
        broadcaster,
        sweeper,
        ws_path=config.get("server.ws_path"),
        allowed_origins=config.get("cors.allowed_origins"),
    )


async def reload_config(config: ConfigManager) -> list[str]:
    """Re-read dynamic settings and push changes to subscribers (SIGHUP)."""
    try:
        return await config.reload_dynamic_config()
    except ValueError as exc:
        logger.error("config_reload_failed", error=str(exc))
        return []


async def serve(config: ConfigManager, stop_event: Optional[asyncio.Event] = None) -> None:
    """Run the server until ``stop_event`` is set (or a shutdown signal arrives).

    SIGHUP re-reads the dynamic configuration tier without a restart.
    """
    host = config.get("server.host")
    port = config.get("server.port")
    ws_path = config.get("server.ws_path")

    app = build_app(config)
    runner = web.AppRunner(app, access_log=None)
    await runner.setup()

    if stop_event is None:
        stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    reload_tasks: set[asyncio.Task] = set()

    def schedule_reload() -> None:
        task = asyncio.create_task(reload_config(config))
        reload_tasks.add(task)
        task.add_done_callback(reload_tasks.discard)

    handlers = [(signal.SIGINT, stop_event.set), (signal.SIGTERM, stop_event.set)]
    if hasattr(signal, "SIGHUP"):
        handlers.append((signal.SIGHUP, schedule_reload))

    installed = []
    for sig, callback in handlers:
        try:
            loop.add_signal_handler(sig, callback)
            installed.append(sig)
        except (NotImplementedError, RuntimeError):
            # Not supported on this platform/loop; rely on KeyboardInterrupt
            pass

    try:
        site = web.TCPSite(runner, host, port)
        await site.start()
        logger.info(
            "esd_server_started",
            host=host,
            port=port,
            websocket=f"ws://{host}:{port}{ws_path}",
            api=f"http://{host}:{port}/api",
        )
        await stop_event.wait()
        logger.info("esd_server_stopping")
    finally:
        for sig in installed:
            loop.remove_signal_handler(sig)
        await runner.cleanup()
        logger.info("esd_server_stopped")


def main(argv: Optional[list[str]] = None) -> int:
    """Console script entry point."""
    args = sys.argv[1:] if argv is None else argv
    config_file = Path(args[0]) if args else None

    config = initialize_config(config_file=config_file)
    log_setup.configure_logging(
        level=config.get("logging.level"),
        fmt=config.get("logging.format"),
    )

    try:
        asyncio.run(serve(config))
    except OSError as exc:
        logger.error("esd_server_bind_failed", error=str(exc))
        return 1
    except KeyboardInterrupt:
        pass
    return 0


if __name__ == "__main__":
    sys.exit(main())
