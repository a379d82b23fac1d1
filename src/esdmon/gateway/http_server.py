"""
aiohttp application: read-only REST endpoints plus the WebSocket endpoint.

The REST routes only read through StatusStore accessors. All mutation goes
through the WebSocket IngestHandler.
"""

from __future__ import annotations

import asyncio
from collections.abc import Iterable
from dataclasses import asdict

import aiohttp_cors
import structlog
from aiohttp import WSMsgType, web

from ..observability.health_checks import run_all_health_checks
from ..observability.process_info import collect_process_info
from ..status.classifier import SafetyClassification
from ..status.store import StatusStore
from . import messages
from .broadcaster import Broadcaster
from .connection import ClientConnection
from .ingest import IngestHandler
from .liveness import LivenessSweeper
from .registry import ClientRegistry

logger = structlog.get_logger(__name__)

STORE_KEY = web.AppKey("store", StatusStore)
REGISTRY_KEY = web.AppKey("registry", ClientRegistry)
BROADCASTER_KEY = web.AppKey("broadcaster", Broadcaster)
SWEEPER_KEY = web.AppKey("sweeper", LivenessSweeper)


def _ok(data: dict) -> web.Response:
    return web.json_response({"success": True, "data": data})


@web.middleware
async def request_logging_middleware(request: web.Request, handler):
    logger.debug("http_request", method=request.method, path=request.path)
    return await handler(request)


@web.middleware
async def json_error_middleware(request: web.Request, handler):
    """Render 404s and unhandled errors as JSON envelopes."""
    try:
        return await handler(request)
    except web.HTTPNotFound:
        return web.json_response(
            {
                "success": False,
                "error": "Route not found",
                "path": request.path,
                "method": request.method,
            },
            status=404,
        )
    except web.HTTPException:
        raise
    except Exception as exc:
        logger.error(
            "http_handler_error",
            method=request.method,
            path=request.path,
            error=str(exc),
            error_type=type(exc).__name__,
        )
        return web.json_response(
            {"success": False, "error": "Internal server error"},
            status=500,
        )


async def handle_root(request: web.Request) -> web.Response:
    return web.json_response({
        "message": "ESD Wrist Strap Detection System Backend",
        "status": "running",
        "timestamp": messages.iso_timestamp(),
    })


async def handle_status(request: web.Request) -> web.Response:
    store = request.app[STORE_KEY]
    return _ok({
        "status": messages.serialize_status(store.get_status()),
        "safetyStatus": store.get_classification().value,
        "timestamp": messages.iso_timestamp(),
    })


async def handle_safety(request: web.Request) -> web.Response:
    store = request.app[STORE_KEY]
    status = store.get_status()
    classification = store.get_classification()
    return _ok({
        "safetyStatus": classification.value,
        "isSafe": classification is SafetyClassification.SAFE,
        "operatorPresent": status.operator_present,
        "wristStrapConnected": status.wrist_strap_connected,
        "properlyGrounded": status.properly_grounded,
        "timestamp": messages.iso_timestamp(),
    })


async def handle_alerts(request: web.Request) -> web.Response:
    alerts = request.app[STORE_KEY].get_alerts()
    return _ok({
        "alerts": messages.serialize_alerts(alerts),
        "alertCount": len(alerts),
        "timestamp": messages.iso_timestamp(),
    })


async def handle_health(request: web.Request) -> web.Response:
    app = request.app
    store = app[STORE_KEY]
    process = await asyncio.to_thread(collect_process_info)
    checks = run_all_health_checks(store, app[REGISTRY_KEY], app[SWEEPER_KEY])
    return _ok({
        "status": "healthy",
        "uptime": process.uptime_seconds,
        "version": process.version,
        "timestamp": messages.iso_timestamp(),
        "memory": asdict(process.memory),
        "esdStatus": messages.serialize_status(store.get_status()),
        "observers": len(app[REGISTRY_KEY]),
        "checks": [check.to_dict() for check in checks],
    })


async def handle_websocket(request: web.Request) -> web.WebSocketResponse:
    """Serve one sensor or observer connection until it closes."""
    app = request.app
    store = app[STORE_KEY]
    registry = app[REGISTRY_KEY]
    broadcaster = app[BROADCASTER_KEY]

    # Pongs must reach the liveness sweep, so ping/pong is handled here
    ws = web.WebSocketResponse(autoping=False)
    await ws.prepare(request)

    conn = ClientConnection(ws, remote=request.remote)
    handler = IngestHandler(conn, store, broadcaster, registry)
    registry.register(conn)
    logger.info("websocket_connected", connection_id=conn.id, remote=conn.remote)
    await broadcaster.send_status(conn, store)

    reason = "closed"
    try:
        async for msg in ws:
            if msg.type in (WSMsgType.TEXT, WSMsgType.BINARY):
                await handler.handle_message(msg.data)
            elif msg.type == WSMsgType.PONG:
                conn.mark_alive()
            elif msg.type == WSMsgType.PING:
                await ws.pong(msg.data)
            elif msg.type == WSMsgType.ERROR:
                reason = f"error: {ws.exception()}"
                logger.warning("websocket_error", connection_id=conn.id, error=str(ws.exception()))
                break
    finally:
        handler.handle_close(reason)
    return ws


async def _start_sweeper(app: web.Application) -> None:
    await app[SWEEPER_KEY].start()


async def _close_clients(app: web.Application) -> None:
    connections = app[REGISTRY_KEY].connections()
    for conn in connections:
        try:
            await conn.close()
        except Exception as exc:
            logger.debug("client_close_failed", connection_id=conn.id, error=str(exc))
    logger.info("websocket_clients_closed", count=len(connections))


async def _stop_sweeper(app: web.Application) -> None:
    await app[SWEEPER_KEY].stop()


def create_app(
    store: StatusStore,
    registry: ClientRegistry,
    broadcaster: Broadcaster,
    sweeper: LivenessSweeper,
    ws_path: str = "/ws",
    allowed_origins: Iterable[str] = ("*",),
) -> web.Application:
    """Build the web application around the injected core components."""
    app = web.Application(middlewares=[request_logging_middleware, json_error_middleware])
    app[STORE_KEY] = store
    app[REGISTRY_KEY] = registry
    app[BROADCASTER_KEY] = broadcaster
    app[SWEEPER_KEY] = sweeper

    app.router.add_get(ws_path, handle_websocket)
    api_routes = [
        app.router.add_get("/", handle_root),
        app.router.add_get("/api/esd/status", handle_status),
        app.router.add_get("/api/esd/safety", handle_safety),
        app.router.add_get("/api/esd/alerts", handle_alerts),
        app.router.add_get("/api/health", handle_health),
    ]

    cors = aiohttp_cors.setup(app, defaults={
        origin: aiohttp_cors.ResourceOptions(
            allow_credentials=False,
            expose_headers="*",
            allow_headers="*",
        )
        for origin in allowed_origins
    })
    for route in api_routes:
        cors.add(route)

    app.on_startup.append(_start_sweeper)
    app.on_shutdown.append(_close_clients)
    app.on_cleanup.append(_stop_sweeper)
    return app
