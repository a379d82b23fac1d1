"""End-to-end tests through the aiohttp application (HTTP + WebSocket)."""

import asyncio
from dataclasses import dataclass

import pytest
from aiohttp import WSMsgType
from aiohttp.test_utils import TestClient, TestServer

from src.esdmon.gateway.broadcaster import Broadcaster
from src.esdmon.gateway.http_server import create_app
from src.esdmon.gateway.liveness import LivenessSweeper
from src.esdmon.gateway.registry import ClientRegistry
from src.esdmon.status.store import StatusStore

SENSOR_ALL_ON = {"type": "esd_sensor_data", "irSensor": 1, "touchSensor": 1, "groundStatus": 1}


@dataclass
class Parts:
    store: StatusStore
    registry: ClientRegistry
    broadcaster: Broadcaster
    sweeper: LivenessSweeper


@pytest.fixture
def parts():
    registry = ClientRegistry()
    return Parts(
        store=StatusStore(),
        registry=registry,
        broadcaster=Broadcaster(registry, send_timeout_seconds=1.0),
        # Long interval: tests drive sweeps by hand
        sweeper=LivenessSweeper(registry, interval_seconds=300),
    )


@pytest.fixture
async def client(parts):
    app = create_app(parts.store, parts.registry, parts.broadcaster, parts.sweeper)
    async with TestClient(TestServer(app)) as test_client:
        yield test_client


async def _wait_for(predicate, attempts: int = 100):
    for _ in range(attempts):
        if predicate():
            return True
        await asyncio.sleep(0.01)
    return predicate()


async def _connect(client, **kwargs):
    ws = await client.ws_connect("/ws", **kwargs)
    initial = await ws.receive_json(timeout=2)
    assert initial["type"] == "esd_status_update"
    return ws


class TestWebSocket:
    @pytest.mark.asyncio
    async def test_initial_push_on_connect(self, client, parts):
        ws = await client.ws_connect("/ws")
        message = await ws.receive_json(timeout=2)

        assert message["type"] == "esd_status_update"
        assert message["safetyStatus"] == "NO_OPERATOR"
        assert message["status"]["alerts"] == []
        assert await _wait_for(lambda: len(parts.registry) == 1)
        await ws.close()

    @pytest.mark.asyncio
    async def test_sensor_reading_fans_out(self, client):
        sensor = await _connect(client)
        observer = await _connect(client)

        await sensor.send_json(SENSOR_ALL_ON)

        update = await observer.receive_json(timeout=2)
        assert update["type"] == "esd_status_update"
        assert update["safetyStatus"] == "SAFE"
        assert len(update["status"]["alerts"]) == 3

        own_update = await sensor.receive_json(timeout=2)
        ack = await sensor.receive_json(timeout=2)
        assert own_update["type"] == "esd_status_update"
        assert ack["type"] == "esd_data_ack"
        assert ack["received"] is True

        await sensor.close()
        await observer.close()

    @pytest.mark.asyncio
    async def test_malformed_message_keeps_connection(self, client, parts):
        ws = await _connect(client)
        await ws.send_str("{not json")
        reply = await ws.receive_json(timeout=2)
        assert reply == {"type": "error", "message": "Invalid message format", "timestamp": reply["timestamp"]}

        await ws.send_json({"type": "system_command", "command": "get_status"})
        reply = await ws.receive_json(timeout=2)
        assert reply["type"] == "esd_status_response"
        await ws.close()

    @pytest.mark.asyncio
    async def test_clear_alerts_command(self, client, parts):
        ws = await _connect(client)
        await ws.send_json(SENSOR_ALL_ON)
        await ws.receive_json(timeout=2)  # broadcast
        await ws.receive_json(timeout=2)  # ack

        await ws.send_json({"type": "system_command", "command": "clear_alerts"})
        assert (await ws.receive_json(timeout=2))["type"] == "esd_alerts_cleared"

        await ws.send_json({"type": "system_command", "command": "get_alerts"})
        reply = await ws.receive_json(timeout=2)
        assert reply["type"] == "esd_alerts_response"
        assert reply["alerts"] == []
        assert parts.store.get_alerts() == []
        await ws.close()

    @pytest.mark.asyncio
    async def test_disconnected_observer_does_not_block_others(self, client, parts):
        sensor = await _connect(client)
        leaving = await _connect(client)
        staying = await _connect(client)

        await leaving.close()
        await sensor.send_json(SENSOR_ALL_ON)

        update = await staying.receive_json(timeout=2)
        assert update["safetyStatus"] == "SAFE"
        assert await _wait_for(lambda: len(parts.registry) == 2)

        await sensor.close()
        await staying.close()
        assert await _wait_for(lambda: len(parts.registry) == 0)


class TestLiveness:
    @pytest.mark.asyncio
    async def test_pong_clears_pending_mark(self, client, parts):
        ws = await _connect(client)
        [conn] = parts.registry.connections()

        await parts.sweeper.sweep_once()
        assert conn.pending is True

        # Reading the reply also processes the ping and answers it
        await ws.send_json({"type": "system_command", "command": "get_status"})
        await ws.receive_json(timeout=2)
        assert await _wait_for(lambda: conn.pending is False)

        await parts.sweeper.sweep_once()
        assert conn in parts.registry
        await ws.close()

    @pytest.mark.asyncio
    async def test_unresponsive_client_evicted(self, client, parts):
        ws = await _connect(client, autoping=False)

        await parts.sweeper.sweep_once()
        ping = await ws.receive(timeout=2)
        assert ping.type == WSMsgType.PING

        sweep = asyncio.create_task(parts.sweeper.sweep_once())
        closing = await ws.receive(timeout=5)
        evicted = await sweep

        assert closing.type in (WSMsgType.CLOSE, WSMsgType.CLOSED, WSMsgType.CLOSING)
        assert len(evicted) == 1
        assert len(parts.registry) == 0


class TestHttpApi:
    @pytest.mark.asyncio
    async def test_root(self, client):
        resp = await client.get("/")
        body = await resp.json()
        assert resp.status == 200
        assert body["status"] == "running"

    @pytest.mark.asyncio
    async def test_status(self, client, parts):
        parts.store.apply_reading(True, True, False)
        body = await (await client.get("/api/esd/status")).json()

        assert body["success"] is True
        assert body["data"]["safetyStatus"] == "NOT_PROPERLY_GROUNDED"
        assert body["data"]["status"]["properlyGrounded"] is False

    @pytest.mark.asyncio
    async def test_safety(self, client, parts):
        parts.store.apply_reading(True, True, True)
        data = (await (await client.get("/api/esd/safety")).json())["data"]

        assert data["safetyStatus"] == "SAFE"
        assert data["isSafe"] is True
        assert data["operatorPresent"] is True

    @pytest.mark.asyncio
    async def test_alerts(self, client, parts):
        parts.store.apply_reading(False, True, False)
        data = (await (await client.get("/api/esd/alerts")).json())["data"]

        assert data["alertCount"] == 2
        assert [a["type"] for a in data["alerts"]] == [
            "SAFETY_VIOLATION",
            "WRIST_STRAP_STATUS_CHANGE",
        ]

    @pytest.mark.asyncio
    async def test_read_endpoints_do_not_mutate(self, client, parts):
        before = parts.store.get_status()
        for path in ("/api/esd/status", "/api/esd/safety", "/api/esd/alerts", "/api/health"):
            assert (await client.get(path)).status == 200
        assert parts.store.get_status() == before

    @pytest.mark.asyncio
    async def test_health(self, client):
        resp = await client.get("/api/health")
        data = (await resp.json())["data"]

        assert resp.status == 200
        assert data["status"] == "healthy"
        assert data["uptime"] >= 0
        assert data["memory"]["rss_mb"] > 0
        assert data["esdStatus"]["operatorPresent"] is False
        checks = {c["name"]: c["status"] for c in data["checks"]}
        assert checks["liveness_sweeper"] == "pass"

    @pytest.mark.asyncio
    async def test_unknown_route(self, client):
        resp = await client.get("/api/nope")
        body = await resp.json()
        assert resp.status == 404
        assert body == {
            "success": False,
            "error": "Route not found",
            "path": "/api/nope",
            "method": "GET",
        }

    @pytest.mark.asyncio
    async def test_cors_header(self, client):
        resp = await client.get("/api/esd/safety", headers={"Origin": "http://dashboard.local"})
        assert "Access-Control-Allow-Origin" in resp.headers
