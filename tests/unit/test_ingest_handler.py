"""Unit tests for the per-connection IngestHandler."""

import json
from unittest.mock import AsyncMock

import pytest

from src.esdmon.gateway.broadcaster import Broadcaster
from src.esdmon.gateway.ingest import ConnectionState, IngestHandler, sensor_flag
from src.esdmon.gateway.registry import ClientRegistry
from src.esdmon.status.store import StatusStore
from tests.fakes import FakeConnection


def _sensor(ir=1, touch=1, ground=1) -> str:
    return json.dumps({
        "type": "esd_sensor_data",
        "irSensor": ir,
        "touchSensor": touch,
        "groundStatus": ground,
    })


def _command(name) -> str:
    return json.dumps({"type": "system_command", "command": name})


@pytest.fixture
def store():
    return StatusStore()


@pytest.fixture
def registry():
    return ClientRegistry()


@pytest.fixture
def broadcaster(registry):
    return Broadcaster(registry, send_timeout_seconds=0.05)


@pytest.fixture
def sensor(registry):
    conn = FakeConnection()
    registry.register(conn)
    return conn


@pytest.fixture
def observer(registry):
    conn = FakeConnection()
    registry.register(conn)
    return conn


@pytest.fixture
def handler(sensor, store, broadcaster, registry):
    return IngestHandler(sensor, store, broadcaster, registry)


class TestSensorFlag:
    @pytest.mark.parametrize("value,expected", [
        (1, True),
        (1.0, True),
        (0, False),
        (2, False),
        ("1", False),
        (True, False),
        (None, False),
    ])
    def test_only_number_one_is_active(self, value, expected):
        assert sensor_flag(value) is expected


class TestSensorData:
    @pytest.mark.asyncio
    async def test_reading_updates_store(self, handler, store):
        await handler.handle_message(_sensor(1, 1, 1))
        status = store.get_status()
        assert status.operator_present is True
        assert status.wrist_strap_connected is True
        assert status.properly_grounded is True

    @pytest.mark.asyncio
    async def test_broadcast_then_ack_to_sender_only(self, handler, sensor, observer):
        await handler.handle_message(_sensor(1, 0, 1))

        assert [m["type"] for m in observer.messages] == ["esd_status_update"]
        assert [m["type"] for m in sensor.messages] == ["esd_status_update", "esd_data_ack"]
        ack = sensor.messages[1]
        assert ack["received"] is True
        assert "timestamp" in ack
        assert observer.messages[0]["safetyStatus"] == "WRIST_STRAP_NOT_CONNECTED"

    @pytest.mark.asyncio
    async def test_unchanged_reading_still_broadcasts(self, handler, store, observer):
        await handler.handle_message(_sensor())
        alerts_after_first = len(store.get_alerts())
        await handler.handle_message(_sensor())

        assert len(store.get_alerts()) == alerts_after_first
        assert len(observer.messages) == 2

    @pytest.mark.asyncio
    async def test_missing_readings_are_inactive(self, handler, store):
        await handler.handle_message(json.dumps({"type": "esd_sensor_data", "irSensor": 1}))
        status = store.get_status()
        assert status.operator_present is True
        assert status.wrist_strap_connected is False
        assert status.properly_grounded is False

    @pytest.mark.asyncio
    async def test_observer_failure_does_not_block_ack(self, handler, registry, sensor):
        registry.register(FakeConnection(fail_send=True))
        await handler.handle_message(_sensor())
        assert sensor.messages[-1]["type"] == "esd_data_ack"


class TestMalformedInput:
    @pytest.mark.asyncio
    @pytest.mark.parametrize("raw", [
        "not json",
        "{",
        "[1, 2]",
        "42",
        b"\xff\xfe",
        pytest.param("[" * 100000, id="deeply_nested"),
    ])
    async def test_error_reply_keeps_connection(self, handler, sensor, raw):
        await handler.handle_message(raw)

        assert sensor.messages[-1]["type"] == "error"
        assert sensor.messages[-1]["message"] == "Invalid message format"
        assert handler.state is ConnectionState.CONNECTED

    @pytest.mark.asyncio
    async def test_recovers_after_error(self, handler, sensor, store):
        await handler.handle_message("garbage")
        await handler.handle_message(_sensor())
        assert store.get_status().operator_present is True
        assert sensor.messages[-1]["type"] == "esd_data_ack"

    @pytest.mark.asyncio
    async def test_unexpected_failure_replies_error(self, handler, sensor):
        handler.broadcaster.broadcast_status = AsyncMock(side_effect=RuntimeError("boom"))
        await handler.handle_message(_sensor())

        assert sensor.messages[-1]["type"] == "error"
        # The reading was applied before the failure and is not rolled back
        assert handler.store.get_status().operator_present is True

    @pytest.mark.asyncio
    async def test_unknown_type_ignored(self, handler, sensor):
        await handler.handle_message(json.dumps({"type": "hello"}))
        assert sensor.sent == []


class TestCommands:
    @pytest.mark.asyncio
    async def test_get_status(self, handler, sensor, observer):
        await handler.handle_message(_command("get_status"))

        assert observer.sent == []
        reply = sensor.messages[-1]
        assert reply["type"] == "esd_status_response"
        assert reply["safetyStatus"] == "NO_OPERATOR"
        assert reply["status"]["lastUpdate"] is None

    @pytest.mark.asyncio
    async def test_get_alerts(self, handler, sensor):
        await handler.handle_message(_sensor(0, 0, 0))
        await handler.handle_message(_command("get_alerts"))

        reply = sensor.messages[-1]
        assert reply["type"] == "esd_alerts_response"
        assert [a["type"] for a in reply["alerts"]] == ["SAFETY_VIOLATION"]

    @pytest.mark.asyncio
    async def test_clear_then_get_alerts_is_empty(self, handler, sensor):
        await handler.handle_message(_sensor(1, 1, 1))
        await handler.handle_message(_command("clear_alerts"))
        assert sensor.messages[-1]["type"] == "esd_alerts_cleared"

        await handler.handle_message(_command("get_alerts"))
        assert sensor.messages[-1]["alerts"] == []

        await handler.handle_message(_sensor(1, 1, 0))
        await handler.handle_message(_command("get_alerts"))
        # Grounding change plus the violation it causes
        assert len(sensor.messages[-1]["alerts"]) == 2

    @pytest.mark.asyncio
    @pytest.mark.parametrize("command", ["reboot", "GET_STATUS", None, 7])
    async def test_unknown_command_silently_ignored(self, handler, sensor, command):
        await handler.handle_message(_command(command))
        assert sensor.sent == []
        assert handler.state is ConnectionState.CONNECTED


class TestClose:
    def test_close_unregisters(self, handler, registry, sensor):
        handler.handle_close()
        assert sensor not in registry
        assert handler.state is ConnectionState.CLOSED

    def test_close_twice_is_harmless(self, handler, registry):
        handler.handle_close()
        handler.handle_close("error")
        assert handler.state is ConnectionState.CLOSED

    def test_close_when_not_registered(self, handler, registry, sensor):
        registry.unregister(sensor)
        handler.handle_close()
        assert handler.state is ConnectionState.CLOSED

    @pytest.mark.asyncio
    async def test_messages_after_close_dropped(self, handler, sensor, store):
        handler.handle_close()
        await handler.handle_message(_sensor())
        assert sensor.sent == []
        assert store.get_status().last_update is None
