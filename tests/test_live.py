"""Tests del broadcaster en vivo, payloads y sink de Redis."""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import orjson
import pytest

from telemetry_ingest.core.domain.measurement import MessageCategory
from telemetry_ingest.live import LIVE_EVENT, LiveBroadcaster, LiveUpdate, RedisLiveSink
from telemetry_ingest.live.payloads import from_json_message, from_measurement

from .conftest import T0


def make_client():
    ws = MagicMock()
    ws.send_text = AsyncMock()
    return ws


class TestPayloads:
    def test_message_envelope(self):
        update = from_measurement("m1/sht40/temperature", 21.5, T0)
        message = orjson.loads(update.to_message())

        assert message["event"] == LIVE_EVENT == "mqtt:data"
        assert message["data"] == {
            "topic": "m1/sht40/temperature",
            "value": 21.5,
            "metadata": None,
            "time": "2024-05-01T12:00:00.000Z",
        }

    def test_flat_status_kept_as_metadata(self):
        update = from_json_message("m1/sensors/status", MessageCategory.SENSORS_STATUS, {"sgp40:voc": {}}, T0)
        assert update.metadata == {"sgp40:voc": {}}
        assert update.value is None


class TestBroadcasterSkips:
    def test_no_subscribers(self):
        broadcaster = LiveBroadcaster()
        assert broadcaster.emit(from_measurement("t", 1.0, T0)) is False
        assert broadcaster.stats["skipped"] == 1

    def test_no_loop_attached(self):
        broadcaster = LiveBroadcaster()
        broadcaster.register(make_client())
        assert broadcaster.emit(from_measurement("t", 1.0, T0)) is False


class TestBroadcasterDelivery:
    @pytest.mark.asyncio
    async def test_emit_from_worker_thread(self):
        broadcaster = LiveBroadcaster()
        broadcaster.attach_loop(asyncio.get_running_loop())
        client = make_client()
        broadcaster.register(client)

        update = from_measurement("m1/sht40/temperature", 21.5, T0)
        # paho delivers on its own thread
        scheduled = await asyncio.get_running_loop().run_in_executor(None, broadcaster.emit, update)
        assert scheduled is True

        for _ in range(50):
            if client.send_text.await_count:
                break
            await asyncio.sleep(0.01)
        client.send_text.assert_awaited_once_with(update.to_message().decode("utf-8"))

    @pytest.mark.asyncio
    async def test_failing_client_dropped(self):
        broadcaster = LiveBroadcaster()
        good, bad = make_client(), make_client()
        bad.send_text.side_effect = ConnectionError("gone")
        broadcaster.register(good)
        broadcaster.register(bad)

        await broadcaster._deliver(from_measurement("t", 1.0, T0))

        assert broadcaster.client_count == 1
        good.send_text.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_sink_receives_update(self):
        sink = MagicMock()
        sink.is_connected = True
        broadcaster = LiveBroadcaster(sinks=[sink])
        assert broadcaster.has_subscribers()

        update = from_measurement("t", 2.0, T0)
        await broadcaster._deliver(update)
        sink.publish.assert_called_once_with(update)


class TestRedisSink:
    def test_publish_to_channel(self):
        client = MagicMock()
        sink = RedisLiveSink("redis://localhost:6379/0", channel="telemetry:live", client=client)
        update = LiveUpdate(topic="m1/logs", value=None, metadata={"msg": "hi"}, time=T0)

        assert sink.is_connected
        assert sink.publish(update) is True
        client.publish.assert_called_once_with("telemetry:live", update.to_message())

    def test_publish_error_contained(self):
        client = MagicMock()
        client.publish.side_effect = ConnectionError("redis down")
        sink = RedisLiveSink("redis://localhost:6379/0", client=client)
        assert sink.publish(from_measurement("t", 1.0, T0)) is False

    def test_not_connected(self):
        assert RedisLiveSink("redis://localhost:6379/0").publish(from_measurement("t", 1.0, T0)) is False
