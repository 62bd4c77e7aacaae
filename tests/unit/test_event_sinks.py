"""Event sink tests."""

import fakeredis
import pytest

from caseflow.events import EventType, InMemoryEventSink, ProcessEvent, get_event_sink
from caseflow.events.base import BaseEventSink
from caseflow.events.redis import RedisEventSink


@pytest.mark.asyncio
async def test_inmemory_sink_typed_and_global_subscribers():
    sink = InMemoryEventSink()
    seen = []

    async def on_completed(event):
        seen.append(("completed", event.instance_id))

    sink.subscribe(EventType.PROCESS_COMPLETED, on_completed)
    sink.subscribe_all(lambda event: seen.append(("any", event.event_type)))

    await sink.emit("ProcessAdvanced", "inst-1", {"to_step_id": "submitted"})
    event = await sink.emit(EventType.PROCESS_COMPLETED, "inst-1", event_id="evt-9")

    assert event.event_id == "evt-9"
    assert seen == [
        ("any", "ProcessAdvanced"),
        ("any", "ProcessCompleted"),
        ("completed", "inst-1"),
    ]
    assert [e.event_type for e in sink.events_for("inst-1")] == [
        "ProcessAdvanced",
        "ProcessCompleted",
    ]
    assert sink.events_for("inst-1", EventType.PROCESS_ADVANCED)[0].payload == {
        "to_step_id": "submitted"
    }


@pytest.mark.asyncio
async def test_inmemory_sink_failing_handler_does_not_stop_others(caplog):
    sink = InMemoryEventSink()
    received = []

    def broken(event):
        raise RuntimeError("mail server down")

    sink.subscribe("ProcessStarted", broken)
    sink.subscribe("ProcessStarted", received.append)

    with caplog.at_level("ERROR"):
        event = await sink.emit("ProcessStarted", "inst-2")

    assert received == [event]
    assert "mail server down" in caplog.text


def test_inmemory_sink_subscription_management():
    sink = InMemoryEventSink()

    def handler(event):
        pass

    assert not sink.has_subscribers("ProcessCancelled")
    sink.subscribe("ProcessCancelled", handler)
    sink.subscribe("ProcessCancelled", handler)
    assert sink.has_subscribers(EventType.PROCESS_CANCELLED)
    assert sink.unsubscribe("ProcessCancelled", handler)
    assert not sink.unsubscribe("ProcessCancelled", handler)
    assert not sink.has_subscribers("ProcessCancelled")


@pytest.mark.asyncio
async def test_inmemory_sink_buffer_is_bounded():
    sink = InMemoryEventSink(buffer_size=2)
    for i in range(3):
        await sink.emit("ProcessStarted", f"inst-{i}")
    assert [e.instance_id for e in sink.delivered] == ["inst-1", "inst-2"]


@pytest.mark.asyncio
async def test_emit_swallows_delivery_errors(caplog):
    class Unreachable(BaseEventSink):
        async def deliver(self, event):
            raise ConnectionError("broker offline")

    with caplog.at_level("ERROR"):
        event = await Unreachable().emit("ProcessAdvanced", "inst-3", {"x": 1})

    assert event.instance_id == "inst-3"
    assert "broker offline" in caplog.text


def test_process_event_json_round_trip():
    event = ProcessEvent(event_type="ProcessCompleted", instance_id="i", payload={"outcome": "success"})
    restored = ProcessEvent.from_json(event.to_json())
    assert restored == event


@pytest.mark.asyncio
async def test_redis_sink_publish_and_consume():
    client = fakeredis.FakeAsyncRedis(decode_responses=True)
    sink = RedisEventSink(prefix="test", client=client)

    await sink.emit("ProcessAdvanced", "inst-1", {"sequence": 1})
    await sink.emit("ProcessAdvanced", "inst-1", {"sequence": 2})
    await sink.emit("ProcessCompleted", "inst-1")

    assert await client.llen("test:ProcessAdvanced") == 2

    consumed = []
    async for event in sink.consume(EventType.PROCESS_ADVANCED, lifespan=5):
        consumed.append(event.payload["sequence"])
        if len(consumed) == 2:
            break
    assert consumed == [1, 2]
    assert await client.llen("test:ProcessCompleted") == 1
    await sink.disconnect()


@pytest.mark.asyncio
async def test_redis_sink_skips_malformed_entries():
    client = fakeredis.FakeAsyncRedis(decode_responses=True)
    sink = RedisEventSink(prefix="test", client=client)
    await client.lpush("test:ProcessStarted", "not json")
    await sink.emit("ProcessStarted", "inst-5")

    async for event in sink.consume("ProcessStarted", lifespan=5):
        assert event.instance_id == "inst-5"
        break


def test_get_event_sink_backends(monkeypatch, tmp_path):
    monkeypatch.setenv("CASEFLOW_CONFIG", str(tmp_path / "absent.yaml"))
    monkeypatch.delenv("CASEFLOW_EVENT_SINK", raising=False)
    assert isinstance(get_event_sink(), InMemoryEventSink)
    assert isinstance(get_event_sink("redis"), RedisEventSink)
    monkeypatch.setenv("CASEFLOW_EVENT_SINK", "REDIS")
    assert isinstance(get_event_sink(), RedisEventSink)
    with pytest.raises(ValueError):
        get_event_sink("kafka")
