"""Tests for the outbound event bus."""

from unittest.mock import MagicMock

from relaymatch.events import Event, EventBus, EventType, InMemoryEventSink, LoggingEventSink


def test_emit_reaches_every_sink():
    first, second = InMemoryEventSink(), InMemoryEventSink()
    bus = EventBus([first, second])

    event = bus.emit(EventType.HUB_CREATED, hub_id="HUB-1")

    assert first.events == [event]
    assert second.events == [event]
    assert event.payload == {"hub_id": "HUB-1"}


def test_failing_sink_does_not_break_others():
    broken = MagicMock()
    broken.publish.side_effect = RuntimeError("down")
    sink = InMemoryEventSink()
    bus = EventBus([broken, sink])

    bus.emit(EventType.MATCH_HELD, match_id="M-1")

    assert len(sink.events) == 1
    broken.publish.assert_called_once()


def test_subscribe_and_filter():
    sink = InMemoryEventSink()
    bus = EventBus()
    bus.subscribe(sink)
    bus.subscribe(LoggingEventSink())

    bus.emit(EventType.MATCH_CREATED, match_id="M-1")
    bus.emit(EventType.MATCH_HELD, match_id="M-1")

    assert [e.payload["match_id"] for e in sink.of_type(EventType.MATCH_HELD)] == ["M-1"]
    sink.clear()
    assert sink.events == []


def test_event_to_dict():
    data = Event(EventType.HUB_RETIRED, {"hub_id": "HUB-2"}).to_dict()
    assert data["event_type"] == "HUB_RETIRED"
    assert data["payload"] == {"hub_id": "HUB-2"}
    assert "emitted_at" in data
