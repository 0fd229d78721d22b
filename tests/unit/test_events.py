"""
Unit tests for the sequencer event bus
"""

from zerosync.core.events import EventBus, EventType, SequencerEvent


def test_subscribe_receives_matching_events():
    bus = EventBus()
    received = []
    bus.subscribe(EventType.BATCH_CREATED, received.append)

    bus.emit(EventType.BATCH_CREATED, batch_id=1)
    bus.emit(EventType.BATCH_PROVEN, batch_id=1)

    assert len(received) == 1
    assert received[0].event_type == EventType.BATCH_CREATED
    assert received[0].payload == {"batch_id": 1}


def test_wildcard_subscriber_receives_everything():
    bus = EventBus()
    received = []
    bus.subscribe("*", received.append)

    bus.emit(EventType.TRANSACTION_ADDED, tx_hash="0x1")
    bus.emit(EventType.BATCH_FAILED, batch_id=2, error="boom")

    assert [e.event_type for e in received] == [EventType.TRANSACTION_ADDED, EventType.BATCH_FAILED]


def test_unsubscribe_stops_delivery():
    bus = EventBus()
    received = []
    unsubscribe = bus.subscribe(EventType.BATCH_ANCHORED, received.append)

    unsubscribe()
    bus.emit(EventType.BATCH_ANCHORED, batch_id=1)

    assert received == []
    assert bus.subscriber_count() == 0


def test_failing_subscriber_does_not_break_publisher():
    bus = EventBus()
    received = []

    def broken(_event):
        raise RuntimeError("subscriber bug")

    bus.subscribe(EventType.BATCH_PROVEN, broken)
    bus.subscribe(EventType.BATCH_PROVEN, received.append)

    event = bus.emit(EventType.BATCH_PROVEN, batch_id=3)

    assert received == [event]


def test_event_to_dict():
    event = SequencerEvent(event_type=EventType.ANCHOR_FAILED, payload={"batch_id": 4})
    data = event.to_dict()

    assert data["event"] == "anchor_failed"
    assert data["payload"] == {"batch_id": 4}
    assert isinstance(data["timestamp"], float)
