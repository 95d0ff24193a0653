import logging
import threading
from pdfbatch.infrastructure.event_bus import EventBus
from pdfbatch.domain.events import Event

class MockEvent(Event):
    message: str

class OtherEvent(Event):
    pass

def test_event_bus_subscribe_publish():
    bus = EventBus()
    received_events = []

    bus.subscribe(MockEvent, received_events.append)
    bus.publish(MockEvent(message="hello"))

    assert len(received_events) == 1
    assert received_events[0].message == "hello"

def test_event_bus_dispatches_by_exact_type():
    bus = EventBus()
    received = []
    bus.subscribe(MockEvent, received.append)

    bus.publish(OtherEvent())

    assert received == []

def test_event_bus_decorator_subscribe():
    bus = EventBus()
    received = []

    @bus.subscribe(MockEvent)
    def on_event(event: MockEvent):
        received.append(event)

    bus.publish(MockEvent(message="decorator"))
    assert len(received) == 1
    assert received[0].message == "decorator"

def test_failing_subscriber_does_not_block_others(caplog):
    bus = EventBus()
    received = []

    def broken(_event):
        raise RuntimeError("view crashed")

    bus.subscribe(MockEvent, broken)
    bus.subscribe(MockEvent, received.append)

    with caplog.at_level(logging.WARNING):
        bus.publish(MockEvent(message="still delivered"))

    assert [e.message for e in received] == ["still delivered"]
    assert "view crashed" in caplog.text

def test_publish_from_many_threads():
    bus = EventBus()
    received = []
    lock = threading.Lock()

    def on_event(event):
        with lock:
            received.append(event.message)

    bus.subscribe(MockEvent, on_event)
    threads = [
        threading.Thread(target=lambda i=i: [bus.publish(MockEvent(message=f"{i}-{n}")) for n in range(50)])
        for i in range(8)
    ]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert len(received) == 400
    assert len(set(received)) == 400
