from core.bus import EventBus
from core.events import ObjectCount, PipelineStopped
from utils.failures import FailureManager


def test_publish_reaches_subscribers_of_that_type_only():
    bus = EventBus()
    counts, stops = [], []
    bus.subscribe(ObjectCount, counts.append)
    bus.subscribe(PipelineStopped, stops.append)

    delivered = bus.publish(ObjectCount(count=2))

    assert delivered == 1
    assert [e.count for e in counts] == [2]
    assert stops == []


def test_failing_handler_does_not_block_others():
    bus = EventBus()
    received = []

    def broken(event):
        raise RuntimeError("boom")

    bus.subscribe(ObjectCount, broken)
    bus.subscribe(ObjectCount, received.append)

    assert bus.publish(ObjectCount(count=1)) == 1
    assert len(received) == 1


def test_unsubscribe_and_clear():
    bus = EventBus()
    received = []
    bus.subscribe(ObjectCount, received.append)
    assert bus.subscriber_count(ObjectCount) == 1

    bus.unsubscribe(ObjectCount, received.append)
    bus.publish(ObjectCount(count=1))
    assert received == []

    bus.subscribe(ObjectCount, received.append)
    bus.clear()
    assert bus.subscriber_count(ObjectCount) == 0


def test_handler_failures_are_recorded():
    failures = FailureManager()
    bus = EventBus(failures)

    def broken(event):
        raise RuntimeError("boom")

    bus.subscribe(ObjectCount, broken)
    bus.publish(ObjectCount(count=1))
    bus.publish(ObjectCount(count=2))

    assert failures.count("SubscriberError") == 2


def test_published_count_includes_events_without_subscribers():
    bus = EventBus()
    bus.publish(PipelineStopped())
    bus.publish(ObjectCount(count=0))
    bus.publish(ObjectCount(count=1))
    assert bus.published_count(ObjectCount) == 2
    assert bus.published_count(PipelineStopped) == 1
