import threading
from concurrent.futures import ThreadPoolExecutor

import pytest

from core.bus import EventBus
from core.events import BoundingBoxes, FrameHeader, ObjectCount, PipelineStopped
from core.pipeline import RingPipeline
from core.requests import RequestTracker
from core.ring import SlotState
from core.stager import FrameStager
from utils.failures import FailureManager, InferenceError, PipelineStateError
from conftest import FakeBackend, make_cloud, make_image


@pytest.fixture
def stager():
    return FrameStager()


@pytest.fixture
def bus():
    return EventBus()


def stage_frame(stager, seq):
    stager.put_frame(make_image(), make_cloud(64, 48), FrameHeader(frame_id="camera", seq=seq))


def run_cycles(pipeline, stager, count):
    results = []
    with ThreadPoolExecutor(max_workers=2) as executor:
        for k in range(1, count + 1):
            stage_frame(stager, k)
            results.append(pipeline.run_cycle(executor))
    return results


def test_publish_lags_fetch_by_two_cycles(stager, bus, settings, backend):
    pipeline = RingPipeline(stager, backend, settings, bus)
    stage_frame(stager, 0)
    pipeline.prime()

    results = run_cycles(pipeline, stager, 6)

    published = [r.image_header.seq for r in results]
    assert published == [0, 0, 1, 2, 3, 4]


def test_first_cycle_publishes_an_empty_warm_up_result(stager, bus, settings, backend):
    pipeline = RingPipeline(stager, backend, settings, bus)
    stage_frame(stager, 0)
    pipeline.prime()

    first, second = run_cycles(pipeline, stager, 2)

    assert first.count == 0
    assert first.boxes[0].label == "None"
    assert second.count == 1
    assert second.boxes[0].label == "person"


def test_every_cycle_publishes_one_count_and_one_box_set(stager, bus, settings, backend):
    counts, boxes = [], []
    bus.subscribe(ObjectCount, counts.append)
    bus.subscribe(BoundingBoxes, boxes.append)
    pipeline = RingPipeline(stager, backend, settings, bus)
    stage_frame(stager, 0)
    pipeline.prime()

    run_cycles(pipeline, stager, 5)

    assert len(counts) == 5
    assert len(boxes) == 5
    assert all(len(event.boxes) >= 1 for event in boxes)


def test_slot_states_after_a_cycle(stager, bus, settings, backend):
    pipeline = RingPipeline(stager, backend, settings, bus)
    stage_frame(stager, 0)
    pipeline.prime()

    run_cycles(pipeline, stager, 1)

    states = {slot.name: slot.state for slot in pipeline.ring.slots}
    assert states == {"A": SlotState.READY, "B": SlotState.FETCHED, "C": SlotState.EMPTY}


def test_intermediate_frames_are_dropped_when_sensor_outpaces(stager, bus, settings, backend):
    pipeline = RingPipeline(stager, backend, settings, bus)
    stage_frame(stager, 0)
    pipeline.prime()

    with ThreadPoolExecutor(max_workers=2) as executor:
        for seq in (1, 2, 3):
            stage_frame(stager, seq)
        pipeline.run_cycle(executor)
        pipeline.run_cycle(executor)
        result = pipeline.run_cycle(executor)

    assert result.image_header.seq == 3


def test_one_shot_request_resolves_through_the_pipeline(stager, bus, settings, backend):
    tracker = RequestTracker(stager)
    pipeline = RingPipeline(stager, backend, settings, bus, tracker=tracker)
    stage_frame(stager, 0)
    pipeline.prime()

    request = tracker.submit(make_image(value=200))
    with ThreadPoolExecutor(max_workers=2) as executor:
        for _ in range(3):
            pipeline.run_cycle(executor)

    result = request.result(timeout=0)
    assert result is not None
    assert result.tag == request.id
    assert tracker.outstanding is None


def test_threaded_run_and_stop(stager, bus, settings, backend):
    published = threading.Event()
    stopped = []
    bus.subscribe(BoundingBoxes, lambda event: published.set())
    bus.subscribe(PipelineStopped, stopped.append)

    pipeline = RingPipeline(stager, backend, settings, bus)
    stage_frame(stager, 0)
    pipeline.start()
    try:
        assert published.wait(timeout=5.0)
        assert pipeline.is_running
    finally:
        pipeline.stop(timeout=5.0)

    assert not pipeline.is_alive()
    assert not pipeline.is_running
    assert len(stopped) == 1
    assert not stopped[0].fatal


def test_stop_before_first_frame(stager, bus, settings, backend):
    stopped = []
    bus.subscribe(PipelineStopped, stopped.append)
    pipeline = RingPipeline(stager, backend, settings, bus)

    pipeline.start()
    pipeline.stop(timeout=5.0)

    assert not pipeline.is_alive()
    assert backend.calls == 0
    assert len(stopped) == 1


def test_inference_failure_is_fatal(stager, bus, settings):
    stopped = threading.Event()
    events = []

    def on_stopped(event):
        events.append(event)
        stopped.set()

    bus.subscribe(PipelineStopped, on_stopped)
    failures = FailureManager()
    pipeline = RingPipeline(stager, FakeBackend(fail_on=3), settings, bus, failures=failures)
    stage_frame(stager, 0)

    pipeline.start()
    assert stopped.wait(timeout=5.0)
    pipeline.join(timeout=5.0)

    assert events[0].fatal
    assert "device lost" in events[0].reason
    assert isinstance(pipeline.error, InferenceError)
    assert not pipeline.is_running
    assert failures.count("InferenceError") == 1


def test_published_slot_was_fetched_two_cycles_earlier(stager, bus, settings, backend):
    pipeline = RingPipeline(stager, backend, settings, bus)
    stage_frame(stager, 0)
    pipeline.prime()

    with ThreadPoolExecutor(max_workers=2) as executor:
        for k in range(1, 6):
            stage_frame(stager, k)
            upcoming = pipeline.ring.slots[(pipeline.ring._index + 2) % 3]
            pipeline.run_cycle(executor)
            if k >= 2:
                assert upcoming.inferred_cycle == k - 1
                assert upcoming.fetched_cycle == max(k - 2, 0)


def test_stale_slot_is_refused_at_publish(stager, bus, settings, backend):
    pipeline = RingPipeline(stager, backend, settings, bus)
    stage_frame(stager, 0)
    pipeline.prime()

    with ThreadPoolExecutor(max_workers=2) as executor:
        for k in (1, 2):
            stage_frame(stager, k)
            pipeline.run_cycle(executor)
        # The slot published next cycle was inferred during cycle 2
        upcoming = pipeline.ring.slots[(pipeline.ring._index + 2) % 3]
        upcoming.inferred_cycle = 1
        with pytest.raises(PipelineStateError):
            pipeline.run_cycle(executor)


def test_image_depth_and_header_stay_together_under_concurrent_writes(stager, bus, settings, backend):
    # Each cloud carries its own sequence number as depth, so a mixed-up
    # frame shows up as a box whose X does not match its header.
    def put(seq):
        cloud = make_cloud(64, 48, xyz=(0.0, 0.0, float(seq + 1)))
        stager.put_frame(make_image(), cloud, FrameHeader(frame_id="camera", seq=seq))

    collected = []
    enough = threading.Event()

    def on_boxes(event):
        if event.boxes[0].class_id < 0:
            return
        collected.append(event)
        if len(collected) >= 30:
            enough.set()

    bus.subscribe(BoundingBoxes, on_boxes)
    done = threading.Event()

    def writer():
        seq = 1
        while not done.is_set():
            put(seq)
            seq += 1

    put(0)
    pipeline = RingPipeline(stager, backend, settings, bus)
    writer_thread = threading.Thread(target=writer, daemon=True)
    pipeline.start()
    writer_thread.start()
    try:
        enough.wait(timeout=10.0)
    finally:
        done.set()
        writer_thread.join(timeout=5.0)
        pipeline.stop(timeout=5.0)

    assert pipeline.error is None
    assert len(collected) >= 30
    for event in collected:
        assert event.boxes[0].x == pytest.approx(event.image_header.seq + 1 + 0.1)
