import numpy as np
import pytest

from core.bus import EventBus
from core.events import (
    BoundingBoxes, Detection, DetectionImage, FrameHeader, ObjectCount, StagedFrame,
)
from core.geometry import GeometryFusion
from core.requests import RequestTracker
from core.ring import Slot, SlotState
from core.stager import FrameStager
from core.stages.publish import PublishStage, to_pixel_box
from conftest import make_cloud, make_image


def consuming_slot(detections, tag=None, cloud=None):
    frame = StagedFrame(
        image=make_image(100, 100),
        cloud=cloud if cloud is not None else make_cloud(100, 100, xyz=(0.0, 0.0, 2.0)),
        header=FrameHeader(frame_id="camera", seq=7),
        tag=tag,
    )
    return Slot("A", state=SlotState.CONSUMING, frame=frame, detections=detections)


@pytest.fixture
def bus():
    return EventBus()


@pytest.fixture
def recorded(bus):
    events = {ObjectCount: [], BoundingBoxes: [], DetectionImage: []}
    for event_type, sink in events.items():
        bus.subscribe(event_type, sink.append)
    return events


@pytest.fixture
def stage(settings, bus):
    return PublishStage(settings, GeometryFusion((0.1, 0.0125, 0.46)), bus)


def test_to_pixel_box_truncates():
    detection = Detection(0.5, 0.5, 0.25, 0.125, 0, 0.9)
    box = to_pixel_box(detection, 101, 99)
    assert (box.xmin, box.ymin, box.xmax, box.ymax) == (37, 43, 63, 55)


def test_empty_cycle_publishes_placeholder(stage, recorded):
    result = stage.run(consuming_slot([]), cycle=4)

    assert result.count == 0
    assert len(result.boxes) == 1
    assert result.boxes[0].label == "None"
    assert result.boxes[0].class_id == -1
    assert [e.count for e in recorded[ObjectCount]] == [0]
    assert len(recorded[BoundingBoxes]) == 1
    assert recorded[BoundingBoxes][0].boxes[0].label == "None"


def test_warm_up_slot_without_result_publishes_empty(stage, recorded):
    result = stage.run(consuming_slot(None))
    assert result.count == 0
    assert len(recorded[ObjectCount]) == 1
    assert len(recorded[BoundingBoxes]) == 1


def test_detections_are_fused_labelled_and_grouped_by_class(stage, recorded):
    detections = [
        Detection(0.7, 0.7, 0.2, 0.2, 1, 0.8),
        Detection(0.3, 0.3, 0.2, 0.2, 0, 0.9),
        Detection(0.5, 0.5, 0.2, 0.2, 1, 0.6),
    ]
    result = stage.run(consuming_slot(detections), cycle=9)

    assert result.count == 3
    assert [b.label for b in result.boxes] == ["person", "chair", "chair"]
    assert [b.probability for b in result.boxes] == [0.9, 0.8, 0.6]
    for b in result.boxes:
        assert b.x == pytest.approx(2.1)
        assert b.y == pytest.approx(0.0125)
        assert b.z == pytest.approx(0.46)

    assert recorded[ObjectCount][0].count == 3
    event = recorded[BoundingBoxes][0]
    assert len(event.boxes) == 3
    assert event.header.frame_id == "detection"
    assert event.header.seq == 9
    assert event.image_header.seq == 7


def test_exactly_one_output_set_per_run(stage, recorded):
    for _ in range(3):
        stage.run(consuming_slot([Detection(0.5, 0.5, 0.2, 0.2, 0, 0.9)]))
    assert len(recorded[ObjectCount]) == 3
    assert len(recorded[BoundingBoxes]) == 3
    # the accumulator does not leak between cycles
    assert all(e.count == 1 for e in recorded[ObjectCount])


def test_unknown_class_id_falls_back_to_number(stage):
    result = stage.run(consuming_slot([Detection(0.5, 0.5, 0.2, 0.2, 5, 0.9)]))
    assert result.boxes[0].label == "5"


def test_box_without_depth_reports_zero_position(stage):
    cloud = make_cloud(100, 100, xyz=(0.0, 0.0, np.nan))
    result = stage.run(consuming_slot([Detection(0.5, 0.5, 0.2, 0.2, 0, 0.9)], cloud=cloud))
    box = result.boxes[0]
    assert (box.x, box.y, box.z) == (0.0, 0.0, 0.0)


def test_no_detection_image_without_visuals(stage, recorded):
    result = stage.run(consuming_slot([]))
    assert result.image is None
    assert recorded[DetectionImage] == []


def test_tagged_result_completes_outstanding_request(settings, bus):
    tracker = RequestTracker(FrameStager())
    request = tracker.submit(make_image())
    stage = PublishStage(settings, GeometryFusion(), bus, tracker=tracker)

    stage.run(consuming_slot([], tag=None))
    assert not request.done

    stage.run(consuming_slot([], tag=request.id))
    assert request.done
    assert request.result(0).tag == request.id


def test_warm_up_slot_does_not_answer_a_request(settings, bus):
    tracker = RequestTracker(FrameStager())
    request = tracker.submit(make_image())
    stage = PublishStage(settings, GeometryFusion(), bus, tracker=tracker)

    stage.run(consuming_slot(None, tag=request.id))

    assert not request.done
    assert tracker.outstanding is request
