import io
import time

from core.bus import EventBus
from core.console_subscriber import ConsoleSubscriber
from core.events import BoundingBox3D, BoundingBoxes, DetectionImage, FrameHeader
from core.snapshot_subscriber import SnapshotSubscriber
from conftest import make_image


def boxes_event(boxes, fps=9.5):
    return BoundingBoxes(boxes=boxes, header=FrameHeader(), image_header=FrameHeader(), fps=fps)


def test_console_lists_objects():
    bus = EventBus()
    stream = io.StringIO()
    ConsoleSubscriber(bus, stream=stream, clear=False)

    bus.publish(boxes_event([BoundingBox3D("person", 0, 0.87, 1, 2, 3, 4, 2.1, -0.3, 0.5)]))

    lines = stream.getvalue().splitlines()
    assert lines[0] == "FPS:9.5"
    assert lines[1] == "Objects:"
    assert lines[3] == "person: 87%  X 2.10  Y -0.30  Z 0.50"


def test_console_skips_placeholder():
    bus = EventBus()
    stream = io.StringIO()
    console = ConsoleSubscriber(bus, stream=stream, clear=False)
    text = console.format(boxes_event([BoundingBox3D.placeholder()]))
    assert "None" not in text

    console.close()
    bus.publish(boxes_event([]))
    assert stream.getvalue() == ""


def test_snapshot_writer_saves_every_kth_image(tmp_path):
    bus = EventBus()
    writer = SnapshotSubscriber(bus, str(tmp_path), prefix="shot", every=2)
    writer.start()
    for _ in range(4):
        bus.publish(DetectionImage(image=make_image(), header=FrameHeader()))

    deadline = time.monotonic() + 5.0
    while writer.saved < 2 and time.monotonic() < deadline:
        time.sleep(0.01)
    writer.stop()

    assert sorted(p.name for p in tmp_path.iterdir()) == ["shot_00000000.jpg", "shot_00000001.jpg"]
    assert bus.subscriber_count(DetectionImage) == 0
