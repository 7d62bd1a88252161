"""
Publish Stage: turns the detections of the most recently inferred slot
into one output set per cycle.

Runs synchronously on the pipeline thread after the cycle's fetch and
inference tasks have been joined. Every cycle emits exactly one ObjectCount
and one BoundingBoxes event, whatever was detected, and completes the
outstanding one-shot request when its tag comes through.
"""
import time
from collections import defaultdict
from typing import Any, Dict, List

from core.bus import EventBus
from core.events import (
    BoundingBox3D, BoundingBoxes, Detection, DetectionImage, DetectionResult,
    FrameHeader, ObjectCount,
)
from core.geometry import GeometryFusion, PixelBox
from core.ring import Slot, SlotState
from utils.config import PipelineSettings
from utils.constants import DETECTION_FRAME_ID
from utils.logger import Logger


def to_pixel_box(detection: Detection, width: int, height: int) -> PixelBox:
    """Normalized center box -> integer pixel corners (truncated toward zero)."""
    return PixelBox(
        xmin=int((detection.x - detection.w / 2) * width),
        ymin=int((detection.y - detection.h / 2) * height),
        xmax=int((detection.x + detection.w / 2) * width),
        ymax=int((detection.y + detection.h / 2) * height),
    )


class PublishStage:
    """Pipeline Stage 3: per-class aggregation, depth fusion and output."""

    def __init__(
        self,
        settings: PipelineSettings,
        geometry: GeometryFusion,
        bus: EventBus,
        tracker: Any = None,
        visuals_handler: Any = None,
    ):
        """
        Args:
            settings: Pipeline settings (labels, visualization flag).
            geometry: Depth fusion used for every accepted detection.
            bus: Event bus the per-cycle records are published on.
            tracker: Optional RequestTracker completing one-shot requests.
            visuals_handler: Optional DetectionVisualsHandler for the detection image.
        """
        self.settings = settings
        self.geometry = geometry
        self.bus = bus
        self.tracker = tracker
        self.visuals_handler = visuals_handler
        self.logger = Logger("PublishStage")

        # Per-class accumulator, emptied at the end of every cycle
        self._per_class: Dict[int, List[Detection]] = defaultdict(list)

    @property
    def visualize(self) -> bool:
        return self.settings.enable_visualization and self.visuals_handler is not None

    def _accumulate(self, detections: List[Detection]) -> None:
        for detection in detections:
            self._per_class[detection.class_id].append(detection)

    def aggregate(self, slot: Slot, canvas=None) -> List[BoundingBox3D]:
        """Group the slot's detections by class and fuse each with depth."""
        frame = slot.frame
        height, width = frame.image.shape[:2]
        self._accumulate(slot.detections or [])

        boxes: List[BoundingBox3D] = []
        for class_id in sorted(self._per_class):
            for detection in self._per_class[class_id]:
                pixel_box = to_pixel_box(detection, width, height)
                position = self.geometry.locate(pixel_box, frame.cloud)
                boxes.append(BoundingBox3D(
                    label=self.settings.label_for(class_id),
                    class_id=class_id,
                    probability=detection.probability,
                    xmin=pixel_box.xmin, ymin=pixel_box.ymin,
                    xmax=pixel_box.xmax, ymax=pixel_box.ymax,
                    x=position.x, y=position.y, z=position.z,
                ))
                if canvas is not None:
                    self.visuals_handler.draw_position(canvas, pixel_box.center, position)
        return boxes

    def run(self, slot: Slot, cycle: int = 0, fps: float = 0.0) -> DetectionResult:
        """
        Publish the result carried by `slot`.

        A slot that has not been through inference yet (pipeline warm-up)
        publishes as an empty cycle.
        """
        if slot.state is not SlotState.CONSUMING:
            self.logger.debug(f"Publishing slot {slot.name} in state {slot.state.value}")

        frame = slot.frame
        canvas = frame.image.copy() if self.visualize else None

        try:
            boxes = self.aggregate(slot, canvas)
        finally:
            self._per_class.clear()

        header = FrameHeader(stamp=time.time(), frame_id=DETECTION_FRAME_ID, seq=cycle)
        published = boxes if boxes else [BoundingBox3D.placeholder()]

        if canvas is not None:
            canvas = self.visuals_handler.annotate(canvas, boxes)
            canvas = self.visuals_handler.draw_hud(canvas, fps, len(boxes))

        result = DetectionResult(
            count=len(boxes),
            boxes=published,
            header=header,
            image_header=frame.header,
            tag=slot.tag,
            image=canvas,
            fps=fps,
        )

        self.bus.publish(ObjectCount(count=result.count, header=header))
        self.bus.publish(BoundingBoxes(
            boxes=published, header=header, image_header=frame.header, fps=fps,
        ))
        if canvas is not None:
            self.bus.publish(DetectionImage(image=canvas, header=header))

        # warm-up slots never went through the detector and cannot answer a request
        if self.tracker is not None and slot.has_result:
            self.tracker.complete(result)

        return result
