"""
Inference Stage: runs the detector on a fetched slot, smooths the raw
output over time, decodes it and filters the boxes.

Runs as one of the two parallel tasks of a cycle. This is where the heavy
GPU/CPU work happens; nothing here blocks on I/O.
"""
from typing import List, Sequence

import numpy as np
import supervision as sv

from core.events import DecodedBox, Detection
from core.protocols import InferenceBackend
from core.ring import Slot
from core.smoother import TemporalSmoother
from utils.config import PipelineSettings
from utils.failures import InferenceError
from utils.logger import Logger


def _to_xyxy(boxes: Sequence[DecodedBox]) -> np.ndarray:
    return np.array(
        [[b.x - b.w / 2, b.y - b.h / 2, b.x + b.w / 2, b.y + b.h / 2] for b in boxes],
        dtype=np.float32,
    ).reshape(-1, 4)


def non_max_suppression(boxes: List[DecodedBox], iou_threshold: float) -> List[DecodedBox]:
    """
    Greedy NMS ranked by objectness.

    Boxes with zero objectness are left out of the ranking and appended at
    the end untouched. Among the rest, highest objectness first, any later box
    overlapping an earlier surviving box by more than `iou_threshold` gets its
    objectness and every class probability zeroed. Boxes are modified in place.
    """
    ranked = sorted((b for b in boxes if b.objectness != 0),
                    key=lambda b: b.objectness, reverse=True)
    dropped = [b for b in boxes if b.objectness == 0]

    if iou_threshold <= 0 or len(ranked) < 2:
        return ranked + dropped

    xyxy = _to_xyxy(ranked)
    ious = sv.box_iou_batch(xyxy, xyxy)

    for i in range(len(ranked)):
        if ranked[i].objectness == 0:
            continue
        for j in range(i + 1, len(ranked)):
            if ranked[j].objectness == 0:
                continue
            if ious[i, j] > iou_threshold:
                ranked[j].objectness = 0.0
                ranked[j].probs = np.zeros_like(ranked[j].probs)

    return ranked + dropped


def _clip_extent(center: float, size: float):
    """Clip a 1D extent to [0, 1]; returns (center, size) after clipping."""
    low, high = center - size / 2.0, center + size / 2.0
    if low >= 0.0 and high <= 1.0:
        return center, size
    low, high = max(low, 0.0), min(high, 1.0)
    return (low + high) / 2.0, high - low


def filter_detections(boxes: Sequence[DecodedBox], prob_threshold: float,
                      min_box_fraction: float) -> List[Detection]:
    """
    Expand decoded boxes into one Detection per (box, class) above threshold.

    A pair is accepted when its probability exceeds `prob_threshold` and both
    the clipped width and height exceed `min_box_fraction` of the frame.
    """
    accepted: List[Detection] = []
    for box in boxes:
        x, w = _clip_extent(box.x, box.w)
        y, h = _clip_extent(box.y, box.h)
        if not (w > min_box_fraction and h > min_box_fraction):
            continue
        for class_id, prob in enumerate(np.asarray(box.probs).ravel()):
            if prob > prob_threshold:
                accepted.append(Detection(x, y, w, h, class_id, float(prob)))
    return accepted


class InferenceStage:
    """Pipeline Stage 2: detector forward pass, temporal smoothing and box filtering."""

    def __init__(self, backend: InferenceBackend, smoother: TemporalSmoother,
                 settings: PipelineSettings):
        """
        Args:
            backend: Black-box detector implementing the InferenceBackend protocol.
            smoother: Temporal smoother owned by the pipeline thread.
            settings: Thresholds and limits.
        """
        self.backend = backend
        self.smoother = smoother
        self.settings = settings
        self.logger = Logger("InferenceStage")

    def detect(self, network_input: np.ndarray, width: int, height: int) -> List[Detection]:
        """Forward pass, smoothing, decode, NMS and filtering for one input."""
        try:
            raw = self.backend.infer(network_input)
            averaged = self.smoother.update(raw)
            decoded = self.backend.decode(
                averaged, width, height,
                self.settings.prob_threshold, self.settings.hier_threshold,
            )
        except Exception as e:
            raise InferenceError(f"Inference backend failed: {type(e).__name__}: {e}") from e

        kept = non_max_suppression(list(decoded), self.settings.nms_threshold)
        detections = filter_detections(
            kept, self.settings.prob_threshold, self.settings.min_box_fraction
        )

        if len(detections) > self.settings.max_boxes:
            self.logger.warning(
                f"{len(detections)} boxes accepted, keeping the first {self.settings.max_boxes}"
            )
            detections = detections[:self.settings.max_boxes]
        return detections

    def run(self, slot: Slot, cycle: int) -> Slot:
        """Run detection on `slot` and attach the result. Only touches the slot's payload."""
        height, width = slot.frame.image.shape[:2]
        slot.detections = self.detect(slot.network_input, width, height)
        slot.inferred_cycle = cycle
        self.logger.debug(
            f"Slot {slot.name}: {len(slot.detections)} detection(s) (cycle {cycle})"
        )
        return slot
