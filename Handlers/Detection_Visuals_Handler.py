"""Detection Visuals Handler: draws boxes, labels and 3D positions on frames.

Uses supervision's BoxAnnotator + LabelAnnotator for the boxes and plain
OpenCV for the position marker, coordinate text and status line.
Annotators are created once and reused for every frame.
"""
from typing import List, Tuple

import cv2
import numpy as np
import supervision as sv

from core.events import BoundingBox3D, FusedPosition
from utils.logger import Logger

MARKER_COLOR = (0, 0, 255)  # BGR red


class DetectionVisualsHandler:
    """Annotates BGR frames with the published 3D bounding boxes."""

    def __init__(self, thickness: int = 2, text_scale: float = 0.5, text_thickness: int = 1):
        self.logger = Logger("DetectionVisualsHandler")
        self.box_annotator = sv.BoxAnnotator(thickness=thickness)
        self.label_annotator = sv.LabelAnnotator(
            text_scale=text_scale,
            text_thickness=text_thickness,
        )

    @staticmethod
    def to_detections(boxes: List[BoundingBox3D]) -> sv.Detections:
        """Convert published boxes into a supervision Detections object."""
        if not boxes:
            return sv.Detections.empty()
        return sv.Detections(
            xyxy=np.array([[b.xmin, b.ymin, b.xmax, b.ymax] for b in boxes], dtype=np.float32),
            confidence=np.array([b.probability for b in boxes], dtype=np.float32),
            class_id=np.array([max(b.class_id, 0) for b in boxes], dtype=int),
        )

    def annotate(self, frame: np.ndarray, boxes: List[BoundingBox3D]) -> np.ndarray:
        """
        Draw bounding boxes and "label: probability" tags in place.

        Args:
            frame: BGR image owned by the caller.
            boxes: Accepted boxes of the cycle (may be empty).

        Returns:
            The annotated frame.
        """
        if not boxes:
            return frame

        detections = self.to_detections(boxes)
        labels = [f"{b.label}: {b.probability:.2f}" for b in boxes]

        frame = self.box_annotator.annotate(scene=frame, detections=detections)
        frame = self.label_annotator.annotate(scene=frame, detections=detections, labels=labels)
        self.logger.debug(f"Visualized {len(boxes)} detections on frame.")
        return frame

    def draw_position(self, frame: np.ndarray, point: Tuple[int, int],
                      position: FusedPosition) -> np.ndarray:
        """Mark the sampled point and write the fused (X,Y,Z) next to it."""
        point = (int(point[0]), int(point[1]))
        cv2.circle(frame, point, 4, MARKER_COLOR, 2)
        text = f"({position.x:.2f},{position.y:.2f},{position.z:.2f})"
        cv2.putText(frame, text, point, cv2.FONT_HERSHEY_SIMPLEX, 0.7, MARKER_COLOR, 2, cv2.LINE_AA)
        return frame

    def draw_hud(self, frame: np.ndarray, fps: float, count: int) -> np.ndarray:
        """Overlay an FPS / object-count line on the top-left of the frame."""
        text = f"FPS {fps:.1f} | objects: {count}"
        color = (0, 0, 255) if count else (0, 200, 0)
        cv2.putText(frame, text, (10, 30), cv2.FONT_HERSHEY_SIMPLEX,
                    0.7, (0, 0, 0), 3, cv2.LINE_AA)  # shadow
        cv2.putText(frame, text, (10, 30), cv2.FONT_HERSHEY_SIMPLEX,
                    0.7, color, 2, cv2.LINE_AA)
        return frame
