"""
Typed records and bus events for the fusion pipeline.

Pipeline records travel through the ring slots; bus events carry the
per-cycle output to whoever subscribed (console, snapshot writer, callers).
"""
from dataclasses import dataclass, field
from typing import Optional, List
import time
import numpy as np

from utils.constants import DETECTION_FRAME_ID, EMPTY_CLASS_LABEL


# ─── Pipeline Records ───────────────────────────────────────────────────

@dataclass(frozen=True)
class FrameHeader:
    """Capture metadata that travels with an image."""
    stamp: float = field(default_factory=time.time)
    frame_id: str = ""
    seq: int = 0


@dataclass(frozen=True)
class StagedFrame:
    """A copy of the latest (image, cloud, header) triple plus its request tag."""
    image: np.ndarray
    cloud: Optional[np.ndarray]
    header: FrameHeader
    tag: Optional[int] = None


@dataclass
class DecodedBox:
    """One candidate box as returned by the backend's decode step."""
    x: float
    y: float
    w: float
    h: float
    objectness: float
    probs: np.ndarray         # per-class probabilities


@dataclass(frozen=True)
class Detection:
    """An accepted box in normalized coordinates (center x/y, width, height)."""
    x: float
    y: float
    w: float
    h: float
    class_id: int
    probability: float


@dataclass(frozen=True)
class FusedPosition:
    """3D position in the body frame (x forward, y left, z up)."""
    x: float = 0.0
    y: float = 0.0
    z: float = 0.0
    valid: bool = False

    def as_tuple(self):
        return (self.x, self.y, self.z)


@dataclass(frozen=True)
class BoundingBox3D:
    """One published object: label, pixel box, probability and 3D position."""
    label: str
    class_id: int
    probability: float
    xmin: int
    ymin: int
    xmax: int
    ymax: int
    x: float
    y: float
    z: float

    @classmethod
    def placeholder(cls) -> "BoundingBox3D":
        """The single record published when a cycle has no detections."""
        return cls(EMPTY_CLASS_LABEL, -1, 0.0, 0, 0, 0, 0, 0.0, 0.0, 0.0)

    def to_dict(self) -> dict:
        return {
            'Class': self.label, 'id': self.class_id, 'probability': self.probability,
            'xmin': self.xmin, 'ymin': self.ymin, 'xmax': self.xmax, 'ymax': self.ymax,
            'X': self.x, 'Y': self.y, 'Z': self.z,
        }


@dataclass
class DetectionResult:
    """Everything one publish step produced."""
    count: int
    boxes: List[BoundingBox3D]
    header: FrameHeader
    image_header: FrameHeader
    tag: Optional[int] = None
    image: Optional[np.ndarray] = None
    fps: float = 0.0

    def to_dict(self) -> dict:
        return {
            'count': self.count,
            'tag': self.tag,
            'stamp': self.header.stamp,
            'image_stamp': self.image_header.stamp,
            'bounding_boxes': [box.to_dict() for box in self.boxes],
        }


# ─── Event Bus Events ───────────────────────────────────────────────────

@dataclass
class ObjectCount:
    """Published once per cycle with the number of accepted objects."""
    count: int
    header: FrameHeader = field(default_factory=lambda: FrameHeader(frame_id=DETECTION_FRAME_ID))


@dataclass
class BoundingBoxes:
    """Published once per cycle; never empty (see BoundingBox3D.placeholder)."""
    boxes: List[BoundingBox3D]
    header: FrameHeader
    image_header: FrameHeader
    fps: float = 0.0


@dataclass
class DetectionImage:
    """Annotated image for the cycle, only when visualization is enabled."""
    image: np.ndarray
    header: FrameHeader


@dataclass
class PipelineStopped:
    """Published when the pipeline thread exits."""
    reason: str = "shutdown"
    fatal: bool = False
    timestamp: float = field(default_factory=time.time)


@dataclass
class ShutdownRequested:
    """Published to signal a graceful shutdown of all components."""
    reason: str = "user"
    timestamp: float = field(default_factory=time.time)
