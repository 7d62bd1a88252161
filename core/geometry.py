"""
Depth fusion: turn a pixel-space box plus an organized point cloud into a
3D position.

Three candidate points are sampled inside the box (center and the 1/4 and
3/4 points of its diagonal). Each is averaged over its 3x3 neighborhood in
the cloud, the candidate nearest in the horizontal plane wins, and the
result is remapped from the optical frame (x right, y down, z forward) to
the body frame (x forward, y left, z up) plus fixed mount offsets.
"""
import math
from dataclasses import dataclass
from typing import Dict, Optional, Sequence, Tuple

import numpy as np

from core.events import FusedPosition
from utils.constants import DEFAULT_CALIBRATION_OFFSETS
from utils.logger import Logger


@dataclass(frozen=True)
class PixelBox:
    xmin: int
    ymin: int
    xmax: int
    ymax: int

    @property
    def center(self) -> Tuple[int, int]:
        return (self.xmin + (self.xmax - self.xmin) // 2,
                self.ymin + (self.ymax - self.ymin) // 2)


@dataclass
class NeighborhoodSample:
    """Running sums over one candidate's neighborhood."""
    point: Tuple[int, int]
    sum_x: float = 0.0
    sum_y: float = 0.0
    sum_z: float = 0.0
    valid: int = 0

    @property
    def planar_distance(self) -> float:
        return self.sum_x * self.sum_x + self.sum_y * self.sum_y


class GeometryFusion:
    """Multi-candidate neighborhood sampling over an organized point cloud."""

    # Selection tie-break order
    CANDIDATE_ORDER = ("left", "right", "center")

    def __init__(self, calibration_offsets: Sequence[float] = DEFAULT_CALIBRATION_OFFSETS,
                 radius: int = 1):
        self.offsets = tuple(float(v) for v in calibration_offsets)
        self.radius = radius
        self.logger = Logger("GeometryFusion")

    @staticmethod
    def candidates(box: PixelBox) -> Dict[str, Tuple[int, int]]:
        """Center plus the points 1/4 and 3/4 along the box diagonal."""
        width = box.xmax - box.xmin
        height = box.ymax - box.ymin
        return {
            "left": (box.xmin + width // 4, box.ymin + height // 4),
            "right": (box.xmin + (3 * width) // 4, box.ymin + (3 * height) // 4),
            "center": box.center,
        }

    def sample(self, cloud: Optional[np.ndarray], point: Tuple[int, int]) -> NeighborhoodSample:
        """
        Sum x, y, z over the neighborhood of `point`.

        An invalid sample (non-finite z, or outside the cloud) resets all three
        running sums to zero without touching the valid counter, so whatever
        was summed before the last invalid sample is lost while the count of
        valid samples is kept.
        """
        result = NeighborhoodSample(point)
        px, py = point
        rows, cols = (cloud.shape[0], cloud.shape[1]) if cloud is not None else (0, 0)

        for i in range(px - self.radius, px + self.radius + 1):
            for j in range(py - self.radius, py + self.radius + 1):
                if 0 <= j < rows and 0 <= i < cols:
                    x, y, z = (float(v) for v in cloud[j, i, :3])
                else:
                    x = y = z = math.nan

                if not math.isfinite(z):
                    result.sum_x = result.sum_y = result.sum_z = 0.0
                else:
                    result.sum_x += x
                    result.sum_y += y
                    result.sum_z += z
                    result.valid += 1
        return result

    def select(self, samples: Dict[str, NeighborhoodSample]) -> Optional[NeighborhoodSample]:
        """Nearest candidate in the horizontal plane among those with any valid sample."""
        best = None
        for name in self.CANDIDATE_ORDER:
            sample = samples[name]
            if sample.valid == 0:
                continue
            if best is None or sample.planar_distance < best.planar_distance:
                best = sample
        return best

    def locate(self, box: PixelBox, cloud: Optional[np.ndarray]) -> FusedPosition:
        """
        Estimate the 3D position of the object inside `box`.

        Returns:
            The body-frame position, or FusedPosition() (all zeros, valid=False)
            when no candidate has depth.
        """
        samples = {name: self.sample(cloud, point)
                   for name, point in self.candidates(box).items()}
        chosen = self.select(samples)

        if chosen is None:
            self.logger.debug(f"No depth for box {box}")
            return FusedPosition()

        mean_x = chosen.sum_x / chosen.valid
        mean_y = chosen.sum_y / chosen.valid
        mean_z = chosen.sum_z / chosen.valid
        off_x, off_y, off_z = self.offsets
        return FusedPosition(
            x=mean_z + off_x,
            y=-mean_x + off_y,
            z=-mean_y + off_z,
            valid=True,
        )
