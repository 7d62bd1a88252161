"""
Capture Stage: push-callback entry point for paired sensor samples.

Sensor sources call `on_sensor_data` from their own delivery thread. Each
sample is validated, normalized to a BGR uint8 image plus an organized
(H, W, 3) float cloud, and written to the Frame Stager. Malformed samples
are dropped and the previously staged frame stays in place.
"""
import itertools
from typing import Optional, Union

import cv2
import numpy as np

from core.events import FrameHeader
from core.stager import FrameStager
from utils.failures import FailureManager, SensorError
from utils.logger import Logger


ImageInput = Union[np.ndarray, bytes, bytearray]


class SensorCapture:
    """Pipeline Stage 0: ingestion of (image, point cloud, header) samples."""

    def __init__(self, stager: FrameStager, failures: Optional[FailureManager] = None):
        """
        Args:
            stager: Destination of every accepted sample.
            failures: Shared FailureManager for dropped samples.
        """
        self.stager = stager
        self.failures = failures or FailureManager()
        self.logger = Logger("SensorCapture")
        self._seq = itertools.count()
        self.accepted = 0
        self.dropped = 0

    @staticmethod
    def decode_image(image: ImageInput) -> np.ndarray:
        """Return a BGR uint8 image or raise SensorError."""
        if isinstance(image, (bytes, bytearray)):
            buffer = np.frombuffer(image, dtype=np.uint8)
            decoded = cv2.imdecode(buffer, cv2.IMREAD_COLOR) if buffer.size else None
            if decoded is None:
                raise SensorError("Undecodable image buffer")
            return decoded

        if not isinstance(image, np.ndarray) or image.size == 0:
            raise SensorError(f"Invalid image: {type(image).__name__}")
        if image.dtype != np.uint8:
            raise SensorError(f"Unsupported image dtype {image.dtype}")

        if image.ndim == 2:
            return cv2.cvtColor(image, cv2.COLOR_GRAY2BGR)
        if image.ndim == 3 and image.shape[2] == 4:
            return cv2.cvtColor(image, cv2.COLOR_BGRA2BGR)
        if image.ndim == 3 and image.shape[2] == 3:
            return image
        raise SensorError(f"Unsupported image shape {image.shape}")

    @staticmethod
    def validate_cloud(cloud: np.ndarray, width: int, height: int) -> np.ndarray:
        """Return the xyz channels of an organized cloud matching the image size."""
        if not isinstance(cloud, np.ndarray) or cloud.ndim != 3 or cloud.shape[2] < 3:
            shape = getattr(cloud, 'shape', None)
            raise SensorError(f"Point cloud must be organized (H, W, 3+), got {shape}")
        if cloud.shape[0] != height or cloud.shape[1] != width:
            raise SensorError(
                f"Point cloud {cloud.shape[1]}x{cloud.shape[0]} does not match "
                f"image {width}x{height}"
            )
        return np.asarray(cloud[..., :3], dtype=np.float32)

    def on_sensor_data(self, image: ImageInput, cloud: np.ndarray,
                       header: Optional[FrameHeader] = None) -> bool:
        """
        Stage one paired sample. Safe to call from any thread.

        Returns:
            True if the sample was staged, False if it was dropped.
        """
        try:
            bgr = self.decode_image(image)
            height, width = bgr.shape[:2]
            xyz = self.validate_cloud(cloud, width, height)
        except SensorError as e:
            self.dropped += 1
            self.failures.record_failure(e)
            return False

        seq = next(self._seq)
        if header is None:
            header = FrameHeader(frame_id="sensor", seq=seq)

        self.stager.put_frame(bgr, xyz, header)
        self.accepted += 1
        self.logger.debug(f"Staged frame {header.seq} ({width}x{height})")
        return True
