"""Recorded Sensor Handler: replays image + point cloud pairs from disk.

Implements the SensorSource protocol so a recording can stand in for a
live RGB-D camera. Each sample is an image file (``*.png`` / ``*.jpg``) with
a same-named ``*.npy`` organized point cloud of shape (H, W, 3) next to it.
Samples are pushed to the callback from a dedicated thread at a fixed rate.
"""
import threading
import time
from pathlib import Path
from typing import List, Optional, Tuple

import cv2
import numpy as np

from core.events import FrameHeader
from core.protocols import SensorCallback
from utils.logger import Logger

IMAGE_SUFFIXES = (".png", ".jpg", ".jpeg")


class RecordedSensorHandler:
    """Replays a directory of RGB-D samples.

    Implements the SensorSource protocol:
        start(callback) -> bool
        stop() -> None
    """

    def __init__(self, directory: str, fps: float = 15, loop: bool = True):
        """
        Args:
            directory: Folder holding the image/cloud pairs.
            fps: Delivery rate.
            loop: Restart from the first sample after the last one.
        """
        self.directory = Path(directory)
        self.fps = fps
        self.loop = loop
        self.logger = Logger("RecordedSensorHandler")
        self.active = False
        self.delivered = 0
        self._callback: Optional[SensorCallback] = None
        self._thread: Optional[threading.Thread] = None

    def find_pairs(self) -> List[Tuple[Path, Path]]:
        """All (image, cloud) pairs in name order; images without a cloud are skipped."""
        pairs = []
        for image_path in sorted(self.directory.iterdir()):
            if image_path.suffix.lower() not in IMAGE_SUFFIXES:
                continue
            cloud_path = image_path.with_suffix(".npy")
            if cloud_path.exists():
                pairs.append((image_path, cloud_path))
            else:
                self.logger.warning(f"No point cloud for {image_path.name}, skipping")
        return pairs

    # ── SensorSource protocol ─────────────────────────────────────────

    def start(self, callback: SensorCallback) -> bool:
        """Spawn the replay thread."""
        if not self.directory.is_dir():
            self.logger.error(f"Recording directory not found: {self.directory}")
            return False

        pairs = self.find_pairs()
        if not pairs:
            self.logger.error(f"No image/cloud pairs in {self.directory}")
            return False

        if self.active:
            return True

        self._callback = callback
        self.active = True
        self._thread = threading.Thread(
            target=self._replay_loop, args=(pairs,), daemon=True, name="RecordedSensor"
        )
        self._thread.start()
        self.logger.info(f"Replaying {len(pairs)} sample(s) from {self.directory} at {self.fps} FPS")
        return True

    def stop(self) -> None:
        """Stop the replay thread."""
        self.active = False
        if self._thread and self._thread is not threading.current_thread():
            self._thread.join(timeout=2.0)
        self.logger.info("Recorded sensor stopped")

    # ── Internal ─────────────────────────────────────────────────────

    def _load(self, image_path: Path, cloud_path: Path):
        image = cv2.imread(str(image_path), cv2.IMREAD_COLOR)
        try:
            cloud = np.load(cloud_path)
        except (OSError, ValueError) as e:
            self.logger.warning(f"Unreadable point cloud {cloud_path.name}: {e}")
            cloud = None
        return image, cloud

    def _replay_loop(self, pairs: List[Tuple[Path, Path]]) -> None:
        frame_interval = 1.0 / max(self.fps, 1e-3)
        seq = 0

        while self.active:
            for image_path, cloud_path in pairs:
                if not self.active:
                    break
                loop_start = time.monotonic()

                image, cloud = self._load(image_path, cloud_path)
                if image is None or cloud is None:
                    self.logger.warning(f"Dropping unreadable sample {image_path.name}")
                else:
                    header = FrameHeader(stamp=time.time(), frame_id=image_path.stem, seq=seq)
                    seq += 1
                    try:
                        self._callback(image, cloud, header)
                        self.delivered += 1
                    except Exception as e:
                        self.logger.error(f"Callback error in sensor thread: {e}")

                sleep_time = frame_interval - (time.monotonic() - loop_start)
                if sleep_time > 0:
                    time.sleep(sleep_time)

            if not self.loop:
                self.logger.info("Recording finished")
                break

        self.active = False
