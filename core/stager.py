"""
Frame Stager: holds the single latest (image, point cloud, header) triple.

Ingestion threads write, the pipeline reads. Last write wins and nothing is
queued, so when sensors outpace the pipeline intermediate frames simply vanish.
"""
from typing import Optional, Tuple

import numpy as np
from readerwriterlock import rwlock

from core.events import FrameHeader, StagedFrame
from core.guarded import GuardedValue
from utils.logger import Logger


class FrameStager:
    """Thread-safe last-write-wins store guarded by a readers-writer lock."""

    def __init__(self):
        self.logger = Logger("FrameStager")
        # Writer-preferring so a steady stream of readers cannot starve ingestion
        self._rw = rwlock.RWLockWrite()
        self._image: Optional[np.ndarray] = None
        self._cloud: Optional[np.ndarray] = None
        self._header = FrameHeader()
        self._tag: Optional[int] = None
        self._writes = 0
        self.image_available: GuardedValue[bool] = GuardedValue(False)

    def put_frame(self, image: np.ndarray, cloud: Optional[np.ndarray],
                  header: Optional[FrameHeader] = None) -> None:
        """
        Overwrite the stored triple. The request tag is left as it is.

        Args:
            image: BGR uint8 image.
            cloud: Organized point cloud (H, W, 3) aligned to the image, or None.
            header: Capture header; a fresh one is stamped when omitted.
        """
        image = image.copy()
        cloud = cloud.copy() if cloud is not None else None
        header = header or FrameHeader()

        with self._rw.gen_wlock():
            self._image = image
            self._cloud = cloud
            self._header = header
            self._writes += 1

        self.image_available.set(True)

    def put_request_image(self, image: np.ndarray, tag: int,
                          header: Optional[FrameHeader] = None) -> None:
        """Replace only the image (and header) and tag it for a one-shot request."""
        image = image.copy()
        header = header or FrameHeader()

        with self._rw.gen_wlock():
            self._image = image
            self._header = header
            self._tag = tag
            self._writes += 1

        self.image_available.set(True)

    def get_frame(self) -> Optional[StagedFrame]:
        """Return a private copy of the latest triple, or None before the first write."""
        with self._rw.gen_rlock():
            if self._image is None:
                return None
            return StagedFrame(
                image=self._image.copy(),
                cloud=self._cloud.copy() if self._cloud is not None else None,
                header=self._header,
                tag=self._tag,
            )

    @property
    def has_frame(self) -> bool:
        return self.image_available.get()

    @property
    def image_size(self) -> Optional[Tuple[int, int]]:
        """(width, height) of the stored image."""
        with self._rw.gen_rlock():
            if self._image is None:
                return None
            height, width = self._image.shape[:2]
            return width, height

    @property
    def write_count(self) -> int:
        with self._rw.gen_rlock():
            return self._writes
