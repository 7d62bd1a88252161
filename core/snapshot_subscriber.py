"""
Snapshot Subscriber: saves annotated detection images to disk.

Listens for DetectionImage events and writes every k-th image as
``<prefix>_<counter>.jpg``. Writing happens on a background thread so a
slow disk never stalls the pipeline thread that publishes the events.
"""
from pathlib import Path
from queue import Queue, Full, Empty
from threading import Thread, Event
from typing import Optional

import cv2

from core.bus import EventBus
from core.events import DetectionImage
from utils.logger import Logger


class SnapshotSubscriber(Thread):
    """Writes detection images from a bounded queue; drops them when behind."""

    def __init__(self, bus: EventBus, directory: str, prefix: str = "detection",
                 every: int = 1, queue_size: int = 8):
        """
        Args:
            bus: Shared event bus.
            directory: Output folder (created on start).
            prefix: File name prefix.
            every: Keep one image out of `every`.
            queue_size: Images waiting to be written before new ones are dropped.
        """
        super().__init__(name="SnapshotWriter", daemon=True)
        self.bus = bus
        self.directory = Path(directory)
        self.prefix = prefix
        self.every = max(int(every), 1)
        self.logger = Logger("SnapshotSubscriber")

        self._queue: Queue = Queue(maxsize=queue_size)
        self._stop_event = Event()
        self._seen = 0
        self.saved = 0
        self.dropped = 0

        self.bus.subscribe(DetectionImage, self._on_image)

    def _on_image(self, event: DetectionImage) -> None:
        self._seen += 1
        if (self._seen - 1) % self.every:
            return
        try:
            self._queue.put_nowait(event)
        except Full:
            self.dropped += 1

    def save(self, event: DetectionImage) -> Optional[str]:
        """Write one image; returns the path or None on failure."""
        path = self.directory / f"{self.prefix}_{self.saved:08d}.jpg"
        if cv2.imwrite(str(path), event.image):
            self.saved += 1
            return str(path)
        self.logger.error(f"cv2.imwrite failed for: {path}")
        return None

    def run(self) -> None:
        self.directory.mkdir(parents=True, exist_ok=True)
        self.logger.info(f"Saving detection images to {self.directory}")

        while not self._stop_event.is_set() or not self._queue.empty():
            try:
                event = self._queue.get(timeout=0.2)
            except Empty:
                continue
            self.save(event)

        self.logger.info(f"Snapshot writer stopped ({self.saved} saved, {self.dropped} dropped)")

    def stop(self) -> None:
        self.bus.unsubscribe(DetectionImage, self._on_image)
        self._stop_event.set()
        if self.is_alive():
            self.join(timeout=2.0)
