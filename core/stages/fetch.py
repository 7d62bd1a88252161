"""
Fetch Stage: copies the latest staged frame into a ring slot and builds
the letterboxed network input for it.

Runs as one of the two parallel tasks of a cycle, next to the inference
stage working on a different slot.
"""
import numpy as np

from core.events import StagedFrame
from core.ring import Slot
from core.stager import FrameStager
from utils.config import PipelineSettings
from utils.failures import PipelineStateError
from utils.imaging import letterbox
from utils.logger import Logger


class FetchStage:
    """Pipeline Stage 1: snapshot the stager, color-convert and letterbox."""

    def __init__(self, stager: FrameStager, settings: PipelineSettings):
        self.stager = stager
        self.settings = settings
        self.logger = Logger("FetchStage")

    def snapshot(self) -> StagedFrame:
        """Copy the latest triple out of the stager."""
        frame = self.stager.get_frame()
        if frame is None:
            raise PipelineStateError("Fetch requested before any frame was staged")
        return frame

    def preprocess(self, frame: StagedFrame) -> np.ndarray:
        return letterbox(frame.image, self.settings.network_width, self.settings.network_height)

    def run(self, slot: Slot, cycle: int) -> Slot:
        """Refill `slot` with the latest frame. Only touches the slot's payload."""
        frame = self.snapshot()
        slot.frame = frame
        slot.network_input = self.preprocess(frame)
        slot.fetched_cycle = cycle
        self.logger.debug(f"Fetched into slot {slot.name} (cycle {cycle}, tag {frame.tag})")
        return slot
