"""
Three-slot ring for the fetch/infer/publish pipeline.

Every cycle each slot plays exactly one role:

    fetch   - being refilled with the latest staged frame
    infer   - fetched one cycle ago, now going through the detector
    publish - inferred one cycle ago, now being aggregated and emitted

Roles rotate by one slot per cycle. Slot states make every hand-over
explicit and an out-of-order transition raises instead of silently
reading a half-written slot. The ring itself is owned by the pipeline
thread; worker tasks only ever touch the payload of the slot they were
handed.
"""
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, FrozenSet, List, Optional

import numpy as np

from core.events import Detection, StagedFrame
from utils.constants import RING_SIZE
from utils.failures import PipelineStateError


class SlotState(Enum):
    EMPTY = "empty"
    FETCHING = "fetching"
    FETCHED = "fetched"
    INFERRING = "inferring"
    READY = "ready"
    CONSUMING = "consuming"


# target state -> states it may be entered from
_TRANSITIONS: Dict[SlotState, FrozenSet[SlotState]] = {
    SlotState.FETCHING: frozenset({SlotState.EMPTY, SlotState.FETCHED}),
    SlotState.FETCHED: frozenset({SlotState.EMPTY, SlotState.FETCHING}),
    SlotState.INFERRING: frozenset({SlotState.FETCHED}),
    SlotState.READY: frozenset({SlotState.INFERRING}),
    SlotState.CONSUMING: frozenset({SlotState.READY, SlotState.FETCHED}),
    SlotState.EMPTY: frozenset({SlotState.CONSUMING}),
}


@dataclass
class Slot:
    """One ring entry: raw frame, network input and (once inferred) detections."""
    name: str
    state: SlotState = SlotState.EMPTY
    frame: Optional[StagedFrame] = None
    network_input: Optional[np.ndarray] = None
    detections: Optional[List[Detection]] = None
    fetched_cycle: int = -1
    inferred_cycle: int = -1
    history: List[SlotState] = field(default_factory=list, repr=False)

    @property
    def tag(self) -> Optional[int]:
        return self.frame.tag if self.frame is not None else None

    @property
    def has_result(self) -> bool:
        return self.detections is not None


class RingBuffer:
    """Fixed ring of three named slots with rotating roles."""

    SLOT_NAMES = ("A", "B", "C")

    def __init__(self, keep_history: bool = False):
        self.slots = [Slot(name) for name in self.SLOT_NAMES[:RING_SIZE]]
        self.keep_history = keep_history
        self._index = 0
        self.cycle = 0

    def __len__(self) -> int:
        return len(self.slots)

    def rotate(self) -> None:
        """Advance the roles by one slot; called once at the start of each cycle."""
        self._index = (self._index + 1) % RING_SIZE
        self.cycle += 1

    @property
    def fetch_slot(self) -> Slot:
        return self.slots[self._index]

    @property
    def infer_slot(self) -> Slot:
        return self.slots[(self._index + 2) % RING_SIZE]

    @property
    def publish_slot(self) -> Slot:
        return self.slots[(self._index + 1) % RING_SIZE]

    def transition(self, slot: Slot, target: SlotState) -> None:
        """Move a slot to `target`, raising PipelineStateError on an illegal hand-over."""
        allowed = _TRANSITIONS[target]
        if slot.state not in allowed:
            raise PipelineStateError(
                f"Slot {slot.name}: illegal transition {slot.state.value} -> {target.value} "
                f"(cycle {self.cycle})"
            )
        if target is SlotState.FETCHING:
            slot.detections = None
        slot.state = target
        if self.keep_history:
            slot.history.append(target)

    def prime(self, frame: StagedFrame, network_input: np.ndarray) -> None:
        """Fill every slot with the first frame so the first cycles have something to chew on."""
        for slot in self.slots:
            slot.frame = frame
            slot.network_input = network_input.copy()
            slot.detections = None
            slot.fetched_cycle = 0
            self.transition(slot, SlotState.FETCHED)
