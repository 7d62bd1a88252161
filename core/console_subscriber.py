"""
Console Subscriber: prints each cycle's objects to the terminal.

Subscribes to BoundingBoxes events and redraws a small status screen:
FPS, then one line per object with its class, probability and position.
"""
import sys
from typing import TextIO

from core.bus import EventBus
from core.events import BoundingBoxes
from utils.logger import Logger

CLEAR_SCREEN = "\033[2J\033[1;1H"


class ConsoleSubscriber:
    """Turns BoundingBoxes events into a live console listing."""

    def __init__(self, bus: EventBus, stream: TextIO = sys.stdout, clear: bool = True):
        """
        Args:
            bus: Shared event bus.
            stream: Where to write (stdout by default).
            clear: Clear the terminal before every cycle.
        """
        self.bus = bus
        self.stream = stream
        self.clear = clear
        self.logger = Logger("ConsoleSubscriber")

        self.bus.subscribe(BoundingBoxes, self._on_boxes)

    def format(self, event: BoundingBoxes) -> str:
        lines = [f"FPS:{event.fps:.1f}", "Objects:", ""]
        for box in event.boxes:
            if box.class_id < 0:
                continue
            lines.append(
                f"{box.label}: {box.probability * 100:.0f}%  "
                f"X {box.x:.2f}  Y {box.y:.2f}  Z {box.z:.2f}"
            )
        return "\n".join(lines) + "\n"

    def _on_boxes(self, event: BoundingBoxes) -> None:
        text = self.format(event)
        if self.clear:
            text = CLEAR_SCREEN + text
        self.stream.write(text)
        self.stream.flush()

    def close(self) -> None:
        self.bus.unsubscribe(BoundingBoxes, self._on_boxes)
