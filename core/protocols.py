"""
Protocol definitions (interfaces) for the fusion node's collaborators.

The neural network and the sensor driver live outside the core; these
contracts are all the pipeline knows about them.
"""
from typing import Protocol, Optional, Callable, List, runtime_checkable
import numpy as np

from core.events import DecodedBox, FrameHeader


SensorCallback = Callable[[np.ndarray, Optional[np.ndarray], Optional[FrameHeader]], None]


@runtime_checkable
class SensorSource(Protocol):
    """Anything that pushes paired (image, organized point cloud, header) samples."""

    def start(self, callback: SensorCallback) -> bool:
        """Begin delivery on the source's own thread. Returns True on success."""
        ...

    def stop(self) -> None:
        """Stop delivery and release resources."""
        ...


@runtime_checkable
class InferenceBackend(Protocol):
    """Black-box detector: raw forward pass plus decoding of a (smoothed) output."""

    def infer(self, network_input: np.ndarray) -> np.ndarray:
        """
        Run one forward pass.

        Args:
            network_input: float32 (3, H, W) letterboxed RGB image in [0, 1].

        Returns:
            A flat float32 vector with the same length on every call.
        """
        ...

    def decode(self, output: np.ndarray, width: int, height: int,
               prob_threshold: float, hier_threshold: float) -> List[DecodedBox]:
        """
        Decode an output vector into candidate boxes.

        Args:
            output: Output vector (averaged by the temporal smoother).
            width: Source image width in pixels.
            height: Source image height in pixels.
            prob_threshold: Class probabilities at or below this are zeroed.
            hier_threshold: Coverage threshold used by hierarchical heads.

        Returns:
            Boxes normalized to the source image, one per candidate.
        """
        ...
