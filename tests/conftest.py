from typing import List, Optional, Sequence

import numpy as np
import pytest

from core.events import DecodedBox
from utils.config import PipelineSettings


class FakeBackend:
    """
    Deterministic stand-in for the detector.

    `infer` returns the configured class scores as the raw output vector;
    `decode` turns the (smoothed) vector into a single box at `box`.
    """

    def __init__(self, scores: Sequence[float] = (0.9, 0.0),
                 box=(0.5, 0.5, 0.2, 0.2), fail_on: Optional[int] = None):
        self.scores = np.asarray(scores, dtype=np.float32)
        self.box = box
        self.fail_on = fail_on
        self.calls = 0
        self.decoded: List[np.ndarray] = []

    def infer(self, network_input: np.ndarray) -> np.ndarray:
        self.calls += 1
        if self.fail_on is not None and self.calls >= self.fail_on:
            raise RuntimeError("device lost")
        return self.scores.copy()

    def decode(self, output, width, height, prob_threshold, hier_threshold):
        output = np.asarray(output, dtype=np.float32)
        self.decoded.append(output.copy())
        objectness = float(output.max()) if output.size else 0.0
        if objectness <= prob_threshold:
            return []
        x, y, w, h = self.box
        return [DecodedBox(x, y, w, h, objectness, output.copy())]


def make_cloud(width: int, height: int, xyz=(0.0, 0.0, 2.0)) -> np.ndarray:
    cloud = np.empty((height, width, 3), dtype=np.float32)
    cloud[...] = xyz
    return cloud


def make_image(width: int = 64, height: int = 48, value: int = 0) -> np.ndarray:
    return np.full((height, width, 3), value, dtype=np.uint8)


@pytest.fixture
def settings():
    return PipelineSettings(
        network_width=32,
        network_height=32,
        smoothing_window=1,
        class_labels=("person", "chair"),
        enable_visualization=False,
        wait_for_image_interval=0.01,
    )


@pytest.fixture
def backend():
    return FakeBackend()


@pytest.fixture
def image():
    return make_image()


@pytest.fixture
def cloud():
    return make_cloud(64, 48)
