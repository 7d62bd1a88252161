"""
Temporal smoothing of raw detector output.

Keeps the last N output vectors in a circular history and replaces each
new vector with the element-wise mean of the history before decoding.
This damps frame-to-frame score jitter without extra inference.
"""
from typing import Optional

import numpy as np

from utils.logger import Logger


class TemporalSmoother:
    """
    Circular history of N raw outputs with a running mean.

    The history starts zero-filled and every slot always counts toward the
    mean, so during the first N-1 updates the averaged scores are damped
    toward zero.
    """

    def __init__(self, window: int = 3):
        if window <= 0:
            raise ValueError(f"Smoothing window must be positive, got {window}")
        self.window = window
        self.logger = Logger("TemporalSmoother")
        self._history: Optional[np.ndarray] = None
        self._average: Optional[np.ndarray] = None
        self._cursor = 0
        self._updates = 0

    @property
    def filled(self) -> bool:
        """True once N outputs have been written."""
        return self._updates >= self.window

    @property
    def cursor(self) -> int:
        return self._cursor

    def reset(self) -> None:
        self._history = None
        self._average = None
        self._cursor = 0
        self._updates = 0

    def update(self, raw: np.ndarray) -> np.ndarray:
        """
        Write `raw` at the cursor, average the history, then advance the cursor.

        Args:
            raw: Flat output vector; its length must not change between calls.

        Returns:
            The averaged vector (a fresh array owned by the caller).
        """
        raw = np.asarray(raw, dtype=np.float32).ravel()

        if self._history is None:
            self._history = np.zeros((self.window, raw.size), dtype=np.float32)
            self._average = np.zeros(raw.size, dtype=np.float32)
            self.logger.debug(f"Allocated history {self.window} x {raw.size}")
        elif raw.size != self._history.shape[1]:
            raise ValueError(
                f"Output size changed from {self._history.shape[1]} to {raw.size}"
            )

        self._history[self._cursor] = raw
        np.mean(self._history, axis=0, out=self._average)
        self._cursor = (self._cursor + 1) % self.window
        self._updates += 1
        return self._average.copy()
