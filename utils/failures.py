"""
Structured error handling and failure tracking for the fusion node.
"""
import threading
import time
from collections import Counter, deque
from typing import Deque, Dict, List, Optional
from utils.logger import Logger


class FusionError(Exception):
    """Base class for all fusion node exceptions."""
    def __init__(self, message: str, critical: bool = False):
        super().__init__(message)
        self.message = message
        self.critical = critical
        self.timestamp = time.time()


class SensorError(FusionError):
    """Raised for malformed or undecodable sensor input."""
    pass


class InferenceError(FusionError):
    """Raised when the inference backend fails. Always fatal to the pipeline."""
    def __init__(self, message: str):
        super().__init__(message, critical=True)


class ConfigError(FusionError):
    """Raised for invalid configuration values."""
    pass


class PipelineStateError(FusionError):
    """Raised on an illegal ring slot transition."""
    pass


class FailureManager:
    """
    Counts failures per type inside a sliding time window.

    Shared by the capture stage (dropped samples), the event bus (failing
    handlers) and the pipeline thread (the fatal inference error).
    """

    def __init__(self, settings: Optional[dict] = None):
        """
        Args:
            settings: Dictionary with 'threshold', 'window_seconds' and
                      'max_history' (from failures.json)
        """
        self.logger = Logger("FailureManager")

        settings = settings or {}
        self.threshold = int(settings.get('threshold', 5))
        self.window_seconds = float(settings.get('window_seconds', 300))

        self.failures: Dict[str, List[float]] = {}
        self.history: Deque[FusionError] = deque(maxlen=int(settings.get('max_history', 100)))
        self.totals: Counter = Counter()
        self._lock = threading.Lock()

    def _recent(self, error_type: str, now: float) -> List[float]:
        """Timestamps of `error_type` still inside the window (caller holds the lock)."""
        cutoff = now - self.window_seconds
        recent = [t for t in self.failures.get(error_type, []) if t > cutoff]
        self.failures[error_type] = recent
        return recent

    def record_failure(self, error: Exception) -> None:
        """Record one incident (thread-safe) and log it by severity."""
        error_type = type(error).__name__
        with self._lock:
            recent = self._recent(error_type, time.time())
            recent.append(time.time())
            self.totals[error_type] += 1
            if isinstance(error, FusionError):
                self.history.append(error)
            burst = len(recent)

        if isinstance(error, FusionError):
            log = self.logger.critical if error.critical else self.logger.warning
            log(f"{error_type}: {error.message}")
        else:
            self.logger.error(f"Unexpected failure: {error_type} - {error}")

        if burst == self.threshold:
            self.logger.warning(
                f"'{error_type}' happened {burst} times in {self.window_seconds:.0f}s"
            )

    def count(self, error_type: str) -> int:
        """Occurrences of `error_type` since start."""
        with self._lock:
            return self.totals[error_type]

    def summary(self) -> Dict[str, int]:
        with self._lock:
            return dict(self.totals)

    def get_recent_history(self, count: int = 10) -> List[FusionError]:
        """The last `count` FusionErrors, oldest first."""
        with self._lock:
            return list(self.history)[-count:]

