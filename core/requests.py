"""
One-shot "evaluate this image now" requests.

A request pushes its image into the Frame Stager tagged with a fresh id and
waits until a published cycle carries that tag. Only one request is tracked
at a time: submitting a new one silently supersedes the outstanding one,
which then never completes, so callers should always wait with a timeout.
"""
import itertools
import threading
import time
from typing import Optional

import numpy as np

from core.events import DetectionResult, FrameHeader
from core.guarded import GuardedValue
from core.stager import FrameStager
from utils.constants import REQUEST_FRAME_ID
from utils.logger import Logger


class OneShotRequest:
    """Handle returned to the caller of RequestTracker.submit()."""

    def __init__(self, request_id: int):
        self.id = request_id
        self.submitted_at = time.time()
        self.cancelled = False
        self._done = threading.Event()
        self._result: Optional[DetectionResult] = None

    @property
    def done(self) -> bool:
        return self._done.is_set()

    def resolve(self, result: DetectionResult) -> None:
        self._result = result
        self._done.set()

    def result(self, timeout: Optional[float] = None) -> Optional[DetectionResult]:
        """Block until resolved; None on timeout."""
        if not self._done.wait(timeout):
            return None
        return self._result

    def __repr__(self) -> str:
        return f"OneShotRequest(id={self.id}, done={self.done}, cancelled={self.cancelled})"


class RequestTracker:
    """Correlates one-shot requests with published cycles through the request tag."""

    def __init__(self, stager: FrameStager):
        self.stager = stager
        self.logger = Logger("RequestTracker")
        self._outstanding: GuardedValue[Optional[OneShotRequest]] = GuardedValue(None)
        self._ids = itertools.count(1)
        self._id_lock = threading.Lock()

    @property
    def outstanding(self) -> Optional[OneShotRequest]:
        return self._outstanding.get()

    def submit(self, image: np.ndarray, header: Optional[FrameHeader] = None) -> OneShotRequest:
        """
        Hand `image` to the pipeline and start tracking it.

        Returns:
            The request handle; pass it to wait() or cancel().
        """
        with self._id_lock:
            request = OneShotRequest(next(self._ids))

        # Register before staging so the tag can never be published untracked
        previous = self._outstanding.set(request)
        if previous is not None and not previous.done:
            self.logger.warning(f"Request {previous.id} superseded by request {request.id}")

        self.stager.put_request_image(
            image, request.id, header or FrameHeader(frame_id=REQUEST_FRAME_ID)
        )
        self.logger.debug(f"Submitted request {request.id}")
        return request

    def wait(self, request: OneShotRequest, timeout: Optional[float] = None) -> Optional[DetectionResult]:
        return request.result(timeout)

    def cancel(self, request: OneShotRequest) -> None:
        """Abandon a request. The pipeline keeps running; its result is discarded."""
        request.cancelled = True
        if self._outstanding.compare_and_set(request, None):
            self.logger.info(f"Request {request.id} cancelled")

    def complete(self, result: DetectionResult) -> bool:
        """
        Called by the publish stage for every cycle.

        Returns:
            True if the cycle resolved the outstanding request.
        """
        request = self._outstanding.get()
        if request is None or result.tag != request.id:
            return False
        if not self._outstanding.compare_and_set(request, None):
            return False

        request.resolve(result)
        self.logger.debug(
            f"Request {request.id} completed with {result.count} object(s) "
            f"after {time.time() - request.submitted_at:.3f}s"
        )
        return True

    def check_for_objects(self, image: np.ndarray, timeout: Optional[float] = None) -> Optional[DetectionResult]:
        """Submit, wait and cancel on timeout: the synchronous convenience call."""
        request = self.submit(image)
        result = self.wait(request, timeout)
        if result is None:
            self.cancel(request)
        return result
