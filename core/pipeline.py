"""
Ring Pipeline: the fetch/infer/publish loop.

One dedicated thread owns the loop. Each cycle it rotates the ring, hands
the fetch slot and the infer slot to two workers running in parallel,
joins both, and then publishes the slot inferred during the previous cycle
on its own thread:

    cycle k:   fetch frame k  ||  infer frame k-1   ->  publish frame k-2

Publishing lags ingestion by one full cycle in exchange for overlapping
fetch latency with inference latency.
"""
import time
from concurrent.futures import ThreadPoolExecutor, wait
from threading import Thread, current_thread
from typing import Any, Optional

from core.bus import EventBus
from core.events import DetectionResult, PipelineStopped
from core.geometry import GeometryFusion
from core.guarded import GuardedValue
from core.protocols import InferenceBackend
from core.ring import RingBuffer, SlotState
from core.smoother import TemporalSmoother
from core.stager import FrameStager
from core.stages.fetch import FetchStage
from core.stages.inference import InferenceStage
from core.stages.publish import PublishStage
from utils.config import PipelineSettings
from utils.failures import FailureManager, FusionError, PipelineStateError
from utils.logger import Logger


class RingPipeline(Thread):
    """
    Triple-buffered detection pipeline running on its own thread.

    Only this thread touches the ring, the smoother and the publish
    accumulator. Other threads interact through the Frame Stager, the
    running flag and the request tracker.
    """

    def __init__(
        self,
        stager: FrameStager,
        backend: InferenceBackend,
        settings: PipelineSettings,
        bus: EventBus,
        tracker: Any = None,
        visuals_handler: Any = None,
        failures: Optional[FailureManager] = None,
        keep_history: bool = False,
    ):
        """
        Args:
            stager: Source of the latest (image, cloud, header) triple.
            backend: Black-box detector.
            settings: Immutable pipeline settings.
            bus: Event bus for the per-cycle output.
            tracker: Optional RequestTracker for one-shot requests.
            visuals_handler: Optional DetectionVisualsHandler.
            failures: Shared FailureManager (a private one is created if omitted).
            keep_history: Record every slot state transition (for diagnostics).
        """
        super().__init__(name="RingPipeline", daemon=True)
        self.stager = stager
        self.settings = settings
        self.bus = bus
        self.failures = failures or FailureManager()
        self.logger = Logger("RingPipeline")

        self.running: GuardedValue[bool] = GuardedValue(False)
        self.ring = RingBuffer(keep_history=keep_history)
        self.smoother = TemporalSmoother(settings.smoothing_window)
        self.geometry = GeometryFusion(settings.calibration_offsets)

        self.fetch_stage = FetchStage(stager, settings)
        self.inference_stage = InferenceStage(backend, self.smoother, settings)
        self.publish_stage = PublishStage(
            settings, self.geometry, bus, tracker=tracker, visuals_handler=visuals_handler
        )

        self.fps = 0.0
        self.error: Optional[Exception] = None
        self.last_result: Optional[DetectionResult] = None
        self._last_cycle_time: Optional[float] = None

    # ── Lifecycle ───────────────────────────────────────────────────

    def start(self) -> None:
        self.running.set(True)
        super().start()

    def stop(self, timeout: Optional[float] = None) -> None:
        """Clear the running flag and wait for the thread to finish its cycle."""
        self.running.set(False)
        if self.is_alive() and current_thread() is not self:
            self.join(timeout)
            if self.is_alive():
                self.logger.warning("Pipeline thread still busy after stop timeout")

    @property
    def is_running(self) -> bool:
        return self.running.get()

    # ── Loop ────────────────────────────────────────────────────────

    def wait_for_first_frame(self) -> bool:
        """Poll the stager until a frame exists. False if stopped while waiting."""
        interval = self.settings.wait_for_image_interval
        while not self.stager.has_frame:
            if not self.running.get():
                return False
            self.logger.info("Waiting for image...")
            time.sleep(interval)
        return self.running.get()

    def prime(self) -> None:
        """Fill all three slots from the first staged frame."""
        frame = self.fetch_stage.snapshot()
        self.ring.prime(frame, self.fetch_stage.preprocess(frame))
        height, width = frame.image.shape[:2]
        self.logger.info(
            f"Ring primed with {width}x{height} frame, network input "
            f"{self.settings.network_width}x{self.settings.network_height}"
        )

    def _update_fps(self) -> None:
        now = time.monotonic()
        if self._last_cycle_time is not None and now > self._last_cycle_time:
            self.fps = 1.0 / (now - self._last_cycle_time)
        self._last_cycle_time = now

    def _check_publish_lag(self, slot, cycle: int) -> None:
        """An inferred slot is published exactly one cycle after inference, two after fetch."""
        if not slot.has_result:
            return
        if slot.inferred_cycle != cycle - 1 or slot.fetched_cycle != max(cycle - 2, 0):
            raise PipelineStateError(
                f"Slot {slot.name} published at cycle {cycle} was fetched at "
                f"{slot.fetched_cycle} and inferred at {slot.inferred_cycle}"
            )

    def run_cycle(self, executor: ThreadPoolExecutor) -> DetectionResult:
        """
        One fetch/infer/publish cycle.

        Both worker tasks are joined before any slot changes state again, so
        the publish step never sees a slot that is still being written.
        """
        ring = self.ring
        ring.rotate()
        cycle = ring.cycle
        fetch_slot, infer_slot, publish_slot = ring.fetch_slot, ring.infer_slot, ring.publish_slot

        ring.transition(fetch_slot, SlotState.FETCHING)
        ring.transition(infer_slot, SlotState.INFERRING)

        fetch_future = executor.submit(self.fetch_stage.run, fetch_slot, cycle)
        infer_future = executor.submit(self.inference_stage.run, infer_slot, cycle)
        wait([fetch_future, infer_future])

        # Inference failure takes precedence: it is the fatal one
        infer_future.result()
        fetch_future.result()

        ring.transition(fetch_slot, SlotState.FETCHED)
        ring.transition(infer_slot, SlotState.READY)
        self._update_fps()

        self._check_publish_lag(publish_slot, cycle)
        ring.transition(publish_slot, SlotState.CONSUMING)
        result = self.publish_stage.run(publish_slot, cycle, self.fps)
        ring.transition(publish_slot, SlotState.EMPTY)

        self.last_result = result
        if self.logger.is_debug():
            self.logger.debug(
                f"Cycle {cycle}: fetch={fetch_slot.name} infer={infer_slot.name} "
                f"publish={publish_slot.name} count={result.count} fps={self.fps:.1f}"
            )
        return result

    def run(self) -> None:
        """Pipeline thread body: wait for a frame, prime, then cycle until stopped."""
        reason, fatal = "shutdown", False
        try:
            if not self.wait_for_first_frame():
                self.logger.info("Stopped before the first frame arrived")
                return

            self.prime()
            self.logger.info("Pipeline running")
            with ThreadPoolExecutor(max_workers=2, thread_name_prefix="RingStage") as executor:
                while self.running.get():
                    self.run_cycle(executor)

        except FusionError as e:
            self.error = e
            self.failures.record_failure(e)
            reason, fatal = e.message, True
        except Exception as e:
            self.error = e
            self.failures.record_failure(e)
            self.logger.critical(f"Pipeline crashed: {type(e).__name__}: {e}")
            reason, fatal = f"{type(e).__name__}: {e}", True
        finally:
            self.running.set(False)
            self.logger.info(f"Pipeline stopped after {self.ring.cycle} cycle(s) ({reason})")
            self.bus.publish(PipelineStopped(reason=reason, fatal=fatal))
