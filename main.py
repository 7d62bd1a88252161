"""
Fusion Node: Entry Point

    sensor source → SensorCapture → FrameStager → RingPipeline (fetch || infer → publish)
                                                                     ↓ EventBus
                                       ConsoleSubscriber, SnapshotSubscriber, RequestTracker
"""
import argparse
import dataclasses
import json
import signal
import sys
from threading import Event
from typing import Optional

import cv2
import numpy as np

from core.bus import EventBus
from core.console_subscriber import ConsoleSubscriber
from core.events import DetectionResult, FrameHeader, PipelineStopped, ShutdownRequested
from core.pipeline import RingPipeline
from core.protocols import InferenceBackend, SensorSource
from core.requests import RequestTracker
from core.snapshot_subscriber import SnapshotSubscriber
from core.stager import FrameStager
from core.stages.capture import SensorCapture
from utils.config import Config, PipelineSettings
from utils.constants import DEFAULT_SENSOR_FPS, DETECTIONS_DIR
from utils.failures import ConfigError, FailureManager
from utils.logger import Logger


def parse_args(argv=None):
    """Parse command-line arguments."""
    parser = argparse.ArgumentParser(description="Fusion Node - depth-fused real-time object detection")
    parser.add_argument('--config-dir', '-c', type=str, default=None,
                        help='Directory with JSON config files (default: ./configs)')
    parser.add_argument('--sensor-dir', '-s', type=str, default=None,
                        help='Replay image + .npy point cloud pairs from this directory')
    parser.add_argument('--model', '-m', type=str, default=None,
                        help='Path to the YOLO weights (overrides model.path)')
    parser.add_argument('--check', type=str, default=None, metavar='IMAGE',
                        help='Evaluate a single image, print the result as JSON and exit')
    parser.add_argument('--timeout', type=float, default=30.0,
                        help='Seconds to wait for a --check result')
    parser.add_argument('--save-detections', type=str, nargs='?', default=None,
                        const=str(DETECTIONS_DIR), metavar='DIR',
                        help='Save annotated detection images to DIR (default: ./detections)')
    parser.add_argument('--console', action='store_true',
                        help='Print objects to the console every cycle')
    return parser.parse_args(argv)


class FusionNode:
    """
    Fusion Node Orchestrator.

    Wires together:
      - SensorCapture + FrameStager (ingestion side)
      - RingPipeline (fetch/infer/publish loop on its own thread)
      - RequestTracker (one-shot requests)
      - Bus subscribers (console, snapshot writer)
    """

    def __init__(self, config_dir: Optional[str] = None, sensor_dir: Optional[str] = None,
                 model_path: Optional[str] = None, console: bool = False,
                 save_dir: Optional[str] = None, backend: Optional[InferenceBackend] = None):
        # ── 1. Foundation ────────────────────────────────────────────
        self.config = Config(config_dir)
        if model_path:
            self.config.set('model.path', model_path)
        if sensor_dir:
            self.config.set('sensor.directory', sensor_dir)

        Logger.setup(self.config.get('logging', {}))
        self.logger = Logger("FusionNode")
        self.logger.info("Initializing Fusion Node...")

        self.settings = PipelineSettings.from_config(self.config)
        if console:
            self.settings = dataclasses.replace(self.settings, console_output=True)

        self.stop_event = Event()
        self.failures = FailureManager(self.config.get('failures', {}))
        self.bus = EventBus(self.failures)

        # ── 2. Ingestion ─────────────────────────────────────────────
        self.stager = FrameStager()
        self.capture = SensorCapture(self.stager, self.failures)
        self.tracker = RequestTracker(self.stager)

        # ── 3. Detector ──────────────────────────────────────────────
        self.backend = backend or self._load_backend()

        visuals_handler = None
        if self.settings.enable_visualization:
            from Handlers.Detection_Visuals_Handler import DetectionVisualsHandler
            visuals_handler = DetectionVisualsHandler()

        # ── 4. Pipeline ──────────────────────────────────────────────
        self.pipeline = RingPipeline(
            stager=self.stager,
            backend=self.backend,
            settings=self.settings,
            bus=self.bus,
            tracker=self.tracker,
            visuals_handler=visuals_handler,
            failures=self.failures,
        )

        # ── 5. Sensor source (optional) ──────────────────────────────
        self.sensor: Optional[SensorSource] = None
        recording = self.config.get('sensor.directory')
        if recording:
            from Handlers.Recorded_Sensor_Handler import RecordedSensorHandler
            self.sensor = RecordedSensorHandler(
                recording,
                fps=self.config.get_float('sensor.fps', DEFAULT_SENSOR_FPS),
                loop=self.config.get_bool('sensor.loop', True),
            )

        # ── 6. Subscribers ───────────────────────────────────────────
        self.console = ConsoleSubscriber(self.bus) if self.settings.console_output else None
        self.snapshots = None
        if save_dir:
            if visuals_handler is None:
                self.logger.warning("--save-detections needs visualization enabled; ignoring")
            else:
                self.snapshots = SnapshotSubscriber(
                    self.bus, save_dir,
                    prefix=self.config.get('snapshots.prefix', 'detection'),
                    every=self.config.get_int('snapshots.every', 1),
                )
        self.bus.subscribe(PipelineStopped, self._on_pipeline_stopped)
        self.bus.subscribe(ShutdownRequested, self._on_shutdown_requested)

        self.logger.info("Fusion Node initialized successfully")

    def _load_backend(self) -> InferenceBackend:
        """Load the YOLO backend named in the config."""
        model_path = self.config.get('model.path')
        if not model_path:
            raise ConfigError("No model configured (set model.path or FUSION_MODEL_PATH)", critical=True)

        from Handlers.Yolo_Backend_Handler import YoloBackend
        return YoloBackend.from_path(
            model_path,
            self.settings.network_width,
            self.settings.network_height,
            device=self.config.get('model.device'),
        )

    # ── Interfaces ──────────────────────────────────────────────────

    def ingest(self, image: np.ndarray, cloud: np.ndarray, header: Optional[FrameHeader] = None) -> bool:
        """Push one paired sample (for sensor drivers living outside this process)."""
        return self.capture.on_sensor_data(image, cloud, header)

    def check_for_objects(self, image: np.ndarray, timeout: Optional[float] = None) -> Optional[DetectionResult]:
        """Evaluate `image` through the running pipeline and block for its result."""
        return self.tracker.check_for_objects(image, timeout)

    def _on_pipeline_stopped(self, event: PipelineStopped) -> None:
        if event.fatal:
            self.logger.critical(f"Pipeline stopped: {event.reason}")
        self.stop_event.set()

    def _on_shutdown_requested(self, event: ShutdownRequested) -> None:
        self.logger.info(f"Shutdown requested ({event.reason})")
        self.stop_event.set()

    def _setup_signals(self):
        """Handle OS signals for graceful shutdown."""
        def handler(sig, frame):
            self.bus.publish(ShutdownRequested(reason=signal.Signals(sig).name))
        signal.signal(signal.SIGINT, handler)
        signal.signal(signal.SIGTERM, handler)

    # ── Lifecycle ───────────────────────────────────────────────────

    def start(self) -> bool:
        """Start the pipeline, the sensor source and the subscribers."""
        self.logger.info("Starting Fusion Node services...")

        if self.snapshots:
            self.snapshots.start()
        self.pipeline.start()

        if self.sensor and not self.sensor.start(self.capture.on_sensor_data):
            self.logger.error("Sensor source failed to start")
            return False
        return True

    def spin(self) -> None:
        """Block the main thread until a signal or a pipeline stop."""
        self._setup_signals()
        while not self.stop_event.wait(0.5):
            pass
        self.stop()

    def stop(self) -> None:
        """Gracefully shutdown all components."""
        if getattr(self, '_stopped', False):
            return
        self._stopped = True
        self.stop_event.set()
        self.logger.info("Stopping Fusion Node...")

        if self.sensor:
            self.sensor.stop()
        self.pipeline.stop(timeout=self.settings.wait_for_image_interval + 5.0)
        if self.snapshots:
            self.snapshots.stop()
        if self.console:
            self.console.close()
        self.bus.clear()

        failures = self.failures.summary()
        if failures:
            self.logger.info(f"Failures this run: {failures}")
            for error in self.failures.get_recent_history(3):
                self.logger.info(f"  last: {type(error).__name__}: {error.message}")
        self.logger.info("Fusion Node stopped successfully")


def main(argv=None) -> int:
    args = parse_args(argv)

    node = FusionNode(
        config_dir=args.config_dir,
        sensor_dir=args.sensor_dir,
        model_path=args.model,
        console=args.console,
        save_dir=args.save_detections,
    )

    if args.check:
        image = cv2.imread(args.check, cv2.IMREAD_COLOR)
        if image is None:
            node.logger.error(f"Cannot read image: {args.check}")
            return 1
        node.start()
        try:
            result = node.check_for_objects(image, timeout=args.timeout)
        finally:
            node.stop()
        if result is None:
            node.logger.error(f"No result within {args.timeout}s")
            return 2
        print(json.dumps(result.to_dict(), indent=2))
        return 0

    if not node.start():
        node.stop()
        return 1
    node.spin()
    return 0


if __name__ == "__main__":
    sys.exit(main())
