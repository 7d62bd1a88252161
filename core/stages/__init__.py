"""
Pipeline stages for the fusion node.

    SensorCapture → [FrameStager] → FetchStage ─┐
                                                ├─ ring (3 slots) → PublishStage → EventBus
                                 InferenceStage ┘

SensorCapture runs on the sensor's delivery thread. Fetch and inference
run in parallel on two workers each cycle; publish runs on the pipeline
thread once both have been joined.
"""
from .capture import SensorCapture
from .fetch import FetchStage
from .inference import InferenceStage, non_max_suppression, filter_detections
from .publish import PublishStage, to_pixel_box

__all__ = [
    "SensorCapture", "FetchStage", "InferenceStage", "PublishStage",
    "non_max_suppression", "filter_detections", "to_pixel_box",
]
