"""
Global constants for the fusion node.
"""
from pathlib import Path

# Project Structure
BASE_DIR = Path(__file__).parent.parent
CONFIGS_DIR = BASE_DIR / "configs"
LOGS_DIR = BASE_DIR / "logs"
DETECTIONS_DIR = BASE_DIR / "detections"

# Ring
RING_SIZE = 3

# Network input
DEFAULT_NETWORK_WIDTH = 416
DEFAULT_NETWORK_HEIGHT = 416
LETTERBOX_FILL = 0.5

# Detection decoding
DEFAULT_PROB_THRESHOLD = 0.3
DEFAULT_HIER_THRESHOLD = 0.5
DEFAULT_NMS_THRESHOLD = 0.4
DEFAULT_SMOOTHING_WINDOW = 3
DEFAULT_MIN_BOX_FRACTION = 0.01
DEFAULT_MAX_BOXES = 100

# Optical frame (x right, y down, z forward) -> body frame (x forward, y left, z up)
DEFAULT_CALIBRATION_OFFSETS = (0.1, 0.0125, 0.46)

# Timing
DEFAULT_WAIT_FOR_IMAGE_INTERVAL = 2.0
DEFAULT_SENSOR_FPS = 15

# Output records
DETECTION_FRAME_ID = "detection"
REQUEST_FRAME_ID = "check_for_objects"
EMPTY_CLASS_LABEL = "None"
