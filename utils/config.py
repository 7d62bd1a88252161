"""
Configuration management for the fusion node.
"""
import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Any, Optional, Tuple

from utils.constants import (
    CONFIGS_DIR, DEFAULT_NETWORK_WIDTH, DEFAULT_NETWORK_HEIGHT,
    DEFAULT_PROB_THRESHOLD, DEFAULT_HIER_THRESHOLD, DEFAULT_NMS_THRESHOLD,
    DEFAULT_SMOOTHING_WINDOW, DEFAULT_MIN_BOX_FRACTION, DEFAULT_MAX_BOXES,
    DEFAULT_CALIBRATION_OFFSETS, DEFAULT_WAIT_FOR_IMAGE_INTERVAL,
)
from utils.failures import ConfigError
from utils.logger import Logger


# Environment variable -> dotted config key
ENV_OVERRIDES = {
    'FUSION_MODEL_PATH': 'model.path',
    'FUSION_SENSOR_DIR': 'sensor.directory',
    'FUSION_LOG_LEVEL': 'logging.level',
}


class Config:
    """Configuration manager that merges multiple domain-specific JSON files."""

    def __init__(self, configs_dir: Optional[str] = None):
        """
        Initialize configuration by loading all JSON files in the configs directory.

        Args:
            configs_dir: Path to directory containing JSON configs (defaults to ./configs)
        """
        self.config: Dict[str, Any] = {}
        self.logger = Logger("Config")

        configs_dir = Path(configs_dir) if configs_dir else CONFIGS_DIR

        if configs_dir.exists() and configs_dir.is_dir():
            for config_file in sorted(configs_dir.glob("*.json")):
                self.load_from_file(str(config_file))
        else:
            self.logger.warning(f"Config directory not found: {configs_dir} (using defaults)")

        self._load_from_env()

    def _load_from_env(self):
        """Apply environment variable overrides."""
        for env_name, key in ENV_OVERRIDES.items():
            value = os.environ.get(env_name)
            if value:
                self.set(key, value)

    def load_from_file(self, path: str):
        """Load configuration from JSON file."""
        try:
            with open(path, 'r') as f:
                self._merge_config(json.load(f))
        except (OSError, json.JSONDecodeError) as e:
            self.logger.error(f"Failed to load config from {path}: {e}")

    def _merge_config(self, user_config: Dict[str, Any]):
        """Merge user config with defaults recursively."""
        def update(d, u):
            for k, v in u.items():
                if isinstance(v, dict):
                    d[k] = update(d.get(k, {}), v)
                else:
                    d[k] = v
            return d

        update(self.config, user_config)

    def set(self, key: str, value: Any):
        """Set a dotted configuration key, creating intermediate sections."""
        keys = key.split('.')
        section = self.config
        for k in keys[:-1]:
            section = section.setdefault(k, {})
        section[keys[-1]] = value

    def get_int(self, key: str, default: int = 0) -> int:
        """Get config value as integer."""
        val = self.get(key, default)
        try:
            return int(val)
        except (ValueError, TypeError):
            return default

    def get_float(self, key: str, default: float = 0.0) -> float:
        """Get config value as float."""
        val = self.get(key, default)
        try:
            return float(val)
        except (ValueError, TypeError):
            return default

    def get_bool(self, key: str, default: bool = False) -> bool:
        """Get config value as boolean."""
        val = self.get(key, default)
        if isinstance(val, bool):
            return val
        if isinstance(val, str):
            return val.lower() in ('true', '1', 'yes', 'on')
        return bool(val)

    def get(self, key: str, default: Any = None) -> Any:
        """Get configuration value."""
        keys = key.split('.')
        value = self.config

        for k in keys:
            if isinstance(value, dict) and k in value:
                value = value[k]
            else:
                return default

        return value


@dataclass(frozen=True)
class PipelineSettings:
    """
    Immutable view of everything the pipeline consumes from configuration.

    Built once at startup and handed to every stage by reference.
    """
    network_width: int = DEFAULT_NETWORK_WIDTH
    network_height: int = DEFAULT_NETWORK_HEIGHT
    prob_threshold: float = DEFAULT_PROB_THRESHOLD
    hier_threshold: float = DEFAULT_HIER_THRESHOLD
    nms_threshold: float = DEFAULT_NMS_THRESHOLD
    smoothing_window: int = DEFAULT_SMOOTHING_WINDOW
    min_box_fraction: float = DEFAULT_MIN_BOX_FRACTION
    max_boxes: int = DEFAULT_MAX_BOXES
    calibration_offsets: Tuple[float, float, float] = DEFAULT_CALIBRATION_OFFSETS
    class_labels: Tuple[str, ...] = field(default_factory=tuple)
    enable_visualization: bool = True
    console_output: bool = False
    wait_for_image_interval: float = DEFAULT_WAIT_FOR_IMAGE_INTERVAL

    def __post_init__(self):
        if self.network_width <= 0 or self.network_height <= 0:
            raise ConfigError(
                f"Network input size must be positive, got "
                f"{self.network_width}x{self.network_height}", critical=True
            )
        if self.smoothing_window <= 0:
            raise ConfigError(f"Smoothing window must be positive, got {self.smoothing_window}",
                              critical=True)
        if self.max_boxes <= 0:
            raise ConfigError(f"max_boxes must be positive, got {self.max_boxes}", critical=True)
        for name in ('prob_threshold', 'hier_threshold', 'nms_threshold', 'min_box_fraction'):
            value = getattr(self, name)
            if not 0.0 <= value <= 1.0:
                raise ConfigError(f"{name} must lie in [0, 1], got {value}", critical=True)
        if len(self.calibration_offsets) != 3:
            raise ConfigError("calibration_offsets needs exactly three values", critical=True)

    def label_for(self, class_id: int) -> str:
        """Human-readable label for a class id (falls back to the id itself)."""
        if 0 <= class_id < len(self.class_labels):
            return self.class_labels[class_id]
        return str(class_id)

    @classmethod
    def from_config(cls, config: Config) -> "PipelineSettings":
        """Build settings from a loaded Config, falling back to defaults per key."""
        offsets = config.get('geometry.calibration_offsets', list(DEFAULT_CALIBRATION_OFFSETS))
        try:
            offsets = tuple(float(v) for v in offsets)
        except (TypeError, ValueError):
            raise ConfigError(f"Invalid calibration offsets: {offsets}", critical=True)

        return cls(
            network_width=config.get_int('model.input_width', DEFAULT_NETWORK_WIDTH),
            network_height=config.get_int('model.input_height', DEFAULT_NETWORK_HEIGHT),
            prob_threshold=config.get_float('detection.threshold', DEFAULT_PROB_THRESHOLD),
            hier_threshold=config.get_float('detection.hier_threshold', DEFAULT_HIER_THRESHOLD),
            nms_threshold=config.get_float('detection.nms_threshold', DEFAULT_NMS_THRESHOLD),
            smoothing_window=config.get_int('detection.smoothing_window', DEFAULT_SMOOTHING_WINDOW),
            min_box_fraction=config.get_float('detection.min_box_fraction', DEFAULT_MIN_BOX_FRACTION),
            max_boxes=config.get_int('detection.max_boxes', DEFAULT_MAX_BOXES),
            calibration_offsets=offsets,
            class_labels=tuple(config.get('model.class_labels', [])),
            enable_visualization=config.get_bool('visualization.enabled', True),
            console_output=config.get_bool('visualization.console_output', False),
            wait_for_image_interval=config.get_float(
                'pipeline.wait_for_image_interval', DEFAULT_WAIT_FOR_IMAGE_INTERVAL
            ),
        )
