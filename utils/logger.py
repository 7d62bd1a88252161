import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path

from utils.constants import LOGS_DIR


def _parse_rotation(value) -> int:
    """Turn a rotation string like "5MB" or "512KB" into a byte count."""
    rot_str = str(value).strip().upper()
    max_bytes = 5 * 1024 * 1024
    try:
        if rot_str.endswith('MB'):
            max_bytes = int(rot_str[:-2]) * 1024 * 1024
        elif rot_str.endswith('KB'):
            max_bytes = int(rot_str[:-2]) * 1024
        elif rot_str.isdigit():
            max_bytes = int(rot_str)
    except ValueError:
        pass
    return max_bytes


class Logger:
    """Named logger with console and rotating file output."""

    _configured = False

    @classmethod
    def setup(cls, settings: dict):
        """
        Global configuration for all Logger instances.

        Args:
            settings: Dictionary containing 'level', 'rotation', 'backup_count',
                      optionally 'file' (false disables file output) and
                      'levels', a {component name: level} map, e.g.
                      {"RingPipeline": "DEBUG"} for per-cycle traces of one stage
        """
        if cls._configured:
            return

        level_name = str(settings.get('level', 'INFO')).upper()
        level = getattr(logging, level_name, logging.INFO)

        root = logging.getLogger()
        root.setLevel(level)

        if not root.handlers:
            formatter = logging.Formatter(
                '[%(asctime)s] [%(levelname)s] [%(threadName)s] [%(name)s] %(message)s',
                datefmt='%Y-%m-%d %H:%M:%S'
            )

            console_handler = logging.StreamHandler(sys.stdout)
            console_handler.setFormatter(formatter)
            root.addHandler(console_handler)

            if settings.get('file', True):
                try:
                    log_dir = Path(settings.get('dir', LOGS_DIR))
                    log_dir.mkdir(parents=True, exist_ok=True)

                    file_handler = RotatingFileHandler(
                        log_dir / "fusion_node.log",
                        maxBytes=_parse_rotation(settings.get('rotation', '5MB')),
                        backupCount=int(settings.get('backup_count', 5))
                    )
                    file_handler.setFormatter(formatter)
                    root.addHandler(file_handler)
                except OSError as e:
                    root.warning(f"Failed to initialize file logger: {e}")

        for name, component_level in (settings.get('levels') or {}).items():
            logging.getLogger(name).setLevel(
                getattr(logging, str(component_level).upper(), level)
            )

        cls._configured = True

    def __init__(self, name: str = "FusionNode"):
        self.logger = logging.getLogger(name)

    def is_debug(self) -> bool:
        return self.logger.isEnabledFor(logging.DEBUG)

    def info(self, message: str):
        self.logger.info(message)

    def warning(self, message: str):
        self.logger.warning(message)

    def error(self, message: str):
        self.logger.error(message)

    def debug(self, message: str):
        self.logger.debug(message)

    def critical(self, message: str):
        self.logger.critical(message)
