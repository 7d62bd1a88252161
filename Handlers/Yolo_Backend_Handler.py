"""YOLO Backend Handler: ultralytics model behind the InferenceBackend protocol.

`infer` runs the raw torch forward pass on a letterboxed input and returns
the flattened head output, so the pipeline can smooth it over time before
`decode` turns it into boxes.
"""
from pathlib import Path
from typing import Dict, List, Optional

import numpy as np
import torch
from ultralytics import YOLO

from core.events import DecodedBox
from utils.failures import ConfigError
from utils.imaging import unletterbox_boxes
from utils.logger import Logger


class YoloBackend:
    """Anchor-free YOLO head (4 box rows + one row per class) as a black-box detector."""

    _model_cache: Dict[str, YOLO] = {}

    def __init__(self, model: YOLO, net_width: int, net_height: int, device: Optional[str] = None):
        """
        Args:
            model: Loaded ultralytics YOLO model.
            net_width: Network input width (must match the letterbox size).
            net_height: Network input height.
            device: torch device; picks CUDA when available if omitted.
        """
        self.logger = Logger("YoloBackend")
        self.device = device or ("cuda" if torch.cuda.is_available() else "cpu")
        self.net_width = net_width
        self.net_height = net_height
        self.class_names = dict(getattr(model, 'names', {}) or {})
        self._net = model.model.to(self.device).float().eval()
        self._output_rows: Optional[int] = None
        self.logger.info(
            f"YOLO backend on {self.device}: {len(self.class_names)} classes, "
            f"input {net_width}x{net_height}"
        )

    @classmethod
    def load_model(cls, model_path: str) -> YOLO:
        """Load a YOLO model from disk, reusing an already loaded instance."""
        if model_path in cls._model_cache:
            return cls._model_cache[model_path]
        if not Path(model_path).exists():
            raise ConfigError(f"Model file not found: {model_path}", critical=True)

        model = YOLO(model_path)
        cls._model_cache[model_path] = model
        Logger("YoloBackend").info(f"Model loaded: {model_path}")
        return model

    @classmethod
    def from_path(cls, model_path: str, net_width: int, net_height: int,
                  device: Optional[str] = None) -> "YoloBackend":
        return cls(cls.load_model(model_path), net_width, net_height, device)

    def infer(self, network_input: np.ndarray) -> np.ndarray:
        tensor = torch.from_numpy(np.ascontiguousarray(network_input)).unsqueeze(0).to(self.device)
        with torch.no_grad():
            output = self._net(tensor)
        if isinstance(output, (list, tuple)):
            output = output[0]
        output = output[0]  # drop batch dimension -> (4 + classes, anchors)
        self._output_rows = int(output.shape[0])
        return output.float().cpu().numpy().ravel()

    def decode(self, output: np.ndarray, width: int, height: int,
               prob_threshold: float, hier_threshold: float) -> List[DecodedBox]:
        """
        Turn a (smoothed) head output into boxes normalized to the source image.

        The best class score serves as objectness; a candidate is admitted when
        it exceeds `prob_threshold`, and class scores at or below the threshold
        are zeroed. `hier_threshold` only matters for tree-structured heads and
        is not used by flat YOLO heads.
        """
        if self._output_rows is None:
            raise RuntimeError("decode() called before infer()")

        preds = np.asarray(output, dtype=np.float32).reshape(self._output_rows, -1).T
        boxes, scores = preds[:, :4], preds[:, 4:]
        objectness = scores.max(axis=1) if scores.shape[1] else np.zeros(len(preds))

        keep = objectness > prob_threshold
        if not np.any(keep):
            return []

        normalized = unletterbox_boxes(boxes[keep], width, height, self.net_width, self.net_height)
        kept_scores = scores[keep]
        probs = np.where(kept_scores > prob_threshold, kept_scores, 0.0).astype(np.float32)

        return [
            DecodedBox(float(b[0]), float(b[1]), float(b[2]), float(b[3]), float(obj), p)
            for b, obj, p in zip(normalized, objectness[keep], probs)
        ]
