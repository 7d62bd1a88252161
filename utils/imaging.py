"""
Image helpers shared by the fetch stage and the inference backend.

Letterboxing keeps the aspect ratio of the source image and pads the rest
of the network input with a constant gray fill.
"""
from typing import NamedTuple

import cv2
import numpy as np

from utils.constants import LETTERBOX_FILL


class LetterboxGeometry(NamedTuple):
    """Placement of a resized image inside the network input canvas."""
    new_width: int
    new_height: int
    offset_x: int
    offset_y: int


def letterbox_geometry(width: int, height: int, net_width: int, net_height: int) -> LetterboxGeometry:
    """Compute the resized size and padding offsets for a source image."""
    if net_width / width < net_height / height:
        new_w = net_width
        new_h = int(height * net_width / width)
    else:
        new_h = net_height
        new_w = int(width * net_height / height)
    new_w = max(new_w, 1)
    new_h = max(new_h, 1)
    return LetterboxGeometry(new_w, new_h, (net_width - new_w) // 2, (net_height - new_h) // 2)


def letterbox(image_bgr: np.ndarray, net_width: int, net_height: int) -> np.ndarray:
    """
    Convert a BGR uint8 image into a letterboxed network input.

    Returns:
        float32 array of shape (3, net_height, net_width), RGB, values in [0, 1].
    """
    height, width = image_bgr.shape[:2]
    geo = letterbox_geometry(width, height, net_width, net_height)

    rgb = cv2.cvtColor(image_bgr, cv2.COLOR_BGR2RGB)
    resized = cv2.resize(rgb, (geo.new_width, geo.new_height), interpolation=cv2.INTER_LINEAR)

    canvas = np.full((net_height, net_width, 3), LETTERBOX_FILL, dtype=np.float32)
    canvas[geo.offset_y:geo.offset_y + geo.new_height,
           geo.offset_x:geo.offset_x + geo.new_width] = resized.astype(np.float32) / 255.0
    return np.ascontiguousarray(canvas.transpose(2, 0, 1))


def unletterbox_boxes(boxes: np.ndarray, width: int, height: int,
                      net_width: int, net_height: int) -> np.ndarray:
    """
    Map (cx, cy, w, h) boxes in network pixels back to coordinates normalized
    to the source image.
    """
    geo = letterbox_geometry(width, height, net_width, net_height)
    out = np.empty_like(boxes, dtype=np.float32)
    out[:, 0] = (boxes[:, 0] - geo.offset_x) / geo.new_width
    out[:, 1] = (boxes[:, 1] - geo.offset_y) / geo.new_height
    out[:, 2] = boxes[:, 2] / geo.new_width
    out[:, 3] = boxes[:, 3] / geo.new_height
    return out
