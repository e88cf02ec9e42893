"""
Connected components and binary morphology on boolean masks.

Components are 4-connected and reported in raster order of their first
pixel, so every caller sees the same ordering for the same mask.
"""

import logging
import math
import os
from typing import List, Optional, Tuple

import cv2
import numpy as np

from .config import DEBUG_OUTPUT_DIR
from .models import Box, Component

logger = logging.getLogger(__name__)

_KERNEL_3X3 = np.ones((3, 3), dtype=np.uint8)


def save_debug_image(name: str, image: np.ndarray) -> None:
    """Save image to debug directory if GRIDFILL_DEBUG_DIR is set."""
    if DEBUG_OUTPUT_DIR is not None:
        os.makedirs(DEBUG_OUTPUT_DIR, exist_ok=True)
        if image.dtype == bool:
            image = image.astype(np.uint8) * 255
        cv2.imwrite(os.path.join(DEBUG_OUTPUT_DIR, name), image)


def label_components(mask: np.ndarray) -> Tuple[np.ndarray, List[Component]]:
    """
    Label 4-connected foreground regions.

    Args:
        mask: Boolean (or 0/255) foreground mask

    Returns:
        Tuple of (labels, components) where labels[y, x] is the 1-based
        index into components + 1, and 0 marks background.
    """
    binary = (np.asarray(mask) > 0).astype(np.uint8)
    if binary.size == 0:
        return np.zeros(binary.shape, dtype=np.int32), []

    n, labels, stats, _ = cv2.connectedComponentsWithStats(binary, connectivity=4)
    if n <= 1:
        return labels, []

    # Re-number labels by the raster position of their first pixel
    flat = labels.ravel()
    found, first_index = np.unique(flat, return_index=True)
    keep = found > 0
    order = found[keep][np.argsort(first_index[keep], kind="stable")]

    remap = np.zeros(n, dtype=np.int32)
    components = []
    for new_label, old_label in enumerate(order, start=1):
        remap[old_label] = new_label
        x = int(stats[old_label, cv2.CC_STAT_LEFT])
        y = int(stats[old_label, cv2.CC_STAT_TOP])
        w = int(stats[old_label, cv2.CC_STAT_WIDTH])
        h = int(stats[old_label, cv2.CC_STAT_HEIGHT])
        area = int(stats[old_label, cv2.CC_STAT_AREA])
        components.append(Component(x=x, y=y, w=w, h=h, area=area, cx=x + w / 2, cy=y + h / 2))

    return remap[labels], components


def find_components(mask: np.ndarray) -> List[Component]:
    """Connected components of a mask (bbox, area, center)."""
    return label_components(mask)[1]


def border_pixels(mask: np.ndarray) -> np.ndarray:
    """
    Foreground pixels with at least one background or out-of-bounds
    4-neighbor.
    """
    fg = np.asarray(mask) > 0
    padded = np.pad(fg, 1, mode="constant", constant_values=False)
    interior = (
        padded[:-2, 1:-1] & padded[2:, 1:-1]
        & padded[1:-1, :-2] & padded[1:-1, 2:]
    )
    return fg & ~interior


def count_border_pixels(mask: np.ndarray, box: Optional[Box] = None) -> int:
    """Border pixel count, optionally limited to a bounding box."""
    border = border_pixels(mask)
    if box is not None:
        x1, y1, x2, y2 = box
        border = border[y1:y2, x1:x2]
    return int(np.count_nonzero(border))


def circularity(area: float, perimeter: float) -> float:
    """4*pi*area / perimeter^2; 1.0 for a perfect circle, 0 if perimeter is 0."""
    if perimeter <= 0:
        return 0.0
    return (4 * math.pi * area) / (perimeter * perimeter)


def dilate(mask: np.ndarray) -> np.ndarray:
    out = cv2.dilate(
        (np.asarray(mask) > 0).astype(np.uint8), _KERNEL_3X3,
        borderType=cv2.BORDER_CONSTANT, borderValue=0,
    )
    return out > 0


def erode(mask: np.ndarray) -> np.ndarray:
    # Out-of-bounds neighbors count as background
    out = cv2.erode(
        (np.asarray(mask) > 0).astype(np.uint8), _KERNEL_3X3,
        borderType=cv2.BORDER_CONSTANT, borderValue=0,
    )
    return out > 0


def close_then_open(mask: np.ndarray) -> np.ndarray:
    """
    3x3 close (dilate -> erode) to fill small gaps, then 3x3 open
    (erode -> dilate) to remove speckle.
    """
    closed = erode(dilate(mask))
    return dilate(erode(closed))


def summed_area_table(values: np.ndarray) -> np.ndarray:
    """(H+1) x (W+1) prefix-sum table with a zero first row and column."""
    return cv2.integral(np.asarray(values, dtype=np.float64))


def local_mean(values: np.ndarray, radius: int) -> np.ndarray:
    """
    Mean over the (2r+1) x (2r+1) window around each pixel, with the
    window clipped to the image.
    """
    height, width = values.shape
    table = summed_area_table(values)

    ys = np.arange(height)
    xs = np.arange(width)
    y1 = np.clip(ys - radius, 0, height - 1)
    y2 = np.clip(ys + radius, 0, height - 1) + 1
    x1 = np.clip(xs - radius, 0, width - 1)
    x2 = np.clip(xs + radius, 0, width - 1) + 1

    sums = (
        table[np.ix_(y2, x2)] - table[np.ix_(y1, x2)]
        - table[np.ix_(y2, x1)] + table[np.ix_(y1, x1)]
    )
    counts = np.outer(y2 - y1, x2 - x1)
    return sums / counts


def bounding_box(mask: np.ndarray) -> Optional[Box]:
    """Tight half-open bounding box of the foreground, or None."""
    fg = np.asarray(mask) > 0
    rows = np.flatnonzero(fg.any(axis=1))
    cols = np.flatnonzero(fg.any(axis=0))
    if rows.size == 0 or cols.size == 0:
        return None
    return (int(cols[0]), int(rows[0]), int(cols[-1]) + 1, int(rows[-1]) + 1)
