"""
Pixel color classification.

Pixels are converted to HSV (H in [0, 180], S and V in [0, 255]) and
tested against the fixed per-color boxes in config.COLOR_RANGES. A
"relaxed" mask lowers the S/V floors to catch faded renders. GN and CY
overlap around hue 80-85; ambiguous regions are resolved by comparing
the mean hue of the ambiguous pixels with config.HUE_SPLIT.
"""

import logging
from typing import Dict, Iterable, Optional, Tuple

import cv2
import numpy as np

from .config import (
    ALL_COLORS,
    AMBIGUOUS_PAIR,
    BLOCKED,
    COLOR_RANGES,
    HUE_SPLIT,
    RELAXED_SAT_DELTA,
    RELAXED_VAL_DELTA,
)

logger = logging.getLogger(__name__)


def to_rgb(image: Optional[np.ndarray]) -> Optional[np.ndarray]:
    """
    Validate an RGBA/RGB buffer and return a read-only RGB view.

    Returns None (and logs) for missing, empty or wrongly shaped input.
    """
    if image is None or not isinstance(image, np.ndarray) or image.size == 0:
        logger.warning("Image buffer is empty or missing")
        return None
    if image.ndim != 3 or image.shape[2] not in (3, 4):
        logger.warning(f"Unsupported image shape: {image.shape}")
        return None
    rgb = image[:, :, :3]
    if rgb.dtype != np.uint8:
        rgb = np.clip(rgb, 0, 255).astype(np.uint8)
    rgb = rgb.view()
    rgb.flags.writeable = False
    return rgb


def rgb_to_hsv(rgb: np.ndarray) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
    """
    Convert an RGB uint8 array to float HSV planes.

    OpenCV's float conversion gives H in [0, 360) and S, V in [0, 1];
    the planes are rescaled to the 180/255/255 convention without
    rounding so range tests see exact values.
    """
    hsv = cv2.cvtColor(np.ascontiguousarray(rgb, dtype=np.float32) / 255.0, cv2.COLOR_RGB2HSV)
    return hsv[:, :, 0] / 2.0, hsv[:, :, 1] * 255.0, hsv[:, :, 2] * 255.0


def _in_range(h, s, v, code: str, relaxed: bool = False):
    (h_min, s_min, v_min), (h_max, s_max, v_max) = COLOR_RANGES[code]
    if relaxed:
        s_min = max(0, s_min - RELAXED_SAT_DELTA)
        v_min = max(0, v_min - RELAXED_VAL_DELTA)
    return (
        (h >= h_min) & (h <= h_max)
        & (s >= s_min) & (s <= s_max)
        & (v >= v_min) & (v <= v_max)
    )


def resolve_by_hue(mean_hue: float) -> str:
    """Pick GN or CY for a region whose pixels match both."""
    low, high = AMBIGUOUS_PAIR
    return high if mean_hue >= HUE_SPLIT else low


def classify_pixel(r: int, g: int, b: int, relaxed: bool = False) -> Optional[str]:
    """
    Classify a single pixel.

    Returns a color code, "BK" for neutral obstacle gray, or None.
    """
    h, s, v = rgb_to_hsv(np.array([[[r, g, b]]], dtype=np.uint8))
    hit = [code for code in ALL_COLORS if bool(_in_range(h, s, v, code, relaxed)[0, 0])]
    if set(AMBIGUOUS_PAIR) <= set(hit):
        return resolve_by_hue(float(h[0, 0]))
    if hit:
        return hit[0]
    if bool(_in_range(h, s, v, BLOCKED)[0, 0]):
        return BLOCKED
    return None


def dominant_color(counts: Dict[str, int], ambiguous_hues: Iterable[float] = ()) -> Optional[str]:
    """
    Majority color from per-color pixel counts.

    Ties go to the later color in config.ALL_COLORS. When the winner is
    one of the GN/CY pair and the other also has pixels, the mean hue of
    the ambiguous pixels decides. Returns None when nothing was counted.
    """
    best = max(reversed(ALL_COLORS), key=lambda c: counts.get(c, 0))
    if counts.get(best, 0) == 0:
        return None
    low, high = AMBIGUOUS_PAIR
    if best in AMBIGUOUS_PAIR and counts.get(low, 0) > 0 and counts.get(high, 0) > 0:
        hues = np.fromiter(ambiguous_hues, dtype=np.float64)
        if hues.size > 0:
            return resolve_by_hue(float(hues.mean()))
    return best


class HSVImage:
    """
    HSV planes of one analysis region with memoized color masks.

    Masks are boolean arrays the size of the region.
    """

    def __init__(self, rgb: np.ndarray):
        self.rgb = rgb
        self.height, self.width = rgb.shape[:2]
        self.h, self.s, self.v = rgb_to_hsv(rgb)
        self._masks: Dict[Tuple[str, bool], np.ndarray] = {}

    @property
    def area(self) -> int:
        return self.width * self.height

    def mask(self, code: str, relaxed: bool = False) -> np.ndarray:
        key = (code, relaxed)
        if key not in self._masks:
            self._masks[key] = _in_range(self.h, self.s, self.v, code, relaxed)
        return self._masks[key]

    def combined_mask(self, colors: Iterable[str], relaxed: bool = False) -> np.ndarray:
        out = np.zeros((self.height, self.width), dtype=bool)
        for code in colors:
            out |= self.mask(code, relaxed)
        return out

    def blocked_mask(self) -> np.ndarray:
        return self.mask(BLOCKED)

    def color_counts(self, region: Optional[np.ndarray] = None) -> Dict[str, int]:
        """Pixel count per color, optionally restricted to a boolean region."""
        counts = {}
        for code in ALL_COLORS:
            m = self.mask(code)
            if region is not None:
                m = m & region
            counts[code] = int(np.count_nonzero(m))
        return counts

    def ambiguous_hues(self, region: Optional[np.ndarray] = None) -> np.ndarray:
        """Hues of pixels that fall in either color of the GN/CY pair."""
        low, high = AMBIGUOUS_PAIR
        m = self.mask(low) | self.mask(high)
        if region is not None:
            m = m & region
        return self.h[m]

    def dominant(self, region: Optional[np.ndarray] = None) -> Optional[str]:
        return dominant_color(self.color_counts(region), self.ambiguous_hues(region))
