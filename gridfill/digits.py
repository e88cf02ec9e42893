"""
Digit recognition for numeric constraint glyphs.

A recognizer is any object with ``recognize(glyph) -> int`` returning a
digit 0-9 or config.UNRECOGNIZED_DIGIT. The production provider wraps
Tesseract via pytesseract. Callers hold the provider through an explicit
RecognizerContext rather than a module-level singleton.

Tesseract and classifiers both confuse "0" and "6" on the thin, ringed
glyphs the game renders, so a "6" answer is re-checked from the glyph
shape: a "0" has an enclosed hole and is mirror-symmetric, a "6" is not.
"""

import logging
from dataclasses import dataclass
from typing import Callable, Optional, Protocol

import cv2
import numpy as np
import pytesseract

from .components import label_components
from .config import UNRECOGNIZED_DIGIT

logger = logging.getLogger(__name__)

MIN_GLYPH_SIZE = 3
MIN_HOLE_PIXELS = 10
ZERO_SYMMETRY_THRESHOLD = 0.5


@dataclass(frozen=True)
class GlyphMask:
    """
    Binary glyph handed to a recognizer.

    Attributes:
        mask: Boolean foreground array (height x width)
        rotated: True when the glyph was cut from a strip rotated 90 degrees
            counter-clockwise and must be turned clockwise to be upright
    """
    mask: np.ndarray
    rotated: bool = False

    @property
    def width(self) -> int:
        return int(self.mask.shape[1])

    @property
    def height(self) -> int:
        return int(self.mask.shape[0])


class DigitRecognizer(Protocol):
    def recognize(self, glyph: GlyphMask) -> int:
        ...


def prepare_glyph(glyph: GlyphMask) -> Optional[np.ndarray]:
    """
    Crop a glyph to its foreground and turn it upright.

    Returns:
        Boolean upright glyph, or None if it is empty or smaller than
        MIN_GLYPH_SIZE in either dimension.
    """
    fg = np.asarray(glyph.mask) > 0
    if fg.size == 0:
        return None
    rows = np.flatnonzero(fg.any(axis=1))
    cols = np.flatnonzero(fg.any(axis=0))
    if rows.size == 0:
        return None

    cropped = fg[rows[0]:rows[-1] + 1, cols[0]:cols[-1] + 1]
    if cropped.shape[0] < MIN_GLYPH_SIZE or cropped.shape[1] < MIN_GLYPH_SIZE:
        return None
    if glyph.rotated:
        cropped = np.rot90(cropped, k=-1)
    return np.ascontiguousarray(cropped)


# =============================================================================
# 0 / 6 disambiguation
# =============================================================================

def hole_pixel_count(mask: np.ndarray) -> int:
    """
    Background pixels not reachable from the image border.

    Equivalent to flood-filling the background from every border pixel
    and counting what stays unreached.
    """
    fg = np.asarray(mask) > 0
    if fg.size == 0:
        return 0
    labels, _ = label_components(~fg)
    outside = np.unique(np.concatenate([labels[0, :], labels[-1, :], labels[:, 0], labels[:, -1]]))
    holes = (labels > 0) & ~np.isin(labels, outside)
    return int(np.count_nonzero(holes))


def has_hole(mask: np.ndarray) -> bool:
    return hole_pixel_count(mask) > MIN_HOLE_PIXELS


def mirror_symmetry(mask: np.ndarray) -> float:
    """Fraction of left/right pixel pairs that agree across the vertical midline."""
    fg = np.asarray(mask) > 0
    half = fg.shape[1] // 2
    if half == 0:
        return 1.0
    left = fg[:, :half]
    right = fg[:, ::-1][:, :half]
    return float(np.count_nonzero(left == right)) / left.size


def correct_six(mask: np.ndarray, digit: int) -> int:
    """Reclassify a recognized 6 as 0 when the glyph is a symmetric ring."""
    if digit != 6:
        return digit
    if has_hole(mask) and mirror_symmetry(mask) > ZERO_SYMMETRY_THRESHOLD:
        logger.debug("Glyph read as 6 has a symmetric hole; correcting to 0")
        return 0
    return digit


# =============================================================================
# Tesseract provider
# =============================================================================

class TesseractDigitRecognizer:
    """
    Single-digit recognizer backed by Tesseract OCR.

    Glyphs are rendered black-on-white with a margin and scaled to a
    height Tesseract reads reliably.
    """

    TESSERACT_CONFIG = "--psm 10 --oem 3 -c tessedit_char_whitelist=0123456789"

    def __init__(self, target_height: int = 64, margin: int = 12):
        self.target_height = target_height
        self.margin = margin
        self.version = None

    def open(self) -> None:
        """Probe the Tesseract binary once; failures are logged, not raised."""
        try:
            self.version = pytesseract.get_tesseract_version()
            logger.info(f"Tesseract {self.version} ready for digit recognition")
        except (pytesseract.TesseractNotFoundError, OSError) as e:
            logger.warning(f"Tesseract is not available: {e}")

    def close(self) -> None:
        self.version = None

    def render(self, upright: np.ndarray) -> np.ndarray:
        h, w = upright.shape
        scale = self.target_height / float(h)
        new_w = max(1, int(round(w * scale)))
        image = np.where(upright, 0, 255).astype(np.uint8)
        image = cv2.resize(image, (new_w, self.target_height), interpolation=cv2.INTER_NEAREST)
        return cv2.copyMakeBorder(
            image, self.margin, self.margin, self.margin, self.margin,
            cv2.BORDER_CONSTANT, value=255,
        )

    def recognize(self, glyph: GlyphMask) -> int:
        upright = prepare_glyph(glyph)
        if upright is None:
            return UNRECOGNIZED_DIGIT

        try:
            text = pytesseract.image_to_string(self.render(upright), config=self.TESSERACT_CONFIG)
        except (pytesseract.TesseractError, pytesseract.TesseractNotFoundError, OSError) as e:
            logger.warning(f"Tesseract failed on {glyph.width}x{glyph.height} glyph: {e}")
            return UNRECOGNIZED_DIGIT

        digits = [ch for ch in text if ch.isdigit()]
        if not digits:
            logger.debug(f"Tesseract returned no digit (raw={text!r})")
            return UNRECOGNIZED_DIGIT
        return int(digits[0])


# =============================================================================
# Lifecycle
# =============================================================================

class RecognizerContext:
    """
    Explicit handle on a digit recognizer.

    The backend is created on first use from ``factory`` and torn down by
    ``close()``, which may be called any number of times. Usable as a
    context manager.
    """

    def __init__(self, factory: Callable[[], DigitRecognizer] = TesseractDigitRecognizer):
        self._factory = factory
        self._backend = None

    @property
    def is_open(self) -> bool:
        return self._backend is not None

    @property
    def backend(self) -> DigitRecognizer:
        if self._backend is None:
            backend = self._factory()
            opener = getattr(backend, "open", None)
            if callable(opener):
                opener()
            self._backend = backend
        return self._backend

    def recognize(self, glyph: GlyphMask) -> int:
        """Digit 0-9 from the backend, or UNRECOGNIZED_DIGIT."""
        digit = self.backend.recognize(glyph)
        if not isinstance(digit, (int, np.integer)) or not 0 <= digit <= 9:
            return UNRECOGNIZED_DIGIT
        return int(digit)

    def close(self) -> None:
        if self._backend is None:
            return
        closer = getattr(self._backend, "close", None)
        if callable(closer):
            closer()
        self._backend = None

    def __enter__(self) -> "RecognizerContext":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()
