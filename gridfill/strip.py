"""
Constraint strip parsing.

A strip is the cropped row- or column-constraint region. Each position
along the strip carries one requirement per color, drawn either as a
stack of short bars ("bar" mode) or as a digit ("number" mode). A faint
gray ring means "no requirement" and reads as 0.

Tall strips are rotated 90 degrees counter-clockwise first so every
later step works along the x axis. The rotation is passed explicitly to
every helper that depends on it.

Pipeline:
1. Detect strip colors (at most two are parsed)
2. Rotate tall strips
3. Decide bar vs number mode from component aspect ratios
4. Find zero rings with an adaptive local-contrast threshold
5. Bar mode: cluster bars and rings along x, count bars per cluster
6. Number mode: find digit glyphs and read them with the recognizer
"""

import logging
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np

from .color import HSVImage, to_rgb
from .components import (
    circularity,
    close_then_open,
    count_border_pixels,
    find_components,
    local_mean,
    save_debug_image,
)
from .config import ALL_COLORS, AMBIGUOUS_PAIR, HUE_SPLIT, UNRECOGNIZED_DIGIT, sort_colors
from .digits import DigitRecognizer, GlyphMask, correct_six, prepare_glyph
from .models import Component, ConstraintItem, ConstraintStripResult

logger = logging.getLogger(__name__)

# Color presence
MIN_COLOR_RATIO = 0.005
MAX_STRIP_COLORS = 2

# Orientation and mode
ROTATE_ASPECT = 1.5
MODE_MIN_AREA = 50
BAR_WIDE_ASPECT = 2.5
BAR_TALL_ASPECT = 0.35
BAR_MODE_FRACTION = 0.6

# Zero rings
ZERO_RADIUS = 15
ZERO_OFFSET = 4
ZERO_SAT_MAX = 60
ZERO_VAL_FLOOR = 30
ZERO_MIN_AREA = 100
ZERO_ASPECT_RANGE = (0.6, 1.5)
ZERO_MIN_SIZE_RATIO = 0.10
ZERO_CIRCULARITY_RANGE = (0.10, 0.90)
ZERO_MAX_COLOR_OVERLAP = 0.15


@dataclass(frozen=True)
class StripElement:
    """A bar, digit glyph or zero ring found on a strip."""
    component: Component
    kind: str  # "bar", "digit" or "zero"
    color: Optional[str] = None

    @property
    def cx(self) -> float:
        return self.component.cx


# =============================================================================
# Color, orientation and mode
# =============================================================================

def detect_colors(hsv: HSVImage) -> List[str]:
    """
    Colors covering more than MIN_COLOR_RATIO of the strip.

    When the GN and CY masks mostly overlap, the mean hue of their union
    keeps only one of them.
    """
    counts = {code: int(np.count_nonzero(hsv.mask(code))) for code in ALL_COLORS}

    low, high = AMBIGUOUS_PAIR
    if counts[low] > 0 and counts[high] > 0:
        overlap = int(np.count_nonzero(hsv.mask(low) & hsv.mask(high)))
        if overlap > min(counts[low], counts[high]) * 0.5:
            hues = hsv.ambiguous_hues()
            if hues.size > 0:
                mean_hue = float(hues.mean())
                if mean_hue >= HUE_SPLIT:
                    counts[low] = 0
                else:
                    counts[high] = 0
                logger.debug(f"GN/CY overlap resolved by mean hue {mean_hue:.1f}")

    detected = [code for code in ALL_COLORS if counts[code] / hsv.area > MIN_COLOR_RATIO]
    return sort_colors(detected)


def should_rotate(width: int, height: int) -> bool:
    return height > width * ROTATE_ASPECT


def detect_display_mode(hsv: HSVImage, colors: Sequence[str]) -> str:
    """'bar' if most sizeable color components are elongated, else 'number'."""
    if not colors:
        return "number"

    total = 0
    elongated = 0
    for comp in find_components(hsv.combined_mask(colors)):
        if comp.area < MODE_MIN_AREA:
            continue
        total += 1
        if comp.aspect > BAR_WIDE_ASPECT or comp.aspect < BAR_TALL_ASPECT:
            elongated += 1

    return "bar" if total > 0 and elongated > total * BAR_MODE_FRACTION else "number"


# =============================================================================
# Zero rings
# =============================================================================

def zero_candidate_mask(hsv: HSVImage) -> np.ndarray:
    """
    Low-saturation pixels brighter than their local neighborhood.

    The ring is barely brighter than the background, so a fixed V
    threshold misses it; each pixel is compared with the mean of its
    (2 * ZERO_RADIUS + 1)^2 window instead.
    """
    mean = local_mean(hsv.v, ZERO_RADIUS)
    candidates = (
        (hsv.s <= ZERO_SAT_MAX)
        & (hsv.v >= ZERO_VAL_FLOOR)
        & (hsv.v > mean + ZERO_OFFSET)
    )
    return close_then_open(candidates)


def is_zero_symbol(
    mask: np.ndarray,
    comp: Component,
    strip_height: int,
    color_mask: Optional[np.ndarray] = None,
) -> bool:
    """Shape test for one candidate ring component."""
    if comp.area < ZERO_MIN_AREA:
        return False
    lo, hi = ZERO_ASPECT_RANGE
    if comp.aspect < lo or comp.aspect > hi:
        return False
    if max(comp.w, comp.h) < strip_height * ZERO_MIN_SIZE_RATIO:
        return False

    perimeter = count_border_pixels(mask, comp.box)
    if perimeter > 0:
        circ = circularity(comp.area, perimeter)
        lo, hi = ZERO_CIRCULARITY_RANGE
        if circ < lo or circ > hi:
            return False

    if color_mask is not None:
        x1, y1, x2, y2 = comp.box
        overlap = np.count_nonzero(color_mask[y1:y2, x1:x2])
        if overlap / float(comp.w * comp.h) > ZERO_MAX_COLOR_OVERLAP:
            return False
    return True


def detect_zero_symbols(hsv: HSVImage) -> List[StripElement]:
    mask = zero_candidate_mask(hsv)
    save_debug_image("strip_zero_mask.png", mask)

    color_mask = hsv.combined_mask(ALL_COLORS)
    components = find_components(mask)
    zeros = [
        StripElement(comp, "zero")
        for comp in components
        if is_zero_symbol(mask, comp, hsv.height, color_mask)
    ]
    logger.debug(
        f"Zero detection: {hsv.width}x{hsv.height}, candidates={int(np.count_nonzero(mask))}, "
        f"components={len(components)}, zeros={len(zeros)}"
    )
    return zeros


# =============================================================================
# Clustering
# =============================================================================

def cluster_by_x(
    elements: Sequence,
    real_gap: float = 5,
    split_ratio: float = 1.3,
    fallback_factor: float = 0.8,
    key=lambda e: e.cx,
) -> List[list]:
    """
    Split elements into groups along one axis.

    Gaps larger than ``real_gap`` are "real". If the largest real gap
    exceeds ``split_ratio`` times the smallest, the threshold is their
    midpoint; otherwise it is ``fallback_factor`` times the smallest.
    Neighbors further apart than the threshold start a new group.
    """
    if not elements:
        return []
    ordered = sorted(elements, key=key)
    if len(ordered) == 1:
        return [ordered]

    positions = [key(e) for e in ordered]
    gaps = [b - a for a, b in zip(positions, positions[1:])]
    real = sorted(g for g in gaps if g > real_gap)
    if not real:
        return [ordered]

    min_gap, max_gap = real[0], real[-1]
    if max_gap > min_gap * split_ratio:
        threshold = (min_gap + max_gap) / 2
    else:
        threshold = min_gap * fallback_factor
    logger.debug(f"Clustering {len(ordered)} elements: gaps {min_gap:.1f}..{max_gap:.1f}, threshold {threshold:.1f}")

    groups = [[ordered[0]]]
    for prev, cur, gap in zip(ordered, ordered[1:], gaps):
        if gap > threshold:
            groups.append([])
        groups[-1].append(cur)
    return groups


# =============================================================================
# Bar mode
# =============================================================================

def is_valid_bar(comp: Component, img_w: int, img_h: int) -> bool:
    if comp.area < MODE_MIN_AREA:
        return False
    aspect = comp.aspect
    if 0.8 <= aspect <= 1.2:
        return False
    # Long thin shapes spanning the frame are borders, not bars
    if aspect > 15 and comp.w > img_w * 0.15:
        return False
    if aspect < 0.07 and comp.h > img_h * 0.15:
        return False
    return True


def extract_bars(hsv: HSVImage, colors: Sequence[str]) -> List[StripElement]:
    bars = []
    for color in colors:
        for comp in find_components(hsv.mask(color)):
            if is_valid_bar(comp, hsv.width, hsv.height):
                bars.append(StripElement(comp, "bar", color))
    return bars


def parse_bars(hsv: HSVImage, colors: Sequence[str], rotated: bool) -> List[Dict[str, int]]:
    bars = extract_bars(hsv, colors)
    zeros = detect_zero_symbols(hsv)
    logger.debug(f"Bar mode: {len(bars)} bars, {len(zeros)} zeros, colors={list(colors)}, rotated={rotated}")

    groups = cluster_by_x(bars + zeros)
    values = []
    for group in groups:
        has_zero = any(e.kind == "zero" for e in group)
        values.append({
            color: 0 if has_zero else sum(1 for e in group if e.kind == "bar" and e.color == color)
            for color in colors
        })
    return values


# =============================================================================
# Number mode
# =============================================================================

def in_digit_half(comp: Component, height: int, rotated: bool, low: float = 0.5, high: float = 0.5) -> bool:
    """
    Digits sit in the bottom half of an upright strip and in the top
    half of a rotated one.
    """
    if rotated:
        return comp.cy <= height * high
    return comp.cy >= height * low


def find_single_digits(hsv: HSVImage, mask: np.ndarray, rotated: bool) -> List[Component]:
    min_height = hsv.height * 0.15
    digits = []
    for comp in find_components(mask):
        if comp.area < 100:
            continue
        max_dim = max(comp.w, comp.h)
        if max_dim / min(comp.w, comp.h) > 3.0 or max_dim < min_height:
            continue
        # Short shapes hugging the top edge are frame decoration
        if comp.y < hsv.height * 0.05 and comp.h < hsv.height * 0.5:
            continue
        if not in_digit_half(comp, hsv.height, rotated):
            continue
        digits.append(comp)
    return digits


def extract_digits_single(hsv: HSVImage, color: str, rotated: bool) -> Tuple[List[Component], np.ndarray]:
    """Strict mask first; the relaxed mask only if the strict one finds nothing."""
    mask = hsv.mask(color)
    digits = find_single_digits(hsv, mask, rotated)
    if not digits:
        mask = hsv.mask(color, relaxed=True)
        digits = find_single_digits(hsv, mask, rotated)
        logger.debug(f"Strict {color} mask found no digits; relaxed mask found {len(digits)}")
    return digits, mask


def _dual_candidates(hsv: HSVImage, mask: np.ndarray, rotated: bool) -> List[Component]:
    size_base = max(hsv.width, hsv.height)
    min_size = size_base * 0.03
    max_size = size_base * 0.4
    out = []
    for comp in find_components(mask):
        if comp.area < 100:
            continue
        if not in_digit_half(comp, hsv.height, rotated, low=0.45, high=0.55):
            continue
        size = max(comp.w, comp.h)
        if min_size < size < max_size and comp.area > 200:
            out.append(comp)
    return out


def extract_digits_dual(
    hsv: HSVImage, colors: Sequence[str], rotated: bool
) -> Tuple[List[StripElement], Dict[str, np.ndarray]]:
    """Per color, keep whichever of the strict/relaxed masks yields more glyphs."""
    digits = []
    masks = {}
    for color in colors[:MAX_STRIP_COLORS]:
        strict = hsv.mask(color)
        relaxed = hsv.mask(color, relaxed=True)
        strict_found = _dual_candidates(hsv, strict, rotated)
        relaxed_found = _dual_candidates(hsv, relaxed, rotated)
        if len(relaxed_found) > len(strict_found):
            masks[color], found = relaxed, relaxed_found
        else:
            masks[color], found = strict, strict_found
        digits.extend(StripElement(comp, "digit", color) for comp in found)
    return digits, masks


def read_digit(recognizer: Optional[DigitRecognizer], mask: np.ndarray, comp: Component, rotated: bool) -> int:
    """Recognize one glyph; failures and a missing recognizer read as 0."""
    if recognizer is None:
        logger.warning("No digit recognizer supplied; numeric constraint read as 0")
        return 0
    x1, y1, x2, y2 = comp.box
    glyph = GlyphMask(mask[y1:y2, x1:x2].copy(), rotated)
    digit = recognizer.recognize(glyph)
    if digit == UNRECOGNIZED_DIGIT:
        logger.debug(f"Glyph at x={comp.x} not recognized; using 0")
        return 0
    if digit == 6:
        upright = prepare_glyph(glyph)
        if upright is not None:
            digit = correct_six(upright, digit)
    return digit


def parse_numbers_single(
    hsv: HSVImage, color: str, rotated: bool, recognizer: Optional[DigitRecognizer]
) -> List[Dict[str, int]]:
    zeros = detect_zero_symbols(hsv)
    digits, mask = extract_digits_single(hsv, color, rotated)
    elements = [StripElement(comp, "digit", color) for comp in digits] + zeros
    elements.sort(key=lambda e: e.cx)
    logger.debug(f"Number mode (single {color}): {len(digits)} digits, {len(zeros)} zeros")

    # Glyphs are read strictly left to right
    values = []
    for elem in elements:
        if elem.kind == "zero":
            values.append({color: 0})
        else:
            values.append({color: read_digit(recognizer, mask, elem.component, rotated)})
    return values


def _dual_group_value(
    group, color: str, masks: Dict[str, np.ndarray], rotated: bool, recognizer: Optional[DigitRecognizer]
) -> int:
    of_color = [e for e in group if e.color == color]
    if not of_color or any(e.kind == "zero" for e in of_color):
        return 0
    if len(of_color) > 1:
        # Drop decoration artifacts (check marks) next to the digit
        max_area = max(e.component.area for e in of_color)
        of_color = [e for e in of_color if e.component.area > max_area * 0.5]
    main = max(of_color, key=lambda e: e.component.area)
    return read_digit(recognizer, masks[color], main.component, rotated)


def parse_numbers_dual(
    hsv: HSVImage, colors: Sequence[str], rotated: bool, recognizer: Optional[DigitRecognizer]
) -> List[Dict[str, int]]:
    zeros = detect_zero_symbols(hsv)
    digits, masks = extract_digits_dual(hsv, colors, rotated)
    # Rings carry no color; attribute them to the first strip color
    elements = digits + [StripElement(z.component, "zero", colors[0]) for z in zeros]
    logger.debug(f"Number mode (dual {list(colors)}): {len(digits)} digits, {len(zeros)} zeros")

    groups = cluster_by_x(elements, real_gap=10, split_ratio=1.15, fallback_factor=0.5)
    return [
        {color: _dual_group_value(group, color, masks, rotated, recognizer) for color in colors}
        for group in groups
    ]


# =============================================================================
# Entry point
# =============================================================================

def parse_constraint_strip(image: np.ndarray, recognizer: Optional[DigitRecognizer] = None) -> ConstraintStripResult:
    """
    Parse a cropped constraint strip.

    Args:
        image: RGBA or RGB uint8 array of the strip
        recognizer: Object with ``recognize(GlyphMask) -> int``, usually a
            digits.RecognizerContext; only used in number mode

    Returns:
        ConstraintStripResult; empty when no strip color is present
    """
    rgb = to_rgb(image)
    if rgb is None:
        return ConstraintStripResult()

    height, width = rgb.shape[:2]
    rotated = should_rotate(width, height)
    if rotated:
        rgb = np.ascontiguousarray(np.rot90(rgb, k=1))

    hsv = HSVImage(rgb)
    detected = detect_colors(hsv)
    if not detected:
        logger.info("No constraint colors found on strip")
        return ConstraintStripResult()

    is_dual = len(detected) >= MAX_STRIP_COLORS
    colors = detected[:MAX_STRIP_COLORS] if is_dual else detected[:1]
    mode = detect_display_mode(hsv, detected)

    if mode == "bar":
        values = parse_bars(hsv, colors, rotated)
    elif is_dual:
        values = parse_numbers_dual(hsv, colors, rotated, recognizer)
    else:
        values = parse_numbers_single(hsv, colors[0], rotated, recognizer)

    items = [
        ConstraintItem(index=index, color=color, value=per_color[color])
        for index, per_color in enumerate(values)
        for color in colors
    ]
    logger.info(
        f"Strip parsed: mode={mode}, dual={is_dual}, colors={colors}, positions={len(values)}, rotated={rotated}"
    )
    return ConstraintStripResult(items=items, mode=mode, is_dual_color=is_dual, colors=list(colors))
