"""
Grid map parsing.

Turns the detector's grid box and per-cell detections into an R x C
matrix of cell codes. The grid size is inferred from how the detection
centers are laid out; cells the detector missed are classified from
their pixels.
"""

import logging
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np

from .color import HSVImage, to_rgb
from .config import BLOCKED, CELL_OBSTACLE_LABEL, CELL_OCCUPIED_LABEL, EMPTY
from .models import Box, CellDetection, CellInfo, GridMapResult, box_is_usable

logger = logging.getLogger(__name__)

MIN_GRID_SIZE = 3
MAX_GRID_SIZE = 9
SIZE_TOLERANCE = 0.15
MIN_SIZE_TOLERANCE = 2
MIN_LATTICE_COVERAGE = 0.7
MIN_SPACING_CELLS = 4
MIN_SPACING_GAP = 5

DETECTION_OVERRIDE_CONFIDENCE = 0.5
CELL_COLOR_RATIO = 0.15
CELL_BLOCKED_RATIO = 0.3
GRAY_MAX_SAT = 15
GRAY_VAL_RANGE = (40, 100)


# =============================================================================
# Size estimation
# =============================================================================

def relative_centers(detections: Sequence[CellDetection], grid_box: Box) -> List[Tuple[float, float]]:
    """Detection centers inside the grid box, relative to its top-left corner."""
    x1, y1, x2, y2 = grid_box
    centers = []
    for det in detections:
        cx, cy = det.center
        if x1 <= cx <= x2 and y1 <= cy <= y2:
            centers.append((cx - x1, cy - y1))
    return centers


def cell_index(offset: float, cell_size: float, count: int) -> int:
    return min(int(offset // cell_size), count - 1)


def lattice_coverage(centers: Sequence[Tuple[float, float]], grid_w: float, grid_h: float, rows: int, cols: int) -> float:
    """Fraction of the rows x cols cells hit by at least one center."""
    cell_w = grid_w / cols
    cell_h = grid_h / rows
    hit = {(cell_index(cy, cell_h, rows), cell_index(cx, cell_w, cols)) for cx, cy in centers}
    return len(hit) / float(rows * cols)


def _real_gaps(values: Sequence[float]) -> List[float]:
    ordered = sorted(values)
    return [b - a for a, b in zip(ordered, ordered[1:]) if b - a > MIN_SPACING_GAP]


def estimate_from_spacing(centers: Sequence[Tuple[float, float]], grid_w: float, grid_h: float) -> Tuple[int, int]:
    """Grid size from the median spacing between center columns and rows."""
    if len(centers) < MIN_SPACING_CELLS:
        return 0, 0

    dx = sorted(_real_gaps([cx for cx, _ in centers]))
    dy = sorted(_real_gaps([cy for _, cy in centers]))
    if not dx or not dy:
        side = int(round(np.sqrt(len(centers))))
        return side, side

    med_dx = dx[len(dx) // 2]
    med_dy = dy[len(dy) // 2]
    cols = max(MIN_GRID_SIZE, min(MAX_GRID_SIZE, int(round(grid_w / med_dx))))
    rows = max(MIN_GRID_SIZE, min(MAX_GRID_SIZE, int(round(grid_h / med_dy))))
    return rows, cols


def estimate_grid_size(detections: Sequence[CellDetection], grid_box: Box) -> Tuple[int, int]:
    """
    Infer (rows, cols) from detection centers.

    Square sizes 3..9 are tried first: a size is accepted when the
    detection count is close to size^2 and the centers cover most of the
    size x size lattice. Otherwise the median center spacing decides.
    """
    x1, y1, x2, y2 = grid_box
    grid_w, grid_h = x2 - x1, y2 - y1
    centers = relative_centers(detections, grid_box)
    if not centers:
        return 0, 0

    n = len(centers)
    for size in range(MIN_GRID_SIZE, MAX_GRID_SIZE + 1):
        expected = size * size
        tolerance = max(MIN_SIZE_TOLERANCE, expected * SIZE_TOLERANCE)
        if abs(n - expected) <= tolerance:
            if lattice_coverage(centers, grid_w, grid_h, size, size) >= MIN_LATTICE_COVERAGE:
                logger.debug(f"Grid size {size}x{size} matched {n} detections")
                return size, size

    rows, cols = estimate_from_spacing(centers, grid_w, grid_h)
    logger.debug(f"Grid size {rows}x{cols} estimated from spacing of {n} detections")
    return rows, cols


# =============================================================================
# Cell classification
# =============================================================================

def _clip_region(hsv: HSVImage, box: Box) -> Optional[np.ndarray]:
    x1, y1, x2, y2 = box
    x1, x2 = max(0, x1), min(hsv.width, x2)
    y1, y2 = max(0, y1), min(hsv.height, y2)
    if x2 <= x1 or y2 <= y1:
        return None
    region = np.zeros((hsv.height, hsv.width), dtype=bool)
    region[y1:y2, x1:x2] = True
    return region


def detection_color(hsv: HSVImage, box: Box) -> Optional[str]:
    """Dominant color inside an occupied cell's detection box."""
    region = _clip_region(hsv, box)
    if region is None:
        return None
    return hsv.dominant(region)


def classify_cell_pixels(hsv: HSVImage, box: Box) -> str:
    """
    Classify a cell rectangle the detector did not report.

    A color wins when it covers more than 15% of the rectangle; otherwise
    gray obstacle pixels or a dull mid-dark average mark it blocked.
    """
    x1, y1, x2, y2 = box
    n_pixels = (x2 - x1) * (y2 - y1)
    region = _clip_region(hsv, box)
    if n_pixels <= 0 or region is None:
        return EMPTY

    counts = hsv.color_counts(region)
    best = max(counts, key=counts.get)
    if counts[best] > n_pixels * CELL_COLOR_RATIO:
        return hsv.dominant(region)

    blocked = int(np.count_nonzero(hsv.blocked_mask() & region))
    if blocked / n_pixels > CELL_BLOCKED_RATIO:
        return BLOCKED

    mean_s = float(hsv.s[region].mean())
    mean_v = float(hsv.v[region].mean())
    lo, hi = GRAY_VAL_RANGE
    if mean_s < GRAY_MAX_SAT and lo < mean_v < hi:
        return BLOCKED
    return EMPTY


def build_cell_map(
    hsv: HSVImage,
    detections: Sequence[CellDetection],
    grid_box: Box,
    rows: int,
    cols: int,
) -> Dict[Tuple[int, int], CellInfo]:
    x1, y1, x2, y2 = grid_box
    cell_w = (x2 - x1) / cols
    cell_h = (y2 - y1) / rows
    cells: Dict[Tuple[int, int], CellInfo] = {}

    # Phase 1: detector labels
    for det in detections:
        cx, cy = det.center
        if cx < x1 or cx > x2 or cy < y1 or cy > y2:
            continue
        col = cell_index(cx - x1, cell_w, cols)
        row = cell_index(cy - y1, cell_h, rows)

        if det.label == CELL_OCCUPIED_LABEL:
            code = detection_color(hsv, det.box)
            if code is None:
                logger.debug(f"Occupied detection at ({row},{col}) has no colored pixels")
                continue
        elif det.label == CELL_OBSTACLE_LABEL:
            code = BLOCKED
        else:
            code = EMPTY

        # Later confident detections replace earlier ones
        if (row, col) not in cells or det.confidence > DETECTION_OVERRIDE_CONFIDENCE:
            cells[(row, col)] = CellInfo(row, col, code, "detector")

    # Phase 2: pixel analysis for cells without a detection
    for r in range(rows):
        for c in range(cols):
            if (r, c) in cells:
                continue
            rx1 = int(np.floor(x1 + c * cell_w))
            ry1 = int(np.floor(y1 + r * cell_h))
            rect = (rx1, ry1, int(np.floor(rx1 + cell_w)), int(np.floor(ry1 + cell_h)))
            cells[(r, c)] = CellInfo(r, c, classify_cell_pixels(hsv, rect), "pixels")

    return cells


# =============================================================================
# Entry point
# =============================================================================

def parse_grid(
    image: np.ndarray,
    grid_box: Optional[Box],
    cell_detections: Sequence[CellDetection],
) -> GridMapResult:
    """
    Build the grid's cell-code matrix.

    Args:
        image: RGBA or RGB uint8 array of the full screenshot
        grid_box: Grid bounding box from the detector, or None
        cell_detections: Detector cell boxes in screenshot coordinates

    Returns:
        GridMapResult; zero-sized when the box is unusable or no
        detection falls inside it
    """
    if not box_is_usable(grid_box):
        logger.warning(f"Unusable grid box: {grid_box}")
        return GridMapResult()
    grid_box = tuple(int(round(v)) for v in grid_box)

    rows, cols = estimate_grid_size(cell_detections, grid_box)
    if rows == 0 or cols == 0:
        logger.warning("Could not estimate grid size from cell detections")
        return GridMapResult(grid_box=grid_box)

    rgb = to_rgb(image)
    if rgb is None:
        return GridMapResult(grid_box=grid_box)

    cells = build_cell_map(HSVImage(rgb), cell_detections, grid_box, rows, cols)
    grid = [[EMPTY] * cols for _ in range(rows)]
    for info in cells.values():
        grid[info.row][info.col] = info.code

    n_detected = sum(1 for info in cells.values() if info.source == "detector")
    logger.info(f"Grid map {rows}x{cols}: {n_detected} cells from detections, {len(cells) - n_detected} from pixels")
    return GridMapResult(num_row=rows, num_col=cols, map=grid, grid_box=grid_box, cells=list(cells.values()))
