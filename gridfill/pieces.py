"""
Piece panel parsing.

The panel shows the pieces the player must place. Two layouts occur:
pieces stacked vertically on a white background with white separator
rows, or pieces scattered over a dark background where one piece may
render as several disconnected blocks. Each piece is reduced to its
dominant color and a small occupancy grid.
"""

import logging
from typing import Dict, List, Optional, Tuple

import numpy as np

from .color import HSVImage, to_rgb
from .components import bounding_box, find_components
from .config import ALL_COLORS, DEFAULT_SHAPE_SCORING, ShapeScoring
from .disjoint_set import DisjointSet
from .models import Box, Coord, Piece

logger = logging.getLogger(__name__)

WHITE_LEVEL = 250
MIN_PIECE_AREA = 200
MIN_PIECE_AREA_RATIO = 0.002
MIN_PIECE_DIM = 20
MERGE_Y_OVERLAP = 0.5
MERGE_X_GAP = 0.8


# =============================================================================
# Layout strategies
# =============================================================================

def white_rows(rgb: np.ndarray) -> np.ndarray:
    """True for rows where every pixel is white on all channels."""
    return (rgb >= WHITE_LEVEL).all(axis=2).all(axis=1)


def find_segments(flags: np.ndarray) -> List[Tuple[int, int]]:
    """Half-open [start, end) runs of True values."""
    segments = []
    start = None
    for i, flag in enumerate(flags):
        if flag and start is None:
            start = i
        elif not flag and start is not None:
            segments.append((start, i))
            start = None
    if start is not None:
        segments.append((start, len(flags)))
    return segments


def trim_white(rgb: np.ndarray) -> np.ndarray:
    box = bounding_box(~(rgb >= WHITE_LEVEL).all(axis=2))
    if box is None:
        return rgb
    x1, y1, x2, y2 = box
    return rgb[y1:y2, x1:x2]


def split_stack(rgb: np.ndarray) -> List[np.ndarray]:
    """
    Split a white-background panel at fully white rows.

    Returns:
        One trimmed sub-image per piece, or [] when fewer than two
        segments are found.
    """
    segments = find_segments(~white_rows(rgb))
    if len(segments) <= 1:
        return []

    pieces = []
    for y0, y1 in segments:
        trimmed = trim_white(rgb[y0:y1])
        if trimmed.size > 0:
            pieces.append(trimmed)
    return pieces


def merge_boxes(boxes: List[Box]) -> List[Box]:
    """
    Merge boxes that sit side by side on the same row.

    Two boxes join when their vertical overlap exceeds half the shorter
    height and their horizontal gap is under 0.8x the average width.
    Merged boxes are returned top to bottom.
    """
    if not boxes:
        return []

    avg_w = sum(x2 - x1 for x1, _, x2, _ in boxes) / len(boxes)
    groups = DisjointSet()
    for i in range(len(boxes)):
        groups.make_set(i)

    for i, (ax1, ay1, ax2, ay2) in enumerate(boxes):
        for j in range(i + 1, len(boxes)):
            bx1, by1, bx2, by2 = boxes[j]
            y_overlap = max(0, min(ay2, by2) - max(ay1, by1))
            x_gap = max(0, max(ax1, bx1) - min(ax2, bx2))
            if y_overlap > MERGE_Y_OVERLAP * min(ay2 - ay1, by2 - by1) and x_gap < avg_w * MERGE_X_GAP:
                groups.union(i, j)

    merged = []
    for members in groups.groups():
        group = [boxes[i] for i in members]
        merged.append((
            min(b[0] for b in group),
            min(b[1] for b in group),
            max(b[2] for b in group),
            max(b[3] for b in group),
        ))
    merged.sort(key=lambda b: b[1])
    return merged


# =============================================================================
# Shape discretization
# =============================================================================

def has_interior_hole(coords: List[Coord]) -> bool:
    """True if some empty cell has filled cells on all four sides along its row and column."""
    if len(coords) < 4:
        return False
    filled = set(coords)
    xs = [x for x, _ in coords]
    ys = [y for _, y in coords]
    min_x, max_x, min_y, max_y = min(xs), max(xs), min(ys), max(ys)

    for y in range(min_y, max_y + 1):
        for x in range(min_x, max_x + 1):
            if (x, y) in filled:
                continue
            if (
                any((lx, y) in filled for lx in range(min_x, x))
                and any((rx, y) in filled for rx in range(x + 1, max_x + 1))
                and any((x, ty) in filled for ty in range(min_y, y))
                and any((x, by) in filled for by in range(y + 1, max_y + 1))
            ):
                return True
    return False


def evaluate_grid(
    mask: np.ndarray, nx: int, ny: int, scoring: ShapeScoring = DEFAULT_SHAPE_SCORING
) -> Tuple[float, List[Coord], Dict[Coord, float]]:
    """
    Score an nx by ny subdivision of a piece mask.

    Returns:
        Tuple of (score, occupied coords, fill fraction per occupied coord)
    """
    h, w = mask.shape
    coords: List[Coord] = []
    fracs: Dict[Coord, float] = {}
    clear = 0

    for r in range(ny):
        for c in range(nx):
            x0, x1 = (c * w) // nx, ((c + 1) * w) // nx
            y0, y1 = (r * h) // ny, ((r + 1) * h) // ny
            cell = mask[y0:y1, x0:x1]
            if cell.size == 0:
                continue
            frac = float(np.count_nonzero(cell)) / cell.size
            if frac > scoring.occupied_threshold:
                coords.append((c, r))
                fracs[(c, r)] = frac
            if frac > scoring.clear_high or frac < scoring.clear_low:
                clear += 1

    if not coords:
        return 0.0, [], fracs

    total = nx * ny
    clarity = clear / max(1, total)

    fill = len(coords) / total
    if 0.3 <= fill <= 0.7:
        fill_bonus = 0.3
    elif 0.2 <= fill <= 0.8:
        fill_bonus = 0.15
    else:
        fill_bonus = 0.0

    hole_bonus = 0.0
    if has_interior_hole(coords):
        if nx >= 3 and len(coords) >= 4:
            hole_bonus = 0.15
        if nx >= 4 and len(coords) >= 6:
            hole_bonus = 0.25

    cell_aspect = (w / nx) / (h / ny)
    squareness = 1 - min(abs(cell_aspect - 1), 1) * 0.3

    # A solid block fits any subdivision; prefer the coarsest one
    solid = len(coords) == total and all(f >= scoring.solid_threshold for f in fracs.values())
    parsimony = -scoring.parsimony_penalty * len(coords) if solid else 0.0

    return clarity + fill_bonus + hole_bonus + squareness + parsimony, coords, fracs


def normalize_coords(coords: List[Coord]) -> List[Coord]:
    if not coords:
        return []
    min_x = min(x for x, _ in coords)
    min_y = min(y for _, y in coords)
    return sorted(((x - min_x, y - min_y) for x, y in coords), key=lambda p: (p[1], p[0]))


def discretize_shape(mask: np.ndarray, scoring: ShapeScoring = DEFAULT_SHAPE_SCORING) -> List[Coord]:
    """
    Fit the best occupancy grid of up to 5x5 cells to a piece mask.

    Returns:
        Normalized (x, y) cell coordinates in row-major order
    """
    h, w = mask.shape
    if w == 0 or h == 0 or not mask.any():
        return []

    aspect = w / h
    min_ny = 1 if aspect > 2.0 else 2
    min_nx = 1 if aspect < 0.5 else 2
    limit = scoring.max_cells_per_axis

    best_score = -1.0
    best_coords: List[Coord] = []
    best_fracs: Dict[Coord, float] = {}
    for ny in range(min_ny, limit + 1):
        for nx in range(min_nx, limit + 1):
            grid_aspect = nx / ny
            if aspect > 1.5 and grid_aspect < 0.8:
                continue
            if aspect < 0.67 and grid_aspect > 1.25:
                continue
            score, coords, fracs = evaluate_grid(mask, nx, ny, scoring)
            if score > best_score:
                best_score, best_coords, best_fracs = score, coords, fracs

    # Drop weak edge cells left by bounding-box bleed
    if len(best_coords) > 1:
        ordered = sorted((best_fracs[c] for c in best_coords), reverse=True)
        median = ordered[len(ordered) // 2]
        min_frac = max(scoring.min_keep_fraction, median * scoring.median_keep_ratio)
        kept = [c for c in best_coords if best_fracs[c] >= min_frac]
        if kept:
            best_coords = kept

    return normalize_coords(best_coords)


# =============================================================================
# Entry point
# =============================================================================

def _piece_from_region(
    hsv: HSVImage, mask: np.ndarray, box: Box, index: int, scoring: ShapeScoring
) -> Optional[Piece]:
    x1, y1, x2, y2 = box
    roi_mask = mask[y1:y2, x1:x2]
    region = np.zeros(mask.shape, dtype=bool)
    region[y1:y2, x1:x2] = roi_mask

    color = hsv.dominant(region)
    coords = discretize_shape(roi_mask, scoring)
    if color is None or not coords:
        return None
    logger.debug(f"Piece {index}: color={color}, box={box}, cells={len(coords)}")
    return Piece.from_coords(f"piece-{index}", color, coords)


def parse_single(rgb: np.ndarray, index: int = 0, scoring: ShapeScoring = DEFAULT_SHAPE_SCORING) -> Optional[Piece]:
    hsv = HSVImage(rgb)
    mask = hsv.combined_mask(ALL_COLORS)
    box = bounding_box(mask)
    if box is None:
        return None
    return _piece_from_region(hsv, mask, box, index, scoring)


def parse_multi(rgb: np.ndarray, scoring: ShapeScoring = DEFAULT_SHAPE_SCORING) -> List[Piece]:
    hsv = HSVImage(rgb)
    mask = hsv.combined_mask(ALL_COLORS)
    min_area = max(MIN_PIECE_AREA, int(hsv.area * MIN_PIECE_AREA_RATIO))

    boxes = [
        comp.box for comp in find_components(mask)
        if comp.area >= min_area and comp.w >= MIN_PIECE_DIM and comp.h >= MIN_PIECE_DIM
    ]
    merged = merge_boxes(boxes)
    logger.debug(f"Piece panel: {len(boxes)} blocks merged into {len(merged)} pieces")

    pieces = []
    for box in merged:
        piece = _piece_from_region(hsv, mask, box, len(pieces), scoring)
        if piece is not None:
            pieces.append(piece)
    return pieces


def parse_pieces(image: np.ndarray, scoring: ShapeScoring = DEFAULT_SHAPE_SCORING) -> List[Piece]:
    """
    Parse a piece panel into pieces ordered top to bottom.

    Args:
        image: RGBA or RGB uint8 array of the panel
        scoring: Discretization tunables

    Returns:
        List of Piece with ids piece-0, piece-1, ...; empty when no
        colored shape is found
    """
    rgb = to_rgb(image)
    if rgb is None:
        return []

    stacks = split_stack(rgb)
    if stacks:
        pieces = []
        for sub in stacks:
            piece = parse_single(sub, len(pieces), scoring)
            if piece is not None:
                pieces.append(piece)
        logger.info(f"Parsed {len(pieces)} pieces from {len(stacks)} stacked segments")
        return pieces

    pieces = parse_multi(rgb, scoring)
    logger.info(f"Parsed {len(pieces)} pieces from component merge")
    return pieces
