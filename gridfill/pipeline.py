"""
Screenshot to puzzle assembly.

Runs the region detector, then every analyzer on its region, and
collects the results into PuzzleMetadata. metadata_to_puzzle_spec turns
that into the solver's input.
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Protocol, Sequence, Tuple

import numpy as np

from .config import BLOCKED, EMPTY, sort_colors
from .digits import DigitRecognizer, RecognizerContext
from .grid_map import parse_grid
from .models import (
    BLOCKED_CELL,
    EMPTY_CELL,
    Box,
    CellDetection,
    ConstraintItem,
    Piece,
    PuzzleSpec,
    box_is_usable,
)
from .pieces import parse_pieces
from .strip import parse_constraint_strip

logger = logging.getLogger(__name__)


@dataclass
class RegionBoxes:
    """Named regions proposed by the detector; any may be missing."""
    grid_bbox: Optional[Box] = None
    row_constraint_strip: Optional[Box] = None
    col_constraint_strip: Optional[Box] = None
    piece_panel_bbox: Optional[Box] = None


@dataclass
class DetectionResult:
    rois: RegionBoxes = field(default_factory=RegionBoxes)
    cells: List[CellDetection] = field(default_factory=list)


class RegionDetector(Protocol):
    def detect(self, image: np.ndarray) -> DetectionResult:
        ...


@dataclass
class PuzzleMetadata:
    """
    Everything read from one screenshot.

    Attributes:
        num_row, num_col: Grid dimensions (0 when no grid was found)
        colors: Puzzle colors in canonical order
        map: Cell codes, row-major
        row_constraints, col_constraints: One item per (index, color)
        puzzles: Pieces as (color, shape rows of "X"/"O")
    """
    num_row: int = 0
    num_col: int = 0
    colors: List[str] = field(default_factory=list)
    map: List[List[str]] = field(default_factory=list)
    row_constraints: List[ConstraintItem] = field(default_factory=list)
    col_constraints: List[ConstraintItem] = field(default_factory=list)
    puzzles: List[Tuple[str, List[str]]] = field(default_factory=list)

    def to_dict(self) -> Dict:
        return {
            "num_row": self.num_row,
            "num_col": self.num_col,
            "colors": list(self.colors),
            "map": [list(row) for row in self.map],
            "row_constraints": [
                {"index": c.index, "color": c.color, "value": c.value} for c in self.row_constraints
            ],
            "col_constraints": [
                {"index": c.index, "color": c.color, "value": c.value} for c in self.col_constraints
            ],
            "puzzles": [{"color": color, "shape": list(shape)} for color, shape in self.puzzles],
        }


def crop(image: np.ndarray, box: Optional[Box]) -> Optional[np.ndarray]:
    """
    Copy of the image inside ``box``, clamped to the image bounds.

    Returns None for a missing box or one with no overlap.
    """
    if not box_is_usable(box):
        return None
    height, width = image.shape[:2]
    x1, y1, x2, y2 = (int(round(v)) for v in box)
    x1, x2 = max(0, x1), min(width, x2)
    y1, y2 = max(0, y1), min(height, y2)
    if x2 <= x1 or y2 <= y1:
        return None
    return image[y1:y2, x1:x2].copy()


def normalize_constraints(
    items: Sequence[ConstraintItem], colors: Sequence[str], count: int
) -> List[ConstraintItem]:
    """Truncate to ``count`` positions and pad missing trailing positions with zeros."""
    kept = [item for item in items if item.index < count]
    found = len({item.index for item in kept})
    if found < count and colors:
        for index in range(found, count):
            kept.extend(ConstraintItem(index, color, 0) for color in colors)
    return kept


def parse_constraints(
    image: np.ndarray, box: Optional[Box], count: int, recognizer: Optional[DigitRecognizer]
) -> Tuple[List[ConstraintItem], List[str]]:
    if box is None or count == 0:
        return [], []
    strip = crop(image, box)
    if strip is None:
        logger.warning(f"Constraint strip box {box} lies outside the image")
        return [], []
    result = parse_constraint_strip(strip, recognizer)
    return normalize_constraints(result.items, result.colors, count), list(result.colors)


def map_colors(grid: Sequence[Sequence[str]]) -> List[str]:
    return sort_colors(code for row in grid for code in row if code not in (EMPTY, BLOCKED))


def process_image(
    image: np.ndarray,
    detector: RegionDetector,
    recognizer_context: Optional[RecognizerContext] = None,
) -> PuzzleMetadata:
    """
    Read a full puzzle from a screenshot.

    Args:
        image: RGBA or RGB uint8 screenshot
        detector: Region and cell detector
        recognizer_context: Digit recognizer for numeric constraint strips

    Returns:
        PuzzleMetadata; fields stay empty for regions the detector missed
    """
    start_time = time.time()

    detection = detector.detect(image)
    rois = detection.rois
    logger.info(
        f"Regions: grid={rois.grid_bbox}, row={rois.row_constraint_strip}, "
        f"col={rois.col_constraint_strip}, panel={rois.piece_panel_bbox}, cells={len(detection.cells)}"
    )

    grid = parse_grid(image, rois.grid_bbox, detection.cells)
    rows, cols = grid.num_row, grid.num_col

    row_items, row_colors = parse_constraints(image, rois.row_constraint_strip, rows, recognizer_context)
    col_items, col_colors = parse_constraints(image, rois.col_constraint_strip, cols, recognizer_context)

    panel = crop(image, rois.piece_panel_bbox)
    pieces: List[Piece] = parse_pieces(panel) if panel is not None else []

    colors = row_colors + col_colors or map_colors(grid.map)
    if not colors:
        colors = [piece.color for piece in pieces]
    colors = sort_colors(colors)

    elapsed = time.time() - start_time
    logger.info(
        f"Puzzle read in {elapsed:.2f}s: {rows}x{cols}, colors={colors}, "
        f"{len(row_items)} row items, {len(col_items)} col items, {len(pieces)} pieces"
    )
    return PuzzleMetadata(
        num_row=rows,
        num_col=cols,
        colors=colors,
        map=grid.map,
        row_constraints=row_items,
        col_constraints=col_items,
        puzzles=[(piece.color, piece.to_strings()) for piece in pieces],
    )


def _constraint_maps(items: Sequence[ConstraintItem], count: int) -> List[Dict[str, int]]:
    maps: List[Dict[str, int]] = [{} for _ in range(count)]
    for item in items:
        if item.index < count:
            maps[item.index][item.color] = maps[item.index].get(item.color, 0) + item.value
    return maps


def metadata_to_puzzle_spec(metadata: PuzzleMetadata) -> PuzzleSpec:
    """
    Convert read metadata into solver input.

    Raises:
        ValueError: If the metadata is internally inconsistent
    """
    cell_types = {EMPTY: EMPTY_CELL, BLOCKED: BLOCKED_CELL}
    grid = [[cell_types.get(code, code) for code in row] for row in metadata.map]
    pieces = [
        Piece.from_strings(f"piece-{i}", color, shape)
        for i, (color, shape) in enumerate(metadata.puzzles)
    ]
    return PuzzleSpec.build(
        grid=grid,
        row_constraints=_constraint_maps(metadata.row_constraints, metadata.num_row),
        col_constraints=_constraint_maps(metadata.col_constraints, metadata.num_col),
        pieces=pieces,
        colors=metadata.colors or None,
    )
