"""
Centralized Configuration Module

HSV color ranges, label names and tunable thresholds shared by every
analyzer. Colors are identified by two-letter codes:

- GN: green
- BL: blue
- CY: cyan
- OG: orange

Cell codes add EP (empty) and BK (blocked). All HSV values use the
OpenCV convention: H in [0, 180], S and V in [0, 255].
"""

import os
from dataclasses import dataclass
from typing import Dict, List, Literal, Optional, Tuple

CellCode = Literal["EP", "BK", "GN", "BL", "CY", "OG"]

EMPTY: CellCode = "EP"
BLOCKED: CellCode = "BK"

HSVRange = Tuple[Tuple[int, int, int], Tuple[int, int, int]]

# Format: (H_min, S_min, V_min), (H_max, S_max, V_max)
COLOR_RANGES: Dict[str, HSVRange] = {
    "GN": ((35, 80, 80), (85, 255, 255)),
    "BL": ((95, 80, 80), (135, 255, 255)),
    "CY": ((80, 80, 80), (100, 255, 255)),
    "OG": ((5, 120, 120), (25, 255, 255)),
    # Neutral gray used for obstacle cells, independent of the color set
    "BK": ((0, 0, 40), (180, 50, 120)),
}

ALL_COLORS: List[str] = ["GN", "BL", "CY", "OG"]

# Canonical order used whenever a color set is reported
COLOR_ORDER: Dict[str, int] = {
    "GN": 0,
    "CY": 1,
    "OG": 2,
    "BL": 3,
}

# Relaxed masks widen the lower S/V bounds to recover faded renders
RELAXED_SAT_DELTA = 40
RELAXED_VAL_DELTA = 60

# GN and CY overlap around hue 80-85; mean hue below the split is GN
AMBIGUOUS_PAIR: Tuple[str, str] = ("GN", "CY")
HUE_SPLIT = 75.0

# Cell labels emitted by the detector collaborator
CELL_EMPTY_LABEL = "cell_empty"
CELL_OBSTACLE_LABEL = "cell_obstacle"
CELL_OCCUPIED_LABEL = "cell_occupied"

# Returned by digit recognizers when no digit could be read
UNRECOGNIZED_DIGIT = -1

# Debug output directory - set via environment variable
DEBUG_OUTPUT_DIR: Optional[str] = os.environ.get("GRIDFILL_DEBUG_DIR", None)


@dataclass(frozen=True)
class ShapeScoring:
    """
    Tunables for fitting a piece mask onto an N x M cell grid.

    Attributes:
        max_cells_per_axis: Largest grid dimension considered
        occupied_threshold: Fill fraction above which a cell counts as occupied
        clear_high: Fill fraction above which a cell is unambiguously full
        clear_low: Fill fraction below which a cell is unambiguously empty
        solid_threshold: Fill fraction every cell must reach for a grid to be "solid"
        parsimony_penalty: Score subtracted per cell for solid grids
        min_keep_fraction: Absolute floor for the post-filter on occupied cells
        median_keep_ratio: Post-filter floor relative to the median fill fraction
    """
    max_cells_per_axis: int = 5
    occupied_threshold: float = 0.15
    clear_high: float = 0.6
    clear_low: float = 0.2
    solid_threshold: float = 0.9
    parsimony_penalty: float = 0.06
    min_keep_fraction: float = 0.4
    median_keep_ratio: float = 0.4


DEFAULT_SHAPE_SCORING = ShapeScoring()


def sort_colors(colors) -> List[str]:
    """Return unique colors in canonical order."""
    return sorted(set(colors), key=lambda c: COLOR_ORDER[c])
