"""
Screenshot reader and solver for color-constraint polyomino puzzles.
"""

from .grid_map import parse_grid
from .models import (
    CellDetection,
    ConstraintItem,
    ConstraintStripResult,
    GridCell,
    GridMapResult,
    Piece,
    Placement,
    PuzzleSpec,
    Solution,
)
from .pieces import parse_pieces
from .solver import solve
from .strip import parse_constraint_strip

__all__ = [
    "CellDetection",
    "ConstraintItem",
    "ConstraintStripResult",
    "GridCell",
    "GridMapResult",
    "Piece",
    "Placement",
    "PuzzleSpec",
    "Solution",
    "parse_constraint_strip",
    "parse_grid",
    "parse_pieces",
    "solve",
]
