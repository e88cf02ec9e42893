"""
Backtracking placement solver.

Pieces are placed in input order; for each piece every distinct
rotation is tried at every top-left position in row-major order. A
placement paints empty cells with the piece color, and the search
prunes as soon as any row or column holds more of a color than its
target. Counts only grow while placing, so an excess can never be
repaired deeper in the search. The first complete placement whose
counts match every target exactly is returned.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np

from .models import (
    BLOCKED_CELL,
    EMPTY_CELL,
    Constraint,
    GridCell,
    Piece,
    Placement,
    PuzzleSpec,
    Shape,
    Solution,
)

logger = logging.getLogger(__name__)

Grid = List[List[GridCell]]


# -- Shape rotation ----------------------------------------------------------

def _to_shape(array: np.ndarray) -> Shape:
    return tuple(tuple(bool(v) for v in row) for row in array)


def generate_rotations(shape: Shape) -> List[Shape]:
    """The shape followed by its 90, 180 and 270 degree clockwise rotations."""
    array = np.array(shape, dtype=bool)
    return [_to_shape(np.rot90(array, k=-i)) for i in range(4)]


def normalize_shape(shape: Shape) -> Shape:
    """Crop a shape to the bounding box of its filled cells."""
    array = np.array(shape, dtype=bool)
    if array.size == 0 or not array.any():
        return ()
    rows = np.flatnonzero(array.any(axis=1))
    cols = np.flatnonzero(array.any(axis=0))
    return _to_shape(array[rows[0]:rows[-1] + 1, cols[0]:cols[-1] + 1])


def unique_rotations(piece: Piece) -> List[Shape]:
    """Distinct normalized orientations in rotation order."""
    out: List[Shape] = []
    for shape in generate_rotations(piece.shape):
        shape = normalize_shape(shape)
        if shape not in out:
            out.append(shape)
    return out


# -- Grid operations ---------------------------------------------------------

def clone_grid(grid: Sequence[Sequence[GridCell]]) -> Grid:
    return [[cell.copy() for cell in row] for row in grid]


def shape_cells(shape: Shape, row: int, col: int) -> List[Tuple[int, int]]:
    return [(row + r, col + c) for r, line in enumerate(shape) for c, v in enumerate(line) if v]


def can_place(grid: Grid, shape: Shape, row: int, col: int) -> bool:
    rows, cols = len(grid), len(grid[0])
    for r, c in shape_cells(shape, row, col):
        if r < 0 or r >= rows or c < 0 or c >= cols:
            return False
        cell = grid[r][c]
        if cell.type == BLOCKED_CELL or cell.piece_id is not None:
            return False
    return True


def place_piece(grid: Grid, shape: Shape, row: int, col: int, piece: Piece) -> List[Tuple[int, int, GridCell]]:
    """
    Mark the covered cells as owned by ``piece``.

    Empty cells take the piece color; cells already carrying a color
    keep it. Returns what is needed to undo the placement.
    """
    undo = []
    for r, c in shape_cells(shape, row, col):
        cell = grid[r][c]
        undo.append((r, c, cell.copy()))
        cell.piece_id = piece.id
        if cell.type == EMPTY_CELL:
            cell.type = piece.color
    return undo


def remove_piece(grid: Grid, undo: List[Tuple[int, int, GridCell]]) -> None:
    for r, c, previous in undo:
        grid[r][c] = previous


# -- Constraint checks -------------------------------------------------------

def row_counts(grid: Grid, row: int) -> Dict[str, int]:
    counts: Dict[str, int] = {}
    for cell in grid[row]:
        if cell.type not in (EMPTY_CELL, BLOCKED_CELL):
            counts[cell.type] = counts.get(cell.type, 0) + 1
    return counts


def col_counts(grid: Grid, col: int) -> Dict[str, int]:
    counts: Dict[str, int] = {}
    for row in grid:
        cell = row[col]
        if cell.type not in (EMPTY_CELL, BLOCKED_CELL):
            counts[cell.type] = counts.get(cell.type, 0) + 1
    return counts


def _lines(grid: Grid, row_targets: Sequence[Constraint], col_targets: Sequence[Constraint]):
    for r, target in enumerate(row_targets):
        yield row_counts(grid, r), target
    for c, target in enumerate(col_targets):
        yield col_counts(grid, c), target


def constraints_exceeded(grid: Grid, puzzle: PuzzleSpec) -> bool:
    """True if any row or column holds more of a color than its target."""
    for counts, target in _lines(grid, puzzle.row_constraints, puzzle.col_constraints):
        for color in puzzle.colors:
            if counts.get(color, 0) > target.get(color, 0):
                return True
    return False


def constraints_met(grid: Grid, puzzle: PuzzleSpec) -> bool:
    """Exact match of every row and column count against its target."""
    for counts, target in _lines(grid, puzzle.row_constraints, puzzle.col_constraints):
        for color in puzzle.colors:
            if counts.get(color, 0) != target.get(color, 0):
                return False
    return True


# -- Search ------------------------------------------------------------------

@dataclass
class SearchStats:
    nodes: int = 0
    prunes: int = 0
    backtracks: int = 0


def solve(puzzle: PuzzleSpec, stats: Optional[SearchStats] = None) -> Optional[Solution]:
    """
    Find the first placement of every piece that satisfies all constraints.

    Args:
        puzzle: Immutable puzzle description; never modified
        stats: Optional counters filled in during the search

    Returns:
        Solution with placements and the solved grid, or None
    """
    if stats is None:
        stats = SearchStats()
    if puzzle.rows == 0 or puzzle.cols == 0:
        logger.warning("Puzzle grid is empty")
        return None

    rotations = {piece.id: unique_rotations(piece) for piece in puzzle.pieces}
    grid = clone_grid(puzzle.grid)
    placements: List[Placement] = []

    def backtrack(idx: int) -> bool:
        if idx >= len(puzzle.pieces):
            return constraints_met(grid, puzzle)

        piece = puzzle.pieces[idx]
        for rot_index, shape in enumerate(rotations[piece.id]):
            height, width = len(shape), len(shape[0])
            for row in range(puzzle.rows - height + 1):
                for col in range(puzzle.cols - width + 1):
                    if not can_place(grid, shape, row, col):
                        continue

                    stats.nodes += 1
                    undo = place_piece(grid, shape, row, col, piece)
                    if constraints_exceeded(grid, puzzle):
                        stats.prunes += 1
                    else:
                        placements.append(Placement(piece.id, row, col, rot_index))
                        if backtrack(idx + 1):
                            return True
                        placements.pop()
                        stats.backtracks += 1
                    remove_piece(grid, undo)
        return False

    found = backtrack(0)
    logger.debug(f"Search finished: nodes={stats.nodes}, prunes={stats.prunes}, backtracks={stats.backtracks}")
    if not found:
        logger.warning(f"No solution for {puzzle.rows}x{puzzle.cols} puzzle with {len(puzzle.pieces)} pieces")
        return None

    logger.info(f"Solved {puzzle.rows}x{puzzle.cols} puzzle with {len(placements)} placements")
    return Solution(placements=list(placements), grid=clone_grid(grid))


def apply_solution(puzzle: PuzzleSpec, solution: Solution) -> Grid:
    """
    Replay placements onto a copy of the puzzle grid.

    Raises:
        KeyError: If a placement names an unknown piece
    """
    grid = clone_grid(puzzle.grid)
    pieces = {piece.id: piece for piece in puzzle.pieces}
    for placement in solution.placements:
        piece = pieces[placement.piece_id]
        shape = unique_rotations(piece)[placement.rotation_index]
        place_piece(grid, shape, placement.row, placement.col, piece)
    return grid
