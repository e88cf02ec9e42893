"""
Data model shared by the analyzers, the pipeline and the solver.

Analyzer results are plain dataclasses. PuzzleSpec is the immutable
input to the solver; GridCell is the only type the solver mutates, and
only on its own working copy.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Literal, Optional, Sequence, Tuple

from .config import sort_colors

Box = Tuple[int, int, int, int]  # (x1, y1, x2, y2), half-open
Shape = Tuple[Tuple[bool, ...], ...]
Coord = Tuple[int, int]  # (x, y)

DisplayMode = Literal["number", "bar"]
CellType = str  # "empty", "blocked" or a color code

EMPTY_CELL = "empty"
BLOCKED_CELL = "blocked"


def box_is_usable(box: Optional[Sequence[float]]) -> bool:
    """True when a box is present and has positive width and height."""
    if box is None or len(box) != 4:
        return False
    x1, y1, x2, y2 = box
    return x2 > x1 and y2 > y1


@dataclass(frozen=True)
class Component:
    """
    A 4-connected foreground component.

    Attributes:
        x, y: Top-left corner of the bounding box
        w, h: Bounding box size
        area: Number of foreground pixels
        cx, cy: Bounding box center, used for ordering and clustering
    """
    x: int
    y: int
    w: int
    h: int
    area: int
    cx: float
    cy: float

    @property
    def box(self) -> Box:
        return (self.x, self.y, self.x + self.w, self.y + self.h)

    @property
    def aspect(self) -> float:
        return self.w / self.h


@dataclass(frozen=True)
class ConstraintItem:
    index: int
    color: str
    value: int


@dataclass
class ConstraintStripResult:
    """
    Parsed constraint strip.

    Attributes:
        items: One ConstraintItem per (position, color), ordered by position
        mode: "bar" when counts are drawn as bars, else "number"
        is_dual_color: True when two colors share the strip
        colors: Colors parsed from the strip, canonical order
    """
    items: List[ConstraintItem] = field(default_factory=list)
    mode: DisplayMode = "number"
    is_dual_color: bool = False
    colors: List[str] = field(default_factory=list)

    @property
    def count(self) -> int:
        """Number of constraint positions found."""
        return len({item.index for item in self.items})


@dataclass(frozen=True)
class Piece:
    """A polyomino piece; shape is its minimal bounding-box occupancy grid."""
    id: str
    color: str
    shape: Shape

    @classmethod
    def from_coords(cls, piece_id: str, color: str, coords: Sequence[Coord]) -> "Piece":
        max_x = max(x for x, _ in coords)
        max_y = max(y for _, y in coords)
        filled = set(coords)
        shape = tuple(
            tuple((x, y) in filled for x in range(max_x + 1))
            for y in range(max_y + 1)
        )
        return cls(id=piece_id, color=color, shape=shape)

    @classmethod
    def from_strings(cls, piece_id: str, color: str, rows: Sequence[str]) -> "Piece":
        """Build a piece from rows such as ["XX", "XO"]."""
        return cls(id=piece_id, color=color, shape=tuple(tuple(ch == "X" for ch in row) for row in rows))

    @property
    def coords(self) -> List[Coord]:
        """Occupied cells as (x, y), row-major."""
        return [(x, y) for y, row in enumerate(self.shape) for x, v in enumerate(row) if v]

    @property
    def size(self) -> int:
        return sum(v for row in self.shape for v in row)

    def to_strings(self) -> List[str]:
        return ["".join("X" if v else "O" for v in row) for row in self.shape]


@dataclass(frozen=True)
class CellDetection:
    """Detector output for one cell; label is one of the config.CELL_*_LABEL values."""
    box: Box
    label: str
    confidence: float

    @property
    def center(self) -> Tuple[float, float]:
        x1, y1, x2, y2 = self.box
        return ((x1 + x2) / 2, (y1 + y2) / 2)


@dataclass(frozen=True)
class CellInfo:
    row: int
    col: int
    code: str
    source: Literal["detector", "pixels"]


@dataclass
class GridMapResult:
    num_row: int = 0
    num_col: int = 0
    map: List[List[str]] = field(default_factory=list)
    grid_box: Optional[Box] = None
    cells: List[CellInfo] = field(default_factory=list)


@dataclass
class GridCell:
    type: CellType = EMPTY_CELL
    piece_id: Optional[str] = None

    def copy(self) -> "GridCell":
        return GridCell(self.type, self.piece_id)


Constraint = Dict[str, int]


@dataclass(frozen=True)
class PuzzleSpec:
    """
    Immutable solver input.

    Raises:
        ValueError: If dimensions, constraints and grid disagree
    """
    rows: int
    cols: int
    colors: Tuple[str, ...]
    grid: Tuple[Tuple[GridCell, ...], ...]
    row_constraints: Tuple[Constraint, ...]
    col_constraints: Tuple[Constraint, ...]
    pieces: Tuple[Piece, ...]

    def __post_init__(self):
        if len(self.grid) != self.rows:
            raise ValueError(f"Grid has {len(self.grid)} rows, expected {self.rows}")
        for r, row in enumerate(self.grid):
            if len(row) != self.cols:
                raise ValueError(f"Grid row {r} has {len(row)} cells, expected {self.cols}")
        if len(self.row_constraints) != self.rows:
            raise ValueError(f"Expected {self.rows} row constraints, got {len(self.row_constraints)}")
        if len(self.col_constraints) != self.cols:
            raise ValueError(f"Expected {self.cols} column constraints, got {len(self.col_constraints)}")
        ids = [p.id for p in self.pieces]
        if len(set(ids)) != len(ids):
            raise ValueError("Piece ids must be unique")
        for piece in self.pieces:
            if piece.size == 0:
                raise ValueError(f"Piece '{piece.id}' has an empty shape")

        # The color set is closed: every color the puzzle mentions must be declared
        colors = set(self.colors)
        for piece in self.pieces:
            if piece.color not in colors:
                raise ValueError(f"Piece '{piece.id}' color {piece.color} is not in colors {list(self.colors)}")
        for r, row in enumerate(self.grid):
            for c, cell in enumerate(row):
                if cell.type not in (EMPTY_CELL, BLOCKED_CELL) and cell.type not in colors:
                    raise ValueError(f"Cell ({r},{c}) color {cell.type} is not in colors {list(self.colors)}")
        self._check_constraints(self.row_constraints, "row", self.cols)
        self._check_constraints(self.col_constraints, "column", self.rows)

    def _check_constraints(self, constraints: Sequence[Constraint], name: str, limit: int) -> None:
        for index, constraint in enumerate(constraints):
            for color, value in constraint.items():
                if color not in self.colors:
                    raise ValueError(
                        f"{name.capitalize()} constraint {index} color {color} is not in colors {list(self.colors)}"
                    )
                if not 0 <= value <= limit:
                    raise ValueError(
                        f"{name.capitalize()} constraint {index} value {value} for {color} outside [0, {limit}]"
                    )

    @classmethod
    def build(
        cls,
        grid: Sequence[Sequence[CellType]],
        row_constraints: Sequence[Constraint],
        col_constraints: Sequence[Constraint],
        pieces: Sequence[Piece],
        colors: Optional[Sequence[str]] = None,
    ) -> "PuzzleSpec":
        """Convenience constructor from plain lists of cell types."""
        cells = tuple(tuple(GridCell(t) for t in row) for row in grid)
        if colors is None:
            found = {t for row in grid for t in row if t not in (EMPTY_CELL, BLOCKED_CELL)}
            found.update(p.color for p in pieces)
            for cons in list(row_constraints) + list(col_constraints):
                found.update(cons)
            colors = sort_colors(found)
        return cls(
            rows=len(cells),
            cols=len(cells[0]) if cells else 0,
            colors=tuple(colors),
            grid=cells,
            row_constraints=tuple(dict(c) for c in row_constraints),
            col_constraints=tuple(dict(c) for c in col_constraints),
            pieces=tuple(pieces),
        )


@dataclass(frozen=True)
class Placement:
    piece_id: str
    row: int
    col: int
    rotation_index: int


@dataclass
class Solution:
    placements: List[Placement]
    grid: List[List[GridCell]] = field(default_factory=list)
