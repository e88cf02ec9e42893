"""
YAML puzzle files.

Example:

    num_row: 3
    num_col: 3
    colors: [GN]
    map:
      - EP EP EP
      - EP BK EP
      - EP EP EP
    row_constraints:
      - {index: 0, color: GN, value: 1}
    col_constraints:
      - {index: 0, color: GN, value: 1}
    puzzles:
      - color: GN
        shape: ["XX", "XO"]
"""

from typing import Dict, List

import yaml

from .config import ALL_COLORS, BLOCKED, EMPTY
from .models import ConstraintItem
from .pipeline import PuzzleMetadata

CELL_CODES = set(ALL_COLORS) | {EMPTY, BLOCKED}


def _parse_color(value, where: str) -> str:
    if value not in ALL_COLORS:
        raise ValueError(f"Unknown color '{value}' in {where} (use one of {', '.join(ALL_COLORS)})")
    return value


def _parse_map(rows, num_row: int, num_col: int) -> List[List[str]]:
    if len(rows) != num_row:
        raise ValueError(f"map has {len(rows)} rows, expected num_row={num_row}")
    grid = []
    for r, line in enumerate(rows):
        codes = line.split() if isinstance(line, str) else [str(v) for v in line]
        if len(codes) != num_col:
            raise ValueError(f"map row {r} has {len(codes)} cells, expected num_col={num_col}")
        for c, code in enumerate(codes):
            if code not in CELL_CODES:
                raise ValueError(f"Invalid cell code at ({r},{c}): '{code}'")
        grid.append(codes)
    return grid


def _parse_constraints(raw, name: str) -> List[ConstraintItem]:
    items = []
    for obj in raw or []:
        value = int(obj["value"])
        if value < 0:
            raise ValueError(f"Negative value in {name}: {obj}")
        items.append(ConstraintItem(int(obj["index"]), _parse_color(obj["color"], name), value))
    return items


def _parse_shape(rows, where: str) -> List[str]:
    shape = [str(row) for row in rows]
    if not shape or any(len(row) != len(shape[0]) for row in shape):
        raise ValueError(f"{where}: shape rows must be non-empty and equal length")
    for row in shape:
        bad = set(row) - {"X", "O"}
        if bad:
            raise ValueError(f"{where}: invalid shape characters {sorted(bad)} (use 'X' or 'O')")
    if "X" not in "".join(shape):
        raise ValueError(f"{where}: shape has no filled cell")
    return shape


def metadata_from_dict(data: Dict) -> PuzzleMetadata:
    """
    Build PuzzleMetadata from a parsed YAML mapping.

    Raises:
        ValueError: On missing keys or malformed values
    """
    if not isinstance(data, dict):
        raise ValueError("Puzzle file must contain a mapping")
    try:
        num_row = int(data["num_row"])
        num_col = int(data["num_col"])
        grid = _parse_map(data["map"], num_row, num_col)
        colors = [_parse_color(c, "colors") for c in data.get("colors") or []]
        row_items = _parse_constraints(data.get("row_constraints"), "row_constraints")
        col_items = _parse_constraints(data.get("col_constraints"), "col_constraints")
        puzzles = [
            (_parse_color(p["color"], f"puzzles[{i}]"), _parse_shape(p["shape"], f"puzzles[{i}]"))
            for i, p in enumerate(data.get("puzzles") or [])
        ]
    except KeyError as e:
        raise ValueError(f"Missing key in puzzle file: {e}") from e

    return PuzzleMetadata(
        num_row=num_row,
        num_col=num_col,
        colors=colors,
        map=grid,
        row_constraints=row_items,
        col_constraints=col_items,
        puzzles=puzzles,
    )


def load_puzzle(path: str) -> PuzzleMetadata:
    with open(path, "r", encoding="utf-8") as f:
        data = yaml.safe_load(f)
    return metadata_from_dict(data)


def dump_puzzle(metadata: PuzzleMetadata) -> str:
    data = metadata.to_dict()
    data["map"] = [" ".join(row) for row in data["map"]]
    return yaml.safe_dump(data, sort_keys=False)


def save_puzzle(metadata: PuzzleMetadata, path: str) -> None:
    with open(path, "w", encoding="utf-8") as f:
        f.write(dump_puzzle(metadata))
