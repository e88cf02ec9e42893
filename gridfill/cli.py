"""
Command line entry point.

    gridfill solve puzzle.yaml [--verbose]
"""

import argparse
import logging
import sys
from typing import List, Optional, Sequence

import yaml

from .models import BLOCKED_CELL, EMPTY_CELL, GridCell
from .pipeline import metadata_to_puzzle_spec
from .puzzle_file import load_puzzle
from .solver import SearchStats, solve

logger = logging.getLogger(__name__)


def render_grid(grid: Sequence[Sequence[GridCell]]) -> str:
    """Two characters per cell: color code, '##' for blocked, '..' for empty."""
    lines = []
    for row in grid:
        cells = []
        for cell in row:
            if cell.type == BLOCKED_CELL:
                cells.append("##")
            elif cell.type == EMPTY_CELL:
                cells.append("..")
            else:
                cells.append(cell.type)
        lines.append(" ".join(cells))
    return "\n".join(lines)


def cmd_solve(args) -> int:
    try:
        metadata = load_puzzle(args.puzzle)
        puzzle = metadata_to_puzzle_spec(metadata)
    except (OSError, ValueError, yaml.YAMLError) as e:
        logger.error(f"Could not load {args.puzzle}: {e}")
        return 2

    stats = SearchStats()
    solution = solve(puzzle, stats)
    if solution is None:
        print("NO SOLUTION.")
        print(f"Searched {stats.nodes} placements ({stats.prunes} pruned).")
        return 1

    print("SOLVED.\n")
    for placement in solution.placements:
        print(
            f"{placement.piece_id}: row={placement.row} col={placement.col} "
            f"rotation={placement.rotation_index}"
        )
    print()
    print(render_grid(solution.grid))
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="gridfill", description="Color-constraint polyomino puzzle tools")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")
    sub = parser.add_subparsers(dest="command", required=True)

    solve_parser = sub.add_parser("solve", help="Solve a YAML puzzle file")
    solve_parser.add_argument("puzzle", help="Path to puzzle YAML")
    solve_parser.add_argument("--verbose", "-v", action="store_true", default=argparse.SUPPRESS,
                              help="Enable debug logging")
    solve_parser.set_defaults(func=cmd_solve)
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    )
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
