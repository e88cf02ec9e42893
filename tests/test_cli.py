"""
Tests for YAML puzzle files and the solve command.
"""

import pytest

from gridfill.cli import main, render_grid
from gridfill.models import ConstraintItem, GridCell
from gridfill.pipeline import PuzzleMetadata
from gridfill.puzzle_file import dump_puzzle, load_puzzle, metadata_from_dict, save_puzzle

L_TROMINO_YAML = """\
num_row: 3
num_col: 3
colors: [GN]
map:
  - EP EP EP
  - EP EP EP
  - EP EP EP
row_constraints:
  - {index: 0, color: GN, value: 1}
  - {index: 1, color: GN, value: 2}
  - {index: 2, color: GN, value: 0}
col_constraints:
  - {index: 0, color: GN, value: 2}
  - {index: 1, color: GN, value: 1}
  - {index: 2, color: GN, value: 0}
puzzles:
  - color: GN
    shape: ["XO", "XX"]
"""

UNSOLVABLE_YAML = """\
num_row: 2
num_col: 2
colors: [GN]
map:
  - EP EP
  - EP EP
row_constraints:
  - {index: 0, color: GN, value: 1}
  - {index: 1, color: GN, value: 1}
col_constraints:
  - {index: 0, color: GN, value: 1}
  - {index: 1, color: GN, value: 1}
puzzles:
  - color: GN
    shape: ["XX"]
"""


@pytest.fixture
def write_puzzle(tmp_path):
    def _write(text, name="puzzle.yaml"):
        path = tmp_path / name
        path.write_text(text, encoding="utf-8")
        return str(path)
    return _write


# ============================================================================
# solve command
# ============================================================================

class TestSolveCommand:

    def test_solved(self, write_puzzle, capsys):
        assert main(["solve", write_puzzle(L_TROMINO_YAML)]) == 0
        out = capsys.readouterr().out
        assert "SOLVED." in out
        assert "piece-0: row=0 col=0 rotation=0" in out
        assert "GN .. ..\nGN GN ..\n.. .. .." in out

    def test_no_solution(self, write_puzzle, capsys):
        assert main(["solve", write_puzzle(UNSOLVABLE_YAML)]) == 1
        assert "NO SOLUTION." in capsys.readouterr().out

    def test_missing_file(self, tmp_path):
        assert main(["solve", str(tmp_path / "missing.yaml")]) == 2

    def test_malformed_file(self, write_puzzle):
        assert main(["solve", write_puzzle("num_row: 2\n")]) == 2
        assert main(["solve", write_puzzle("map: [unclosed\n", "broken.yaml")]) == 2

    def test_constraint_color_missing_from_colors(self, write_puzzle):
        text = L_TROMINO_YAML.replace("{index: 2, color: GN, value: 0}\ncol", "{index: 2, color: OG, value: 1}\ncol")
        assert "color: OG" in text
        assert main(["solve", write_puzzle(text)]) == 2

    def test_command_required(self):
        with pytest.raises(SystemExit):
            main([])


class TestRenderGrid:

    def test_cell_codes(self):
        grid = [[GridCell("GN"), GridCell("blocked")], [GridCell("empty"), GridCell("OG")]]
        assert render_grid(grid) == "GN ##\n.. OG"


# ============================================================================
# Puzzle files
# ============================================================================

class TestPuzzleFile:

    def test_load(self, write_puzzle):
        metadata = load_puzzle(write_puzzle(L_TROMINO_YAML))
        assert (metadata.num_row, metadata.num_col) == (3, 3)
        assert metadata.colors == ["GN"]
        assert metadata.row_constraints[1] == ConstraintItem(1, "GN", 2)
        assert metadata.puzzles == [("GN", ["XO", "XX"])]

    def test_save_and_load(self, tmp_path):
        metadata = PuzzleMetadata(
            num_row=1,
            num_col=2,
            colors=["OG"],
            map=[["EP", "BK"]],
            row_constraints=[ConstraintItem(0, "OG", 1)],
            col_constraints=[ConstraintItem(0, "OG", 1), ConstraintItem(1, "OG", 0)],
            puzzles=[("OG", ["X"])],
        )
        path = str(tmp_path / "saved.yaml")
        save_puzzle(metadata, path)
        assert load_puzzle(path) == metadata

    def test_map_written_as_strings(self):
        text = dump_puzzle(PuzzleMetadata(num_row=1, num_col=2, map=[["EP", "GN"]]))
        assert "EP GN" in text

    def test_invalid_cell_code(self):
        data = {"num_row": 1, "num_col": 2, "map": ["EP XX"]}
        with pytest.raises(ValueError, match="Invalid cell code"):
            metadata_from_dict(data)

    def test_invalid_shape_character(self):
        data = {"num_row": 1, "num_col": 1, "map": ["EP"], "puzzles": [{"color": "GN", "shape": ["XA"]}]}
        with pytest.raises(ValueError, match="invalid shape characters"):
            metadata_from_dict(data)

    def test_unknown_color(self):
        data = {"num_row": 1, "num_col": 1, "map": ["EP"], "colors": ["RD"]}
        with pytest.raises(ValueError, match="Unknown color"):
            metadata_from_dict(data)

    def test_wrong_row_count(self):
        with pytest.raises(ValueError, match="expected num_row=2"):
            metadata_from_dict({"num_row": 2, "num_col": 1, "map": ["EP"]})
