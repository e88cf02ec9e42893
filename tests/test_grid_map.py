"""
Unit tests for grid size estimation and cell classification.
"""

from gridfill.grid_map import estimate_grid_size, parse_grid
from gridfill.config import CELL_EMPTY_LABEL, CELL_OBSTACLE_LABEL, CELL_OCCUPIED_LABEL
from gridfill.models import CellDetection

from conftest import GRAY, GREEN, ORANGE, blank, fill

CELL = 50


def detection(row, col, label=CELL_EMPTY_LABEL, confidence=0.9, cell=CELL):
    x, y = col * cell, row * cell
    return CellDetection((x + 5, y + 5, x + cell - 5, y + cell - 5), label, confidence)


def lattice(rows, cols, skip=()):
    return [detection(r, c) for r in range(rows) for c in range(cols) if (r, c) not in skip]


# ============================================================================
# Size estimation
# ============================================================================

class TestEstimateGridSize:

    def test_perfect_five_by_five(self):
        assert estimate_grid_size(lattice(5, 5), (0, 0, 250, 250)) == (5, 5)

    def test_partial_lattice_within_tolerance(self):
        dets = lattice(3, 3, skip={(1, 1), (2, 2)})
        assert estimate_grid_size(dets, (0, 0, 150, 150)) == (3, 3)

    def test_spacing_fallback_for_rectangular_grid(self):
        assert estimate_grid_size(lattice(3, 4), (0, 0, 200, 150)) == (3, 4)

    def test_detections_outside_box_ignored(self):
        assert estimate_grid_size(lattice(3, 3), (500, 500, 650, 650)) == (0, 0)

    def test_too_few_detections(self):
        assert estimate_grid_size(lattice(1, 2), (0, 0, 100, 50)) == (0, 0)


# ============================================================================
# parse_grid
# ============================================================================

class TestParseGrid:

    def test_all_empty_lattice(self):
        result = parse_grid(blank(260, 260), (0, 0, 250, 250), lattice(5, 5))
        assert (result.num_row, result.num_col) == (5, 5)
        assert result.map == [["EP"] * 5 for _ in range(5)]
        assert all(info.source == "detector" for info in result.cells)

    def test_detector_labels(self):
        img = fill(blank(150, 150), 50, 0, 50, 50, ORANGE)
        dets = lattice(3, 3, skip={(0, 1), (2, 0)})
        dets.append(detection(0, 1, CELL_OCCUPIED_LABEL))
        dets.append(detection(2, 0, CELL_OBSTACLE_LABEL))
        result = parse_grid(img, (0, 0, 150, 150), dets)
        assert result.map[0][1] == "OG"
        assert result.map[2][0] == "BK"

    def test_missing_cells_classified_from_pixels(self):
        img = fill(blank(150, 150), 50, 50, 50, 50, GREEN)
        fill(img, 100, 100, 50, 50, GRAY)
        dets = lattice(3, 3, skip={(1, 1), (2, 2)})
        result = parse_grid(img, (0, 0, 150, 150), dets)

        assert result.map == [
            ["EP", "EP", "EP"],
            ["EP", "GN", "EP"],
            ["EP", "EP", "BK"],
        ]
        by_cell = {(info.row, info.col): info.source for info in result.cells}
        assert by_cell[(1, 1)] == "pixels"
        assert by_cell[(0, 0)] == "detector"

    def test_confident_later_detection_wins(self):
        dets = lattice(3, 3)
        dets.append(detection(0, 0, CELL_OBSTACLE_LABEL, confidence=0.8))
        result = parse_grid(blank(150, 150), (0, 0, 150, 150), dets)
        assert result.map[0][0] == "BK"

    def test_weak_later_detection_ignored(self):
        dets = lattice(3, 3)
        dets.append(detection(0, 0, CELL_OBSTACLE_LABEL, confidence=0.5))
        result = parse_grid(blank(150, 150), (0, 0, 150, 150), dets)
        assert result.map[0][0] == "EP"

    def test_unusable_box(self):
        for box in (None, (10, 10, 10, 50), (10, 10, 50, 5)):
            result = parse_grid(blank(100, 100), box, lattice(3, 3))
            assert (result.num_row, result.num_col, result.map) == (0, 0, [])
