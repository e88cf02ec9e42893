"""
Unit tests for constraint strip parsing.
"""

import cv2
import numpy as np

from gridfill.color import HSVImage
from gridfill.components import find_components
from gridfill.models import Component, ConstraintItem
from gridfill.strip import (
    cluster_by_x,
    detect_colors,
    detect_zero_symbols,
    is_valid_bar,
    is_zero_symbol,
    parse_constraint_strip,
    should_rotate,
)

from conftest import FakeRecognizer, GREEN, ORANGE, blank, fill

# Saturation below the strict GN floor, above the relaxed one
FADED_GREEN = (80, 110, 80)


def values(result):
    return [item.value for item in result.items]


# ============================================================================
# Clustering
# ============================================================================

class TestClusterByX:

    def test_bar_centroids_form_two_groups(self):
        groups = cluster_by_x([10, 12, 14, 40, 42], key=lambda v: v)
        assert [len(g) for g in groups] == [3, 2]

    def test_no_real_gaps_is_one_group(self):
        groups = cluster_by_x([10, 12, 14], key=lambda v: v)
        assert groups == [[10, 12, 14]]

    def test_uneven_gaps_use_midpoint(self):
        groups = cluster_by_x([0, 10, 20, 100], key=lambda v: v)
        assert groups == [[0, 10, 20], [100]]

    def test_empty(self):
        assert cluster_by_x([]) == []


# ============================================================================
# Zero symbols
# ============================================================================

def single_component(mask):
    (comp,) = find_components(mask)
    return comp


class TestZeroSymbolFilter:

    def test_ring_accepted(self):
        mask = np.zeros((100, 100), dtype=np.uint8)
        cv2.circle(mask, (50, 50), 20, 1, -1)
        cv2.circle(mask, (50, 50), 8, 0, -1)
        assert is_zero_symbol(mask, single_component(mask), strip_height=100)

    def test_solid_disk_rejected(self):
        mask = np.zeros((100, 100), dtype=np.uint8)
        cv2.circle(mask, (50, 50), 20, 1, -1)
        assert not is_zero_symbol(mask, single_component(mask), strip_height=100)

    def test_too_small_for_strip_rejected(self):
        mask = np.zeros((100, 100), dtype=np.uint8)
        cv2.circle(mask, (50, 50), 20, 1, -1)
        cv2.circle(mask, (50, 50), 8, 0, -1)
        assert not is_zero_symbol(mask, single_component(mask), strip_height=500)

    def test_colored_ring_rejected(self):
        mask = np.zeros((100, 100), dtype=np.uint8)
        cv2.circle(mask, (50, 50), 20, 1, -1)
        cv2.circle(mask, (50, 50), 8, 0, -1)
        color_mask = mask > 0
        assert not is_zero_symbol(mask, single_component(mask), 100, color_mask)

    def test_faint_ring_found_in_strip(self, bar_strip):
        zeros = detect_zero_symbols(HSVImage(bar_strip))
        assert len(zeros) == 1
        assert abs(zeros[0].cx - 240) <= 2


# ============================================================================
# Helpers
# ============================================================================

class TestHelpers:

    def test_should_rotate(self):
        assert should_rotate(100, 151)
        assert not should_rotate(100, 150)

    def test_square_component_is_not_a_bar(self):
        comp = Component(x=0, y=0, w=20, h=20, area=400, cx=10, cy=10)
        assert not is_valid_bar(comp, 300, 100)

    def test_frame_line_is_not_a_bar(self):
        comp = Component(x=0, y=0, w=200, h=10, area=2000, cx=100, cy=5)
        assert not is_valid_bar(comp, 300, 100)

    def test_detect_colors_ignores_specks(self):
        img = fill(blank(300, 100), 10, 10, 40, 6, GREEN)
        fill(img, 100, 10, 5, 5, (255, 150, 0))
        assert detect_colors(HSVImage(img)) == ["GN"]


# ============================================================================
# parse_constraint_strip
# ============================================================================

class TestBarMode:

    def test_counts_bars_and_zero(self, bar_strip):
        result = parse_constraint_strip(bar_strip)
        assert result.mode == "bar"
        assert result.colors == ["GN"]
        assert not result.is_dual_color
        assert result.items == [
            ConstraintItem(0, "GN", 3),
            ConstraintItem(1, "GN", 2),
            ConstraintItem(2, "GN", 0),
        ]
        assert result.count == 3

    def test_tall_strip_is_rotated(self, bar_strip):
        tall = np.ascontiguousarray(np.rot90(bar_strip, k=-1))
        result = parse_constraint_strip(tall)
        assert result.mode == "bar"
        assert values(result) == [3, 2, 0]

    def test_rgba_input(self, bar_strip):
        alpha = np.full(bar_strip.shape[:2] + (1,), 255, dtype=np.uint8)
        result = parse_constraint_strip(np.concatenate([bar_strip, alpha], axis=2))
        assert values(result) == [3, 2, 0]


class TestNumberMode:

    def test_single_color_left_to_right(self, number_strip):
        recognizer = FakeRecognizer({12: 1, 16: 4, 20: 7})
        result = parse_constraint_strip(number_strip, recognizer)
        assert result.mode == "number"
        assert values(result) == [1, 4, 7]
        assert [g.width for g in recognizer.calls] == [12, 16, 20]

    def test_unrecognized_reads_zero(self, number_strip):
        result = parse_constraint_strip(number_strip, FakeRecognizer(default=-1))
        assert values(result) == [0, 0, 0]

    def test_no_recognizer_reads_zero(self, number_strip):
        assert values(parse_constraint_strip(number_strip)) == [0, 0, 0]

    def test_six_with_symmetric_hole_becomes_zero(self):
        img = blank(300, 100)
        fill(img, 30, 50, 16, 30, GREEN)
        fill(img, 130, 50, 20, 30, GREEN)
        fill(img, 134, 54, 12, 22, (30, 30, 30))
        result = parse_constraint_strip(img, FakeRecognizer(default=6))
        assert values(result) == [6, 0]

    def test_dual_color(self, dual_strip):
        recognizer = FakeRecognizer({20: 2, 22: 3, 18: 5, 24: 1})
        result = parse_constraint_strip(dual_strip, recognizer)
        assert result.is_dual_color
        assert result.colors == ["GN", "OG"]
        assert result.items == [
            ConstraintItem(0, "GN", 2),
            ConstraintItem(0, "OG", 3),
            ConstraintItem(1, "GN", 5),
            ConstraintItem(1, "OG", 1),
        ]


class TestEmptyInput:

    def test_blank_strip(self):
        result = parse_constraint_strip(blank(100, 40))
        assert result.items == []
        assert result.colors == []

    def test_none(self):
        assert parse_constraint_strip(None).items == []


class TestRotatedNumberMode:

    @staticmethod
    def digits_on_top(img_width=300, img_height=100):
        """Glyphs in the top half: where digits sit once a tall strip is turned upright."""
        img = blank(img_width, img_height)
        fill(img, 30, 20, 12, 30, GREEN)
        fill(img, 130, 20, 16, 30, GREEN)
        fill(img, 230, 20, 20, 30, GREEN)
        return img

    def test_tall_strip_reads_rotated_glyphs(self):
        tall = np.ascontiguousarray(np.rot90(self.digits_on_top(), k=-1))
        recognizer = FakeRecognizer({12: 1, 16: 4, 20: 7})
        result = parse_constraint_strip(tall, recognizer)

        assert result.mode == "number"
        assert values(result) == [1, 4, 7]
        assert [g.width for g in recognizer.calls] == [12, 16, 20]
        assert all(g.rotated for g in recognizer.calls)

    def test_top_half_glyphs_ignored_on_wide_strip(self):
        recognizer = FakeRecognizer(default=1)
        result = parse_constraint_strip(self.digits_on_top(), recognizer)
        assert result.items == []
        assert recognizer.calls == []


class TestDualColor:

    def test_bar_mode_counts_each_color(self):
        img = blank(300, 100)
        for y in (20, 35):
            fill(img, 20, y, 40, 6, GREEN)
        fill(img, 20, 50, 40, 6, ORANGE)
        fill(img, 120, 20, 40, 6, GREEN)
        for y in (35, 50):
            fill(img, 120, y, 40, 6, ORANGE)

        result = parse_constraint_strip(img)
        assert result.mode == "bar"
        assert result.is_dual_color
        assert result.items == [
            ConstraintItem(0, "GN", 2),
            ConstraintItem(0, "OG", 1),
            ConstraintItem(1, "GN", 1),
            ConstraintItem(1, "OG", 2),
        ]

    def test_faded_glyph_found_through_relaxed_mask(self, dual_strip):
        fill(dual_strip, 171, 50, 18, 30, FADED_GREEN)
        recognizer = FakeRecognizer({20: 2, 22: 3, 18: 5, 24: 1})
        result = parse_constraint_strip(dual_strip, recognizer)

        assert result.colors == ["GN", "OG"]
        assert values(result) == [2, 3, 5, 1]
        assert sorted(g.width for g in recognizer.calls) == [18, 20, 22, 24]
