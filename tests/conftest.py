"""
Shared fixtures: synthetic RGB images drawn with numpy and OpenCV.
"""

import cv2
import numpy as np
import pytest

BACKGROUND = (30, 30, 30)
WHITE = (255, 255, 255)
GREEN = (120, 200, 20)
ORANGE = (255, 150, 0)
BLUE = (40, 120, 255)
CYAN = (0, 188, 212)
GRAY = (80, 80, 80)
RING_GRAY = (90, 90, 90)


def blank(width, height, color=BACKGROUND):
    img = np.zeros((height, width, 3), dtype=np.uint8)
    img[:, :] = color
    return img


def fill(img, x, y, w, h, color):
    img[y:y + h, x:x + w] = color
    return img


def ring(img, cx, cy, r_out, r_in, color=RING_GRAY, background=BACKGROUND):
    cv2.circle(img, (cx, cy), r_out, color, -1)
    cv2.circle(img, (cx, cy), r_in, background, -1)
    return img


class FakeRecognizer:
    """Digit recognizer double keyed by glyph width."""

    def __init__(self, by_width=None, default=-1):
        self.by_width = by_width or {}
        self.default = default
        self.calls = []

    def recognize(self, glyph):
        self.calls.append(glyph)
        return self.by_width.get(glyph.width, self.default)


@pytest.fixture
def bar_strip():
    """
    300x100 strip: three GN bars, two GN bars, then a gray zero ring.
    Reads as [3, 2, 0].
    """
    img = blank(300, 100)
    for y in (20, 35, 50):
        fill(img, 20, y, 40, 6, GREEN)
    for y in (30, 45):
        fill(img, 120, y, 40, 6, GREEN)
    ring(img, 240, 50, 15, 9)
    return img


@pytest.fixture
def number_strip():
    """300x100 strip with three GN digit-sized blocks of widths 12, 16, 20."""
    img = blank(300, 100)
    fill(img, 30, 50, 12, 30, GREEN)
    fill(img, 130, 50, 16, 30, GREEN)
    fill(img, 230, 50, 20, 30, GREEN)
    return img


@pytest.fixture
def dual_strip():
    """300x100 strip with GN/OG digit pairs at two positions."""
    img = blank(300, 100)
    fill(img, 20, 50, 20, 30, GREEN)
    fill(img, 45, 50, 22, 30, ORANGE)
    fill(img, 171, 50, 18, 30, GREEN)
    fill(img, 194, 50, 24, 30, ORANGE)
    return img


@pytest.fixture
def stacked_panel():
    """White panel: GN L-tromino above an OG 2x2 square, split by white rows."""
    img = blank(200, 180, WHITE)
    fill(img, 20, 10, 30, 30, GREEN)
    fill(img, 20, 40, 60, 30, GREEN)
    fill(img, 20, 100, 60, 60, ORANGE)
    return img


@pytest.fixture
def scattered_panel():
    """Dark panel: a GN domino drawn as two blocks 10px apart, and an OG square below."""
    img = blank(200, 200)
    fill(img, 20, 20, 30, 30, GREEN)
    fill(img, 60, 20, 30, 30, GREEN)
    fill(img, 20, 100, 60, 60, ORANGE)
    return img


@pytest.fixture
def fake_recognizer():
    return FakeRecognizer
