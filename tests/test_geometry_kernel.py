"""
Geometry kernel: shoelace area, convexity, side lengths, centroid, quadrants.
"""
from __future__ import annotations
import math

import numpy as np
import pytest

from docscan.geometry.kernel import (
    approximate_dimensions,
    bounding_box,
    centroid,
    is_convex,
    polygon_area,
    quadrant,
)

UNIT_SQUARE = [(0, 0), (1, 0), (1, 1), (0, 1)]


def _rotated_rect(cx: float, cy: float, w: float, h: float, angle_deg: float) -> np.ndarray:
    a = math.radians(angle_deg)
    ca, sa = math.cos(a), math.sin(a)
    half = np.array([[-w / 2, -h / 2], [w / 2, -h / 2], [w / 2, h / 2], [-w / 2, h / 2]])
    rot = np.array([[ca, -sa], [sa, ca]])
    return half @ rot.T + np.array([cx, cy])


# ---------- area ---------- #

def test_area_unit_square():
    assert polygon_area(UNIT_SQUARE) == pytest.approx(1.0)


def test_area_is_orientation_independent():
    assert polygon_area(list(reversed(UNIT_SQUARE))) == pytest.approx(1.0)


def test_area_collinear_quad_is_zero():
    assert polygon_area([(0, 0), (1, 1), (2, 2), (3, 3)]) == pytest.approx(0.0)


def test_area_accepts_opencv_contour_shape():
    cnt = np.array(UNIT_SQUARE, dtype=np.int32).reshape(-1, 1, 2) * 10
    assert polygon_area(cnt) == pytest.approx(100.0)


# ---------- convexity ---------- #

@pytest.mark.parametrize("angle", [0, 15, 30, 45, 60, 90, 135, 200, 315])
def test_rotated_rectangle_is_convex(angle):
    assert is_convex(_rotated_rect(300, 200, 120, 80, angle))


def test_rectangle_convex_in_either_winding():
    assert is_convex(UNIT_SQUARE)
    assert is_convex(list(reversed(UNIT_SQUARE)))


def test_bowtie_is_not_convex():
    assert not is_convex([(0, 0), (1, 1), (1, 0), (0, 1)])


def test_collinear_vertex_is_not_convex():
    assert not is_convex([(0, 0), (1, 0), (2, 0), (1, 1)])


def test_concave_dart_is_not_convex():
    assert not is_convex([(0, 0), (10, 5), (0, 10), (3, 5)])


def test_too_few_points_is_not_convex():
    assert not is_convex([(0, 0), (1, 1)])


# ---------- dimensions / centroid / quadrant ---------- #

def test_dimensions_of_axis_aligned_rect():
    w, h = approximate_dimensions([(50, 50), (250, 50), (250, 150), (50, 150)])
    assert w == pytest.approx(200.0)
    assert h == pytest.approx(100.0)


def test_dimensions_average_opposite_sides():
    # trapezoid: top 100 wide, bottom 200 wide
    w, _ = approximate_dimensions([(50, 0), (150, 0), (200, 100), (0, 100)])
    assert w == pytest.approx(150.0)


def test_dimensions_reject_wrong_count():
    with pytest.raises(ValueError):
        approximate_dimensions([(0, 0), (1, 0), (1, 1)])


def test_centroid_is_mean():
    c = centroid([(10, 10), (0, 0), (10, 0), (0, 10)])
    assert tuple(c) == pytest.approx((5.0, 5.0))


def test_quadrant_boundaries_are_inclusive_on_the_right_and_bottom():
    center = (5, 5)
    assert quadrant((0, 0), center) == 0
    assert quadrant((5, 0), center) == 1
    assert quadrant((5, 5), center) == 2
    assert quadrant((0, 5), center) == 3


def test_bounding_box():
    assert bounding_box([(3, 7), (10, 2), (8, 9), (1, 4)]) == (1.0, 2.0, 10.0, 9.0)
