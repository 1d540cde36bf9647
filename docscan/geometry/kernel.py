# docscan/geometry/kernel.py
"""
Pure geometry over point sets: area, convexity, side lengths, centroid.

Every function accepts anything `as_points` understands and never mutates
its input.
"""
from __future__ import annotations
from typing import Tuple
import math
import numpy as np

from docscan.core.contracts import as_points

TOP_LEFT, TOP_RIGHT, BOTTOM_RIGHT, BOTTOM_LEFT = 0, 1, 2, 3


def polygon_area(points) -> float:
    """Shoelace area, always >= 0. Vertex indices wrap modulo N."""
    p = as_points(points)
    if len(p) < 3:
        return 0.0
    x, y = p[:, 0], p[:, 1]
    xn, yn = np.roll(x, -1), np.roll(y, -1)
    return float(abs(np.sum(x * yn - xn * y)) / 2.0)


def is_convex(points) -> bool:
    """
    True iff every consecutive edge cross product is non-zero and shares the
    sign of the first. Collinear vertices and bowties are rejected.
    """
    p = as_points(points)
    n = len(p)
    if n < 3:
        return False
    sign = 0.0
    for i in range(n):
        a, b, c = p[i], p[(i + 1) % n], p[(i + 2) % n]
        dx1, dy1 = b[0] - a[0], b[1] - a[1]
        dx2, dy2 = c[0] - b[0], c[1] - b[1]
        cross = dx1 * dy2 - dy1 * dx2
        if cross == 0:
            return False
        s = math.copysign(1.0, cross)
        if i == 0:
            sign = s
        elif s != sign:
            return False
    return True


def _dist(a, b) -> float:
    return math.hypot(float(a[0] - b[0]), float(a[1] - b[1]))


def approximate_dimensions(quad) -> Tuple[float, float]:
    """
    (width, height) of an ordered TL, TR, BR, BL quad as the mean of opposite
    side lengths.
    """
    p = as_points(quad)
    if p.shape != (4, 2):
        raise ValueError(f"Expected 4 corners, got shape {p.shape}")
    tl, tr, br, bl = p
    width = (_dist(tl, tr) + _dist(bl, br)) / 2.0
    height = (_dist(tl, bl) + _dist(tr, br)) / 2.0
    return width, height


def centroid(points) -> np.ndarray:
    p = as_points(points)
    if len(p) == 0:
        raise ValueError("Centroid of an empty point set is undefined")
    return p.mean(axis=0)


def quadrant(point, center) -> int:
    """0 = top-left, 1 = top-right, 2 = bottom-right, 3 = bottom-left of `center`."""
    x, y = float(point[0]), float(point[1])
    cx, cy = float(center[0]), float(center[1])
    if x < cx and y < cy:
        return TOP_LEFT
    if x >= cx and y < cy:
        return TOP_RIGHT
    if x >= cx and y >= cy:
        return BOTTOM_RIGHT
    return BOTTOM_LEFT


def bounding_box(points) -> Tuple[float, float, float, float]:
    """Axis-aligned (min_x, min_y, max_x, max_y)."""
    p = as_points(points)
    if len(p) == 0:
        raise ValueError("Bounding box of an empty point set is undefined")
    mn = p.min(axis=0)
    mx = p.max(axis=0)
    return float(mn[0]), float(mn[1]), float(mx[0]), float(mx[1])
