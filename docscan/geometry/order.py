# docscan/geometry/order.py
"""
Corner ordering into [top-left, top-right, bottom-right, bottom-left].

Two policies live here on purpose. The detection path groups corners by
quadrant around the centroid; the rectification path splits them into a top
and a bottom pair. They agree on ordinary convex quads and can disagree on
skewed ones, so neither replaces the other.

Both return their input untouched when it does not hold exactly 4 points.
"""
from __future__ import annotations
import math
import numpy as np

from docscan.core.contracts import as_points
from docscan.geometry.kernel import centroid, quadrant


def order_corners_by_quadrant(points):
    """
    Sort by quadrant around the centroid (TL, TR, BR, BL); points sharing a
    quadrant go farthest-from-centroid first. The order is not guaranteed to
    be a proper clockwise walk for skewed or non-convex input.
    """
    p = as_points(points)
    if len(p) != 4:
        return points
    c = centroid(p)

    def key(i):
        return quadrant(p[i], c), -math.hypot(p[i][0] - c[0], p[i][1] - c[1])

    idx = sorted(range(4), key=key)
    return np.asarray(p[idx], dtype=np.float32)


def order_corners_top_bottom(points):
    """
    Split at the centroid's y into top (y < cy) and bottom (y >= cy), sort
    each half by x, then take [top[0], top[-1], bottom[-1], bottom[0]].

    A half with a single point contributes it once, so a 1/3 or 3/1 split
    cannot produce four distinct corners; the input comes back unchanged in
    that case.
    """
    p = as_points(points)
    if len(p) != 4:
        return points
    cy = centroid(p)[1]
    top = sorted((i for i in range(4) if p[i][1] < cy), key=lambda i: p[i][0])
    bottom = sorted((i for i in range(4) if p[i][1] >= cy), key=lambda i: p[i][0])

    idx = []
    if top:
        idx.append(top[0])
    if len(top) > 1:
        idx.append(top[-1])
    if bottom:
        idx.append(bottom[-1])
    if len(bottom) > 1:
        idx.append(bottom[0])

    if len(idx) != 4:
        return points
    return np.asarray(p[idx], dtype=np.float32)
