# docscan/geometry/detect.py
from __future__ import annotations
from typing import Iterable, Optional, Tuple
import logging
import time

import numpy as np

from docscan.core.config import EngineConfig
from docscan.core.contracts import Corners, ContourSource, DetectionSample, QualityReport, as_points
from docscan.geometry.kernel import approximate_dimensions, is_convex, polygon_area
from docscan.geometry.order import order_corners_by_quadrant

logger = logging.getLogger(__name__)

_DEFAULT_CFG = EngineConfig()


# ----------------------------------------------------------------------------- #
# Candidate selection                                                           #
# ----------------------------------------------------------------------------- #

def select_quad(candidates: Iterable, frame_area: float, min_area_fraction: float = 0.02) -> Optional[Corners]:
    """Pick the document among already-approximated candidate polygons.

    - drop anything below `min_area_fraction` of the frame (noise floor)
    - keep only 4-vertex polygons
    - return the largest one, corners ordered by quadrant, or None
    """
    min_area = float(frame_area) * float(min_area_fraction)
    best = None
    best_area = 0.0
    seen = kept = 0

    for cand in candidates:
        seen += 1
        try:
            pts = as_points(cand)
        except (TypeError, ValueError):
            logger.debug("[select] skip malformed candidate")
            continue
        if len(pts) < 3:
            continue
        area = polygon_area(pts)
        if not area > min_area:
            continue
        if len(pts) != 4:
            continue
        kept += 1
        if area > best_area:
            best_area = area
            best = pts

    logger.debug("[select] %d candidates, %d quads above floor %.1f", seen, kept, min_area)
    if best is None:
        return None
    return Corners(pts=order_corners_by_quadrant(best))


def placeholder_quad(frame_w: int, frame_h: int, fraction: float = 0.7) -> Corners:
    """Centred rectangle covering `fraction` of each frame dimension."""
    doc_w, doc_h = frame_w * fraction, frame_h * fraction
    left, top = (frame_w - doc_w) / 2.0, (frame_h - doc_h) / 2.0
    right, bottom = left + doc_w, top + doc_h
    return Corners(pts=np.array([[left, top], [right, top], [right, bottom], [left, bottom]], dtype=np.float32))


# ----------------------------------------------------------------------------- #
# Quality gate                                                                  #
# ----------------------------------------------------------------------------- #

def evaluate_quality(corners: Corners, frame_w: int, frame_h: int,
                     cfg: Optional[EngineConfig] = None) -> QualityReport:
    """
    Score a quad against the acceptance criteria. A detection is good when
    it covers a plausible share of the frame, has page-like proportions
    (portrait or landscape A4, with tolerance for perspective) and is convex.
    """
    cfg = cfg or _DEFAULT_CFG
    pts = corners.pts if isinstance(corners, Corners) else as_points(corners)
    frame_area = float(frame_w) * float(frame_h)

    area = polygon_area(pts)
    area_ratio = area / frame_area if frame_area > 0 else 0.0
    width, height = approximate_dimensions(pts)
    aspect = width / height if height > 0 else float("inf")
    convex = is_convex(pts)

    tol = float(cfg.aspect_tolerance)
    portrait, landscape = 1.0 / cfg.a4_ratio, cfg.a4_ratio
    ok_area = cfg.min_area_ratio < area_ratio < cfg.max_area_ratio
    ok_aspect = abs(aspect - portrait) < tol or abs(aspect - landscape) < tol
    good = bool(frame_area > 0 and ok_area and ok_aspect and convex)

    logger.debug("[quality] area%%=%.4f aspect=%.3f convex=%s -> %s", area_ratio, aspect, convex, good)
    return QualityReport(
        area_ratio=area_ratio,
        aspect_ratio=aspect,
        width=width,
        height=height,
        convex=convex,
        is_good=good,
    )


def is_good_detection(corners: Corners, frame_w: int, frame_h: int,
                      cfg: Optional[EngineConfig] = None) -> bool:
    return evaluate_quality(corners, frame_w, frame_h, cfg).is_good


# ----------------------------------------------------------------------------- #
# One detection pass                                                            #
# ----------------------------------------------------------------------------- #

def _now_ms() -> int:
    return int(time.monotonic() * 1000)


def detect(frame: np.ndarray, source: ContourSource, cfg: Optional[EngineConfig] = None,
           timestamp_ms: Optional[int] = None) -> Tuple[DetectionSample, Optional[QualityReport]]:
    """
    Run candidate extraction, selection and the quality gate on one frame.
    Returns the sample for the stability tracker plus the quality report
    (None when no quad was found).
    """
    cfg = cfg or _DEFAULT_CFG
    ts = _now_ms() if timestamp_ms is None else int(timestamp_ms)
    if frame is None or frame.size == 0:
        return DetectionSample(quad=None, is_good=False, timestamp_ms=ts), None

    h, w = frame.shape[:2]
    candidates = source.extract_quad_candidates(frame)
    quad = select_quad(candidates, float(w * h), cfg.min_candidate_area)
    if quad is None:
        return DetectionSample(quad=None, is_good=False, timestamp_ms=ts), None

    report = evaluate_quality(quad, w, h, cfg)
    return DetectionSample(quad=quad, is_good=report.is_good, timestamp_ms=ts), report
