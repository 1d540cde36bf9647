# docscan/geometry/contours.py
"""
Contour sources: where candidate polygons come from.

The selector only sees already-approximated polygons, so the extraction
backend can be swapped per platform (OpenCV, a simulated A4 page for demos
and tests, a fixed list for replays, or nothing at all).
"""
from __future__ import annotations
from typing import Dict, List, Optional, Sequence
import logging

import cv2
import numpy as np

from docscan.core.config import A4_RATIO, EngineConfig, default_contour_params
from docscan.core.contracts import as_points

logger = logging.getLogger(__name__)


def _odd(k: int) -> int:
    k = int(k)
    return k + 1 if k % 2 == 0 else k


class OpenCVContourSource:
    """
    Adaptive-threshold contour extraction:
    gray -> Gaussian blur -> adaptive threshold (inverted) -> morphological
    close -> findContours(RETR_LIST) -> approxPolyDP(eps * perimeter).
    """

    def __init__(self, params: Optional[Dict] = None):
        self.params = {**default_contour_params(), **(params or {})}

    @classmethod
    def from_config(cls, cfg: EngineConfig) -> "OpenCVContourSource":
        return cls(cfg.contours)

    def _binarize(self, frame: np.ndarray) -> np.ndarray:
        if frame.ndim == 3:
            code = cv2.COLOR_BGRA2GRAY if frame.shape[2] == 4 else cv2.COLOR_BGR2GRAY
            gray = cv2.cvtColor(frame, code)
        else:
            gray = frame
        k = _odd(self.params["blur_ksize"])
        if k > 1:
            gray = cv2.GaussianBlur(gray, (k, k), 0)
        binary = cv2.adaptiveThreshold(
            gray, 255,
            cv2.ADAPTIVE_THRESH_GAUSSIAN_C,
            cv2.THRESH_BINARY_INV,
            max(3, _odd(self.params["block_size"])),
            self.params["c"],
        )
        m = int(self.params["close_ksize"])
        if m > 1:
            binary = cv2.morphologyEx(binary, cv2.MORPH_CLOSE, np.ones((m, m), np.uint8))
        return binary

    def extract_quad_candidates(self, frame: np.ndarray) -> List[np.ndarray]:
        if frame is None or frame.size == 0:
            return []
        try:
            binary = self._binarize(frame)
            cnts, _ = cv2.findContours(binary, cv2.RETR_LIST, cv2.CHAIN_APPROX_SIMPLE)
        except cv2.error as e:
            logger.warning("Contour extraction failed: %s", e)
            return []

        eps = float(self.params["approx_epsilon"])
        out = []
        for c in cnts:
            if len(c) < 3:
                continue
            peri = cv2.arcLength(c, True)
            approx = cv2.approxPolyDP(c, eps * peri, True)
            out.append(approx.reshape(-1, 2).astype(np.float64))
        logger.debug("[contours] %d contours, %d candidates", len(cnts), len(out))
        return out


def simulated_a4_quad(frame_w: int, frame_h: int, fraction: float = 0.7) -> np.ndarray:
    """
    A centred portrait A4 page: on a landscape frame it spans `fraction` of the
    height, on a portrait frame `fraction` of the width.
    """
    cx, cy = frame_w / 2.0, frame_h / 2.0
    if frame_w > frame_h:
        doc_h = frame_h * fraction
        doc_w = doc_h / A4_RATIO
    else:
        doc_w = frame_w * fraction
        doc_h = doc_w * A4_RATIO
    return np.array([
        [cx - doc_w / 2, cy - doc_h / 2],
        [cx + doc_w / 2, cy - doc_h / 2],
        [cx + doc_w / 2, cy + doc_h / 2],
        [cx - doc_w / 2, cy + doc_h / 2],
    ], dtype=np.float64)


class SimulatedContourSource:
    """Pretends a page is always centred in view. Useful without a vision backend."""

    def __init__(self, fraction: float = 0.7):
        self.fraction = fraction

    def extract_quad_candidates(self, frame: np.ndarray) -> List[np.ndarray]:
        if frame is None or frame.size == 0:
            return []
        h, w = frame.shape[:2]
        return [simulated_a4_quad(w, h, self.fraction)]


class FixedContourSource:
    """Returns the same candidates every cycle, e.g. for replays."""

    def __init__(self, candidates: Sequence):
        self.candidates = [as_points(c) for c in candidates]

    def extract_quad_candidates(self, frame: np.ndarray) -> List[np.ndarray]:
        return [c.copy() for c in self.candidates]


class DisabledContourSource:
    """No backend: every cycle reports no document."""

    def extract_quad_candidates(self, frame: np.ndarray) -> List[np.ndarray]:
        return []
