"""
Core contracts and simple data types shared across stages.
"""

from __future__ import annotations
from dataclasses import dataclass
from typing import Iterable, Optional, Protocol, Sequence, Tuple
import numpy as np


def as_points(points: Iterable) -> np.ndarray:
    """
    Coerce a sequence of (x, y) pairs (tuples, lists, an (N, 2) array or an
    OpenCV contour of shape (N, 1, 2)) into a float64 array of shape (N, 2).
    """
    arr = np.asarray(points, dtype=np.float64)
    if arr.size == 0:
        return arr.reshape(0, 2)
    return arr.reshape(-1, 2)


@dataclass
class Corners:
    """
    The four document corners in frame coordinates (pixels), ordered
    [top-left, top-right, bottom-right, bottom-left].

    pts: np.ndarray with shape (4, 2), dtype float32
    """
    pts: np.ndarray

    def __post_init__(self):
        self.pts = np.asarray(self.pts, dtype=np.float32).reshape(4, 2)

    def as_tuple(self) -> Tuple[Tuple[float, float], Tuple[float, float], Tuple[float, float], Tuple[float, float]]:
        return tuple(map(tuple, self.pts.astype(float)))  # type: ignore[return-value]

    def copy(self) -> "Corners":
        return Corners(pts=self.pts.copy())


@dataclass(frozen=True)
class DetectionSample:
    """One processing cycle's outcome. Consumed by the stability tracker, then dropped."""
    quad: Optional[Corners]
    is_good: bool
    timestamp_ms: int


@dataclass
class StabilityState:
    stable_count: int = 0
    consecutive_good_count: int = 0
    last_good_timestamp_ms: int = 0
    auto_capturing: bool = False

    def reset(self) -> None:
        self.stable_count = 0
        self.consecutive_good_count = 0
        self.last_good_timestamp_ms = 0
        self.auto_capturing = False


@dataclass
class QualityReport:
    """Measurements behind a good/bad verdict for a candidate quad."""
    area_ratio: float
    aspect_ratio: float
    width: float
    height: float
    convex: bool
    is_good: bool


@dataclass
class RectifiedImage:
    """Final scan output. The caller owns `pixels` once returned."""
    pixels: np.ndarray
    width: int
    height: int

    @classmethod
    def from_pixels(cls, pixels: np.ndarray) -> "RectifiedImage":
        h, w = pixels.shape[:2]
        return cls(pixels=pixels, width=int(w), height=int(h))


class FrameSource(Protocol):
    """Supplies the current raw frame (BGR), or None when nothing is available."""

    def current_frame(self) -> Optional[np.ndarray]:
        ...


class ContourSource(Protocol):
    """
    Supplies already-approximated candidate polygons for a frame. Each
    candidate is an (N, 2) array of vertices in frame coordinates.
    """

    def extract_quad_candidates(self, frame: np.ndarray) -> Sequence[np.ndarray]:
        ...
