"""
Simple I/O helpers for reading images (BGR, as OpenCV expects) and the
frame sources the engine pulls from.
"""

from __future__ import annotations
from typing import Optional, Union
import logging
import threading

import cv2
import numpy as np

logger = logging.getLogger(__name__)


def load_image(path: str) -> np.ndarray:
    """
    Load an image from disk (BGR).
    Raises FileNotFoundError if not found.
    """
    img = cv2.imread(str(path), cv2.IMREAD_COLOR)
    if img is None:
        raise FileNotFoundError(f"Could not read image at: {path}")
    return img


def save_image(path: str, image: np.ndarray) -> None:
    if not cv2.imwrite(str(path), image):
        raise OSError(f"Could not write image to: {path}")


class StaticFrameSource:
    """Serves the same still image every cycle (uploads, tests)."""

    def __init__(self, image: Optional[np.ndarray] = None):
        self._image = image
        self._lock = threading.Lock()

    def set_frame(self, image: Optional[np.ndarray]) -> None:
        with self._lock:
            self._image = image

    def current_frame(self) -> Optional[np.ndarray]:
        with self._lock:
            return self._image


class VideoFrameSource:
    """
    Wraps cv2.VideoCapture (a device index or a video file). The latest
    frame is read on demand; a failed read yields None.
    """

    def __init__(self, source: Union[int, str] = 0, width: Optional[int] = None, height: Optional[int] = None):
        self.source = source
        self.cap = cv2.VideoCapture(source)
        if not self.cap.isOpened():
            raise RuntimeError(f"Could not open video source: {source}")
        if width:
            self.cap.set(cv2.CAP_PROP_FRAME_WIDTH, width)
        if height:
            self.cap.set(cv2.CAP_PROP_FRAME_HEIGHT, height)
        self._lock = threading.Lock()
        logger.info("Opened video source %s", source)

    def current_frame(self) -> Optional[np.ndarray]:
        with self._lock:
            ok, frame = self.cap.read()
        if not ok:
            logger.debug("Frame read failed on %s", self.source)
            return None
        return frame

    def release(self) -> None:
        with self._lock:
            self.cap.release()
        logger.info("Released video source %s", self.source)

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.release()
