# docscan/geometry/rectify.py
from __future__ import annotations
from typing import Optional, Tuple
import logging

import cv2
import numpy as np

from docscan.core.config import EngineConfig
from docscan.core.contracts import Corners, RectifiedImage, as_points
from docscan.geometry.kernel import approximate_dimensions, bounding_box
from docscan.geometry.order import order_corners_top_bottom

logger = logging.getLogger(__name__)

_DEFAULT_LONG_SIDE = 1240


def _as_quad(corners) -> np.ndarray:
    pts = corners.pts if isinstance(corners, Corners) else corners
    return as_points(pts)


def crop_to_quad(image: np.ndarray, corners) -> Optional[np.ndarray]:
    """
    Copy the axis-aligned bounding box of the quad out of `image`, pixel for
    pixel. Skew inside the box is left as is. Returns None when the box does
    not overlap the image.
    """
    q = as_points(order_corners_top_bottom(_as_quad(corners)))
    H, W = image.shape[:2]
    min_x, min_y, max_x, max_y = bounding_box(q)
    x0 = int(np.clip(np.floor(min_x), 0, W))
    y0 = int(np.clip(np.floor(min_y), 0, H))
    x1 = int(np.clip(np.floor(max_x), 0, W))
    y1 = int(np.clip(np.floor(max_y), 0, H))
    if x1 <= x0 or y1 <= y0:
        return None
    return image[y0:y1, x0:x1].copy()


def compute_output_size(width: int, height: int, long_side: int = _DEFAULT_LONG_SIDE) -> Tuple[int, int]:
    """
    (W, H) with the longer side fixed at `long_side` and the source aspect
    kept. Portrait when height > width, landscape otherwise.
    """
    if width <= 0 or height <= 0:
        raise ValueError(f"Cannot size output for a {width}x{height} image")
    aspect = float(width) / float(height)
    if height > width:
        out_h = int(long_side)
        out_w = max(1, int(round(long_side * aspect)))
    else:
        out_w = int(long_side)
        out_h = max(1, int(round(long_side / aspect)))
    return out_w, out_h


def fit_to_canvas(image: np.ndarray, out_w: int, out_h: int, background: int = 255) -> np.ndarray:
    """Scale `image` to fit inside a blank out_w x out_h canvas, centred."""
    h, w = image.shape[:2]
    if w <= 0 or h <= 0:
        raise ValueError("Cannot fit an empty image")
    shape = (out_h, out_w) + tuple(image.shape[2:])
    canvas = np.full(shape, background, dtype=image.dtype)

    scale = min(out_w / float(w), out_h / float(h))
    new_w = max(1, min(out_w, int(round(w * scale))))
    new_h = max(1, min(out_h, int(round(h * scale))))
    interp = cv2.INTER_AREA if scale < 1.0 else cv2.INTER_LINEAR
    resized = cv2.resize(image, (new_w, new_h), interpolation=interp)
    if resized.ndim < canvas.ndim:
        resized = resized.reshape(new_h, new_w, -1)

    x = (out_w - new_w) // 2
    y = (out_h - new_h) // 2
    canvas[y:y + new_h, x:x + new_w] = resized
    return canvas


def warp_perspective(image: np.ndarray, corners, long_side: int = _DEFAULT_LONG_SIDE) -> np.ndarray:
    """
    Map the quad onto a flat rectangle with a homography. The target keeps
    the quad's mean side lengths, scaled so its longer side is `long_side`.
    """
    q = as_points(order_corners_top_bottom(_as_quad(corners)))
    if q.shape != (4, 2):
        raise ValueError("warp_perspective needs 4 corners")
    width, height = approximate_dimensions(q)
    if width < 1.0 or height < 1.0:
        raise ValueError(f"Degenerate quad for warp: {width:.1f}x{height:.1f}")
    dst_w, dst_h = compute_output_size(int(round(width)), int(round(height)), long_side)

    src = q.astype(np.float32)
    dst = np.array([[0, 0],
                    [dst_w - 1, 0],
                    [dst_w - 1, dst_h - 1],
                    [0, dst_h - 1]], dtype=np.float32)
    Hmat = cv2.getPerspectiveTransform(src, dst)
    return cv2.warpPerspective(image, Hmat, (dst_w, dst_h), flags=cv2.INTER_LINEAR,
                               borderMode=cv2.BORDER_REPLICATE)


def rectify(image: np.ndarray, corners, cfg: Optional[EngineConfig] = None) -> RectifiedImage:
    """
    Turn the captured region into a flat, standard-size image.

    Baseline: bounding-box crop, then scale onto a canvas whose long side is
    `output_long_side`. With `perspective_warp` enabled a homography warp is
    tried first. Failures never propagate: the cropped image, or failing that
    the original, comes back instead.
    """
    cfg = cfg or EngineConfig()
    if image is None or getattr(image, "size", 0) == 0:
        logger.warning("Rectification skipped: empty source image")
        return RectifiedImage(pixels=image, width=0, height=0)

    if cfg.perspective_warp:
        try:
            return RectifiedImage.from_pixels(warp_perspective(image, corners, cfg.output_long_side))
        except (cv2.error, ValueError) as e:
            logger.warning("Perspective warp failed, falling back to crop: %s", e)

    try:
        cropped = crop_to_quad(image, corners)
    except (cv2.error, ValueError) as e:
        logger.warning("Crop failed, returning original: %s", e)
        cropped = None
    if cropped is None:
        logger.warning("Crop produced no pixels, returning original")
        return RectifiedImage.from_pixels(image)

    try:
        h, w = cropped.shape[:2]
        out_w, out_h = compute_output_size(w, h, cfg.output_long_side)
        out = fit_to_canvas(cropped, out_w, out_h, cfg.background)
    except (cv2.error, ValueError) as e:
        logger.warning("Normalisation failed, returning crop: %s", e)
        return RectifiedImage.from_pixels(cropped)

    logger.debug("[rectify] crop %dx%d -> %dx%d", w, h, out_w, out_h)
    return RectifiedImage.from_pixels(out)
