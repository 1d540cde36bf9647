#!/usr/bin/env python3
"""
Detect a document in a still image, draw the detection and write the
rectified scan.

Example:
    python -m tools.scan_image page.jpg --out_dir tests/output --warp
"""
from __future__ import annotations
import argparse
import logging
import os

import cv2
import numpy as np

from docscan.core.config import EngineConfig, load_config
from docscan.core.contracts import Corners
from docscan.core.logs import configure_logging, default_log_path
from docscan.geometry.contours import OpenCVContourSource
from docscan.geometry.detect import detect, placeholder_quad
from docscan.geometry.rectify import rectify
from docscan.io.ingest import load_image, save_image

logger = logging.getLogger("scan_image")

GOOD = (0, 200, 0)
WEAK = (0, 160, 255)


def draw_quad(img, quad, color, thickness=2):
    q = quad.astype(int).reshape(4, 2)
    cv2.polylines(img, [q], True, color, thickness, lineType=cv2.LINE_AA)
    for x, y in q:
        cv2.circle(img, (int(x), int(y)), 6, color, -1, lineType=cv2.LINE_AA)


def parse_args():
    ap = argparse.ArgumentParser(description="Run document detection on an image, visualize, and rectify.")
    ap.add_argument("image", help="Path to input image.")
    ap.add_argument("--config", help="YAML engine config (defaults are used otherwise).")
    ap.add_argument("--out_dir", default="tests/output", help="Directory for outputs.")
    ap.add_argument("--out", default=None, help="Output viz PNG path. Default: <out_dir>/<image_basename>_viz.png")
    ap.add_argument("--rect", default=None, help="Rectified PNG path. Default: <out_dir>/<image_basename>_rect.png")
    ap.add_argument("--warp", action="store_true", help="Use a homography warp instead of the bounding-box crop.")
    ap.add_argument("--long_side", type=int, default=None, help="Output long side in pixels.")
    ap.add_argument("--placeholder", action="store_true",
                    help="Skip detection and rectify the centred 70%% placeholder region.")
    ap.add_argument("--debug", action="store_true", help="Enable debug logging.")
    ap.add_argument("--log_file", nargs="?", const="", default=None,
                    help="Also write the log to a file (timestamped name if no path given).")
    return ap.parse_args()


def main():
    args = parse_args()
    log_file = args.log_file
    if log_file == "":
        log_file = default_log_path("scan_image")
    configure_logging(args.debug, log_file)

    try:
        cfg = load_config(args.config) if args.config else EngineConfig()
        img = load_image(args.image)
    except (FileNotFoundError, ValueError) as e:
        raise SystemExit(str(e))

    overrides = {}
    if args.warp:
        overrides["perspective_warp"] = True
    if args.long_side is not None:
        overrides["output_long_side"] = args.long_side
    if overrides:
        cfg = cfg.replace(**overrides)

    os.makedirs(args.out_dir, exist_ok=True)
    base = os.path.splitext(os.path.basename(args.image))[0]
    out_viz = args.out or os.path.join(args.out_dir, f"{base}_viz.png")
    out_rect = args.rect or os.path.join(args.out_dir, f"{base}_rect.png")

    h, w = img.shape[:2]
    vis = img.copy()
    quad = None

    if args.placeholder:
        quad = placeholder_quad(w, h)
        draw_quad(vis, quad.pts, WEAK, 2)
    else:
        sample, report = detect(img, OpenCVContourSource.from_config(cfg), cfg)
        if sample.quad is not None:
            quad = sample.quad
            logger.info(
                "Detection: good=%s area%%=%.4f aspect=%.3f convex=%s",
                report.is_good, report.area_ratio, report.aspect_ratio, report.convex,
            )
            logger.debug("quad=\n%s", np.round(quad.pts, 1))
            draw_quad(vis, quad.pts, GOOD if sample.is_good else WEAK, 3)
        else:
            logger.info("No document detected.")
            cv2.putText(vis, "NO DETECTION", (20, 40),
                        cv2.FONT_HERSHEY_SIMPLEX, 1.0, (0, 0, 255), 2, cv2.LINE_AA)

    if isinstance(quad, Corners):
        result = rectify(img, quad, cfg)
        save_image(out_rect, result.pixels)
        logger.info("Saved rectified %dx%d -> %s", result.width, result.height, out_rect)

    save_image(out_viz, vis)
    logger.info("Saved visualization -> %s", out_viz)


if __name__ == "__main__":
    main()
