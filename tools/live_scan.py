#!/usr/bin/env python3
"""
Run the scan engine against a camera or a video file and save every
capture.

Example:
    python -m tools.live_scan --source 0 --pages 3 --out_dir scans
    python -m tools.live_scan --source clip.mp4 --simulate
"""
from __future__ import annotations
import argparse
import logging
import os
import signal
import threading
from datetime import datetime

from docscan.core.config import EngineConfig, load_config
from docscan.core.logs import configure_logging
from docscan.engine.loop import DetectionLoop
from docscan.engine.scanner import ScanEngine
from docscan.geometry.contours import OpenCVContourSource, SimulatedContourSource
from docscan.io.ingest import VideoFrameSource, save_image

logger = logging.getLogger("live_scan")


def parse_args():
    ap = argparse.ArgumentParser(description="Live document scanning from a camera or video.")
    ap.add_argument("--source", default="0", help="Camera index or video path.")
    ap.add_argument("--config", help="YAML engine config.")
    ap.add_argument("--out_dir", default="scans", help="Where captures are written.")
    ap.add_argument("--pages", type=int, default=1, help="Stop after this many captures (0 = until Ctrl-C).")
    ap.add_argument("--manual", action="store_true", help="Disable auto-capture; press Enter to capture.")
    ap.add_argument("--simulate", action="store_true", help="Use the simulated A4 contour source.")
    ap.add_argument("--width", type=int, default=None)
    ap.add_argument("--height", type=int, default=None)
    ap.add_argument("--debug", action="store_true")
    ap.add_argument("--log_file", default=None)
    return ap.parse_args()


def main():
    args = parse_args()
    configure_logging(args.debug, args.log_file)
    try:
        cfg = load_config(args.config) if args.config else EngineConfig()
    except (FileNotFoundError, ValueError) as e:
        raise SystemExit(str(e))
    if args.manual:
        cfg = cfg.replace(auto_capture_enabled=False)

    source = int(args.source) if args.source.isdigit() else args.source
    try:
        frames = VideoFrameSource(source, width=args.width, height=args.height)
    except RuntimeError as e:
        raise SystemExit(str(e))

    os.makedirs(args.out_dir, exist_ok=True)
    done = threading.Event()
    saved = []

    contours = SimulatedContourSource() if args.simulate else OpenCVContourSource.from_config(cfg)
    engine = ScanEngine(frames, contours, cfg)

    def on_capture_ready(result):
        path = os.path.join(args.out_dir, f"scan_{datetime.now().strftime('%Y%m%d_%H%M%S_%f')}.png")
        save_image(path, result.pixels)
        saved.append(path)
        logger.info("[%d] saved %s (%dx%d)", len(saved), path, result.width, result.height)
        if args.pages and len(saved) >= args.pages:
            done.set()
        else:
            engine.set_detecting(True)

    engine.on_capture_ready = on_capture_ready
    engine.on_detection_lost = lambda: logger.info("Searching for document...")

    signal.signal(signal.SIGINT, lambda *_: done.set())

    with frames, engine, DetectionLoop(engine):
        if args.manual:
            logger.info("Press Enter to capture, Ctrl-C to quit.")
            while not done.is_set():
                try:
                    input()
                except EOFError:
                    break
                if engine.request_capture() is None:
                    logger.info("No document in view.")
        else:
            done.wait()

    logger.info("Scan finished: %d page(s)", len(saved))


if __name__ == "__main__":
    main()
