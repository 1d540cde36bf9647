"""
Scan engine: one detection cycle, the capture surface, and the callbacks
to the presentation layer.

Threading model
---------------
- `run_cycle()` is single-flight: a cycle that finds another one in flight
  returns None immediately instead of waiting.
- Tracker state is only touched while holding the engine's state lock.
- Rectification runs on a one-worker executor over a copy of the frame, so
  it never reads the live buffer.
- Mode toggles bump a generation counter; a cycle or countdown that started
  under an older generation does not apply its result.
"""
from __future__ import annotations
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Callable, Optional
import logging
import threading
import time

import numpy as np

from docscan.core.config import EngineConfig
from docscan.core.contracts import (
    ContourSource, Corners, DetectionSample, FrameSource, QualityReport, RectifiedImage,
)
from docscan.geometry.contours import DisabledContourSource, simulated_a4_quad
from docscan.geometry.detect import detect, placeholder_quad
from docscan.geometry.rectify import rectify
from docscan.tracking.stability import TRIGGER_CONSECUTIVE, StabilityTracker

logger = logging.getLogger(__name__)


def _monotonic_ms() -> int:
    return int(time.monotonic() * 1000)


class ScanEngine:
    """
    Drives detection -> quality -> stability -> capture for one camera.

    Args:
        frame_source: supplies the current frame.
        contour_source: supplies candidate polygons; None disables detection
            (every cycle then reports no document).
        config: EngineConfig (defaults if omitted). The engine keeps its own copy.
        on_good_detection(corners), on_capture_ready(rectified),
        on_detection_lost(): optional callbacks.
        clock: returns the current time in ms (monotonic by default).
    """

    def __init__(
        self,
        frame_source: FrameSource,
        contour_source: Optional[ContourSource] = None,
        config: Optional[EngineConfig] = None,
        on_good_detection: Optional[Callable[[Corners], None]] = None,
        on_capture_ready: Optional[Callable[[RectifiedImage], None]] = None,
        on_detection_lost: Optional[Callable[[], None]] = None,
        clock: Optional[Callable[[], int]] = None,
    ):
        # own copy; set_auto_capture mutates it
        self.config = config.replace() if config is not None else EngineConfig()
        self.frame_source = frame_source
        self.contour_source = contour_source or DisabledContourSource()
        self.on_good_detection = on_good_detection
        self.on_capture_ready = on_capture_ready
        self.on_detection_lost = on_detection_lost
        self._clock = clock or _monotonic_ms

        self.tracker = StabilityTracker(self.config)
        self.detecting = True
        self.last_report: Optional[QualityReport] = None

        self._cycle_lock = threading.Lock()
        self._state_lock = threading.RLock()
        self._generation = 0
        self._last_frame: Optional[np.ndarray] = None
        self._countdown: Optional[threading.Timer] = None
        self._pending: Optional[Future] = None
        self._cycle_started_ms: Optional[int] = None
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="docscan-rectify")
        self._closed = False

        logger.info("ScanEngine initialized (contours=%s)", type(self.contour_source).__name__)
        logger.debug("Config: %s", self.config)

    # ------------------------------------------------------------------ #
    # Status                                                               #
    # ------------------------------------------------------------------ #

    @property
    def busy(self) -> bool:
        return self._cycle_lock.locked()

    @property
    def processing_indicator(self) -> bool:
        """True while a cycle runs, but only up to the indicator timeout."""
        started = self._cycle_started_ms
        if started is None:
            return False
        return self._clock() - started < self.config.processing_indicator_timeout_ms

    @property
    def last_quad(self) -> Optional[Corners]:
        return self.tracker.last_quad

    @property
    def capture_pending(self) -> bool:
        with self._state_lock:
            return self._countdown is not None or self._busy_capturing()

    # ------------------------------------------------------------------ #
    # Detection cycle                                                      #
    # ------------------------------------------------------------------ #

    def run_cycle(self, now_ms: Optional[int] = None) -> Optional[DetectionSample]:
        """
        Process the current frame once. Returns the cycle's DetectionSample,
        or None if detection is off, a cycle is already running, or the
        result was discarded because detection was toggled meanwhile.
        """
        if not self.detecting or self._closed:
            return None
        if not self._cycle_lock.acquire(blocking=False):
            logger.debug("Cycle skipped: previous cycle still running")
            return None
        try:
            ts = self._clock() if now_ms is None else int(now_ms)
            self._cycle_started_ms = self._clock()
            with self._state_lock:
                generation = self._generation

            frame = self.frame_source.current_frame()
            try:
                sample, report = detect(frame, self.contour_source, self.config, ts)
            except Exception:
                logger.exception("Error in document detection")
                sample, report = DetectionSample(quad=None, is_good=False, timestamp_ms=ts), None

            with self._state_lock:
                if generation != self._generation or not self.detecting:
                    logger.debug("Cycle result discarded after cancellation")
                    return None
                if frame is not None:
                    self._last_frame = frame
                self.last_report = report
                update = self.tracker.update(sample)
                if update.fire:
                    self._schedule_capture(update.trigger, update.quad)
        finally:
            self._cycle_started_ms = None
            self._cycle_lock.release()

        if sample.is_good and self.on_good_detection:
            self.on_good_detection(sample.quad)
        if update.lost and self.on_detection_lost:
            self.on_detection_lost()
        return sample

    # ------------------------------------------------------------------ #
    # Capture                                                              #
    # ------------------------------------------------------------------ #

    def _schedule_capture(self, trigger: Optional[str], quad: Optional[Corners]) -> None:
        """Start the countdown; `quad` is the outline as it was when the trigger fired."""
        cfg = self.config
        delay_ms = cfg.consecutive_capture_delay_ms if trigger == TRIGGER_CONSECUTIVE else cfg.stable_capture_delay_ms
        self._cancel_countdown()
        generation = self._generation
        held = quad.copy() if quad is not None else None
        timer = threading.Timer(delay_ms / 1000.0, self._countdown_elapsed, args=(generation, held))
        timer.daemon = True
        self._countdown = timer
        timer.start()
        logger.debug("Capture countdown started (%s, %d ms)", trigger, delay_ms)

    def _countdown_elapsed(self, generation: int, quad: Optional[Corners]) -> None:
        with self._state_lock:
            if generation != self._generation or self._countdown is None:
                return
            self._countdown = None
            if self._start_capture(quad) is None:
                # nothing captured: re-arm so a steady page can trigger again
                self.tracker.reset()

    def _cancel_countdown(self) -> None:
        if self._countdown is not None:
            self._countdown.cancel()
            self._countdown = None

    def _busy_capturing(self) -> bool:
        return self._pending is not None and not self._pending.done()

    def request_capture(self) -> Optional[Future]:
        """
        Capture now. Manual and automatic captures both land here: the frame
        is snapshotted, the tracker reset, and rectification submitted. A
        capture already in progress is returned instead of starting another.
        Returns None when there is no document to capture.
        """
        with self._state_lock:
            return self._start_capture(self.tracker.last_quad)

    def _start_capture(self, quad: Optional[Corners]) -> Optional[Future]:
        # caller holds the state lock
        if self._closed:
            return None
        if self._busy_capturing():
            return self._pending
        frame = self._last_frame
        if quad is None or frame is None:
            logger.info("Capture requested but no document is detected")
            return None

        snapshot = frame.copy()
        quad = quad.copy()
        self._cancel_countdown()
        self._generation += 1
        self.tracker.reset()
        if self.config.pause_after_capture:
            self.detecting = False
        self._pending = self._executor.submit(self._rectify_and_deliver, snapshot, quad)
        logger.info("Capture started")
        return self._pending

    def capture_upload(self, image: np.ndarray) -> Optional[Future]:
        """
        Rectify a still image using the centred placeholder quad. Like
        `request_capture`, a capture already in progress is returned instead,
        and a closed engine returns None.
        """
        h, w = image.shape[:2]
        quad = placeholder_quad(w, h)
        with self._state_lock:
            if self._closed:
                return None
            if self._busy_capturing():
                return self._pending
            self._cancel_countdown()
            self._generation += 1
            self.tracker.reset()
            self._pending = self._executor.submit(self._rectify_and_deliver, image.copy(), quad)
            return self._pending

    def _rectify_and_deliver(self, snapshot: np.ndarray, quad: Corners) -> RectifiedImage:
        result = rectify(snapshot, quad, self.config)
        logger.info("Capture ready: %dx%d", result.width, result.height)
        if self.on_capture_ready:
            try:
                self.on_capture_ready(result)
            except Exception:
                logger.exception("on_capture_ready callback failed")
                raise
        return result

    # ------------------------------------------------------------------ #
    # Mode changes                                                         #
    # ------------------------------------------------------------------ #

    def _cancel_and_reset(self) -> None:
        self._cancel_countdown()
        self._generation += 1
        self.tracker.reset()

    def set_detecting(self, enabled: bool) -> None:
        with self._state_lock:
            self.detecting = bool(enabled)
            self._cancel_and_reset()
        logger.info("Detection %s", "enabled" if enabled else "disabled")

    def set_auto_capture(self, enabled: bool) -> None:
        with self._state_lock:
            self.config.auto_capture_enabled = bool(enabled)
            self._cancel_and_reset()
        logger.info("Auto-capture %s", "enabled" if enabled else "disabled")

    def set_contour_source(self, source: Optional[ContourSource]) -> None:
        with self._state_lock:
            self.contour_source = source or DisabledContourSource()
            self._cancel_and_reset()
        logger.info("Contour source set to %s", type(self.contour_source).__name__)

    def simulate_detection(self) -> Optional[Corners]:
        """
        Pretend a centred A4 page has been stable for a while, as the
        fallback mode does when no vision backend is available. The tracker
        is primed so capture is enabled (and auto-capture may fire).
        """
        frame = self.frame_source.current_frame()
        if frame is None:
            return None
        h, w = frame.shape[:2]
        quad = Corners(pts=simulated_a4_quad(w, h))
        with self._state_lock:
            self._last_frame = frame
            self.tracker.prime(quad)
            fire, trigger = self.tracker.check_trigger()
            if fire:
                self._schedule_capture(trigger, quad)
        if self.on_good_detection:
            self.on_good_detection(quad)
        return quad

    def close(self) -> None:
        with self._state_lock:
            self._closed = True
            self.detecting = False
            self._cancel_and_reset()
        self._executor.shutdown(wait=True)
        logger.info("ScanEngine closed")

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()
