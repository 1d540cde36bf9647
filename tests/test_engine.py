"""
ScanEngine and DetectionLoop: auto-capture end to end, manual capture,
cancellation, single-flight cycles and the fallback modes. Timestamps are
passed explicitly where the tracker's timing matters; real time only drives
the capture countdown and the loop.
"""
from __future__ import annotations
import threading
import time

import numpy as np
import pytest

from docscan.core.config import EngineConfig
from docscan.core.contracts import RectifiedImage
from docscan.engine.loop import DetectionLoop
from docscan.engine.scanner import ScanEngine
from docscan.geometry.contours import FixedContourSource, SimulatedContourSource
from docscan.io.ingest import StaticFrameSource

FRAME_W, FRAME_H = 640, 480

# portrait A4 page, about a quarter of the frame
PAGE = np.array([[200, 70], [440, 70], [440, 409], [200, 409]], dtype=np.float64)


def _frame() -> np.ndarray:
    frame = np.full((FRAME_H, FRAME_W, 3), 40, np.uint8)
    frame[70:409, 200:440] = 230
    return frame


class _Captures:
    """Collects on_capture_ready results and signals the first one."""

    def __init__(self):
        self.results = []
        self.event = threading.Event()

    def __call__(self, result):
        self.results.append(result)
        self.event.set()


class _SwitchableSource:
    def __init__(self, candidates):
        self.candidates = candidates

    def extract_quad_candidates(self, frame):
        return [c.copy() for c in self.candidates]


class _BlockingSource:
    """Holds every cycle inside extraction until released."""

    def __init__(self):
        self.entered = threading.Event()
        self.release = threading.Event()

    def extract_quad_candidates(self, frame):
        self.entered.set()
        self.release.wait(5)
        return [PAGE.copy()]


def _engine(source=None, config=None, **callbacks) -> ScanEngine:
    return ScanEngine(
        StaticFrameSource(_frame()),
        source if source is not None else FixedContourSource([PAGE]),
        config or EngineConfig(),
        **callbacks,
    )


# ---------- auto-capture ---------- #

def test_three_quick_cycles_auto_capture():
    captures = _Captures()
    good = []
    with _engine(on_capture_ready=captures, on_good_detection=good.append) as engine:
        for t in (0, 100, 200):
            sample = engine.run_cycle(now_ms=t)
            assert sample.is_good
        assert len(good) == 3
        assert engine.capture_pending
        assert captures.event.wait(3)
    assert len(captures.results) == 1
    res = captures.results[0]
    assert isinstance(res, RectifiedImage)
    assert res.height == 1240
    assert res.width == pytest.approx(1240 * 240 / 339, abs=2)


def test_capture_pauses_detection_and_resets_tracker():
    captures = _Captures()
    with _engine(on_capture_ready=captures) as engine:
        for t in (0, 100, 200):
            engine.run_cycle(now_ms=t)
        assert captures.event.wait(3)
        assert not engine.detecting
        assert engine.tracker.state.stable_count == 0
        assert engine.last_quad is None
        assert engine.run_cycle(now_ms=300) is None


def test_auto_capture_disabled_waits_for_manual():
    captures = _Captures()
    with _engine(config=EngineConfig(auto_capture_enabled=False), on_capture_ready=captures) as engine:
        for t in range(0, 1500, 100):
            engine.run_cycle(now_ms=t)
        assert not engine.capture_pending
        future = engine.request_capture()
        assert future is not None
        assert future.result(3).height == 1240
    assert len(captures.results) == 1


def test_set_auto_capture_off_cancels_countdown():
    captures = _Captures()
    cfg = EngineConfig(consecutive_capture_delay_ms=300)
    with _engine(config=cfg, on_capture_ready=captures) as engine:
        for t in (0, 100, 200):
            engine.run_cycle(now_ms=t)
        assert engine.capture_pending
        engine.set_auto_capture(False)
        assert not engine.capture_pending
        assert not captures.event.wait(0.6)


def test_detection_off_cancels_countdown():
    captures = _Captures()
    cfg = EngineConfig(consecutive_capture_delay_ms=300)
    with _engine(config=cfg, on_capture_ready=captures) as engine:
        for t in (0, 100, 200):
            engine.run_cycle(now_ms=t)
        engine.set_detecting(False)
        assert not captures.event.wait(0.6)
        assert engine.run_cycle(now_ms=300) is None


def test_dropped_frame_during_countdown_still_captures():
    captures = _Captures()
    source = _SwitchableSource([PAGE])
    with _engine(source=source, on_capture_ready=captures) as engine:
        for t in (0, 50, 100):
            engine.run_cycle(now_ms=t)
        assert engine.capture_pending

        # one empty frame: the low stable count makes the tracker forget the quad
        source.candidates = []
        engine.run_cycle(now_ms=150)
        assert engine.last_quad is None

        # the countdown captures the outline it fired on
        assert captures.event.wait(3)
        assert captures.results[0].height == 1240
        assert not engine.tracker.state.auto_capturing

        # and auto-capture is armed for the next page
        captures.event.clear()
        source.candidates = [PAGE]
        engine.set_detecting(True)
        for t in (1000, 1050, 1100):
            engine.run_cycle(now_ms=t)
        assert captures.event.wait(3)
    assert len(captures.results) == 2


def test_set_auto_capture_leaves_shared_config_alone():
    cfg = EngineConfig()
    with _engine(config=cfg) as first, _engine(config=cfg) as second:
        first.set_auto_capture(False)
        assert not first.config.auto_capture_enabled
        assert not first.tracker.config.auto_capture_enabled
        assert second.config.auto_capture_enabled
        assert cfg.auto_capture_enabled


# ---------- manual capture ---------- #

def test_manual_capture_without_document():
    with _engine(source=_SwitchableSource([])) as engine:
        engine.run_cycle(now_ms=0)
        assert engine.request_capture() is None


def test_concurrent_capture_requests_converge():
    gate = threading.Event()
    delivered = []

    def slow_callback(result):
        gate.wait(5)
        delivered.append(result)

    cfg = EngineConfig(auto_capture_enabled=False)
    with _engine(config=cfg, on_capture_ready=slow_callback) as engine:
        engine.run_cycle(now_ms=0)
        first = engine.request_capture()
        second = engine.request_capture()
        assert first is not None
        assert second is first
        gate.set()
        first.result(3)
    assert len(delivered) == 1


def test_capture_upload_uses_placeholder():
    captures = _Captures()
    with _engine(on_capture_ready=captures) as engine:
        image = np.full((1000, 800, 3), 200, np.uint8)
        res = engine.capture_upload(image).result(3)
    # 70% of 800x1000 is 560x700, portrait
    assert res.height == 1240
    assert res.width == pytest.approx(1240 * 560 / 700, abs=1)
    assert len(captures.results) == 1 and captures.results[0] is res


def test_capture_upload_converges_with_pending_capture():
    gate = threading.Event()
    delivered = []

    def slow_callback(result):
        gate.wait(5)
        delivered.append(result)

    with _engine(on_capture_ready=slow_callback) as engine:
        image = np.full((1000, 800, 3), 200, np.uint8)
        first = engine.capture_upload(image)
        assert engine.capture_upload(image) is first
        assert engine.request_capture() is first
        gate.set()
        first.result(3)
    assert len(delivered) == 1


def test_capture_upload_after_close():
    engine = _engine()
    engine.close()
    assert engine.capture_upload(np.full((100, 80, 3), 200, np.uint8)) is None


# ---------- cycle behaviour ---------- #

def test_detection_lost_callback():
    lost = []
    source = _SwitchableSource([PAGE])
    with _engine(source=source, on_detection_lost=lambda: lost.append(True)) as engine:
        engine.run_cycle(now_ms=0)
        assert engine.last_quad is not None
        source.candidates = []
        engine.run_cycle(now_ms=100)
        assert lost == [True]
        assert engine.last_quad is None


def test_cycle_is_single_flight():
    source = _BlockingSource()
    with _engine(source=source, config=EngineConfig(auto_capture_enabled=False)) as engine:
        results = []
        worker = threading.Thread(target=lambda: results.append(engine.run_cycle(now_ms=0)))
        worker.start()
        assert source.entered.wait(3)
        assert engine.busy
        assert engine.processing_indicator
        assert engine.run_cycle(now_ms=10) is None
        source.release.set()
        worker.join(3)
        assert results[0] is not None and results[0].is_good
        assert not engine.busy


def test_cycle_result_discarded_after_toggle():
    source = _BlockingSource()
    with _engine(source=source) as engine:
        results = []
        worker = threading.Thread(target=lambda: results.append(engine.run_cycle(now_ms=0)))
        worker.start()
        assert source.entered.wait(3)
        engine.set_detecting(False)
        engine.set_detecting(True)
        source.release.set()
        worker.join(3)
        assert results == [None]
        assert engine.tracker.state.stable_count == 0


def test_detector_error_counts_as_no_document():
    class Broken:
        def extract_quad_candidates(self, frame):
            raise RuntimeError("backend crashed")

    with _engine(source=Broken()) as engine:
        sample = engine.run_cycle(now_ms=0)
        assert sample is not None
        assert sample.quad is None and not sample.is_good


def test_no_contour_source_reports_nothing():
    engine = ScanEngine(StaticFrameSource(_frame()))
    try:
        sample = engine.run_cycle(now_ms=0)
        assert sample.quad is None
    finally:
        engine.close()


# ---------- fallback mode ---------- #

def test_simulate_detection_primes_and_fires():
    captures = _Captures()
    good = []
    with _engine(source=SimulatedContourSource(), on_capture_ready=captures,
                 on_good_detection=good.append) as engine:
        quad = engine.simulate_detection()
        assert quad is not None
        assert good == [quad]
        assert engine.tracker.state.stable_count == 15
        assert captures.event.wait(3)


def test_simulate_detection_manual_only():
    cfg = EngineConfig(auto_capture_enabled=False)
    with _engine(source=SimulatedContourSource(), config=cfg) as engine:
        engine.simulate_detection()
        assert not engine.capture_pending
        res = engine.request_capture().result(3)
        assert max(res.width, res.height) == 1240


# ---------- loop ---------- #

def test_loop_drives_auto_capture():
    captures = _Captures()
    engine = _engine(config=EngineConfig(cycle_interval_ms=20), on_capture_ready=captures)
    loop = DetectionLoop(engine)
    try:
        loop.start()
        assert loop.running
        assert captures.event.wait(5)
    finally:
        loop.stop()
        engine.close()
    assert loop.cycles >= 3
    assert not loop.running
    assert len(captures.results) == 1


def test_loop_stop_disables_detection():
    engine = _engine(config=EngineConfig(auto_capture_enabled=False))
    with DetectionLoop(engine, interval_ms=10) as loop:
        time.sleep(0.1)
        assert loop.cycles > 0
    assert not loop.running
    assert not engine.detecting
    engine.close()


def test_loop_restart_resumes_detection():
    good = []
    engine = _engine(config=EngineConfig(auto_capture_enabled=False), on_good_detection=good.append)
    loop = DetectionLoop(engine, interval_ms=10)
    try:
        loop.start()
        time.sleep(0.1)
        loop.stop()
        assert not engine.detecting

        good.clear()
        loop.start()
        assert engine.detecting
        time.sleep(0.1)
        assert good
    finally:
        loop.stop()
        engine.close()
