"""
Fixed-interval driver for ScanEngine.run_cycle.

One background thread ticks the engine; a cycle that overruns the interval
just delays the next tick, so cycles never overlap. `stop()` cancels the
next tick and any pending capture countdown and turns detection off;
`start()` turns it back on.
"""
from __future__ import annotations
from typing import Optional
import logging
import threading
import time

from docscan.engine.scanner import ScanEngine

logger = logging.getLogger(__name__)


class DetectionLoop:
    def __init__(self, engine: ScanEngine, interval_ms: Optional[int] = None):
        self.engine = engine
        self.interval_ms = engine.config.cycle_interval_ms if interval_ms is None else int(interval_ms)
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self.cycles = 0

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> "DetectionLoop":
        if self.running:
            return self
        self._stop.clear()
        if not self.engine.detecting:
            # stop() turned detection off; a restarted loop turns it back on
            self.engine.set_detecting(True)
        self._thread = threading.Thread(target=self._run, name="docscan-detect", daemon=True)
        self._thread.start()
        logger.info("Detection loop started (%d ms)", self.interval_ms)
        return self

    def stop(self, timeout: Optional[float] = 2.0) -> None:
        self._stop.set()
        self.engine.set_detecting(False)
        if self._thread is not None:
            self._thread.join(timeout)
            if self._thread.is_alive():
                logger.warning("Detection loop did not stop within %.1fs", timeout)
            self._thread = None
        logger.info("Detection loop stopped after %d cycles", self.cycles)

    def _run(self) -> None:
        interval = self.interval_ms / 1000.0
        while not self._stop.is_set():
            started = time.monotonic()
            try:
                self.engine.run_cycle()
            except Exception:
                logger.exception("Detection cycle failed")
            self.cycles += 1
            remaining = interval - (time.monotonic() - started)
            if self._stop.wait(max(0.0, remaining)):
                break

    def __enter__(self):
        return self.start()

    def __exit__(self, *exc):
        self.stop()
