"""
Temporal stability tracking and the auto-capture decision.

One tracker per engine. It is advanced exactly once per detection cycle and
is the only piece of detection state that survives between cycles.
"""
from __future__ import annotations
from dataclasses import dataclass
from typing import Optional, Tuple
import logging

from docscan.core.config import EngineConfig
from docscan.core.contracts import Corners, DetectionSample, StabilityState

logger = logging.getLogger(__name__)

TRIGGER_CONSECUTIVE = "consecutive"
TRIGGER_STABLE = "stable"


@dataclass
class TrackerUpdate:
    """What changed in one cycle."""
    state: StabilityState
    quad: Optional[Corners]
    fire: bool = False
    trigger: Optional[str] = None
    lost: bool = False


class StabilityTracker:
    """
    Debounces detections before capture.

    Two independent paths can trigger an auto-capture, whichever is satisfied
    first: a short burst of good frames arriving close together, or a slower
    build-up of the capped stable counter. Once fired, further triggers are
    suppressed until `reset()`.
    """

    def __init__(self, config: Optional[EngineConfig] = None):
        self.config = config or EngineConfig()
        self.state = StabilityState()
        self.last_quad: Optional[Corners] = None
        self.last_good = False

    def reset(self) -> None:
        """Zero the counters, re-arm auto-capture and forget the last quad."""
        self.state.reset()
        self.last_quad = None
        self.last_good = False
        logger.debug("Stability state reset")

    def prime(self, quad: Corners, stable_count: Optional[int] = None) -> None:
        """Install a known-good quad as if the scene had already settled."""
        cfg = self.config
        count = cfg.simulated_stable_count if stable_count is None else int(stable_count)
        self.last_quad = quad
        self.last_good = True
        self.state.stable_count = max(0, min(count, cfg.stable_cap))

    def update(self, sample: DetectionSample) -> TrackerUpdate:
        cfg = self.config
        st = self.state
        lost = False

        if sample.is_good and sample.quad is not None:
            if sample.timestamp_ms - st.last_good_timestamp_ms < cfg.consecutive_window_ms:
                st.consecutive_good_count += 1
            else:
                st.consecutive_good_count = 1
            st.last_good_timestamp_ms = sample.timestamp_ms
            st.stable_count = min(st.stable_count + 1, cfg.stable_cap)
            self.last_quad = sample.quad
            self.last_good = True
        elif sample.quad is not None:
            st.consecutive_good_count = 0
            st.stable_count = max(st.stable_count - 1, 0)
            self.last_quad = sample.quad
            self.last_good = False
        else:
            st.consecutive_good_count = 0
            # the forget check reads the counter before this cycle's decrement
            if st.stable_count <= cfg.forget_threshold and self.last_quad is not None:
                self.last_quad = None
                self.last_good = False
                lost = True
                logger.info("Document lost")
            st.stable_count = max(st.stable_count - 1, 0)

        fire, trigger = self.check_trigger()
        if fire:
            logger.info(
                "Auto-capture triggered (%s): consecutive=%d stable=%d",
                trigger, st.consecutive_good_count, st.stable_count,
            )
        return TrackerUpdate(state=st, quad=self.last_quad, fire=fire, trigger=trigger, lost=lost)

    def check_trigger(self) -> Tuple[bool, Optional[str]]:
        cfg = self.config
        st = self.state
        if not cfg.auto_capture_enabled or st.auto_capturing:
            return False, None
        if st.consecutive_good_count >= cfg.consecutive_threshold:
            st.auto_capturing = True
            return True, TRIGGER_CONSECUTIVE
        if st.stable_count >= cfg.stable_threshold:
            st.auto_capturing = True
            return True, TRIGGER_STABLE
        return False, None
