"""
Engine configuration: one explicit EngineConfig passed through every stage.

Values can come from code (keyword arguments), a plain dict, or a YAML file
(see config/engine.yaml). Nested dicts are merged over the defaults the same
way for all three.
"""

from __future__ import annotations
from dataclasses import asdict, dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, Optional, Union
import logging

import yaml

logger = logging.getLogger(__name__)

A4_RATIO = 1.414

_DEFAULT_CONTOURS: Dict[str, Any] = {
    "blur_ksize": 5,
    "block_size": 11,       # adaptive threshold neighbourhood (odd)
    "c": 2,
    "close_ksize": 3,
    "approx_epsilon": 0.02, # fraction of perimeter for approxPolyDP
}


def default_contour_params() -> Dict[str, Any]:
    return dict(_DEFAULT_CONTOURS)


@dataclass
class EngineConfig:
    # capture behaviour
    auto_capture_enabled: bool = True
    consecutive_threshold: int = 3
    stable_threshold: int = 10
    consecutive_capture_delay_ms: int = 200
    stable_capture_delay_ms: int = 300
    pause_after_capture: bool = True

    # quality gate
    min_area_ratio: float = 0.1
    max_area_ratio: float = 0.9
    aspect_tolerance: float = 0.3
    a4_ratio: float = A4_RATIO

    # selector noise floor, relative to frame area
    min_candidate_area: float = 0.02

    # stability tracking
    consecutive_window_ms: int = 300
    stable_cap: int = 20
    forget_threshold: int = 3
    simulated_stable_count: int = 15

    # rectification
    output_long_side: int = 1240
    perspective_warp: bool = False
    background: int = 255

    # scheduling
    cycle_interval_ms: int = 50
    processing_indicator_timeout_ms: int = 500

    contours: Dict[str, Any] = field(default_factory=default_contour_params)

    def __post_init__(self):
        self.validate()

    def validate(self) -> None:
        if not (0.0 <= self.min_area_ratio < self.max_area_ratio <= 1.0):
            raise ValueError(
                f"Need 0 <= min_area_ratio < max_area_ratio <= 1, got "
                f"{self.min_area_ratio} / {self.max_area_ratio}"
            )
        if self.aspect_tolerance <= 0:
            raise ValueError(f"aspect_tolerance must be positive, got {self.aspect_tolerance}")
        if self.a4_ratio <= 0:
            raise ValueError(f"a4_ratio must be positive, got {self.a4_ratio}")
        if self.output_long_side < 1:
            raise ValueError(f"output_long_side must be >= 1, got {self.output_long_side}")
        if self.stable_cap < 1 or not (0 < self.stable_threshold <= self.stable_cap):
            raise ValueError(
                f"stable_threshold must be in (0, stable_cap={self.stable_cap}], got {self.stable_threshold}"
            )
        if self.consecutive_threshold < 1:
            raise ValueError(f"consecutive_threshold must be >= 1, got {self.consecutive_threshold}")
        for name in ("consecutive_window_ms", "consecutive_capture_delay_ms", "stable_capture_delay_ms",
                     "cycle_interval_ms", "processing_indicator_timeout_ms", "forget_threshold"):
            if getattr(self, name) < 0:
                raise ValueError(f"{name} must be >= 0, got {getattr(self, name)}")
        if not (0 <= self.background <= 255):
            raise ValueError(f"background must be a grey level 0..255, got {self.background}")
        unknown = set(self.contours) - set(_DEFAULT_CONTOURS)
        if unknown:
            raise ValueError(f"Unknown contours option(s): {sorted(unknown)}")

    @classmethod
    def from_dict(cls, cfg: Optional[Dict[str, Any]] = None) -> "EngineConfig":
        return cls(**_merge_cfg(cfg))

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    def replace(self, **changes: Any) -> "EngineConfig":
        """Return a copy with `changes` merged in (nested dicts merge, not overwrite)."""
        return EngineConfig.from_dict(_merge_cfg(changes, base=self.to_dict()))


def _merge_cfg(cfg: Optional[Dict[str, Any]], base: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    if base is None:
        base = {f.name: getattr(_DEFAULTS, f.name) for f in fields(EngineConfig)}
        base["contours"] = default_contour_params()
    merged = dict(base)
    if not cfg:
        return merged
    known = {f.name for f in fields(EngineConfig)}
    for k, v in cfg.items():
        if k not in known:
            raise ValueError(f"Unknown config option: {k!r}")
        if isinstance(v, dict) and isinstance(merged.get(k), dict):
            merged[k] = {**merged[k], **v}
        else:
            merged[k] = v
    return merged


def load_config(path: Union[str, Path]) -> EngineConfig:
    """
    Load an EngineConfig from a YAML file. Missing keys fall back to defaults.
    Raises FileNotFoundError if the file does not exist, ValueError on
    unknown keys or invalid values.
    """
    path = Path(path)
    if not path.is_file():
        raise FileNotFoundError(f"Config file not found: {path}")
    with open(path, "r") as f:
        raw = yaml.safe_load(f) or {}
    if not isinstance(raw, dict):
        raise ValueError(f"Config root must be a mapping, got {type(raw).__name__} in {path}")
    cfg = EngineConfig.from_dict(raw)
    logger.debug("Loaded config from %s: %s", path, cfg)
    return cfg


_DEFAULTS = EngineConfig()
