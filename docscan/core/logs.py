"""
Logging setup for the command-line tools. The library itself only creates
module loggers and never installs handlers.
"""

from __future__ import annotations
from datetime import datetime
from typing import Optional
import logging

LOG_FORMAT = "%(asctime)s %(levelname)-7s %(name)s: %(message)s"


def default_log_path(prefix: str = "scan") -> str:
    return f"{prefix}_{datetime.now().strftime('%Y%m%d_%H%M%S')}.log"


def configure_logging(debug: bool = False, log_file: Optional[str] = None) -> None:
    """Log to stderr, and also to `log_file` when given."""
    handlers = [logging.StreamHandler()]
    if log_file:
        handlers.append(logging.FileHandler(log_file, mode="w"))
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.INFO,
        format=LOG_FORMAT,
        handlers=handlers,
        force=True,
    )
    if log_file:
        logging.getLogger(__name__).info("Writing log output to: %s", log_file)
