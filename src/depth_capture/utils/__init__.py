"""Utility modules for the depth capture pipeline."""
from __future__ import annotations

from .logging import setup_logging, get_logger, CaptureTracker
from .io import (
    ensure_local_dir,
    default_cache_dir,
    timestamped_capture_path,
    file_size,
)

__all__ = [
    # Logging
    "setup_logging",
    "get_logger",
    "CaptureTracker",
    # I/O
    "ensure_local_dir",
    "default_cache_dir",
    "timestamped_capture_path",
    "file_size",
]
