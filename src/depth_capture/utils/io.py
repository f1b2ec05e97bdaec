"""File system helpers for capture output."""
from __future__ import annotations

import tempfile
import time
from pathlib import Path
from typing import Optional


DEFAULT_CACHE_SUBDIR = "depth_capture_cache"


def ensure_local_dir(path: Path) -> Path:
    """Ensure a directory exists, creating it if necessary.

    Args:
        path: Directory path to create.

    Returns:
        The same path, for chaining.
    """
    path.mkdir(parents=True, exist_ok=True)
    return path


def default_cache_dir() -> Path:
    """Application-private cache directory under the system temp dir."""
    return Path(tempfile.gettempdir()) / DEFAULT_CACHE_SUBDIR


def timestamped_capture_path(
    output_dir: Path,
    prefix: str = "capture",
    extension: str = "tiff",
    timestamp_ms: Optional[int] = None,
) -> Path:
    """Build a collision-free output path named after the capture time.

    Args:
        output_dir: Directory the capture is written to (created if missing).
        prefix: Filename prefix.
        extension: File extension without the dot.
        timestamp_ms: Capture time in epoch milliseconds (defaults to now).

    Returns:
        Path such as ``<output_dir>/capture_1700000000000.tiff``. If that
        name is taken, a numeric suffix is appended.
    """
    ensure_local_dir(output_dir)
    if timestamp_ms is None:
        timestamp_ms = time.time_ns() // 1_000_000

    extension = extension.lstrip(".")
    path = output_dir / f"{prefix}_{timestamp_ms}.{extension}"
    counter = 1
    while path.exists():
        path = output_dir / f"{prefix}_{timestamp_ms}_{counter}.{extension}"
        counter += 1
    return path


def file_size(path: Path) -> int:
    """Size of a file in bytes, 0 if it does not exist."""
    try:
        return path.stat().st_size
    except FileNotFoundError:
        return 0
