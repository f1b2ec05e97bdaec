"""Capture pipeline configuration.

Loaded from YAML or JSON, with ``DEPTH_CAPTURE_*`` environment overrides:

    output_dir: /data/captures
    compression: tiff_lzw
    write_strategy: append
    color_conversion: direct
    max_acquire_attempts: 3
"""
from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

import yaml

from .decoding import COLOR_CONVERSION_MODES
from .utils.io import default_cache_dir
from .writer import COMPRESSION_SCHEMES, WRITE_STRATEGIES


ENV_PREFIX = "DEPTH_CAPTURE_"


@dataclass
class CaptureConfig:
    """Configuration for the capture pipeline."""

    # Output
    output_dir: Path = field(default_factory=default_cache_dir)
    filename_prefix: str = "capture"
    compression: str = "tiff_lzw"
    write_strategy: str = "append"  # "append" or "buffered"
    include_alpha: bool = False
    remove_partial_files: bool = False  # Keep truncated files for diagnostics
    artist: str = "ARCore Utility"
    software: str = "depth_capture"

    # Decoding
    color_conversion: str = "direct"  # "direct" or "jpeg"
    jpeg_quality: int = 100

    # Acquisition
    max_acquire_attempts: int = 3
    acquire_timeout_s: float = 1.0
    frame_interval_s: float = 1.0 / 30.0

    # Encoding
    encode_workers: int = 1

    # Logging
    log_level: str = "INFO"
    cloud_logging: bool = False

    def __post_init__(self):
        self.output_dir = Path(self.output_dir).expanduser()
        self.validate()

    def validate(self) -> None:
        """Raise ValueError for settings the pipeline cannot honour."""
        if self.compression not in COMPRESSION_SCHEMES:
            raise ValueError(f"compression must be one of {COMPRESSION_SCHEMES}, got {self.compression!r}")
        if self.write_strategy not in WRITE_STRATEGIES:
            raise ValueError(f"write_strategy must be one of {WRITE_STRATEGIES}, got {self.write_strategy!r}")
        if self.color_conversion not in COLOR_CONVERSION_MODES:
            raise ValueError(
                f"color_conversion must be one of {COLOR_CONVERSION_MODES}, got {self.color_conversion!r}"
            )
        if not 1 <= self.jpeg_quality <= 100:
            raise ValueError(f"jpeg_quality must be in 1..100, got {self.jpeg_quality}")
        if self.max_acquire_attempts < 1:
            raise ValueError("max_acquire_attempts must be at least 1")
        if self.acquire_timeout_s <= 0:
            raise ValueError("acquire_timeout_s must be positive")
        if self.frame_interval_s <= 0:
            raise ValueError("frame_interval_s must be positive")
        if self.encode_workers < 1:
            raise ValueError("encode_workers must be at least 1")
        if not self.filename_prefix:
            raise ValueError("filename_prefix must not be empty")
        if logging.getLevelName(self.log_level.upper()) not in (
            logging.DEBUG, logging.INFO, logging.WARNING, logging.ERROR, logging.CRITICAL
        ):
            raise ValueError(f"Unknown log_level: {self.log_level}")

    @property
    def log_level_value(self) -> int:
        return logging.getLevelName(self.log_level.upper())

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "CaptureConfig":
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            raise ValueError(f"Unknown config keys: {', '.join(unknown)}")
        return cls(**dict(data))

    @classmethod
    def from_env(
        cls,
        base: Optional["CaptureConfig"] = None,
        environ: Optional[Mapping[str, str]] = None,
    ) -> "CaptureConfig":
        """Apply ``DEPTH_CAPTURE_<FIELD>`` overrides on top of ``base``."""
        environ = os.environ if environ is None else environ
        values = (base or cls()).to_dict()

        for f in fields(cls):
            raw = environ.get(ENV_PREFIX + f.name.upper())
            if raw is None:
                continue
            current = values[f.name]
            if isinstance(current, bool):
                values[f.name] = raw.strip().lower() in ("1", "true", "yes", "on")
            elif isinstance(current, int):
                values[f.name] = int(raw)
            elif isinstance(current, float):
                values[f.name] = float(raw)
            else:
                values[f.name] = raw

        return cls.from_dict(values)

    def to_dict(self) -> Dict[str, Any]:
        data = {f.name: getattr(self, f.name) for f in fields(self)}
        data["output_dir"] = str(self.output_dir)
        return data


def load_config(path: Path, environ: Optional[Mapping[str, str]] = None) -> CaptureConfig:
    """Load configuration from a YAML or JSON file.

    Missing keys keep their defaults; environment overrides apply last.
    """
    path = Path(path)
    with open(path, "r", encoding="utf-8") as f:
        if path.suffix in (".yaml", ".yml"):
            data = yaml.safe_load(f) or {}
        else:
            data = json.load(f)

    if not isinstance(data, dict):
        raise ValueError(f"Config file {path} must contain a mapping")

    return CaptureConfig.from_env(CaptureConfig.from_dict(data), environ=environ)
