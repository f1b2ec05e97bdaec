"""Logging and stage timing utilities."""
from __future__ import annotations

import json
import logging
import sys
import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, TextIO


ROOT_LOGGER_NAME = "depth_capture"

# Attributes passed through `extra=` that structured output keeps
RECORD_CONTEXT_FIELDS = ("capture_id", "stage")


# Cloud Logging structured format
class CloudLoggingFormatter(logging.Formatter):
    """Formatter that outputs one JSON object per record."""

    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            "severity": record.levelname,
            "message": record.getMessage(),
            "timestamp": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
            "logger": record.name,
            "thread": record.threadName,
        }

        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)

        for key in RECORD_CONTEXT_FIELDS:
            value = getattr(record, key, None)
            if value is not None:
                log_entry[key] = value

        return json.dumps(log_entry)


class ConsoleFormatter(logging.Formatter):
    """Human-readable formatter for local development."""

    COLORS = {
        "DEBUG": "\033[36m",  # Cyan
        "INFO": "\033[32m",  # Green
        "WARNING": "\033[33m",  # Yellow
        "ERROR": "\033[31m",  # Red
        "CRITICAL": "\033[35m",  # Magenta
    }
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        color = self.COLORS.get(record.levelname, "")
        timestamp = datetime.now().strftime("%H:%M:%S")

        msg = (
            f"{color}[{timestamp}] {record.levelname:8s}{self.RESET} "
            f"({record.threadName}) {record.getMessage()}"
        )

        if record.exc_info:
            msg += "\n" + self.formatException(record.exc_info)

        return msg


def setup_logging(
    level: int = logging.INFO,
    cloud_logging: bool = False,
    stream: Optional[TextIO] = None,
) -> logging.Logger:
    """Set up logging for the capture pipeline.

    Args:
        level: Logging level.
        cloud_logging: If True, use JSON format for structured log sinks.
        stream: Output stream (defaults to stdout).

    Returns:
        Configured package logger.
    """
    logger = logging.getLogger(ROOT_LOGGER_NAME)
    logger.setLevel(level)

    # Remove existing handlers
    logger.handlers.clear()

    handler = logging.StreamHandler(stream or sys.stdout)
    handler.setLevel(level)

    if cloud_logging:
        handler.setFormatter(CloudLoggingFormatter())
    else:
        handler.setFormatter(ConsoleFormatter())

    logger.addHandler(handler)

    return logger


def get_logger(name: str = ROOT_LOGGER_NAME) -> logging.Logger:
    """Get a logger instance.

    Args:
        name: Logger name (will be prefixed with 'depth_capture.').

    Returns:
        Logger instance.
    """
    if not name.startswith(ROOT_LOGGER_NAME):
        name = f"{ROOT_LOGGER_NAME}.{name}"
    return logging.getLogger(name)


@dataclass
class StageMetrics:
    """Timing for a single capture stage."""
    stage_name: str
    start_time: float
    end_time: Optional[float] = None
    errors: List[str] = field(default_factory=list)
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def duration_seconds(self) -> float:
        if self.end_time is None:
            return time.monotonic() - self.start_time
        return self.end_time - self.start_time

    def to_dict(self) -> Dict[str, Any]:
        return {
            "stage_name": self.stage_name,
            "duration_seconds": self.duration_seconds,
            "errors": self.errors,
            "metadata": self.metadata,
        }


class CaptureTracker:
    """Track the stages of one capture request.

    Stages may run on different threads (acquisition, then encoding), but
    never concurrently, so a lock only guards the stage list.
    """

    def __init__(self, capture_id: str, logger: Optional[logging.Logger] = None):
        self.capture_id = capture_id
        self.logger = logger or get_logger("tracker")
        self.stages: List[StageMetrics] = []
        self.start_time = time.monotonic()
        self._lock = threading.Lock()

    @contextmanager
    def stage(self, name: str):
        """Context manager timing a capture stage.

        Yields:
            StageMetrics object for the stage.
        """
        metrics = StageMetrics(stage_name=name, start_time=time.monotonic())
        context = {"capture_id": self.capture_id, "stage": name}
        self.logger.debug(f"[{self.capture_id}] Starting stage: {name}", extra=context)

        try:
            yield metrics
        except Exception as e:
            metrics.errors.append(f"{type(e).__name__}: {e}")
            self.logger.error(f"[{self.capture_id}] Stage {name} failed: {e}", extra=context)
            raise
        finally:
            metrics.end_time = time.monotonic()
            self.logger.debug(
                f"[{self.capture_id}] Completed stage: {name} in {metrics.duration_seconds * 1000:.1f}ms",
                extra=context,
            )
            with self._lock:
                self.stages.append(metrics)

    def generate_report(self) -> Dict[str, Any]:
        """Summarize stage timings for the capture."""
        with self._lock:
            stages = [s.to_dict() for s in self.stages]
            success = all(len(s.errors) == 0 for s in self.stages)
        return {
            "capture_id": self.capture_id,
            "total_duration_seconds": time.monotonic() - self.start_time,
            "stages": stages,
            "success": success,
        }
