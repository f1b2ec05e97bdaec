"""Exception taxonomy for the capture pipeline.

Components raise these; only ``CapturePipeline`` turns them into the
caller-facing ``ErrorCode`` values carried by a ``CaptureResult``.
"""
from __future__ import annotations

from enum import Enum


class ErrorCode(Enum):
    """Error codes reported to the caller of ``captureTiff``."""
    NO_ACTIVE_SESSION = "NO_ACTIVE_SESSION"
    CAPTURE_FAILED = "CAPTURE_FAILED"
    IO_ERROR = "IO_ERROR"
    SAVE_FAILED = "SAVE_FAILED"
    BUSY = "BUSY"
    NOT_IMPLEMENTED = "NOT_IMPLEMENTED"


class CaptureError(Exception):
    """Base class for all capture pipeline errors."""

    kind = "CaptureError"


class NoActiveSessionError(CaptureError):
    """No sensing session is running."""

    kind = "NoActiveSession"


class SensorUnavailableError(CaptureError):
    """A sensor stream could not deliver an image for the current frame."""

    kind = "SensorUnavailable"


class AcquireTimeoutError(CaptureError):
    """Acquisition did not produce a complete frame within its attempt and time limits."""

    kind = "AcquireTimeout"


class FrameMismatchError(CaptureError):
    """Color, depth and confidence images came from different frames."""

    kind = "FrameMismatch"

    def __init__(self, timestamps: dict):
        self.timestamps = dict(timestamps)
        detail = ", ".join(f"{name}={ts}" for name, ts in self.timestamps.items())
        super().__init__(f"Channel timestamps disagree: {detail}")


class MalformedPlaneError(CaptureError):
    """A plane buffer is structurally inconsistent with its metadata."""

    kind = "MalformedPlane"


class CaptureIOError(CaptureError):
    """Writing the capture file raised."""

    kind = "IOError"


class SaveFailedError(CaptureError):
    """The capture file was written but is empty or missing pages."""

    kind = "SaveFailed"
