"""Depth capture - synchronized color/depth/confidence to multi-page TIFF.

Captures one frame triple from an AR depth-sensing session and writes it
as a three-page TIFF with the depth-resolution camera intrinsics embedded
in the ImageDescription tag.

Architecture:
    AcquisitionContext (owns the sensing session, one thread)
        -> FrameAcquirer: synchronized RawFrame, released on scope exit
        -> decoding: YUV -> RGB, DEPTH16 -> uint16, confidence -> uint8
        -> intrinsics: color-resolution -> depth-resolution
    Encoder thread pool
        -> packing: depth as R/G bytes, confidence as gray
        -> MultiPageImageWriter: capture_<epoch-ms>.tiff

Entry points:
    - CapturePipeline.capture(): Future resolved once with a CaptureResult
    - CaptureCommandHandler.handle("captureTiff"): path or {code, message}
    - python -m depth_capture.runner
"""

from .models import (
    CaptureBundle,
    CapturePage,
    ColorPlanes,
    DecodedImage,
    Intrinsics,
    PageFormat,
    PageRole,
    PlaneBuffer,
)
from .errors import (
    AcquireTimeoutError,
    CaptureError,
    CaptureIOError,
    ErrorCode,
    FrameMismatchError,
    MalformedPlaneError,
    NoActiveSessionError,
    SaveFailedError,
    SensorUnavailableError,
)
from .config import CaptureConfig, load_config
from .decoding import decode_color_to_rgb, decode_confidence8, decode_depth16
from .intrinsics import rescale_intrinsics
from .packing import pack_color, pack_confidence, pack_depth, unpack_depth
from .writer import (
    MultiPageImageWriter,
    format_intrinsics_metadata,
    parse_intrinsics_metadata,
)
from .reader import read_capture
from .acquisition import AcquisitionContext, FrameAcquirer, RawFrame
from .pipeline import (
    CaptureFailure,
    CapturePipeline,
    CaptureResult,
    PipelineState,
)
from .commands import CAPTURE_TIFF, CaptureCommandHandler, CommandResponse


__version__ = "1.0.0"

__all__ = [
    # Version
    "__version__",
    # Pipeline (main interface)
    "CapturePipeline",
    "CaptureResult",
    "CaptureFailure",
    "PipelineState",
    "CaptureCommandHandler",
    "CommandResponse",
    "CAPTURE_TIFF",
    "CaptureConfig",
    "load_config",
    # Acquisition
    "AcquisitionContext",
    "FrameAcquirer",
    "RawFrame",
    # Models
    "CaptureBundle",
    "CapturePage",
    "ColorPlanes",
    "DecodedImage",
    "Intrinsics",
    "PageFormat",
    "PageRole",
    "PlaneBuffer",
    # Stages
    "decode_color_to_rgb",
    "decode_confidence8",
    "decode_depth16",
    "rescale_intrinsics",
    "pack_color",
    "pack_confidence",
    "pack_depth",
    "unpack_depth",
    "MultiPageImageWriter",
    "format_intrinsics_metadata",
    "parse_intrinsics_metadata",
    "read_capture",
    # Errors
    "ErrorCode",
    "CaptureError",
    "NoActiveSessionError",
    "SensorUnavailableError",
    "AcquireTimeoutError",
    "FrameMismatchError",
    "MalformedPlaneError",
    "CaptureIOError",
    "SaveFailedError",
]
