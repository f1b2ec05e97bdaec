"""Core data models for the depth capture pipeline.

Data flow for one capture:

    RawFrame (sensor-owned, acquisition context only)
        -> DecodedImage x3 + Intrinsics (owned, handed to the encoder)
        -> CapturePage x3 (Color, Depth, Confidence)
        -> capture_<epoch-ms>.tiff

Output file layout:
    page 0: Color       RGB8, YUV decoded
    page 1: Depth       RGB8, R = depth >> 8, G = depth & 0xFF, B = 0
    page 2: Confidence  RGB8, R = G = B = confidence
    ImageDescription:   fx:<float>,fy:<float>,cx:<float>,cy:<float>
                        (intrinsics in depth-image pixels)
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional

import numpy as np
from PIL import Image


class PageRole(Enum):
    """Role of a page within a capture file, in file order."""
    COLOR = "color"
    DEPTH = "depth"
    CONFIDENCE = "confidence"


class PageFormat(Enum):
    """How a page's pixels encode the underlying samples."""
    RGB8 = "rgb8"                      # Plain 8-bit-per-channel color
    PACKED16_RGB8 = "packed16_rgb8"    # 16-bit sample split over R (high) and G (low)
    GRAYSCALE8 = "grayscale8"          # 8-bit sample replicated to R, G, B


# Fixed page order of a capture file
PAGE_ORDER = (PageRole.COLOR, PageRole.DEPTH, PageRole.CONFIDENCE)


@dataclass
class PlaneBuffer:
    """One plane of raw sensor bytes with its layout.

    ``width`` and ``height`` are in this plane's own samples (chroma planes
    of a 4:2:0 image are half size). Rows may be padded, so samples must
    always be addressed through ``row_stride`` and ``pixel_stride``.
    """
    data: bytes
    width: int
    height: int
    row_stride: int
    pixel_stride: int
    bytes_per_pixel: int = 1
    byte_order: str = "little"

    @property
    def required_size(self) -> int:
        """Smallest buffer that holds every addressed sample.

        The final row does not need trailing padding, and with interleaved
        chroma the final pixel does not need its trailing stride bytes.
        """
        if self.width <= 0 or self.height <= 0:
            return 0
        return (
            (self.height - 1) * self.row_stride
            + (self.width - 1) * self.pixel_stride
            + self.bytes_per_pixel
        )

    @classmethod
    def tight(
        cls,
        data: bytes,
        width: int,
        height: int,
        bytes_per_pixel: int = 1,
        byte_order: str = "little",
    ) -> "PlaneBuffer":
        """Plane with no row or pixel padding."""
        return cls(
            data=data,
            width=width,
            height=height,
            row_stride=width * bytes_per_pixel,
            pixel_stride=bytes_per_pixel,
            bytes_per_pixel=bytes_per_pixel,
            byte_order=byte_order,
        )


@dataclass
class ColorPlanes:
    """Y, U and V planes of a YUV_420_888 camera image."""
    y: PlaneBuffer
    u: PlaneBuffer
    v: PlaneBuffer

    @property
    def width(self) -> int:
        return self.y.width

    @property
    def height(self) -> int:
        return self.y.height


@dataclass
class DecodedImage:
    """Dense, owned pixel array: (H, W) for one channel, (H, W, C) otherwise."""
    pixels: np.ndarray

    def __post_init__(self):
        self.pixels = np.ascontiguousarray(self.pixels)

    @property
    def width(self) -> int:
        return int(self.pixels.shape[1])

    @property
    def height(self) -> int:
        return int(self.pixels.shape[0])

    @property
    def channels(self) -> int:
        return 1 if self.pixels.ndim == 2 else int(self.pixels.shape[2])


@dataclass(frozen=True)
class Intrinsics:
    """Pinhole camera intrinsics expressed against a reference resolution."""
    fx: float  # Focal length x (pixels)
    fy: float  # Focal length y (pixels)
    cx: float  # Principal point x (pixels)
    cy: float  # Principal point y (pixels)
    ref_width: int
    ref_height: int

    @classmethod
    def from_camera_intrinsics(cls, camera_intrinsics: Any) -> "Intrinsics":
        """Build from a sensor ``CameraIntrinsics`` (focal_length, principal_point, image_dimensions)."""
        focal = camera_intrinsics.focal_length
        principal = camera_intrinsics.principal_point
        dims = camera_intrinsics.image_dimensions
        return cls(
            fx=float(focal[0]),
            fy=float(focal[1]),
            cx=float(principal[0]),
            cy=float(principal[1]),
            ref_width=int(dims[0]),
            ref_height=int(dims[1]),
        )

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Intrinsics":
        return cls(
            fx=float(data["fx"]),
            fy=float(data["fy"]),
            cx=float(data["cx"]),
            cy=float(data["cy"]),
            ref_width=int(data["ref_width"]),
            ref_height=int(data["ref_height"]),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "fx": self.fx,
            "fy": self.fy,
            "cx": self.cx,
            "cy": self.cy,
            "ref_width": self.ref_width,
            "ref_height": self.ref_height,
        }

    def to_matrix(self) -> np.ndarray:
        """Convert to 3x3 intrinsic matrix."""
        return np.array([
            [self.fx, 0, self.cx],
            [0, self.fy, self.cy],
            [0, 0, 1],
        ])


@dataclass
class CapturePage:
    """A decoded image ready for serialization as one page.

    ``pixels`` is always (H, W, 4) RGBA uint8 with a fully opaque alpha.
    """
    role: PageRole
    format: PageFormat
    pixels: np.ndarray

    @property
    def width(self) -> int:
        return int(self.pixels.shape[1])

    @property
    def height(self) -> int:
        return int(self.pixels.shape[0])

    def to_image(self, include_alpha: bool = False) -> Image.Image:
        """Convert to a Pillow image (RGB unless ``include_alpha``)."""
        if include_alpha:
            return Image.fromarray(self.pixels)
        return Image.fromarray(np.ascontiguousarray(self.pixels[..., :3]))


@dataclass
class CaptureBundle:
    """Contents of a capture file read back from disk."""
    color: np.ndarray        # (H, W, 3) uint8
    depth: np.ndarray        # (h, w) uint16 millimetres
    confidence: np.ndarray   # (h, w) uint8
    intrinsics: Optional[Intrinsics] = None
    description: str = ""
    page_count: int = 0
