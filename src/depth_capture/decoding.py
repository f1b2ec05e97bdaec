"""Raw sensor plane decoding.

Turns strided plane buffers into dense, owned numpy arrays:

- depth:       16-bit unsigned millimetres, one sample per pixel
- confidence:  8-bit unsigned, one sample per pixel
- color:       YUV_420_888 planes -> NV21 (Y, then interleaved V/U) -> RGB

Every sample is addressed as ``y * row_stride + x * pixel_stride``; bytes
past ``width`` in a row are padding and never read. Any plane whose
metadata does not fit its buffer raises ``MalformedPlaneError`` before a
single sample is decoded.
"""
from __future__ import annotations

import cv2
import numpy as np

from .errors import CaptureError, MalformedPlaneError
from .models import ColorPlanes, DecodedImage, PlaneBuffer


COLOR_CONVERSION_MODES = ("direct", "jpeg")

_BYTE_ORDER_CODES = {"little": "<", "big": ">"}


def validate_plane(plane: PlaneBuffer, name: str, bytes_per_pixel: int) -> None:
    """Check a plane's layout against its buffer.

    Raises:
        MalformedPlaneError: If the plane cannot be decoded as described.
    """
    if plane.width <= 0 or plane.height <= 0:
        raise MalformedPlaneError(
            f"{name} plane has invalid size {plane.width}x{plane.height}"
        )
    if plane.bytes_per_pixel != bytes_per_pixel:
        raise MalformedPlaneError(
            f"{name} plane has {plane.bytes_per_pixel} bytes per pixel, expected {bytes_per_pixel}"
        )
    if plane.pixel_stride < plane.bytes_per_pixel:
        raise MalformedPlaneError(
            f"{name} plane pixel stride {plane.pixel_stride} is smaller than "
            f"its {plane.bytes_per_pixel}-byte samples"
        )
    if plane.row_stride < plane.width * plane.pixel_stride:
        raise MalformedPlaneError(
            f"{name} plane row stride {plane.row_stride} < width {plane.width} "
            f"x pixel stride {plane.pixel_stride}"
        )
    if plane.byte_order not in _BYTE_ORDER_CODES:
        raise MalformedPlaneError(f"{name} plane has unknown byte order {plane.byte_order!r}")
    if len(plane.data) < plane.required_size:
        raise MalformedPlaneError(
            f"{name} plane buffer holds {len(plane.data)} bytes, "
            f"{plane.required_size} needed for {plane.width}x{plane.height} "
            f"(row stride {plane.row_stride}, pixel stride {plane.pixel_stride})"
        )


def _gather_samples(plane: PlaneBuffer) -> np.ndarray:
    """Copy every addressed sample into a dense (H, W, bytes_per_pixel) array."""
    raw = np.frombuffer(plane.data, dtype=np.uint8)
    view = np.lib.stride_tricks.as_strided(
        raw,
        shape=(plane.height, plane.width, plane.bytes_per_pixel),
        strides=(plane.row_stride, plane.pixel_stride, 1),
        writeable=False,
    )
    return view.copy()


def decode_depth16(plane: PlaneBuffer) -> DecodedImage:
    """Decode a DEPTH16 plane into uint16 millimetre samples.

    Args:
        plane: Single depth plane, 2 bytes per pixel, little-endian unless
            the plane says otherwise.

    Returns:
        DecodedImage with (H, W) uint16 pixels.
    """
    validate_plane(plane, "depth", bytes_per_pixel=2)
    samples = _gather_samples(plane)
    dtype = np.dtype(_BYTE_ORDER_CODES[plane.byte_order] + "u2")
    depth = samples.view(dtype).reshape(plane.height, plane.width)
    return DecodedImage(depth.astype(np.uint16))


def decode_confidence8(plane: PlaneBuffer) -> DecodedImage:
    """Decode an 8-bit confidence plane into uint8 samples (0-255)."""
    validate_plane(plane, "confidence", bytes_per_pixel=1)
    samples = _gather_samples(plane)
    return DecodedImage(samples.reshape(plane.height, plane.width))


def _chroma_size(width: int, height: int) -> tuple[int, int]:
    return (width + 1) // 2, (height + 1) // 2


def build_nv21(planes: ColorPlanes) -> np.ndarray:
    """Assemble an NV21 buffer: full-res Y rows, then interleaved V/U rows.

    NV21 stores chroma V first. Swapping the order tints the whole image,
    so V always goes to the even byte of each chroma pair.

    Returns:
        (H * 3 / 2, W) uint8 array accepted by ``cv2.COLOR_YUV2RGB_NV21``.
    """
    validate_plane(planes.y, "Y", bytes_per_pixel=1)
    validate_plane(planes.u, "U", bytes_per_pixel=1)
    validate_plane(planes.v, "V", bytes_per_pixel=1)

    width, height = planes.width, planes.height
    if width % 2 or height % 2:
        raise MalformedPlaneError(f"YUV 4:2:0 image must have even dimensions, got {width}x{height}")

    chroma_w, chroma_h = _chroma_size(width, height)
    for name, plane in (("U", planes.u), ("V", planes.v)):
        if (plane.width, plane.height) != (chroma_w, chroma_h):
            raise MalformedPlaneError(
                f"{name} plane is {plane.width}x{plane.height}, expected "
                f"{chroma_w}x{chroma_h} for a {width}x{height} image"
            )

    luma = _gather_samples(planes.y).reshape(height, width)
    u = _gather_samples(planes.u).reshape(chroma_h, chroma_w)
    v = _gather_samples(planes.v).reshape(chroma_h, chroma_w)

    vu = np.empty((chroma_h, chroma_w * 2), dtype=np.uint8)
    vu[:, 0::2] = v
    vu[:, 1::2] = u

    return np.vstack([luma, vu])


def decode_color_to_rgb(
    planes: ColorPlanes,
    mode: str = "direct",
    jpeg_quality: int = 100,
) -> DecodedImage:
    """Decode YUV_420_888 color planes into an RGB image.

    Args:
        planes: Y, U and V planes of the camera image.
        mode: ``"direct"`` converts YUV to RGB numerically (lossless and
            reproducible). ``"jpeg"`` passes the image through a JPEG
            encode/decode at ``jpeg_quality`` before returning it, which
            loses some fidelity even at quality 100.
        jpeg_quality: JPEG quality for ``"jpeg"`` mode (1-100).

    Returns:
        DecodedImage with (H, W, 3) uint8 RGB pixels.
    """
    if mode not in COLOR_CONVERSION_MODES:
        raise ValueError(f"Unknown color conversion mode: {mode}")

    nv21 = build_nv21(planes)

    if mode == "direct":
        return DecodedImage(cv2.cvtColor(nv21, cv2.COLOR_YUV2RGB_NV21))

    bgr = cv2.cvtColor(nv21, cv2.COLOR_YUV2BGR_NV21)
    ok, encoded = cv2.imencode(".jpg", bgr, [int(cv2.IMWRITE_JPEG_QUALITY), int(jpeg_quality)])
    if not ok:
        raise CaptureError("JPEG encoding of the color image failed")
    decoded = cv2.imdecode(encoded, cv2.IMREAD_COLOR)
    if decoded is None:
        raise CaptureError("JPEG decoding of the color image failed")
    return DecodedImage(cv2.cvtColor(decoded, cv2.COLOR_BGR2RGB))
