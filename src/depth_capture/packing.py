"""Pack single-channel samples into 8-bit RGBA pages.

Depth:       R = bits 8-15, G = bits 0-7, B = 0, A = 255 (lossless)
Confidence:  R = G = B = value, A = 255
Color:       R, G, B from the decoded image, A = 255
"""
from __future__ import annotations

import numpy as np

from .models import CapturePage, DecodedImage, PageFormat, PageRole


OPAQUE = 255


def _require_shape(image: DecodedImage, dtype: np.dtype, channels: int, name: str) -> None:
    if image.pixels.dtype != dtype:
        raise ValueError(f"{name} must be {np.dtype(dtype).name}, got {image.pixels.dtype}")
    if image.channels != channels:
        raise ValueError(f"{name} must have {channels} channel(s), got {image.channels}")


def pack_depth(depth: DecodedImage) -> CapturePage:
    """Split 16-bit depth into high byte (R) and low byte (G)."""
    _require_shape(depth, np.uint16, 1, "Depth image")
    samples = depth.pixels

    rgba = np.zeros((depth.height, depth.width, 4), dtype=np.uint8)
    rgba[..., 0] = (samples >> 8) & 0xFF
    rgba[..., 1] = samples & 0xFF
    rgba[..., 3] = OPAQUE

    return CapturePage(role=PageRole.DEPTH, format=PageFormat.PACKED16_RGB8, pixels=rgba)


def unpack_depth(pixels: np.ndarray) -> np.ndarray:
    """Recover uint16 depth from packed (H, W, >=2) pixels: ``(R << 8) | G``."""
    if pixels.ndim != 3 or pixels.shape[2] < 2:
        raise ValueError(f"Packed depth needs at least two channels, got shape {pixels.shape}")
    high = pixels[..., 0].astype(np.uint16)
    low = pixels[..., 1].astype(np.uint16)
    return (high << 8) | low


def pack_confidence(confidence: DecodedImage) -> CapturePage:
    """Replicate 8-bit confidence into R, G and B."""
    _require_shape(confidence, np.uint8, 1, "Confidence image")

    rgba = np.empty((confidence.height, confidence.width, 4), dtype=np.uint8)
    rgba[..., :3] = confidence.pixels[..., np.newaxis]
    rgba[..., 3] = OPAQUE

    return CapturePage(role=PageRole.CONFIDENCE, format=PageFormat.GRAYSCALE8, pixels=rgba)


def pack_color(color: DecodedImage) -> CapturePage:
    _require_shape(color, np.uint8, 3, "Color image")

    rgba = np.empty((color.height, color.width, 4), dtype=np.uint8)
    rgba[..., :3] = color.pixels
    rgba[..., 3] = OPAQUE

    return CapturePage(role=PageRole.COLOR, format=PageFormat.RGB8, pixels=rgba)
