"""In-process sensing session producing synthetic frames.

Frames mimic an Android/ARCore camera stack:

- color: YUV_420_888, Y plane plus V/U planes that alias one interleaved
  NV21 chroma buffer (pixel stride 2), or fully planar chroma
- depth: DEPTH16 little-endian millimetres
- confidence: one byte per pixel

Every plane can be given row padding filled with junk bytes. The session
counts open images so callers can verify that everything acquired was
closed, and records which threads advanced it.
"""
from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

import cv2
import numpy as np

from ..errors import NoActiveSessionError, SensorUnavailableError

PADDING_FILL = 0xAB


def strided_bytes(
    samples: np.ndarray,
    row_stride: int,
    pixel_stride: Optional[int] = None,
    fill: int = PADDING_FILL,
) -> bytes:
    """Lay out (H, W) or (H, W, B) uint8 samples with the given strides.

    Bytes not covered by a sample are set to ``fill``.
    """
    samples = np.asarray(samples, dtype=np.uint8)
    if samples.ndim == 2:
        samples = samples[..., np.newaxis]
    height, width, bytes_per_pixel = samples.shape
    pixel_stride = pixel_stride or bytes_per_pixel
    if row_stride < width * pixel_stride:
        raise ValueError(f"row_stride {row_stride} < {width} x {pixel_stride}")

    buf = np.full((height, row_stride), fill, dtype=np.uint8)
    for b in range(bytes_per_pixel):
        buf[:, b:b + (width - 1) * pixel_stride + 1:pixel_stride] = samples[..., b]
    return buf.tobytes()


def depth_to_bytes(depth: np.ndarray, byte_order: str = "little") -> np.ndarray:
    """Split uint16 depth into an (H, W, 2) byte array in the given order."""
    dtype = "<u2" if byte_order == "little" else ">u2"
    depth = np.asarray(depth).astype(dtype)
    return depth.view(np.uint8).reshape(depth.shape[0], depth.shape[1], 2)


def rgb_to_yuv420(rgb: np.ndarray) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
    """Convert an RGB image to full-size Y and quarter-size U, V planes."""
    height, width = rgb.shape[:2]
    i420 = cv2.cvtColor(np.ascontiguousarray(rgb, dtype=np.uint8), cv2.COLOR_RGB2YUV_I420).reshape(-1)
    chroma = (height // 2) * (width // 2)
    y = i420[: width * height].reshape(height, width)
    u = i420[width * height: width * height + chroma].reshape(height // 2, width // 2)
    v = i420[width * height + chroma: width * height + 2 * chroma].reshape(height // 2, width // 2)
    return y, u, v


def default_color(width: int, height: int) -> np.ndarray:
    """Smooth RGB test pattern."""
    xs = np.linspace(0, 255, width, dtype=np.float32)
    ys = np.linspace(0, 255, height, dtype=np.float32)
    rgb = np.zeros((height, width, 3), dtype=np.uint8)
    rgb[..., 0] = xs[np.newaxis, :]
    rgb[..., 1] = ys[:, np.newaxis]
    rgb[..., 2] = 128
    return rgb


def default_depth(width: int, height: int) -> np.ndarray:
    """Depth ramp in millimetres, spanning both bytes of the sample."""
    yy, xx = np.mgrid[0:height, 0:width]
    return (500 + 37 * xx + 211 * yy).astype(np.uint16)


def default_confidence(width: int, height: int) -> np.ndarray:
    yy, xx = np.mgrid[0:height, 0:width]
    return ((xx * 7 + yy * 13) % 256).astype(np.uint8)


@dataclass(frozen=True)
class SimulatedSensorConfig:
    color_size: Tuple[int, int] = (640, 480)      # (width, height)
    depth_size: Tuple[int, int] = (160, 120)      # (width, height)
    focal_length: Tuple[float, float] = (500.0, 500.0)
    principal_point: Tuple[float, float] = (320.0, 240.0)
    row_padding: int = 0                          # Junk bytes appended to every row
    semi_planar_chroma: bool = True               # NV21-style aliased chroma buffers
    frame_interval_ns: int = 33_333_333
    depth_lag_frames: int = 0                     # Depth/confidence timestamps lag color
    unavailable_frames: int = 0                   # Leading frames without depth


@dataclass
class SimulatedPlane:
    buffer: bytes
    row_stride: int
    pixel_stride: int


@dataclass
class SimulatedIntrinsics:
    focal_length: Tuple[float, float]
    principal_point: Tuple[float, float]
    image_dimensions: Tuple[int, int]


@dataclass
class SimulatedCamera:
    texture_intrinsics: SimulatedIntrinsics


class SimulatedImage:
    """Sensor image that must be closed; planes are unreadable afterwards."""

    def __init__(self, session: "SimulatedSession", width: int, height: int,
                 timestamp: int, planes: List[SimulatedPlane]):
        self._session = session
        self.width = width
        self.height = height
        self.timestamp = timestamp
        self._planes = planes
        self.closed = False
        session._image_opened()

    @property
    def planes(self) -> Sequence[SimulatedPlane]:
        if self.closed:
            raise RuntimeError("Image is already closed")
        return self._planes

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        self._session._image_closed()


class SimulatedFrame:
    def __init__(self, session: "SimulatedSession", index: int, timestamp: int):
        self._session = session
        self.index = index
        self.timestamp = timestamp
        cfg = session.config
        self.camera = SimulatedCamera(SimulatedIntrinsics(
            focal_length=cfg.focal_length,
            principal_point=cfg.principal_point,
            image_dimensions=cfg.color_size,
        ))

    @property
    def _depth_timestamp(self) -> int:
        return self.timestamp - self._session.config.depth_lag_frames * self._session.config.frame_interval_ns

    def _check_depth_available(self) -> None:
        if self.index <= self._session.config.unavailable_frames:
            raise SensorUnavailableError(f"Depth not yet available for frame {self.index}")

    def acquire_camera_image(self) -> SimulatedImage:
        session = self._session
        width, height = session.config.color_size
        pad = session.config.row_padding
        y, u, v = session.yuv

        planes = [SimulatedPlane(strided_bytes(y, width + pad), width + pad, 1)]
        chroma_w, chroma_h = width // 2, height // 2
        if session.config.semi_planar_chroma:
            stride = width + pad
            vu = np.empty((chroma_h, chroma_w, 2), dtype=np.uint8)
            vu[..., 0] = v
            vu[..., 1] = u
            interleaved = strided_bytes(vu, stride, 2)
            # U starts one byte into the V/U buffer; both drop a trailing byte
            planes.append(SimulatedPlane(interleaved[1:], stride, 2))
            planes.append(SimulatedPlane(interleaved[:-1], stride, 2))
        else:
            stride = chroma_w + pad
            planes.append(SimulatedPlane(strided_bytes(u, stride), stride, 1))
            planes.append(SimulatedPlane(strided_bytes(v, stride), stride, 1))

        return SimulatedImage(session, width, height, self.timestamp, planes)

    def acquire_raw_depth_image_16(self) -> SimulatedImage:
        self._check_depth_available()
        session = self._session
        width, height = session.config.depth_size
        stride = width * 2 + session.config.row_padding
        data = strided_bytes(depth_to_bytes(session.depth), stride, 2)
        return SimulatedImage(session, width, height, self._depth_timestamp,
                              [SimulatedPlane(data, stride, 2)])

    def acquire_raw_depth_confidence_image(self) -> SimulatedImage:
        self._check_depth_available()
        session = self._session
        width, height = session.config.depth_size
        stride = width + session.config.row_padding
        data = strided_bytes(session.confidence, stride, 1)
        return SimulatedImage(session, width, height, self._depth_timestamp,
                              [SimulatedPlane(data, stride, 1)])


class SimulatedSession:
    """Deterministic stand-in for an AR sensing session."""

    def __init__(
        self,
        config: Optional[SimulatedSensorConfig] = None,
        color: Optional[np.ndarray] = None,
        depth: Optional[np.ndarray] = None,
        confidence: Optional[np.ndarray] = None,
    ):
        self.config = config or SimulatedSensorConfig()
        color_w, color_h = self.config.color_size
        depth_w, depth_h = self.config.depth_size

        self.color = default_color(color_w, color_h) if color is None else np.asarray(color, dtype=np.uint8)
        self.depth = default_depth(depth_w, depth_h) if depth is None else np.asarray(depth, dtype=np.uint16)
        self.confidence = (
            default_confidence(depth_w, depth_h) if confidence is None
            else np.asarray(confidence, dtype=np.uint8)
        )
        if self.color.shape[:2] != (color_h, color_w):
            raise ValueError(f"color must be {color_h}x{color_w}, got {self.color.shape[:2]}")
        if self.depth.shape != (depth_h, depth_w) or self.confidence.shape != (depth_h, depth_w):
            raise ValueError(f"depth and confidence must be {depth_h}x{depth_w}")
        self.yuv = rgb_to_yuv420(self.color)

        self.frame_count = 0
        self.images_opened = 0
        self.images_closed = 0
        self.update_threads: set = set()
        self.closed = False
        self._lock = threading.Lock()

    @property
    def open_images(self) -> int:
        with self._lock:
            return self.images_opened - self.images_closed

    def update(self) -> SimulatedFrame:
        with self._lock:
            if self.closed:
                raise NoActiveSessionError("Session is closed")
            self.frame_count += 1
            self.update_threads.add(threading.get_ident())
            index = self.frame_count
        return SimulatedFrame(self, index, index * self.config.frame_interval_ns)

    def close(self) -> None:
        with self._lock:
            self.closed = True

    def _image_opened(self) -> None:
        with self._lock:
            self.images_opened += 1

    def _image_closed(self) -> None:
        with self._lock:
            self.images_closed += 1
