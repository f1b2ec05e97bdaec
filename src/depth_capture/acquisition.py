"""Frame acquisition on the thread that owns the sensing session.

The session is advanced only by ``AcquisitionContext``'s thread: once per
tick for the preview, and once per capture by ``FrameAcquirer``. Sensor
images handed out by the session are native resources; a ``RawFrame``
borrows their buffers and every image is closed when the acquisition
scope exits, whichever way it exits.
"""
from __future__ import annotations

import queue
import threading
import time
from concurrent.futures import Future
from contextlib import ExitStack, closing, contextmanager
from dataclasses import dataclass
from typing import Any, Callable, Iterator, Optional, Protocol, Sequence

from .errors import (
    AcquireTimeoutError,
    CaptureError,
    FrameMismatchError,
    MalformedPlaneError,
    NoActiveSessionError,
    SensorUnavailableError,
)
from .models import ColorPlanes, Intrinsics, PlaneBuffer
from .utils.logging import get_logger

logger = get_logger(__name__)


# ==============================================================================
# Upstream sensor interface
# ==============================================================================

class ImagePlane(Protocol):
    buffer: Any  # bytes-like, valid until the owning image is closed
    row_stride: int
    pixel_stride: int


class SensorImage(Protocol):
    width: int
    height: int
    timestamp: int
    planes: Sequence[ImagePlane]

    def close(self) -> None: ...


class CameraIntrinsics(Protocol):
    focal_length: Sequence[float]
    principal_point: Sequence[float]
    image_dimensions: Sequence[int]


class Camera(Protocol):
    texture_intrinsics: CameraIntrinsics


class SensorFrame(Protocol):
    timestamp: int
    camera: Camera

    def acquire_camera_image(self) -> SensorImage: ...
    def acquire_raw_depth_image_16(self) -> SensorImage: ...
    def acquire_raw_depth_confidence_image(self) -> SensorImage: ...


class SensingSession(Protocol):
    def update(self) -> SensorFrame: ...
    def close(self) -> None: ...


# ==============================================================================
# Raw frame
# ==============================================================================

@dataclass
class RawFrame:
    """Sensor buffers for one frame, valid only inside ``FrameAcquirer.acquire``."""
    color: ColorPlanes
    depth: PlaneBuffer
    confidence: PlaneBuffer
    intrinsics: Intrinsics
    timestamp: int


def _plane(image: SensorImage, index: int, width: int, height: int, bytes_per_pixel: int) -> PlaneBuffer:
    try:
        plane = image.planes[index]
    except IndexError:
        raise MalformedPlaneError(
            f"Image has {len(image.planes)} planes, plane {index} requested"
        ) from None
    return PlaneBuffer(
        data=plane.buffer,
        width=width,
        height=height,
        row_stride=int(plane.row_stride),
        pixel_stride=int(plane.pixel_stride),
        bytes_per_pixel=bytes_per_pixel,
    )


def color_planes_from_image(image: SensorImage) -> ColorPlanes:
    """Describe a YUV_420_888 image's three planes."""
    width, height = int(image.width), int(image.height)
    chroma_w, chroma_h = (width + 1) // 2, (height + 1) // 2
    return ColorPlanes(
        y=_plane(image, 0, width, height, 1),
        u=_plane(image, 1, chroma_w, chroma_h, 1),
        v=_plane(image, 2, chroma_w, chroma_h, 1),
    )


# ==============================================================================
# Frame acquirer
# ==============================================================================

class FrameAcquirer:
    """Acquire synchronized color, depth and confidence images.

    Images whose timestamps disagree, or a stream that is not ready yet,
    cause the frame to be released and acquisition retried with the next
    frame, up to ``max_attempts`` times and ``timeout_s`` seconds.
    """

    def __init__(
        self,
        context: "AcquisitionContext",
        max_attempts: int = 3,
        timeout_s: float = 1.0,
    ):
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.context = context
        self.max_attempts = max_attempts
        self.timeout_s = timeout_s
        self._active = False

    @contextmanager
    def acquire(self) -> Iterator[RawFrame]:
        """Yield a RawFrame; all sensor images are closed when the block exits.

        Raises:
            NoActiveSessionError: No session is running.
            AcquireTimeoutError: Streams stayed unavailable for every attempt.
            FrameMismatchError: Channel timestamps never agreed.
        """
        if not self.context.is_current():
            raise CaptureError("Frames must be acquired on the acquisition thread")
        if self._active:
            raise CaptureError("A RawFrame is already acquired")

        session = self.context.session
        if session is None:
            raise NoActiveSessionError("No sensing session is running")

        deadline = time.monotonic() + self.timeout_s
        last_error: Optional[CaptureError] = None

        for attempt in range(1, self.max_attempts + 1):
            with ExitStack() as stack:
                try:
                    raw = self._acquire_once(session, stack)
                except (SensorUnavailableError, FrameMismatchError) as e:
                    last_error = e
                    logger.debug(f"Acquire attempt {attempt}/{self.max_attempts} failed: {e}")
                    if time.monotonic() >= deadline:
                        break
                    continue

                self._active = True
                try:
                    yield raw
                finally:
                    self._active = False
                return

        if isinstance(last_error, FrameMismatchError):
            raise last_error
        raise AcquireTimeoutError(
            f"No complete frame after {self.max_attempts} attempts: {last_error}"
        ) from last_error

    def _acquire_once(self, session: SensingSession, stack: ExitStack) -> RawFrame:
        frame = session.update()

        depth_image = stack.enter_context(closing(frame.acquire_raw_depth_image_16()))
        confidence_image = stack.enter_context(closing(frame.acquire_raw_depth_confidence_image()))
        color_image = stack.enter_context(closing(frame.acquire_camera_image()))

        timestamps = {
            "color": color_image.timestamp,
            "depth": depth_image.timestamp,
            "confidence": confidence_image.timestamp,
        }
        if len(set(timestamps.values())) > 1:
            raise FrameMismatchError(timestamps)

        depth_w, depth_h = int(depth_image.width), int(depth_image.height)
        return RawFrame(
            color=color_planes_from_image(color_image),
            depth=_plane(depth_image, 0, depth_w, depth_h, 2),
            confidence=_plane(
                confidence_image, 0, int(confidence_image.width), int(confidence_image.height), 1
            ),
            intrinsics=Intrinsics.from_camera_intrinsics(frame.camera.texture_intrinsics),
            timestamp=int(color_image.timestamp),
        )


# ==============================================================================
# Acquisition context
# ==============================================================================

_STOP = object()


class AcquisitionContext(threading.Thread):
    """Single thread that owns the sensing session.

    Creates the session on start, calls ``session.update()`` once per tick
    (handing the frame to ``on_frame``, e.g. a preview renderer), runs
    posted tasks between ticks, and closes the session on stop.
    """

    def __init__(
        self,
        session_factory: Callable[[], SensingSession],
        frame_interval_s: float = 1.0 / 30.0,
        on_frame: Optional[Callable[[SensorFrame], None]] = None,
        drive_updates: bool = True,
    ):
        super().__init__(name="acquisition", daemon=True)
        self.session_factory = session_factory
        self.frame_interval_s = frame_interval_s
        self.on_frame = on_frame
        self.drive_updates = drive_updates
        self.session: Optional[SensingSession] = None

        self._tasks: "queue.Queue[Any]" = queue.Queue()
        self._session_ready = threading.Event()
        self._stopping = threading.Event()
        self._update_failures = 0

    def start(self, timeout_s: float = 5.0) -> None:
        super().start()
        if not self._session_ready.wait(timeout_s):
            raise RuntimeError("Acquisition context did not start in time")

    def stop(self, timeout_s: float = 5.0) -> None:
        if not self.is_alive():
            return
        self._stopping.set()
        self._tasks.put(_STOP)
        self.join(timeout_s)

    @property
    def finished(self) -> bool:
        """True once the thread has run and exited; it cannot be started again."""
        return self.ident is not None and not self.is_alive()

    def renewed(self) -> "AcquisitionContext":
        """Fresh, unstarted context with the same session factory and settings."""
        return AcquisitionContext(
            self.session_factory,
            frame_interval_s=self.frame_interval_s,
            on_frame=self.on_frame,
            drive_updates=self.drive_updates,
        )

    def is_current(self) -> bool:
        return threading.get_ident() == self.ident

    @property
    def running(self) -> bool:
        return self.is_alive() and not self._stopping.is_set()

    def post(self, fn: Callable[[], Any]) -> Future:
        """Run ``fn`` on the acquisition thread before the next tick."""
        if not self.running:
            raise RuntimeError("Acquisition context is not running")
        future: Future = Future()
        self._tasks.put((fn, future))
        return future

    def run(self) -> None:
        try:
            self.session = self.session_factory()
            logger.info("Sensing session started")
        except Exception as e:
            # The context keeps running so captures report NO_ACTIVE_SESSION
            logger.error(f"Sensing session failed to initialize: {e}", exc_info=True)
            self.session = None
        finally:
            self._session_ready.set()

        next_t = time.perf_counter()
        try:
            while not self._stopping.is_set():
                timeout = max(0.0, next_t - time.perf_counter())
                try:
                    task = self._tasks.get(timeout=timeout)
                except queue.Empty:
                    task = None

                if task is _STOP:
                    break
                if task is not None:
                    self._run_task(*task)
                    continue

                self._tick()
                next_t = time.perf_counter() + self.frame_interval_s
        finally:
            self._drain_remaining()
            self._close_session()

    def _run_task(self, fn: Callable[[], Any], future: Future) -> None:
        if not future.set_running_or_notify_cancel():
            return
        try:
            future.set_result(fn())
        except Exception as e:
            logger.error(f"Acquisition task failed: {e}", exc_info=True)
            future.set_exception(e)

    def _tick(self) -> None:
        if self.session is None or not self.drive_updates:
            return
        try:
            frame = self.session.update()
            if self.on_frame is not None:
                self.on_frame(frame)
            self._update_failures = 0
        except Exception as e:
            self._update_failures += 1
            if self._update_failures == 1:
                logger.warning(f"Session update failed: {e}")

    def _drain_remaining(self) -> None:
        while True:
            try:
                task = self._tasks.get_nowait()
            except queue.Empty:
                return
            if task is not _STOP:
                self._run_task(*task)

    def _close_session(self) -> None:
        session, self.session = self.session, None
        if session is None:
            return
        try:
            session.close()
            logger.info("Sensing session closed")
        except Exception as e:
            logger.error(f"Closing sensing session failed: {e}")
