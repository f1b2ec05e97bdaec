"""Capture pipeline: acquire -> decode -> rescale -> pack -> write.

    IDLE -> ACQUIRING -> DECODING -> ENCODING -> DONE
                 |           |           |
                 +-----------+-----------+--> FAILED

ACQUIRING and DECODING run as one task on the acquisition thread and
finish before it renders the next frame. Decoded arrays and the rescaled
intrinsics are then handed, by ownership, to an encoder thread that packs
the pages and writes the TIFF. Every request resolves its Future exactly
once with a CaptureResult; nothing raises across the thread boundary.
"""
from __future__ import annotations

import threading
import time
import uuid
from concurrent.futures import Future, InvalidStateError, ThreadPoolExecutor
from contextlib import ExitStack
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, Optional

from .acquisition import AcquisitionContext, FrameAcquirer, RawFrame
from .config import CaptureConfig
from .decoding import decode_color_to_rgb, decode_confidence8, decode_depth16
from .errors import CaptureError, CaptureIOError, ErrorCode, MalformedPlaneError, SaveFailedError
from .intrinsics import rescale_intrinsics
from .models import DecodedImage, Intrinsics
from .packing import pack_color, pack_confidence, pack_depth
from .utils.io import timestamped_capture_path
from .utils.logging import CaptureTracker, get_logger
from .writer import MultiPageImageWriter, format_intrinsics_metadata

logger = get_logger(__name__)


class PipelineState(Enum):
    """Capture request states."""
    IDLE = "idle"
    ACQUIRING = "acquiring"
    DECODING = "decoding"
    ENCODING = "encoding"
    DONE = "done"
    FAILED = "failed"


ALLOWED_TRANSITIONS = {
    PipelineState.IDLE: {PipelineState.ACQUIRING},
    PipelineState.ACQUIRING: {PipelineState.DECODING, PipelineState.FAILED},
    PipelineState.DECODING: {PipelineState.ENCODING, PipelineState.FAILED},
    PipelineState.ENCODING: {PipelineState.DONE, PipelineState.FAILED},
    PipelineState.DONE: {PipelineState.ACQUIRING},
    PipelineState.FAILED: {PipelineState.ACQUIRING},
}


@dataclass
class CaptureFailure:
    """Typed failure reported to the caller."""
    code: ErrorCode
    message: str

    def to_dict(self) -> Dict[str, Any]:
        return {"code": self.code.value, "message": self.message}


@dataclass
class CaptureResult:
    """Terminal outcome of one capture request."""
    capture_id: str
    path: Optional[Path] = None
    failure: Optional[CaptureFailure] = None
    intrinsics: Optional[Intrinsics] = None  # Depth-resolution intrinsics
    metrics: Dict[str, Any] = field(default_factory=dict)

    @property
    def success(self) -> bool:
        return self.failure is None and self.path is not None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "capture_id": self.capture_id,
            "success": self.success,
            "path": str(self.path) if self.path else None,
            "error": self.failure.to_dict() if self.failure else None,
            "intrinsics": self.intrinsics.to_dict() if self.intrinsics else None,
            "metrics": self.metrics,
        }


@dataclass
class DecodedCapture:
    """Owned buffers handed from the acquisition thread to the encoder."""
    color: DecodedImage
    depth: DecodedImage
    confidence: DecodedImage
    intrinsics: Intrinsics
    timestamp: int


def decode_raw_frame(raw: RawFrame, color_conversion: str = "direct", jpeg_quality: int = 100) -> DecodedCapture:
    """Copy a RawFrame into owned arrays and rescale its intrinsics to depth pixels."""
    depth = decode_depth16(raw.depth)
    confidence = decode_confidence8(raw.confidence)
    if (confidence.width, confidence.height) != (depth.width, depth.height):
        raise MalformedPlaneError(
            f"Confidence is {confidence.width}x{confidence.height} but depth is "
            f"{depth.width}x{depth.height}"
        )
    color = decode_color_to_rgb(raw.color, mode=color_conversion, jpeg_quality=jpeg_quality)

    return DecodedCapture(
        color=color,
        depth=depth,
        confidence=confidence,
        intrinsics=rescale_intrinsics(raw.intrinsics, depth.width, depth.height),
        timestamp=raw.timestamp,
    )


class CapturePipeline:
    """Runs capture requests against a sensing session.

    The pipeline owns its acquisition context and encoder pool; ``start``
    and ``close`` (or the context manager protocol) bracket the session's
    lifetime. At most one capture is in flight; further requests resolve
    immediately with ``BUSY``.
    """

    def __init__(
        self,
        context: AcquisitionContext,
        config: Optional[CaptureConfig] = None,
        writer: Optional[MultiPageImageWriter] = None,
    ):
        self.config = config or CaptureConfig()
        self.context = context
        self.acquirer = FrameAcquirer(
            context,
            max_attempts=self.config.max_acquire_attempts,
            timeout_s=self.config.acquire_timeout_s,
        )
        self.writer = writer or MultiPageImageWriter(
            compression=self.config.compression,
            strategy=self.config.write_strategy,
            include_alpha=self.config.include_alpha,
            remove_partial_files=self.config.remove_partial_files,
        )
        self._executor: Optional[ThreadPoolExecutor] = None
        self._in_flight = threading.Lock()
        self._state_lock = threading.Lock()
        self._state = PipelineState.IDLE

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> "CapturePipeline":
        if self.context.finished:
            # Threads run once; a closed pipeline reopens on a new context
            self.context = self.context.renewed()
            self.acquirer.context = self.context
        if self._executor is None:
            self._executor = ThreadPoolExecutor(
                max_workers=self.config.encode_workers,
                thread_name_prefix="encoder",
            )
        if not self.context.is_alive():
            self.context.start()
        return self

    def close(self) -> None:
        """Stop the acquisition context, then wait for pending writes."""
        self.context.stop()
        if self._executor is not None:
            self._executor.shutdown(wait=True)
            self._executor = None

    def __enter__(self) -> "CapturePipeline":
        return self.start()

    def __exit__(self, exc_type, exc_value, traceback) -> None:
        self.close()

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def state(self) -> PipelineState:
        with self._state_lock:
            return self._state

    @property
    def busy(self) -> bool:
        return self._in_flight.locked()

    def _transition(self, new_state: PipelineState, capture_id: str) -> None:
        with self._state_lock:
            if new_state not in ALLOWED_TRANSITIONS[self._state]:
                raise RuntimeError(f"Invalid transition {self._state.value} -> {new_state.value}")
            logger.debug(f"[{capture_id}] {self._state.value} -> {new_state.value}")
            self._state = new_state

    # ------------------------------------------------------------------
    # Capture
    # ------------------------------------------------------------------

    def capture(self, callback: Optional[Callable[[CaptureResult], None]] = None) -> "Future[CaptureResult]":
        """Request one capture.

        Args:
            callback: Optional function called once with the result, on
                the thread that completes the request.

        Returns:
            Future resolved exactly once with a CaptureResult.
        """
        capture_id = uuid.uuid4().hex[:12]
        result_future: "Future[CaptureResult]" = Future()
        if callback is not None:
            result_future.add_done_callback(lambda f: None if f.cancelled() else callback(f.result()))

        if not self._in_flight.acquire(blocking=False):
            logger.warning(f"[{capture_id}] Rejected: another capture is in flight")
            self._deliver(result_future, CaptureResult(
                capture_id=capture_id,
                failure=CaptureFailure(ErrorCode.BUSY, "A capture is already in progress"),
            ))
            return result_future

        tracker = CaptureTracker(capture_id, logger=logger)
        self._transition(PipelineState.ACQUIRING, capture_id)
        logger.info(f"[{capture_id}] Capture requested")

        if self._executor is None or self.context.session is None or not self.context.running:
            self._fail(result_future, tracker, ErrorCode.NO_ACTIVE_SESSION, "No active sensing session")
            return result_future

        try:
            self.context.post(lambda: self._acquire_and_decode(result_future, tracker))
        except RuntimeError as e:
            self._fail(result_future, tracker, ErrorCode.NO_ACTIVE_SESSION, str(e))

        return result_future

    def _acquire_and_decode(self, result_future: Future, tracker: CaptureTracker) -> None:
        """Acquisition thread: acquire, decode, release, hand off."""
        capture_id = tracker.capture_id
        try:
            # The frame stays open until decoding has copied it out
            with ExitStack() as frame_scope:
                with tracker.stage("acquire"):
                    raw = frame_scope.enter_context(self.acquirer.acquire())
                self._transition(PipelineState.DECODING, capture_id)
                with tracker.stage("decode"):
                    decoded = decode_raw_frame(
                        raw,
                        color_conversion=self.config.color_conversion,
                        jpeg_quality=self.config.jpeg_quality,
                    )
        except CaptureError as e:
            self._fail(result_future, tracker, ErrorCode.CAPTURE_FAILED, f"{e.kind}: {e}")
            return
        except Exception as e:
            logger.error(f"[{capture_id}] Unexpected acquisition error: {e}", exc_info=True)
            self._fail(result_future, tracker, ErrorCode.CAPTURE_FAILED, f"{type(e).__name__}: {e}")
            return

        # Sensor images are closed; only owned arrays cross to the encoder
        self._transition(PipelineState.ENCODING, capture_id)
        executor = self._executor
        if executor is None:
            self._fail(result_future, tracker, ErrorCode.IO_ERROR, "Encoder is shut down")
            return
        try:
            executor.submit(self._encode, decoded, result_future, tracker)
        except RuntimeError as e:
            self._fail(result_future, tracker, ErrorCode.IO_ERROR, f"Encoder unavailable: {e}")

    def _encode(self, decoded: DecodedCapture, result_future: Future, tracker: CaptureTracker) -> None:
        """Encoder thread: pack pages and write the capture file."""
        capture_id = tracker.capture_id
        try:
            with tracker.stage("pack"):
                pages = [
                    pack_color(decoded.color),
                    pack_depth(decoded.depth),
                    pack_confidence(decoded.confidence),
                ]

            path = timestamped_capture_path(
                self.config.output_dir,
                prefix=self.config.filename_prefix,
                timestamp_ms=time.time_ns() // 1_000_000,
            )
            metadata = {
                "description": format_intrinsics_metadata(decoded.intrinsics),
                "artist": self.config.artist,
                "software": self.config.software,
            }

            with tracker.stage("write"):
                self.writer.write(path, pages, metadata)

        except SaveFailedError as e:
            self._fail(result_future, tracker, ErrorCode.SAVE_FAILED, str(e))
            return
        except CaptureIOError as e:
            self._fail(result_future, tracker, ErrorCode.IO_ERROR, str(e))
            return
        except Exception as e:
            logger.error(f"[{capture_id}] Unexpected encoding error: {e}", exc_info=True)
            self._fail(result_future, tracker, ErrorCode.IO_ERROR, f"{type(e).__name__}: {e}")
            return

        self._transition(PipelineState.DONE, capture_id)
        logger.info(f"[{capture_id}] Capture saved: {path}")
        self._complete(result_future, CaptureResult(
            capture_id=capture_id,
            path=path,
            intrinsics=decoded.intrinsics,
            metrics=tracker.generate_report(),
        ))

    # ------------------------------------------------------------------
    # Result delivery
    # ------------------------------------------------------------------

    def _fail(self, result_future: Future, tracker: CaptureTracker, code: ErrorCode, message: str) -> None:
        self._transition(PipelineState.FAILED, tracker.capture_id)
        logger.error(f"[{tracker.capture_id}] Capture failed ({code.value}): {message}")
        self._complete(result_future, CaptureResult(
            capture_id=tracker.capture_id,
            failure=CaptureFailure(code, message),
            metrics=tracker.generate_report(),
        ))

    def _complete(self, result_future: Future, result: CaptureResult) -> None:
        # Free the pipeline before notifying, so a callback may capture again
        self._in_flight.release()
        self._deliver(result_future, result)

    @staticmethod
    def _deliver(result_future: Future, result: CaptureResult) -> None:
        try:
            result_future.set_result(result)
        except InvalidStateError:
            logger.debug(f"[{result.capture_id}] Result dropped: request was cancelled")
