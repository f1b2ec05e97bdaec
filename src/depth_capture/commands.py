"""Command dispatch for host transports.

A host bridge (method channel, RPC server, CLI) forwards method calls
here and relays the response. ``captureTiff`` is the only command.
"""
from __future__ import annotations

from concurrent.futures import Future
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Union

from .errors import ErrorCode
from .pipeline import CapturePipeline, CaptureResult

Json = Union[None, bool, int, float, str, List["Json"], dict]

CAPTURE_TIFF = "captureTiff"


@dataclass
class CommandResponse:
    """Either a success value or an ``{code, message}`` error."""
    value: Optional[Json] = None
    error_code: Optional[str] = None
    error_message: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error_code is None

    def to_dict(self) -> Dict[str, Any]:
        if self.ok:
            return {"ok": True, "value": self.value}
        return {"ok": False, "error": {"code": self.error_code, "message": self.error_message}}

    @classmethod
    def from_capture(cls, result: CaptureResult) -> "CommandResponse":
        if result.success:
            return cls(value=str(result.path))
        return cls(error_code=result.failure.code.value, error_message=result.failure.message)


class CaptureCommandHandler:
    """Route method calls to the capture pipeline."""

    def __init__(self, pipeline: CapturePipeline) -> None:
        self.pipeline = pipeline
        self._handlers: Dict[str, Callable[[List[Json]], "Future[CommandResponse]"]] = {
            CAPTURE_TIFF: self._capture_tiff,
        }

    @property
    def methods(self) -> List[str]:
        return sorted(self._handlers)

    def handle(self, method: str, args: Optional[List[Json]] = None) -> "Future[CommandResponse]":
        """Dispatch ``method``; the Future resolves once with the response."""
        handler = self._handlers.get(method)
        if handler is None:
            response: "Future[CommandResponse]" = Future()
            response.set_result(CommandResponse(
                error_code=ErrorCode.NOT_IMPLEMENTED.value,
                error_message=f"Method '{method}' is not implemented",
            ))
            return response
        return handler(args or [])

    def _capture_tiff(self, args: List[Json]) -> "Future[CommandResponse]":
        response: "Future[CommandResponse]" = Future()
        self.pipeline.capture(callback=lambda result: response.set_result(CommandResponse.from_capture(result)))
        return response
