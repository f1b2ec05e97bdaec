"""Command-line entry point.

Usage:
    # One capture from the simulated sensor, written to the cache dir
    python -m depth_capture.runner

    # Custom config and output directory, JSON result on stdout
    python -m depth_capture.runner --config capture.yaml --output-dir ./captures --json

    # Inspect an existing capture file
    python -m depth_capture.runner --inspect /tmp/depth_capture_cache/capture_1700000000000.tiff
"""
from __future__ import annotations

import argparse
import json
import sys
from concurrent.futures import TimeoutError as FutureTimeoutError
from dataclasses import replace
from pathlib import Path
from typing import Any, Callable, Dict, Optional, Sequence, Tuple

import numpy as np

from .acquisition import AcquisitionContext, SensingSession
from .commands import CAPTURE_TIFF, CaptureCommandHandler, CommandResponse
from .config import CaptureConfig, load_config
from .pipeline import CapturePipeline
from .reader import read_capture
from .sensors.simulated import SimulatedSensorConfig, SimulatedSession
from .utils.logging import get_logger, setup_logging


def parse_size(text: str) -> Tuple[int, int]:
    """Parse ``WIDTHxHEIGHT``."""
    try:
        width, height = (int(v) for v in text.lower().split("x", 1))
    except ValueError:
        raise argparse.ArgumentTypeError(f"Expected WIDTHxHEIGHT, got {text!r}")
    if width <= 0 or height <= 0:
        raise argparse.ArgumentTypeError(f"Size must be positive, got {text!r}")
    return width, height


def run_capture(
    config: CaptureConfig,
    session_factory: Callable[[], SensingSession],
    timeout_s: float = 30.0,
) -> CommandResponse:
    """Start a pipeline, issue one ``captureTiff`` command, and shut down."""
    context = AcquisitionContext(session_factory, frame_interval_s=config.frame_interval_s)
    with CapturePipeline(context, config=config) as pipeline:
        handler = CaptureCommandHandler(pipeline)
        return handler.handle(CAPTURE_TIFF).result(timeout=timeout_s)


def inspect_capture(path: Path) -> Dict[str, Any]:
    """Summarize a capture file."""
    bundle = read_capture(path)
    valid = bundle.depth[bundle.depth > 0]
    return {
        "path": str(path),
        "pages": bundle.page_count,
        "color_size": [int(bundle.color.shape[1]), int(bundle.color.shape[0])],
        "depth_size": [int(bundle.depth.shape[1]), int(bundle.depth.shape[0])],
        "depth_mm": {
            "min": int(valid.min()) if valid.size else 0,
            "max": int(valid.max()) if valid.size else 0,
            "valid_fraction": float(valid.size) / float(bundle.depth.size),
        },
        "confidence_mean": float(np.mean(bundle.confidence)),
        "intrinsics": bundle.intrinsics.to_dict() if bundle.intrinsics else None,
        "description": bundle.description,
    }


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Depth capture to multi-page TIFF",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument("--config", type=str, help="Path to config file (YAML or JSON)")
    parser.add_argument("--output-dir", type=str, help="Directory for capture files")
    parser.add_argument("--inspect", type=str, metavar="PATH", help="Summarize an existing capture file")
    parser.add_argument("--color-size", type=parse_size, default=(640, 480), help="Simulated color size")
    parser.add_argument("--depth-size", type=parse_size, default=(160, 120), help="Simulated depth size")
    parser.add_argument("--row-padding", type=int, default=0, help="Simulated row padding in bytes")
    parser.add_argument("--timeout", type=float, default=30.0, help="Seconds to wait for the capture")
    parser.add_argument("--json", action="store_true", help="Print the result as JSON")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable verbose logging")
    return parser


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Main entry point."""
    args = build_parser().parse_args(argv)

    config = load_config(Path(args.config)) if args.config else CaptureConfig.from_env()
    if args.output_dir:
        config = replace(config, output_dir=Path(args.output_dir))
    if args.verbose:
        config = replace(config, log_level="DEBUG")

    # stdout carries only the result
    setup_logging(level=config.log_level_value, cloud_logging=config.cloud_logging, stream=sys.stderr)
    logger = get_logger("runner")

    if args.inspect:
        try:
            summary = inspect_capture(Path(args.inspect))
        except (OSError, ValueError) as e:
            logger.error(f"Cannot inspect {args.inspect}: {e}")
            return 1
        print(json.dumps(summary, indent=2))
        return 0

    sensor_config = SimulatedSensorConfig(
        color_size=args.color_size,
        depth_size=args.depth_size,
        principal_point=(args.color_size[0] / 2.0, args.color_size[1] / 2.0),
        row_padding=args.row_padding,
    )
    try:
        response = run_capture(config, lambda: SimulatedSession(sensor_config), timeout_s=args.timeout)
    except FutureTimeoutError:
        logger.error(f"No capture result within {args.timeout}s")
        return 1

    if args.json:
        print(json.dumps(response.to_dict(), indent=2))
    elif response.ok:
        print(response.value)
    else:
        print(f"{response.error_code}: {response.error_message}", file=sys.stderr)

    return 0 if response.ok else 1


if __name__ == "__main__":
    sys.exit(main())
