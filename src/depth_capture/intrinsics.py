"""Camera intrinsics rescaling between sensor resolutions.

Calibration is reported against the color texture. Depth images are
smaller, so anything that reprojects depth pixels to rays needs the
intrinsics expressed in depth pixels.
"""
from __future__ import annotations

from .models import Intrinsics


def rescale_intrinsics(intr: Intrinsics, target_width: int, target_height: int) -> Intrinsics:
    """Express intrinsics at another resolution of the same sensor.

    Args:
        intr: Intrinsics measured at ``(intr.ref_width, intr.ref_height)``.
        target_width: Width of the target image in pixels.
        target_height: Height of the target image in pixels.

    Returns:
        New Intrinsics whose reference resolution is the target.

    Raises:
        ValueError: If either resolution is not positive.
    """
    if intr.ref_width <= 0 or intr.ref_height <= 0:
        raise ValueError(
            f"Reference resolution must be positive, got {intr.ref_width}x{intr.ref_height}"
        )
    if target_width <= 0 or target_height <= 0:
        raise ValueError(
            f"Target resolution must be positive, got {target_width}x{target_height}"
        )

    scale_w = float(target_width) / float(intr.ref_width)
    scale_h = float(target_height) / float(intr.ref_height)

    return Intrinsics(
        fx=intr.fx * scale_w,
        fy=intr.fy * scale_h,
        cx=intr.cx * scale_w,
        cy=intr.cy * scale_h,
        ref_width=int(target_width),
        ref_height=int(target_height),
    )
