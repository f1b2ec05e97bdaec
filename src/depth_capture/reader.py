"""Read capture files back into arrays."""
from __future__ import annotations

from pathlib import Path
from typing import Union

import numpy as np
from PIL import Image

from .models import PAGE_ORDER, CaptureBundle, Intrinsics
from .packing import unpack_depth
from .writer import parse_intrinsics_metadata

IMAGE_DESCRIPTION_TAG = 270


def read_capture(path: Union[str, Path]) -> CaptureBundle:
    """Load color, depth and confidence pages plus intrinsics from a capture.

    Depth is unpacked back to uint16 millimetres. Intrinsics are in depth
    pixels; ``None`` if the description tag is absent or unparseable.

    Raises:
        ValueError: If the file does not hold the three capture pages.
    """
    path = Path(path)
    pages = []
    with Image.open(path) as im:
        page_count = getattr(im, "n_frames", 1)
        if page_count < len(PAGE_ORDER):
            raise ValueError(f"{path.name} has {page_count} pages, expected {len(PAGE_ORDER)}")

        description = str(im.tag_v2.get(IMAGE_DESCRIPTION_TAG, ""))
        for index in range(len(PAGE_ORDER)):
            im.seek(index)
            pages.append(np.array(im.convert("RGB")))

    color, packed_depth, confidence_rgb = pages
    depth = unpack_depth(packed_depth)

    intrinsics = None
    if description:
        try:
            values = parse_intrinsics_metadata(description)
        except ValueError:
            values = None
        if values is not None:
            intrinsics = Intrinsics(
                fx=values["fx"],
                fy=values["fy"],
                cx=values["cx"],
                cy=values["cy"],
                ref_width=int(depth.shape[1]),
                ref_height=int(depth.shape[0]),
            )

    return CaptureBundle(
        color=color,
        depth=depth,
        confidence=confidence_rgb[..., 0].copy(),
        intrinsics=intrinsics,
        description=description,
        page_count=page_count,
    )
