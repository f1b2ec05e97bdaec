"""Multi-page TIFF serialization of capture pages."""
from __future__ import annotations

from pathlib import Path
from typing import Dict, Iterable, List, Mapping, Union

from PIL import Image, TiffImagePlugin

from .errors import CaptureIOError, SaveFailedError
from .models import CapturePage, Intrinsics
from .utils.io import ensure_local_dir, file_size
from .utils.logging import get_logger

logger = get_logger(__name__)


WRITE_STRATEGIES = ("append", "buffered")

COMPRESSION_SCHEMES = ("raw", "tiff_lzw", "tiff_adobe_deflate", "packbits")

# Metadata keys accepted by ``write`` and the Pillow TIFF save option each sets
TEXT_TAGS = {
    "description": "description",   # ImageDescription (270)
    "software": "software",         # Software (305)
    "artist": "artist",             # Artist (315)
    "copyright": "copyright",       # Copyright (33432)
}

_METADATA_KEYS = ("fx", "fy", "cx", "cy")


def format_intrinsics_metadata(intr: Intrinsics) -> str:
    """Render intrinsics as ``fx:<float>,fy:<float>,cx:<float>,cy:<float>``."""
    return f"fx:{float(intr.fx)},fy:{float(intr.fy)},cx:{float(intr.cx)},cy:{float(intr.cy)}"


def parse_intrinsics_metadata(text: str) -> Dict[str, float]:
    """Parse an ImageDescription written by ``format_intrinsics_metadata``.

    Raises:
        ValueError: If a field is missing or not a number.
    """
    values: Dict[str, float] = {}
    for item in text.strip().split(","):
        if not item:
            continue
        key, sep, raw = item.partition(":")
        if not sep:
            raise ValueError(f"Malformed metadata entry: {item!r}")
        values[key.strip()] = float(raw)

    missing = [k for k in _METADATA_KEYS if k not in values]
    if missing:
        raise ValueError(f"Metadata is missing {', '.join(missing)}: {text!r}")
    return values


class MultiPageImageWriter:
    """Write capture pages, in order, as pages of one TIFF file.

    Strategies:
        append:   create the file with page 0, then append each further
                  page to the file on disk (one page in memory at a time).
        buffered: hand every page to Pillow in a single ``save_all`` pass.

    The file is re-opened afterwards and its page count checked, so a
    truncated file is never reported as written.
    """

    def __init__(
        self,
        compression: str = "tiff_lzw",
        strategy: str = "append",
        include_alpha: bool = False,
        remove_partial_files: bool = False,
    ):
        if strategy not in WRITE_STRATEGIES:
            raise ValueError(f"Unknown write strategy: {strategy}")
        if compression not in COMPRESSION_SCHEMES:
            raise ValueError(f"Unsupported TIFF compression: {compression}")
        self.compression = compression
        self.strategy = strategy
        self.include_alpha = include_alpha
        self.remove_partial_files = remove_partial_files

    def write(
        self,
        path: Union[str, Path],
        pages: Iterable[CapturePage],
        metadata: Mapping[str, str],
    ) -> Path:
        """Write pages and metadata to ``path``.

        Args:
            path: Output file.
            pages: Pages in file order.
            metadata: Text tags keyed by ``TEXT_TAGS`` names, attached to
                every page.

        Returns:
            The written path.

        Raises:
            CaptureIOError: Writing raised.
            SaveFailedError: The file is missing, empty or lacks pages.
        """
        path = Path(path)
        page_list = list(pages)
        if not page_list:
            raise ValueError("At least one page is required")
        save_kwargs = self._save_kwargs(metadata)

        ensure_local_dir(path.parent)
        logger.debug(f"Writing {len(page_list)} pages to {path} ({self.strategy})")

        try:
            if self.strategy == "buffered":
                self._write_buffered(path, page_list, save_kwargs)
            else:
                self._write_first_page(path, page_list[0], save_kwargs)
                for page in page_list[1:]:
                    self._append_page(path, page, save_kwargs)
        except Exception as e:
            self._discard_partial(path)
            raise CaptureIOError(f"Writing {path.name} failed: {e}") from e

        self._verify(path, expected_pages=len(page_list))
        return path

    def _save_kwargs(self, metadata: Mapping[str, str]) -> Dict[str, object]:
        unknown = sorted(set(metadata) - set(TEXT_TAGS))
        if unknown:
            raise ValueError(f"Unsupported metadata keys: {', '.join(unknown)}")

        kwargs: Dict[str, object] = {"compression": self.compression}
        for key, value in metadata.items():
            kwargs[TEXT_TAGS[key]] = str(value)
        return kwargs

    def _write_first_page(self, path: Path, page: CapturePage, save_kwargs: Dict[str, object]) -> None:
        page.to_image(self.include_alpha).save(path, format="TIFF", **save_kwargs)

    def _append_page(self, path: Path, page: CapturePage, save_kwargs: Dict[str, object]) -> None:
        with TiffImagePlugin.AppendingTiffWriter(str(path)) as tiff:
            page.to_image(self.include_alpha).save(tiff, format="TIFF", **save_kwargs)
            tiff.newFrame()

    def _write_buffered(self, path: Path, pages: List[CapturePage], save_kwargs: Dict[str, object]) -> None:
        images = [page.to_image(self.include_alpha) for page in pages]
        images[0].save(
            path,
            format="TIFF",
            save_all=True,
            append_images=images[1:],
            **save_kwargs,
        )

    def _verify(self, path: Path, expected_pages: int) -> None:
        size = file_size(path)
        if size == 0:
            self._discard_partial(path)
            raise SaveFailedError(f"{path.name} is missing or empty")

        try:
            with Image.open(path) as im:
                page_count = getattr(im, "n_frames", 1)
        except OSError as e:
            self._discard_partial(path)
            raise SaveFailedError(f"{path.name} cannot be read back: {e}") from e

        if page_count != expected_pages:
            self._discard_partial(path)
            raise SaveFailedError(
                f"{path.name} holds {page_count} of {expected_pages} pages"
            )

        logger.info(f"Wrote {path} ({expected_pages} pages, {size} bytes)")

    def _discard_partial(self, path: Path) -> None:
        if not path.exists():
            return
        if self.remove_partial_files:
            path.unlink()
            logger.warning(f"Removed partial capture file: {path}")
        else:
            logger.warning(f"Leaving partial capture file for inspection: {path}")
