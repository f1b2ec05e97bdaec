"""Tests for multi-page TIFF writing and reading."""

import numpy as np
import pytest
from PIL import Image

from depth_capture.errors import CaptureIOError, SaveFailedError
from depth_capture.models import DecodedImage, Intrinsics
from depth_capture.packing import pack_color, pack_confidence, pack_depth
from depth_capture.reader import IMAGE_DESCRIPTION_TAG, read_capture
from depth_capture.writer import (
    MultiPageImageWriter,
    format_intrinsics_metadata,
    parse_intrinsics_metadata,
)


INTRINSICS = Intrinsics(fx=250.0, fy=250.0, cx=80.0, cy=60.0, ref_width=16, ref_height=12)


@pytest.fixture
def arrays(rng):
    return {
        "color": rng.integers(0, 256, size=(24, 32, 3), dtype=np.uint8),
        "depth": rng.integers(0, 65536, size=(12, 16), dtype=np.uint16),
        "confidence": rng.integers(0, 256, size=(12, 16), dtype=np.uint8),
    }


@pytest.fixture
def pages(arrays):
    return [
        pack_color(DecodedImage(arrays["color"])),
        pack_depth(DecodedImage(arrays["depth"])),
        pack_confidence(DecodedImage(arrays["confidence"])),
    ]


@pytest.fixture
def metadata():
    return {
        "description": format_intrinsics_metadata(INTRINSICS),
        "artist": "ARCore Utility",
        "software": "depth_capture",
    }


class TestMetadata:
    def test_format(self):
        assert format_intrinsics_metadata(INTRINSICS) == "fx:250.0,fy:250.0,cx:80.0,cy:60.0"

    def test_parse(self):
        values = parse_intrinsics_metadata("fx:250.5,fy:251.0,cx:80.25,cy:60.0")

        assert values == {"fx": 250.5, "fy": 251.0, "cx": 80.25, "cy": 60.0}

    @pytest.mark.parametrize("text", ["", "fx:1,fy:2,cx:3", "fx:1,fy:2,cx:3,cy", "fx:a,fy:2,cx:3,cy:4"])
    def test_parse_rejects_incomplete(self, text):
        with pytest.raises(ValueError):
            parse_intrinsics_metadata(text)


class TestMultiPageImageWriter:
    @pytest.mark.parametrize("strategy", ["append", "buffered"])
    def test_writes_three_pages_in_order(self, tmp_path, pages, arrays, metadata, strategy):
        path = tmp_path / "capture.tiff"

        written = MultiPageImageWriter(strategy=strategy).write(path, pages, metadata)

        assert written == path
        assert path.stat().st_size > 0
        bundle = read_capture(path)
        assert bundle.page_count == 3
        np.testing.assert_array_equal(bundle.color, arrays["color"])
        np.testing.assert_array_equal(bundle.depth, arrays["depth"])
        np.testing.assert_array_equal(bundle.confidence, arrays["confidence"])

    def test_metadata_on_first_page(self, tmp_path, pages, metadata):
        path = MultiPageImageWriter().write(tmp_path / "capture.tiff", pages, metadata)

        with Image.open(path) as im:
            assert im.tag_v2[IMAGE_DESCRIPTION_TAG] == "fx:250.0,fy:250.0,cx:80.0,cy:60.0"
            assert im.tag_v2[315] == "ARCore Utility"

        intrinsics = read_capture(path).intrinsics
        assert intrinsics == Intrinsics(250.0, 250.0, 80.0, 60.0, 16, 12)

    @pytest.mark.parametrize("compression", ["raw", "packbits", "tiff_adobe_deflate"])
    def test_compression_is_lossless(self, tmp_path, pages, arrays, metadata, compression):
        path = MultiPageImageWriter(compression=compression).write(tmp_path / "c.tiff", pages, metadata)

        np.testing.assert_array_equal(read_capture(path).depth, arrays["depth"])

    def test_rgba_pages(self, tmp_path, pages, arrays, metadata):
        path = MultiPageImageWriter(include_alpha=True).write(tmp_path / "c.tiff", pages, metadata)

        with Image.open(path) as im:
            assert im.mode == "RGBA"
        np.testing.assert_array_equal(read_capture(path).depth, arrays["depth"])

    def test_missing_page_is_save_failed(self, tmp_path, pages, metadata, monkeypatch):
        writer = MultiPageImageWriter()
        original = writer._append_page
        appended = []

        def drop_third_page(path, page, save_kwargs):
            appended.append(page)
            if len(appended) == 2:
                return
            original(path, page, save_kwargs)

        monkeypatch.setattr(writer, "_append_page", drop_third_page)
        path = tmp_path / "capture.tiff"

        with pytest.raises(SaveFailedError):
            writer.write(path, pages, metadata)

        # Partial file stays for diagnostics
        assert path.exists()
        with Image.open(path) as im:
            assert im.n_frames == 2

    def test_partial_file_removed_when_configured(self, tmp_path, pages, metadata, monkeypatch):
        writer = MultiPageImageWriter(remove_partial_files=True)
        monkeypatch.setattr(writer, "_append_page", lambda path, page, save_kwargs: None)
        path = tmp_path / "capture.tiff"

        with pytest.raises(SaveFailedError):
            writer.write(path, pages, metadata)

        assert not path.exists()

    def test_append_error_is_io_error(self, tmp_path, pages, metadata, monkeypatch):
        writer = MultiPageImageWriter()

        def fail(path, page, save_kwargs):
            raise OSError("No space left on device")

        monkeypatch.setattr(writer, "_append_page", fail)

        with pytest.raises(CaptureIOError, match="No space left"):
            writer.write(tmp_path / "capture.tiff", pages, metadata)

    def test_creates_output_directory(self, tmp_path, pages, metadata):
        path = tmp_path / "a" / "b" / "capture.tiff"

        MultiPageImageWriter().write(path, pages, metadata)

        assert path.exists()

    def test_unknown_metadata_key(self, tmp_path, pages):
        with pytest.raises(ValueError):
            MultiPageImageWriter().write(tmp_path / "c.tiff", pages, {"camera": "x"})

    @pytest.mark.parametrize("kwargs", [{"strategy": "stream"}, {"compression": "jpeg"}])
    def test_invalid_options(self, kwargs):
        with pytest.raises(ValueError):
            MultiPageImageWriter(**kwargs)


class TestReadCapture:
    def test_single_page_file_rejected(self, tmp_path):
        path = tmp_path / "single.tiff"
        Image.new("RGB", (4, 4)).save(path, format="TIFF")

        with pytest.raises(ValueError):
            read_capture(path)

    def test_missing_description_gives_no_intrinsics(self, tmp_path, pages):
        path = MultiPageImageWriter().write(tmp_path / "c.tiff", pages, {})

        bundle = read_capture(path)

        assert bundle.intrinsics is None
        assert bundle.description == ""
