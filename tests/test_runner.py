"""Tests for the command-line entry point."""

import argparse
import json
import logging
import os

import pytest

from depth_capture.runner import main, parse_size
from depth_capture.utils.logging import ROOT_LOGGER_NAME


@pytest.fixture(autouse=True)
def reset_logging(monkeypatch):
    for name in list(os.environ):
        if name.startswith("DEPTH_CAPTURE_"):
            monkeypatch.delenv(name)
    yield
    logger = logging.getLogger(ROOT_LOGGER_NAME)
    logger.handlers.clear()
    logger.setLevel(logging.NOTSET)


def test_parse_size():
    assert parse_size("640x480") == (640, 480)
    assert parse_size("160X120") == (160, 120)


@pytest.mark.parametrize("text", ["640", "0x480", "axb"])
def test_parse_size_rejects(text):
    with pytest.raises(argparse.ArgumentTypeError):
        parse_size(text)


def test_capture_then_inspect(tmp_path, capsys):
    output_dir = tmp_path / "out"

    exit_code = main([
        "--output-dir", str(output_dir),
        "--color-size", "64x48",
        "--depth-size", "16x12",
        "--row-padding", "4",
        "--json",
    ])

    assert exit_code == 0
    response = json.loads(capsys.readouterr().out)
    assert response["ok"]
    path = response["value"]
    assert path.startswith(str(output_dir))

    assert main(["--inspect", path]) == 0
    summary = json.loads(capsys.readouterr().out)
    assert summary["pages"] == 3
    assert summary["depth_size"] == [16, 12]
    assert summary["color_size"] == [64, 48]
    assert summary["intrinsics"]["ref_width"] == 16
    assert summary["description"].startswith("fx:")


def test_plain_output_is_path(tmp_path, capsys):
    exit_code = main([
        "--output-dir", str(tmp_path),
        "--color-size", "32x24",
        "--depth-size", "8x6",
    ])

    assert exit_code == 0
    assert capsys.readouterr().out.strip().endswith(".tiff")


def test_config_file(tmp_path, capsys):
    config = tmp_path / "capture.yaml"
    config.write_text(f"output_dir: {tmp_path / 'from_config'}\nfilename_prefix: scan\n")

    assert main(["--config", str(config), "--color-size", "32x24", "--depth-size", "8x6"]) == 0

    written = list((tmp_path / "from_config").glob("scan_*.tiff"))
    assert len(written) == 1


def test_inspect_missing_file(tmp_path):
    assert main(["--inspect", str(tmp_path / "missing.tiff")]) == 1
