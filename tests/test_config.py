"""Tests for configuration loading."""

import json
from pathlib import Path

import pytest
import yaml

from depth_capture.config import CaptureConfig, load_config


def test_defaults():
    config = CaptureConfig()

    assert config.compression == "tiff_lzw"
    assert config.write_strategy == "append"
    assert config.color_conversion == "direct"
    assert config.artist == "ARCore Utility"
    assert config.output_dir.name == "depth_capture_cache"
    assert not config.remove_partial_files


def test_load_yaml(tmp_path):
    path = tmp_path / "capture.yaml"
    path.write_text(yaml.safe_dump({
        "output_dir": str(tmp_path / "out"),
        "write_strategy": "buffered",
        "max_acquire_attempts": 5,
    }))

    config = load_config(path, environ={})

    assert config.output_dir == tmp_path / "out"
    assert config.write_strategy == "buffered"
    assert config.max_acquire_attempts == 5
    assert config.compression == "tiff_lzw"


def test_load_json(tmp_path):
    path = tmp_path / "capture.json"
    path.write_text(json.dumps({"compression": "packbits", "include_alpha": True}))

    config = load_config(path, environ={})

    assert config.compression == "packbits"
    assert config.include_alpha is True


def test_empty_yaml_uses_defaults(tmp_path):
    path = tmp_path / "empty.yaml"
    path.write_text("")

    assert load_config(path, environ={}) == CaptureConfig()


def test_environment_overrides_file(tmp_path):
    path = tmp_path / "capture.yaml"
    path.write_text(yaml.safe_dump({"jpeg_quality": 80, "color_conversion": "jpeg"}))
    environ = {
        "DEPTH_CAPTURE_JPEG_QUALITY": "90",
        "DEPTH_CAPTURE_REMOVE_PARTIAL_FILES": "true",
        "DEPTH_CAPTURE_ACQUIRE_TIMEOUT_S": "2.5",
        "DEPTH_CAPTURE_OUTPUT_DIR": str(tmp_path / "env"),
    }

    config = load_config(path, environ=environ)

    assert config.jpeg_quality == 90
    assert config.color_conversion == "jpeg"
    assert config.remove_partial_files is True
    assert config.acquire_timeout_s == 2.5
    assert config.output_dir == Path(tmp_path / "env")


def test_from_env_without_file():
    config = CaptureConfig.from_env(environ={"DEPTH_CAPTURE_LOG_LEVEL": "debug"})

    assert config.log_level_value == 10


def test_round_trip_through_dict(tmp_path):
    config = CaptureConfig(output_dir=tmp_path, encode_workers=2)

    assert CaptureConfig.from_dict(config.to_dict()) == config


@pytest.mark.parametrize("overrides", [
    {"compression": "jpeg"},
    {"write_strategy": "stream"},
    {"color_conversion": "png"},
    {"jpeg_quality": 0},
    {"max_acquire_attempts": 0},
    {"acquire_timeout_s": 0},
    {"encode_workers": 0},
    {"filename_prefix": ""},
    {"log_level": "CHATTY"},
])
def test_invalid_values_rejected(overrides):
    with pytest.raises(ValueError):
        CaptureConfig(**overrides)


def test_unknown_key_rejected(tmp_path):
    path = tmp_path / "capture.yaml"
    path.write_text(yaml.safe_dump({"compresion": "raw"}))

    with pytest.raises(ValueError, match="compresion"):
        load_config(path, environ={})


def test_non_mapping_rejected(tmp_path):
    path = tmp_path / "capture.yaml"
    path.write_text(yaml.safe_dump(["a", "b"]))

    with pytest.raises(ValueError):
        load_config(path, environ={})
