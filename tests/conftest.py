"""Shared pytest configuration and fixtures for the capture test suite."""

import threading
from pathlib import Path

import numpy as np
import pytest

from depth_capture.acquisition import AcquisitionContext
from depth_capture.config import CaptureConfig
from depth_capture.pipeline import CapturePipeline
from depth_capture.sensors.simulated import SimulatedSensorConfig, SimulatedSession


# =============================================================================
# Pytest Configuration
# =============================================================================

def pytest_configure(config):
    """Configure custom pytest markers."""
    config.addinivalue_line(
        "markers", "slow: mark test as slow running"
    )


# =============================================================================
# Shared Fixtures
# =============================================================================

@pytest.fixture
def output_dir(tmp_path) -> Path:
    """Directory capture files are written to."""
    return tmp_path / "captures"


@pytest.fixture
def capture_config(output_dir) -> CaptureConfig:
    """Fast config writing into the test output directory."""
    return CaptureConfig(
        output_dir=output_dir,
        frame_interval_s=0.005,
        acquire_timeout_s=2.0,
    )


@pytest.fixture
def sensor_config() -> SimulatedSensorConfig:
    """Small simulated sensor with padded rows."""
    return SimulatedSensorConfig(
        color_size=(64, 48),
        depth_size=(16, 12),
        focal_length=(50.0, 52.0),
        principal_point=(32.0, 24.0),
        row_padding=8,
    )


@pytest.fixture
def session_factory(sensor_config):
    """Factory recording every session it creates."""
    sessions = []

    def factory():
        session = SimulatedSession(sensor_config)
        sessions.append(session)
        return session

    factory.sessions = sessions
    return factory


@pytest.fixture
def context(session_factory, capture_config):
    """Acquisition context that is stopped after the test."""
    ctx = AcquisitionContext(session_factory, frame_interval_s=capture_config.frame_interval_s)
    yield ctx
    ctx.stop()


@pytest.fixture
def pipeline(context, capture_config):
    """Started pipeline over the simulated sensor."""
    pipe = CapturePipeline(context, config=capture_config)
    pipe.start()
    yield pipe
    pipe.close()


@pytest.fixture
def run_on_context():
    """Run a function on a context's thread and return its result."""

    def run(ctx, fn, timeout=5.0):
        return ctx.post(fn).result(timeout=timeout)

    return run


class BlockingWriter:
    """Writer stand-in that holds the encoder until released."""

    def __init__(self, inner):
        self.inner = inner
        self.entered = threading.Event()
        self.release = threading.Event()

    def write(self, path, pages, metadata):
        self.entered.set()
        self.release.wait(5.0)
        return self.inner.write(path, pages, metadata)


@pytest.fixture
def blocking_writer_cls():
    return BlockingWriter


@pytest.fixture
def rng() -> np.random.Generator:
    return np.random.default_rng(1234)
