"""Tests for frame acquisition and the acquisition context."""

import threading
import time
from dataclasses import replace

import numpy as np
import pytest

from depth_capture.acquisition import AcquisitionContext, FrameAcquirer
from depth_capture.decoding import decode_confidence8, decode_depth16
from depth_capture.errors import (
    AcquireTimeoutError,
    CaptureError,
    FrameMismatchError,
    NoActiveSessionError,
)
from depth_capture.sensors.simulated import SimulatedSession


@pytest.fixture
def make_context():
    """Start contexts that run posted tasks only, stopping them afterwards."""
    contexts = []

    def make(session_factory, **kwargs):
        kwargs.setdefault("drive_updates", False)
        kwargs.setdefault("frame_interval_s", 0.005)
        ctx = AcquisitionContext(session_factory, **kwargs)
        ctx.start()
        contexts.append(ctx)
        return ctx

    yield make
    for ctx in contexts:
        ctx.stop()


class TestFrameAcquirer:
    def test_images_released_after_decode(self, make_context, session_factory, run_on_context):
        ctx = make_context(session_factory)
        acquirer = FrameAcquirer(ctx)

        def acquire():
            with acquirer.acquire() as raw:
                return decode_depth16(raw.depth), decode_confidence8(raw.confidence), raw.intrinsics

        depth, confidence, intrinsics = run_on_context(ctx, acquire)

        session = session_factory.sessions[0]
        assert session.images_opened == 3
        assert session.open_images == 0
        np.testing.assert_array_equal(depth.pixels, session.depth)
        np.testing.assert_array_equal(confidence.pixels, session.confidence)
        assert (intrinsics.ref_width, intrinsics.ref_height) == (64, 48)

    def test_images_released_when_block_raises(self, make_context, session_factory, run_on_context):
        ctx = make_context(session_factory)
        acquirer = FrameAcquirer(ctx)

        def acquire():
            with acquirer.acquire():
                raise ValueError("decode blew up")

        with pytest.raises(ValueError, match="decode blew up"):
            run_on_context(ctx, acquire)

        assert session_factory.sessions[0].open_images == 0

    def test_timestamp_mismatch(self, make_context, sensor_config, run_on_context):
        session = SimulatedSession(replace(sensor_config, depth_lag_frames=1))
        ctx = make_context(lambda: session)
        acquirer = FrameAcquirer(ctx, max_attempts=3)

        def acquire():
            with acquirer.acquire():
                pass

        with pytest.raises(FrameMismatchError) as excinfo:
            run_on_context(ctx, acquire)

        assert set(excinfo.value.timestamps) == {"color", "depth", "confidence"}
        assert session.frame_count == 3
        assert session.open_images == 0

    def test_retries_until_depth_available(self, make_context, sensor_config, run_on_context):
        session = SimulatedSession(replace(sensor_config, unavailable_frames=2))
        ctx = make_context(lambda: session)
        acquirer = FrameAcquirer(ctx, max_attempts=3)

        def acquire():
            with acquirer.acquire() as raw:
                return raw.timestamp

        timestamp = run_on_context(ctx, acquire)

        assert timestamp == 3 * sensor_config.frame_interval_ns
        assert session.open_images == 0

    def test_gives_up_when_depth_never_available(self, make_context, sensor_config, run_on_context):
        session = SimulatedSession(replace(sensor_config, unavailable_frames=10))
        ctx = make_context(lambda: session)
        acquirer = FrameAcquirer(ctx, max_attempts=2)

        def acquire():
            with acquirer.acquire():
                pass

        with pytest.raises(AcquireTimeoutError):
            run_on_context(ctx, acquire)
        assert session.frame_count == 2

    def test_refuses_other_threads(self, make_context, session_factory):
        acquirer = FrameAcquirer(make_context(session_factory))

        with pytest.raises(CaptureError, match="acquisition thread"):
            with acquirer.acquire():
                pass

    def test_one_frame_at_a_time(self, make_context, session_factory, run_on_context):
        ctx = make_context(session_factory)
        acquirer = FrameAcquirer(ctx)

        def nested():
            with acquirer.acquire():
                with acquirer.acquire():
                    pass

        with pytest.raises(CaptureError, match="already acquired"):
            run_on_context(ctx, nested)
        assert session_factory.sessions[0].open_images == 0

    def test_no_session(self, make_context, run_on_context):
        def broken_factory():
            raise RuntimeError("camera permission denied")

        ctx = make_context(broken_factory)
        acquirer = FrameAcquirer(ctx)

        def acquire():
            with acquirer.acquire():
                pass

        with pytest.raises(NoActiveSessionError):
            run_on_context(ctx, acquire)

    def test_invalid_attempts(self, session_factory):
        with pytest.raises(ValueError):
            FrameAcquirer(AcquisitionContext(session_factory), max_attempts=0)


class TestAcquisitionContext:
    def test_updates_only_on_its_thread(self, make_context, session_factory):
        frames = threading.Event()
        ctx = make_context(session_factory, drive_updates=True, on_frame=lambda frame: frames.set())

        assert frames.wait(2.0)
        ctx.stop()

        session = session_factory.sessions[0]
        assert session.update_threads == {ctx.ident}
        assert session.closed

    def test_post_runs_on_context_thread(self, make_context, session_factory, run_on_context):
        ctx = make_context(session_factory)

        assert run_on_context(ctx, threading.get_ident) == ctx.ident
        assert run_on_context(ctx, ctx.is_current)
        assert not ctx.is_current()

    def test_post_after_stop(self, make_context, session_factory):
        ctx = make_context(session_factory)
        ctx.stop()

        assert not ctx.running
        with pytest.raises(RuntimeError):
            ctx.post(lambda: None)

    def test_failed_session_keeps_running(self, make_context, run_on_context):
        def broken_factory():
            raise RuntimeError("no camera")

        ctx = make_context(broken_factory)

        assert ctx.running
        assert ctx.session is None
        assert run_on_context(ctx, lambda: 42) == 42

    def test_session_exists_when_start_returns(self, make_context, sensor_config):
        def slow_factory():
            time.sleep(0.2)
            return SimulatedSession(sensor_config)

        ctx = make_context(slow_factory)

        assert ctx.session is not None
        assert ctx.running

    def test_renewed_context_after_stop(self, make_context, session_factory, run_on_context):
        ctx = make_context(session_factory, frame_interval_s=0.01)
        ctx.stop()
        assert ctx.finished

        fresh = ctx.renewed()

        assert not fresh.finished
        assert fresh.session_factory is session_factory
        assert fresh.frame_interval_s == 0.01
        fresh.start()
        try:
            assert run_on_context(fresh, threading.get_ident) == fresh.ident
            assert len(session_factory.sessions) == 2
        finally:
            fresh.stop()
