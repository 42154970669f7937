"""Tests for the inference pool and per-stream frame throttling."""

from __future__ import annotations

import asyncio
import threading

import pytest

from coincounter.config import Settings
from coincounter.ml import inference
from coincounter.ml.inference import FrameThrottle, InferencePool


class _Clock:
    def __init__(self) -> None:
        self.now = 100.0

    def __call__(self) -> float:
        return self.now


class TestFrameThrottle:
    def test_first_frame_accepted(self) -> None:
        throttle = FrameThrottle(1.0, clock=_Clock())
        assert throttle.try_acquire("cam-1") == 0.0

    def test_second_frame_within_interval_rejected(self) -> None:
        clock = _Clock()
        throttle = FrameThrottle(1.0, clock=clock)
        throttle.try_acquire("cam-1")

        clock.now += 0.25
        assert throttle.try_acquire("cam-1") == pytest.approx(0.75)

    def test_frame_after_interval_accepted(self) -> None:
        clock = _Clock()
        throttle = FrameThrottle(1.0, clock=clock)
        throttle.try_acquire("cam-1")

        clock.now += 1.0
        assert throttle.try_acquire("cam-1") == 0.0

    def test_rejected_frame_does_not_reset_window(self) -> None:
        clock = _Clock()
        throttle = FrameThrottle(1.0, clock=clock)
        throttle.try_acquire("cam-1")
        clock.now += 0.5
        throttle.try_acquire("cam-1")

        clock.now += 0.5
        assert throttle.try_acquire("cam-1") == 0.0

    def test_streams_are_independent(self) -> None:
        throttle = FrameThrottle(1.0, clock=_Clock())
        throttle.try_acquire("cam-1")
        assert throttle.try_acquire("cam-2") == 0.0
        assert throttle.stream_count == 2

    def test_zero_interval_never_throttles(self) -> None:
        throttle = FrameThrottle(0.0, clock=_Clock())
        assert throttle.try_acquire("cam-1") == 0.0
        assert throttle.try_acquire("cam-1") == 0.0

    def test_forget(self) -> None:
        clock = _Clock()
        throttle = FrameThrottle(1.0, clock=clock)
        throttle.try_acquire("cam-1")

        throttle.forget("cam-1")
        throttle.forget("never-seen")

        assert throttle.stream_count == 0
        assert throttle.try_acquire("cam-1") == 0.0

    def test_idle_streams_are_pruned(self) -> None:
        clock = _Clock()
        throttle = FrameThrottle(1.0, clock=clock, max_streams=100)

        for index in range(10_000):
            assert throttle.try_acquire(f"cam-{index}") == 0.0
            clock.now += 0.01

        assert throttle.stream_count <= 200

    def test_pruning_keeps_active_streams_throttled(self) -> None:
        clock = _Clock()
        throttle = FrameThrottle(1.0, clock=clock, max_streams=2)
        throttle.try_acquire("idle")
        clock.now += 1.5
        throttle.try_acquire("active")

        clock.now += 0.25
        assert throttle.try_acquire("new") == 0.0

        assert throttle.stream_count == 2
        assert throttle.try_acquire("active") == pytest.approx(0.75)


class TestInferencePool:
    async def test_runs_function_in_thread(self) -> None:
        pool = InferencePool(Settings(max_concurrent=1))
        try:
            name = await pool.run(lambda: threading.current_thread().name)
        finally:
            pool.shutdown()
        assert name.startswith("coin-inference")
        assert pool.active_count == 0
        assert pool.queue_depth == 0

    async def test_passes_arguments(self) -> None:
        pool = InferencePool(Settings(max_concurrent=2))
        try:
            assert await pool.run(lambda a, b: a + b, 2, 3) == 5
        finally:
            pool.shutdown()

    async def test_times_out_when_saturated(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setattr(inference, "SEMAPHORE_TIMEOUT_SECONDS", 0.05)
        pool = InferencePool(Settings(max_concurrent=1))
        release = threading.Event()
        try:
            blocker = asyncio.ensure_future(pool.run(release.wait, 5))
            await asyncio.sleep(0.05)
            with pytest.raises(TimeoutError):
                await pool.run(lambda: None)
            release.set()
            await blocker
        finally:
            release.set()
            pool.shutdown()
        assert pool.queue_depth == 0
