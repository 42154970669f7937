"""Inference concurrency layer.

Architecture:
    FastAPI (async) -> FrameThrottle (per stream) -> asyncio.Semaphore(N)
        -> ThreadPoolExecutor(N) -> CoinClassifier.predict

Requests beyond the semaphore limit queue with a 5s timeout, then get 503.
Camera streams submitting frames faster than ``frame_interval`` are turned
away before they reach the pool.
"""

from __future__ import annotations

import asyncio
import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from typing import TYPE_CHECKING, TypeVar

if TYPE_CHECKING:
    from collections.abc import Callable

    from coincounter.config import Settings

logger = logging.getLogger(__name__)

T = TypeVar("T")

SEMAPHORE_TIMEOUT_SECONDS: float = 5.0


class InferencePool:
    """Manages the semaphore and thread pool for coin prediction."""

    def __init__(self, settings: Settings) -> None:
        self._semaphore = asyncio.Semaphore(settings.max_concurrent)
        self._executor = ThreadPoolExecutor(
            max_workers=settings.max_concurrent,
            thread_name_prefix="coin-inference",
        )
        self._active_count: int = 0
        self._queue_depth: int = 0
        self._counter_lock = threading.Lock()

    async def run(self, func: Callable[..., T], *args: object) -> T:
        """Submit a synchronous function to the inference thread pool.

        Raises:
            TimeoutError: If the semaphore cannot be acquired within the timeout.
        """
        with self._counter_lock:
            self._queue_depth += 1
        try:
            await asyncio.wait_for(
                self._semaphore.acquire(),
                timeout=SEMAPHORE_TIMEOUT_SECONDS,
            )
        finally:
            with self._counter_lock:
                self._queue_depth -= 1

        with self._counter_lock:
            self._active_count += 1
        try:
            loop = asyncio.get_running_loop()
            return await loop.run_in_executor(self._executor, func, *args)
        finally:
            self._semaphore.release()
            with self._counter_lock:
                self._active_count -= 1

    @property
    def active_count(self) -> int:
        """Number of currently running predictions."""
        with self._counter_lock:
            return self._active_count

    @property
    def queue_depth(self) -> int:
        """Number of requests waiting for a semaphore slot."""
        with self._counter_lock:
            return self._queue_depth

    def shutdown(self) -> None:
        """Shut down the thread pool executor."""
        self._executor.shutdown(wait=True)


class FrameThrottle:
    """Accepts at most one frame per ``interval`` seconds for each stream.

    Once more than ``max_streams`` streams are tracked, streams idle for a
    full interval are dropped; they no longer throttle anything.
    """

    def __init__(
        self,
        interval: float,
        clock: Callable[[], float] = time.monotonic,
        max_streams: int = 1024,
    ) -> None:
        self._interval = interval
        self._clock = clock
        self._max_streams = max_streams
        self._last_accepted: dict[str, float] = {}
        self._lock = threading.Lock()

    def try_acquire(self, stream_id: str) -> float:
        """Claim the next slot for ``stream_id``.

        Returns:
            0.0 if the frame is accepted, otherwise the seconds to wait.
        """
        now = self._clock()
        with self._lock:
            last = self._last_accepted.get(stream_id)
            if last is not None:
                remaining = self._interval - (now - last)
                if remaining > 0:
                    return remaining
            elif len(self._last_accepted) >= self._max_streams:
                self._prune_expired(now)
            self._last_accepted[stream_id] = now
            return 0.0

    def forget(self, stream_id: str) -> None:
        """Drop the timing state of a stream that has ended."""
        with self._lock:
            if self._last_accepted.pop(stream_id, None) is not None:
                logger.debug("Forgot stream %s", stream_id)

    @property
    def stream_count(self) -> int:
        with self._lock:
            return len(self._last_accepted)

    def _prune_expired(self, now: float) -> None:
        # Caller holds the lock.
        expired = [sid for sid, last in self._last_accepted.items() if now - last >= self._interval]
        for sid in expired:
            del self._last_accepted[sid]
        if expired:
            logger.debug("Pruned %d idle streams", len(expired))
