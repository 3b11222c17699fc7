"""Inference concurrency layer.

Architecture:
    FastAPI (async) -> CycleController -> asyncio.Semaphore(N) -> ThreadPoolExecutor(N) -> ONNX detection

Cycle controllers use ``InferencePool.run`` as their runner, so the engine
call leaves the event loop while aggregation and supersession checks stay on
it. A detection that cannot get a slot within ``slot_timeout`` seconds is
rejected with TimeoutError (503 over HTTP) and the engine is never called.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from typing import TYPE_CHECKING, TypeVar

if TYPE_CHECKING:
    from collections.abc import Callable

    from pawplanner.config import Settings

logger = logging.getLogger(__name__)

T = TypeVar("T")


class InferencePool:
    """Bounds concurrent detections and runs them on worker threads."""

    def __init__(self, settings: Settings) -> None:
        self._slot_timeout = settings.slot_timeout
        self._semaphore = asyncio.Semaphore(settings.max_concurrent)
        self._executor = ThreadPoolExecutor(
            max_workers=settings.max_concurrent,
            thread_name_prefix="pawplanner-detect",
        )
        self._active_count: int = 0
        self._queue_depth: int = 0
        self._rejected_count: int = 0
        self._completed_count: int = 0
        self._counter_lock = threading.Lock()

    async def run(self, func: Callable[..., T], *args: object) -> T:
        """Run one engine call on a worker thread once a slot is free.

        Raises:
            TimeoutError: If no slot frees up within the configured timeout.
        """
        with self._counter_lock:
            self._queue_depth += 1
        try:
            await asyncio.wait_for(self._semaphore.acquire(), timeout=self._slot_timeout)
        except TimeoutError:
            with self._counter_lock:
                self._rejected_count += 1
            logger.warning(
                "Rejected %s: no detection slot free after %.1fs (%d running)",
                getattr(func, "__qualname__", func),
                self._slot_timeout,
                self.active_count,
            )
            raise
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
                self._completed_count += 1

    @property
    def active_count(self) -> int:
        """Number of detections currently running."""
        with self._counter_lock:
            return self._active_count

    @property
    def queue_depth(self) -> int:
        """Number of detections waiting for a slot."""
        with self._counter_lock:
            return self._queue_depth

    @property
    def rejected_count(self) -> int:
        """Detections turned away because no slot freed up in time."""
        with self._counter_lock:
            return self._rejected_count

    @property
    def completed_count(self) -> int:
        """Detections that ran to completion or failure on a worker thread."""
        with self._counter_lock:
            return self._completed_count

    def shutdown(self) -> None:
        """Shut down the worker threads, waiting for running detections."""
        self._executor.shutdown(wait=True)
