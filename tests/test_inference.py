"""Tests for the detection inference pool."""

from __future__ import annotations

import asyncio
import logging
import threading

import pytest

from pawplanner.config import Settings
from pawplanner.ml.inference import InferencePool


def _pool(max_concurrent: int = 1, slot_timeout: float = 0.05) -> InferencePool:
    return InferencePool(Settings(max_concurrent=max_concurrent, slot_timeout=slot_timeout))


class TestInferencePool:
    async def test_runs_call_on_worker_thread(self) -> None:
        pool = _pool()
        try:
            name = await pool.run(lambda: threading.current_thread().name)
        finally:
            pool.shutdown()

        assert name.startswith("pawplanner-detect")
        assert pool.completed_count == 1
        assert pool.active_count == 0

    async def test_saturated_pool_rejects_and_counts(self, caplog: pytest.LogCaptureFixture) -> None:
        pool = _pool()
        release = threading.Event()
        called: list[bytes] = []

        def detect(image: bytes) -> list[str]:
            called.append(image)
            return []

        busy = asyncio.create_task(pool.run(release.wait, 5))
        await asyncio.sleep(0.01)
        try:
            with caplog.at_level(logging.WARNING, logger="pawplanner.ml.inference"), pytest.raises(TimeoutError):
                await pool.run(detect, b"photo")
        finally:
            release.set()
            await busy
            pool.shutdown()

        assert called == []
        assert pool.rejected_count == 1
        assert pool.queue_depth == 0
        assert "Rejected" in caplog.text
        assert "detect" in caplog.text

    async def test_failed_call_releases_slot(self) -> None:
        pool = _pool()

        def explode() -> None:
            raise ValueError("bad tensor")

        try:
            with pytest.raises(ValueError, match="bad tensor"):
                await pool.run(explode)
            assert await pool.run(lambda: 42) == 42
        finally:
            pool.shutdown()

        assert pool.rejected_count == 0
        assert pool.completed_count == 2
