"""
Tests for payhooks/workers/rate_limit_reaper.py.
"""
import asyncio

import pytest
from unittest.mock import MagicMock

from payhooks.workers.rate_limit_reaper import run_rate_limit_reaper


class TestRateLimitReaper:
    async def test_reaps_periodically_until_cancelled(self):
        limiter = MagicMock()
        limiter.reap = MagicMock(return_value=3)

        task = asyncio.create_task(run_rate_limit_reaper(limiter, interval=0.01))
        await asyncio.sleep(0.05)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert limiter.reap.call_count >= 2

    async def test_reap_error_does_not_stop_loop(self):
        limiter = MagicMock()
        limiter.reap = MagicMock(side_effect=[RuntimeError("boom"), 0, 0, 0, 0, 0, 0, 0, 0, 0])

        task = asyncio.create_task(run_rate_limit_reaper(limiter, interval=0.01))
        await asyncio.sleep(0.05)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert limiter.reap.call_count >= 2
