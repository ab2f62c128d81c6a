"""Tests for the shared polling loop."""

from __future__ import annotations

import asyncio

import pytest

from pumpfun_creator_tracker.monitor.base import LoopState, PollingLoop


class CountingLoop(PollingLoop):
    name = "counting loop"

    def __init__(self, *, fail_on: set[int] | None = None, **kwargs) -> None:
        super().__init__(**kwargs)
        self.calls = 0
        self._fail_on = fail_on or set()

    async def scan(self) -> None:
        self.calls += 1
        if self.calls in self._fail_on:
            raise RuntimeError(f"scan {self.calls} failed")


class TestRunOnce:
    @pytest.mark.asyncio
    async def test_success_and_failure_are_counted(self) -> None:
        loop = CountingLoop(interval_seconds=1, fail_on={2})

        assert await loop.run_once() is True
        assert await loop.run_once() is False
        assert await loop.run_once() is True

        assert loop.stats.scans_completed == 2
        assert loop.stats.scans_failed == 1
        assert loop.stats.last_error == "scan 2 failed"
        assert loop.stats.last_scan_time is not None


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_scans_immediately_and_repeats(self) -> None:
        states: list[LoopState] = []
        loop = CountingLoop(interval_seconds=0.01, on_state_change=states.append)

        await loop.start()
        assert loop.state == LoopState.RUNNING
        await asyncio.sleep(0.1)
        await loop.stop()

        assert loop.calls >= 2
        assert loop.state == LoopState.STOPPED
        assert states == [LoopState.RUNNING, LoopState.STOPPED]

    @pytest.mark.asyncio
    async def test_failed_scan_does_not_stop_loop(self) -> None:
        loop = CountingLoop(interval_seconds=0.01, fail_on={1})

        await loop.start()
        await asyncio.sleep(0.1)
        await loop.stop()

        assert loop.stats.scans_failed == 1
        assert loop.stats.scans_completed >= 1

    @pytest.mark.asyncio
    async def test_stop_is_prompt_with_long_interval(self) -> None:
        loop = CountingLoop(interval_seconds=3600)

        await loop.start()
        await asyncio.sleep(0.01)
        await asyncio.wait_for(loop.stop(), timeout=1)

        assert loop.calls == 1
        assert loop.stopping

    @pytest.mark.asyncio
    async def test_double_start_and_idle_stop(self) -> None:
        loop = CountingLoop(interval_seconds=3600)
        await loop.stop()

        await loop.start()
        await loop.start()
        await asyncio.sleep(0.01)
        await loop.stop()

        assert loop.calls == 1
