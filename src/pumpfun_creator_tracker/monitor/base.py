"""Shared scheduling for the interval-driven monitors."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from enum import Enum

logger = logging.getLogger(__name__)


class LoopState(str, Enum):
    """State of a polling loop."""

    STOPPED = "stopped"
    RUNNING = "running"


@dataclass
class LoopStats:
    """Counters for one polling loop."""

    scans_completed: int = 0
    scans_failed: int = 0
    items_seen: int = 0
    items_processed: int = 0
    items_skipped: int = 0
    item_errors: int = 0
    alerts_created: int = 0
    migrations_recorded: int = 0
    last_scan_time: datetime | None = None
    last_scan_duration_seconds: float = 0.0
    last_error: str | None = None


StateCallback = Callable[[LoopState], None]


class PollingLoop(ABC):
    """Runs `scan()` immediately on start and then every `interval_seconds`.

    A failed scan is logged and counted; the next tick runs regardless.
    `stop()` prevents future scans and waits for an in-flight scan to end.
    """

    name = "polling loop"

    def __init__(
        self,
        *,
        interval_seconds: float,
        on_state_change: StateCallback | None = None,
    ) -> None:
        self._interval = interval_seconds
        self._on_state_change = on_state_change

        self._state = LoopState.STOPPED
        self._stats = LoopStats()
        self._task: asyncio.Task[None] | None = None
        self._stop_event = asyncio.Event()

    @property
    def state(self) -> LoopState:
        return self._state

    @property
    def stats(self) -> LoopStats:
        return self._stats

    def _set_state(self, new_state: LoopState) -> None:
        old_state = self._state
        self._state = new_state
        if self._on_state_change and old_state != new_state:
            try:
                self._on_state_change(new_state)
            except Exception as e:
                logger.warning("State change callback failed: %s", e)

    @abstractmethod
    async def scan(self) -> None:
        """Run one pass over the upstream source."""

    async def run_once(self) -> bool:
        """Run a single scan, recording its outcome. Returns False if it failed."""
        started = datetime.now(UTC)
        try:
            await self.scan()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self._stats.scans_failed += 1
            self._stats.last_error = str(e)
            logger.error("%s scan failed: %s", self.name, e)
            return False
        finally:
            finished = datetime.now(UTC)
            self._stats.last_scan_time = finished
            self._stats.last_scan_duration_seconds = (finished - started).total_seconds()

        self._stats.scans_completed += 1
        return True

    async def start(self) -> None:
        if self._state != LoopState.STOPPED:
            logger.warning("Cannot start %s: already %s", self.name, self._state.value)
            return

        self._stop_event.clear()
        self._set_state(LoopState.RUNNING)
        self._task = asyncio.create_task(self._loop())
        logger.info("%s started (every %.1fs)", self.name, self._interval)

    async def stop(self) -> None:
        if self._state == LoopState.STOPPED:
            return

        self._stop_event.set()
        if self._task:
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
            self._task = None

        self._set_state(LoopState.STOPPED)
        logger.info("%s stopped", self.name)

    async def _loop(self) -> None:
        while not self._stop_event.is_set():
            await self.run_once()
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self._interval)
                break
            except TimeoutError:
                pass

    async def _pause_between_items(self, delay_seconds: float) -> None:
        """Throttle sequential item processing; returns early on stop."""
        if delay_seconds <= 0:
            return
        with contextlib.suppress(TimeoutError):
            await asyncio.wait_for(self._stop_event.wait(), timeout=delay_seconds)

    @property
    def stopping(self) -> bool:
        return self._stop_event.is_set()
