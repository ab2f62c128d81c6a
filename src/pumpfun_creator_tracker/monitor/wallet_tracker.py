"""Push-based launch detection for known migrators.

Keeps the wallet stream subscribed to every wallet creator with at least one
migration and, when one of them transacts, checks whether they just launched
a coin. This only lowers alert latency; the new-coin monitor still sees every
launch.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from dataclasses import dataclass
from datetime import UTC, datetime

from pumpfun_creator_tracker.ingestor.feed_client import FeedClientError, PumpFunClient
from pumpfun_creator_tracker.ingestor.wallet_stream import WalletTransactionStream
from pumpfun_creator_tracker.monitor.new_coins import LaunchOutcome, LaunchProcessor
from pumpfun_creator_tracker.storage.database import DatabaseManager
from pumpfun_creator_tracker.storage.repos import CreatorRepository

logger = logging.getLogger(__name__)

DEFAULT_REFRESH_SECONDS = 600
DEFAULT_FRESHNESS_SECONDS = 30.0
DEFAULT_STOP_TIMEOUT_SECONDS = 5.0


@dataclass
class TrackerStats:
    """Statistics for the wallet tracker."""

    refreshes: int = 0
    failed_refreshes: int = 0
    wallets_tracked: int = 0
    lookups: int = 0
    fresh_coins: int = 0
    alerts_created: int = 0
    errors: int = 0
    last_refresh_time: datetime | None = None
    last_error: str | None = None


class WalletTracker:
    """Subscribes to migrator wallets and alerts on their fresh launches.

    Example:
        ```python
        tracker = WalletTracker(db, feed, processor, stream_url=settings.solana.stream_url)
        await tracker.start()
        ...
        await tracker.stop()
        ```
    """

    def __init__(
        self,
        db: DatabaseManager,
        feed: PumpFunClient,
        processor: LaunchProcessor,
        *,
        stream_url: str | None = None,
        stream: WalletTransactionStream | None = None,
        refresh_seconds: float = DEFAULT_REFRESH_SECONDS,
        freshness_seconds: float = DEFAULT_FRESHNESS_SECONDS,
        max_reconnects: int = 10,
        reconnect_delay_seconds: float = 5.0,
    ) -> None:
        if stream is None:
            if not stream_url:
                raise ValueError("stream_url is required when no stream is given")
            stream = WalletTransactionStream(
                stream_url,
                on_wallet_activity=self.handle_wallet_activity,
                max_reconnects=max_reconnects,
                reconnect_step=reconnect_delay_seconds,
            )
        self._db = db
        self._feed = feed
        self._processor = processor
        self._stream = stream
        self._refresh_seconds = refresh_seconds
        self._freshness_seconds = freshness_seconds

        self._stats = TrackerStats()
        self._stop_event = asyncio.Event()
        self._stream_task: asyncio.Task[None] | None = None
        self._refresh_task: asyncio.Task[None] | None = None

    @property
    def stats(self) -> TrackerStats:
        return self._stats

    @property
    def stream(self) -> WalletTransactionStream:
        return self._stream

    @property
    def is_running(self) -> bool:
        return self._refresh_task is not None

    async def refresh_wallets(self) -> int:
        """Reload the tracked set from the store and push it to the stream."""
        async with self._db.get_async_session() as session:
            wallets = await CreatorRepository(session).list_migrator_wallets()
        await self._stream.update_wallets(wallets)
        self._stats.refreshes += 1
        self._stats.wallets_tracked = len(wallets)
        self._stats.last_refresh_time = datetime.now(UTC)
        logger.info("Tracking %d creator wallets with migrations", len(wallets))
        return len(wallets)

    async def handle_wallet_activity(self, wallet: str) -> LaunchOutcome | None:
        """React to a transaction touching a tracked wallet.

        Returns the launch outcome when a fresh coin was processed, else None.
        """
        self._stats.lookups += 1
        try:
            coin = await self._feed.get_latest_user_coin(wallet)
        except FeedClientError as e:
            self._stats.errors += 1
            self._stats.last_error = str(e)
            logger.warning("Latest-coin lookup failed for %s: %s", wallet, e)
            return None
        if coin is None:
            return None

        age = coin.age_seconds()
        if age is None or age >= self._freshness_seconds:
            logger.debug("Latest coin of %s is not fresh (%s s)", wallet, age)
            return None
        self._stats.fresh_coins += 1

        async with self._db.get_async_session() as session:
            creator = await CreatorRepository(session).get(wallet)
        if creator is None or not creator.has_migrations:
            return None

        try:
            outcome = await self._processor.process(coin)
        except Exception as e:
            self._stats.errors += 1
            self._stats.last_error = str(e)
            logger.warning("wallet-tracker: failed to process %s of %s: %s", coin.mint, wallet, e)
            return None

        if outcome == LaunchOutcome.ALERTED:
            self._stats.alerts_created += 1
            logger.info("Instant alert for %s by %s", coin.symbol, wallet)
        return outcome

    async def start(self) -> None:
        if self.is_running:
            logger.warning("Wallet tracker already running")
            return
        self._stop_event.clear()
        try:
            await self.refresh_wallets()
        except Exception as e:
            self._stats.failed_refreshes += 1
            self._stats.last_error = str(e)
            logger.error("Initial wallet refresh failed: %s", e)

        self._stream_task = asyncio.create_task(self._stream.start())
        self._refresh_task = asyncio.create_task(self._refresh_loop())
        logger.info("Wallet tracker started")

    async def stop(self) -> None:
        if not self.is_running:
            return
        self._stop_event.set()
        await self._stream.stop()

        for task in (self._refresh_task, self._stream_task):
            if task is None:
                continue
            try:
                await asyncio.wait_for(task, timeout=DEFAULT_STOP_TIMEOUT_SECONDS)
            except TimeoutError:
                task.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await task
            except Exception as e:
                logger.warning("Wallet tracker task ended with error: %s", e)
        self._refresh_task = None
        self._stream_task = None
        logger.info("Wallet tracker stopped")

    async def _refresh_loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                try:
                    await asyncio.wait_for(
                        self._stop_event.wait(),
                        timeout=self._refresh_seconds,
                    )
                    break
                except TimeoutError:
                    pass

                await self.refresh_wallets()
            except asyncio.CancelledError:
                break
            except Exception as e:
                self._stats.failed_refreshes += 1
                self._stats.last_error = str(e)
                logger.error("Wallet refresh failed: %s", e)
