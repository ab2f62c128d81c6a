"""Main pipeline orchestrator for the pump.fun creator tracker.

This module provides the Pipeline class that wires the feed client, identity
resolver, statistics engine and monitors together and owns their lifecycle.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from dataclasses import dataclass
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from redis.asyncio import Redis

from pumpfun_creator_tracker.config import Settings, get_settings
from pumpfun_creator_tracker.identity.metadata import TokenMetadataClient
from pumpfun_creator_tracker.identity.resolver import (
    IdentityResolver,
    SocialIdentityResolver,
    WalletIdentityResolver,
)
from pumpfun_creator_tracker.identity.social import SocialGraphClient
from pumpfun_creator_tracker.ingestor.feed_client import PumpFunClient
from pumpfun_creator_tracker.monitor.migrations import MigrationMonitor
from pumpfun_creator_tracker.monitor.new_coins import LaunchProcessor, NewCoinMonitor
from pumpfun_creator_tracker.monitor.wallet_tracker import WalletTracker
from pumpfun_creator_tracker.scan.backfill import Backfill, BackfillReport
from pumpfun_creator_tracker.stats import CreatorStatsEngine
from pumpfun_creator_tracker.storage.database import DatabaseManager

logger = logging.getLogger(__name__)

DEFAULT_SHUTDOWN_GRACE_SECONDS = 10.0


class PipelineState(str, Enum):
    """Pipeline lifecycle states."""

    STOPPED = "stopped"
    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"
    ERROR = "error"


@dataclass
class PipelineStats:
    """Statistics for the pipeline."""

    started_at: datetime | None = None
    backfill_report: BackfillReport | None = None
    backfill_failed: bool = False
    last_error: str | None = None


class Pipeline:
    """Supervisor for backfill, polling loops and the wallet tracker.

    Pipeline flow:
        Feed Client -> Identity Resolver -> Store -> Stats Engine -> Alert

    The backfill, the new-coin loop, the migration loop and the wallet
    tracker run as independent tasks; the store's connection pool is the
    only thing they share.

    Example:
        ```python
        from pumpfun_creator_tracker.config import get_settings
        from pumpfun_creator_tracker.pipeline import Pipeline

        async with Pipeline(get_settings()) as pipeline:
            await pipeline.wait_closed()
        ```
    """

    def __init__(
        self,
        settings: Settings | None = None,
        *,
        db_manager: DatabaseManager | None = None,
        feed: PumpFunClient | None = None,
        resolver: IdentityResolver | None = None,
        shutdown_grace_seconds: float = DEFAULT_SHUTDOWN_GRACE_SECONDS,
    ) -> None:
        """Initialize the pipeline.

        Args:
            settings: Application settings. If not provided, uses get_settings().
            db_manager: Pre-built database manager (the pipeline then does not
                dispose it on stop).
            feed: Pre-built feed client (not closed on stop).
            resolver: Pre-built identity resolver; otherwise chosen from
                `IDENTITY_MODE`.
            shutdown_grace_seconds: Upper bound on waiting for each component
                to stop.
        """
        self._settings = settings or get_settings()
        self._grace = shutdown_grace_seconds

        self._state = PipelineState.STOPPED
        self._stats = PipelineStats()

        self._owns_db = db_manager is None
        self._owns_feed = feed is None
        self._owns_resolver = resolver is None
        self._db_manager = db_manager
        self._feed = feed
        self._resolver = resolver

        # Components (initialized in start())
        self._redis: Redis | None = None
        self._metadata_client: TokenMetadataClient | None = None
        self._social_client: SocialGraphClient | None = None
        self._engine: CreatorStatsEngine | None = None
        self._processor: LaunchProcessor | None = None
        self._backfill: Backfill | None = None
        self._new_coin_monitor: NewCoinMonitor | None = None
        self._migration_monitor: MigrationMonitor | None = None
        self._wallet_tracker: WalletTracker | None = None

        # Synchronization
        self._stop_event: asyncio.Event | None = None
        self._backfill_task: asyncio.Task[None] | None = None

    @property
    def state(self) -> PipelineState:
        """Current pipeline state."""
        return self._state

    @property
    def stats(self) -> PipelineStats:
        """Current pipeline statistics."""
        return self._stats

    @property
    def is_running(self) -> bool:
        """Check if pipeline is running."""
        return self._state == PipelineState.RUNNING

    @property
    def db_manager(self) -> DatabaseManager:
        if self._db_manager is None:
            self._db_manager = DatabaseManager(self._settings.database.url)
        return self._db_manager

    @property
    def new_coin_monitor(self) -> NewCoinMonitor | None:
        return self._new_coin_monitor

    @property
    def migration_monitor(self) -> MigrationMonitor | None:
        return self._migration_monitor

    @property
    def wallet_tracker(self) -> WalletTracker | None:
        return self._wallet_tracker

    @property
    def backfill_task(self) -> asyncio.Task[None] | None:
        return self._backfill_task

    async def start(self) -> None:
        """Start the pipeline.

        Raises:
            RuntimeError: If pipeline is already running.
            StoreUnavailable: If the database cannot be reached.
        """
        if self._state != PipelineState.STOPPED:
            raise RuntimeError(f"Cannot start pipeline in state {self._state}")

        self._state = PipelineState.STARTING
        self._stop_event = asyncio.Event()
        logger.info("Starting pipeline...")

        try:
            await self.db_manager.check_connection()
            self._initialize_components()
            await self._start_background_services()
            self._stats.started_at = datetime.now(UTC)
            self._state = PipelineState.RUNNING
            logger.info("Pipeline started successfully")
        except Exception as e:
            self._state = PipelineState.ERROR
            self._stats.last_error = str(e)
            logger.error("Failed to start pipeline: %s", e)
            await self._cleanup()
            raise

    async def stop(self) -> None:
        """Stop the pipeline gracefully.

        In-flight items are allowed to finish within the grace period; then
        clients are closed and the connection pool is released.
        """
        if self._state == PipelineState.STOPPED:
            return

        self._state = PipelineState.STOPPING
        logger.info("Stopping pipeline...")

        if self._stop_event:
            self._stop_event.set()

        await self._stop_background_services()
        await self._cleanup()

        self._state = PipelineState.STOPPED
        logger.info("Pipeline stopped")

    def request_stop(self) -> None:
        """Ask `run()` / `wait_closed()` to return; safe to call from a signal handler."""
        if self._stop_event:
            self._stop_event.set()

    async def wait_closed(self) -> None:
        if self._stop_event:
            await self._stop_event.wait()

    def _build_resolver(self) -> IdentityResolver:
        settings = self._settings
        if settings.scan.identity_mode == "wallet":
            return WalletIdentityResolver()

        if settings.social.api_key is None:
            raise ValueError("TWITTER_API_KEY is required when IDENTITY_MODE=social")
        self._metadata_client = TokenMetadataClient(settings.solana.rpc_url)
        self._social_client = SocialGraphClient(
            api_key=settings.social.api_key.get_secret_value(),
            base_url=settings.social.api_url,
            redis=self._redis,
            cache_ttl_seconds=settings.social.cache_ttl_seconds,
        )
        return SocialIdentityResolver(self._metadata_client, self._social_client)

    def _initialize_components(self) -> None:
        """Initialize all pipeline components."""
        settings = self._settings
        scan = settings.scan

        if settings.redis.enabled and settings.redis.url:
            logger.debug("Initializing Redis connection...")
            self._redis = Redis.from_url(settings.redis.url)

        if self._feed is None:
            logger.debug("Initializing pump.fun client...")
            self._feed = PumpFunClient(
                base_url=settings.pumpfun.api_url,
                timeout=settings.pumpfun.timeout_seconds,
                max_retries=settings.pumpfun.max_retries,
                requests_per_second=settings.pumpfun.requests_per_second,
            )

        if self._resolver is None:
            logger.debug("Initializing %s identity resolver...", scan.identity_mode)
            self._resolver = self._build_resolver()

        db = self.db_manager
        item_delay = scan.item_delay_ms / 1000
        self._engine = CreatorStatsEngine()
        self._processor = LaunchProcessor(
            db,
            self._feed,
            self._resolver,
            self._engine,
            hydrate_new_creators=scan.identity_mode == "wallet",
        )

        if scan.historical_enabled:
            self._backfill = Backfill(
                self._feed,
                db,
                self._resolver,
                self._engine,
                limit=scan.historical_limit,
                page_size=scan.historical_page_size,
            )

        if scan.realtime_enabled:
            self._new_coin_monitor = NewCoinMonitor(
                self._feed,
                self._processor,
                interval_seconds=scan.new_coin_interval_ms / 1000,
                batch_size=scan.new_coin_batch_size,
                item_delay_seconds=item_delay,
                seen_cache_size=scan.seen_cache_size,
            )
            self._migration_monitor = MigrationMonitor(
                self._feed,
                db,
                self._resolver,
                self._engine,
                interval_seconds=scan.migration_interval_ms / 1000,
                batch_size=scan.migration_batch_size,
                item_delay_seconds=item_delay,
            )

        tracker = settings.wallet_tracker
        if tracker.enabled:
            stream_url = settings.solana.stream_url
            if not stream_url or scan.identity_mode != "wallet":
                logger.warning("Wallet tracker disabled: needs wallet mode and a stream URL")
            else:
                self._wallet_tracker = WalletTracker(
                    db,
                    self._feed,
                    self._processor,
                    stream_url=stream_url,
                    refresh_seconds=tracker.refresh_seconds,
                    freshness_seconds=tracker.freshness_seconds,
                    max_reconnects=tracker.max_reconnects,
                    reconnect_delay_seconds=tracker.reconnect_delay_seconds,
                )

    async def _start_background_services(self) -> None:
        """Start background services."""
        if self._backfill:
            logger.debug("Starting historical backfill...")
            self._backfill_task = asyncio.create_task(self._run_backfill())

        if self._new_coin_monitor:
            await self._new_coin_monitor.start()
        if self._migration_monitor:
            await self._migration_monitor.start()
        if self._wallet_tracker:
            await self._wallet_tracker.start()

    async def _run_backfill(self) -> None:
        if self._backfill is None:
            return
        try:
            self._stats.backfill_report = await self._backfill.run()
        except asyncio.CancelledError:
            logger.info("Historical backfill cancelled")
            raise
        except Exception as e:
            self._stats.backfill_failed = True
            self._stats.last_error = str(e)
            logger.error("Historical backfill failed: %s", e)

    async def _stop_component(self, name: str, stop: Any) -> None:
        try:
            await asyncio.wait_for(stop(), timeout=self._grace)
        except TimeoutError:
            logger.warning("%s did not stop within %.1fs", name, self._grace)
        except Exception as e:
            logger.error("Error stopping %s: %s", name, e)

    async def _stop_background_services(self) -> None:
        """Stop background services."""
        if self._wallet_tracker:
            await self._stop_component("wallet tracker", self._wallet_tracker.stop)
        if self._new_coin_monitor:
            await self._stop_component("new-coin monitor", self._new_coin_monitor.stop)
        if self._migration_monitor:
            await self._stop_component("migration monitor", self._migration_monitor.stop)

        if self._backfill_task:
            self._backfill_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._backfill_task
            self._backfill_task = None

    async def _cleanup(self) -> None:
        """Clean up resources."""
        if self._metadata_client:
            await self._metadata_client.close()
            self._metadata_client = None
        if self._social_client:
            await self._social_client.close()
            self._social_client = None
        if self._owns_resolver:
            self._resolver = None

        if self._feed and self._owns_feed:
            await self._feed.close()
            self._feed = None

        # Close database connections
        if self._db_manager and self._owns_db:
            await self._db_manager.dispose_async()
            self._db_manager = None

        # Close Redis connection
        if self._redis:
            await self._redis.aclose()
            self._redis = None

        logger.debug("Resources cleaned up")

    async def run(self) -> None:
        """Start the pipeline and run until `request_stop()` or cancellation."""
        await self.start()

        try:
            await self.wait_closed()
        except asyncio.CancelledError:
            pass
        finally:
            await self.stop()

    async def __aenter__(self) -> Pipeline:
        """Async context manager entry."""
        await self.start()
        return self

    async def __aexit__(self, *args: Any) -> None:
        """Async context manager exit."""
        await self.stop()
