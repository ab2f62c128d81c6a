"""Historical backfill of migrated coins and their creators.

Runs once at startup to seed the store: pages through the feed's migrated
listing, attributes every coin to a creator, records the migrations and then
rebuilds each creator's statistics from their full coin history. Per-item
failures are counted and skipped; they never abort the run.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field

from pumpfun_creator_tracker.identity.models import CreatorIdentity
from pumpfun_creator_tracker.identity.resolver import IdentityResolver, resolve_or_none
from pumpfun_creator_tracker.ingestor.feed_client import PumpFunClient
from pumpfun_creator_tracker.ingestor.models import CoinRecord
from pumpfun_creator_tracker.stats import CreatorStatsEngine
from pumpfun_creator_tracker.storage.database import DatabaseManager
from pumpfun_creator_tracker.storage.repos import (
    CoinRepository,
    CreatorRepository,
    MigrationRepository,
)

logger = logging.getLogger(__name__)

DEFAULT_LIMIT = 10_000
DEFAULT_PAGE_SIZE = 100
DEFAULT_INCREMENTAL_LIMIT = 500
MAX_CONSECUTIVE_PAGE_ERRORS = 3


@dataclass(frozen=True)
class BackfillReport:
    coins_scanned: int
    creators_found: int
    migrations_recorded: int
    creators_recomputed: int
    errors: int
    duration_seconds: float


@dataclass
class _Run:
    coins: list[CoinRecord] = field(default_factory=list)
    identities: dict[str, CreatorIdentity | None] = field(default_factory=dict)
    creator_keys: set[str] = field(default_factory=set)
    migrations_recorded: int = 0
    creators_recomputed: int = 0
    errors: int = 0


class Backfill:
    """One-shot historical scan.

    Example:
        ```python
        backfill = Backfill(feed, db, WalletIdentityResolver(), CreatorStatsEngine())
        report = await backfill.run()
        ```
    """

    def __init__(
        self,
        feed: PumpFunClient,
        db: DatabaseManager,
        resolver: IdentityResolver,
        engine: CreatorStatsEngine,
        *,
        limit: int = DEFAULT_LIMIT,
        page_size: int = DEFAULT_PAGE_SIZE,
        item_delay_seconds: float = 0.0,
        max_consecutive_page_errors: int = MAX_CONSECUTIVE_PAGE_ERRORS,
    ) -> None:
        self._feed = feed
        self._db = db
        self._resolver = resolver
        self._engine = engine
        self._limit = limit
        self._page_size = page_size
        self._item_delay = item_delay_seconds
        self._max_page_errors = max_consecutive_page_errors

    async def run(self) -> BackfillReport:
        """Full backfill, including each creator's complete history."""
        return await self._execute(self._limit, full_history=True)

    async def run_incremental(self, limit: int = DEFAULT_INCREMENTAL_LIMIT) -> BackfillReport:
        """Re-read the most recent migrated coins without refetching creator histories."""
        return await self._execute(limit, full_history=False)

    async def _execute(self, limit: int, *, full_history: bool) -> BackfillReport:
        started = time.monotonic()
        run = _Run()
        logger.info("Backfill starting (limit=%d, full_history=%s)", limit, full_history)

        await self._collect(run, limit)
        await self._resolve(run)
        await self._create_creators(run)
        await self._store_coins(run)
        await self._refresh_creators(run, full_history=full_history)

        report = BackfillReport(
            coins_scanned=len(run.coins),
            creators_found=len(run.creator_keys),
            migrations_recorded=run.migrations_recorded,
            creators_recomputed=run.creators_recomputed,
            errors=run.errors,
            duration_seconds=time.monotonic() - started,
        )
        logger.info(
            "Backfill finished: %d coins, %d creators, %d migrations, %d errors in %.1fs",
            report.coins_scanned,
            report.creators_found,
            report.migrations_recorded,
            report.errors,
            report.duration_seconds,
        )
        return report

    async def _collect(self, run: _Run, limit: int) -> None:
        seen: set[str] = set()
        offset = 0
        consecutive_errors = 0
        while offset < limit:
            size = min(self._page_size, limit - offset)
            try:
                page = await self._feed.get_coins_page(offset=offset, limit=size, complete=True)
            except Exception as e:
                run.errors += 1
                consecutive_errors += 1
                logger.warning("backfill: page at offset %d failed: %s", offset, e)
                if consecutive_errors >= self._max_page_errors:
                    logger.error(
                        "Backfill stopping after %d consecutive page failures", consecutive_errors
                    )
                    break
                offset += size
                continue

            consecutive_errors = 0
            for coin in page.records:
                if coin.mint not in seen:
                    seen.add(coin.mint)
                    run.coins.append(coin)
            logger.debug("Backfill page offset=%d: %d coins", offset, len(page.records))
            if page.is_last:
                break
            offset += size

    async def _resolve(self, run: _Run) -> None:
        for coin in run.coins:
            try:
                identity = await resolve_or_none(self._resolver, coin)
            except Exception as e:
                logger.warning("backfill: resolving creator of %s failed: %s", coin.mint, e)
                identity = None
            if identity is None:
                run.errors += 1
            run.identities[coin.mint] = identity

    async def _create_creators(self, run: _Run) -> None:
        unique: dict[str, CreatorIdentity] = {}
        for identity in run.identities.values():
            if identity is not None:
                unique.setdefault(identity.key, identity)

        for key, identity in unique.items():
            try:
                async with self._db.get_async_session() as session:
                    await CreatorRepository(session).ensure(identity)
            except Exception as e:
                run.errors += 1
                logger.warning("backfill: failed to create creator %s: %s", key, e)
                continue
            run.creator_keys.add(key)

    async def _store_coins(self, run: _Run) -> None:
        for coin in run.coins:
            identity = run.identities.get(coin.mint)
            creator_key = (
                identity.key if identity is not None and identity.key in run.creator_keys else None
            )
            try:
                async with self._db.get_async_session() as session:
                    await CoinRepository(session).upsert(
                        coin,
                        creator_key=creator_key,
                        social_url=identity.source_url if identity else None,
                        social_kind=(
                            identity.source_kind.value if identity and identity.source_kind else None
                        ),
                    )
                    if coin.complete and await MigrationRepository(session).record(
                        coin.mint, creator_key=creator_key
                    ):
                        run.migrations_recorded += 1
            except Exception as e:
                run.errors += 1
                logger.warning("backfill: failed to store coin %s: %s", coin.mint, e)

    async def _refresh_creators(self, run: _Run, *, full_history: bool) -> None:
        identities = {
            i.key: i for i in run.identities.values() if i is not None and i.key in run.creator_keys
        }
        for key, identity in identities.items():
            try:
                history: list[CoinRecord] = []
                if full_history and identity.is_wallet:
                    history = await self._feed.get_all_user_coins(key)

                async with self._db.get_async_session() as session:
                    if history:
                        await CoinRepository(session).bulk_upsert(history, creator_key=key)
                        migrations = MigrationRepository(session)
                        for coin in history:
                            if coin.complete and await migrations.record(
                                coin.mint, creator_key=key
                            ):
                                run.migrations_recorded += 1
                    await self._engine.recompute(session, key)
                run.creators_recomputed += 1
            except Exception as e:
                run.errors += 1
                logger.warning("backfill: failed to refresh creator %s: %s", key, e)
                continue

            if self._item_delay > 0:
                await asyncio.sleep(self._item_delay)
