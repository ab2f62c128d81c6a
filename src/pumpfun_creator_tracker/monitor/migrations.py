"""Migration detection loop."""

from __future__ import annotations

import logging

from sqlalchemy.exc import SQLAlchemyError

from pumpfun_creator_tracker.identity.resolver import IdentityResolver, resolve_or_none
from pumpfun_creator_tracker.ingestor.feed_client import PumpFunClient
from pumpfun_creator_tracker.ingestor.models import CoinRecord
from pumpfun_creator_tracker.monitor.base import PollingLoop
from pumpfun_creator_tracker.monitor.new_coins import (
    fetch_new_creator_history,
    store_creator_history,
)
from pumpfun_creator_tracker.stats import CreatorStatsEngine
from pumpfun_creator_tracker.storage.database import DatabaseManager, StoreWriteFailed
from pumpfun_creator_tracker.storage.repos import (
    CoinRepository,
    CreatorRepository,
    MigrationRepository,
)

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 50


class MigrationMonitor(PollingLoop):
    """Polls recently migrated coins and records each migration once.

    A coin whose stored row is already migrated only has its fields
    refreshed: no event is appended and its creator is not recomputed.
    A wallet creator met here for the first time gets its full history
    from the feed before the recompute.
    """

    name = "migration monitor"

    def __init__(
        self,
        feed: PumpFunClient,
        db: DatabaseManager,
        resolver: IdentityResolver,
        engine: CreatorStatsEngine,
        *,
        interval_seconds: float = 60.0,
        batch_size: int = DEFAULT_BATCH_SIZE,
        item_delay_seconds: float = 0.5,
    ) -> None:
        super().__init__(interval_seconds=interval_seconds)
        self._feed = feed
        self._db = db
        self._resolver = resolver
        self._engine = engine
        self._batch_size = batch_size
        self._item_delay = item_delay_seconds

    async def scan(self) -> None:
        coins = await self._feed.get_recent_migrated_coins(limit=self._batch_size)
        for coin in coins:
            if self.stopping:
                break
            self._stats.items_seen += 1
            try:
                recorded = await self.process(coin)
            except Exception as e:
                self._stats.item_errors += 1
                self._stats.last_error = str(e)
                logger.warning("migration: failed to process %s: %s", coin.mint, e)
                continue

            if not recorded:
                self._stats.items_skipped += 1
                continue
            self._stats.items_processed += 1
            self._stats.migrations_recorded += 1
            await self._pause_between_items(self._item_delay)

    async def process(self, coin: CoinRecord) -> bool:
        """Record the migration of one coin.

        Returns:
            True if this call observed the migration first.

        Raises:
            StoreWriteFailed: If the store rejects a write.
        """
        if not coin.complete:
            logger.debug("Ignoring %s from migrated listing: not complete", coin.mint)
            return False

        try:
            async with self._db.get_async_session() as session:
                coins = CoinRepository(session)
                known = await coins.get(coin.mint)
                if known is not None and known.is_migrated:
                    # Refresh market data only; the migration is already on record.
                    await coins.upsert(coin, creator_key=known.creator_key)
                    return False

            identity = None
            history: list[CoinRecord] = []
            if known is None:
                identity = await resolve_or_none(self._resolver, coin)
                history = await fetch_new_creator_history(self._db, self._feed, identity)

            async with self._db.get_async_session() as session:
                coins = CoinRepository(session)
                current = await coins.get(coin.mint)
                if current is not None and current.is_migrated:
                    return False

                if current is not None:
                    creator_key = current.creator_key
                elif identity is not None:
                    await CreatorRepository(session).ensure(identity)
                    creator_key = identity.key
                    await store_creator_history(
                        session, creator_key, history, exclude_mint=coin.mint
                    )
                else:
                    creator_key = None

                await coins.upsert(coin, creator_key=creator_key)
                await MigrationRepository(session).record(coin.mint, creator_key=creator_key)
                if creator_key is not None:
                    await self._engine.recompute(session, creator_key)
        except SQLAlchemyError as e:
            raise StoreWriteFailed(f"failed to record migration of {coin.mint}: {e}") from e

        logger.info("Migration recorded: %s (%s) creator=%s", coin.symbol, coin.mint, creator_key)
        return True
