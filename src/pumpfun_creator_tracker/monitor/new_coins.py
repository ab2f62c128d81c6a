"""New-coin detection and launch alerting.

`LaunchProcessor` handles one first-observed coin: it stores the coin,
refreshes its creator's statistics and raises an alert when the creator
already has migrations. The polling loop and the wallet tracker share it.
"""

from __future__ import annotations

import logging
from collections import OrderedDict
from enum import Enum
from typing import TYPE_CHECKING, Any

from sqlalchemy.exc import SQLAlchemyError

from pumpfun_creator_tracker.identity.models import CreatorIdentity
from pumpfun_creator_tracker.identity.resolver import IdentityResolver, resolve_or_none
from pumpfun_creator_tracker.ingestor.feed_client import FeedClientError, PumpFunClient
from pumpfun_creator_tracker.ingestor.models import CoinRecord
from pumpfun_creator_tracker.monitor.base import PollingLoop
from pumpfun_creator_tracker.stats import CreatorStats, CreatorStatsEngine
from pumpfun_creator_tracker.storage.database import DatabaseManager, StoreWriteFailed
from pumpfun_creator_tracker.storage.repos import (
    AlertRepository,
    CoinRepository,
    CreatorRepository,
    MigrationRepository,
)

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 50
DEFAULT_SEEN_CACHE_SIZE = 1000


class LaunchOutcome(str, Enum):
    """What happened to a coin handed to the launch processor."""

    ALREADY_STORED = "already_stored"
    STORED = "stored"
    ALERTED = "alerted"


class SeenCache:
    """Bounded insertion-ordered set of mints; the oldest entries are evicted first."""

    def __init__(self, max_size: int = DEFAULT_SEEN_CACHE_SIZE) -> None:
        self._max_size = max_size
        self._items: OrderedDict[str, None] = OrderedDict()

    def __contains__(self, mint: object) -> bool:
        return mint in self._items

    def __len__(self) -> int:
        return len(self._items)

    def add(self, mint: str) -> None:
        self._items[mint] = None
        self._items.move_to_end(mint)
        while len(self._items) > self._max_size:
            self._items.popitem(last=False)


def build_alert_payload(
    coin: CoinRecord,
    identity: CreatorIdentity,
    stats: CreatorStats,
) -> dict[str, Any]:
    """Snapshot stored with an alert; never updated afterwards."""
    payload: dict[str, Any] = {
        "mint": coin.mint,
        "symbol": coin.symbol,
        "name": coin.name,
        "image_uri": coin.image_uri,
        "created_timestamp": coin.created_timestamp,
        "creator_key": identity.key,
        "creator_kind": identity.kind.value,
        "creator_wallet": coin.creator,
        "social_handle": None if identity.is_wallet else identity.key,
        "social_display_name": identity.display_name,
    }
    payload.update(stats.snapshot())
    return payload


async def fetch_new_creator_history(
    db: DatabaseManager,
    feed: PumpFunClient,
    identity: CreatorIdentity | None,
) -> list[CoinRecord]:
    """Full coin history of a wallet creator the store has never seen.

    Returns an empty list for social or already-known creators, and when the
    feed cannot provide the history.
    """
    if identity is None or not identity.is_wallet:
        return []
    async with db.get_async_session() as session:
        if await CreatorRepository(session).get(identity.key) is not None:
            return []
    try:
        history = await feed.get_all_user_coins(identity.key)
    except FeedClientError as e:
        logger.warning("Could not fetch history of new creator %s: %s", identity.key, e)
        return []
    logger.info("Hydrating new creator %s with %d coins", identity.key, len(history))
    return history


async def store_creator_history(
    session: AsyncSession,
    creator_key: str,
    history: list[CoinRecord],
    *,
    exclude_mint: str,
) -> None:
    """Attribute `history` to `creator_key`, skipping the coin being processed."""
    coins = CoinRepository(session)
    migrations = MigrationRepository(session)
    for past in history:
        if past.mint == exclude_mint:
            continue
        await coins.upsert(past, creator_key=creator_key)
        if past.complete:
            await migrations.record(past.mint, creator_key=creator_key)


class LaunchProcessor:
    """Stores a newly observed coin and decides whether it warrants an alert.

    A coin that is already stored is left alone: alerts are only raised on
    first observation. A wallet creator seen for the first time has its
    full history fetched from the feed before the alert predicate runs.
    """

    def __init__(
        self,
        db: DatabaseManager,
        feed: PumpFunClient,
        resolver: IdentityResolver,
        engine: CreatorStatsEngine,
        *,
        hydrate_new_creators: bool = True,
    ) -> None:
        self._db = db
        self._feed = feed
        self._resolver = resolver
        self._engine = engine
        self._hydrate_new_creators = hydrate_new_creators

    async def is_stored(self, mint: str) -> bool:
        async with self._db.get_async_session() as session:
            return await CoinRepository(session).exists(mint)

    async def process(self, coin: CoinRecord) -> LaunchOutcome:
        """Handle one coin.

        Raises:
            StoreWriteFailed: If the store rejects any write for this coin.
        """
        try:
            if await self.is_stored(coin.mint):
                return LaunchOutcome.ALREADY_STORED

            identity = await resolve_or_none(self._resolver, coin)
            history = await self._history_for_new_creator(identity)

            async with self._db.get_async_session() as session:
                return await self._store(session, coin, identity, history)
        except SQLAlchemyError as e:
            raise StoreWriteFailed(f"failed to store launch {coin.mint}: {e}") from e

    async def _history_for_new_creator(
        self, identity: CreatorIdentity | None
    ) -> list[CoinRecord]:
        if not self._hydrate_new_creators:
            return []
        return await fetch_new_creator_history(self._db, self._feed, identity)

    async def _store(
        self,
        session: AsyncSession,
        coin: CoinRecord,
        identity: CreatorIdentity | None,
        history: list[CoinRecord],
    ) -> LaunchOutcome:
        coins = CoinRepository(session)
        if await coins.exists(coin.mint):
            return LaunchOutcome.ALREADY_STORED

        if identity is None:
            await coins.upsert(coin, creator_key=None)
            return LaunchOutcome.STORED

        await CreatorRepository(session).ensure(identity)
        await store_creator_history(session, identity.key, history, exclude_mint=coin.mint)

        await coins.upsert(
            coin,
            creator_key=identity.key,
            social_url=identity.source_url,
            social_kind=identity.source_kind.value if identity.source_kind else None,
        )
        if coin.complete:
            await MigrationRepository(session).record(coin.mint, creator_key=identity.key)

        stats = await self._engine.recompute(session, identity.key)
        # A coin that is already complete when first seen is not history.
        prior_migrations = stats.migrated_coins - (1 if coin.complete else 0)
        if prior_migrations <= 0:
            return LaunchOutcome.STORED

        alert = await AlertRepository(session).create_once(
            coin.mint, identity.key, build_alert_payload(coin, identity, stats)
        )
        if alert is None:
            return LaunchOutcome.STORED

        logger.info(
            "ALERT: %s (%s) by %s - %d/%d migrated (%s%%)",
            coin.symbol,
            coin.mint,
            identity.key,
            stats.migrated_coins,
            stats.total_coins,
            stats.success_rate,
        )
        return LaunchOutcome.ALERTED


class NewCoinMonitor(PollingLoop):
    """Polls the newest launches and feeds first-seen coins to the processor."""

    name = "new-coin monitor"

    def __init__(
        self,
        feed: PumpFunClient,
        processor: LaunchProcessor,
        *,
        interval_seconds: float = 10.0,
        batch_size: int = DEFAULT_BATCH_SIZE,
        item_delay_seconds: float = 0.5,
        seen_cache_size: int = DEFAULT_SEEN_CACHE_SIZE,
    ) -> None:
        super().__init__(interval_seconds=interval_seconds)
        self._feed = feed
        self._processor = processor
        self._batch_size = batch_size
        self._item_delay = item_delay_seconds
        self._seen = SeenCache(seen_cache_size)

    @property
    def seen(self) -> SeenCache:
        return self._seen

    async def scan(self) -> None:
        coins = await self._feed.get_recent_coins(limit=self._batch_size)
        for coin in coins:
            if self.stopping:
                break
            self._stats.items_seen += 1
            if coin.mint in self._seen:
                self._stats.items_skipped += 1
                continue

            try:
                outcome = await self._processor.process(coin)
            except Exception as e:
                self._stats.item_errors += 1
                self._stats.last_error = str(e)
                logger.warning("new-coin: failed to process %s: %s", coin.mint, e)
                continue

            self._seen.add(coin.mint)
            if outcome == LaunchOutcome.ALREADY_STORED:
                self._stats.items_skipped += 1
                continue

            self._stats.items_processed += 1
            if outcome == LaunchOutcome.ALERTED:
                self._stats.alerts_created += 1
            await self._pause_between_items(self._item_delay)
