"""Tests for new-coin detection and launch alerting."""

from __future__ import annotations

from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

import pytest

from conftest import numbered_address
from pumpfun_creator_tracker.identity.models import CreatorIdentity, MetadataUnavailable
from pumpfun_creator_tracker.identity.resolver import WalletIdentityResolver
from pumpfun_creator_tracker.ingestor.feed_client import PumpFunClient, UpstreamUnavailable
from pumpfun_creator_tracker.ingestor.models import CoinRecord
from pumpfun_creator_tracker.monitor.new_coins import (
    LaunchOutcome,
    LaunchProcessor,
    NewCoinMonitor,
    SeenCache,
    build_alert_payload,
)
from pumpfun_creator_tracker.stats import CreatorStats, CreatorStatsEngine
from pumpfun_creator_tracker.storage import queries
from pumpfun_creator_tracker.storage.database import DatabaseManager
from pumpfun_creator_tracker.storage.repos import (
    AlertRepository,
    CoinRepository,
    CreatorRepository,
    MigrationRepository,
)

NEW_MINT = numbered_address("MintNew", 1)


async def _seed_migrator(db: DatabaseManager, make_coin, creator: str, migrated: int) -> None:
    """Store `creator` with `migrated` migrated coins and fresh statistics."""
    async with db.get_async_session() as session:
        await CreatorRepository(session).ensure(CreatorIdentity.wallet(creator))
        coins = CoinRepository(session)
        for i in range(migrated):
            mint = numbered_address("MintPrev", i)
            await coins.upsert(make_coin(mint, creator, complete=True), creator_key=creator)
            await MigrationRepository(session).record(mint, creator_key=creator)
        await CreatorStatsEngine().recompute(session, creator)


def _processor(db: DatabaseManager, feed=None, resolver=None) -> LaunchProcessor:
    return LaunchProcessor(
        db,
        feed or MagicMock(spec=PumpFunClient),
        resolver or WalletIdentityResolver(),
        CreatorStatsEngine(),
    )


async def _alert_count(db: DatabaseManager) -> int:
    async with db.get_async_session() as session:
        return await AlertRepository(session).count()


class TestSeenCache:
    def test_evicts_oldest(self) -> None:
        cache = SeenCache(max_size=2)
        for mint in ("a", "b", "c"):
            cache.add(mint)

        assert "a" not in cache
        assert "b" in cache
        assert "c" in cache
        assert len(cache) == 2

    def test_re_adding_refreshes_position(self) -> None:
        cache = SeenCache(max_size=2)
        cache.add("a")
        cache.add("b")
        cache.add("a")
        cache.add("c")

        assert "a" in cache
        assert "b" not in cache


def test_alert_payload_snapshot(make_coin, creator_a) -> None:
    coin = make_coin(NEW_MINT, creator_a, symbol="NEW")
    stats = CreatorStats(total_coins=3, migrated_coins=2, success_rate=Decimal("66.67"))
    payload = build_alert_payload(coin, CreatorIdentity.wallet(creator_a), stats)

    assert payload["mint"] == NEW_MINT
    assert payload["symbol"] == "NEW"
    assert payload["creator_kind"] == "wallet"
    assert payload["social_handle"] is None
    assert payload["migration_count"] == 2
    assert payload["total_coins"] == 3


class TestLaunchProcessor:
    @pytest.mark.asyncio
    async def test_launch_by_migrator_raises_alert(
        self, db: DatabaseManager, make_coin, creator_a
    ) -> None:
        await _seed_migrator(db, make_coin, creator_a, migrated=2)
        processor = _processor(db)

        outcome = await processor.process(make_coin(NEW_MINT, creator_a))

        assert outcome == LaunchOutcome.ALERTED
        async with db.get_async_session() as session:
            alerts = AlertRepository(session)
            assert await alerts.count() == 1
            creator = await CreatorRepository(session).get(creator_a)
        assert creator is not None
        assert creator.total_coins == 3
        assert creator.migrated_coins == 2

    @pytest.mark.asyncio
    async def test_alert_snapshot_holds_migration_count(
        self, db: DatabaseManager, make_coin, creator_a
    ) -> None:
        await _seed_migrator(db, make_coin, creator_a, migrated=2)
        await _processor(db).process(make_coin(NEW_MINT, creator_a))

        async with db.get_async_session() as session:
            alerts = await queries.list_alerts(session)
        assert len(alerts) == 1
        assert alerts[0]["coin_mint"] == NEW_MINT
        assert alerts[0]["alert_data"]["migration_count"] == 2

    @pytest.mark.asyncio
    async def test_second_observation_does_not_alert_again(
        self, db: DatabaseManager, make_coin, creator_a
    ) -> None:
        await _seed_migrator(db, make_coin, creator_a, migrated=2)
        processor = _processor(db)
        coin = make_coin(NEW_MINT, creator_a)

        assert await processor.process(coin) == LaunchOutcome.ALERTED
        assert await processor.process(coin) == LaunchOutcome.ALREADY_STORED
        assert await _alert_count(db) == 1

    @pytest.mark.asyncio
    async def test_creator_without_migrations_is_not_alerted(
        self, db: DatabaseManager, make_coin, creator_b
    ) -> None:
        feed = MagicMock(spec=PumpFunClient)
        feed.get_all_user_coins.return_value = []
        outcome = await _processor(db, feed).process(make_coin(NEW_MINT, creator_b))

        assert outcome == LaunchOutcome.STORED
        assert await _alert_count(db) == 0
        async with db.get_async_session() as session:
            creator = await CreatorRepository(session).get(creator_b)
        assert creator is not None
        assert creator.total_coins == 1

    @pytest.mark.asyncio
    async def test_coin_complete_on_arrival_is_not_its_own_history(
        self, db: DatabaseManager, make_coin, creator_b
    ) -> None:
        async with db.get_async_session() as session:
            await CreatorRepository(session).ensure(CreatorIdentity.wallet(creator_b))
        processor = _processor(db)

        outcome = await processor.process(make_coin(NEW_MINT, creator_b, complete=True))

        assert outcome == LaunchOutcome.STORED
        assert await _alert_count(db) == 0
        async with db.get_async_session() as session:
            creator = await CreatorRepository(session).get(creator_b)
        assert creator is not None
        assert (creator.total_coins, creator.migrated_coins) == (1, 1)

    @pytest.mark.asyncio
    async def test_hydrated_history_holding_only_this_coin_does_not_alert(
        self, db: DatabaseManager, make_coin, creator_b
    ) -> None:
        coin = make_coin(NEW_MINT, creator_b, complete=True)
        feed = MagicMock(spec=PumpFunClient)
        feed.get_all_user_coins.return_value = [coin]

        assert await _processor(db, feed).process(coin) == LaunchOutcome.STORED
        assert await _alert_count(db) == 0

    @pytest.mark.asyncio
    async def test_complete_launch_by_migrator_still_alerts(
        self, db: DatabaseManager, make_coin, creator_a
    ) -> None:
        await _seed_migrator(db, make_coin, creator_a, migrated=1)

        outcome = await _processor(db).process(make_coin(NEW_MINT, creator_a, complete=True))

        assert outcome == LaunchOutcome.ALERTED
        async with db.get_async_session() as session:
            alerts = await queries.list_alerts(session)
        assert alerts[0]["alert_data"]["migration_count"] == 2

    @pytest.mark.asyncio
    async def test_new_wallet_creator_is_hydrated(
        self, db: DatabaseManager, make_coin, creator_b
    ) -> None:
        past = make_coin(numbered_address("MintPast", 1), creator_b, complete=True)
        coin = make_coin(NEW_MINT, creator_b)
        feed = MagicMock(spec=PumpFunClient)
        feed.get_all_user_coins.return_value = [coin, past]

        outcome = await _processor(db, feed).process(coin)

        assert outcome == LaunchOutcome.ALERTED
        feed.get_all_user_coins.assert_awaited_once_with(creator_b)
        async with db.get_async_session() as session:
            assert await MigrationRepository(session).count() == 1
            creator = await CreatorRepository(session).get(creator_b)
        assert creator is not None
        assert (creator.total_coins, creator.migrated_coins) == (2, 1)

    @pytest.mark.asyncio
    async def test_known_creator_is_not_refetched(
        self, db: DatabaseManager, make_coin, creator_a
    ) -> None:
        await _seed_migrator(db, make_coin, creator_a, migrated=1)
        feed = MagicMock(spec=PumpFunClient)

        await _processor(db, feed).process(make_coin(NEW_MINT, creator_a))

        feed.get_all_user_coins.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_hydration_failure_still_stores_coin(
        self, db: DatabaseManager, make_coin, creator_b
    ) -> None:
        feed = MagicMock(spec=PumpFunClient)
        feed.get_all_user_coins.side_effect = UpstreamUnavailable("HTTP 503", status_code=503)

        outcome = await _processor(db, feed).process(make_coin(NEW_MINT, creator_b))

        assert outcome == LaunchOutcome.STORED
        async with db.get_async_session() as session:
            assert await CoinRepository(session).exists(NEW_MINT)

    @pytest.mark.asyncio
    async def test_unresolved_creator_stores_unlinked_coin(
        self, db: DatabaseManager, make_coin, creator_a
    ) -> None:
        resolver = AsyncMock()
        resolver.resolve.side_effect = MetadataUnavailable("no uri")

        outcome = await _processor(db, resolver=resolver).process(make_coin(NEW_MINT, creator_a))

        assert outcome == LaunchOutcome.STORED
        async with db.get_async_session() as session:
            coin = await CoinRepository(session).get(NEW_MINT)
        assert coin is not None
        assert coin.creator_key is None
        assert await _alert_count(db) == 0


class TestNewCoinMonitor:
    @staticmethod
    def _monitor(coins: list[CoinRecord], processor, **kwargs) -> NewCoinMonitor:
        feed = MagicMock(spec=PumpFunClient)
        feed.get_recent_coins.return_value = coins
        kwargs.setdefault("item_delay_seconds", 0)
        return NewCoinMonitor(feed, processor, interval_seconds=0.01, **kwargs)

    @pytest.mark.asyncio
    async def test_same_coin_on_next_tick_is_skipped(
        self, db: DatabaseManager, make_coin, creator_a
    ) -> None:
        await _seed_migrator(db, make_coin, creator_a, migrated=2)
        monitor = self._monitor([make_coin(NEW_MINT, creator_a)], _processor(db))

        assert await monitor.run_once()
        assert await monitor.run_once()

        assert monitor.stats.alerts_created == 1
        assert monitor.stats.items_processed == 1
        assert monitor.stats.items_skipped == 1
        assert await _alert_count(db) == 1

    @pytest.mark.asyncio
    async def test_storage_is_authoritative_after_eviction(
        self, db: DatabaseManager, make_coin, creator_a
    ) -> None:
        await _seed_migrator(db, make_coin, creator_a, migrated=1)
        coin = make_coin(NEW_MINT, creator_a)
        monitor = self._monitor([coin], _processor(db), seen_cache_size=1)

        await monitor.run_once()
        monitor.seen.add(numbered_address("MintSpare", 1))
        assert NEW_MINT not in monitor.seen
        await monitor.run_once()

        assert await _alert_count(db) == 1
        assert monitor.stats.alerts_created == 1

    @pytest.mark.asyncio
    async def test_processor_failure_is_counted_and_retried(self, make_coin, creator_a) -> None:
        processor = MagicMock(spec=LaunchProcessor)
        processor.process.side_effect = [RuntimeError("db down"), LaunchOutcome.STORED]
        monitor = self._monitor([make_coin(NEW_MINT, creator_a)], processor)

        await monitor.run_once()
        assert monitor.stats.item_errors == 1
        assert NEW_MINT not in monitor.seen

        await monitor.run_once()
        assert monitor.stats.items_processed == 1
        assert NEW_MINT in monitor.seen

    @pytest.mark.asyncio
    async def test_feed_failure_fails_the_scan(self) -> None:
        processor = MagicMock(spec=LaunchProcessor)
        monitor = self._monitor([], processor)
        monitor._feed.get_recent_coins.side_effect = UpstreamUnavailable("down")

        assert await monitor.run_once() is False
        assert monitor.stats.scans_failed == 1
        processor.process.assert_not_awaited()
