"""Tests for the creator statistics engine."""

from __future__ import annotations

from decimal import Decimal

import pytest

from conftest import numbered_address
from pumpfun_creator_tracker.identity.models import CreatorIdentity
from pumpfun_creator_tracker.stats import CreatorStats, CreatorStatsEngine, compute_success_rate
from pumpfun_creator_tracker.storage.database import DatabaseManager
from pumpfun_creator_tracker.storage.repos import CoinRepository, CreatorRepository


class TestComputeSuccessRate:
    @pytest.mark.parametrize(
        ("migrated", "total", "expected"),
        [
            (1, 4, "25.00"),
            (1, 3, "33.33"),
            (2, 3, "66.67"),
            (3, 3, "100.00"),
            (0, 7, "0.00"),
            (0, 0, "0.00"),
        ],
    )
    def test_rounding(self, migrated: int, total: int, expected: str) -> None:
        assert compute_success_rate(migrated, total) == Decimal(expected)


class TestCreatorStats:
    def test_empty(self) -> None:
        stats = CreatorStats.empty()
        assert stats.total_coins == 0
        assert stats.success_rate == Decimal("0.00")
        assert stats.snapshot()["last_migrated_symbol"] is None

    def test_snapshot_keys(self) -> None:
        stats = CreatorStats(total_coins=2, migrated_coins=1, success_rate=Decimal("50.00"))
        assert stats.snapshot() == {
            "total_coins": 2,
            "migration_count": 1,
            "success_rate": 50.0,
            "last_migrated_symbol": None,
            "last_migrated_mint": None,
            "last_migrated_at": None,
        }


class TestCreatorStatsEngine:
    @pytest.mark.asyncio
    async def test_recompute_four_coins_one_migrated(
        self, db: DatabaseManager, make_coin, creator_a
    ) -> None:
        mints = [numbered_address("MintSt", i) for i in range(4)]
        async with db.get_async_session() as session:
            await CreatorRepository(session).ensure(CreatorIdentity.wallet(creator_a))
            coins = CoinRepository(session)
            for i, mint in enumerate(mints):
                coin = make_coin(
                    mint, creator_a, complete=(i == 1), created_timestamp=1_000 + i, symbol=f"S{i}"
                )
                await coins.upsert(coin, creator_key=creator_a)

            stats = await CreatorStatsEngine().recompute(session, creator_a)

        assert stats.total_coins == 4
        assert stats.migrated_coins == 1
        assert stats.success_rate == Decimal("25.00")
        assert stats.last_migrated is not None
        assert stats.last_migrated.symbol == "S1"
        assert stats.last_coin is not None
        assert stats.last_coin.symbol == "S3"

        async with db.get_async_session() as session:
            creator = await CreatorRepository(session).get(creator_a)
        assert creator is not None
        assert creator.total_coins == 4
        assert creator.migrated_coins == 1
        assert creator.success_rate == Decimal("25.00")
        assert creator.last_migrated_symbol == "S1"
        assert creator.last_coin_mint == mints[3]

    @pytest.mark.asyncio
    async def test_recompute_is_repeatable(self, db: DatabaseManager, make_coin, creator_a) -> None:
        engine = CreatorStatsEngine()
        async with db.get_async_session() as session:
            await CreatorRepository(session).ensure(CreatorIdentity.wallet(creator_a))
            await CoinRepository(session).upsert(
                make_coin(numbered_address("MintSt", 9), creator_a, complete=True),
                creator_key=creator_a,
            )
            first = await engine.recompute(session, creator_a)
            second = await engine.recompute(session, creator_a)

        assert first == second
        assert second.success_rate == Decimal("100.00")

    @pytest.mark.asyncio
    async def test_creator_without_coins(self, db: DatabaseManager, creator_a) -> None:
        async with db.get_async_session() as session:
            await CreatorRepository(session).ensure(CreatorIdentity.wallet(creator_a))
            stats = await CreatorStatsEngine().recompute(session, creator_a)

        assert stats.total_coins == 0
        assert stats.success_rate == Decimal("0.00")

    @pytest.mark.asyncio
    async def test_unknown_creator_is_not_created(self, db: DatabaseManager, creator_b) -> None:
        async with db.get_async_session() as session:
            stats = await CreatorStatsEngine().recompute(session, creator_b)
            assert await CreatorRepository(session).get(creator_b) is None

        assert stats == CreatorStats.empty()
