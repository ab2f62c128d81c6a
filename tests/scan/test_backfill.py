"""Tests for the historical backfill."""

from __future__ import annotations

import logging
from decimal import Decimal
from unittest.mock import MagicMock

import httpx
import pytest

from conftest import numbered_address
from pumpfun_creator_tracker.identity.models import CreatorIdentity, NoIdentitySignal
from pumpfun_creator_tracker.identity.metadata import TokenMetadataClient
from pumpfun_creator_tracker.identity.resolver import (
    SocialIdentityResolver,
    WalletIdentityResolver,
)
from pumpfun_creator_tracker.identity.social import SocialGraphClient
from pumpfun_creator_tracker.ingestor.feed_client import CoinPage, PumpFunClient, UpstreamUnavailable
from pumpfun_creator_tracker.ingestor.models import CoinRecord
from pumpfun_creator_tracker.scan.backfill import Backfill
from pumpfun_creator_tracker.stats import CreatorStatsEngine
from pumpfun_creator_tracker.storage.database import DatabaseManager
from pumpfun_creator_tracker.storage.repos import CreatorRepository, MigrationRepository


def _page(records: list[CoinRecord], *, offset: int, limit: int) -> CoinPage:
    return CoinPage(records=records, raw_count=len(records), offset=offset, limit=limit)


def _feed(pages, histories: dict[str, list[CoinRecord]] | None = None) -> MagicMock:
    """Feed double serving `pages(offset, limit)` and fixed per-creator histories."""
    feed = MagicMock(spec=PumpFunClient)

    async def get_coins_page(*, offset=0, limit=50, complete=None, include_nsfw=True):
        assert complete is True
        return pages(offset, limit)

    async def get_all_user_coins(address, **kwargs):
        return list((histories or {}).get(address, []))

    feed.get_coins_page.side_effect = get_coins_page
    feed.get_all_user_coins.side_effect = get_all_user_coins
    return feed


class TestBackfill:
    @pytest.mark.asyncio
    async def test_two_creators_three_migrations(
        self, db: DatabaseManager, make_coin, creator_a, creator_b
    ) -> None:
        a1 = make_coin(numbered_address("MintA", 1), creator_a, complete=True, created_timestamp=1_000)
        a2 = make_coin(numbered_address("MintA", 2), creator_a, complete=True, created_timestamp=2_000)
        b1 = make_coin(numbered_address("MintB", 1), creator_b, complete=True, created_timestamp=1_500)
        feed = _feed(
            lambda offset, limit: _page([a2, b1, a1], offset=offset, limit=limit),
            {creator_a: [a1, a2], creator_b: [b1]},
        )

        report = await Backfill(feed, db, WalletIdentityResolver(), CreatorStatsEngine()).run()

        assert report.coins_scanned == 3
        assert report.creators_found == 2
        assert report.creators_recomputed == 2
        assert report.migrations_recorded == 3
        assert report.errors == 0

        async with db.get_async_session() as session:
            creators = CreatorRepository(session)
            a = await creators.get(creator_a)
            b = await creators.get(creator_b)
            assert await MigrationRepository(session).count() == 3

        assert a is not None
        assert (a.total_coins, a.migrated_coins, a.success_rate) == (2, 2, Decimal("100.00"))
        assert b is not None
        assert (b.total_coins, b.migrated_coins, b.success_rate) == (1, 1, Decimal("100.00"))

    @pytest.mark.asyncio
    async def test_full_history_includes_unmigrated_coins(
        self, db: DatabaseManager, make_coin, creator_a
    ) -> None:
        migrated = make_coin(numbered_address("MintA", 1), creator_a, complete=True)
        duds = [make_coin(numbered_address("MintD", i), creator_a) for i in range(3)]
        feed = _feed(
            lambda offset, limit: _page([migrated], offset=offset, limit=limit),
            {creator_a: [migrated, *duds]},
        )

        await Backfill(feed, db, WalletIdentityResolver(), CreatorStatsEngine()).run()

        async with db.get_async_session() as session:
            creator = await CreatorRepository(session).get(creator_a)
        assert creator is not None
        assert creator.total_coins == 4
        assert creator.success_rate == Decimal("25.00")

    @pytest.mark.asyncio
    async def test_failed_page_is_skipped(self, db: DatabaseManager, make_coin, creator_a) -> None:
        def pages(offset: int, limit: int) -> CoinPage:
            if offset == 4:
                raise UpstreamUnavailable("HTTP 503", status_code=503)
            records = [
                make_coin(numbered_address("MintP", offset + i), creator_a, complete=True)
                for i in range(limit)
            ]
            return _page(records, offset=offset, limit=limit)

        feed = _feed(pages)
        backfill = Backfill(
            feed, db, WalletIdentityResolver(), CreatorStatsEngine(), limit=10, page_size=2
        )

        report = await backfill.run()

        assert feed.get_coins_page.await_count == 5
        assert report.coins_scanned == 8
        assert report.errors == 1
        assert report.migrations_recorded == 8

    @pytest.mark.asyncio
    async def test_stops_after_consecutive_page_failures(self, db: DatabaseManager) -> None:
        def pages(offset: int, limit: int) -> CoinPage:
            raise UpstreamUnavailable("down")

        feed = _feed(pages)
        backfill = Backfill(
            feed, db, WalletIdentityResolver(), CreatorStatsEngine(), limit=1_000, page_size=10
        )

        report = await backfill.run()

        assert feed.get_coins_page.await_count == 3
        assert report.errors == 3
        assert report.coins_scanned == 0

    @pytest.mark.asyncio
    async def test_unresolved_coin_stored_without_creator(
        self, db: DatabaseManager, make_coin, creator_a
    ) -> None:
        known = make_coin(numbered_address("MintK", 1), creator_a, complete=True)
        unknown = make_coin(numbered_address("MintU", 1), creator_a, complete=True)

        class PartialResolver:
            async def resolve(self, coin: CoinRecord) -> CreatorIdentity:
                if coin.mint == unknown.mint:
                    raise NoIdentitySignal("no links")
                return CreatorIdentity.social("devguy")

        feed = _feed(lambda offset, limit: _page([known, unknown], offset=offset, limit=limit))

        report = await Backfill(feed, db, PartialResolver(), CreatorStatsEngine()).run()

        assert report.errors == 1
        assert report.migrations_recorded == 2
        feed.get_all_user_coins.assert_not_awaited()
        async with db.get_async_session() as session:
            creator = await CreatorRepository(session).get("devguy")
        assert creator is not None
        assert creator.total_coins == 1

    @pytest.mark.asyncio
    async def test_incremental_skips_history(
        self, db: DatabaseManager, make_coin, creator_a
    ) -> None:
        coin = make_coin(numbered_address("MintA", 1), creator_a, complete=True)
        feed = _feed(lambda offset, limit: _page([coin], offset=offset, limit=limit))

        report = await Backfill(
            feed, db, WalletIdentityResolver(), CreatorStatsEngine()
        ).run_incremental(limit=50)

        feed.get_all_user_coins.assert_not_awaited()
        assert report.creators_recomputed == 1
        assert feed.get_coins_page.await_args.kwargs["limit"] == 50


class TestBackfillFailureIsolation:
    @pytest.mark.asyncio
    async def test_non_object_rpc_reply_counts_as_resolver_error(
        self, db: DatabaseManager, make_coin, creator_a
    ) -> None:
        coins = [
            make_coin(numbered_address("MintR", i), creator_a, complete=True) for i in range(3)
        ]
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json=[])

        http = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        resolver = SocialIdentityResolver(
            TokenMetadataClient("https://rpc.test", http_client=http),
            SocialGraphClient(api_key="tw-key", http_client=http),
        )
        feed = _feed(lambda offset, limit: _page(coins, offset=offset, limit=limit))

        report = await Backfill(feed, db, resolver, CreatorStatsEngine()).run()

        assert report.coins_scanned == 3
        assert report.errors == 3
        assert report.creators_found == 0
        assert report.migrations_recorded == 3

    @pytest.mark.asyncio
    async def test_unexpected_resolver_exception_is_skipped(
        self,
        db: DatabaseManager,
        make_coin,
        creator_a,
        creator_b,
        caplog: pytest.LogCaptureFixture,
    ) -> None:
        broken = make_coin(numbered_address("MintX", 1), creator_a, complete=True)
        fine = make_coin(numbered_address("MintY", 1), creator_b, complete=True)

        class FlakyResolver:
            async def resolve(self, coin: CoinRecord) -> CreatorIdentity:
                if coin.mint == broken.mint:
                    raise KeyError("users")
                return CreatorIdentity.wallet(coin.creator)

        feed = _feed(lambda offset, limit: _page([broken, fine], offset=offset, limit=limit))

        report = await Backfill(feed, db, FlakyResolver(), CreatorStatsEngine()).run()

        assert report.errors == 1
        assert report.creators_found == 1
        assert report.coins_scanned == 2
        failures = [r for r in caplog.records if r.name == "pumpfun_creator_tracker.scan.backfill"]
        assert any(
            r.levelno == logging.WARNING and "backfill:" in r.getMessage() and broken.mint in r.getMessage()
            for r in failures
        )

    @pytest.mark.asyncio
    async def test_page_failure_outside_feed_errors_is_skipped(
        self, db: DatabaseManager, make_coin, creator_a
    ) -> None:
        def pages(offset: int, limit: int) -> CoinPage:
            if offset == 0:
                raise OverflowError("cannot convert float infinity to integer")
            coin = make_coin(numbered_address("MintQ", offset), creator_a, complete=True)
            return _page([coin], offset=offset, limit=limit)

        feed = _feed(pages)
        backfill = Backfill(
            feed, db, WalletIdentityResolver(), CreatorStatsEngine(), limit=4, page_size=2
        )

        report = await backfill.run()

        assert feed.get_coins_page.await_count == 2
        assert report.errors == 1
        assert report.coins_scanned == 1
