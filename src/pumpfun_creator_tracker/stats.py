"""Creator statistics engine.

Aggregates are always derived from the full set of coins attributed to a
creator and written back in a single UPDATE, so `success_rate` can never
drift from the two counts it is computed from.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import TYPE_CHECKING, Any

from pumpfun_creator_tracker.storage.repos import CoinDTO, CoinRepository, CreatorRepository

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)

_TWO_PLACES = Decimal("0.01")


def compute_success_rate(migrated: int, total: int) -> Decimal:
    """Percentage of migrated coins, rounded half-up to two decimals (0 when empty)."""
    if total <= 0:
        return Decimal("0.00")
    rate = Decimal(migrated) * Decimal(100) / Decimal(total)
    return rate.quantize(_TWO_PLACES, rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class CoinPointer:
    """Reference to one coin of a creator (symbol, mint, creation time)."""

    mint: str
    symbol: str
    created_timestamp: int

    @classmethod
    def from_coin(cls, coin: CoinDTO) -> CoinPointer:
        return cls(mint=coin.mint, symbol=coin.symbol, created_timestamp=coin.created_timestamp)


@dataclass(frozen=True)
class CreatorStats:
    """Aggregate statistics of one creator."""

    total_coins: int
    migrated_coins: int
    success_rate: Decimal
    last_coin: CoinPointer | None = None
    last_migrated: CoinPointer | None = None

    @classmethod
    def empty(cls) -> CreatorStats:
        return cls(total_coins=0, migrated_coins=0, success_rate=Decimal("0.00"))

    @classmethod
    def from_coins(cls, coins: Iterable[CoinDTO]) -> CreatorStats:
        total = 0
        migrated = 0
        newest: CoinDTO | None = None
        newest_migrated: CoinDTO | None = None
        for coin in coins:
            total += 1
            if newest is None or coin.created_timestamp > newest.created_timestamp:
                newest = coin
            if coin.is_migrated:
                migrated += 1
                if (
                    newest_migrated is None
                    or coin.created_timestamp > newest_migrated.created_timestamp
                ):
                    newest_migrated = coin

        return cls(
            total_coins=total,
            migrated_coins=migrated,
            success_rate=compute_success_rate(migrated, total),
            last_coin=CoinPointer.from_coin(newest) if newest else None,
            last_migrated=CoinPointer.from_coin(newest_migrated) if newest_migrated else None,
        )

    def snapshot(self) -> dict[str, Any]:
        """JSON-serializable view embedded in alerts."""
        return {
            "total_coins": self.total_coins,
            "migration_count": self.migrated_coins,
            "success_rate": float(self.success_rate),
            "last_migrated_symbol": self.last_migrated.symbol if self.last_migrated else None,
            "last_migrated_mint": self.last_migrated.mint if self.last_migrated else None,
            "last_migrated_at": (
                self.last_migrated.created_timestamp if self.last_migrated else None
            ),
        }


class CreatorStatsEngine:
    """Recomputes creator aggregates from stored coins.

    `recompute` works inside the caller's session so the coin writes that
    triggered it and the aggregate update commit together. On PostgreSQL the
    creator row is locked first, which serializes recomputes of the same
    creator while leaving different creators independent.
    """

    async def recompute(self, session: AsyncSession, creator_key: str) -> CreatorStats:
        creators = CreatorRepository(session)
        if await creators.get_for_update(creator_key) is None:
            logger.warning("Recompute skipped: unknown creator %s", creator_key)
            return CreatorStats.empty()

        coins = await CoinRepository(session).list_by_creator(creator_key)
        stats = CreatorStats.from_coins(coins)
        await creators.update_stats(creator_key, stats)

        logger.debug(
            "Recomputed %s: total=%d migrated=%d rate=%s",
            creator_key,
            stats.total_coins,
            stats.migrated_coins,
            stats.success_rate,
        )
        return stats
