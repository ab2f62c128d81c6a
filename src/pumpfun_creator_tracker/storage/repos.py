"""Repository pattern implementations for data access.

This module provides the write paths for creators, coins, migration events
and alerts. Every write is a single INSERT .. ON CONFLICT statement so that
repeated or out-of-order observations converge on the same rows.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from datetime import UTC, datetime
from decimal import Decimal
from typing import TYPE_CHECKING, Any

import sqlalchemy as sa
from sqlalchemy import func, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert

from pumpfun_creator_tracker.identity.models import CreatorIdentity, IdentityKind
from pumpfun_creator_tracker.storage.models import (
    AlertModel,
    CoinModel,
    CreatorModel,
    MigrationModel,
)

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from pumpfun_creator_tracker.ingestor.models import CoinRecord
    from pumpfun_creator_tracker.stats import CreatorStats

logger = logging.getLogger(__name__)


def _insert(session: AsyncSession, model: type[Any]) -> Any:
    """Dialect-specific INSERT supporting ON CONFLICT."""
    if session.get_bind().dialect.name == "postgresql":
        return pg_insert(model)
    return sqlite_insert(model)


@dataclass
class CreatorDTO:
    """Data transfer object for creators."""

    creator_key: str
    kind: str
    total_coins: int = 0
    migrated_coins: int = 0
    success_rate: Decimal = Decimal("0")
    social_id: str | None = None
    display_name: str | None = None
    profile_url: str | None = None
    last_coin_mint: str | None = None
    last_coin_symbol: str | None = None
    last_coin_created_at: int | None = None
    last_migrated_mint: str | None = None
    last_migrated_symbol: str | None = None
    last_migrated_created_at: int | None = None
    first_seen_at: datetime | None = None
    last_updated_at: datetime | None = None

    @classmethod
    def from_model(cls, model: CreatorModel) -> CreatorDTO:
        return cls(
            creator_key=model.creator_key,
            kind=model.kind,
            total_coins=model.total_coins,
            migrated_coins=model.migrated_coins,
            success_rate=Decimal(model.success_rate),
            social_id=model.social_id,
            display_name=model.display_name,
            profile_url=model.profile_url,
            last_coin_mint=model.last_coin_mint,
            last_coin_symbol=model.last_coin_symbol,
            last_coin_created_at=model.last_coin_created_at,
            last_migrated_mint=model.last_migrated_mint,
            last_migrated_symbol=model.last_migrated_symbol,
            last_migrated_created_at=model.last_migrated_created_at,
            first_seen_at=model.first_seen_at,
            last_updated_at=model.last_updated_at,
        )

    @property
    def has_migrations(self) -> bool:
        return self.migrated_coins > 0


@dataclass
class CoinDTO:
    """Data transfer object for coins."""

    mint: str
    symbol: str
    name: str
    creator_wallet: str
    creator_key: str | None
    created_timestamp: int
    is_migrated: bool
    migrated_at: datetime | None = None
    description: str | None = None
    image_uri: str | None = None
    usd_market_cap: Decimal | None = None
    bonding_curve: str | None = None
    social_url: str | None = None
    social_kind: str | None = None
    first_seen_at: datetime | None = None
    last_updated_at: datetime | None = None

    @classmethod
    def from_model(cls, model: CoinModel) -> CoinDTO:
        return cls(
            mint=model.mint,
            symbol=model.symbol,
            name=model.name,
            creator_wallet=model.creator_wallet,
            creator_key=model.creator_key,
            created_timestamp=model.created_timestamp,
            is_migrated=bool(model.is_migrated),
            migrated_at=model.migrated_at,
            description=model.description,
            image_uri=model.image_uri,
            usd_market_cap=model.usd_market_cap,
            bonding_curve=model.bonding_curve,
            social_url=model.social_url,
            social_kind=model.social_kind,
            first_seen_at=model.first_seen_at,
            last_updated_at=model.last_updated_at,
        )


@dataclass
class AlertDTO:
    """Data transfer object for alerts."""

    id: int
    coin_mint: str
    creator_key: str
    triggered_at: datetime
    is_read: bool
    alert_data: dict[str, Any]

    @classmethod
    def from_model(cls, model: AlertModel) -> AlertDTO:
        return cls(
            id=model.id,
            coin_mint=model.coin_mint,
            creator_key=model.creator_key,
            triggered_at=model.triggered_at,
            is_read=bool(model.is_read),
            alert_data=dict(model.alert_data or {}),
        )


class CreatorRepository:
    """Repository for creator identities and their aggregates."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get(self, creator_key: str) -> CreatorDTO | None:
        result = await self.session.execute(
            select(CreatorModel).where(CreatorModel.creator_key == creator_key)
        )
        model = result.scalar_one_or_none()
        return CreatorDTO.from_model(model) if model else None

    async def get_for_update(self, creator_key: str) -> CreatorDTO | None:
        """Read a creator row, locking it until the transaction ends (PostgreSQL)."""
        result = await self.session.execute(
            select(CreatorModel)
            .where(CreatorModel.creator_key == creator_key)
            .with_for_update()
        )
        model = result.scalar_one_or_none()
        return CreatorDTO.from_model(model) if model else None

    async def ensure(self, identity: CreatorIdentity) -> bool:
        """Create a zero-valued creator row if missing.

        Social display metadata is refreshed on existing rows; counters are
        never touched here.

        Returns:
            True if a new row was inserted.
        """
        now = datetime.now(UTC)
        stmt = _insert(self.session, CreatorModel).values(
            creator_key=identity.key,
            kind=identity.kind.value,
            social_id=identity.social_id,
            display_name=identity.display_name,
            profile_url=identity.profile_url,
            total_coins=0,
            migrated_coins=0,
            success_rate=Decimal("0"),
            first_seen_at=now,
            last_updated_at=now,
        )
        stmt = stmt.on_conflict_do_nothing(index_elements=["creator_key"])
        result = await self.session.execute(stmt)
        inserted = (result.rowcount or 0) > 0

        if not inserted and identity.kind == IdentityKind.SOCIAL:
            table = CreatorModel.__table__
            await self.session.execute(
                update(CreatorModel)
                .where(CreatorModel.creator_key == identity.key)
                .values(
                    social_id=func.coalesce(identity.social_id, table.c.social_id),
                    display_name=func.coalesce(identity.display_name, table.c.display_name),
                    profile_url=func.coalesce(identity.profile_url, table.c.profile_url),
                )
            )
        await self.session.flush()
        return inserted

    async def ensure_many(self, identities: Iterable[CreatorIdentity]) -> int:
        """Pre-create creator rows; returns how many were new."""
        created = 0
        for identity in identities:
            if await self.ensure(identity):
                created += 1
        return created

    async def update_stats(self, creator_key: str, stats: CreatorStats) -> None:
        """Write all aggregate columns in a single UPDATE."""
        last_coin = stats.last_coin
        last_migrated = stats.last_migrated
        await self.session.execute(
            update(CreatorModel)
            .where(CreatorModel.creator_key == creator_key)
            .values(
                total_coins=stats.total_coins,
                migrated_coins=stats.migrated_coins,
                success_rate=stats.success_rate,
                last_coin_mint=last_coin.mint if last_coin else None,
                last_coin_symbol=last_coin.symbol if last_coin else None,
                last_coin_created_at=last_coin.created_timestamp if last_coin else None,
                last_migrated_mint=last_migrated.mint if last_migrated else None,
                last_migrated_symbol=last_migrated.symbol if last_migrated else None,
                last_migrated_created_at=(
                    last_migrated.created_timestamp if last_migrated else None
                ),
                last_updated_at=datetime.now(UTC),
            )
        )
        await self.session.flush()

    async def list_migrator_wallets(self) -> list[str]:
        """Wallet creators with at least one migration (push-listener targets)."""
        result = await self.session.execute(
            select(CreatorModel.creator_key)
            .where(
                (CreatorModel.kind == IdentityKind.WALLET.value)
                & (CreatorModel.migrated_coins > 0)
            )
            .order_by(CreatorModel.migrated_coins.desc())
        )
        return [str(k) for k in result.scalars().all()]


class CoinRepository:
    """Repository for coins (upserted by mint)."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get(self, mint: str) -> CoinDTO | None:
        result = await self.session.execute(select(CoinModel).where(CoinModel.mint == mint))
        model = result.scalar_one_or_none()
        return CoinDTO.from_model(model) if model else None

    async def exists(self, mint: str) -> bool:
        result = await self.session.execute(
            select(sa.literal(1)).where(CoinModel.mint == mint).limit(1)
        )
        return result.scalar_one_or_none() is not None

    async def upsert(
        self,
        coin: CoinRecord,
        *,
        creator_key: str | None,
        social_url: str | None = None,
        social_kind: str | None = None,
        observed_at: datetime | None = None,
    ) -> None:
        """Insert a coin or refresh its mutable fields.

        The migration flag only ever moves false -> true and `migrated_at`
        keeps its first value. Creation time, first-seen time and an existing
        creator link are never overwritten.
        """
        now = observed_at or datetime.now(UTC)
        values = {
            "mint": coin.mint,
            "symbol": coin.symbol,
            "name": coin.name,
            "description": coin.description,
            "image_uri": coin.image_uri,
            "creator_wallet": coin.creator,
            "creator_key": creator_key,
            "social_url": social_url,
            "social_kind": social_kind,
            "created_timestamp": coin.created_timestamp,
            "is_migrated": coin.complete,
            "migrated_at": now if coin.complete else None,
            "usd_market_cap": coin.usd_market_cap,
            "bonding_curve": coin.bonding_curve,
            "raw_data": coin.raw,
            "first_seen_at": now,
            "last_updated_at": now,
        }
        table = CoinModel.__table__
        stmt = _insert(self.session, CoinModel).values(**values)
        stmt = stmt.on_conflict_do_update(
            index_elements=["mint"],
            set_={
                "symbol": stmt.excluded.symbol,
                "name": stmt.excluded.name,
                "description": func.coalesce(stmt.excluded.description, table.c.description),
                "image_uri": func.coalesce(stmt.excluded.image_uri, table.c.image_uri),
                "creator_key": func.coalesce(table.c.creator_key, stmt.excluded.creator_key),
                "social_url": func.coalesce(table.c.social_url, stmt.excluded.social_url),
                "social_kind": func.coalesce(table.c.social_kind, stmt.excluded.social_kind),
                "is_migrated": sa.or_(table.c.is_migrated, stmt.excluded.is_migrated),
                "migrated_at": func.coalesce(table.c.migrated_at, stmt.excluded.migrated_at),
                "usd_market_cap": func.coalesce(
                    stmt.excluded.usd_market_cap, table.c.usd_market_cap
                ),
                "bonding_curve": func.coalesce(table.c.bonding_curve, stmt.excluded.bonding_curve),
                "raw_data": stmt.excluded.raw_data,
                "last_updated_at": stmt.excluded.last_updated_at,
            },
        )
        await self.session.execute(stmt)
        await self.session.flush()

    async def bulk_upsert(
        self,
        coins: Sequence[CoinRecord],
        *,
        creator_key: str | None,
    ) -> int:
        """Upsert many coins inside the caller's transaction.

        The surrounding session commits or rolls back all of them as one unit.
        """
        for coin in coins:
            await self.upsert(coin, creator_key=creator_key)
        return len(coins)

    async def list_by_creator(self, creator_key: str) -> list[CoinDTO]:
        result = await self.session.execute(
            select(CoinModel)
            .where(CoinModel.creator_key == creator_key)
            .order_by(CoinModel.created_timestamp.desc())
        )
        return [CoinDTO.from_model(m) for m in result.scalars().all()]


class MigrationRepository:
    """Repository for append-only migration events."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def record(
        self,
        coin_mint: str,
        *,
        creator_key: str | None,
        migrated_at: datetime | None = None,
    ) -> bool:
        """Append a migration event; a second event for the same coin is ignored.

        Returns:
            True if a new event was written.
        """
        now = datetime.now(UTC)
        stmt = _insert(self.session, MigrationModel).values(
            coin_mint=coin_mint,
            creator_key=creator_key,
            migrated_at=migrated_at or now,
            detected_at=now,
        )
        stmt = stmt.on_conflict_do_nothing(index_elements=["coin_mint"])
        result = await self.session.execute(stmt)
        await self.session.flush()
        return (result.rowcount or 0) > 0

    async def count(self) -> int:
        result = await self.session.execute(select(func.count()).select_from(MigrationModel))
        return int(result.scalar_one())


class AlertRepository:
    """Repository for launch alerts."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def create_once(
        self,
        coin_mint: str,
        creator_key: str,
        alert_data: dict[str, Any],
    ) -> AlertDTO | None:
        """Insert the alert for (coin, creator) unless one already exists.

        Returns:
            The new alert, or None when it had already been raised.
        """
        now = datetime.now(UTC)
        stmt = _insert(self.session, AlertModel).values(
            coin_mint=coin_mint,
            creator_key=creator_key,
            triggered_at=now,
            is_read=False,
            alert_data=alert_data,
        )
        stmt = stmt.on_conflict_do_nothing(index_elements=["coin_mint", "creator_key"])
        result = await self.session.execute(stmt)
        await self.session.flush()
        if not (result.rowcount or 0):
            return None

        created = await self.session.execute(
            select(AlertModel).where(
                (AlertModel.coin_mint == coin_mint) & (AlertModel.creator_key == creator_key)
            )
        )
        return AlertDTO.from_model(created.scalar_one())

    async def mark_read(self, alert_id: int) -> AlertDTO | None:
        result = await self.session.execute(select(AlertModel).where(AlertModel.id == alert_id))
        model = result.scalar_one_or_none()
        if model is None:
            return None
        model.is_read = True
        await self.session.flush()
        return AlertDTO.from_model(model)

    async def count(self) -> int:
        result = await self.session.execute(select(func.count()).select_from(AlertModel))
        return int(result.scalar_one())

    async def count_unread(self) -> int:
        result = await self.session.execute(
            select(func.count()).select_from(AlertModel).where(AlertModel.is_read.is_(False))
        )
        return int(result.scalar_one())
