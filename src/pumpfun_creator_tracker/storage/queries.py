"""Read-only projections served by the HTTP facade.

Every function here only reads, except `mark_alert_read` which flips the
single mutable alert column. Results are plain JSON-ready dictionaries.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING, Any, Literal

from sqlalchemy import func, select, text

from pumpfun_creator_tracker.storage.models import (
    AlertModel,
    CoinModel,
    CreatorModel,
    MigrationModel,
)
from pumpfun_creator_tracker.storage.repos import AlertRepository

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

CreatorSort = Literal["success_rate", "migrated_coins", "total_coins", "recent"]
SearchType = Literal["creator", "coin", "all"]

MAX_BATCH_MINTS = 100
ACTIVE_CREATOR_MIN_COINS = 5
TOP_CREATORS_LIMIT = 10

_CREATOR_ORDER = {
    "success_rate": (CreatorModel.success_rate.desc(), CreatorModel.migrated_coins.desc()),
    "migrated_coins": (CreatorModel.migrated_coins.desc(), CreatorModel.success_rate.desc()),
    "total_coins": (CreatorModel.total_coins.desc(), CreatorModel.success_rate.desc()),
    "recent": (CreatorModel.last_updated_at.desc(),),
}


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


def _num(value: Decimal | None) -> float | None:
    return float(value) if value is not None else None


def creator_view(model: CreatorModel) -> dict[str, Any]:
    return {
        "creator_key": model.creator_key,
        "kind": model.kind,
        "social_id": model.social_id,
        "display_name": model.display_name,
        "profile_url": model.profile_url,
        "total_coins": model.total_coins,
        "migrated_coins": model.migrated_coins,
        "success_rate": float(model.success_rate),
        "last_coin": (
            {
                "mint": model.last_coin_mint,
                "symbol": model.last_coin_symbol,
                "created_timestamp": model.last_coin_created_at,
            }
            if model.last_coin_mint
            else None
        ),
        "last_migrated": (
            {
                "mint": model.last_migrated_mint,
                "symbol": model.last_migrated_symbol,
                "created_timestamp": model.last_migrated_created_at,
            }
            if model.last_migrated_mint
            else None
        ),
        "first_seen_at": _iso(model.first_seen_at),
        "last_updated_at": _iso(model.last_updated_at),
    }


def coin_view(model: CoinModel, creator: CreatorModel | None = None) -> dict[str, Any]:
    view: dict[str, Any] = {
        "mint": model.mint,
        "symbol": model.symbol,
        "name": model.name,
        "description": model.description,
        "image_uri": model.image_uri,
        "creator_wallet": model.creator_wallet,
        "creator_key": model.creator_key,
        "social_url": model.social_url,
        "social_kind": model.social_kind,
        "created_timestamp": model.created_timestamp,
        "is_migrated": bool(model.is_migrated),
        "migrated_at": _iso(model.migrated_at),
        "usd_market_cap": _num(model.usd_market_cap),
        "bonding_curve": model.bonding_curve,
    }
    if creator is not None:
        view["creator"] = {
            "creator_key": creator.creator_key,
            "display_name": creator.display_name,
            "profile_url": creator.profile_url,
            "total_coins": creator.total_coins,
            "migrated_coins": creator.migrated_coins,
            "success_rate": float(creator.success_rate),
            "last_coin_symbol": creator.last_coin_symbol,
            "last_coin_created_at": creator.last_coin_created_at,
        }
    return view


def alert_view(
    alert: AlertModel,
    coin: CoinModel | None = None,
    creator: CreatorModel | None = None,
) -> dict[str, Any]:
    view: dict[str, Any] = {
        "id": alert.id,
        "coin_mint": alert.coin_mint,
        "creator_key": alert.creator_key,
        "triggered_at": _iso(alert.triggered_at),
        "is_read": bool(alert.is_read),
        "alert_data": alert.alert_data,
    }
    if coin is not None:
        view.update(
            symbol=coin.symbol,
            name=coin.name,
            image_uri=coin.image_uri,
            created_timestamp=coin.created_timestamp,
        )
    if creator is not None:
        view.update(
            display_name=creator.display_name,
            total_coins=creator.total_coins,
            migrated_coins=creator.migrated_coins,
            success_rate=float(creator.success_rate),
        )
    return view


async def health(session: AsyncSession) -> bool:
    result = await session.execute(text("SELECT 1"))
    return result.scalar_one() == 1


async def list_creators(
    session: AsyncSession,
    *,
    limit: int = 1000,
    offset: int = 0,
    sort: CreatorSort = "success_rate",
) -> list[dict[str, Any]]:
    """Creators with at least one migration, best first."""
    order = _CREATOR_ORDER.get(sort, _CREATOR_ORDER["success_rate"])
    result = await session.execute(
        select(CreatorModel)
        .where(CreatorModel.migrated_coins > 0)
        .order_by(*order)
        .limit(limit)
        .offset(offset)
    )
    return [creator_view(m) for m in result.scalars().all()]


async def get_creator(session: AsyncSession, creator_key: str) -> dict[str, Any] | None:
    model = await session.get(CreatorModel, creator_key)
    return creator_view(model) if model else None


async def list_coins_by_creator(
    session: AsyncSession,
    creator_key: str,
    *,
    limit: int = 1000,
) -> list[dict[str, Any]]:
    result = await session.execute(
        select(CoinModel)
        .where(CoinModel.creator_key == creator_key)
        .order_by(CoinModel.created_timestamp.desc())
        .limit(limit)
    )
    return [coin_view(m) for m in result.scalars().all()]


async def list_recent_coins(session: AsyncSession, *, limit: int = 100) -> list[dict[str, Any]]:
    """Newest coins whose creator has migration history."""
    result = await session.execute(
        select(CoinModel, CreatorModel)
        .join(CreatorModel, CoinModel.creator_key == CreatorModel.creator_key)
        .where(CreatorModel.migrated_coins > 0)
        .order_by(CoinModel.created_timestamp.desc())
        .limit(limit)
    )
    return [coin_view(coin, creator) for coin, creator in result.all()]


async def get_coin(session: AsyncSession, mint: str) -> dict[str, Any] | None:
    result = await session.execute(
        select(CoinModel, CreatorModel)
        .outerjoin(CreatorModel, CoinModel.creator_key == CreatorModel.creator_key)
        .where(CoinModel.mint == mint)
    )
    row = result.first()
    if row is None:
        return None
    coin, creator = row
    return coin_view(coin, creator)


async def get_coins_by_mints(session: AsyncSession, mints: list[str]) -> dict[str, dict[str, Any]]:
    """Coin views keyed by mint; only the first `MAX_BATCH_MINTS` mints are read."""
    wanted = list(dict.fromkeys(mints))[:MAX_BATCH_MINTS]
    if not wanted:
        return {}
    result = await session.execute(
        select(CoinModel, CreatorModel)
        .outerjoin(CreatorModel, CoinModel.creator_key == CreatorModel.creator_key)
        .where(CoinModel.mint.in_(wanted))
    )
    return {coin.mint: coin_view(coin, creator) for coin, creator in result.all()}


async def search(
    session: AsyncSession,
    q: str,
    *,
    search_type: SearchType = "all",
    limit: int = 50,
) -> dict[str, list[dict[str, Any]]]:
    """Case-insensitive substring search over creators and/or coins."""
    needle = q.strip().lstrip("@").lower()
    found: dict[str, list[dict[str, Any]]] = {}

    if search_type in ("creator", "all"):
        result = await session.execute(
            select(CreatorModel)
            .where(
                func.lower(CreatorModel.creator_key).contains(needle, autoescape=True)
                | func.lower(CreatorModel.display_name).contains(needle, autoescape=True)
            )
            .order_by(CreatorModel.success_rate.desc())
            .limit(limit)
        )
        found["creators"] = [creator_view(m) for m in result.scalars().all()]

    if search_type in ("coin", "all"):
        result = await session.execute(
            select(CoinModel, CreatorModel)
            .outerjoin(CreatorModel, CoinModel.creator_key == CreatorModel.creator_key)
            .where(
                (CoinModel.mint == q.strip())
                | func.lower(CoinModel.symbol).contains(needle, autoescape=True)
            )
            .order_by(CoinModel.created_timestamp.desc())
            .limit(limit)
        )
        found["coins"] = [coin_view(coin, creator) for coin, creator in result.all()]

    return found


async def list_alerts(
    session: AsyncSession,
    *,
    limit: int = 50,
    unread_only: bool = False,
) -> list[dict[str, Any]]:
    stmt = (
        select(AlertModel, CoinModel, CreatorModel)
        .join(CoinModel, AlertModel.coin_mint == CoinModel.mint)
        .join(CreatorModel, AlertModel.creator_key == CreatorModel.creator_key)
    )
    if unread_only:
        stmt = stmt.where(AlertModel.is_read.is_(False))
    stmt = stmt.order_by(AlertModel.triggered_at.desc(), AlertModel.id.desc()).limit(limit)
    result = await session.execute(stmt)
    return [alert_view(alert, coin, creator) for alert, coin, creator in result.all()]


async def count_unread_alerts(session: AsyncSession) -> int:
    return await AlertRepository(session).count_unread()


async def mark_alert_read(session: AsyncSession, alert_id: int) -> dict[str, Any] | None:
    alert = await AlertRepository(session).mark_read(alert_id)
    if alert is None:
        return None
    model = await session.get(AlertModel, alert.id)
    return alert_view(model) if model else None


async def _count(session: AsyncSession, stmt: Any) -> int:
    result = await session.execute(stmt)
    return int(result.scalar_one() or 0)


async def system_stats(session: AsyncSession) -> dict[str, Any]:
    """Store-wide totals plus the ten best creators."""
    total_creators = await _count(session, select(func.count()).select_from(CreatorModel))
    total_coins = await _count(session, select(func.count()).select_from(CoinModel))
    total_migrations = await _count(session, select(func.count()).select_from(MigrationModel))
    migrated_coins = await _count(
        session, select(func.count()).select_from(CoinModel).where(CoinModel.is_migrated.is_(True))
    )
    active_creators = await _count(
        session,
        select(func.count())
        .select_from(CreatorModel)
        .where(CreatorModel.total_coins >= ACTIVE_CREATOR_MIN_COINS),
    )
    unread_alerts = await count_unread_alerts(session)

    avg_result = await session.execute(
        select(func.avg(CreatorModel.success_rate)).where(CreatorModel.total_coins > 0)
    )
    avg_success_rate = avg_result.scalar_one()

    top = await session.execute(
        select(CreatorModel)
        .where(CreatorModel.total_coins > 0)
        .order_by(CreatorModel.success_rate.desc(), CreatorModel.total_coins.desc())
        .limit(TOP_CREATORS_LIMIT)
    )

    migration_rate = round(migrated_coins / total_coins * 100, 2) if total_coins else 0.0
    return {
        "total_creators": total_creators,
        "total_coins": total_coins,
        "total_migrations": total_migrations,
        "migrated_coins": migrated_coins,
        "unread_alerts": unread_alerts,
        "migration_rate": migration_rate,
        "avg_success_rate": round(float(avg_success_rate), 2) if avg_success_rate else 0.0,
        "active_creators": active_creators,
        "top_creators": [creator_view(m) for m in top.scalars().all()],
    }
