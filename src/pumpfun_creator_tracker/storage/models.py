"""SQLAlchemy models for persistent storage.

This module defines the database schema for creators, coins, migration
events and alerts.
"""

from __future__ import annotations

from datetime import UTC, datetime
from decimal import Decimal
from typing import Any

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""

    pass


class CreatorModel(Base):
    """A creator identity and its aggregate launch statistics.

    `creator_key` is a wallet address in wallet mode and a lower-cased
    social handle in social mode. Aggregate columns are only written by
    the statistics engine.
    """

    __tablename__ = "creators"

    creator_key: Mapped[str] = mapped_column(String(64), primary_key=True)
    kind: Mapped[str] = mapped_column(String(10), nullable=False)

    social_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    display_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    profile_url: Mapped[str | None] = mapped_column(String(255), nullable=True)

    total_coins: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    migrated_coins: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    success_rate: Mapped[Decimal] = mapped_column(
        Numeric(5, 2), nullable=False, default=Decimal("0")
    )

    last_coin_mint: Mapped[str | None] = mapped_column(String(64), nullable=True)
    last_coin_symbol: Mapped[str | None] = mapped_column(String(64), nullable=True)
    last_coin_created_at: Mapped[int | None] = mapped_column(BigInteger, nullable=True)

    last_migrated_mint: Mapped[str | None] = mapped_column(String(64), nullable=True)
    last_migrated_symbol: Mapped[str | None] = mapped_column(String(64), nullable=True)
    last_migrated_created_at: Mapped[int | None] = mapped_column(BigInteger, nullable=True)

    first_seen_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC)
    )
    last_updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC)
    )

    __table_args__ = (
        Index("idx_creators_migrated_coins", "migrated_coins"),
        Index("idx_creators_success_rate", "success_rate"),
    )


class CoinModel(Base):
    """A single token launch (upserted by mint)."""

    __tablename__ = "coins"

    mint: Mapped[str] = mapped_column(String(64), primary_key=True)
    symbol: Mapped[str] = mapped_column(String(64), nullable=False, default="")
    name: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    image_uri: Mapped[str | None] = mapped_column(Text, nullable=True)

    creator_wallet: Mapped[str] = mapped_column(String(64), nullable=False)
    creator_key: Mapped[str | None] = mapped_column(
        String(64), ForeignKey("creators.creator_key"), nullable=True
    )
    social_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    social_kind: Mapped[str | None] = mapped_column(String(20), nullable=True)

    # Epoch milliseconds as reported upstream.
    created_timestamp: Mapped[int] = mapped_column(BigInteger, nullable=False)
    is_migrated: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    migrated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    usd_market_cap: Mapped[Decimal | None] = mapped_column(Numeric(20, 2), nullable=True)
    bonding_curve: Mapped[str | None] = mapped_column(String(64), nullable=True)
    raw_data: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)

    first_seen_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC)
    )
    last_updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC)
    )

    __table_args__ = (
        Index("idx_coins_creator_key", "creator_key"),
        Index("idx_coins_creator_wallet", "creator_wallet"),
        Index("idx_coins_created_timestamp", "created_timestamp"),
        Index("idx_coins_is_migrated", "is_migrated"),
    )


class MigrationModel(Base):
    """Append-only record of a coin leaving its bonding curve."""

    __tablename__ = "migrations"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    coin_mint: Mapped[str] = mapped_column(
        String(64), ForeignKey("coins.mint"), nullable=False
    )
    creator_key: Mapped[str | None] = mapped_column(String(64), nullable=True)
    migrated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    detected_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC)
    )

    __table_args__ = (
        UniqueConstraint("coin_mint", name="uq_migrations_coin_mint"),
        Index("idx_migrations_creator_key", "creator_key"),
        Index("idx_migrations_migrated_at", "migrated_at"),
    )


class AlertModel(Base):
    """Launch alert for a creator with migration history.

    `alert_data` is a frozen snapshot of the creator statistics at trigger
    time; `is_read` is the only column that changes after insert.
    """

    __tablename__ = "alerts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    coin_mint: Mapped[str] = mapped_column(
        String(64), ForeignKey("coins.mint"), nullable=False
    )
    creator_key: Mapped[str] = mapped_column(
        String(64), ForeignKey("creators.creator_key"), nullable=False
    )
    triggered_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC)
    )
    is_read: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    alert_data: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)

    __table_args__ = (
        UniqueConstraint("coin_mint", "creator_key", name="uq_alerts_coin_creator"),
        Index("idx_alerts_triggered_at", "triggered_at"),
        Index("idx_alerts_is_read", "is_read"),
    )
