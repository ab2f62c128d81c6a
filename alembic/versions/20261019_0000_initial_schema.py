"""Initial schema for creators, coins, migrations and alerts.

Revision ID: 001_initial
Revises:
Create Date: 2026-10-19 00:00:00.000000+00:00
"""

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision: str = "001_initial"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "creators",
        sa.Column("creator_key", sa.String(64), nullable=False),
        sa.Column("kind", sa.String(10), nullable=False),
        sa.Column("social_id", sa.String(64), nullable=True),
        sa.Column("display_name", sa.String(255), nullable=True),
        sa.Column("profile_url", sa.String(255), nullable=True),
        sa.Column("total_coins", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("migrated_coins", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("success_rate", sa.Numeric(5, 2), nullable=False, server_default="0"),
        sa.Column("last_coin_mint", sa.String(64), nullable=True),
        sa.Column("last_coin_symbol", sa.String(64), nullable=True),
        sa.Column("last_coin_created_at", sa.BigInteger(), nullable=True),
        sa.Column("last_migrated_mint", sa.String(64), nullable=True),
        sa.Column("last_migrated_symbol", sa.String(64), nullable=True),
        sa.Column("last_migrated_created_at", sa.BigInteger(), nullable=True),
        sa.Column("first_seen_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("last_updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("creator_key"),
    )
    op.create_index("idx_creators_migrated_coins", "creators", ["migrated_coins"])
    op.create_index("idx_creators_success_rate", "creators", ["success_rate"])

    op.create_table(
        "coins",
        sa.Column("mint", sa.String(64), nullable=False),
        sa.Column("symbol", sa.String(64), nullable=False, server_default=""),
        sa.Column("name", sa.String(255), nullable=False, server_default=""),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("image_uri", sa.Text(), nullable=True),
        sa.Column("creator_wallet", sa.String(64), nullable=False),
        sa.Column("creator_key", sa.String(64), nullable=True),
        sa.Column("social_url", sa.Text(), nullable=True),
        sa.Column("social_kind", sa.String(20), nullable=True),
        sa.Column("created_timestamp", sa.BigInteger(), nullable=False),
        sa.Column("is_migrated", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("migrated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("usd_market_cap", sa.Numeric(20, 2), nullable=True),
        sa.Column("bonding_curve", sa.String(64), nullable=True),
        sa.Column("raw_data", sa.JSON(), nullable=True),
        sa.Column("first_seen_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("last_updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("mint"),
        sa.ForeignKeyConstraint(["creator_key"], ["creators.creator_key"]),
    )
    op.create_index("idx_coins_creator_key", "coins", ["creator_key"])
    op.create_index("idx_coins_creator_wallet", "coins", ["creator_wallet"])
    op.create_index("idx_coins_created_timestamp", "coins", ["created_timestamp"])
    op.create_index("idx_coins_is_migrated", "coins", ["is_migrated"])

    op.create_table(
        "migrations",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("coin_mint", sa.String(64), nullable=False),
        sa.Column("creator_key", sa.String(64), nullable=True),
        sa.Column("migrated_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("detected_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["coin_mint"], ["coins.mint"]),
        sa.UniqueConstraint("coin_mint", name="uq_migrations_coin_mint"),
    )
    op.create_index("idx_migrations_creator_key", "migrations", ["creator_key"])
    op.create_index("idx_migrations_migrated_at", "migrations", ["migrated_at"])

    op.create_table(
        "alerts",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("coin_mint", sa.String(64), nullable=False),
        sa.Column("creator_key", sa.String(64), nullable=False),
        sa.Column("triggered_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("is_read", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("alert_data", sa.JSON(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["coin_mint"], ["coins.mint"]),
        sa.ForeignKeyConstraint(["creator_key"], ["creators.creator_key"]),
        sa.UniqueConstraint("coin_mint", "creator_key", name="uq_alerts_coin_creator"),
    )
    op.create_index("idx_alerts_triggered_at", "alerts", ["triggered_at"])
    op.create_index("idx_alerts_is_read", "alerts", ["is_read"])


def downgrade() -> None:
    op.drop_index("idx_alerts_is_read", table_name="alerts")
    op.drop_index("idx_alerts_triggered_at", table_name="alerts")
    op.drop_table("alerts")

    op.drop_index("idx_migrations_migrated_at", table_name="migrations")
    op.drop_index("idx_migrations_creator_key", table_name="migrations")
    op.drop_table("migrations")

    op.drop_index("idx_coins_is_migrated", table_name="coins")
    op.drop_index("idx_coins_created_timestamp", table_name="coins")
    op.drop_index("idx_coins_creator_wallet", table_name="coins")
    op.drop_index("idx_coins_creator_key", table_name="coins")
    op.drop_table("coins")

    op.drop_index("idx_creators_success_rate", table_name="creators")
    op.drop_index("idx_creators_migrated_coins", table_name="creators")
    op.drop_table("creators")
