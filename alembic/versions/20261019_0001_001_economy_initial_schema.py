"""Initial economy schema.

Revision ID: 001_economy
Revises:
Create Date: 2026-10-19

Creates seasons, players, wallets, market, ledger, idempotency and business
tables. Money columns are BIGINT micros; share columns are BIGINT units.
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "001_economy"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _created_at() -> sa.Column:
    return sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=True)


def _updated_at() -> sa.Column:
    return sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=True)


def _season_fk(table: str) -> sa.Column:
    return sa.Column(
        "season_id",
        sa.BigInteger(),
        sa.ForeignKey("seasons.id", name=f"fk_{table}_season_id_seasons", ondelete="CASCADE"),
        nullable=False,
    )


def upgrade() -> None:
    """Create all economy tables."""
    # ==========================================================================
    # SEASONS & PLAYERS
    # ==========================================================================

    op.create_table(
        "seasons",
        sa.Column("id", sa.BigInteger(), autoincrement=True, nullable=False),
        sa.Column("name", sa.String(80), nullable=False),
        sa.Column("status", sa.String(16), nullable=False, server_default="active"),
        sa.Column("starts_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("ends_at", sa.DateTime(timezone=True), nullable=False),
        _created_at(),
        sa.PrimaryKeyConstraint("id", name="pk_seasons"),
        sa.CheckConstraint("status IN ('active', 'completed')", name="ck_seasons_status"),
    )
    op.create_index("idx_seasons_status", "seasons", ["status"])

    op.create_table(
        "player_profiles",
        sa.Column("user_id", sa.String(64), nullable=False),
        sa.Column("email", sa.String(255), nullable=False, server_default=""),
        sa.Column("username", sa.String(24), nullable=False),
        sa.Column("invite_code", sa.String(16), nullable=False),
        _created_at(),
        sa.PrimaryKeyConstraint("user_id", name="pk_player_profiles"),
        sa.UniqueConstraint("username", name="uq_player_profiles_username"),
        sa.UniqueConstraint("invite_code", name="uq_player_profiles_invite_code"),
    )

    op.create_table(
        "friend_follows",
        sa.Column("follower_user_id", sa.String(64), nullable=False),
        sa.Column("followee_user_id", sa.String(64), nullable=False),
        _created_at(),
        sa.PrimaryKeyConstraint("follower_user_id", "followee_user_id", name="pk_friend_follows"),
        sa.ForeignKeyConstraint(
            ["follower_user_id"], ["player_profiles.user_id"],
            name="fk_friend_follows_follower_user_id_player_profiles", ondelete="CASCADE",
        ),
        sa.ForeignKeyConstraint(
            ["followee_user_id"], ["player_profiles.user_id"],
            name="fk_friend_follows_followee_user_id_player_profiles", ondelete="CASCADE",
        ),
        sa.CheckConstraint("follower_user_id <> followee_user_id", name="ck_friend_follows_not_self"),
    )

    op.create_table(
        "wallets",
        sa.Column("id", sa.BigInteger(), autoincrement=True, nullable=False),
        _season_fk("wallets"),
        sa.Column("user_id", sa.String(64), nullable=False),
        sa.Column("balance_micros", sa.BigInteger(), nullable=False, server_default="0"),
        sa.Column("peak_net_worth_micros", sa.BigInteger(), nullable=False, server_default="0"),
        _updated_at(),
        sa.PrimaryKeyConstraint("id", name="pk_wallets"),
        sa.UniqueConstraint("season_id", "user_id", name="uq_wallets_season_user"),
    )
    op.create_index("idx_wallets_season", "wallets", ["season_id"])

    # ==========================================================================
    # MARKET
    # ==========================================================================

    op.create_table(
        "market_state",
        sa.Column(
            "season_id",
            sa.BigInteger(),
            sa.ForeignKey("seasons.id", name="fk_market_state_season_id_seasons", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("regime", sa.String(16), nullable=False, server_default="neutral"),
        _updated_at(),
        sa.PrimaryKeyConstraint("season_id", name="pk_market_state"),
        sa.CheckConstraint("regime IN ('bull', 'neutral', 'bear')", name="ck_market_state_regime"),
    )

    op.create_table(
        "businesses",
        sa.Column("id", sa.BigInteger(), autoincrement=True, nullable=False),
        _season_fk("businesses"),
        sa.Column("owner_user_id", sa.String(64), nullable=False),
        sa.Column("name", sa.String(64), nullable=False),
        sa.Column("visibility", sa.String(16), nullable=False, server_default="private"),
        sa.Column("is_listed", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("stock_symbol", sa.String(6), nullable=True),
        sa.Column("strategy", sa.String(16), nullable=False, server_default="balanced"),
        sa.Column("marketing_level", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("rd_level", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("automation_level", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("compliance_level", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("brand_bps", sa.Integer(), nullable=False, server_default="10000"),
        sa.Column("operational_health_bps", sa.Integer(), nullable=False, server_default="10000"),
        sa.Column("cash_reserve_micros", sa.BigInteger(), nullable=False, server_default="0"),
        sa.Column("base_revenue_micros", sa.BigInteger(), nullable=False, server_default="0"),
        sa.Column("last_event", sa.String(32), nullable=False, server_default=""),
        _created_at(),
        sa.PrimaryKeyConstraint("id", name="pk_businesses"),
        sa.CheckConstraint("visibility IN ('private', 'public')", name="ck_businesses_visibility"),
        sa.CheckConstraint("strategy IN ('aggressive', 'balanced', 'defensive')", name="ck_businesses_strategy"),
        sa.CheckConstraint("brand_bps BETWEEN 5000 AND 20000", name="ck_businesses_brand_range"),
        sa.CheckConstraint("operational_health_bps BETWEEN 5000 AND 15000", name="ck_businesses_health_range"),
        sa.CheckConstraint("cash_reserve_micros >= 0", name="ck_businesses_reserve_non_negative"),
    )
    op.create_index("idx_businesses_season_owner", "businesses", ["season_id", "owner_user_id"])

    op.create_table(
        "stocks",
        sa.Column("id", sa.BigInteger(), autoincrement=True, nullable=False),
        _season_fk("stocks"),
        sa.Column("symbol", sa.String(6), nullable=False),
        sa.Column("display_name", sa.String(80), nullable=False),
        sa.Column("listed_public", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("current_price_micros", sa.BigInteger(), nullable=False),
        sa.Column("anchor_price_micros", sa.BigInteger(), nullable=False),
        sa.Column("created_by_user_id", sa.String(64), nullable=True),
        sa.Column(
            "business_id",
            sa.BigInteger(),
            sa.ForeignKey("businesses.id", name="fk_stocks_business_id_businesses", ondelete="SET NULL"),
            nullable=True,
        ),
        _created_at(),
        sa.PrimaryKeyConstraint("id", name="pk_stocks"),
        sa.UniqueConstraint("season_id", "symbol", name="uq_stocks_season_symbol"),
        sa.CheckConstraint("current_price_micros > 0", name="ck_stocks_price_positive"),
    )
    op.create_index("idx_stocks_season_listed", "stocks", ["season_id", "listed_public"])

    op.create_table(
        "stock_prices",
        sa.Column("id", sa.BigInteger(), autoincrement=True, nullable=False),
        sa.Column(
            "stock_id",
            sa.BigInteger(),
            sa.ForeignKey("stocks.id", name="fk_stock_prices_stock_id_stocks", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("tick_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("price_micros", sa.BigInteger(), nullable=False),
        sa.PrimaryKeyConstraint("id", name="pk_stock_prices"),
    )
    op.create_index("idx_stock_prices_stock_tick", "stock_prices", ["stock_id", "tick_at"])

    op.create_table(
        "positions",
        sa.Column("id", sa.BigInteger(), autoincrement=True, nullable=False),
        _season_fk("positions"),
        sa.Column("user_id", sa.String(64), nullable=False),
        sa.Column(
            "stock_id",
            sa.BigInteger(),
            sa.ForeignKey("stocks.id", name="fk_positions_stock_id_stocks", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("quantity_units", sa.BigInteger(), nullable=False),
        sa.Column("avg_price_micros", sa.BigInteger(), nullable=False),
        _updated_at(),
        sa.PrimaryKeyConstraint("id", name="pk_positions"),
        sa.UniqueConstraint("season_id", "user_id", "stock_id", name="uq_positions_season_user_stock"),
        sa.CheckConstraint("quantity_units > 0", name="ck_positions_quantity_positive"),
        sa.CheckConstraint("avg_price_micros > 0", name="ck_positions_avg_price_positive"),
    )
    op.create_index("idx_positions_season_user", "positions", ["season_id", "user_id"])

    op.create_table(
        "orders",
        sa.Column("id", sa.BigInteger(), autoincrement=True, nullable=False),
        _season_fk("orders"),
        sa.Column("user_id", sa.String(64), nullable=False),
        sa.Column(
            "stock_id",
            sa.BigInteger(),
            sa.ForeignKey("stocks.id", name="fk_orders_stock_id_stocks", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("side", sa.String(4), nullable=False),
        sa.Column("quantity_units", sa.BigInteger(), nullable=False),
        sa.Column("price_micros", sa.BigInteger(), nullable=False),
        sa.Column("notional_micros", sa.BigInteger(), nullable=False),
        sa.Column("fee_micros", sa.BigInteger(), nullable=False),
        _created_at(),
        sa.PrimaryKeyConstraint("id", name="pk_orders"),
        sa.CheckConstraint("side IN ('buy', 'sell')", name="ck_orders_side"),
    )
    op.create_index("idx_orders_season_user", "orders", ["season_id", "user_id"])

    # ==========================================================================
    # LEDGER & IDEMPOTENCY
    # ==========================================================================

    op.create_table(
        "ledger_entries",
        sa.Column("id", sa.BigInteger(), autoincrement=True, nullable=False),
        sa.Column("tx_group_id", sa.Uuid(), nullable=False),
        _season_fk("ledger_entries"),
        sa.Column("user_id", sa.String(64), nullable=False),
        sa.Column("account", sa.String(16), nullable=False),
        sa.Column("delta_micros", sa.BigInteger(), nullable=False),
        sa.Column("metadata", postgresql.JSONB(astext_type=sa.Text()), nullable=False, server_default="{}"),
        _created_at(),
        sa.PrimaryKeyConstraint("id", name="pk_ledger_entries"),
        sa.CheckConstraint("account IN ('wallet', 'counterparty', 'fees')", name="ck_ledger_entries_account"),
    )
    op.create_index("idx_ledger_season_user", "ledger_entries", ["season_id", "user_id"])
    op.create_index("idx_ledger_group", "ledger_entries", ["tx_group_id"])

    op.create_table(
        "idempotency_keys",
        sa.Column("user_id", sa.String(64), nullable=False),
        sa.Column("key", sa.String(128), nullable=False),
        sa.Column("action", sa.String(64), nullable=False),
        _created_at(),
        sa.PrimaryKeyConstraint("user_id", "key", name="pk_idempotency_keys"),
    )

    # ==========================================================================
    # BUSINESS DEPTH
    # ==========================================================================

    op.create_table(
        "employee_candidates",
        sa.Column("id", sa.BigInteger(), autoincrement=True, nullable=False),
        _season_fk("employee_candidates"),
        sa.Column("full_name", sa.String(80), nullable=False),
        sa.Column("role", sa.String(32), nullable=False),
        sa.Column("trait", sa.String(32), nullable=False),
        sa.Column("hire_cost_micros", sa.BigInteger(), nullable=False),
        sa.Column("revenue_per_tick_micros", sa.BigInteger(), nullable=False),
        sa.Column("risk_bps", sa.Integer(), nullable=False),
        sa.PrimaryKeyConstraint("id", name="pk_employee_candidates"),
    )
    op.create_index("idx_candidates_season", "employee_candidates", ["season_id"])

    op.create_table(
        "business_employees",
        sa.Column("id", sa.BigInteger(), autoincrement=True, nullable=False),
        sa.Column(
            "business_id",
            sa.BigInteger(),
            sa.ForeignKey("businesses.id", name="fk_business_employees_business_id_businesses", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "candidate_id",
            sa.BigInteger(),
            sa.ForeignKey(
                "employee_candidates.id",
                name="fk_business_employees_candidate_id_employee_candidates",
                ondelete="CASCADE",
            ),
            nullable=False,
        ),
        sa.Column("full_name", sa.String(80), nullable=False),
        sa.Column("role", sa.String(32), nullable=False),
        sa.Column("trait", sa.String(32), nullable=False),
        sa.Column("revenue_per_tick_micros", sa.BigInteger(), nullable=False),
        sa.Column("risk_bps", sa.Integer(), nullable=False),
        sa.Column("hired_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=True),
        sa.PrimaryKeyConstraint("id", name="pk_business_employees"),
        sa.UniqueConstraint("business_id", "candidate_id", name="uq_business_employees_business_candidate"),
    )
    op.create_index("idx_business_employees_business", "business_employees", ["business_id"])

    op.create_table(
        "business_machinery",
        sa.Column("id", sa.BigInteger(), autoincrement=True, nullable=False),
        sa.Column(
            "business_id",
            sa.BigInteger(),
            sa.ForeignKey("businesses.id", name="fk_business_machinery_business_id_businesses", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("machine_type", sa.String(32), nullable=False),
        sa.Column("level", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("output_bonus_micros", sa.BigInteger(), nullable=False),
        sa.Column("upkeep_micros", sa.BigInteger(), nullable=False),
        sa.Column("reliability_bps", sa.Integer(), nullable=False),
        sa.PrimaryKeyConstraint("id", name="pk_business_machinery"),
        sa.UniqueConstraint("business_id", "machine_type", name="uq_business_machinery_business_type"),
    )

    op.create_table(
        "business_loans",
        sa.Column("id", sa.BigInteger(), autoincrement=True, nullable=False),
        sa.Column(
            "business_id",
            sa.BigInteger(),
            sa.ForeignKey("businesses.id", name="fk_business_loans_business_id_businesses", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("principal_micros", sa.BigInteger(), nullable=False),
        sa.Column("outstanding_micros", sa.BigInteger(), nullable=False),
        sa.Column("interest_bps", sa.Integer(), nullable=False),
        sa.Column("missed_ticks", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("status", sa.String(16), nullable=False, server_default="open"),
        _created_at(),
        sa.PrimaryKeyConstraint("id", name="pk_business_loans"),
        sa.CheckConstraint("status IN ('open', 'repaid', 'sold_off')", name="ck_business_loans_status"),
        sa.CheckConstraint("outstanding_micros >= 0", name="ck_business_loans_outstanding_non_negative"),
    )
    op.create_index("idx_business_loans_business_status", "business_loans", ["business_id", "status"])

    op.create_table(
        "business_sales",
        sa.Column("id", sa.BigInteger(), autoincrement=True, nullable=False),
        _season_fk("business_sales"),
        sa.Column("business_id", sa.BigInteger(), nullable=False),
        sa.Column("owner_user_id", sa.String(64), nullable=False),
        sa.Column("business_name", sa.String(64), nullable=False),
        sa.Column("gross_valuation_micros", sa.BigInteger(), nullable=False),
        sa.Column("adjustment_factor", sa.Float(), nullable=False),
        sa.Column("loan_payoff_micros", sa.BigInteger(), nullable=False),
        sa.Column("payout_micros", sa.BigInteger(), nullable=False),
        sa.Column("reason", sa.Text(), nullable=False, server_default="sold"),
        _created_at(),
        sa.PrimaryKeyConstraint("id", name="pk_business_sales"),
    )
    op.create_index("idx_business_sales_season_owner", "business_sales", ["season_id", "owner_user_id"])


def downgrade() -> None:
    """Drop all economy tables."""
    for table in (
        "business_sales",
        "business_loans",
        "business_machinery",
        "business_employees",
        "employee_candidates",
        "idempotency_keys",
        "ledger_entries",
        "orders",
        "positions",
        "stock_prices",
        "stocks",
        "businesses",
        "market_state",
        "wallets",
        "friend_follows",
        "player_profiles",
        "seasons",
    ):
        op.drop_table(table)
