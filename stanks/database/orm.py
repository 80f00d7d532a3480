"""SQLAlchemy ORM models for the Stanks economy.

All money columns hold integer micros and all share columns hold integer
units. Every game table is scoped by season and cascades with it.

Usage:
    from stanks.database.orm import Wallet
    from stanks.database.connection import get_session

    async with get_session() as session:
        wallet = await session.get(Wallet, wallet_id)
"""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    CheckConstraint,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    MetaData,
    String,
    Text,
    UniqueConstraint,
    Uuid,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


# Naming convention for constraints and indexes (deterministic names for Alembic)
NAMING_CONVENTION = {
    "ix": "ix_%(column_0_label)s",
    "uq": "uq_%(table_name)s_%(column_0_name)s",
    "ck": "ck_%(table_name)s_%(constraint_name)s",
    "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",
    "pk": "pk_%(table_name)s",
}

# SQLite only autoincrements INTEGER PRIMARY KEY
BigIntPK = BigInteger().with_variant(Integer, "sqlite")
JSONDocument = JSON().with_variant(JSONB(), "postgresql")


class Base(DeclarativeBase):
    """Base class for all ORM models with naming convention."""
    metadata = MetaData(naming_convention=NAMING_CONVENTION)


# =============================================================================
# SEASONS & PLAYERS
# =============================================================================


class Season(Base):
    """Economy epoch; exactly one is active at a time."""
    __tablename__ = "seasons"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(80), nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="active")
    starts_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    ends_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        CheckConstraint("status IN ('active', 'completed')", name="status"),
        Index("idx_seasons_status", "status"),
    )


class PlayerProfile(Base):
    __tablename__ = "player_profiles"

    user_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    email: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    username: Mapped[str] = mapped_column(String(24), unique=True, nullable=False)
    invite_code: Mapped[str] = mapped_column(String(16), unique=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())


class FriendFollow(Base):
    __tablename__ = "friend_follows"

    follower_user_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("player_profiles.user_id", ondelete="CASCADE"), primary_key=True
    )
    followee_user_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("player_profiles.user_id", ondelete="CASCADE"), primary_key=True
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        CheckConstraint("follower_user_id <> followee_user_id", name="not_self"),
    )


class Wallet(Base):
    """Cached balance projection of a player's ledger for one season."""
    __tablename__ = "wallets"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    season_id: Mapped[int] = mapped_column(ForeignKey("seasons.id", ondelete="CASCADE"), nullable=False)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    balance_micros: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    peak_net_worth_micros: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        UniqueConstraint("season_id", "user_id", name="uq_wallets_season_user"),
        Index("idx_wallets_season", "season_id"),
    )


# =============================================================================
# MARKET
# =============================================================================


class MarketState(Base):
    __tablename__ = "market_state"

    season_id: Mapped[int] = mapped_column(ForeignKey("seasons.id", ondelete="CASCADE"), primary_key=True)
    regime: Mapped[str] = mapped_column(String(16), nullable=False, default="neutral")
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        CheckConstraint("regime IN ('bull', 'neutral', 'bear')", name="regime"),
    )


class Stock(Base):
    __tablename__ = "stocks"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    season_id: Mapped[int] = mapped_column(ForeignKey("seasons.id", ondelete="CASCADE"), nullable=False)
    symbol: Mapped[str] = mapped_column(String(6), nullable=False)
    display_name: Mapped[str] = mapped_column(String(80), nullable=False)
    listed_public: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    current_price_micros: Mapped[int] = mapped_column(BigInteger, nullable=False)
    anchor_price_micros: Mapped[int] = mapped_column(BigInteger, nullable=False)
    created_by_user_id: Mapped[str | None] = mapped_column(String(64))
    business_id: Mapped[int | None] = mapped_column(ForeignKey("businesses.id", ondelete="SET NULL"))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        UniqueConstraint("season_id", "symbol", name="uq_stocks_season_symbol"),
        CheckConstraint("current_price_micros > 0", name="price_positive"),
        Index("idx_stocks_season_listed", "season_id", "listed_public"),
    )


class StockPrice(Base):
    """Append-only price history sample."""
    __tablename__ = "stock_prices"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    stock_id: Mapped[int] = mapped_column(ForeignKey("stocks.id", ondelete="CASCADE"), nullable=False)
    tick_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    price_micros: Mapped[int] = mapped_column(BigInteger, nullable=False)

    __table_args__ = (
        Index("idx_stock_prices_stock_tick", "stock_id", "tick_at"),
    )


class Position(Base):
    __tablename__ = "positions"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    season_id: Mapped[int] = mapped_column(ForeignKey("seasons.id", ondelete="CASCADE"), nullable=False)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    stock_id: Mapped[int] = mapped_column(ForeignKey("stocks.id", ondelete="CASCADE"), nullable=False)
    quantity_units: Mapped[int] = mapped_column(BigInteger, nullable=False)
    avg_price_micros: Mapped[int] = mapped_column(BigInteger, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        UniqueConstraint("season_id", "user_id", "stock_id", name="uq_positions_season_user_stock"),
        CheckConstraint("quantity_units > 0", name="quantity_positive"),
        CheckConstraint("avg_price_micros > 0", name="avg_price_positive"),
        Index("idx_positions_season_user", "season_id", "user_id"),
    )


class Order(Base):
    """Immutable record of an executed trade."""
    __tablename__ = "orders"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    season_id: Mapped[int] = mapped_column(ForeignKey("seasons.id", ondelete="CASCADE"), nullable=False)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    stock_id: Mapped[int] = mapped_column(ForeignKey("stocks.id", ondelete="CASCADE"), nullable=False)
    side: Mapped[str] = mapped_column(String(4), nullable=False)
    quantity_units: Mapped[int] = mapped_column(BigInteger, nullable=False)
    price_micros: Mapped[int] = mapped_column(BigInteger, nullable=False)
    notional_micros: Mapped[int] = mapped_column(BigInteger, nullable=False)
    fee_micros: Mapped[int] = mapped_column(BigInteger, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        CheckConstraint("side IN ('buy', 'sell')", name="side"),
        Index("idx_orders_season_user", "season_id", "user_id"),
    )


# =============================================================================
# LEDGER & IDEMPOTENCY
# =============================================================================


class LedgerEntry(Base):
    __tablename__ = "ledger_entries"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    tx_group_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    season_id: Mapped[int] = mapped_column(ForeignKey("seasons.id", ondelete="CASCADE"), nullable=False)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    account: Mapped[str] = mapped_column(String(16), nullable=False)
    delta_micros: Mapped[int] = mapped_column(BigInteger, nullable=False)
    entry_metadata: Mapped[dict[str, Any]] = mapped_column("metadata", JSONDocument, nullable=False, default=dict)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        CheckConstraint("account IN ('wallet', 'counterparty', 'fees')", name="account"),
        Index("idx_ledger_season_user", "season_id", "user_id"),
        Index("idx_ledger_group", "tx_group_id"),
    )


class IdempotencyKey(Base):
    """Write-once claim of a caller-supplied key."""
    __tablename__ = "idempotency_keys"

    user_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    key: Mapped[str] = mapped_column(String(128), primary_key=True)
    action: Mapped[str] = mapped_column(String(64), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())


# =============================================================================
# BUSINESSES
# =============================================================================


class Business(Base):
    __tablename__ = "businesses"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    season_id: Mapped[int] = mapped_column(ForeignKey("seasons.id", ondelete="CASCADE"), nullable=False)
    owner_user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    name: Mapped[str] = mapped_column(String(64), nullable=False)
    visibility: Mapped[str] = mapped_column(String(16), nullable=False, default="private")
    is_listed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    stock_symbol: Mapped[str | None] = mapped_column(String(6))
    strategy: Mapped[str] = mapped_column(String(16), nullable=False, default="balanced")
    marketing_level: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    rd_level: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    automation_level: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    compliance_level: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    brand_bps: Mapped[int] = mapped_column(Integer, nullable=False, default=10_000)
    operational_health_bps: Mapped[int] = mapped_column(Integer, nullable=False, default=10_000)
    cash_reserve_micros: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    base_revenue_micros: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    last_event: Mapped[str] = mapped_column(String(32), nullable=False, default="")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        CheckConstraint("visibility IN ('private', 'public')", name="visibility"),
        CheckConstraint("strategy IN ('aggressive', 'balanced', 'defensive')", name="strategy"),
        CheckConstraint("brand_bps BETWEEN 5000 AND 20000", name="brand_range"),
        CheckConstraint("operational_health_bps BETWEEN 5000 AND 15000", name="health_range"),
        CheckConstraint("cash_reserve_micros >= 0", name="reserve_non_negative"),
        Index("idx_businesses_season_owner", "season_id", "owner_user_id"),
    )


class EmployeeCandidate(Base):
    __tablename__ = "employee_candidates"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    season_id: Mapped[int] = mapped_column(ForeignKey("seasons.id", ondelete="CASCADE"), nullable=False)
    full_name: Mapped[str] = mapped_column(String(80), nullable=False)
    role: Mapped[str] = mapped_column(String(32), nullable=False)
    trait: Mapped[str] = mapped_column(String(32), nullable=False)
    hire_cost_micros: Mapped[int] = mapped_column(BigInteger, nullable=False)
    revenue_per_tick_micros: Mapped[int] = mapped_column(BigInteger, nullable=False)
    risk_bps: Mapped[int] = mapped_column(Integer, nullable=False)

    __table_args__ = (
        Index("idx_candidates_season", "season_id"),
    )


class BusinessEmployee(Base):
    __tablename__ = "business_employees"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    business_id: Mapped[int] = mapped_column(ForeignKey("businesses.id", ondelete="CASCADE"), nullable=False)
    candidate_id: Mapped[int] = mapped_column(ForeignKey("employee_candidates.id", ondelete="CASCADE"), nullable=False)
    full_name: Mapped[str] = mapped_column(String(80), nullable=False)
    role: Mapped[str] = mapped_column(String(32), nullable=False)
    trait: Mapped[str] = mapped_column(String(32), nullable=False)
    revenue_per_tick_micros: Mapped[int] = mapped_column(BigInteger, nullable=False)
    risk_bps: Mapped[int] = mapped_column(Integer, nullable=False)
    hired_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        UniqueConstraint("business_id", "candidate_id", name="uq_business_employees_business_candidate"),
        Index("idx_business_employees_business", "business_id"),
    )


class BusinessMachinery(Base):
    __tablename__ = "business_machinery"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    business_id: Mapped[int] = mapped_column(ForeignKey("businesses.id", ondelete="CASCADE"), nullable=False)
    machine_type: Mapped[str] = mapped_column(String(32), nullable=False)
    level: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    output_bonus_micros: Mapped[int] = mapped_column(BigInteger, nullable=False)
    upkeep_micros: Mapped[int] = mapped_column(BigInteger, nullable=False)
    reliability_bps: Mapped[int] = mapped_column(Integer, nullable=False)

    __table_args__ = (
        UniqueConstraint("business_id", "machine_type", name="uq_business_machinery_business_type"),
    )


class BusinessLoan(Base):
    __tablename__ = "business_loans"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    business_id: Mapped[int] = mapped_column(ForeignKey("businesses.id", ondelete="CASCADE"), nullable=False)
    principal_micros: Mapped[int] = mapped_column(BigInteger, nullable=False)
    outstanding_micros: Mapped[int] = mapped_column(BigInteger, nullable=False)
    interest_bps: Mapped[int] = mapped_column(Integer, nullable=False)
    missed_ticks: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="open")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        CheckConstraint("status IN ('open', 'repaid', 'sold_off')", name="status"),
        CheckConstraint("outstanding_micros >= 0", name="outstanding_non_negative"),
        Index("idx_business_loans_business_status", "business_id", "status"),
    )


class BusinessSale(Base):
    """Sale or forced liquidation of a business; survives the business row."""
    __tablename__ = "business_sales"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    season_id: Mapped[int] = mapped_column(ForeignKey("seasons.id", ondelete="CASCADE"), nullable=False)
    business_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    owner_user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    business_name: Mapped[str] = mapped_column(String(64), nullable=False)
    gross_valuation_micros: Mapped[int] = mapped_column(BigInteger, nullable=False)
    adjustment_factor: Mapped[float] = mapped_column(Float, nullable=False)
    loan_payoff_micros: Mapped[int] = mapped_column(BigInteger, nullable=False)
    payout_micros: Mapped[int] = mapped_column(BigInteger, nullable=False)
    reason: Mapped[str] = mapped_column(Text, nullable=False, default="sold")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        Index("idx_business_sales_season_owner", "season_id", "owner_user_id"),
    )
