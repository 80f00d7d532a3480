"""Stocks, price history, positions and orders - SQLAlchemy ORM async."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from sqlalchemy import desc, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from stanks.core.exceptions import InsufficientSharesError, StockNotFoundError
from stanks.core.money import MICROS_PER_UNIT, average_cost, notional
from stanks.database.orm import Order, Position, Stock, StockPrice


DEFAULT_STOCKS: tuple[tuple[str, str, int], ...] = (
    ("COBOLT", "Cobalt Dynamics", 130),
    ("NIMBUS", "Nimbus Labs", 95),
    ("RUSTIC", "Rustic Systems", 115),
    ("PYLONS", "Pylon Networks", 80),
    ("JAVOLT", "Javolt Cloud", 105),
    ("SWIFTR", "Swiftr Mobile", 150),
    ("KOTLIN", "Kotlin Forge", 90),
    ("NODEON", "Nodeon Runtime", 120),
    ("RUBYIX", "Rubyix Core", 70),
    ("ELIXIR", "Elixir Ops", 125),
    ("QUARKX", "Quarkx Compute", 135),
    ("VECTRA", "Vectra AI", 165),
    ("DATUMX", "Datumx Data", 85),
    ("CYBRON", "Cybron Secure", 140),
    ("FUSION", "Fusion Grid", 110),
    ("NEBULA", "Nebula Energy", 92),
    ("ORBITZ", "Orbitz Space", 180),
    ("ZENITH", "Zenith Retail", 75),
    ("ARCANE", "Arcane Finance", 145),
    ("LUMINA", "Lumina Health", 102),
)


def _stock_to_dict(s: Stock) -> dict[str, Any]:
    return {
        "id": s.id,
        "symbol": s.symbol,
        "display_name": s.display_name,
        "listed_public": s.listed_public,
        "current_price_micros": s.current_price_micros,
        "anchor_price_micros": s.anchor_price_micros,
        "created_by_user_id": s.created_by_user_id,
        "business_id": s.business_id,
    }


# ───────────────────────────────────────────────────────────────────────────────
# Stocks
# ───────────────────────────────────────────────────────────────────────────────


async def get_stock(
    session: AsyncSession, season_id: int, symbol: str, *, for_update: bool = False
) -> Stock | None:
    stmt = select(Stock).where(Stock.season_id == season_id, Stock.symbol == symbol)
    if for_update:
        stmt = stmt.with_for_update()
    result = await session.execute(stmt)
    return result.scalar_one_or_none()


async def require_stock(
    session: AsyncSession, season_id: int, symbol: str, *, for_update: bool = True
) -> Stock:
    stock = await get_stock(session, season_id, symbol, for_update=for_update)
    if stock is None:
        raise StockNotFoundError(details={"symbol": symbol})
    return stock


async def list_stocks(
    session: AsyncSession, season_id: int, *, include_unlisted: bool = False
) -> list[dict[str, Any]]:
    stmt = select(Stock).where(Stock.season_id == season_id)
    if not include_unlisted:
        stmt = stmt.where(Stock.listed_public.is_(True))
    result = await session.execute(stmt.order_by(Stock.symbol))
    return [_stock_to_dict(s) for s in result.scalars().all()]


async def lock_season_stocks(session: AsyncSession, season_id: int) -> list[Stock]:
    """All stocks of a season, locked for the tick, in a stable order."""
    result = await session.execute(
        select(Stock).where(Stock.season_id == season_id).order_by(Stock.id).with_for_update()
    )
    return list(result.scalars().all())


async def count_stocks(session: AsyncSession, season_id: int) -> int:
    result = await session.execute(
        select(func.count()).select_from(Stock).where(Stock.season_id == season_id)
    )
    return int(result.scalar_one())


async def create_stock(
    session: AsyncSession,
    season_id: int,
    symbol: str,
    display_name: str,
    price_micros: int,
    *,
    listed_public: bool,
    created_by_user_id: str | None = None,
    business_id: int | None = None,
) -> Stock:
    stock = Stock(
        season_id=season_id,
        symbol=symbol,
        display_name=display_name,
        listed_public=listed_public,
        current_price_micros=price_micros,
        anchor_price_micros=price_micros,
        created_by_user_id=created_by_user_id,
        business_id=business_id,
    )
    session.add(stock)
    await session.flush()
    return stock


async def seed_default_stocks(session: AsyncSession, season_id: int) -> int:
    """Insert the default listed stocks; returns how many were added."""
    now = datetime.now(timezone.utc)
    added = 0
    for symbol, name, price in DEFAULT_STOCKS:
        if await get_stock(session, season_id, symbol) is not None:
            continue
        stock = await create_stock(
            session, season_id, symbol, name, price * MICROS_PER_UNIT, listed_public=True
        )
        await append_price(session, stock.id, stock.current_price_micros, now)
        added += 1
    return added


async def lock_business_stocks(session: AsyncSession, business_id: int) -> list[Stock]:
    """Stocks linked to a business, locked in id order.

    Callers that also lock the business take these first, matching the
    stocks-then-businesses order of the market tick.
    """
    result = await session.execute(
        select(Stock).where(Stock.business_id == business_id).order_by(Stock.id).with_for_update()
    )
    return list(result.scalars().all())


async def detach_business(session: AsyncSession, business_id: int) -> None:
    """Unlink stocks from a business that is about to disappear."""
    for stock in await lock_business_stocks(session, business_id):
        stock.business_id = None
    await session.flush()


# ───────────────────────────────────────────────────────────────────────────────
# Price history
# ───────────────────────────────────────────────────────────────────────────────


async def append_price(
    session: AsyncSession, stock_id: int, price_micros: int, tick_at: datetime
) -> None:
    session.add(StockPrice(stock_id=stock_id, tick_at=tick_at, price_micros=price_micros))
    await session.flush()


async def price_history(session: AsyncSession, stock_id: int, limit: int) -> list[dict[str, Any]]:
    """Newest-first price samples, capped at ``limit``."""
    result = await session.execute(
        select(StockPrice)
        .where(StockPrice.stock_id == stock_id)
        .order_by(desc(StockPrice.tick_at), desc(StockPrice.id))
        .limit(limit)
    )
    return [
        {"tick_at": p.tick_at, "price_micros": p.price_micros}
        for p in result.scalars().all()
    ]


# ───────────────────────────────────────────────────────────────────────────────
# Positions
# ───────────────────────────────────────────────────────────────────────────────


async def get_position(
    session: AsyncSession, user_id: str, season_id: int, stock_id: int, *, for_update: bool = True
) -> Position | None:
    stmt = select(Position).where(
        Position.user_id == user_id,
        Position.season_id == season_id,
        Position.stock_id == stock_id,
    )
    if for_update:
        stmt = stmt.with_for_update()
    result = await session.execute(stmt)
    return result.scalar_one_or_none()


async def upsert_buy_position(
    session: AsyncSession,
    user_id: str,
    season_id: int,
    stock_id: int,
    quantity_units: int,
    price_micros: int,
) -> Position:
    """Add to a position, re-averaging cost over the combined quantity."""
    position = await get_position(session, user_id, season_id, stock_id)
    if position is None:
        position = Position(
            user_id=user_id,
            season_id=season_id,
            stock_id=stock_id,
            quantity_units=quantity_units,
            avg_price_micros=price_micros,
        )
        session.add(position)
    else:
        total_qty = position.quantity_units + quantity_units
        total_cost = notional(position.avg_price_micros, position.quantity_units) + notional(
            price_micros, quantity_units
        )
        # Tiny lots can round the average to zero; keep the row valid
        position.avg_price_micros = max(1, average_cost(total_cost, total_qty))
        position.quantity_units = total_qty
    await session.flush()
    return position


async def apply_sell_position(
    session: AsyncSession, user_id: str, season_id: int, stock_id: int, quantity_units: int
) -> int:
    """Remove shares; the row is deleted at exactly zero. Returns remaining units."""
    position = await get_position(session, user_id, season_id, stock_id)
    held = position.quantity_units if position else 0
    if held < quantity_units:
        raise InsufficientSharesError(
            details={"held_units": held, "requested_units": quantity_units}
        )
    remaining = held - quantity_units
    if remaining == 0:
        await session.delete(position)
    else:
        position.quantity_units = remaining
    await session.flush()
    return remaining


async def list_positions(session: AsyncSession, user_id: str, season_id: int) -> list[dict[str, Any]]:
    result = await session.execute(
        select(Position, Stock)
        .join(Stock, Stock.id == Position.stock_id)
        .where(Position.user_id == user_id, Position.season_id == season_id)
        .order_by(Stock.symbol)
    )
    return [
        {
            "symbol": stock.symbol,
            "quantity_units": pos.quantity_units,
            "avg_price_micros": pos.avg_price_micros,
            "current_price_micros": stock.current_price_micros,
        }
        for pos, stock in result.all()
    ]


# ───────────────────────────────────────────────────────────────────────────────
# Orders
# ───────────────────────────────────────────────────────────────────────────────


async def insert_order(
    session: AsyncSession,
    *,
    user_id: str,
    season_id: int,
    stock_id: int,
    side: str,
    quantity_units: int,
    price_micros: int,
    notional_micros: int,
    fee_micros: int,
) -> Order:
    order = Order(
        user_id=user_id,
        season_id=season_id,
        stock_id=stock_id,
        side=side,
        quantity_units=quantity_units,
        price_micros=price_micros,
        notional_micros=notional_micros,
        fee_micros=fee_micros,
    )
    session.add(order)
    await session.flush()
    return order
