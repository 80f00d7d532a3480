"""Wallet repository - SQLAlchemy ORM async.

Every balance change goes through ``record_movement`` or ``record_unbalanced``
so the cached balance and the ledger are written in the same transaction.
"""

from __future__ import annotations

from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from stanks.core.exceptions import InsufficientFundsError, NotFoundError
from stanks.core.money import (
    STARTER_BALANCE_MICROS,
    UNITS_PER_SHARE,
    checked_int64,
    debt_ceiling,
    portfolio_value,
    trunc_div,
)
from stanks.database.orm import Position, Stock, Wallet
from stanks.repositories import ledger_orm


async def get_wallet(
    session: AsyncSession, user_id: str, season_id: int, *, for_update: bool = False
) -> Wallet | None:
    stmt = select(Wallet).where(Wallet.user_id == user_id, Wallet.season_id == season_id)
    if for_update:
        stmt = stmt.with_for_update()
    result = await session.execute(stmt)
    return result.scalar_one_or_none()


async def require_wallet(
    session: AsyncSession, user_id: str, season_id: int, *, for_update: bool = True
) -> Wallet:
    """Locked wallet for a mutation; missing wallets are a 404."""
    wallet = await get_wallet(session, user_id, season_id, for_update=for_update)
    if wallet is None:
        raise NotFoundError("Wallet not found", details={"user_id": user_id, "season_id": season_id})
    return wallet


async def create_wallet(session: AsyncSession, user_id: str, season_id: int) -> Wallet:
    """Create a season wallet funded by a ledgered starter grant."""
    wallet = Wallet(
        user_id=user_id,
        season_id=season_id,
        balance_micros=0,
        peak_net_worth_micros=STARTER_BALANCE_MICROS,
    )
    session.add(wallet)
    await session.flush()
    await record_movement(session, wallet, "starter_grant", STARTER_BALANCE_MICROS)
    return wallet


async def record_movement(
    session: AsyncSession,
    wallet: Wallet,
    action: str,
    amount_micros: int,
    *,
    fee_micros: int = 0,
    metadata: dict[str, Any] | None = None,
) -> int:
    """Apply a balanced ledger event to ``wallet``; returns the balance change."""
    delta = await ledger_orm.append_entries(
        session,
        wallet.user_id,
        wallet.season_id,
        action,
        amount_micros,
        fee_micros=fee_micros,
        metadata=metadata,
    )
    wallet.balance_micros = checked_int64(wallet.balance_micros + delta, "balance")
    await session.flush()
    return delta


async def record_unbalanced(
    session: AsyncSession,
    wallet: Wallet,
    delta_micros: int,
    action: str,
    metadata: dict[str, Any] | None = None,
) -> int:
    """Apply a standalone wallet entry with no counterparty."""
    await ledger_orm.append_wallet_delta(
        session, wallet.user_id, wallet.season_id, delta_micros, action, metadata
    )
    wallet.balance_micros = checked_int64(wallet.balance_micros + delta_micros, "balance")
    await session.flush()
    return delta_micros


def ensure_can_spend(wallet: Wallet, cost_micros: int) -> None:
    """Raise unless spending ``cost_micros`` stays within the debt ceiling."""
    ceiling = debt_ceiling(wallet.peak_net_worth_micros)
    if wallet.balance_micros - cost_micros < -ceiling:
        raise InsufficientFundsError(
            details={
                "cost_micros": cost_micros,
                "balance_micros": wallet.balance_micros,
                "debt_ceiling_micros": ceiling,
            }
        )


def ensure_cash_on_hand(wallet: Wallet, amount_micros: int) -> None:
    """Raise unless the wallet holds ``amount_micros`` without borrowing."""
    if wallet.balance_micros < amount_micros:
        raise InsufficientFundsError(
            details={"amount_micros": amount_micros, "balance_micros": wallet.balance_micros}
        )


# =============================================================================
# NET WORTH
# =============================================================================


async def holdings_by_user(session: AsyncSession, season_id: int) -> dict[str, int]:
    """Mark-to-market holdings value per player for a season."""
    await session.flush()
    result = await session.execute(
        select(Position.user_id, Position.quantity_units, Stock.current_price_micros)
        .join(Stock, Stock.id == Position.stock_id)
        .where(Position.season_id == season_id)
    )
    totals: dict[str, int] = {}
    for user_id, qty, price in result.all():
        totals[user_id] = totals.get(user_id, 0) + trunc_div(qty * price, UNITS_PER_SHARE)
    return totals


async def holdings_value(session: AsyncSession, user_id: str, season_id: int) -> int:
    await session.flush()
    result = await session.execute(
        select(Position.quantity_units, Stock.current_price_micros)
        .join(Stock, Stock.id == Position.stock_id)
        .where(Position.season_id == season_id, Position.user_id == user_id)
    )
    return portfolio_value(result.all())


async def net_worth(session: AsyncSession, wallet: Wallet) -> int:
    """Balance plus mark-to-market holdings."""
    return wallet.balance_micros + await holdings_value(session, wallet.user_id, wallet.season_id)


async def refresh_peak(session: AsyncSession, wallet: Wallet) -> int:
    """Raise the wallet's peak to its current net worth if higher."""
    worth = await net_worth(session, wallet)
    if worth > wallet.peak_net_worth_micros:
        wallet.peak_net_worth_micros = worth
        await session.flush()
    return wallet.peak_net_worth_micros


async def refresh_season_peaks(session: AsyncSession, season_id: int) -> int:
    """Refresh every wallet's peak for the season; returns how many rose."""
    holdings = await holdings_by_user(session, season_id)
    result = await session.execute(
        select(Wallet).where(Wallet.season_id == season_id).with_for_update()
    )
    raised = 0
    for wallet in result.scalars().all():
        worth = wallet.balance_micros + holdings.get(wallet.user_id, 0)
        if worth > wallet.peak_net_worth_micros:
            wallet.peak_net_worth_micros = worth
            raised += 1
    await session.flush()
    return raised


async def list_negative_wallets(session: AsyncSession, season_id: int) -> list[Wallet]:
    result = await session.execute(
        select(Wallet)
        .where(Wallet.season_id == season_id, Wallet.balance_micros < 0)
        .order_by(Wallet.id)
        .with_for_update()
    )
    return list(result.scalars().all())
