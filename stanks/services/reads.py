"""Read models: dashboard, stocks, leaderboards, business detail and ledger.

Reads take no idempotency key and run in a plain transaction.
"""

from __future__ import annotations

from typing import List, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from stanks.core.config import settings
from stanks.core.money import debt_ceiling, normalize_symbol, notional
from stanks.database.transactions import run_in_transaction
from stanks.repositories import businesses_orm, ledger_orm, profiles_orm, stocks_orm, wallets_orm
from stanks.schemas.game import (
    BusinessSaleView,
    BusinessSummary,
    BusinessView,
    CandidateView,
    Dashboard,
    EmployeeView,
    LeaderboardRow,
    LedgerEntryView,
    LoanView,
    MachineryView,
    PositionView,
    PricePoint,
    StockDetail,
    StockView,
)


async def _business_summary(session: AsyncSession, business) -> BusinessSummary:
    employees = await businesses_orm.list_employees(session, business.id)
    machinery = await businesses_orm.list_machinery(session, business.id)
    loans = await businesses_orm.list_loans(session, business.id, open_only=True)
    return BusinessSummary(
        **BusinessView.model_validate(business).model_dump(),
        employee_count=len(employees),
        employee_revenue_micros=sum(e.revenue_per_tick_micros for e in employees),
        machinery_output_micros=sum(m.output_bonus_micros for m in machinery),
        machinery_upkeep_micros=sum(m.upkeep_micros for m in machinery),
        open_loans_micros=sum(l.outstanding_micros for l in loans),
    )


async def dashboard(season_id: int, user_id: str) -> Dashboard:
    async def _execute(session: AsyncSession) -> Dashboard:
        wallet = await wallets_orm.require_wallet(session, user_id, season_id, for_update=False)
        positions = []
        for row in await stocks_orm.list_positions(session, user_id, season_id):
            value = notional(row["current_price_micros"], row["quantity_units"])
            cost = notional(row["avg_price_micros"], row["quantity_units"])
            positions.append(
                PositionView(**row, market_value_micros=value, unrealized_pnl_micros=value - cost)
            )
        businesses = [
            await _business_summary(session, b)
            for b in await businesses_orm.list_businesses(session, season_id, user_id)
        ]
        return Dashboard(
            season_id=season_id,
            balance_micros=wallet.balance_micros,
            peak_net_worth_micros=wallet.peak_net_worth_micros,
            net_worth_micros=await wallets_orm.net_worth(session, wallet),
            debt_ceiling_micros=debt_ceiling(wallet.peak_net_worth_micros),
            positions=positions,
            businesses=businesses,
        )

    return await run_in_transaction(_execute)


async def list_stocks(season_id: int, include_unlisted: bool = False) -> List[StockView]:
    async def _execute(session: AsyncSession) -> List[StockView]:
        rows = await stocks_orm.list_stocks(session, season_id, include_unlisted=include_unlisted)
        return [StockView(**row) for row in rows]

    return await run_in_transaction(_execute)


async def stock_detail(season_id: int, symbol: str, limit: Optional[int] = None) -> StockDetail:
    """Stock with its latest price points, newest first."""
    ticker = normalize_symbol(symbol)
    cap = limit or settings.price_history_limit

    async def _execute(session: AsyncSession) -> StockDetail:
        stock = await stocks_orm.require_stock(session, season_id, ticker, for_update=False)
        history = await stocks_orm.price_history(session, stock.id, cap)
        return StockDetail(
            **StockView.model_validate(stock).model_dump(),
            history=[PricePoint(**p) for p in history],
        )

    return await run_in_transaction(_execute)


async def global_leaderboard(season_id: int, limit: Optional[int] = None) -> List[LeaderboardRow]:
    cap = limit or settings.leaderboard_limit

    async def _execute(session: AsyncSession) -> List[LeaderboardRow]:
        rows = await profiles_orm.leaderboard(session, season_id, cap)
        return [LeaderboardRow(**row) for row in rows]

    return await run_in_transaction(_execute)


async def friends_leaderboard(
    season_id: int, user_id: str, limit: Optional[int] = None
) -> List[LeaderboardRow]:
    """Leaderboard of the player and everyone they follow."""
    cap = limit or settings.leaderboard_limit

    async def _execute(session: AsyncSession) -> List[LeaderboardRow]:
        members = [user_id, *await profiles_orm.list_followees(session, user_id)]
        rows = await profiles_orm.leaderboard(session, season_id, cap, user_ids=members)
        return [LeaderboardRow(**row) for row in rows]

    return await run_in_transaction(_execute)


async def list_candidates(season_id: int) -> List[CandidateView]:
    async def _execute(session: AsyncSession) -> List[CandidateView]:
        return [
            CandidateView.model_validate(c)
            for c in await businesses_orm.list_candidates(session, season_id)
        ]

    return await run_in_transaction(_execute)


async def list_employees(season_id: int, user_id: str, business_id: int) -> List[EmployeeView]:
    async def _execute(session: AsyncSession) -> List[EmployeeView]:
        business = await businesses_orm.require_owned_business(
            session, season_id, business_id, user_id, for_update=False
        )
        return [
            EmployeeView.model_validate(e)
            for e in await businesses_orm.list_employees(session, business.id)
        ]

    return await run_in_transaction(_execute)


async def list_machinery(season_id: int, user_id: str, business_id: int) -> List[MachineryView]:
    async def _execute(session: AsyncSession) -> List[MachineryView]:
        business = await businesses_orm.require_owned_business(
            session, season_id, business_id, user_id, for_update=False
        )
        return [
            MachineryView.model_validate(m)
            for m in await businesses_orm.list_machinery(session, business.id)
        ]

    return await run_in_transaction(_execute)


async def list_loans(season_id: int, user_id: str, business_id: int) -> List[LoanView]:
    async def _execute(session: AsyncSession) -> List[LoanView]:
        business = await businesses_orm.require_owned_business(
            session, season_id, business_id, user_id, for_update=False
        )
        return [LoanView.model_validate(l) for l in await businesses_orm.list_loans(session, business.id)]

    return await run_in_transaction(_execute)


async def list_sales(season_id: int, user_id: str) -> List[BusinessSaleView]:
    async def _execute(session: AsyncSession) -> List[BusinessSaleView]:
        rows = await businesses_orm.list_sales(session, season_id, user_id)
        return [BusinessSaleView.model_validate(s) for s in rows]

    return await run_in_transaction(_execute)


async def ledger_history(season_id: int, user_id: str, limit: int = 50) -> List[LedgerEntryView]:
    async def _execute(session: AsyncSession) -> List[LedgerEntryView]:
        rows = await ledger_orm.list_entries(session, user_id, season_id, limit)
        return [LedgerEntryView(**row) for row in rows]

    return await run_in_transaction(_execute)
