"""Market tick orchestration.

One tick for one season runs in a single READ COMMITTED transaction in a
fixed order: regime and prices, business revenue cycle, loan delinquency,
debt interest, season-wide peak refresh. A failure rolls the whole tick back.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timedelta, timezone
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from stanks.core.config import settings
from stanks.core.logging import correlation_scope, get_logger, log_fields
from stanks.database.transactions import run_in_transaction
from stanks.domain.types import resolve_volatility_profile
from stanks.repositories import wallets_orm
from stanks.schemas.game import TickReport
from stanks.services import economy, market
from stanks.services.random_source import RandomSource, get_random_source
from stanks.services.seasons import active_season_id

logger = get_logger("services.tick")


async def run_market_tick(
    season_id: int,
    tick_every: timedelta,
    interest_apr: float,
    volatility: str,
    rng: Optional[RandomSource] = None,
) -> TickReport:
    """Advance one season by one tick and return what changed."""
    profile = resolve_volatility_profile(volatility)
    source = rng or get_random_source()
    tick_id = uuid.uuid4().hex

    async def _execute(session: AsyncSession) -> TickReport:
        tick_at = datetime.now(timezone.utc)
        step = await market.advance_market(session, season_id, profile, source, tick_at)
        cycle = await economy.run_business_cycle(session, season_id, source)
        delinquency = await economy.run_loan_delinquency(session, season_id)
        interest = await economy.charge_debt_interest(session, season_id, tick_every, interest_apr)
        peaks = await wallets_orm.refresh_season_peaks(session, season_id)
        return TickReport(
            season_id=season_id,
            tick_at=tick_at,
            volatility=profile.name,
            regime=step.regime.value,
            regime_changed=step.regime_changed,
            stocks_updated=step.stocks_updated,
            businesses_processed=cycle.businesses_processed,
            revenue_credited_micros=cycle.revenue_credited_micros,
            losses_debited_micros=cycle.losses_debited_micros,
            loan_interest_accrued_micros=cycle.loan_interest_accrued_micros,
            autopaid_micros=delinquency.autopaid_micros,
            late_fees_micros=delinquency.late_fees_micros,
            repossessions=delinquency.repossessions,
            liquidations=delinquency.liquidations,
            debt_interest_micros=interest,
            peaks_raised=peaks,
        )

    with correlation_scope(tick_id):
        report = await run_in_transaction(_execute, isolation_level=settings.tick_isolation_level)
        logger.info(
            f"Tick complete for season {season_id}",
            extra=log_fields(
                regime=report.regime,
                stocks_updated=report.stocks_updated,
                businesses_processed=report.businesses_processed,
                liquidations=report.liquidations,
            ),
        )
    return report


async def run_active_season_tick() -> TickReport:
    """Scheduler entry point: tick the active season with configured settings."""
    season_id = await active_season_id()
    return await run_market_tick(
        season_id,
        timedelta(seconds=settings.market_tick_seconds),
        settings.interest_apr,
        settings.market_volatility,
    )
