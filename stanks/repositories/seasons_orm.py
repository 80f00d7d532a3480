"""Season and market-state repository - SQLAlchemy ORM async."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

from sqlalchemy import desc, select
from sqlalchemy.ext.asyncio import AsyncSession

from stanks.database.orm import MarketState, Season
from stanks.domain.types import MarketRegime, SeasonStatus


SEASON_LENGTH = timedelta(days=90)


async def get_active_season(session: AsyncSession) -> Season | None:
    result = await session.execute(
        select(Season)
        .where(Season.status == SeasonStatus.ACTIVE.value)
        .order_by(desc(Season.id))
        .limit(1)
    )
    return result.scalar_one_or_none()


async def create_season(
    session: AsyncSession, name: str, *, starts_at: datetime | None = None
) -> Season:
    start = starts_at or datetime.now(timezone.utc)
    season = Season(
        name=name,
        status=SeasonStatus.ACTIVE.value,
        starts_at=start,
        ends_at=start + SEASON_LENGTH,
    )
    session.add(season)
    await session.flush()
    return season


async def get_or_create_active_season(session: AsyncSession) -> Season:
    """Newest active season, creating "Season 1" when none exists."""
    season = await get_active_season(session)
    if season is None:
        season = await create_season(session, "Season 1")
    return season


async def get_regime(session: AsyncSession, season_id: int, *, for_update: bool = False) -> MarketState:
    """Market state row for a season, inserted as neutral on first use."""
    stmt = select(MarketState).where(MarketState.season_id == season_id)
    if for_update:
        stmt = stmt.with_for_update()
    result = await session.execute(stmt)
    state = result.scalar_one_or_none()
    if state is None:
        state = MarketState(season_id=season_id, regime=MarketRegime.NEUTRAL.value)
        session.add(state)
        await session.flush()
    return state


async def set_regime(session: AsyncSession, state: MarketState, regime: MarketRegime) -> None:
    if state.regime != regime.value:
        state.regime = regime.value
        await session.flush()
