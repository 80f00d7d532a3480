"""Active season resolution and per-season seed data."""

from __future__ import annotations

from sqlalchemy.ext.asyncio import AsyncSession

from stanks.core.logging import get_logger, log_fields
from stanks.database.transactions import run_in_transaction
from stanks.repositories import businesses_orm, seasons_orm, stocks_orm

logger = get_logger("services.seasons")


async def active_season_id() -> int:
    """Id of the newest active season, creating the first one if needed."""

    async def _execute(session: AsyncSession) -> int:
        season = await seasons_orm.get_or_create_active_season(session)
        return season.id

    return await run_in_transaction(_execute)


async def seed_defaults(season_id: int) -> dict[str, int]:
    """Seed default stocks and the hiring pool for a fresh season."""

    async def _execute(session: AsyncSession) -> dict[str, int]:
        stocks = 0
        if await stocks_orm.count_stocks(session, season_id) == 0:
            stocks = await stocks_orm.seed_default_stocks(session, season_id)
        candidates = await businesses_orm.seed_candidates(session, season_id)
        return {"stocks": stocks, "candidates": candidates}

    seeded = await run_in_transaction(_execute)
    if any(seeded.values()):
        logger.info(f"Seeded season {season_id}", extra=log_fields(**seeded))
    return seeded
