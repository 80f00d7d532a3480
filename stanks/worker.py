"""Worker process entry point.

Resolves the active season, seeds it on first start, then either runs a
single tick (``WORKER_RUN_ONCE=true``) or the tick scheduler until SIGINT or
SIGTERM.

Usage:
    python -m stanks.worker
"""

from __future__ import annotations

import asyncio
import signal

from stanks.core.config import settings
from stanks.core.logging import get_logger, setup_logging
from stanks.database.connection import close_engine, init_engine
from stanks.jobs.scheduler import start_scheduler, stop_scheduler
from stanks.services.seasons import active_season_id, seed_defaults
from stanks.services.tick import run_active_season_tick

logger = get_logger("worker")


async def run_worker() -> None:
    setup_logging()
    logger.info(f"Starting {settings.app_name} worker v{settings.app_version}")
    logger.info(f"Environment: {settings.environment}, volatility: {settings.market_volatility}")

    await init_engine()
    try:
        season_id = await active_season_id()
        if settings.startup_seed_stocks:
            await seed_defaults(season_id)

        if settings.worker_run_once:
            report = await run_active_season_tick()
            logger.info(f"Single tick finished: regime={report.regime} stocks={report.stocks_updated}")
            return

        stop_event = asyncio.Event()
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, stop_event.set)
            except NotImplementedError:
                # Windows event loops
                pass

        await start_scheduler()
        try:
            await stop_event.wait()
        finally:
            await stop_scheduler()
    finally:
        await close_engine()
        logger.info("Worker shutdown complete")


def main() -> None:
    asyncio.run(run_worker())


if __name__ == "__main__":
    main()
