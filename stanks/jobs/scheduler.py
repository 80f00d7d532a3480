"""Market tick scheduler using APScheduler with async support."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Awaitable, Callable, Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from stanks.core.config import settings
from stanks.core.logging import get_logger

logger = get_logger("jobs.scheduler")

MARKET_TICK_JOB = "market_tick"

# Global scheduler instance
_scheduler: Optional["MarketTickScheduler"] = None


class MarketTickScheduler:
    """Runs the market tick on a fixed interval, one run at a time."""

    def __init__(
        self,
        tick: Optional[Callable[[], Awaitable[object]]] = None,
        interval_seconds: Optional[int] = None,
    ):
        self._tick = tick
        self._interval = interval_seconds or settings.market_tick_seconds
        self._scheduler = AsyncIOScheduler(
            timezone=settings.scheduler_timezone,
            job_defaults={
                "coalesce": True,  # Combine missed runs into one
                "max_instances": 1,  # Never overlap two ticks
                "misfire_grace_time": self._interval,
            },
        )
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    async def start(self) -> None:
        if self._running:
            logger.warning("Scheduler already running")
            return

        self._scheduler.add_job(
            self._execute_job,
            trigger=IntervalTrigger(seconds=self._interval),
            id=MARKET_TICK_JOB,
            name="Advance market and business economy",
            replace_existing=True,
        )
        self._scheduler.start()
        self._running = True
        logger.info(f"Market tick scheduled every {self._interval}s")

    async def stop(self) -> None:
        if not self._running:
            return

        self._scheduler.shutdown(wait=False)
        self._running = False
        logger.info("Market tick scheduler stopped")

    async def _execute_job(self) -> None:
        """Run one tick; failures are logged and the schedule continues."""
        start_time = datetime.now(timezone.utc)
        try:
            await self._resolve_tick()()
        except Exception:
            duration_ms = int((datetime.now(timezone.utc) - start_time).total_seconds() * 1000)
            logger.exception(f"Job {MARKET_TICK_JOB} failed after {duration_ms}ms")
            return

        duration_ms = int((datetime.now(timezone.utc) - start_time).total_seconds() * 1000)
        logger.info(f"Job {MARKET_TICK_JOB} completed in {duration_ms}ms")

    async def run_job_now(self) -> None:
        """Manually trigger a tick outside the schedule."""
        await self._execute_job()

    def _resolve_tick(self) -> Callable[[], Awaitable[object]]:
        if self._tick is None:
            from stanks.services.tick import run_active_season_tick

            self._tick = run_active_season_tick
        return self._tick

    def get_next_run_time(self) -> Optional[datetime]:
        job = self._scheduler.get_job(MARKET_TICK_JOB)
        if job:
            return job.next_run_time
        return None


def get_scheduler() -> Optional[MarketTickScheduler]:
    """Get the global scheduler instance."""
    return _scheduler


async def start_scheduler() -> MarketTickScheduler:
    """Start the global scheduler."""
    global _scheduler
    if _scheduler is None:
        _scheduler = MarketTickScheduler()
    await _scheduler.start()
    return _scheduler


async def stop_scheduler() -> None:
    """Stop the global scheduler."""
    global _scheduler
    if _scheduler is not None:
        await _scheduler.stop()
        _scheduler = None
