"""Scheduled jobs."""

from .scheduler import MarketTickScheduler, get_scheduler, start_scheduler, stop_scheduler

__all__ = ["MarketTickScheduler", "get_scheduler", "start_scheduler", "stop_scheduler"]
