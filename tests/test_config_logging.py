"""Tests for settings, logging, error payloads and the tick scheduler."""

from __future__ import annotations

import json
import logging

import pytest
from pydantic import ValidationError as PydanticValidationError

from stanks.core.config import VOLATILITY_ALIASES, Settings
from stanks.core.exceptions import InsufficientFundsError, ValidationError
from stanks.core.logging import (
    StructuredFormatter,
    TextFormatter,
    correlation_id_var,
    correlation_scope,
    get_logger,
    log_fields,
)
from stanks.domain.types import resolve_volatility_profile
from stanks.jobs.scheduler import MarketTickScheduler
from stanks.schemas.game import ErrorResponse


def _record(message: str, **fields) -> logging.LogRecord:
    record = logging.LogRecord("stanks.test", logging.INFO, __file__, 1, message, None, None)
    if fields:
        record.extra_fields = fields
    return record


# =============================================================================
# Settings
# =============================================================================


class TestSettings:
    @pytest.mark.parametrize(
        "raw,expected",
        [("mor", "moderate"), (" WILD ", "wild"), ("calm", "calm"), ("chaos", "moderate"), ("", "moderate")],
    )
    def test_volatility_is_normalized(self, raw, expected):
        assert Settings(market_volatility=raw).market_volatility == expected

    @pytest.mark.parametrize("raw", [*VOLATILITY_ALIASES, "calm", "wild", "bogus"])
    def test_volatility_matches_market_profile(self, raw):
        assert Settings(market_volatility=raw).market_volatility == resolve_volatility_profile(raw).name

    def test_isolation_levels(self):
        s = Settings(player_isolation_level="serializable", tick_isolation_level="read_committed")
        assert s.player_isolation_level == "SERIALIZABLE"
        assert s.tick_isolation_level == "READ COMMITTED"

        with pytest.raises(PydanticValidationError):
            Settings(tick_isolation_level="chaos")

    def test_log_level(self):
        assert Settings(log_level="debug").log_level == "DEBUG"
        with pytest.raises(PydanticValidationError):
            Settings(log_level="loud")

    def test_tick_interval_must_be_positive(self):
        with pytest.raises(PydanticValidationError):
            Settings(market_tick_seconds=0)


# =============================================================================
# Logging
# =============================================================================


class TestFormatters:
    def test_json_includes_correlation_and_fields(self):
        with correlation_scope("tick-1234"):
            payload = json.loads(StructuredFormatter().format(_record("hello", season_id=3)))
        assert payload["message"] == "hello"
        assert payload["correlation_id"] == "tick-1234"
        assert payload["season_id"] == 3
        assert correlation_id_var.get() is None

    def test_text_shortens_correlation(self):
        with correlation_scope("abcdef123456"):
            line = TextFormatter().format(_record("tick done", regime="bull"))
        assert "[abcdef12]" in line
        assert line.endswith("tick done regime=bull")

    def test_text_without_correlation(self):
        line = TextFormatter().format(_record("plain"))
        assert "[" not in line

    def test_helpers(self):
        assert log_fields(a=1) == {"extra_fields": {"a": 1}}
        assert get_logger("services.tick").name == "stanks.services.tick"


# =============================================================================
# Scheduler
# =============================================================================


class TestScheduler:
    async def test_run_job_now_calls_tick(self):
        calls = []

        async def tick():
            calls.append(1)

        scheduler = MarketTickScheduler(tick=tick, interval_seconds=5)
        await scheduler.run_job_now()
        assert calls == [1]

    async def test_failures_are_logged_not_raised(self, caplog):
        async def tick():
            raise RuntimeError("database down")

        scheduler = MarketTickScheduler(tick=tick, interval_seconds=5)
        with caplog.at_level(logging.ERROR, logger="stanks.jobs.scheduler"):
            await scheduler.run_job_now()
        assert any("market_tick failed" in r.getMessage() for r in caplog.records)

    async def test_start_and_stop(self):
        async def tick():
            return None

        scheduler = MarketTickScheduler(tick=tick, interval_seconds=30)
        await scheduler.start()
        try:
            assert scheduler.running
            assert scheduler.get_next_run_time() is not None
        finally:
            await scheduler.stop()
        assert not scheduler.running


# =============================================================================
# Errors
# =============================================================================


class TestErrorPayloads:
    def test_problem_payload(self):
        exc = InsufficientFundsError(details={"cost_micros": 10})
        payload = ErrorResponse(**exc.to_dict())
        assert payload.status == exc.status_code
        assert payload.error == exc.error_code
        assert payload.details == {"cost_micros": 10}

    def test_details_omitted_when_empty(self):
        assert "details" not in ValidationError("bad input").to_dict()
