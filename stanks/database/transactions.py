"""Transaction coordinator with serialization-conflict retry.

Player mutations run through ``run_serializable``: one session, one
transaction at the strictest isolation level, retried with exponential
backoff when the database reports a serialization failure (SQLSTATE 40001)
or a detected deadlock (40P01).
Every other error propagates on the first attempt.

Usage:
    from stanks.database.transactions import run_serializable

    async def _buy(session):
        ...

    result = await run_serializable(_buy, name="place_order")
"""

from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, TypeVar

from sqlalchemy.exc import DBAPIError
from sqlalchemy.ext.asyncio import AsyncSession

from stanks.core.config import settings
from stanks.core.exceptions import TransactionConflictError
from stanks.core.logging import get_logger, log_fields
from stanks.database.connection import get_session


logger = get_logger("database.transactions")

T = TypeVar("T")

SERIALIZATION_FAILURE = "40001"
DEADLOCK_DETECTED = "40P01"
RETRYABLE_SQLSTATES = frozenset({SERIALIZATION_FAILURE, DEADLOCK_DETECTED})

# SQLite transactions are always serializable and reject other level names
_DIALECTS_WITHOUT_ISOLATION = {"sqlite"}


def is_serialization_failure(exc: BaseException) -> bool:
    """True if ``exc`` (or anything it wraps) carries a retryable SQLSTATE."""
    seen: set[int] = set()
    current: BaseException | None = exc
    while current is not None and id(current) not in seen:
        seen.add(id(current))
        for attr in ("sqlstate", "pgcode"):
            if getattr(current, attr, None) in RETRYABLE_SQLSTATES:
                return True
        current = getattr(current, "orig", None) or current.__cause__
    return False


def backoff_delay(attempt: int, base_delay: float, max_delay: float) -> float:
    """Delay after the ``attempt``-th failure: doubling from ``base_delay``, capped."""
    return min(base_delay * (2 ** (attempt - 1)), max_delay)


async def _apply_isolation(session: AsyncSession, isolation_level: str | None) -> None:
    if not isolation_level:
        return
    if session.bind.dialect.name in _DIALECTS_WITHOUT_ISOLATION:
        return
    # Must run before the first statement so it applies to this transaction
    await session.connection(execution_options={"isolation_level": isolation_level})


async def run_in_transaction(
    operation: Callable[[AsyncSession], Awaitable[T]],
    *,
    isolation_level: str | None = None,
) -> T:
    """Run ``operation`` once inside a single committed transaction."""
    async with get_session() as session:
        async with session.begin():
            await _apply_isolation(session, isolation_level)
            return await operation(session)


async def run_serializable(
    operation: Callable[[AsyncSession], Awaitable[T]],
    *,
    name: str,
    max_attempts: int | None = None,
    base_delay: float | None = None,
    max_delay: float | None = None,
) -> T:
    """Run ``operation`` in a serializable transaction, retrying on conflicts.

    The backoff sleep is a plain ``asyncio.sleep`` so cancelling the caller
    aborts the retry loop immediately.

    Raises:
        TransactionConflictError: If every attempt hit a serialization failure
    """
    attempts = max_attempts or settings.tx_max_attempts
    base = base_delay if base_delay is not None else settings.tx_base_delay_seconds
    cap = max_delay if max_delay is not None else settings.tx_max_delay_seconds

    for attempt in range(1, attempts + 1):
        try:
            return await run_in_transaction(
                operation, isolation_level=settings.player_isolation_level
            )
        except DBAPIError as e:
            if not is_serialization_failure(e):
                raise

            if attempt >= attempts:
                logger.warning(
                    f"Serialization retries exhausted for {name}",
                    extra=log_fields(operation=name, attempts=attempts),
                )
                raise TransactionConflictError(
                    details={"operation": name, "attempts": attempts}
                ) from e

            delay = backoff_delay(attempt, base, cap)
            logger.debug(
                f"Retry {attempt}/{attempts} for {name} after {delay:.3f}s",
                extra=log_fields(operation=name, attempt=attempt),
            )
            await asyncio.sleep(delay)

    raise TransactionConflictError(details={"operation": name, "attempts": attempts})
