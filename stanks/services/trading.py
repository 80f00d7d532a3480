"""Trading engine: buy and sell orders against the authoritative price.

Orders are validated before any transaction opens, then executed in one
serializable transaction: idempotency claim, stock and wallet locks,
debt-ceiling check, position update, ledger, order record.
"""

from __future__ import annotations

from sqlalchemy.ext.asyncio import AsyncSession

from stanks.core.exceptions import (
    InsufficientFundsError,
    StockNotListedError,
    ValidationError,
)
from stanks.core.logging import correlation_scope, get_logger, log_fields
from stanks.core.money import (
    debt_ceiling,
    max_affordable_buy,
    normalize_symbol,
    notional,
    trading_fee,
    units_to_shares,
)
from stanks.database.transactions import run_serializable
from stanks.domain.types import OrderSide, parse_enum
from stanks.repositories import stocks_orm, wallets_orm
from stanks.repositories.idempotency_orm import claim_idempotency, require_idempotency_key
from stanks.schemas.game import OrderResult

logger = get_logger("services.trading")


async def place_order(
    season_id: int,
    user_id: str,
    symbol: str,
    side: str,
    quantity_units: int,
    idempotency_key: str,
) -> OrderResult:
    """Execute a market order at the stock's current price.

    Raises:
        InvalidSymbolError: Symbol is not six letters
        ValidationError: Bad side, quantity or idempotency key
        DuplicateIdempotencyError: Key already used
        StockNotFoundError: No such stock this season
        StockNotListedError: Stock is not publicly tradable
        InsufficientFundsError: Buy would pass the debt ceiling; ``details``
            carries the largest affordable quantity
        InsufficientSharesError: Sell exceeds the held quantity
        TransactionConflictError: Serialization retries exhausted
    """
    symbol = normalize_symbol(symbol)
    order_side = parse_enum(OrderSide, side, "side")
    if isinstance(quantity_units, bool) or not isinstance(quantity_units, int) or quantity_units <= 0:
        raise ValidationError("Quantity must be a positive number of units", details={"quantity_units": quantity_units})
    key = require_idempotency_key(idempotency_key)

    async def _execute(session: AsyncSession) -> OrderResult:
        await claim_idempotency(session, user_id, key, "order")

        stock = await stocks_orm.require_stock(session, season_id, symbol)
        if not stock.listed_public:
            raise StockNotListedError(details={"symbol": symbol})

        price = stock.current_price_micros
        gross = notional(price, quantity_units)
        fee = trading_fee(gross)

        wallet = await wallets_orm.require_wallet(session, user_id, season_id)
        metadata = {"symbol": symbol, "quantity_units": quantity_units, "price_micros": price}

        if order_side is OrderSide.BUY:
            ceiling = debt_ceiling(wallet.peak_net_worth_micros)
            if wallet.balance_micros - gross - fee < -ceiling:
                best = max_affordable_buy(price, wallet.balance_micros, ceiling)
                raise InsufficientFundsError(
                    f"Insufficient funds: max buy {units_to_shares(best.quantity_units):.4f} shares",
                    details={
                        "max_quantity_units": best.quantity_units,
                        "max_notional_micros": best.notional_micros,
                        "max_fee_micros": best.fee_micros,
                    },
                )
            await stocks_orm.upsert_buy_position(
                session, user_id, season_id, stock.id, quantity_units, price
            )
        else:
            await stocks_orm.apply_sell_position(session, user_id, season_id, stock.id, quantity_units)

        await wallets_orm.record_movement(
            session, wallet, order_side.value, gross, fee_micros=fee, metadata=metadata
        )
        await wallets_orm.refresh_peak(session, wallet)

        order = await stocks_orm.insert_order(
            session,
            user_id=user_id,
            season_id=season_id,
            stock_id=stock.id,
            side=order_side.value,
            quantity_units=quantity_units,
            price_micros=price,
            notional_micros=gross,
            fee_micros=fee,
        )
        return OrderResult(
            order_id=order.id,
            symbol=symbol,
            side=order_side.value,
            quantity_units=quantity_units,
            price_micros=price,
            notional_micros=gross,
            fee_micros=fee,
            balance_micros=wallet.balance_micros,
        )

    with correlation_scope(key):
        result = await run_serializable(_execute, name="place_order")
        logger.info(
            f"Order filled: {result.side} {result.symbol}",
            extra=log_fields(
                user_id=user_id,
                season_id=season_id,
                quantity_units=result.quantity_units,
                notional_micros=result.notional_micros,
            ),
        )
    return result
