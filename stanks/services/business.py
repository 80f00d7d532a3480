"""Business operations: creation, staffing, machinery, upgrades, cash and exits.

Every operation is an idempotent mutation: arguments are validated first,
then one serializable transaction claims the key, locks the business and
wallet rows it touches, applies the change and writes the ledger.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Awaitable, Callable, TypeVar

from sqlalchemy.ext.asyncio import AsyncSession

from stanks.core.exceptions import (
    BusinessLockedError,
    ConflictError,
    InsufficientFundsError,
    NotFoundError,
    UnauthorizedError,
    ValidationError,
)
from stanks.core.logging import correlation_scope, get_logger, log_fields
from stanks.core.money import BUSINESS_UNLOCK_MICROS, MICROS_PER_UNIT, normalize_symbol
from stanks.database.orm import Business
from stanks.database.transactions import run_serializable
from stanks.domain.types import (
    BusinessStrategy,
    BusinessVisibility,
    LoanStatus,
    UpgradeKind,
    machine_by_type,
    parse_enum,
)
from stanks.repositories import businesses_orm, stocks_orm, wallets_orm
from stanks.repositories.idempotency_orm import claim_idempotency, require_idempotency_key
from stanks.schemas.game import (
    BusinessView,
    EmployeeResult,
    EmployeeView,
    LoanResult,
    LoanView,
    MachineryResult,
    MachineryView,
    RepayResult,
    ReserveResult,
    SaleResult,
    StockView,
    UpgradeResult,
)
from stanks.services.economy import round_half_away
from stanks.services.random_source import get_random_source

logger = get_logger("services.business")

T = TypeVar("T")

MAX_NAME_LENGTH = 64
MAX_DISPLAY_NAME_LENGTH = 48
BLOCKED_NAME_FRAGMENTS = ("admin", "mod", "support", "shit", "fuck", "bitch", "nazi")

BASE_REVENUE_MICROS = 18 * MICROS_PER_UNIT
CUSTOM_STOCK_PRICE_MICROS = 100 * MICROS_PER_UNIT

TRAINING_COST_FACTOR = 1.8
TRAINING_REVENUE_FACTOR = 1.15
TRAINING_RISK_BPS = 120
MAX_RISK_BPS = 10_000

MACHINE_LEVEL_COST_STEP = 0.25
MACHINE_OUTPUT_FACTOR = 1.22
MACHINE_UPKEEP_FACTOR = 1.18
MACHINE_RELIABILITY_STEP_BPS = 40
MIN_MACHINE_RELIABILITY_BPS = 7_000

UPGRADE_BASE_UNITS = 900
UPGRADE_STEP_UNITS = 350
UPGRADE_GROWTH = 0.12

LOAN_CAPACITY_SHARE = 0.45
LOAN_MIN_INTEREST_BPS = 65
LOAN_INTEREST_SPREAD_BPS = 95

SALE_BASE_MULTIPLE = 14
SALE_EMPLOYEES_PER_MULTIPLE = 3
SALE_FACTOR_FLOOR = 0.82
SALE_FACTOR_SPREAD = 0.40


# =============================================================================
# VALIDATION & COSTS
# =============================================================================


def validate_entity_name(name: str, field: str = "name") -> str:
    """Trimmed name of 1-64 chars without blocked fragments."""
    clean = (name or "").strip()
    if not clean:
        raise ValidationError(f"{field} is required")
    if len(clean) > MAX_NAME_LENGTH:
        raise ValidationError(f"{field} too long (max {MAX_NAME_LENGTH} chars)")
    lower = clean.lower()
    if any(fragment in lower for fragment in BLOCKED_NAME_FRAGMENTS):
        raise ValidationError(f"{field} contains blocked content")
    return clean


def business_display_name(name: str) -> str:
    clean = (name or "").strip()
    return clean[:MAX_DISPLAY_NAME_LENGTH] if clean else "Player Business"


def _positive_amount(amount_micros: int, field: str = "amount_micros") -> int:
    if isinstance(amount_micros, bool) or not isinstance(amount_micros, int) or amount_micros <= 0:
        raise ValidationError("Amount must be > 0", details={field: amount_micros})
    return amount_micros


def training_cost(revenue_micros: int) -> int:
    return round_half_away(revenue_micros * TRAINING_COST_FACTOR)


def machinery_cost(catalog_cost_micros: int, next_level: int) -> int:
    return int(catalog_cost_micros * (1 + MACHINE_LEVEL_COST_STEP * (next_level - 1)))


def upgrade_cost(level: int) -> int:
    """Price of raising an upgrade from ``level`` to ``level + 1``."""
    base = (UPGRADE_BASE_UNITS + UPGRADE_STEP_UNITS * level) * MICROS_PER_UNIT
    return round_half_away(base * (1 + UPGRADE_GROWTH * level))


def loan_interest_bps(roll: float) -> int:
    return LOAN_MIN_INTEREST_BPS + round_half_away(roll * LOAN_INTEREST_SPREAD_BPS)


def sale_valuation(
    base_revenue_micros: int,
    employee_revenue_micros: int,
    employee_count: int,
    machinery_output_micros: int,
    machinery_upkeep_micros: int,
    factor: float,
) -> int:
    """Bank valuation of a business at sale time."""
    operating = max(
        0,
        base_revenue_micros + employee_revenue_micros + machinery_output_micros - machinery_upkeep_micros,
    )
    multiple = SALE_BASE_MULTIPLE + employee_count // SALE_EMPLOYEES_PER_MULTIPLE
    return round_half_away(operating * multiple * factor)


# =============================================================================
# MUTATION RUNNER
# =============================================================================


async def _mutate(
    action: str,
    user_id: str,
    idempotency_key: str,
    operation: Callable[[AsyncSession], Awaitable[T]],
) -> T:
    """Run ``operation`` after claiming the key, retrying serialization failures."""
    key = require_idempotency_key(idempotency_key)

    async def _execute(session: AsyncSession) -> T:
        await claim_idempotency(session, user_id, key, action)
        return await operation(session)

    with correlation_scope(key):
        result = await run_serializable(_execute, name=action)
        logger.info(f"{action} committed", extra=log_fields(user_id=user_id, action=action))
    return result


async def _spend(session: AsyncSession, wallet, action: str, cost_micros: int, metadata: dict) -> None:
    """Debit a purchase within the debt ceiling and refresh the peak."""
    wallets_orm.ensure_can_spend(wallet, cost_micros)
    await wallets_orm.record_movement(session, wallet, action, cost_micros, metadata=metadata)
    await wallets_orm.refresh_peak(session, wallet)


# =============================================================================
# BUSINESSES
# =============================================================================


async def create_business(
    season_id: int, user_id: str, name: str, visibility: str, idempotency_key: str
) -> BusinessView:
    """Found a business; requires 250,000 net worth.

    Raises:
        ValidationError: Bad name or visibility
        BusinessLockedError: Net worth below the unlock threshold
    """
    clean = validate_entity_name(name)
    vis = parse_enum(BusinessVisibility, visibility, "visibility")

    async def _op(session: AsyncSession) -> BusinessView:
        wallet = await wallets_orm.require_wallet(session, user_id, season_id)
        worth = await wallets_orm.net_worth(session, wallet)
        if worth < BUSINESS_UNLOCK_MICROS:
            raise BusinessLockedError(
                details={"net_worth_micros": worth, "required_micros": BUSINESS_UNLOCK_MICROS}
            )
        business = await businesses_orm.create_business(
            session, season_id, user_id, clean, vis.value, BASE_REVENUE_MICROS
        )
        return BusinessView.model_validate(business)

    return await _mutate("create_business", user_id, idempotency_key, _op)


async def set_business_visibility(
    season_id: int, user_id: str, business_id: int, visibility: str, idempotency_key: str
) -> BusinessView:
    vis = parse_enum(BusinessVisibility, visibility, "visibility")

    async def _op(session: AsyncSession) -> BusinessView:
        business = await businesses_orm.require_owned_business(session, season_id, business_id, user_id)
        business.visibility = vis.value
        await session.flush()
        return BusinessView.model_validate(business)

    return await _mutate("set_business_visibility", user_id, idempotency_key, _op)


async def set_strategy(
    season_id: int, user_id: str, business_id: int, strategy: str, idempotency_key: str
) -> BusinessView:
    chosen = parse_enum(BusinessStrategy, strategy, "strategy")

    async def _op(session: AsyncSession) -> BusinessView:
        business = await businesses_orm.require_owned_business(session, season_id, business_id, user_id)
        business.strategy = chosen.value
        await session.flush()
        return BusinessView.model_validate(business)

    return await _mutate("set_business_strategy", user_id, idempotency_key, _op)


# =============================================================================
# STAFF
# =============================================================================


async def hire_employee(
    season_id: int, user_id: str, business_id: int, candidate_id: int, idempotency_key: str
) -> EmployeeResult:
    async def _op(session: AsyncSession) -> EmployeeResult:
        business = await businesses_orm.require_owned_business(session, season_id, business_id, user_id)
        candidate = await businesses_orm.get_candidate(session, season_id, candidate_id)
        if await businesses_orm.has_hired(session, business.id, candidate.id):
            raise ConflictError(
                "Candidate already hired", details={"business_id": business.id, "candidate_id": candidate.id}
            )
        wallet = await wallets_orm.require_wallet(session, user_id, season_id)
        await _spend(
            session,
            wallet,
            "employee_hire",
            candidate.hire_cost_micros,
            {"business_id": business.id, "candidate_id": candidate.id},
        )
        employee = await businesses_orm.add_employee(session, business.id, candidate)
        return EmployeeResult(
            employee=EmployeeView.model_validate(employee),
            cost_micros=candidate.hire_cost_micros,
            balance_micros=wallet.balance_micros,
        )

    return await _mutate("hire_employee", user_id, idempotency_key, _op)


async def train_employee(
    season_id: int, user_id: str, business_id: int, employee_id: int, idempotency_key: str
) -> EmployeeResult:
    async def _op(session: AsyncSession) -> EmployeeResult:
        business = await businesses_orm.require_owned_business(session, season_id, business_id, user_id)
        employee = await businesses_orm.get_employee(session, business.id, employee_id)
        cost = training_cost(employee.revenue_per_tick_micros)
        wallet = await wallets_orm.require_wallet(session, user_id, season_id)
        await _spend(
            session,
            wallet,
            "professional_training",
            cost,
            {"business_id": business.id, "employee_id": employee.id},
        )
        employee.revenue_per_tick_micros = round_half_away(
            employee.revenue_per_tick_micros * TRAINING_REVENUE_FACTOR
        )
        employee.risk_bps = min(MAX_RISK_BPS, employee.risk_bps + TRAINING_RISK_BPS)
        await session.flush()
        return EmployeeResult(
            employee=EmployeeView.model_validate(employee),
            cost_micros=cost,
            balance_micros=wallet.balance_micros,
        )

    return await _mutate("train_professional", user_id, idempotency_key, _op)


# =============================================================================
# MACHINERY & UPGRADES
# =============================================================================


async def buy_machinery(
    season_id: int, user_id: str, business_id: int, machine_type: str, idempotency_key: str
) -> MachineryResult:
    """Buy a catalog machine, or upgrade it in place if already owned."""
    spec = machine_by_type(machine_type)

    async def _op(session: AsyncSession) -> MachineryResult:
        business = await businesses_orm.require_owned_business(session, season_id, business_id, user_id)
        machine = await businesses_orm.get_machine(session, business.id, spec.machine_type)
        next_level = 1 if machine is None else machine.level + 1
        cost = machinery_cost(spec.cost_micros, next_level)

        wallet = await wallets_orm.require_wallet(session, user_id, season_id)
        await _spend(
            session,
            wallet,
            "machinery_buy",
            cost,
            {"business_id": business.id, "machine_type": spec.machine_type, "level": next_level},
        )
        if machine is None:
            machine = await businesses_orm.add_machine(
                session,
                business.id,
                spec.machine_type,
                spec.output_micros,
                spec.upkeep_micros,
                spec.reliability_bps,
            )
        else:
            machine.level = next_level
            machine.output_bonus_micros = round_half_away(machine.output_bonus_micros * MACHINE_OUTPUT_FACTOR)
            machine.upkeep_micros = round_half_away(machine.upkeep_micros * MACHINE_UPKEEP_FACTOR)
            machine.reliability_bps = max(
                MIN_MACHINE_RELIABILITY_BPS, machine.reliability_bps - MACHINE_RELIABILITY_STEP_BPS
            )
            await session.flush()
        return MachineryResult(
            machine=MachineryView.model_validate(machine),
            cost_micros=cost,
            balance_micros=wallet.balance_micros,
        )

    return await _mutate("buy_machinery", user_id, idempotency_key, _op)


async def buy_upgrade(
    season_id: int, user_id: str, business_id: int, upgrade: str, idempotency_key: str
) -> UpgradeResult:
    kind = parse_enum(UpgradeKind, upgrade, "upgrade")

    async def _op(session: AsyncSession) -> UpgradeResult:
        business = await businesses_orm.require_owned_business(session, season_id, business_id, user_id)
        level = getattr(business, kind.column)
        cost = upgrade_cost(level)
        wallet = await wallets_orm.require_wallet(session, user_id, season_id)
        await _spend(
            session,
            wallet,
            f"business_upgrade_{kind.value}",
            cost,
            {"business_id": business.id, "level": level + 1},
        )
        setattr(business, kind.column, level + 1)
        await session.flush()
        return UpgradeResult(
            business_id=business.id,
            upgrade=kind.value,
            level=level + 1,
            cost_micros=cost,
            balance_micros=wallet.balance_micros,
        )

    return await _mutate("buy_business_upgrade", user_id, idempotency_key, _op)


# =============================================================================
# CASH RESERVE & LOANS
# =============================================================================


async def deposit_reserve(
    season_id: int, user_id: str, business_id: int, amount_micros: int, idempotency_key: str
) -> ReserveResult:
    amount = _positive_amount(amount_micros)

    async def _op(session: AsyncSession) -> ReserveResult:
        business = await businesses_orm.require_owned_business(session, season_id, business_id, user_id)
        wallet = await wallets_orm.require_wallet(session, user_id, season_id)
        wallets_orm.ensure_cash_on_hand(wallet, amount)
        await wallets_orm.record_movement(
            session, wallet, "business_reserve_deposit", amount, metadata={"business_id": business.id}
        )
        business.cash_reserve_micros += amount
        await session.flush()
        return ReserveResult(
            business_id=business.id,
            cash_reserve_micros=business.cash_reserve_micros,
            balance_micros=wallet.balance_micros,
        )

    return await _mutate("business_reserve_deposit", user_id, idempotency_key, _op)


async def withdraw_reserve(
    season_id: int, user_id: str, business_id: int, amount_micros: int, idempotency_key: str
) -> ReserveResult:
    amount = _positive_amount(amount_micros)

    async def _op(session: AsyncSession) -> ReserveResult:
        business = await businesses_orm.require_owned_business(session, season_id, business_id, user_id)
        if business.cash_reserve_micros < amount:
            raise InsufficientFundsError(
                "Insufficient cash reserve",
                details={"amount_micros": amount, "cash_reserve_micros": business.cash_reserve_micros},
            )
        wallet = await wallets_orm.require_wallet(session, user_id, season_id)
        business.cash_reserve_micros -= amount
        await wallets_orm.record_movement(
            session, wallet, "business_reserve_withdraw", amount, metadata={"business_id": business.id}
        )
        await wallets_orm.refresh_peak(session, wallet)
        return ReserveResult(
            business_id=business.id,
            cash_reserve_micros=business.cash_reserve_micros,
            balance_micros=wallet.balance_micros,
        )

    return await _mutate("business_reserve_withdraw", user_id, idempotency_key, _op)


async def take_loan(
    season_id: int, user_id: str, business_id: int, amount_micros: int, idempotency_key: str
) -> LoanResult:
    """Draw a loan; the owner's open loans may not pass 45% of net worth."""
    amount = _positive_amount(amount_micros)

    async def _op(session: AsyncSession) -> LoanResult:
        business = await businesses_orm.require_owned_business(session, season_id, business_id, user_id)
        wallet = await wallets_orm.require_wallet(session, user_id, season_id)
        capacity = round_half_away(await wallets_orm.net_worth(session, wallet) * LOAN_CAPACITY_SHARE)
        outstanding = await businesses_orm.open_loans_total_for_owner(session, season_id, user_id)
        if outstanding + amount > capacity:
            raise ValidationError(
                "Loan request exceeds borrowing capacity",
                details={
                    "amount_micros": amount,
                    "outstanding_micros": outstanding,
                    "capacity_micros": capacity,
                },
            )
        bps = loan_interest_bps(get_random_source().random())
        loan = await businesses_orm.add_loan(session, business.id, amount, bps)
        await wallets_orm.record_movement(
            session, wallet, "business_loan_draw", amount, metadata={"business_id": business.id, "loan_id": loan.id}
        )
        await wallets_orm.refresh_peak(session, wallet)
        return LoanResult(loan=LoanView.model_validate(loan), balance_micros=wallet.balance_micros)

    return await _mutate("take_business_loan", user_id, idempotency_key, _op)


async def repay_loan(
    season_id: int, user_id: str, business_id: int, amount_micros: int, idempotency_key: str
) -> RepayResult:
    """Pay down open loans oldest-first from cash on hand."""
    amount = _positive_amount(amount_micros)

    async def _op(session: AsyncSession) -> RepayResult:
        business = await businesses_orm.require_owned_business(session, season_id, business_id, user_id)
        wallet = await wallets_orm.require_wallet(session, user_id, season_id)
        wallets_orm.ensure_cash_on_hand(wallet, amount)
        loans = await businesses_orm.list_loans(session, business.id, open_only=True, for_update=True)
        if not loans:
            raise NotFoundError("No open business loans", details={"business_id": business.id})

        paid = businesses_orm.apply_payment_oldest_first(loans, amount)
        for loan in loans:
            if loan.status == LoanStatus.REPAID.value:
                loan.missed_ticks = 0
        await wallets_orm.record_movement(
            session, wallet, "business_loan_repay", paid, metadata={"business_id": business.id}
        )
        await wallets_orm.refresh_peak(session, wallet)
        return RepayResult(
            business_id=business.id,
            paid_micros=paid,
            outstanding_micros=sum(l.outstanding_micros for l in loans),
            balance_micros=wallet.balance_micros,
        )

    return await _mutate("repay_business_loan", user_id, idempotency_key, _op)


# =============================================================================
# EXIT
# =============================================================================


async def sell_business(season_id: int, user_id: str, business_id: int, idempotency_key: str) -> SaleResult:
    """Sell a business to the bank; open loans are paid from the proceeds."""

    async def _op(session: AsyncSession) -> SaleResult:
        await stocks_orm.lock_business_stocks(session, business_id)
        business = await businesses_orm.require_owned_business(session, season_id, business_id, user_id)
        employees = await businesses_orm.list_employees(session, business.id)
        machinery = await businesses_orm.list_machinery(session, business.id)
        loans = await businesses_orm.list_loans(session, business.id, open_only=True, for_update=True)

        factor = SALE_FACTOR_FLOOR + get_random_source().random() * SALE_FACTOR_SPREAD
        gross = sale_valuation(
            business.base_revenue_micros,
            sum(e.revenue_per_tick_micros for e in employees),
            len(employees),
            sum(m.output_bonus_micros for m in machinery),
            sum(m.upkeep_micros for m in machinery),
            factor,
        )
        loan_payoff = sum(l.outstanding_micros for l in loans)
        payout = max(0, gross - loan_payoff)

        for loan in loans:
            loan.outstanding_micros = 0
            loan.status = LoanStatus.SOLD_OFF.value
        await businesses_orm.record_sale(
            session,
            business,
            gross_valuation_micros=gross,
            adjustment_factor=factor,
            loan_payoff_micros=loan_payoff,
            payout_micros=payout,
            reason="sold",
        )

        wallet = await wallets_orm.require_wallet(session, user_id, season_id)
        if payout > 0:
            await wallets_orm.record_movement(
                session, wallet, "business_sale", payout, metadata={"business_id": business.id}
            )
        sold_id = business.id
        await stocks_orm.detach_business(session, sold_id)
        await businesses_orm.delete_business_tree(session, business)
        await wallets_orm.refresh_peak(session, wallet)
        return SaleResult(
            business_id=sold_id,
            gross_valuation_micros=gross,
            adjustment_factor=factor,
            loan_payoff_micros=loan_payoff,
            payout_micros=payout,
            balance_micros=wallet.balance_micros,
        )

    return await _mutate("sell_business_to_bank", user_id, idempotency_key, _op)


# =============================================================================
# STOCKS
# =============================================================================


def _ipo_price(price_micros: int) -> int:
    if isinstance(price_micros, bool) or not isinstance(price_micros, int) or price_micros <= 0:
        raise ValidationError("Price must be > 0", details={"price_micros": price_micros})
    return price_micros


async def create_stock(
    season_id: int,
    user_id: str,
    business_id: int,
    symbol: str,
    display_name: str,
    idempotency_key: str,
) -> StockView:
    """Register an unlisted stock for one of the caller's businesses."""
    ticker = normalize_symbol(symbol)
    name = validate_entity_name(display_name, "display name")

    async def _op(session: AsyncSession) -> StockView:
        business = await businesses_orm.require_owned_business(session, season_id, business_id, user_id)
        if await stocks_orm.get_stock(session, season_id, ticker) is not None:
            raise ConflictError("Symbol already exists", details={"symbol": ticker})
        stock = await stocks_orm.create_stock(
            session,
            season_id,
            ticker,
            name,
            CUSTOM_STOCK_PRICE_MICROS,
            listed_public=False,
            created_by_user_id=user_id,
            business_id=business.id,
        )
        return StockView.model_validate(stock)

    return await _mutate("create_stock", user_id, idempotency_key, _op)


async def _list_business_stock(session: AsyncSession, stock, price: int) -> None:
    stock.listed_public = True
    stock.current_price_micros = price
    stock.anchor_price_micros = price
    await stocks_orm.append_price(session, stock.id, price, datetime.now(timezone.utc))


async def ipo_stock(
    season_id: int, user_id: str, symbol: str, price_micros: int, idempotency_key: str
) -> StockView:
    """List a stock the caller created at ``price_micros``."""
    ticker = normalize_symbol(symbol)
    price = _ipo_price(price_micros)

    async def _op(session: AsyncSession) -> StockView:
        stock = await stocks_orm.require_stock(session, season_id, ticker)
        if stock.listed_public:
            raise ConflictError("Stock already listed", details={"symbol": ticker})
        if stock.created_by_user_id != user_id:
            raise UnauthorizedError(details={"symbol": ticker})
        await _list_business_stock(session, stock, price)
        if stock.business_id is not None:
            business = await businesses_orm.get_business(session, season_id, stock.business_id, for_update=True)
            if business is not None:
                business.is_listed = True
                business.stock_symbol = ticker
        await session.flush()
        return StockView.model_validate(stock)

    return await _mutate("ipo_stock", user_id, idempotency_key, _op)


async def business_ipo(
    season_id: int,
    user_id: str,
    business_id: int,
    symbol: str,
    price_micros: int,
    idempotency_key: str,
) -> StockView:
    """Create and list a stock for a public business in one step."""
    ticker = normalize_symbol(symbol)
    price = _ipo_price(price_micros)

    async def _op(session: AsyncSession) -> StockView:
        business: Business = await businesses_orm.require_owned_business(
            session, season_id, business_id, user_id
        )
        if business.visibility != BusinessVisibility.PUBLIC.value:
            raise ValidationError("Business must be public before IPO", details={"business_id": business.id})
        if await stocks_orm.get_stock(session, season_id, ticker) is not None:
            raise ConflictError("Symbol already exists", details={"symbol": ticker})
        stock = await stocks_orm.create_stock(
            session,
            season_id,
            ticker,
            business_display_name(business.name),
            price,
            listed_public=True,
            created_by_user_id=user_id,
            business_id=business.id,
        )
        await stocks_orm.append_price(session, stock.id, price, datetime.now(timezone.utc))
        business.is_listed = True
        business.stock_symbol = ticker
        await session.flush()
        return StockView.model_validate(stock)

    return await _mutate("business_ipo", user_id, idempotency_key, _op)
