"""Business economy engine: per-tick revenue, events, loans and debt interest.

The pure functions at the top compute one business's tick from a
``BusinessSnapshot``; the async passes below load rows under lock, apply the
results and post every wallet change through the ledger.
"""

from __future__ import annotations

import math
from collections import defaultdict
from dataclasses import dataclass
from datetime import timedelta
from enum import Enum
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from stanks.core.logging import get_logger, log_fields
from stanks.core.money import BPS_DENOMINATOR, MICROS_PER_UNIT, apply_bps
from stanks.database.orm import Business, BusinessEmployee, BusinessLoan
from stanks.domain.types import BusinessStrategy, BusinessVisibility, LoanStatus
from stanks.repositories import businesses_orm, stocks_orm, wallets_orm
from stanks.services.random_source import RandomSource, pick_index

logger = get_logger("services.economy")

# Staffing
EFFICIENT_HEADCOUNT = 12
HEADCOUNT_PENALTY = 0.03
MIN_EMPLOYEE_EFFICIENCY = 0.55

# Upgrades
AUTOMATION_BOOST = 0.06
AUTOMATION_UPKEEP_CUT = 0.05
MAX_AUTOMATION_UPKEEP_CUT = 0.50
MARKETING_BOOST = 0.05
RD_BOOST = 0.04
PUBLIC_BOOST = 1.03
LISTED_BOOST = 1.04
UPGRADE_BURN_MICROS = 3 * MICROS_PER_UNIT

STRATEGY_REVENUE = {
    BusinessStrategy.AGGRESSIVE: 1.12,
    BusinessStrategy.BALANCED: 1.00,
    BusinessStrategy.DEFENSIVE: 0.92,
}
STRATEGY_RISK = {
    BusinessStrategy.AGGRESSIVE: 1.35,
    BusinessStrategy.BALANCED: 1.00,
    BusinessStrategy.DEFENSIVE: 0.75,
}

# Risk
RISK_PENALTY_SHARE = 0.30
COMPLIANCE_SHIELD_STEP = 0.08
MAX_COMPLIANCE_SHIELD = 0.40

# Events
VIRAL_BASE_PROB = 0.02
VIRAL_MARKETING_PROB = 0.01
MAX_VIRAL_PROB = 0.12
CRISIS_BASE_PROB = 0.015
CRISIS_RISK_PROB = 0.10
MAX_CRISIS_PROB = 0.15
VIRAL_REVENUE_SHARE = 0.25
CRISIS_REVENUE_SHARE = 0.30
REPUTATION_DRIFT_BPS = 40
REPUTATION_TARGET_SPREAD_BPS = 400

BRAND_RANGE = (5_000, 20_000)
HEALTH_RANGE = (5_000, 15_000)
MAX_RISK_BPS = 10_000

# Attrition
BURNOUT_PROB = 0.06
BURNOUT_REVENUE_FACTOR = 0.85
BURNOUT_RISK_BPS = 150
POACH_BRAND_THRESHOLD = 8_000
POACH_PROB = 0.05

# Loans and reserve
LOAN_INTEREST_PERIODS = 24
RESERVE_BASE_YIELD_BPS = 5

# Delinquency
AUTOPAY_BPS = 200
MIN_AUTOPAY_MICROS = 50 * MICROS_PER_UNIT
LATE_FEE_BPS = 100
MIN_LATE_FEE_MICROS = 25 * MICROS_PER_UNIT
REPOSSESSION_MISSED_TICKS = 5
LIQUIDATION_MISSED_TICKS = 9
REPOSSESSION_REVENUE_FACTOR = 0.80
REPOSSESSION_RISK_BPS = 500

SECONDS_PER_YEAR = timedelta(days=365).total_seconds()


class BusinessEvent(str, Enum):
    VIRAL_BREAKOUT = "viral_breakout"
    PR_CRISIS = "pr_crisis"
    REPOSSESSION = "repossession"


@dataclass
class BusinessSnapshot:
    """Inputs to one business's revenue for a tick."""

    base_revenue_micros: int
    employee_revenue_micros: int = 0
    employee_count: int = 0
    avg_risk_bps: float = 0.0
    machinery_output_micros: int = 0
    machinery_upkeep_micros: int = 0
    marketing_level: int = 0
    rd_level: int = 0
    automation_level: int = 0
    compliance_level: int = 0
    brand_bps: int = 10_000
    health_bps: int = 10_000
    is_public: bool = False
    is_listed: bool = False
    strategy: BusinessStrategy = BusinessStrategy.BALANCED
    cash_reserve_micros: int = 0
    loan_interest_micros: int = 0

    @property
    def upgrade_levels(self) -> int:
        return self.marketing_level + self.rd_level + self.automation_level + self.compliance_level


@dataclass
class RevenueBreakdown:
    gross_micros: int
    event_micros: int
    risk_penalty_micros: int
    loan_interest_micros: int
    upgrade_burn_micros: int
    reserve_yield_micros: int

    @property
    def net_micros(self) -> int:
        return (
            self.gross_micros
            + self.event_micros
            - self.risk_penalty_micros
            - self.loan_interest_micros
            - self.upgrade_burn_micros
            + self.reserve_yield_micros
        )


@dataclass
class CycleReport:
    businesses_processed: int = 0
    revenue_credited_micros: int = 0
    losses_debited_micros: int = 0
    loan_interest_accrued_micros: int = 0


@dataclass
class DelinquencyReport:
    autopaid_micros: int = 0
    late_fees_micros: int = 0
    repossessions: int = 0
    liquidations: int = 0


# =============================================================================
# REVENUE MATH
# =============================================================================


def round_half_away(value: float) -> int:
    if value >= 0:
        return int(math.floor(value + 0.5))
    return -int(math.floor(-value + 0.5))


def employee_efficiency(headcount: int) -> float:
    """Output share per employee; large teams lose efficiency down to a floor."""
    if headcount <= EFFICIENT_HEADCOUNT:
        return 1.0
    return max(MIN_EMPLOYEE_EFFICIENCY, 1 - HEADCOUNT_PENALTY * (headcount - EFFICIENT_HEADCOUNT))


def operating_revenue(snap: BusinessSnapshot) -> float:
    boost = 1 + AUTOMATION_BOOST * snap.automation_level
    upkeep_cut = min(MAX_AUTOMATION_UPKEEP_CUT, AUTOMATION_UPKEEP_CUT * snap.automation_level)
    return (
        snap.base_revenue_micros
        + snap.employee_revenue_micros * employee_efficiency(snap.employee_count)
        + snap.machinery_output_micros * boost
        - snap.machinery_upkeep_micros * (1 - upkeep_cut)
    )


def gross_revenue(snap: BusinessSnapshot) -> int:
    gross = operating_revenue(snap)
    gross *= (1 + MARKETING_BOOST * snap.marketing_level) * (1 + RD_BOOST * snap.rd_level)
    gross *= snap.brand_bps / BPS_DENOMINATOR
    gross *= snap.health_bps / BPS_DENOMINATOR
    if snap.is_public:
        gross *= PUBLIC_BOOST
    if snap.is_listed:
        gross *= LISTED_BOOST
    gross *= STRATEGY_REVENUE[snap.strategy]
    return round_half_away(gross)


def risk_penalty(gross_micros: int, snap: BusinessSnapshot) -> int:
    if gross_micros <= 0:
        return 0
    shield = 1 - min(MAX_COMPLIANCE_SHIELD, COMPLIANCE_SHIELD_STEP * snap.compliance_level)
    penalty = (
        gross_micros
        * (snap.avg_risk_bps / BPS_DENOMINATOR)
        * RISK_PENALTY_SHARE
        * shield
        * STRATEGY_RISK[snap.strategy]
    )
    return round_half_away(penalty)


def upgrade_burn(snap: BusinessSnapshot) -> int:
    return UPGRADE_BURN_MICROS * snap.upgrade_levels


def loan_tick_interest(outstanding_micros: int, interest_bps: int) -> int:
    """Per-tick interest on one loan, rounded up."""
    if outstanding_micros <= 0 or interest_bps <= 0:
        return 0
    return -(-outstanding_micros * interest_bps // (BPS_DENOMINATOR * LOAN_INTEREST_PERIODS))


def reserve_yield(reserve_micros: int, rd_level: int) -> int:
    if reserve_micros <= 0:
        return 0
    return reserve_micros * (RESERVE_BASE_YIELD_BPS + rd_level) // BPS_DENOMINATOR


def viral_probability(marketing_level: int) -> float:
    return min(MAX_VIRAL_PROB, VIRAL_BASE_PROB + VIRAL_MARKETING_PROB * marketing_level)


def crisis_probability(avg_risk_bps: float) -> float:
    return min(MAX_CRISIS_PROB, CRISIS_BASE_PROB + CRISIS_RISK_PROB * avg_risk_bps / BPS_DENOMINATOR)


def roll_event(snap: BusinessSnapshot, roll: float) -> Optional[BusinessEvent]:
    """Map one uniform roll to at most one event."""
    viral = viral_probability(snap.marketing_level)
    if roll < viral:
        return BusinessEvent.VIRAL_BREAKOUT
    if roll < viral + crisis_probability(snap.avg_risk_bps):
        return BusinessEvent.PR_CRISIS
    return None


def event_revenue(event: Optional[BusinessEvent], gross_micros: int) -> int:
    upside = max(0, gross_micros)
    if event is BusinessEvent.VIRAL_BREAKOUT:
        return round_half_away(upside * VIRAL_REVENUE_SHARE)
    if event is BusinessEvent.PR_CRISIS:
        return -round_half_away(upside * CRISIS_REVENUE_SHARE)
    return 0


def compute_revenue(snap: BusinessSnapshot, event: Optional[BusinessEvent] = None) -> RevenueBreakdown:
    gross = gross_revenue(snap)
    return RevenueBreakdown(
        gross_micros=gross,
        event_micros=event_revenue(event, gross),
        risk_penalty_micros=risk_penalty(gross, snap),
        loan_interest_micros=snap.loan_interest_micros,
        upgrade_burn_micros=upgrade_burn(snap),
        reserve_yield_micros=reserve_yield(snap.cash_reserve_micros, snap.rd_level),
    )


def _clamp(value: int, bounds: tuple[int, int]) -> int:
    return max(bounds[0], min(bounds[1], value))


def _drift_toward(value: int, target: int, step: int) -> int:
    if value < target:
        return min(value + step, target)
    return max(value - step, target)


def next_reputation(
    brand_bps: int, health_bps: int, event: Optional[BusinessEvent], net_micros: int
) -> tuple[int, int]:
    """Brand and health after this tick's event or drift."""
    if event is BusinessEvent.VIRAL_BREAKOUT:
        brand_bps, health_bps = brand_bps + 300, health_bps + 150
    elif event is BusinessEvent.PR_CRISIS:
        brand_bps, health_bps = brand_bps - 450, health_bps - 250
    else:
        spread = REPUTATION_TARGET_SPREAD_BPS if net_micros >= 0 else -REPUTATION_TARGET_SPREAD_BPS
        target = BPS_DENOMINATOR + spread
        brand_bps = _drift_toward(brand_bps, target, REPUTATION_DRIFT_BPS)
        health_bps = _drift_toward(health_bps, target, REPUTATION_DRIFT_BPS)
    return _clamp(brand_bps, BRAND_RANGE), _clamp(health_bps, HEALTH_RANGE)


def shield_with_reserve(net_micros: int, reserve_micros: int) -> tuple[int, int]:
    """Split a tick's net into ``(reserve_after, wallet_delta)``.

    Losses drain the reserve first; gains go to the wallet untouched.
    """
    if net_micros >= 0:
        return reserve_micros, net_micros
    covered = min(reserve_micros, -net_micros)
    return reserve_micros - covered, net_micros + covered


def debt_interest(balance_micros: int, tick_seconds: float, apr: float) -> int:
    """Interest charged on a negative balance for one tick, rounded up."""
    if balance_micros >= 0 or tick_seconds <= 0 or apr <= 0:
        return 0
    per_tick = apr / (SECONDS_PER_YEAR / tick_seconds)
    return math.ceil(-balance_micros * per_tick)


# =============================================================================
# ROW HELPERS
# =============================================================================


async def _snapshot(
    session: AsyncSession,
    business: Business,
    employees: list[BusinessEmployee],
    loans: list[BusinessLoan],
) -> BusinessSnapshot:
    machinery = await businesses_orm.list_machinery(session, business.id)
    count = len(employees)
    return BusinessSnapshot(
        base_revenue_micros=business.base_revenue_micros,
        employee_revenue_micros=sum(e.revenue_per_tick_micros for e in employees),
        employee_count=count,
        avg_risk_bps=(sum(e.risk_bps for e in employees) / count) if count else 0.0,
        machinery_output_micros=sum(m.output_bonus_micros for m in machinery),
        machinery_upkeep_micros=sum(m.upkeep_micros for m in machinery),
        marketing_level=business.marketing_level,
        rd_level=business.rd_level,
        automation_level=business.automation_level,
        compliance_level=business.compliance_level,
        brand_bps=business.brand_bps,
        health_bps=business.operational_health_bps,
        is_public=business.visibility == BusinessVisibility.PUBLIC.value,
        is_listed=business.is_listed,
        strategy=BusinessStrategy(business.strategy),
        cash_reserve_micros=business.cash_reserve_micros,
        loan_interest_micros=sum(loan_tick_interest(l.outstanding_micros, l.interest_bps) for l in loans),
    )


def degrade_employee(employee: BusinessEmployee, revenue_factor: float, risk_bps: int) -> None:
    employee.revenue_per_tick_micros = round_half_away(employee.revenue_per_tick_micros * revenue_factor)
    employee.risk_bps = min(MAX_RISK_BPS, employee.risk_bps + risk_bps)


async def _apply_attrition(
    session: AsyncSession,
    business: Business,
    employees: list[BusinessEmployee],
    brand_before: int,
    rng: RandomSource,
) -> None:
    if business.strategy == BusinessStrategy.AGGRESSIVE.value and employees:
        if rng.random() < BURNOUT_PROB:
            victim = employees[pick_index(rng, len(employees))]
            degrade_employee(victim, BURNOUT_REVENUE_FACTOR, BURNOUT_RISK_BPS)
            logger.debug(f"Burnout at business {business.id}: employee {victim.id}")
    if brand_before < POACH_BRAND_THRESHOLD and employees:
        if rng.random() < POACH_PROB:
            leaver = employees.pop(pick_index(rng, len(employees)))
            await businesses_orm.remove_employee(session, leaver)
            logger.debug(f"Employee {leaver.id} poached from business {business.id}")


# =============================================================================
# TICK PASSES
# =============================================================================


async def run_business_cycle(session: AsyncSession, season_id: int, rng: RandomSource) -> CycleReport:
    """Compute every business's tick, pay owners and accrue loan interest."""
    report = CycleReport()
    owner_totals: dict[str, int] = defaultdict(int)

    for business in await businesses_orm.lock_season_businesses(session, season_id):
        employees = await businesses_orm.list_employees(session, business.id, for_update=True)
        loans = await businesses_orm.list_loans(session, business.id, open_only=True, for_update=True)
        snap = await _snapshot(session, business, employees, loans)

        event = roll_event(snap, rng.random())
        breakdown = compute_revenue(snap, event)
        net = breakdown.net_micros

        brand_before = business.brand_bps
        business.brand_bps, business.operational_health_bps = next_reputation(
            business.brand_bps, business.operational_health_bps, event, net
        )
        business.last_event = event.value if event else ""
        await _apply_attrition(session, business, employees, brand_before, rng)

        business.cash_reserve_micros, wallet_delta = shield_with_reserve(net, business.cash_reserve_micros)
        owner_totals[business.owner_user_id] += wallet_delta

        for loan in loans:
            accrued = loan_tick_interest(loan.outstanding_micros, loan.interest_bps)
            loan.outstanding_micros += accrued
            report.loan_interest_accrued_micros += accrued

        report.businesses_processed += 1

    await session.flush()

    for owner_user_id, total in sorted(owner_totals.items()):
        if total == 0:
            continue
        wallet = await wallets_orm.require_wallet(session, owner_user_id, season_id)
        if total > 0:
            await wallets_orm.record_movement(session, wallet, "business_revenue", total)
            report.revenue_credited_micros += total
        else:
            await wallets_orm.record_unbalanced(session, wallet, total, "business_loss")
            report.losses_debited_micros += -total

    return report


async def _repossess(session: AsyncSession, business: Business) -> None:
    await businesses_orm.delete_machinery(session, business.id)
    for employee in await businesses_orm.list_employees(session, business.id, for_update=True):
        degrade_employee(employee, REPOSSESSION_REVENUE_FACTOR, REPOSSESSION_RISK_BPS)
    business.last_event = BusinessEvent.REPOSSESSION.value
    await session.flush()


async def liquidate_business(session: AsyncSession, business: Business, loans: list[BusinessLoan]) -> None:
    """Write off every open loan and delete the business with zero payout."""
    written_off = 0
    for loan in loans:
        if loan.status == LoanStatus.OPEN.value:
            written_off += loan.outstanding_micros
            loan.outstanding_micros = 0
            loan.status = LoanStatus.SOLD_OFF.value
    await businesses_orm.record_sale(
        session,
        business,
        gross_valuation_micros=0,
        adjustment_factor=0.0,
        loan_payoff_micros=written_off,
        payout_micros=0,
        reason="forced_liquidation",
    )
    await stocks_orm.detach_business(session, business.id)
    await businesses_orm.delete_business_tree(session, business)


async def run_loan_delinquency(session: AsyncSession, season_id: int) -> DelinquencyReport:
    """Autopay each indebted business or escalate its missed payments."""
    report = DelinquencyReport()

    for business in await businesses_orm.lock_season_businesses(session, season_id):
        loans = await businesses_orm.list_loans(session, business.id, open_only=True, for_update=True)
        outstanding = sum(l.outstanding_micros for l in loans)
        if outstanding <= 0:
            continue

        wallet = await wallets_orm.require_wallet(session, business.owner_user_id, season_id)
        payment = min(outstanding, max(apply_bps(outstanding, AUTOPAY_BPS), MIN_AUTOPAY_MICROS))
        meta = {"business_id": business.id}

        if wallet.balance_micros >= payment:
            paid = businesses_orm.apply_payment_oldest_first(loans, payment)
            for loan in loans:
                loan.missed_ticks = 0
            await wallets_orm.record_movement(session, wallet, "business_loan_autopay", paid, metadata=meta)
            report.autopaid_micros += paid
            continue

        fee = max(apply_bps(outstanding, LATE_FEE_BPS), MIN_LATE_FEE_MICROS)
        await wallets_orm.record_movement(session, wallet, "business_loan_late_fee", fee, metadata=meta)
        report.late_fees_micros += fee
        for loan in loans:
            loan.missed_ticks += 1
        missed = max(l.missed_ticks for l in loans)
        await session.flush()

        if missed == REPOSSESSION_MISSED_TICKS:
            await _repossess(session, business)
            report.repossessions += 1
            logger.warning(
                f"Machinery repossessed from business {business.id}",
                extra=log_fields(owner_user_id=business.owner_user_id, missed_ticks=missed),
            )
        elif missed == LIQUIDATION_MISSED_TICKS:
            business_id = business.id
            await liquidate_business(session, business, loans)
            report.liquidations += 1
            logger.warning(
                f"Business {business_id} force-liquidated",
                extra=log_fields(owner_user_id=wallet.user_id, written_off_micros=outstanding),
            )

    return report


async def charge_debt_interest(
    session: AsyncSession, season_id: int, tick_every: timedelta, apr: float
) -> int:
    """Charge interest to every negative wallet; returns the total charged."""
    seconds = tick_every.total_seconds()
    total = 0
    for wallet in await wallets_orm.list_negative_wallets(session, season_id):
        interest = debt_interest(wallet.balance_micros, seconds, apr)
        if interest <= 0:
            continue
        await wallets_orm.record_movement(
            session, wallet, "debt_interest", interest, metadata={"apr": apr}
        )
        total += interest
    return total
