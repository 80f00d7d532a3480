"""Businesses, staff, machinery, loans and sales - SQLAlchemy ORM async."""

from __future__ import annotations

from typing import Any

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from stanks.core.exceptions import NotFoundError, UnauthorizedError
from stanks.core.money import MICROS_PER_UNIT
from stanks.database.orm import (
    Business,
    BusinessEmployee,
    BusinessLoan,
    BusinessMachinery,
    BusinessSale,
    EmployeeCandidate,
)
from stanks.domain.types import LoanStatus


CANDIDATE_POOL_SIZE = 24

_FIRST_NAMES = (
    "Maya", "Arun", "Iris", "Noah", "Tara", "Kian", "Lea", "Ravi", "Nora", "Evan",
    "Zara", "Omar", "Lina", "Kade", "Ava", "Dion", "Sana", "Milo", "Rhea", "Theo",
)
_LAST_NAMES = (
    "Lee", "Vale", "Knox", "Pike", "Sol", "Moss", "Rowe", "Jain", "Park", "Reid",
    "Cross", "Quill", "Stone", "Wren", "Bose", "Cho", "Kent", "Ford", "Hart", "Yoon",
)
_ROLES = ("operator", "engineer", "sales", "finance", "product", "ops", "growth", "legal", "design", "analyst")
_TRAITS = (
    "disciplined", "innovative", "charismatic", "conservative", "visionary",
    "resilient", "strategic", "meticulous", "adaptive", "ambitious",
)


def candidate_pool(target: int) -> list[dict[str, Any]]:
    """Deterministic hiring pool of ``target`` candidates."""
    pool = []
    for i in range(target):
        role = _ROLES[i % len(_ROLES)]
        revenue = (28 + (i % 12) * 7) * MICROS_PER_UNIT
        risk = 12 + (i * 9) % 88
        if role in ("growth", "sales"):
            risk += 20
            revenue += 10 * MICROS_PER_UNIT
        if role in ("finance", "legal"):
            risk -= 8
        pool.append(
            {
                "full_name": f"{_FIRST_NAMES[i % len(_FIRST_NAMES)]} {_LAST_NAMES[(i * 7) % len(_LAST_NAMES)]}",
                "role": role,
                "trait": _TRAITS[(i * 3) % len(_TRAITS)],
                "hire_cost_micros": (420 + (i % 15) * 95) * MICROS_PER_UNIT,
                "revenue_per_tick_micros": revenue,
                "risk_bps": risk,
            }
        )
    return pool


# ───────────────────────────────────────────────────────────────────────────────
# Businesses
# ───────────────────────────────────────────────────────────────────────────────


async def get_business(
    session: AsyncSession, season_id: int, business_id: int, *, for_update: bool = False
) -> Business | None:
    stmt = select(Business).where(Business.id == business_id, Business.season_id == season_id)
    if for_update:
        stmt = stmt.with_for_update()
    result = await session.execute(stmt)
    return result.scalar_one_or_none()


async def require_owned_business(
    session: AsyncSession,
    season_id: int,
    business_id: int,
    user_id: str,
    *,
    for_update: bool = True,
) -> Business:
    """Locked business owned by ``user_id``."""
    business = await get_business(session, season_id, business_id, for_update=for_update)
    if business is None:
        raise NotFoundError("Business not found", details={"business_id": business_id})
    if business.owner_user_id != user_id:
        raise UnauthorizedError(details={"business_id": business_id})
    return business


async def create_business(
    session: AsyncSession,
    season_id: int,
    owner_user_id: str,
    name: str,
    visibility: str,
    base_revenue_micros: int,
) -> Business:
    business = Business(
        season_id=season_id,
        owner_user_id=owner_user_id,
        name=name,
        visibility=visibility,
        is_listed=False,
        strategy="balanced",
        marketing_level=0,
        rd_level=0,
        automation_level=0,
        compliance_level=0,
        brand_bps=10_000,
        operational_health_bps=10_000,
        cash_reserve_micros=0,
        base_revenue_micros=base_revenue_micros,
        last_event="",
    )
    session.add(business)
    await session.flush()
    return business


async def list_businesses(session: AsyncSession, season_id: int, owner_user_id: str) -> list[Business]:
    result = await session.execute(
        select(Business)
        .where(Business.season_id == season_id, Business.owner_user_id == owner_user_id)
        .order_by(Business.id)
    )
    return list(result.scalars().all())


async def lock_season_businesses(session: AsyncSession, season_id: int) -> list[Business]:
    result = await session.execute(
        select(Business).where(Business.season_id == season_id).order_by(Business.id).with_for_update()
    )
    return list(result.scalars().all())


async def delete_business_tree(session: AsyncSession, business: Business) -> None:
    """Delete a business and its staff, machinery and loans."""
    for model in (BusinessEmployee, BusinessMachinery, BusinessLoan):
        await session.execute(delete(model).where(model.business_id == business.id))
    await session.delete(business)
    await session.flush()


# ───────────────────────────────────────────────────────────────────────────────
# Candidates & employees
# ───────────────────────────────────────────────────────────────────────────────


async def seed_candidates(session: AsyncSession, season_id: int, target: int = CANDIDATE_POOL_SIZE) -> int:
    existing = await session.execute(
        select(func.count()).select_from(EmployeeCandidate).where(EmployeeCandidate.season_id == season_id)
    )
    if int(existing.scalar_one()) > 0:
        return 0
    pool = candidate_pool(target)
    session.add_all(EmployeeCandidate(season_id=season_id, **row) for row in pool)
    await session.flush()
    return len(pool)


async def get_candidate(session: AsyncSession, season_id: int, candidate_id: int) -> EmployeeCandidate:
    result = await session.execute(
        select(EmployeeCandidate).where(
            EmployeeCandidate.id == candidate_id, EmployeeCandidate.season_id == season_id
        )
    )
    candidate = result.scalar_one_or_none()
    if candidate is None:
        raise NotFoundError("Candidate not found", details={"candidate_id": candidate_id})
    return candidate


async def list_candidates(session: AsyncSession, season_id: int) -> list[EmployeeCandidate]:
    result = await session.execute(
        select(EmployeeCandidate)
        .where(EmployeeCandidate.season_id == season_id)
        .order_by(EmployeeCandidate.id)
    )
    return list(result.scalars().all())


async def has_hired(session: AsyncSession, business_id: int, candidate_id: int) -> bool:
    result = await session.execute(
        select(BusinessEmployee.id).where(
            BusinessEmployee.business_id == business_id,
            BusinessEmployee.candidate_id == candidate_id,
        )
    )
    return result.first() is not None


async def add_employee(session: AsyncSession, business_id: int, candidate: EmployeeCandidate) -> BusinessEmployee:
    employee = BusinessEmployee(
        business_id=business_id,
        candidate_id=candidate.id,
        full_name=candidate.full_name,
        role=candidate.role,
        trait=candidate.trait,
        revenue_per_tick_micros=candidate.revenue_per_tick_micros,
        risk_bps=candidate.risk_bps,
    )
    session.add(employee)
    await session.flush()
    return employee


async def list_employees(
    session: AsyncSession, business_id: int, *, for_update: bool = False
) -> list[BusinessEmployee]:
    stmt = (
        select(BusinessEmployee)
        .where(BusinessEmployee.business_id == business_id)
        .order_by(BusinessEmployee.id)
    )
    if for_update:
        stmt = stmt.with_for_update()
    result = await session.execute(stmt)
    return list(result.scalars().all())


async def get_employee(session: AsyncSession, business_id: int, employee_id: int) -> BusinessEmployee:
    result = await session.execute(
        select(BusinessEmployee)
        .where(BusinessEmployee.id == employee_id, BusinessEmployee.business_id == business_id)
        .with_for_update()
    )
    employee = result.scalar_one_or_none()
    if employee is None:
        raise NotFoundError("Employee not found", details={"employee_id": employee_id})
    return employee


async def remove_employee(session: AsyncSession, employee: BusinessEmployee) -> None:
    await session.delete(employee)
    await session.flush()


# ───────────────────────────────────────────────────────────────────────────────
# Machinery
# ───────────────────────────────────────────────────────────────────────────────


async def get_machine(
    session: AsyncSession, business_id: int, machine_type: str
) -> BusinessMachinery | None:
    result = await session.execute(
        select(BusinessMachinery)
        .where(
            BusinessMachinery.business_id == business_id,
            BusinessMachinery.machine_type == machine_type,
        )
        .with_for_update()
    )
    return result.scalar_one_or_none()


async def list_machinery(session: AsyncSession, business_id: int) -> list[BusinessMachinery]:
    result = await session.execute(
        select(BusinessMachinery)
        .where(BusinessMachinery.business_id == business_id)
        .order_by(BusinessMachinery.id)
    )
    return list(result.scalars().all())


async def add_machine(
    session: AsyncSession,
    business_id: int,
    machine_type: str,
    output_micros: int,
    upkeep_micros: int,
    reliability_bps: int,
) -> BusinessMachinery:
    machine = BusinessMachinery(
        business_id=business_id,
        machine_type=machine_type,
        level=1,
        output_bonus_micros=output_micros,
        upkeep_micros=upkeep_micros,
        reliability_bps=reliability_bps,
    )
    session.add(machine)
    await session.flush()
    return machine


async def delete_machinery(session: AsyncSession, business_id: int) -> int:
    result = await session.execute(
        delete(BusinessMachinery).where(BusinessMachinery.business_id == business_id)
    )
    return result.rowcount or 0


# ───────────────────────────────────────────────────────────────────────────────
# Loans
# ───────────────────────────────────────────────────────────────────────────────


async def list_loans(
    session: AsyncSession,
    business_id: int,
    *,
    open_only: bool = False,
    for_update: bool = False,
) -> list[BusinessLoan]:
    """Loans oldest-first."""
    stmt = select(BusinessLoan).where(BusinessLoan.business_id == business_id)
    if open_only:
        stmt = stmt.where(BusinessLoan.status == LoanStatus.OPEN.value)
    stmt = stmt.order_by(BusinessLoan.created_at, BusinessLoan.id)
    if for_update:
        stmt = stmt.with_for_update()
    result = await session.execute(stmt)
    return list(result.scalars().all())


async def add_loan(
    session: AsyncSession, business_id: int, principal_micros: int, interest_bps: int
) -> BusinessLoan:
    loan = BusinessLoan(
        business_id=business_id,
        principal_micros=principal_micros,
        outstanding_micros=principal_micros,
        interest_bps=interest_bps,
        missed_ticks=0,
        status=LoanStatus.OPEN.value,
    )
    session.add(loan)
    await session.flush()
    return loan


async def open_loans_total_for_owner(session: AsyncSession, season_id: int, owner_user_id: str) -> int:
    result = await session.execute(
        select(func.coalesce(func.sum(BusinessLoan.outstanding_micros), 0))
        .join(Business, Business.id == BusinessLoan.business_id)
        .where(
            Business.season_id == season_id,
            Business.owner_user_id == owner_user_id,
            BusinessLoan.status == LoanStatus.OPEN.value,
        )
    )
    return int(result.scalar_one())


def apply_payment_oldest_first(loans: list[BusinessLoan], amount_micros: int) -> int:
    """Pay down open loans in order; returns the amount actually applied."""
    remaining = amount_micros
    for loan in loans:
        if remaining <= 0:
            break
        if loan.status != LoanStatus.OPEN.value:
            continue
        paid = min(remaining, loan.outstanding_micros)
        loan.outstanding_micros -= paid
        remaining -= paid
        if loan.outstanding_micros == 0:
            loan.status = LoanStatus.REPAID.value
    return amount_micros - remaining


# ───────────────────────────────────────────────────────────────────────────────
# Sales
# ───────────────────────────────────────────────────────────────────────────────


async def record_sale(
    session: AsyncSession,
    business: Business,
    *,
    gross_valuation_micros: int,
    adjustment_factor: float,
    loan_payoff_micros: int,
    payout_micros: int,
    reason: str,
) -> BusinessSale:
    sale = BusinessSale(
        season_id=business.season_id,
        business_id=business.id,
        owner_user_id=business.owner_user_id,
        business_name=business.name,
        gross_valuation_micros=gross_valuation_micros,
        adjustment_factor=adjustment_factor,
        loan_payoff_micros=loan_payoff_micros,
        payout_micros=payout_micros,
        reason=reason,
    )
    session.add(sale)
    await session.flush()
    return sale


async def list_sales(session: AsyncSession, season_id: int, owner_user_id: str) -> list[BusinessSale]:
    """Sales and liquidations of an owner's businesses, newest first."""
    result = await session.execute(
        select(BusinessSale)
        .where(BusinessSale.season_id == season_id, BusinessSale.owner_user_id == owner_user_id)
        .order_by(BusinessSale.id.desc())
    )
    return list(result.scalars().all())
