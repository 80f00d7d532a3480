"""Typed result payloads returned by the economy entry points.

All money fields are integer micros and all quantity fields are integer
share units.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class ErrorResponse(BaseModel):
    """Serialized ``AppException`` (RFC 7807 inspired)."""

    error: str = Field(..., description="Error code", examples=["INSUFFICIENT_FUNDS"])
    message: str = Field(..., description="Human-readable error message")
    status: int = Field(..., description="HTTP status code")
    details: Optional[Dict[str, Any]] = None


# =============================================================================
# PLAYERS & TRADING
# =============================================================================


class PlayerResult(BaseModel):
    user_id: str
    username: str
    invite_code: str
    season_id: int
    balance_micros: int
    created: bool = Field(..., description="True if the profile or wallet was created now")


class OrderResult(BaseModel):
    """Executed order."""

    order_id: int
    symbol: str
    side: str
    quantity_units: int
    price_micros: int
    notional_micros: int
    fee_micros: int
    balance_micros: int


class PositionView(BaseModel):
    symbol: str
    quantity_units: int
    avg_price_micros: int
    current_price_micros: int
    market_value_micros: int
    unrealized_pnl_micros: int


# =============================================================================
# STOCKS
# =============================================================================


class PricePoint(BaseModel):
    tick_at: datetime
    price_micros: int


class StockView(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    symbol: str
    display_name: str
    listed_public: bool
    current_price_micros: int
    anchor_price_micros: int
    business_id: Optional[int] = None


class StockDetail(StockView):
    """Stock with its newest-first price history."""

    history: List[PricePoint] = Field(default_factory=list)


# =============================================================================
# BUSINESSES
# =============================================================================


class BusinessView(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    visibility: str
    strategy: str
    is_listed: bool
    stock_symbol: Optional[str] = None
    marketing_level: int
    rd_level: int
    automation_level: int
    compliance_level: int
    brand_bps: int
    operational_health_bps: int
    cash_reserve_micros: int
    base_revenue_micros: int
    last_event: str


class BusinessSummary(BusinessView):
    """Business with staff, machinery and loan totals for the dashboard."""

    employee_count: int
    employee_revenue_micros: int
    machinery_output_micros: int
    machinery_upkeep_micros: int
    open_loans_micros: int


class CandidateView(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    full_name: str
    role: str
    trait: str
    hire_cost_micros: int
    revenue_per_tick_micros: int
    risk_bps: int


class EmployeeView(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    candidate_id: int
    full_name: str
    role: str
    trait: str
    revenue_per_tick_micros: int
    risk_bps: int


class MachineryView(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    machine_type: str
    level: int
    output_bonus_micros: int
    upkeep_micros: int
    reliability_bps: int


class LoanView(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    principal_micros: int
    outstanding_micros: int
    interest_bps: int
    missed_ticks: int
    status: str


class EmployeeResult(BaseModel):
    """Hire or training outcome."""

    employee: EmployeeView
    cost_micros: int
    balance_micros: int


class MachineryResult(BaseModel):
    machine: MachineryView
    cost_micros: int
    balance_micros: int


class UpgradeResult(BaseModel):
    business_id: int
    upgrade: str
    level: int
    cost_micros: int
    balance_micros: int


class ReserveResult(BaseModel):
    business_id: int
    cash_reserve_micros: int
    balance_micros: int


class LoanResult(BaseModel):
    loan: LoanView
    balance_micros: int


class RepayResult(BaseModel):
    business_id: int
    paid_micros: int
    outstanding_micros: int
    balance_micros: int


class SaleResult(BaseModel):
    business_id: int
    gross_valuation_micros: int
    adjustment_factor: float
    loan_payoff_micros: int
    payout_micros: int
    balance_micros: int


class BusinessSaleView(BaseModel):
    """A past sale or forced liquidation."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    business_id: int
    business_name: str
    gross_valuation_micros: int
    adjustment_factor: float
    loan_payoff_micros: int
    payout_micros: int
    reason: str
    created_at: Optional[datetime] = None


# =============================================================================
# READ MODELS
# =============================================================================


class Dashboard(BaseModel):
    season_id: int
    balance_micros: int
    peak_net_worth_micros: int
    net_worth_micros: int
    debt_ceiling_micros: int
    positions: List[PositionView] = Field(default_factory=list)
    businesses: List[BusinessSummary] = Field(default_factory=list)


class LeaderboardRow(BaseModel):
    rank: int
    username: str
    invite_code: str
    net_worth_micros: int


class LedgerEntryView(BaseModel):
    id: int
    tx_group_id: str
    account: str
    delta_micros: int
    metadata: Dict[str, Any] = Field(default_factory=dict)
    created_at: Optional[datetime] = None


class TickReport(BaseModel):
    """Summary of one market tick for one season."""

    season_id: int
    tick_at: datetime
    volatility: str
    regime: str
    regime_changed: bool
    stocks_updated: int
    businesses_processed: int
    revenue_credited_micros: int = 0
    losses_debited_micros: int = 0
    loan_interest_accrued_micros: int = 0
    autopaid_micros: int = 0
    late_fees_micros: int = 0
    repossessions: int = 0
    liquidations: int = 0
    debt_interest_micros: int = 0
    peaks_raised: int = 0
