"""Domain enums and tuning bundles."""

from .types import (
    MACHINE_CATALOG,
    VOLATILITY_PROFILES,
    BusinessStrategy,
    BusinessVisibility,
    LedgerAccount,
    LoanStatus,
    MachineSpec,
    MarketRegime,
    OrderSide,
    SeasonStatus,
    UpgradeKind,
    VolatilityProfile,
    machine_by_type,
    parse_enum,
    resolve_volatility_profile,
)
