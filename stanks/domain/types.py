"""Enums and tuning bundles shared by the economy engines."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from stanks.core.config import VOLATILITY_ALIASES
from stanks.core.exceptions import ValidationError
from stanks.core.money import MICROS_PER_UNIT


class OrderSide(str, Enum):
    BUY = "buy"
    SELL = "sell"


class MarketRegime(str, Enum):
    """Market-wide directional bias."""

    BULL = "bull"
    NEUTRAL = "neutral"
    BEAR = "bear"

    @property
    def drift(self) -> float:
        return REGIME_DRIFT[self]


REGIME_DRIFT = {
    MarketRegime.BULL: 0.0085,
    MarketRegime.NEUTRAL: 0.0,
    MarketRegime.BEAR: -0.0085,
}


class SeasonStatus(str, Enum):
    ACTIVE = "active"
    COMPLETED = "completed"


class BusinessVisibility(str, Enum):
    PRIVATE = "private"
    PUBLIC = "public"


class BusinessStrategy(str, Enum):
    AGGRESSIVE = "aggressive"
    BALANCED = "balanced"
    DEFENSIVE = "defensive"


class LoanStatus(str, Enum):
    OPEN = "open"
    REPAID = "repaid"
    SOLD_OFF = "sold_off"


class UpgradeKind(str, Enum):
    MARKETING = "marketing"
    RD = "rd"
    AUTOMATION = "automation"
    COMPLIANCE = "compliance"

    @property
    def column(self) -> str:
        """Business attribute holding this upgrade's level."""
        return f"{self.value}_level"


class LedgerAccount(str, Enum):
    WALLET = "wallet"
    COUNTERPARTY = "counterparty"
    FEES = "fees"


def parse_enum(enum_cls: type[Enum], value: str, field: str):
    """Coerce user input to ``enum_cls`` or raise a validation error."""
    try:
        return enum_cls(str(value or "").strip().lower())
    except ValueError as exc:
        allowed = [member.value for member in enum_cls]
        raise ValidationError(
            f"Invalid {field}", details={field: value, "allowed": allowed}
        ) from exc


# =============================================================================
# VOLATILITY PROFILES
# =============================================================================


@dataclass(frozen=True)
class VolatilityProfile:
    """Tuning bundle for one tick of price evolution."""

    name: str
    noise_scale: float
    shock_prob: float
    shock_scale: float
    extreme_shock_prob: float
    extreme_shock_scale: float
    mean_reversion: float
    anchor_noise_scale: float
    regime_switch_prob: float
    max_drop_per_tick: float


VOLATILITY_PROFILES: dict[str, VolatilityProfile] = {
    "calm": VolatilityProfile(
        name="calm",
        noise_scale=0.020,
        shock_prob=0.05,
        shock_scale=0.09,
        extreme_shock_prob=0.008,
        extreme_shock_scale=0.22,
        mean_reversion=0.030,
        anchor_noise_scale=0.012,
        regime_switch_prob=0.04,
        max_drop_per_tick=1.20,
    ),
    "moderate": VolatilityProfile(
        name="moderate",
        noise_scale=0.038,
        shock_prob=0.11,
        shock_scale=0.14,
        extreme_shock_prob=0.020,
        extreme_shock_scale=0.35,
        mean_reversion=0.018,
        anchor_noise_scale=0.022,
        regime_switch_prob=0.07,
        max_drop_per_tick=2.00,
    ),
    "wild": VolatilityProfile(
        name="wild",
        noise_scale=0.060,
        shock_prob=0.18,
        shock_scale=0.20,
        extreme_shock_prob=0.050,
        extreme_shock_scale=0.60,
        mean_reversion=0.010,
        anchor_noise_scale=0.038,
        regime_switch_prob=0.11,
        max_drop_per_tick=2.60,
    ),
}


def resolve_volatility_profile(name: str | None) -> VolatilityProfile:
    """Look up a profile by name; aliases resolve and unknown names mean moderate."""
    key = (name or "").strip().lower()
    key = VOLATILITY_ALIASES.get(key, key)
    return VOLATILITY_PROFILES.get(key, VOLATILITY_PROFILES["moderate"])


# =============================================================================
# MACHINERY
# =============================================================================


@dataclass(frozen=True)
class MachineSpec:
    machine_type: str
    cost_micros: int
    output_micros: int
    upkeep_micros: int
    reliability_bps: int


MACHINE_CATALOG: tuple[MachineSpec, ...] = (
    MachineSpec("assembly_line", 6_500 * MICROS_PER_UNIT, 70 * MICROS_PER_UNIT, 12 * MICROS_PER_UNIT, 9450),
    MachineSpec("robotics_cell", 12_500 * MICROS_PER_UNIT, 155 * MICROS_PER_UNIT, 28 * MICROS_PER_UNIT, 9300),
    MachineSpec("cloud_cluster", 18_000 * MICROS_PER_UNIT, 220 * MICROS_PER_UNIT, 42 * MICROS_PER_UNIT, 9250),
    MachineSpec("bio_reactor", 25_000 * MICROS_PER_UNIT, 330 * MICROS_PER_UNIT, 66 * MICROS_PER_UNIT, 9100),
    MachineSpec("quantum_rig", 40_000 * MICROS_PER_UNIT, 530 * MICROS_PER_UNIT, 105 * MICROS_PER_UNIT, 8900),
)


def machine_by_type(machine_type: str) -> MachineSpec:
    key = (machine_type or "").strip().lower()
    for spec in MACHINE_CATALOG:
        if spec.machine_type == key:
            return spec
    raise ValidationError(
        f"Unknown machine type: {machine_type}",
        details={"allowed": [spec.machine_type for spec in MACHINE_CATALOG]},
    )
