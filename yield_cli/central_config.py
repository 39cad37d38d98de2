"""
Project Configuration — simulation constants, version
======================================================

Single home for the numeric constants shared by the simulation engine:
harvest grids, range widths, gas assumptions, reward emissions and the
normal quantiles used for parametric risk.

Sources:
  - PancakeSwap MasterChef emissions (14,500 CAKE/day at time of writing)
  - Uniswap V3 fee tiers: https://docs.uniswap.org/concepts/protocol/fees
  - Compound jump-rate model: https://docs.compound.finance/v2/#protocol-math
"""

import re
from dataclasses import dataclass
from importlib.metadata import version, PackageNotFoundError
from pathlib import Path
from types import MappingProxyType

# Version: single source of truth is pyproject.toml
try:
    PROJECT_VERSION = version("lp-yield-sim")
except PackageNotFoundError:
    # Dev / CI: package not installed: read pyproject.toml directly
    _toml = Path(__file__).resolve().parent.parent / "pyproject.toml"
    _m = (
        re.search(r'version\s*=\s*"([^"]+)"', _toml.read_text())
        if _toml.exists()
        else None
    )
    PROJECT_VERSION = _m.group(1) if _m else "0.0.0-dev"
PROJECT_NAME = "LP Yield Simulator"


@dataclass(frozen=True)
class SimulationDefaults:
    """Monte Carlo and yield-model defaults."""

    DAYS_PER_YEAR: int = 365
    NUM_SIMULATIONS: int = 1000
    OPTIMIZER_DRAWS: int = 100  # inner draws per grid cell
    DEFAULT_HARVEST_DAYS: float = 1.0

    # Optimizer grid: total width as a fraction of P_0, centred on P_0
    RANGE_WIDTHS: tuple = (0.1, 0.2, 0.3, 0.5, 0.7, 1.0)
    HARVEST_PERIODS: tuple = (1, 7, 14, 30)
    OUT_OF_RANGE_PENALTY: float = 0.1  # fraction of capital per unit miss probability

    # Gas units charged per compounding transaction on an LP position
    GAS_PER_TX: int = 730

    # Fee tiers when neither position nor snapshot provides one
    DEFAULT_FEE_TIER_FULL_RANGE: float = 0.0017
    DEFAULT_FEE_TIER_RANGE_BOUNDED: float = 0.0025

    # Farm emissions: 14,500 reward tokens/day
    REWARD_EMISSIONS_PER_YEAR: float = 14_500 * 365

    # Lending
    UTILIZATION_FLOOR: float = 0.05
    UTILIZATION_CAP: float = 0.98
    LENDING_GAS_UNITS: int = 200_000
    LENDING_GAS_PRICE_GWEI: float = 3.0
    LENDING_NATIVE_PRICE: float = 600.0


@dataclass(frozen=True)
class RiskConstants:
    """Parametric risk and decision thresholds."""

    Z_95: float = 1.645
    Z_99: float = 2.326
    TAIL_PROBABILITY: float = 0.05

    # Correlation used when an asset has no usable return history
    MISSING_DATA_CORRELATION: float = 0.5
    ZERO_VARIANCE_EPSILON: float = 1e-12

    # Reallocate only when the candidate beats the current APY by this many points
    MIN_REALLOCATION_APY_GAIN: float = 1.0


# Fee tier → human label: immutable mapping
FEE_TIER_LABELS = MappingProxyType(
    {
        0.0001: "0.01% (stable-stable)",
        0.0005: "0.05% (correlated / majors)",
        0.0017: "0.17% (V2 standard)",
        0.0025: "0.25% (V3 standard)",
        0.003: "0.30% (standard)",
        0.01: "1.00% (exotic)",
    }
)


# Unified configuration
class YieldSimConfig:
    """Unified configuration for the simulation engine."""

    simulation = SimulationDefaults()
    risk = RiskConstants()


# Global instance
config = YieldSimConfig()
