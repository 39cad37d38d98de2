"""
Lending Position Simulator
==========================

Monte Carlo for supplying an asset to a lending market.

    V_final = V · Π (1 + supplyAPY(U_k) · d_k / 365) − bad debt − gas

Per harvest period k of d_k days:
  1. Utilization U_k ~ Normal(mean, std), clamped to [0.05, 0.98]
  2. Bad-debt shock with probability events/year · d_k / 365; severity
     V_current · rate · (0.5 + u), u ~ U(0, 1)
  3. Interest on the capital left after the shock

Interest-rate model (Compound jump rate):
    U ≤ kink: borrow = base + U·multiplier
    U > kink: borrow = base + kink·multiplier + (U − kink)·jump
    supply  = borrow · U · (1 − reserve factor)

Ref: https://docs.compound.finance/v2/#protocol-math
Ref: https://docs.venus.io/whitepaper#interest-rate-model
"""

import math
from dataclasses import dataclass, fields
from types import MappingProxyType
from typing import Any, Dict, Mapping, Optional

import numpy as np

from monte_carlo import (
    RandomSource,
    SimulationStatistics,
    make_rng,
    standard_normal,
    summarize_final_values,
)
from yield_cli.central_config import config
from yield_cli.stablecoins import asset_class

_SIM = config.simulation


def _checked_fields(cls, data: Mapping[str, Any], required: bool) -> Dict[str, float]:
    """Numeric dataclass fields from a mapping; unknown keys are rejected."""
    names = [f.name for f in fields(cls)]
    unknown = sorted(set(data) - set(names))
    if unknown:
        raise ValueError(f"Unknown {cls.__name__} keys: {', '.join(unknown)}")
    missing = [name for name in names if name not in data]
    if required and missing:
        raise ValueError(f"{cls.__name__} is missing: {', '.join(missing)}")
    return {name: float(data[name]) for name in names if name in data}


# ── Interest Rate Model ──────────────────────────────────────────────────


@dataclass(frozen=True)
class InterestRateModel:
    """Jump-rate model; all rates annual fractions."""

    base_rate_per_year: float
    multiplier_per_year: float
    jump_multiplier_per_year: float
    kink: float
    reserve_factor: float

    def __post_init__(self):
        if not 0 < self.kink <= 1:
            raise ValueError("Kink must be in (0, 1]")
        if not 0 <= self.reserve_factor < 1:
            raise ValueError("Reserve factor must be in [0, 1)")

    def borrow_rate(self, utilization: float) -> float:
        if utilization <= self.kink:
            return self.base_rate_per_year + utilization * self.multiplier_per_year
        normal = self.base_rate_per_year + self.kink * self.multiplier_per_year
        return normal + (utilization - self.kink) * self.jump_multiplier_per_year

    def supply_rate(self, utilization: float) -> float:
        return self.borrow_rate(utilization) * utilization * (1 - self.reserve_factor)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "InterestRateModel":
        return cls(**_checked_fields(cls, data, required=True))


# Typical parameters by asset class: immutable mapping
DEFAULT_RATE_MODELS = MappingProxyType(
    {
        "stablecoin": InterestRateModel(0.0, 0.04, 0.60, 0.80, 0.10),
        "major": InterestRateModel(0.0, 0.045, 0.80, 0.75, 0.15),
        "volatile": InterestRateModel(0.02, 0.07, 3.00, 0.45, 0.20),
    }
)


def default_rate_model(asset: str) -> InterestRateModel:
    return DEFAULT_RATE_MODELS[asset_class(asset)]


# ── Market Inputs ────────────────────────────────────────────────────────


@dataclass(frozen=True)
class UtilizationProfile:
    mean: float
    std: float

    def __post_init__(self):
        if self.std < 0:
            raise ValueError("Utilization std cannot be negative")


@dataclass(frozen=True)
class BadDebtProfile:
    events_per_year: float = 0.0
    annualized_bad_debt_rate: float = 0.0

    def __post_init__(self):
        if self.events_per_year < 0 or self.annualized_bad_debt_rate < 0:
            raise ValueError("Bad-debt frequency and rate cannot be negative")

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "BadDebtProfile":
        return cls(**_checked_fields(cls, data, required=False))


@dataclass(frozen=True)
class LendingConfig:
    initial_value: float
    days: int
    harvest_days: Optional[float] = None
    num_simulations: int = _SIM.NUM_SIMULATIONS
    gas_units: int = _SIM.LENDING_GAS_UNITS
    gas_price_gwei: float = _SIM.LENDING_GAS_PRICE_GWEI
    native_token_price: float = _SIM.LENDING_NATIVE_PRICE

    def __post_init__(self):
        if self.initial_value <= 0:
            raise ValueError("Initial value must be positive")
        if self.days <= 0:
            raise ValueError("Holding period must be positive")
        if self.harvest_days is not None and self.harvest_days <= 0:
            raise ValueError("Harvest interval must be positive")
        if self.num_simulations < 1:
            raise ValueError("Number of simulations must be at least 1")

    @property
    def gas_cost_per_tx(self) -> float:
        return self.gas_units * self.gas_price_gwei / 1e9 * self.native_token_price

    def total_gas_cost(self, harvest_days: float) -> float:
        # supply + one per harvest + withdrawal
        return self.gas_cost_per_tx * (math.floor(self.days / harvest_days) + 2)


# ── Simulation ───────────────────────────────────────────────────────────


@dataclass(frozen=True)
class LendingScenario:
    final_value: float
    mean_supply_rate: float
    mean_utilization: float
    bad_debt_loss: float


def draw_utilization(profile: UtilizationProfile, rng: np.random.Generator) -> float:
    u = profile.mean + standard_normal(rng) * profile.std
    return max(_SIM.UTILIZATION_FLOOR, min(_SIM.UTILIZATION_CAP, u))


def bad_debt_loss(
    value: float, profile: BadDebtProfile, days: float, rng: np.random.Generator
) -> float:
    """Discrete shock; duration scales the probability, not the severity."""
    if profile.events_per_year <= 0:
        return 0.0
    if rng.random() < profile.events_per_year / _SIM.DAYS_PER_YEAR * days:
        return value * profile.annualized_bad_debt_rate * (0.5 + rng.random())
    return 0.0


def simulate_lending_scenario(
    lending: LendingConfig,
    rate_model: InterestRateModel,
    utilization: UtilizationProfile,
    bad_debt: BadDebtProfile,
    harvest_days: float,
    rng: np.random.Generator,
) -> LendingScenario:
    value = lending.initial_value
    total_loss = 0.0
    rates = []
    utils = []

    for i in range(math.floor(lending.days / harvest_days) + 1):
        period_days = min(harvest_days, lending.days - i * harvest_days)
        if period_days <= 0:
            break
        u = draw_utilization(utilization, rng)
        rate = rate_model.supply_rate(u)
        utils.append(u)
        rates.append(rate)

        loss = bad_debt_loss(value, bad_debt, period_days, rng)
        value -= loss
        total_loss += loss
        value *= 1 + rate * period_days / _SIM.DAYS_PER_YEAR

    value -= lending.total_gas_cost(harvest_days)
    return LendingScenario(
        final_value=value,
        mean_supply_rate=sum(rates) / len(rates),
        mean_utilization=sum(utils) / len(utils),
        bad_debt_loss=total_loss,
    )


def _run_scenarios(lending, rate_model, utilization, bad_debt, harvest_days, draws, rng):
    return [
        simulate_lending_scenario(lending, rate_model, utilization, bad_debt, harvest_days, rng)
        for _ in range(draws)
    ]


def optimize_harvest_days(
    lending: LendingConfig,
    rate_model: InterestRateModel,
    utilization: UtilizationProfile,
    bad_debt: BadDebtProfile,
    rng: RandomSource = None,
    draws: Optional[int] = None,
) -> float:
    """Harvest interval from {1, 7, 14, 30} with the highest mean final value."""
    generator = make_rng(rng)
    draws = draws or max(1, lending.num_simulations // 4)
    best_days = _SIM.HARVEST_PERIODS[-1]
    best_mean = -math.inf
    for h in _SIM.HARVEST_PERIODS:
        scenarios = _run_scenarios(lending, rate_model, utilization, bad_debt, h, draws, generator)
        mean = sum(s.final_value for s in scenarios) / len(scenarios)
        if mean > best_mean:
            best_mean = mean
            best_days = h
    return best_days


# ── Analysis ─────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class LendingAnalysis:
    asset: str
    initial_value: float
    days: int
    statistics: SimulationStatistics
    harvest_days: float
    harvest_count: int
    gas_cost_per_tx: float
    total_gas_cost: float
    mean_supply_rate: float
    mean_utilization: float
    expected_bad_debt_loss: float
    sharpe_ratio: float
    max_drawdown: float

    @property
    def total_return_pct(self) -> float:
        return self.statistics.mean_return_pct

    @property
    def annualized_apy_pct(self) -> float:
        """Compound annualization: ((E[V]/V)^(365/days) − 1) × 100"""
        ratio = self.statistics.mean_final_value / self.initial_value
        if ratio <= 0:
            return -100.0
        return (ratio ** (_SIM.DAYS_PER_YEAR / self.days) - 1) * 100

    def as_dict(self) -> Dict[str, Any]:
        return {
            "asset": self.asset,
            "initial_value": self.initial_value,
            "days": self.days,
            "total_return_pct": round(self.total_return_pct, 4),
            "annualized_apy_pct": round(self.annualized_apy_pct, 2),
            "mean_supply_apy_pct": round(self.mean_supply_rate * 100, 2),
            "mean_utilization_pct": round(self.mean_utilization * 100, 2),
            "expected_bad_debt_loss": round(self.expected_bad_debt_loss, 2),
            "harvest_days": self.harvest_days,
            "harvest_count": self.harvest_count,
            "total_gas_cost": round(self.total_gas_cost, 4),
            "sharpe_ratio": round(self.sharpe_ratio, 4),
            "max_drawdown": round(self.max_drawdown, 2),
            **self.statistics.as_dict(),
        }


def analyze_lending_position(
    lending: LendingConfig,
    utilization: UtilizationProfile,
    asset: str = "USDT",
    rate_model: Optional[InterestRateModel] = None,
    bad_debt: Optional[BadDebtProfile] = None,
    rng: RandomSource = None,
) -> LendingAnalysis:
    """
    Simulate a supply position; the harvest interval is optimized when the
    config leaves it unset, and the rate model defaults by asset class.
    """
    generator = make_rng(rng)
    rate_model = rate_model or default_rate_model(asset)
    bad_debt = bad_debt or BadDebtProfile()
    harvest_days = lending.harvest_days or optimize_harvest_days(
        lending, rate_model, utilization, bad_debt, generator
    )

    scenarios = _run_scenarios(
        lending, rate_model, utilization, bad_debt, harvest_days,
        lending.num_simulations, generator,
    )
    final_values = np.array([s.final_value for s in scenarios])
    stats = summarize_final_values(final_values, lending.initial_value)

    std_pct = stats.std_return_pct
    sharpe = (
        stats.mean_return_pct / std_pct if std_pct > config.risk.ZERO_VARIANCE_EPSILON else 0.0
    )

    return LendingAnalysis(
        asset=asset,
        initial_value=lending.initial_value,
        days=lending.days,
        statistics=stats,
        harvest_days=harvest_days,
        harvest_count=math.floor(lending.days / harvest_days),
        gas_cost_per_tx=lending.gas_cost_per_tx,
        total_gas_cost=lending.total_gas_cost(harvest_days),
        mean_supply_rate=float(np.mean([s.mean_supply_rate for s in scenarios])),
        mean_utilization=float(np.mean([s.mean_utilization for s in scenarios])),
        expected_bad_debt_loss=float(np.mean([s.bad_debt_loss for s in scenarios])),
        sharpe_ratio=sharpe,
        max_drawdown=float(final_values.min()) - lending.initial_value,
    )
