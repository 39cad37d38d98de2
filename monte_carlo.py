"""
Monte Carlo Engine
==================

Lognormal price simulation for LP positions:

  1. Parameter estimation   — MLE of daily log-return drift/volatility
  2. Simulation             — N independent terminal prices, each valued
                              through the position value model with fee,
                              farming, compounding and gas accrual
  3. Statistics             — moments, nearest-rank percentiles,
                              probability of loss, VaR(5%)

Model:
    ln(P_T / P_0) ~ Normal(mu·T, sigma²·T)
    z = √(−2·ln u1) · cos(2π·u2)        (Box–Muller)

Randomness always comes from an injected ``numpy.random.Generator`` (or a
seed used to build one), so every run is reproducible.
"""

import math
from dataclasses import dataclass
from typing import Any, Dict, Optional, Sequence, Union

import numpy as np

from lp_math import PoolSnapshot, Position, PositionConfig, YieldMath
from yield_cli.central_config import config
from yield_cli.errors import InsufficientDataError

_SIM = config.simulation

RandomSource = Union[None, int, np.random.Generator]


def make_rng(rng: RandomSource = None) -> np.random.Generator:
    """Generator passthrough; ints and None seed a fresh PCG64 generator."""
    return np.random.default_rng(rng)


# ── Parameter Estimation ────────────────────────────────────────────────


@dataclass(frozen=True)
class DistributionParameters:
    """Daily log-return moments and their annualized equivalents."""

    mu: float
    sigma: float
    annualized_mu: float
    annualized_sigma: float
    sample_size: int


def estimate_log_return_parameters(prices: Sequence[float]) -> DistributionParameters:
    """
    Maximum-likelihood lognormal parameters from a daily price series.

    Formula:
        r_i   = ln(P_i / P_{i−1})
        mu    = mean(r)
        sigma = √(Σ(r_i − mu)² / n)          (population, divides by n)
        annualized: mu·365, sigma·√365

    A constant series yields mu = sigma = 0, which is a valid input.
    """
    series = np.asarray(prices, dtype=float)
    if series.ndim != 1:
        raise ValueError("Price series must be one-dimensional")
    if series.size < 2:
        raise InsufficientDataError(int(series.size))
    if not np.all(np.isfinite(series)) or np.any(series <= 0):
        raise ValueError("Prices must be positive")

    log_returns = np.log(series[1:] / series[:-1])
    mu = float(np.mean(log_returns))
    sigma = float(np.sqrt(np.mean((log_returns - mu) ** 2)))

    return DistributionParameters(
        mu=mu,
        sigma=sigma,
        annualized_mu=mu * _SIM.DAYS_PER_YEAR,
        annualized_sigma=sigma * math.sqrt(_SIM.DAYS_PER_YEAR),
        sample_size=int(log_returns.size),
    )


def standard_normal(rng: np.random.Generator) -> float:
    """
    One standard-normal draw via Box–Muller.

    u1 is taken from (0, 1] so ln(u1) is always finite.
    """
    u1 = 1.0 - rng.random()
    u2 = rng.random()
    return math.sqrt(-2.0 * math.log(u1)) * math.cos(2.0 * math.pi * u2)


def terminal_price(
    initial_price: float, mu: float, sigma: float, days: float, z: float
) -> float:
    """P_0 · exp(days·mu + √days·sigma·z)"""
    return initial_price * math.exp(days * mu + math.sqrt(days) * sigma * z)


# ── Yield Accrual ────────────────────────────────────────────────────────


@dataclass(frozen=True)
class AccrualModel:
    """
    Deterministic yield inputs shared by every draw of one simulation.

    Rates are daily fractions. ``trailing_days`` is the partial period after
    the last full harvest; it only accrues when prorating is requested.
    """

    daily_fee_rate: float
    daily_farming_rate: float
    trading_fee_apy: float
    farming_apy: float
    harvest_days: float
    periods: int
    trailing_days: float
    gas_cost_per_tx: float
    fee_tier: float = 0.0

    @classmethod
    def for_position(
        cls,
        position: Position,
        position_config: PositionConfig,
        snapshot: PoolSnapshot,
        harvest_days: float,
        prorate_partial_period: bool = False,
    ) -> "AccrualModel":
        fee_tier = position_config.resolve_fee_tier(snapshot, position.is_range_bounded)
        contribution = position_config.initial_value

        daily_fee = YieldMath.daily_fee_rate(
            snapshot.volume_24h,
            fee_tier,
            snapshot.tvl_lp,
            contribution,
            position.capital_efficiency,
        )
        farming_apy = YieldMath.farming_apy(
            snapshot.reward_emissions_per_year,
            snapshot.pair_weight_ratio,
            snapshot.reward_token_price,
            snapshot.tvl_staked,
            contribution,
        )
        periods = YieldMath.harvest_periods(position_config.days, harvest_days)
        trailing = (
            position_config.days - periods * harvest_days
            if prorate_partial_period
            else 0.0
        )
        return cls(
            daily_fee_rate=daily_fee,
            daily_farming_rate=farming_apy / _SIM.DAYS_PER_YEAR,
            trading_fee_apy=YieldMath.trading_fee_apy(daily_fee),
            farming_apy=farming_apy,
            harvest_days=harvest_days,
            periods=periods,
            trailing_days=trailing,
            gas_cost_per_tx=YieldMath.gas_cost_per_tx(
                position_config.gas_per_tx,
                snapshot.gas_price_gwei,
                snapshot.native_token_price,
            ),
            fee_tier=fee_tier,
        )

    @property
    def transactions(self) -> int:
        # one entry transaction plus one per harvest
        return self.periods + 1

    @property
    def total_gas_cost(self) -> float:
        return self.gas_cost_per_tx * self.transactions

    def growth_factor(self, in_range: bool) -> float:
        """
        1 + compounded return.

        Formula: (1 + f·h + g·h)^periods, fees f dropped when out of range.
        """
        daily = (self.daily_fee_rate if in_range else 0.0) + self.daily_farming_rate
        growth = YieldMath.compounded_return(daily * self.harvest_days, self.periods) + 1
        if self.trailing_days > 0:
            growth *= 1 + daily * self.trailing_days
        return growth

    def final_value(self, position: Position, price: float) -> float:
        """hold value × IL factor × (1 + compounded) − gas"""
        hold = position.hold_value_at(price)
        il_factor = position.impermanent_loss_factor(price)
        return hold * il_factor * self.growth_factor(position.in_range(price)) - self.total_gas_cost


# ── Simulation ───────────────────────────────────────────────────────────


@dataclass(frozen=True)
class SimulationPaths:
    """Per-draw outputs, in draw order."""

    terminal_prices: np.ndarray
    il_factors: np.ndarray
    in_range: np.ndarray
    final_values: np.ndarray
    accrual: AccrualModel

    @property
    def num_simulations(self) -> int:
        return int(self.final_values.size)


def simulate_position(
    position: Position,
    position_config: PositionConfig,
    params: DistributionParameters,
    snapshot: PoolSnapshot,
    num_simulations: int = _SIM.NUM_SIMULATIONS,
    rng: RandomSource = None,
    harvest_days: Optional[float] = None,
    prorate_partial_period: bool = False,
) -> SimulationPaths:
    """
    Run ``num_simulations`` independent draws of the terminal price and
    value the position at each one.

    ``harvest_days`` overrides the configured compounding interval.
    """
    if num_simulations < 1:
        raise ValueError("Number of simulations must be at least 1")
    generator = make_rng(rng)
    h = harvest_days or position_config.harvest_days or _SIM.DEFAULT_HARVEST_DAYS
    accrual = AccrualModel.for_position(
        position, position_config, snapshot, h, prorate_partial_period
    )

    prices = np.empty(num_simulations)
    il_factors = np.empty(num_simulations)
    in_range = np.empty(num_simulations, dtype=bool)
    final_values = np.empty(num_simulations)

    for i in range(num_simulations):
        z = standard_normal(generator)
        price = terminal_price(
            position_config.initial_price, params.mu, params.sigma, position_config.days, z
        )
        prices[i] = price
        il_factors[i] = position.impermanent_loss_factor(price)
        in_range[i] = position.in_range(price)
        final_values[i] = accrual.final_value(position, price)

    return SimulationPaths(
        terminal_prices=prices,
        il_factors=il_factors,
        in_range=in_range,
        final_values=final_values,
        accrual=accrual,
    )


# ── Statistics ───────────────────────────────────────────────────────────


@dataclass(frozen=True)
class SimulationStatistics:
    """
    Distribution summary of terminal position values.

    Variances are population variances. ``probability_of_loss`` is a
    probability in [0, 1]. ``value_at_risk_5`` is negative when even the
    5th-percentile outcome is a gain.
    """

    num_simulations: int
    initial_value: float
    mean_final_value: float
    median_final_value: float
    std_final_value: float
    variance_final_value: float
    mean_return: float
    std_return: float
    variance_return: float
    percentile_5: float
    percentile_25: float
    percentile_75: float
    percentile_95: float
    probability_of_loss: float
    value_at_risk_5: float

    @property
    def mean_return_pct(self) -> float:
        return self.mean_return / self.initial_value * 100

    @property
    def std_return_pct(self) -> float:
        return self.std_return / self.initial_value * 100

    def as_dict(self) -> Dict[str, Any]:
        return {
            "num_simulations": self.num_simulations,
            "mean_final_value": round(self.mean_final_value, 2),
            "median_final_value": round(self.median_final_value, 2),
            "std_final_value": round(self.std_final_value, 2),
            "mean_return": round(self.mean_return, 2),
            "mean_return_pct": round(self.mean_return_pct, 4),
            "std_return_pct": round(self.std_return_pct, 4),
            "percentile_5": round(self.percentile_5, 2),
            "percentile_25": round(self.percentile_25, 2),
            "percentile_75": round(self.percentile_75, 2),
            "percentile_95": round(self.percentile_95, 2),
            "probability_of_loss": round(self.probability_of_loss, 4),
            "value_at_risk_5": round(self.value_at_risk_5, 2),
        }


def nearest_rank(sorted_values: Sequence[float], p: float) -> float:
    """Value at index floor(N·p) of an ascending sequence."""
    index = min(math.floor(len(sorted_values) * p), len(sorted_values) - 1)
    return float(sorted_values[index])


def summarize_final_values(
    final_values: Sequence[float], initial_value: float
) -> SimulationStatistics:
    """Aggregate N terminal values into a SimulationStatistics."""
    values = np.sort(np.asarray(final_values, dtype=float))
    n = int(values.size)
    if n == 0:
        raise ValueError("No simulated values to summarize")

    returns = values - initial_value
    var_final = float(np.var(values))
    var_return = float(np.var(returns))
    p5 = nearest_rank(values, 0.05)

    return SimulationStatistics(
        num_simulations=n,
        initial_value=initial_value,
        mean_final_value=float(np.mean(values)),
        median_final_value=float(values[n // 2]),
        std_final_value=math.sqrt(var_final),
        variance_final_value=var_final,
        mean_return=float(np.mean(returns)),
        std_return=math.sqrt(var_return),
        variance_return=var_return,
        percentile_5=p5,
        percentile_25=nearest_rank(values, 0.25),
        percentile_75=nearest_rank(values, 0.75),
        percentile_95=nearest_rank(values, 0.95),
        probability_of_loss=int(np.count_nonzero(values < initial_value)) / n,
        value_at_risk_5=initial_value - p5,
    )
