#!/usr/bin/env python3
"""
Position Analyzer
=================

End-to-end yield/risk analysis of a single liquidity position:

    prices ─▶ estimate (mu, sigma) ─▶ [optimize range] ─▶ simulate N draws
           ─▶ statistics ─▶ risk score ─▶ sensitivity ─▶ recommendation

Plus the decision helpers built on top of analyses: ranking competing
opportunities and deciding whether moving capital is worth the switch.

Risk scoring heuristics:
  - Pool risk (full-range): starts at 100, penalises thin TVL, dead or
    frantic volume, missing stablecoin leg and low farm participation.
  - Range risk (concentrated): starts at 75, penalises low in-range
    probability, high daily volatility and high loss probability.

⚠ Educational model. NOT financial advice.
"""

import math
from dataclasses import dataclass, field, replace
from typing import Any, Dict, List, Optional, Sequence, Tuple

import numpy as np

from lp_math import (
    PoolSnapshot,
    Position,
    PositionConfig,
    UniswapV3Math,
    build_position,
    validate_range,
)
from monte_carlo import (
    AccrualModel,
    DistributionParameters,
    RandomSource,
    SimulationStatistics,
    estimate_log_return_parameters,
    make_rng,
    simulate_position,
    summarize_final_values,
)
from range_optimizer import RangeOptimization, optimize_range, probability_in_range
from yield_cli.central_config import config
from yield_cli.errors import InvalidRangeConfigurationError
from yield_cli.stablecoins import classify_pair, split_pair

_SIM = config.simulation
_RISK = config.risk

FULL_RANGE = "full_range"
RANGE_BOUNDED = "range_bounded"

SENSITIVITY_SCENARIOS: Tuple[Tuple[str, float], ...] = (
    ("no_change", 1.0),
    ("up_10", 1.1),
    ("down_10", 0.9),
    ("up_25", 1.25),
    ("down_25", 0.75),
)


# ── Risk Assessment ──────────────────────────────────────────────────────


@dataclass(frozen=True)
class RiskAssessment:
    score: int
    level: str
    warnings: Tuple[str, ...] = ()
    concentration_risk: Optional[str] = None


def _level(score: int, thresholds: Tuple[int, int, int]) -> str:
    low, medium, high = thresholds
    if score >= low:
        return "low"
    if score >= medium:
        return "medium"
    if score >= high:
        return "high"
    return "critical"


def assess_pool_risk(snapshot: PoolSnapshot, pair: Optional[str] = None) -> RiskAssessment:
    """
    Pool-level risk score for a full-range position (0–100, higher = safer).

    Rules:
        TVL < $100k −40 | < $1M −20 | < $10M −5
        volume/TVL < 0.01 −15 | > 2 −10
        stable-stable pair +15 | no stablecoin −10
        staked TVL < 10% of pool TVL −10
    """
    score = 100
    warnings: List[str] = []

    if snapshot.tvl_lp < 100_000:
        score -= 40
        warnings.append("Very low TVL (< $100k): high slippage and exit risk")
    elif snapshot.tvl_lp < 1_000_000:
        score -= 20
        warnings.append("Low TVL (< $1M)")
    elif snapshot.tvl_lp < 10_000_000:
        score -= 5

    ratio = snapshot.volume_to_tvl_ratio
    if ratio < 0.01:
        score -= 15
        warnings.append("Very low volume/TVL: fee income will be thin")
    elif ratio > 2:
        score -= 10
        warnings.append("Volume/TVL above 2: possible wash trading or short-lived spike")

    tokens = split_pair(pair) if pair else ()
    if len(tokens) == 2:
        kind = classify_pair(*tokens)
        if kind == "stable-stable":
            score += 15
        elif kind == "volatile-volatile":
            score -= 10
            warnings.append("No stablecoin leg: both sides exposed to price swings")

    if snapshot.tvl_staked < snapshot.tvl_lp * 0.1:
        score -= 10
        warnings.append("Under 10% of liquidity is staked in the farm")

    score = max(0, min(100, score))
    return RiskAssessment(
        score=score, level=_level(score, (80, 60, 40)), warnings=tuple(warnings)
    )


def concentration_risk(capital_efficiency: float) -> str:
    if capital_efficiency < 2:
        return "low"
    if capital_efficiency < 4:
        return "medium"
    if capital_efficiency < 6:
        return "high"
    return "very high"


def assess_range_risk(
    in_range_probability: float,
    daily_sigma: float,
    capital_efficiency: float,
    probability_of_loss: float,
) -> RiskAssessment:
    """
    Risk score for a concentrated position (0–100, higher = safer).

    Rules:
        in-range probability < 50%  −20
        daily volatility > 5%       −15
        capital efficiency > 5      warning only
        probability of loss > 30%   −10
    """
    score = 75
    warnings: List[str] = []

    if in_range_probability < 0.5:
        score -= 20
        warnings.append(
            f"Price likely to leave the range ({in_range_probability * 100:.0f}% in-range)"
        )
    if daily_sigma > 0.05:
        score -= 15
        warnings.append(f"High daily volatility ({daily_sigma * 100:.1f}%)")
    if capital_efficiency > 5:
        warnings.append(
            f"Very concentrated range ({capital_efficiency:.1f}x): IL amplified out of range"
        )
    if probability_of_loss > 0.3:
        score -= 10
        warnings.append(f"{probability_of_loss * 100:.0f}% of simulations lose money")

    return RiskAssessment(
        score=score,
        level=_level(score, (70, 50, 30)),
        warnings=tuple(warnings),
        concentration_risk=concentration_risk(capital_efficiency),
    )


# ── Deterministic Helpers ────────────────────────────────────────────────


def sensitivity_analysis(
    position: Position,
    accrual: AccrualModel,
    scenarios: Sequence[Tuple[str, float]] = SENSITIVITY_SCENARIOS,
) -> Dict[str, float]:
    """Return % at fixed terminal price ratios (P/P_0), same accrual as the simulation."""
    results = {}
    for label, ratio in scenarios:
        price = position.initial_price * ratio
        final = accrual.final_value(position, price)
        results[label] = (final - position.initial_value) / position.initial_value * 100
    return results


def break_even_days(
    gas_cost_per_tx: float, initial_value: float, total_apy: float
) -> float:
    """
    Days of yield needed to pay for one harvest transaction.

    Formula: gas / (V × APY / 365). Infinite when the position earns nothing.
    """
    daily_yield = initial_value * total_apy / _SIM.DAYS_PER_YEAR
    if daily_yield <= 0:
        return math.inf
    return gas_cost_per_tx / daily_yield


def optimize_harvest_interval(
    position: Position,
    position_config: PositionConfig,
    snapshot: PoolSnapshot,
    harvest_periods: Optional[Sequence[float]] = None,
    prorate_partial_period: bool = False,
) -> float:
    """
    Harvest interval that maximizes (yield − gas) with the price held at P_0.

    More frequent compounding earns more but pays gas on every harvest, so
    small positions favour long intervals. Ties resolve to the longest one.
    """
    periods = _SIM.HARVEST_PERIODS if harvest_periods is None else tuple(harvest_periods)
    if not periods:
        raise ValueError("Harvest grid must not be empty")

    def net_value(h: float) -> Tuple[float, float]:
        accrual = AccrualModel.for_position(
            position, position_config, snapshot, h, prorate_partial_period
        )
        return accrual.final_value(position, position.initial_price), h

    return max(net_value(h) for h in periods)[1]


def outcome_warnings(
    total_return: float,
    total_gas_cost: float,
    break_even: float,
    days: float,
) -> Tuple[str, ...]:
    """Warnings that depend on the simulated outcome rather than the pool."""
    warnings = []
    if 0 < total_return < total_gas_cost:
        warnings.append(
            "Gas costs consume most of the return: consider a longer holding period"
        )
    if total_return < 0:
        warnings.append("Expected negative return under current conditions")
    if break_even > days:
        label = f"{break_even:.1f} days" if math.isfinite(break_even) else "never"
        warnings.append(f"Break-even period ({label}) exceeds the holding period")
    return tuple(warnings)


def recommend_action(risk_level: str, annualized_apy_pct: float, is_profitable: bool) -> str:
    """
    ENTER    — low risk, APY > 15%, profitable
    CONSIDER — medium risk, APY > 10%, profitable
    AVOID    — everything else
    """
    if risk_level == "low" and annualized_apy_pct > 15 and is_profitable:
        return "ENTER"
    if risk_level == "medium" and annualized_apy_pct > 10 and is_profitable:
        return "CONSIDER"
    return "AVOID"


# ── Analysis Result ──────────────────────────────────────────────────────


@dataclass(frozen=True)
class PositionAnalysis:
    """Simulation result for one position, with everything derived from it."""

    position_type: str
    position: PositionConfig
    distribution: DistributionParameters
    statistics: SimulationStatistics
    final_values: Tuple[float, ...]
    accrual: AccrualModel
    capital_efficiency: float
    in_range_probability: float
    simulated_in_range: float
    mean_il_factor: float
    volume_to_tvl_ratio: float
    risk: RiskAssessment
    sensitivity: Dict[str, float] = field(default_factory=dict)
    optimization: Optional[RangeOptimization] = None
    pair: Optional[str] = None
    harvest_optimized: bool = False

    @property
    def initial_value(self) -> float:
        return self.position.initial_value

    @property
    def days(self) -> int:
        return self.position.days

    @property
    def expected_value(self) -> float:
        return self.statistics.mean_final_value

    @property
    def total_return(self) -> float:
        return self.statistics.mean_return

    @property
    def total_return_pct(self) -> float:
        return self.statistics.mean_return_pct

    @property
    def annualized_apy_pct(self) -> float:
        """Simple annualization: (return % / days) × 365"""
        return self.total_return_pct / self.days * _SIM.DAYS_PER_YEAR

    @property
    def impermanent_loss_pct(self) -> float:
        return (self.mean_il_factor - 1) * 100

    @property
    def is_profitable(self) -> bool:
        return self.total_return > 0

    @property
    def break_even_days(self) -> float:
        return break_even_days(
            self.accrual.gas_cost_per_tx,
            self.initial_value,
            self.accrual.trading_fee_apy + self.accrual.farming_apy,
        )

    @property
    def recommendation(self) -> str:
        return recommend_action(self.risk.level, self.annualized_apy_pct, self.is_profitable)

    def as_dict(self) -> Dict[str, Any]:
        stats = self.statistics
        result = {
            "position_type": self.position_type,
            "pair": self.pair,
            "initial_value": self.initial_value,
            "days": self.days,
            "expected_value": round(self.expected_value, 2),
            "total_return": round(self.total_return, 2),
            "total_return_pct": round(self.total_return_pct, 4),
            "annualized_apy_pct": round(self.annualized_apy_pct, 2),
            "impermanent_loss_pct": round(self.impermanent_loss_pct, 4),
            "trading_fee_apy_pct": round(self.accrual.trading_fee_apy * 100, 2),
            "farming_apy_pct": round(self.accrual.farming_apy * 100, 2),
            "fee_tier": self.accrual.fee_tier,
            "harvest_days": self.accrual.harvest_days,
            "harvest_optimized": self.harvest_optimized,
            "harvest_count": self.accrual.periods,
            "gas_cost_per_tx": round(self.accrual.gas_cost_per_tx, 4),
            "total_gas_cost": round(self.accrual.total_gas_cost, 4),
            "break_even_days": (
                round(self.break_even_days, 2) if math.isfinite(self.break_even_days) else None
            ),
            "capital_efficiency": round(self.capital_efficiency, 4),
            "in_range_probability_pct": round(self.in_range_probability * 100, 2),
            "simulated_in_range_pct": round(self.simulated_in_range * 100, 2),
            "volume_to_tvl_ratio": round(self.volume_to_tvl_ratio, 4),
            "daily_volatility_pct": round(self.distribution.sigma * 100, 4),
            "annualized_volatility_pct": round(self.distribution.annualized_sigma * 100, 2),
            "risk_score": self.risk.score,
            "risk_level": self.risk.level,
            "warnings": list(self.risk.warnings),
            "recommendation": self.recommendation,
            "sensitivity_pct": {k: round(v, 4) for k, v in self.sensitivity.items()},
            **stats.as_dict(),
        }
        if self.position_type == RANGE_BOUNDED:
            result.update(
                {
                    "price_lower": round(self.position.price_lower, 6),
                    "price_upper": round(self.position.price_upper, 6),
                    "range_width_pct": UniswapV3Math.range_width_pct(
                        self.position.initial_price,
                        self.position.price_lower,
                        self.position.price_upper,
                    ),
                    "concentration_risk": self.risk.concentration_risk,
                    "optimized": self.optimization is not None,
                }
            )
        return result


def _run(
    position_type: str,
    position: Position,
    position_config: PositionConfig,
    params: DistributionParameters,
    snapshot: PoolSnapshot,
    num_simulations: int,
    rng: np.random.Generator,
    prorate_partial_period: bool,
    optimization: Optional[RangeOptimization],
    pair: Optional[str],
    harvest_optimized: bool = False,
) -> PositionAnalysis:
    paths = simulate_position(
        position,
        position_config,
        params,
        snapshot,
        num_simulations=num_simulations,
        rng=rng,
        prorate_partial_period=prorate_partial_period,
    )
    stats = summarize_final_values(paths.final_values, position_config.initial_value)

    if position_type == RANGE_BOUNDED:
        p_in = probability_in_range(
            position_config.initial_price,
            position_config.price_lower,
            position_config.price_upper,
            params.sigma,
            position_config.days,
        )
        risk = assess_range_risk(
            p_in, params.sigma, position.capital_efficiency, stats.probability_of_loss
        )
    else:
        p_in = 1.0
        risk = assess_pool_risk(snapshot, pair)

    accrual = paths.accrual
    break_even = break_even_days(
        accrual.gas_cost_per_tx,
        position_config.initial_value,
        accrual.trading_fee_apy + accrual.farming_apy,
    )
    risk = replace(
        risk,
        warnings=risk.warnings
        + outcome_warnings(
            stats.mean_return, accrual.total_gas_cost, break_even, position_config.days
        ),
    )

    return PositionAnalysis(
        position_type=position_type,
        position=position_config,
        distribution=params,
        statistics=stats,
        final_values=tuple(float(v) for v in np.sort(paths.final_values)),
        accrual=paths.accrual,
        capital_efficiency=position.capital_efficiency,
        in_range_probability=p_in,
        simulated_in_range=float(np.mean(paths.in_range)),
        mean_il_factor=float(np.mean(paths.il_factors)),
        volume_to_tvl_ratio=snapshot.volume_to_tvl_ratio,
        risk=risk,
        sensitivity=sensitivity_analysis(position, paths.accrual),
        optimization=optimization,
        pair=pair,
        harvest_optimized=harvest_optimized,
    )


# ── Public Entry Points ──────────────────────────────────────────────────


def analyze_full_range_position(
    position_config: PositionConfig,
    snapshot: PoolSnapshot,
    params: DistributionParameters,
    *,
    num_simulations: int = _SIM.NUM_SIMULATIONS,
    rng: RandomSource = None,
    prorate_partial_period: bool = False,
    pair: Optional[str] = None,
) -> PositionAnalysis:
    """
    Simulate a constant-product position; any range bounds are ignored.

    Without an explicit ``harvest_days`` the interval is chosen from the
    harvest grid by ``optimize_harvest_interval``.
    """
    resolved = replace(position_config, price_lower=None, price_upper=None)
    position = build_position(resolved)
    harvest_optimized = resolved.harvest_days is None
    if harvest_optimized:
        resolved = replace(
            resolved,
            harvest_days=optimize_harvest_interval(
                position, resolved, snapshot, prorate_partial_period=prorate_partial_period
            ),
        )
    return _run(
        FULL_RANGE,
        position,
        resolved,
        params,
        snapshot,
        num_simulations,
        make_rng(rng),
        prorate_partial_period,
        None,
        pair,
        harvest_optimized,
    )


def analyze_range_bounded_position(
    position_config: PositionConfig,
    snapshot: PoolSnapshot,
    params: DistributionParameters,
    *,
    optimize: bool = False,
    num_simulations: int = _SIM.NUM_SIMULATIONS,
    rng: RandomSource = None,
    prorate_partial_period: bool = False,
    optimizer_draws: Optional[int] = None,
    max_workers: Optional[int] = None,
    pair: Optional[str] = None,
) -> PositionAnalysis:
    """
    Simulate a concentrated position.

    An explicit (P_a, P_b, h) in ``position_config`` is used as given;
    otherwise ``optimize=True`` runs the range optimizer with the estimated
    volatility. Neither raises InvalidRangeConfigurationError.
    """
    generator = make_rng(rng)
    optimization = None

    if position_config.has_explicit_range:
        validate_range(
            position_config.price_lower,
            position_config.initial_price,
            position_config.price_upper,
        )
        resolved = position_config
    elif optimize:
        optimization = optimize_range(
            position_config,
            params,
            snapshot,
            generator,
            inner_draws=optimizer_draws,
            max_workers=max_workers,
        )
        resolved = replace(
            position_config,
            price_lower=optimization.price_lower,
            price_upper=optimization.price_upper,
            harvest_days=optimization.harvest_days,
        )
    else:
        raise InvalidRangeConfigurationError(
            "Range-bounded analysis needs price_lower, price_upper and harvest_days, "
            "or optimize=True"
        )

    position = build_position(resolved)
    return _run(
        RANGE_BOUNDED,
        position,
        resolved,
        params,
        snapshot,
        num_simulations,
        generator,
        prorate_partial_period,
        optimization,
        pair,
        optimization is not None,
    )


def analyze_position(
    prices: Sequence[float],
    snapshot: PoolSnapshot,
    position_config: PositionConfig,
    position_type: Optional[str] = None,
    **kwargs: Any,
) -> PositionAnalysis:
    """
    Full pipeline from a raw price series.

    ``position_type`` defaults to range-bounded when the config carries
    bounds or ``optimize=True`` is passed, full-range otherwise.
    """
    params = estimate_log_return_parameters(prices)
    if position_type is None:
        bounded = position_config.price_lower is not None or kwargs.get("optimize")
        position_type = RANGE_BOUNDED if bounded else FULL_RANGE

    if position_type == RANGE_BOUNDED:
        return analyze_range_bounded_position(position_config, snapshot, params, **kwargs)
    if position_type == FULL_RANGE:
        for key in ("optimize", "optimizer_draws", "max_workers"):
            kwargs.pop(key, None)
        return analyze_full_range_position(position_config, snapshot, params, **kwargs)
    raise ValueError(f"Unknown position type: {position_type}")


# ── Opportunity Comparison ───────────────────────────────────────────────


@dataclass(frozen=True)
class ReallocationDecision:
    should_reallocate: bool
    apy_gain_pct: float
    net_gain: float
    reason: str


def risk_adjusted_return(analysis: PositionAnalysis) -> float:
    """Mean return over its standard deviation; infinite for riskless gains."""
    stats = analysis.statistics
    if stats.std_return <= _RISK.ZERO_VARIANCE_EPSILON:
        if stats.mean_return > 0:
            return math.inf
        return 0.0 if stats.mean_return == 0 else -math.inf
    return stats.mean_return / stats.std_return


def rank_opportunities(
    analyses: Sequence[PositionAnalysis], by: str = "apy"
) -> List[PositionAnalysis]:
    """Best first, by annualized APY (``"apy"``) or risk-adjusted return (``"risk_adjusted"``)."""
    if by == "apy":
        key = lambda a: a.annualized_apy_pct
    elif by == "risk_adjusted":
        key = risk_adjusted_return
    else:
        raise ValueError(f"Unknown ranking criterion: {by}")
    return sorted(analyses, key=key, reverse=True)


def compare_opportunities(
    current: PositionAnalysis,
    candidate: PositionAnalysis,
    switch_gas_cost: float = 0.0,
) -> ReallocationDecision:
    """
    Decide whether to move the current capital into the candidate.

    Requires an APY gain of at least 1 percentage point and a positive
    expected USD gain over the candidate's horizon after paying for the switch.
    """
    apy_gain = candidate.annualized_apy_pct - current.annualized_apy_pct
    horizon = candidate.days / _SIM.DAYS_PER_YEAR
    net_gain = apy_gain / 100 * current.initial_value * horizon - switch_gas_cost

    if apy_gain < _RISK.MIN_REALLOCATION_APY_GAIN:
        return ReallocationDecision(
            False,
            apy_gain,
            net_gain,
            f"APY gain {apy_gain:.2f} pts below {_RISK.MIN_REALLOCATION_APY_GAIN} pt threshold",
        )
    if net_gain <= 0:
        return ReallocationDecision(
            False, apy_gain, net_gain, "Switching cost exceeds the expected extra yield"
        )
    return ReallocationDecision(
        True, apy_gain, net_gain, f"+{apy_gain:.2f} pts APY, ${net_gain:.2f} net gain"
    )
