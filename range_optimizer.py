"""
Range Optimizer
===============

Grid search over range width × harvest interval for a concentrated position.

For each of the 6 × 4 = 24 cells:
    P_a, P_b   = P_0·(1 − w/2), P_0·(1 + w/2)
    E[R]       = mean(final value) − V over a 100-draw inner simulation
    p_in       = Φ(ln(P_b/P_0) / σ√T) − Φ(ln(P_a/P_0) / σ√T)
    score      = E[R]·p_in·ln(CE) − (1 − p_in)·V·0.1

The in-range term rewards concentration only while the price is likely to
stay inside the range; the penalty charges a tenth of the capital per unit
probability of drifting out.

Ties on score resolve to the widest range, then the longest harvest
interval. Each cell draws from its own child generator spawned from the
caller's generator, so results are identical whether cells run in-process
or in a process pool.
"""

import math
from concurrent.futures import ProcessPoolExecutor
from dataclasses import dataclass
from typing import Optional, Sequence, Tuple

import numpy as np
from scipy.stats import norm

from lp_math import PoolSnapshot, PositionConfig, RangeBoundedPosition
from monte_carlo import (
    DistributionParameters,
    RandomSource,
    make_rng,
    simulate_position,
)
from yield_cli.central_config import config

_SIM = config.simulation


@dataclass(frozen=True)
class RangeCandidate:
    """One evaluated grid cell."""

    range_width: float
    price_lower: float
    price_upper: float
    harvest_days: float
    expected_return: float
    in_range_probability: float
    capital_efficiency: float
    score: float


@dataclass(frozen=True)
class RangeOptimization:
    """Best cell plus every evaluated candidate (grid order)."""

    best: RangeCandidate
    candidates: Tuple[RangeCandidate, ...]

    @property
    def price_lower(self) -> float:
        return self.best.price_lower

    @property
    def price_upper(self) -> float:
        return self.best.price_upper

    @property
    def harvest_days(self) -> float:
        return self.best.harvest_days


def range_bounds(initial_price: float, width: float) -> Tuple[float, float]:
    """Range of total width ``width`` (fraction of P_0) centred on P_0."""
    if not 0 < width < 2:
        raise ValueError("Range width must be in (0, 2)")
    half = width / 2
    return initial_price * (1 - half), initial_price * (1 + half)


def probability_in_range(
    initial_price: float,
    price_lower: float,
    price_upper: float,
    sigma: float,
    days: float,
    mu: float = 0.0,
    drift_adjusted: bool = False,
) -> float:
    """
    Probability the terminal price ends inside [P_a, P_b].

    Formula (lognormal, zero drift unless ``drift_adjusted``):
        Φ(ln(P_b/P_0) / σ√T) − Φ(ln(P_a/P_0) / σ√T)

    With σ = 0 the terminal price is deterministic and the result is 1 or 0.
    """
    drift = mu * days if drift_adjusted else 0.0
    if sigma <= 0 or days <= 0:
        terminal = initial_price * math.exp(drift)
        return 1.0 if price_lower <= terminal <= price_upper else 0.0

    scale = sigma * math.sqrt(days)
    upper = (math.log(price_upper / initial_price) - drift) / scale
    lower = (math.log(price_lower / initial_price) - drift) / scale
    return float(norm.cdf(upper) - norm.cdf(lower))


def score_candidate(
    expected_return: float,
    in_range_probability: float,
    capital_efficiency: float,
    initial_value: float,
) -> float:
    """E[R]·p_in·ln(CE) − (1 − p_in)·V·penalty"""
    reward = expected_return * in_range_probability * math.log(capital_efficiency)
    penalty = (1 - in_range_probability) * initial_value * _SIM.OUT_OF_RANGE_PENALTY
    return reward - penalty


def _evaluate_cell(task: tuple) -> RangeCandidate:
    (
        position_config,
        params,
        snapshot,
        width,
        harvest_days,
        inner_draws,
        drift_adjusted,
        rng,
    ) = task
    price_lower, price_upper = range_bounds(position_config.initial_price, width)
    position = RangeBoundedPosition(
        position_config.initial_value,
        position_config.initial_price,
        price_lower,
        price_upper,
    )
    paths = simulate_position(
        position,
        position_config,
        params,
        snapshot,
        num_simulations=inner_draws,
        rng=rng,
        harvest_days=harvest_days,
    )
    expected_return = float(np.mean(paths.final_values)) - position_config.initial_value
    p_in = probability_in_range(
        position_config.initial_price,
        price_lower,
        price_upper,
        params.sigma,
        position_config.days,
        mu=params.mu,
        drift_adjusted=drift_adjusted,
    )
    return RangeCandidate(
        range_width=width,
        price_lower=price_lower,
        price_upper=price_upper,
        harvest_days=harvest_days,
        expected_return=expected_return,
        in_range_probability=p_in,
        capital_efficiency=position.capital_efficiency,
        score=score_candidate(
            expected_return, p_in, position.capital_efficiency, position_config.initial_value
        ),
    )


def optimize_range(
    position_config: PositionConfig,
    params: DistributionParameters,
    snapshot: PoolSnapshot,
    rng: RandomSource = None,
    *,
    range_widths: Optional[Sequence[float]] = None,
    harvest_periods: Optional[Sequence[float]] = None,
    inner_draws: Optional[int] = None,
    drift_adjusted: bool = False,
    max_workers: Optional[int] = None,
) -> RangeOptimization:
    """
    Pick the (P_a, P_b, h) cell with the highest score.

    ``max_workers`` > 1 evaluates cells in a process pool.
    """
    widths = _SIM.RANGE_WIDTHS if range_widths is None else tuple(range_widths)
    periods = _SIM.HARVEST_PERIODS if harvest_periods is None else tuple(harvest_periods)
    draws = inner_draws or _SIM.OPTIMIZER_DRAWS
    if not widths or not periods:
        raise ValueError("Optimizer grid must not be empty")

    grid = [(w, h) for w in widths for h in periods]
    children = make_rng(rng).spawn(len(grid))
    tasks = [
        (position_config, params, snapshot, w, h, draws, drift_adjusted, child)
        for (w, h), child in zip(grid, children)
    ]

    if max_workers and max_workers > 1:
        with ProcessPoolExecutor(max_workers=max_workers) as pool:
            candidates = list(pool.map(_evaluate_cell, tasks))
    else:
        candidates = [_evaluate_cell(task) for task in tasks]

    best = max(candidates, key=lambda c: (c.score, c.range_width, c.harvest_days))
    return RangeOptimization(best=best, candidates=tuple(candidates))
