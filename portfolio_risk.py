"""
Portfolio Risk Aggregator
=========================

Combines per-position results (LP or lending) into portfolio-level risk.

    weights          w_i = allocation_i / Σ allocation
    variance         σ_p² = Σ_i Σ_j w_i·w_j·σ_i·σ_j·ρ_ij
    diversification  (Σ w_i·σ_i − σ_p) / Σ w_i·σ_i × 100
    VaR (parametric) TI·σ_p·z,  z = 1.645 (95%), 2.326 (99%)
    CVaR 5%          TI·σ_p·φ(1.645) / 0.05
    Sharpe           return % / (σ_p·100)
    Sortino          Sharpe·√2  (downside deviation approximated as σ/√2)

Correlations between positions come from a Pearson matrix over the
volatile assets they hold. Assets with no return history default to 0.5;
degenerate (zero-variance) histories default to 0.0.
"""

import math
from dataclasses import dataclass, replace
from typing import Dict, Mapping, Optional, Sequence, Tuple

import numpy as np
from scipy.stats import norm

from yield_cli.central_config import config
from yield_cli.stablecoins import volatile_assets

_SIM = config.simulation
_RISK = config.risk


# ── Positions ────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class PortfolioPosition:
    """
    Summary of one position as the aggregator sees it.

    ``volatility`` is the standard deviation of the position's return as a
    fraction of its allocation. ``weight`` is filled in by the aggregator.
    """

    label: str
    position_type: str
    assets: Tuple[str, ...]
    allocation: float
    expected_return: float
    return_pct: float
    volatility: float
    period_days: float = _SIM.DAYS_PER_YEAR
    sharpe_ratio: Optional[float] = None
    weight: float = 0.0

    def __post_init__(self):
        if self.allocation < 0:
            raise ValueError(f"Allocation for {self.label} cannot be negative")
        if self.volatility < 0:
            raise ValueError(f"Volatility for {self.label} cannot be negative")
        if self.period_days <= 0:
            raise ValueError(f"Holding period for {self.label} must be positive")

    @property
    def volatile_assets(self) -> Tuple[str, ...]:
        return tuple(volatile_assets(self.assets))

    @classmethod
    def from_analysis(cls, analysis, label: Optional[str] = None, assets=None):
        """Summarize a position_analyzer.PositionAnalysis."""
        stats = analysis.statistics
        pair = analysis.pair or ""
        volatility = stats.std_final_value / analysis.initial_value
        return cls(
            label=label or pair or analysis.position_type,
            position_type=analysis.position_type,
            assets=tuple(assets) if assets is not None else ((pair,) if pair else ()),
            allocation=analysis.initial_value,
            expected_return=stats.mean_return,
            return_pct=stats.mean_return_pct,
            volatility=volatility,
            period_days=analysis.days,
            sharpe_ratio=(
                stats.mean_return_pct / (volatility * 100) if volatility > 0 else None
            ),
        )

    @classmethod
    def from_lending(cls, analysis, asset: str, label: Optional[str] = None):
        """Summarize a lending_simulator.LendingAnalysis."""
        stats = analysis.statistics
        return cls(
            label=label or f"{asset} lending",
            position_type="lending",
            assets=(asset,),
            allocation=analysis.initial_value,
            expected_return=stats.mean_return,
            return_pct=stats.mean_return_pct,
            volatility=stats.std_final_value / analysis.initial_value,
            period_days=analysis.days,
            sharpe_ratio=analysis.sharpe_ratio,
        )


def assign_weights(positions: Sequence[PortfolioPosition]) -> Tuple[PortfolioPosition, ...]:
    """New copies with w_i = allocation_i / Σ allocation."""
    if not positions:
        raise ValueError("Portfolio has no positions")
    total = sum(p.allocation for p in positions)
    if total <= 0:
        raise ValueError("Total allocation must be positive")
    return tuple(replace(p, weight=p.allocation / total) for p in positions)


# ── Correlation ──────────────────────────────────────────────────────────


def log_returns(prices: Sequence[float]) -> np.ndarray:
    series = np.asarray(prices, dtype=float)
    if series.size < 2:
        return np.empty(0)
    if np.any(series <= 0):
        raise ValueError("Prices must be positive")
    return np.log(series[1:] / series[:-1])


def pearson_correlation(returns1: Sequence[float], returns2: Sequence[float]) -> float:
    """
    Pearson correlation with population moments over the overlapping window.

    Series of different length are aligned on their most recent
    observations. Overlap below 2 or near-zero variance gives 0.0.
    """
    a = np.asarray(returns1, dtype=float)
    b = np.asarray(returns2, dtype=float)
    n = min(a.size, b.size)
    if n < 2:
        return 0.0
    a = a[-n:]
    b = b[-n:]

    da = a - a.mean()
    db = b - b.mean()
    std_a = math.sqrt(float(np.mean(da * da)))
    std_b = math.sqrt(float(np.mean(db * db)))
    if std_a < _RISK.ZERO_VARIANCE_EPSILON or std_b < _RISK.ZERO_VARIANCE_EPSILON:
        return 0.0
    rho = float(np.mean(da * db)) / (std_a * std_b)
    return max(-1.0, min(1.0, rho))


@dataclass(frozen=True)
class CorrelationMatrix:
    """Symmetric asset correlation matrix with unit diagonal."""

    assets: Tuple[str, ...]
    matrix: np.ndarray

    def __post_init__(self):
        n = len(self.assets)
        if self.matrix.shape != (n, n):
            raise ValueError("Correlation matrix shape does not match asset list")

    def correlation(self, asset1: str, asset2: str) -> float:
        if asset1 == asset2:
            return 1.0
        i = self.assets.index(asset1)
        j = self.assets.index(asset2)
        return float(self.matrix[i, j])

    def __contains__(self, asset: str) -> bool:
        return asset in self.assets

    def as_dict(self) -> Dict[str, Dict[str, float]]:
        return {
            a: {b: round(float(self.matrix[i, j]), 4) for j, b in enumerate(self.assets)}
            for i, a in enumerate(self.assets)
        }

    @classmethod
    def from_mapping(cls, data: Mapping[str, Mapping[str, float]]) -> "CorrelationMatrix":
        """Caller-supplied pairwise correlations; missing pairs take the fallback."""
        rows = {
            k.strip().upper(): {s.strip().upper(): v for s, v in row.items()}
            for k, row in data.items()
        }
        assets = tuple(rows)
        n = len(assets)
        matrix = np.eye(n)
        for i in range(n):
            for j in range(i + 1, n):
                a, b = assets[i], assets[j]
                rho = rows[a].get(b, rows[b].get(a, _RISK.MISSING_DATA_CORRELATION))
                matrix[i, j] = matrix[j, i] = max(-1.0, min(1.0, float(rho)))
        return cls(assets=assets, matrix=matrix)


def build_correlation_matrix(
    assets: Sequence[str],
    asset_returns: Mapping[str, Optional[Sequence[float]]],
) -> CorrelationMatrix:
    """
    Pairwise Pearson matrix over ``assets``.

    An asset whose return series is missing or empty correlates 0.5 with
    everything else.
    """
    names = tuple(assets)
    n = len(names)
    matrix = np.eye(n)
    for i in range(n):
        for j in range(i + 1, n):
            r1 = asset_returns.get(names[i])
            r2 = asset_returns.get(names[j])
            if r1 is None or r2 is None or len(r1) == 0 or len(r2) == 0:
                rho = _RISK.MISSING_DATA_CORRELATION
            else:
                rho = pearson_correlation(r1, r2)
            matrix[i, j] = matrix[j, i] = rho
    return CorrelationMatrix(assets=names, matrix=matrix)


def position_correlation(
    p1: PortfolioPosition, p2: PortfolioPosition, matrix: CorrelationMatrix
) -> float:
    """
    Mean asset correlation across the two positions' volatile assets.

    A position holding only stablecoins is treated as uncorrelated.
    """
    assets1 = p1.volatile_assets
    assets2 = p2.volatile_assets
    if not assets1 or not assets2:
        return 0.0
    pairs = []
    for a in assets1:
        for b in assets2:
            if a == b:
                pairs.append(1.0)
            elif a in matrix and b in matrix:
                pairs.append(matrix.correlation(a, b))
            else:
                pairs.append(_RISK.MISSING_DATA_CORRELATION)
    return sum(pairs) / len(pairs)


# ── Portfolio Metrics ────────────────────────────────────────────────────


@dataclass(frozen=True)
class PortfolioMetrics:
    positions: Tuple[PortfolioPosition, ...]
    correlation_matrix: CorrelationMatrix
    position_correlations: np.ndarray
    total_investment: float
    expected_final_value: float
    expected_return: float
    expected_return_pct: float
    annualized_apy_pct: float
    portfolio_volatility: float
    portfolio_variance: float
    diversification_benefit_pct: float
    var_95: float
    var_99: float
    cvar_5: float
    sharpe_ratio: float
    sortino_ratio: float
    average_correlation: float

    def as_dict(self):
        return {
            "total_investment": round(self.total_investment, 2),
            "expected_final_value": round(self.expected_final_value, 2),
            "expected_return": round(self.expected_return, 2),
            "expected_return_pct": round(self.expected_return_pct, 4),
            "annualized_apy_pct": round(self.annualized_apy_pct, 2),
            "portfolio_volatility_pct": round(self.portfolio_volatility * 100, 4),
            "diversification_benefit_pct": round(self.diversification_benefit_pct, 2),
            "var_95": round(self.var_95, 2),
            "var_99": round(self.var_99, 2),
            "cvar_5": round(self.cvar_5, 2),
            "sharpe_ratio": round(self.sharpe_ratio, 4),
            "sortino_ratio": round(self.sortino_ratio, 4),
            "average_correlation": round(self.average_correlation, 4),
            "weights": {p.label: round(p.weight, 4) for p in self.positions},
            "correlation_matrix": self.correlation_matrix.as_dict(),
        }


def _position_correlation_matrix(
    positions: Sequence[PortfolioPosition],
    matrix: CorrelationMatrix,
    flat_correlation: Optional[float],
) -> np.ndarray:
    n = len(positions)
    rho = np.eye(n)
    for i in range(n):
        for j in range(i + 1, n):
            if flat_correlation is not None:
                value = flat_correlation
            else:
                value = position_correlation(positions[i], positions[j], matrix)
            rho[i, j] = rho[j, i] = value
    return rho


def evaluate_portfolio(
    positions: Sequence[PortfolioPosition],
    asset_returns: Optional[Mapping[str, Optional[Sequence[float]]]] = None,
    correlation_matrix: Optional[CorrelationMatrix] = None,
    flat_correlation: Optional[float] = None,
) -> PortfolioMetrics:
    """
    Aggregate positions into portfolio risk metrics.

    Correlations come from ``correlation_matrix`` when given, else from
    ``asset_returns`` (daily log returns per symbol). ``flat_correlation``
    overrides every off-diagonal position pair with one value.
    """
    weighted = assign_weights(positions)
    total_investment = sum(p.allocation for p in weighted)

    if correlation_matrix is None:
        assets = volatile_assets(a for p in weighted for a in p.assets)
        returns = {k.strip().upper(): v for k, v in (asset_returns or {}).items()}
        correlation_matrix = build_correlation_matrix(assets, returns)

    rho = _position_correlation_matrix(weighted, correlation_matrix, flat_correlation)
    w = np.array([p.weight for p in weighted])
    sigma = np.array([p.volatility for p in weighted])
    ws = w * sigma
    variance = float(max(ws @ rho @ ws, 0.0))
    volatility = math.sqrt(variance)

    weighted_vol = float(np.sum(ws))
    diversification = (
        (weighted_vol - volatility) / weighted_vol * 100 if weighted_vol > 0 else 0.0
    )

    expected_return = sum(p.expected_return for p in weighted)
    expected_final = total_investment + expected_return
    expected_return_pct = expected_return / total_investment * 100
    avg_period = sum(p.period_days for p in weighted) / len(weighted)
    if expected_final > 0:
        annualized = (
            (expected_final / total_investment) ** (_SIM.DAYS_PER_YEAR / avg_period) - 1
        ) * 100
    else:
        annualized = -100.0

    sharpe = expected_return_pct / (volatility * 100) if volatility > 0 else 0.0
    n = len(weighted)
    upper = [rho[i, j] for i in range(n) for j in range(i + 1, n)]

    return PortfolioMetrics(
        positions=weighted,
        correlation_matrix=correlation_matrix,
        position_correlations=rho,
        total_investment=total_investment,
        expected_final_value=expected_final,
        expected_return=expected_return,
        expected_return_pct=expected_return_pct,
        annualized_apy_pct=annualized,
        portfolio_volatility=volatility,
        portfolio_variance=variance,
        diversification_benefit_pct=diversification,
        var_95=total_investment * volatility * _RISK.Z_95,
        var_99=total_investment * volatility * _RISK.Z_99,
        cvar_5=total_investment * volatility * float(norm.pdf(_RISK.Z_95)) / _RISK.TAIL_PROBABILITY,
        sharpe_ratio=sharpe,
        sortino_ratio=sharpe * math.sqrt(2),
        average_correlation=float(np.mean(upper)) if upper else 0.0,
    )
