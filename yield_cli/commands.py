"""
LP Yield Simulator — Command Implementations
=============================================

All CLI command handlers live here, keeping run.py as a thin
argparse dispatcher. Each public function corresponds to a
subcommand (info, simulate, portfolio, lending).

Inputs are JSON documents produced by the data collectors (price
history, pool snapshot, position config). Nothing is written to disk.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

from yield_cli.central_config import FEE_TIER_LABELS, PROJECT_NAME, PROJECT_VERSION, config

DISCLAIMER = "⚠️  Educational simulation — NOT financial advice"


def _load_json(path: str) -> dict[str, Any]:
    data = json.loads(Path(path).read_text())
    if not isinstance(data, dict):
        raise ValueError(f"{path}: expected a JSON object at the top level")
    return data


def _fmt_usd(value: float) -> str:
    return f"${value:,.2f}"


def _fee_tier_label(tier: float) -> str:
    return FEE_TIER_LABELS.get(tier, f"{tier * 100:.2f}%")


# ── info ─────────────────────────────────────────────────────────────────


def cmd_info() -> None:
    """Display engine overview and defaults."""
    sim = config.simulation
    risk = config.risk
    print(f"\n📊 {PROJECT_NAME} v{PROJECT_VERSION}")
    print("=" * 55)
    print("🎲 Model      : lognormal prices, Box–Muller draws, MLE parameters")
    print("💧 Positions  : full-range (V2) and range-bounded (V3) liquidity, lending")
    print("📐 Risk       : percentiles, VaR/CVaR, Sharpe/Sortino, correlations")
    print()
    print("📁 Files:")
    print("   run.py                — CLI entry point")
    print("   lp_math.py            — position value model and yield math")
    print("   monte_carlo.py        — estimator, simulator, statistics")
    print("   range_optimizer.py    — range width × harvest grid search")
    print("   position_analyzer.py  — risk score, sensitivity, reallocation")
    print("   portfolio_risk.py     — portfolio aggregation")
    print("   lending_simulator.py  — jump-rate lending Monte Carlo")
    print("   yield_cli/            — config, errors, token classes, commands")
    print()
    print("⚙️  Defaults:")
    print(f"   Simulations        : {sim.NUM_SIMULATIONS} ({sim.OPTIMIZER_DRAWS} per optimizer cell)")
    print(f"   Range widths       : {', '.join(f'{w:.0%}' for w in sim.RANGE_WIDTHS)}")
    print(f"   Harvest intervals  : {', '.join(f'{h}d' for h in sim.HARVEST_PERIODS)}")
    print(f"   Gas per LP tx      : {sim.GAS_PER_TX} units")
    print(f"   VaR quantiles      : z95={risk.Z_95}, z99={risk.Z_99}")
    print()
    print("🔗 Quick Start:")
    print("   python run.py simulate --input scenario.json --seed 42")
    print("   python run.py simulate --input scenario.json --optimize")
    print("   python run.py portfolio --input portfolio.json")
    print("   python run.py lending --input lending.json")
    print()
    print(DISCLAIMER)


# ── simulate ─────────────────────────────────────────────────────────────


def _print_position(result: dict[str, Any]) -> None:
    kind = "Range-bounded (V3)" if result["position_type"] == "range_bounded" else "Full-range (V2)"
    title = f"{result['pair']} — {kind}" if result.get("pair") else kind
    print(f"\n💧 {title}")
    print("=" * 55)
    print(f"💰 Capital          : {_fmt_usd(result['initial_value'])} for {result['days']} days")
    if result["position_type"] == "range_bounded":
        tag = " (optimized)" if result["optimized"] else ""
        print(
            f"📐 Range            : {result['price_lower']:.4f} – {result['price_upper']:.4f}"
            f"  ({result['range_width_pct']}% wide){tag}"
        )
        print(f"🎯 Capital eff.     : {result['capital_efficiency']:.2f}x"
              f"  (concentration risk: {result['concentration_risk']})")
        print(f"📍 In range         : {result['in_range_probability_pct']}% analytic,"
              f" {result['simulated_in_range_pct']}% simulated")
    harvest_tag = " (optimized)" if result["harvest_optimized"] else ""
    print(f"🔄 Harvest          : every {result['harvest_days']}d × {result['harvest_count']}"
          f"  (gas {_fmt_usd(result['total_gas_cost'])}){harvest_tag}")
    print(f"🏷️  Fee tier         : {_fee_tier_label(result['fee_tier'])}")
    print(f"📈 Fee APY          : {result['trading_fee_apy_pct']}%")
    print(f"🌾 Farming APY      : {result['farming_apy_pct']}%")
    print(f"📉 Mean IL          : {result['impermanent_loss_pct']:.2f}%")
    print()
    print(f"🎲 Simulations      : {result['num_simulations']}")
    print(f"   Expected value   : {_fmt_usd(result['expected_value'])}")
    print(f"   Return           : {_fmt_usd(result['total_return'])} ({result['total_return_pct']:.2f}%)")
    print(f"   Annualized APY   : {result['annualized_apy_pct']}%")
    print(f"   P5 / median / P95: {_fmt_usd(result['percentile_5'])} / "
          f"{_fmt_usd(result['median_final_value'])} / {_fmt_usd(result['percentile_95'])}")
    print(f"   P(loss)          : {result['probability_of_loss'] * 100:.1f}%")
    print(f"   VaR (5%)         : {_fmt_usd(result['value_at_risk_5'])}")
    print()
    print("🧪 Sensitivity (return % at P/P0):")
    for label, value in result["sensitivity_pct"].items():
        print(f"   {label:<10} {value:+.2f}%")
    print()
    print(f"🛡️  Risk             : {result['risk_score']}/100 ({result['risk_level']})")
    for warning in result["warnings"]:
        print(f"   ⚠️  {warning}")
    if result["break_even_days"] is not None:
        print(f"⏱️  Break-even       : {result['break_even_days']} days per harvest")
    print(f"✅ Recommendation   : {result['recommendation']}")


def cmd_simulate(
    input_path: str,
    draws: int | None = None,
    seed: int | None = None,
    optimize: bool = False,
    prorate: bool = False,
    workers: int | None = None,
) -> dict[str, Any]:
    """Run the position simulation described by a scenario file."""
    from lp_math import PoolSnapshot, PositionConfig
    from position_analyzer import analyze_position

    scenario = _load_json(input_path)
    for key in ("prices", "pool", "position"):
        if key not in scenario:
            raise ValueError(f"{input_path}: missing '{key}' section")

    snapshot = PoolSnapshot.from_dict(scenario["pool"])
    position = PositionConfig.from_dict(scenario["position"])
    kwargs: dict[str, Any] = {
        "num_simulations": draws or config.simulation.NUM_SIMULATIONS,
        "rng": seed,
        "prorate_partial_period": prorate,
        "pair": scenario.get("pair"),
    }
    position_type = scenario.get("position_type")
    if optimize or position_type == "range_bounded":
        kwargs["optimize"] = optimize
        kwargs["max_workers"] = workers

    print(f"🎲 Simulating {kwargs['num_simulations']} price paths…")
    analysis = analyze_position(
        scenario["prices"], snapshot, position, position_type=position_type, **kwargs
    )
    result = analysis.as_dict()
    _print_position(result)
    print()
    print(DISCLAIMER)
    return result


# ── portfolio ────────────────────────────────────────────────────────────


def _asset_tuple(value: Any) -> tuple[str, ...]:
    """A pair string such as "WBNB-USDT" counts as one asset key."""
    if isinstance(value, str):
        return (value,)
    return tuple(str(v) for v in value)


def cmd_portfolio(input_path: str) -> dict[str, Any]:
    """Aggregate the positions of a portfolio file."""
    from portfolio_risk import (
        CorrelationMatrix,
        PortfolioPosition,
        evaluate_portfolio,
        log_returns,
    )

    data = _load_json(input_path)
    entries = data.get("positions") or []
    positions = [
        PortfolioPosition(
            label=str(p.get("label", f"position {i + 1}")),
            position_type=str(p.get("position_type", "full_range")),
            assets=_asset_tuple(p.get("assets", p.get("pair", ()))),
            allocation=float(p["allocation"]),
            expected_return=float(p["expected_return"]),
            return_pct=float(p.get("return_pct", 0.0)),
            volatility=float(p["volatility"]),
            period_days=float(p.get("period_days", config.simulation.DAYS_PER_YEAR)),
        )
        for i, p in enumerate(entries)
    ]
    asset_returns = {
        symbol: log_returns(prices) for symbol, prices in (data.get("asset_prices") or {}).items()
    }
    matrix = (
        CorrelationMatrix.from_mapping(data["correlations"]) if data.get("correlations") else None
    )

    print(f"📊 Aggregating {len(positions)} positions…")
    metrics = evaluate_portfolio(
        positions,
        asset_returns=asset_returns,
        correlation_matrix=matrix,
        flat_correlation=data.get("flat_correlation"),
    )
    result = metrics.as_dict()

    print("\n🧺 Portfolio")
    print("=" * 55)
    print(f"💰 Invested         : {_fmt_usd(result['total_investment'])}")
    print(f"📈 Expected value   : {_fmt_usd(result['expected_final_value'])}"
          f" ({result['expected_return_pct']:.2f}%)")
    print(f"📅 Annualized APY   : {result['annualized_apy_pct']}%")
    print(f"🌪️  Volatility       : {result['portfolio_volatility_pct']:.2f}%")
    print(f"🧩 Diversification  : {result['diversification_benefit_pct']}%")
    print(f"🔗 Avg correlation  : {result['average_correlation']}")
    print(f"📉 VaR 95 / 99      : {_fmt_usd(result['var_95'])} / {_fmt_usd(result['var_99'])}")
    print(f"📉 CVaR 5%          : {_fmt_usd(result['cvar_5'])}")
    print(f"⚖️  Sharpe / Sortino : {result['sharpe_ratio']} / {result['sortino_ratio']}")
    print()
    print("🏷️  Weights:")
    for label, weight in result["weights"].items():
        print(f"   {label:<24} {weight * 100:6.2f}%")
    print()
    print(DISCLAIMER)
    return result


# ── lending ──────────────────────────────────────────────────────────────


def cmd_lending(input_path: str, seed: int | None = None) -> dict[str, Any]:
    """Simulate the lending position described by a file."""
    from lending_simulator import (
        BadDebtProfile,
        InterestRateModel,
        LendingConfig,
        UtilizationProfile,
        analyze_lending_position,
    )

    data = _load_json(input_path)
    if "utilization" not in data:
        raise ValueError(f"{input_path}: missing 'utilization' section")

    lending = LendingConfig(
        initial_value=float(data["initial_value"]),
        days=int(data["days"]),
        harvest_days=data.get("harvest_days"),
        num_simulations=int(data.get("num_simulations", config.simulation.NUM_SIMULATIONS)),
    )
    utilization = UtilizationProfile(
        mean=float(data["utilization"]["mean"]), std=float(data["utilization"]["std"])
    )
    bad_debt = BadDebtProfile.from_dict(data["bad_debt"]) if data.get("bad_debt") else None
    rate_model = InterestRateModel.from_dict(data["rate_model"]) if data.get("rate_model") else None
    asset = str(data.get("asset", "USDT"))

    print(f"🏦 Simulating {lending.num_simulations} lending scenarios for {asset}…")
    analysis = analyze_lending_position(
        lending, utilization, asset=asset, rate_model=rate_model, bad_debt=bad_debt, rng=seed
    )
    result = analysis.as_dict()

    print(f"\n🏦 {asset} lending")
    print("=" * 55)
    print(f"💰 Capital          : {_fmt_usd(result['initial_value'])} for {result['days']} days")
    print(f"📈 Supply APY       : {result['mean_supply_apy_pct']}%"
          f" at {result['mean_utilization_pct']}% utilization")
    print(f"🔄 Harvest          : every {result['harvest_days']}d × {result['harvest_count']}"
          f"  (gas {_fmt_usd(result['total_gas_cost'])})")
    print(f"💥 Bad debt (E)     : {_fmt_usd(result['expected_bad_debt_loss'])}")
    print(f"📅 Annualized APY   : {result['annualized_apy_pct']}%")
    print(f"   P5 / median / P95: {_fmt_usd(result['percentile_5'])} / "
          f"{_fmt_usd(result['median_final_value'])} / {_fmt_usd(result['percentile_95'])}")
    print(f"   P(loss)          : {result['probability_of_loss'] * 100:.1f}%")
    print(f"⚖️  Sharpe           : {result['sharpe_ratio']}")
    print(f"📉 Worst outcome    : {_fmt_usd(result['max_drawdown'])}")
    print()
    print(DISCLAIMER)
    return result
