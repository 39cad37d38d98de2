"""
Test Suite — Lending Simulator
==============================

Jump-rate interest model, utilization and bad-debt draws, harvest
scheduling and the end-to-end lending analysis.

Run:  python -m pytest tests/test_lending.py -v
"""

import math

import numpy as np
import pytest

from lending_simulator import (
    DEFAULT_RATE_MODELS,
    BadDebtProfile,
    InterestRateModel,
    LendingConfig,
    UtilizationProfile,
    analyze_lending_position,
    bad_debt_loss,
    default_rate_model,
    draw_utilization,
    optimize_harvest_days,
    simulate_lending_scenario,
)

STABLE = InterestRateModel(
    base_rate_per_year=0.0,
    multiplier_per_year=0.04,
    jump_multiplier_per_year=0.60,
    kink=0.80,
    reserve_factor=0.10,
)


# ── Interest Rate Model ──────────────────────────────────────────────────


class TestInterestRateModel:
    @pytest.mark.parametrize("u,expected", [
        (0.0, 0.0),
        (0.5, 0.02),
        (0.8, 0.032),
        (0.9, 0.032 + 0.1 * 0.60),
    ])
    def test_borrow_rate(self, u, expected):
        assert STABLE.borrow_rate(u) == pytest.approx(expected)

    def test_supply_rate(self):
        assert STABLE.supply_rate(0.5) == pytest.approx(0.02 * 0.5 * 0.9)

    def test_jump_above_kink(self):
        below = STABLE.supply_rate(0.79) / 0.79
        above = STABLE.supply_rate(0.81) / 0.81
        assert above - below > 0.005

    def test_continuous_at_kink(self):
        assert STABLE.borrow_rate(0.8 + 1e-12) == pytest.approx(STABLE.borrow_rate(0.8))

    @pytest.mark.parametrize("kink,reserve", [(0, 0.1), (1.5, 0.1), (0.8, 1.0), (0.8, -0.1)])
    def test_invalid_parameters(self, kink, reserve):
        with pytest.raises(ValueError):
            InterestRateModel(0, 0.04, 0.6, kink, reserve)

    def test_from_dict(self):
        model = InterestRateModel.from_dict({
            "base_rate_per_year": 0.02, "multiplier_per_year": 0.07,
            "jump_multiplier_per_year": 3.0, "kink": 0.45, "reserve_factor": 0.2,
        })
        assert model == DEFAULT_RATE_MODELS["volatile"]

    @pytest.mark.parametrize("data,message", [
        ({"kink": 0.8}, "missing"),
        ({"base_rate_per_year": 0, "multiplier_per_year": 0.04, "jump_multiplier_per_year": 0.6,
          "kink": 0.8, "reserve_factor": 0.1, "slope": 1.0}, "Unknown"),
    ])
    def test_from_dict_rejects_bad_keys(self, data, message):
        with pytest.raises(ValueError, match=message):
            InterestRateModel.from_dict(data)

    @pytest.mark.parametrize("asset,kind", [("USDT", "stablecoin"), ("WBNB", "major"), ("XVS", "volatile")])
    def test_default_by_asset_class(self, asset, kind):
        assert default_rate_model(asset) is DEFAULT_RATE_MODELS[kind]


# ── Draws ────────────────────────────────────────────────────────────────


class TestDraws:
    @pytest.mark.parametrize("mean,expected", [(1.5, 0.98), (-0.3, 0.05), (0.6, 0.6)])
    def test_utilization_clamped(self, mean, expected):
        rng = np.random.default_rng(0)
        assert draw_utilization(UtilizationProfile(mean, 0.0), rng) == pytest.approx(expected)

    def test_utilization_always_in_bounds(self):
        rng = np.random.default_rng(1)
        profile = UtilizationProfile(0.7, 0.5)
        draws = [draw_utilization(profile, rng) for _ in range(2000)]
        assert min(draws) >= 0.05 and max(draws) <= 0.98

    def test_no_events_no_loss(self):
        rng = np.random.default_rng(0)
        assert bad_debt_loss(1000, BadDebtProfile(), 30, rng) == 0.0

    def test_bad_debt_from_dict(self):
        assert BadDebtProfile.from_dict({"events_per_year": 2}) == BadDebtProfile(2.0, 0.0)
        with pytest.raises(ValueError, match="Unknown BadDebtProfile keys: events"):
            BadDebtProfile.from_dict({"events": 1})
        with pytest.raises(ValueError):
            BadDebtProfile(events_per_year=-1)

    def test_certain_event_severity(self):
        rng = np.random.default_rng(2)
        profile = BadDebtProfile(events_per_year=365 * 10, annualized_bad_debt_rate=0.04)
        for _ in range(200):
            loss = bad_debt_loss(1000, profile, 1, rng)
            assert 1000 * 0.04 * 0.5 <= loss < 1000 * 0.04 * 1.5


# ── Scenario ─────────────────────────────────────────────────────────────


class TestScenario:
    def test_deterministic_interest(self):
        """Fixed utilization, no bad debt: periods 7,7,7,7,2 for 30 days."""
        lending = LendingConfig(initial_value=1000, days=30, harvest_days=7)
        scenario = simulate_lending_scenario(
            lending, STABLE, UtilizationProfile(0.5, 0.0), BadDebtProfile(), 7,
            np.random.default_rng(0),
        )
        r = STABLE.supply_rate(0.5)
        expected = 1000 * (1 + r * 7 / 365) ** 4 * (1 + r * 2 / 365) - lending.gas_cost_per_tx * 6
        assert scenario.final_value == pytest.approx(expected)
        assert scenario.mean_utilization == pytest.approx(0.5)
        assert scenario.bad_debt_loss == 0.0

    def test_exact_multiple_has_no_empty_period(self):
        lending = LendingConfig(initial_value=1000, days=28, harvest_days=7)
        scenario = simulate_lending_scenario(
            lending, STABLE, UtilizationProfile(0.5, 0.0), BadDebtProfile(), 7,
            np.random.default_rng(0),
        )
        r = STABLE.supply_rate(0.5)
        expected = 1000 * (1 + r * 7 / 365) ** 4 - lending.gas_cost_per_tx * 6
        assert scenario.final_value == pytest.approx(expected)

    def test_gas_transactions(self):
        lending = LendingConfig(initial_value=1000, days=30)
        assert lending.gas_cost_per_tx == pytest.approx(200_000 * 3 / 1e9 * 600)
        assert lending.total_gas_cost(30) == pytest.approx(lending.gas_cost_per_tx * 3)
        assert lending.total_gas_cost(1) == pytest.approx(lending.gas_cost_per_tx * 32)

    @pytest.mark.parametrize("kwargs", [
        {"initial_value": 0, "days": 30},
        {"initial_value": 100, "days": 0},
        {"initial_value": 100, "days": 30, "harvest_days": 0},
        {"initial_value": 100, "days": 30, "num_simulations": 0},
    ])
    def test_config_validation(self, kwargs):
        with pytest.raises(ValueError):
            LendingConfig(**kwargs)


# ── Analysis ─────────────────────────────────────────────────────────────


class TestLendingAnalysis:
    def test_harvest_optimization_picks_grid_value(self):
        lending = LendingConfig(initial_value=1000, days=90, num_simulations=40)
        h = optimize_harvest_days(lending, STABLE, UtilizationProfile(0.6, 0.1), BadDebtProfile(), rng=3)
        assert h in (1, 7, 14, 30)

    def test_small_position_prefers_rare_harvests(self):
        """Gas dominates a $100 position: monthly beats daily."""
        lending = LendingConfig(initial_value=100, days=90, num_simulations=20)
        h = optimize_harvest_days(lending, STABLE, UtilizationProfile(0.6, 0.0), BadDebtProfile(), rng=0)
        assert h == 30

    def test_analysis_fields(self):
        lending = LendingConfig(initial_value=10_000, days=30, harvest_days=7, num_simulations=300)
        result = analyze_lending_position(
            lending, UtilizationProfile(0.6, 0.1), asset="USDT",
            bad_debt=BadDebtProfile(2, 0.03), rng=11,
        )
        stats = result.statistics
        assert stats.num_simulations == 300
        assert result.harvest_days == 7
        assert result.harvest_count == 4
        assert result.total_gas_cost == pytest.approx(lending.gas_cost_per_tx * 6)
        assert 0.05 <= result.mean_utilization <= 0.98
        assert result.expected_bad_debt_loss >= 0
        assert result.max_drawdown <= stats.percentile_5 - 10_000
        assert result.annualized_apy_pct == pytest.approx(
            ((stats.mean_final_value / 10_000) ** (365 / 30) - 1) * 100
        )

    def test_sharpe_ratio(self):
        lending = LendingConfig(initial_value=10_000, days=30, harvest_days=7, num_simulations=200)
        result = analyze_lending_position(lending, UtilizationProfile(0.6, 0.1), rng=4)
        stats = result.statistics
        assert result.sharpe_ratio == pytest.approx(stats.mean_return_pct / stats.std_return_pct)

    def test_no_dispersion_without_shocks(self):
        lending = LendingConfig(initial_value=10_000, days=30, harvest_days=7, num_simulations=20)
        result = analyze_lending_position(lending, UtilizationProfile(0.6, 0.0), rng=4)
        assert result.statistics.std_final_value == pytest.approx(0.0, abs=1e-6)
        assert result.sharpe_ratio == 0.0

    def test_seed_reproducibility(self):
        lending = LendingConfig(initial_value=1000, days=30, num_simulations=50)
        a = analyze_lending_position(lending, UtilizationProfile(0.6, 0.1), asset="WBNB", rng=21)
        b = analyze_lending_position(lending, UtilizationProfile(0.6, 0.1), asset="WBNB", rng=21)
        assert a == b

    def test_as_dict(self):
        lending = LendingConfig(initial_value=1000, days=30, harvest_days=30, num_simulations=10)
        d = analyze_lending_position(lending, UtilizationProfile(0.6, 0.0), rng=0).as_dict()
        assert d["asset"] == "USDT"
        assert d["harvest_count"] == 1
        assert math.isfinite(d["annualized_apy_pct"])
