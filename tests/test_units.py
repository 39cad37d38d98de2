"""
Unit Tests for LP Yield Simulator Support Modules
=================================================

Covers the modules around the simulation core:
  - stablecoins.py     (symbol classification, pair splitting)
  - central_config.py  (version, immutable defaults)
  - errors.py          (exception hierarchy)
  - commands.py        (JSON-driven command handlers)
  - run.py             (argparse parser structure, exit codes)

All tests are offline. Command tests write scenario files to tmp_path.
"""

import dataclasses
import json
import re

import pytest

# ═══════════════════════════════════════════════════════════════════════════
# 1. stablecoins.py
# ═══════════════════════════════════════════════════════════════════════════

from yield_cli.stablecoins import (
    MAJOR_ASSETS,
    STABLECOIN_SYMBOLS,
    asset_class,
    classify_pair,
    is_stablecoin,
    split_pair,
    volatile_assets,
)


class TestStablecoinSymbols:
    @pytest.mark.parametrize("sym", ["USDC", "USDT", "DAI", "BUSD", "FDUSD", "USDC.E"])
    def test_known_stablecoins_present(self, sym):
        assert sym in STABLECOIN_SYMBOLS

    def test_volatile_tokens_absent(self):
        for sym in ["WBNB", "CAKE", "WETH", "XVS"]:
            assert sym not in STABLECOIN_SYMBOLS

    def test_sets_are_frozen(self):
        assert isinstance(STABLECOIN_SYMBOLS, frozenset)
        assert isinstance(MAJOR_ASSETS, frozenset)

    @pytest.mark.parametrize("sym", ["usdt", "  BUSD ", "usdc.e"])
    def test_case_insensitive_and_strip(self, sym):
        assert is_stablecoin(sym) is True


class TestSplitPair:
    @pytest.mark.parametrize("label,expected", [
        ("WBNB-USDT", ("WBNB", "USDT")),
        ("eth/usdc", ("ETH", "USDC")),
        ("CAKE", ("CAKE",)),
        ("CAKE--WBNB", ("CAKE", "WBNB")),
    ])
    def test_split(self, label, expected):
        assert split_pair(label) == expected


class TestClassifyPair:
    def test_stable_stable(self):
        assert classify_pair("USDT", "BUSD") == "stable-stable"

    def test_stable_volatile(self):
        assert classify_pair("WBNB", "usdt") == "stable-volatile"
        assert classify_pair("USDC", "CAKE") == "stable-volatile"

    def test_volatile_volatile(self):
        assert classify_pair("CAKE", "WBNB") == "volatile-volatile"


class TestVolatileAssets:
    def test_pairs_expanded_and_deduplicated(self):
        assert volatile_assets(["WBNB-USDT", "CAKE-WBNB", "usdc"]) == ["WBNB", "CAKE"]

    def test_stable_only(self):
        assert volatile_assets(["USDT-BUSD"]) == []


class TestAssetClass:
    @pytest.mark.parametrize("sym,kind", [
        ("USDT", "stablecoin"), ("wbnb", "major"), ("BTCB", "major"), ("CAKE", "volatile"),
    ])
    def test_classes(self, sym, kind):
        assert asset_class(sym) == kind


# ═══════════════════════════════════════════════════════════════════════════
# 2. central_config.py
# ═══════════════════════════════════════════════════════════════════════════

from yield_cli.central_config import (
    FEE_TIER_LABELS,
    PROJECT_NAME,
    PROJECT_VERSION,
    RiskConstants,
    SimulationDefaults,
    config,
)


class TestProjectVersion:
    def test_semver_shape(self):
        assert re.match(r"^\d+\.\d+\.\d+", PROJECT_VERSION)

    def test_name(self):
        assert PROJECT_NAME == "LP Yield Simulator"


class TestSimulationDefaults:
    def test_optimizer_grid_has_24_cells(self):
        sim = config.simulation
        assert len(sim.RANGE_WIDTHS) * len(sim.HARVEST_PERIODS) == 24

    def test_grid_values(self):
        assert config.simulation.RANGE_WIDTHS == (0.1, 0.2, 0.3, 0.5, 0.7, 1.0)
        assert config.simulation.HARVEST_PERIODS == (1, 7, 14, 30)

    def test_gas_and_draws(self):
        assert config.simulation.GAS_PER_TX == 730
        assert config.simulation.NUM_SIMULATIONS == 1000

    def test_utilization_bounds_ordered(self):
        sim = config.simulation
        assert 0 < sim.UTILIZATION_FLOOR < sim.UTILIZATION_CAP < 1

    def test_frozen(self):
        with pytest.raises(dataclasses.FrozenInstanceError):
            config.simulation.NUM_SIMULATIONS = 5


class TestRiskConstants:
    def test_quantiles(self):
        assert config.risk.Z_95 == 1.645
        assert config.risk.Z_99 == 2.326

    def test_frozen(self):
        with pytest.raises(dataclasses.FrozenInstanceError):
            RiskConstants().Z_95 = 2.0

    def test_fresh_instances_equal_global(self):
        assert SimulationDefaults() == config.simulation
        assert RiskConstants() == config.risk


class TestFeeTierLabels:
    def test_immutable(self):
        with pytest.raises(TypeError):
            FEE_TIER_LABELS[0.002] = "new"

    def test_default_tiers_labelled(self):
        assert config.simulation.DEFAULT_FEE_TIER_FULL_RANGE in FEE_TIER_LABELS
        assert config.simulation.DEFAULT_FEE_TIER_RANGE_BOUNDED in FEE_TIER_LABELS


# ═══════════════════════════════════════════════════════════════════════════
# 3. errors.py
# ═══════════════════════════════════════════════════════════════════════════

from yield_cli.errors import (
    InsufficientDataError,
    InvalidRangeConfigurationError,
    MissingSnapshotFieldsError,
    SimulationError,
)


class TestErrors:
    @pytest.mark.parametrize("cls", [
        InsufficientDataError, MissingSnapshotFieldsError, InvalidRangeConfigurationError,
    ])
    def test_hierarchy(self, cls):
        assert issubclass(cls, SimulationError)
        assert issubclass(cls, ValueError)

    def test_insufficient_data_attributes(self):
        err = InsufficientDataError(1)
        assert err.count == 1
        assert err.required == 2
        assert "got 1" in str(err)

    def test_missing_field_named(self):
        err = MissingSnapshotFieldsError("tvl_lp")
        assert err.field == "tvl_lp"
        assert "tvl_lp" in str(err)


# ═══════════════════════════════════════════════════════════════════════════
# 4. commands.py
# ═══════════════════════════════════════════════════════════════════════════

from yield_cli.commands import (
    DISCLAIMER,
    _fee_tier_label,
    _fmt_usd,
    cmd_info,
    cmd_lending,
    cmd_portfolio,
    cmd_simulate,
)

POOL = {
    "V_24h": 1_000_000,
    "TVL_lp": 10_000_000,
    "w_pair_ratio": 0.01,
    "P_cake": 2.0,
    "TVL_stack": 5_000_000,
    "P_gas": 5,
    "P_BNB": 600,
}


def write_json(tmp_path, name, data):
    path = tmp_path / name
    path.write_text(json.dumps(data))
    return str(path)


@pytest.fixture
def flat_scenario(tmp_path):
    """Constant prices: zero volatility, every draw ends at P0."""
    return write_json(tmp_path, "scenario.json", {
        "pair": "WBNB-USDT",
        "prices": [650.0] * 10,
        "pool": POOL,
        "position": {"initial_value": 1000, "days": 30, "initial_price": 650, "harvest_days": 7},
    })


class TestFormatting:
    @pytest.mark.parametrize("value,expected", [
        (0, "$0.00"), (1234.5, "$1,234.50"), (-12.5, "$-12.50"),
    ])
    def test_fmt_usd(self, value, expected):
        assert _fmt_usd(value) == expected

    @pytest.mark.parametrize("tier,expected", [
        (0.0017, "0.17% (V2 standard)"), (0.0025, "0.25% (V3 standard)"), (0.002, "0.20%"),
    ])
    def test_fee_tier_label(self, tier, expected):
        assert _fee_tier_label(tier) == expected


class TestCmdInfo:
    def test_prints_overview(self, capsys):
        cmd_info()
        out = capsys.readouterr().out
        assert PROJECT_VERSION in out
        assert "Range widths" in out
        assert DISCLAIMER in out


class TestCmdSimulate:
    def test_full_range_deterministic(self, flat_scenario, capsys):
        result = cmd_simulate(flat_scenario, draws=50, seed=1)
        assert result["position_type"] == "full_range"
        assert result["pair"] == "WBNB-USDT"
        assert result["num_simulations"] == 50
        assert result["std_final_value"] == 0.0
        assert result["mean_final_value"] == result["median_final_value"]
        assert result["impermanent_loss_pct"] == pytest.approx(0.0, abs=1e-9)
        assert result["harvest_count"] == 4
        assert result["fee_tier"] == 0.0017
        assert result["harvest_optimized"] is False
        out = capsys.readouterr().out
        assert "WBNB-USDT" in out
        assert "0.17% (V2 standard)" in out
        assert DISCLAIMER in out

    def test_explicit_range_dispatches_bounded(self, tmp_path):
        path = write_json(tmp_path, "range.json", {
            "prices": [650.0, 652.0, 648.0, 655.0, 650.0],
            "pool": POOL,
            "position": {
                "initial_value": 1000, "days": 30, "initial_price": 650,
                "harvest_days": 7, "price_lower": 585, "price_upper": 715,
            },
        })
        result = cmd_simulate(path, draws=40, seed=3)
        assert result["position_type"] == "range_bounded"
        assert result["optimized"] is False
        assert result["price_lower"] == 585
        assert result["capital_efficiency"] == pytest.approx((715 / 585) ** 0.5, rel=1e-4)

    def test_harvest_interval_chosen_when_absent(self, tmp_path, capsys):
        path = write_json(tmp_path, "noharvest.json", {
            "prices": [650.0] * 10,
            "pool": POOL,
            "position": {"initial_value": 1000, "days": 30, "initial_price": 650},
        })
        result = cmd_simulate(path, draws=10, seed=1)
        assert result["harvest_optimized"] is True
        assert result["harvest_days"] in (1, 7, 14, 30)
        assert "(optimized)" in capsys.readouterr().out

    def test_seed_reproducible(self, flat_scenario):
        a = cmd_simulate(flat_scenario, draws=30, seed=9)
        b = cmd_simulate(flat_scenario, draws=30, seed=9)
        assert a == b

    def test_missing_section(self, tmp_path):
        path = write_json(tmp_path, "bad.json", {"prices": [1, 2], "pool": POOL})
        with pytest.raises(ValueError, match="position"):
            cmd_simulate(path)

    def test_top_level_must_be_object(self, tmp_path):
        path = write_json(tmp_path, "list.json", [1, 2, 3])
        with pytest.raises(ValueError, match="JSON object"):
            cmd_simulate(path)


class TestCmdPortfolio:
    def test_two_positions(self, tmp_path, capsys):
        path = write_json(tmp_path, "portfolio.json", {
            "positions": [
                {"label": "bnb", "assets": ["WBNB-USDT"], "allocation": 1000,
                 "expected_return": 50, "volatility": 0.2, "period_days": 365},
                {"label": "cake", "assets": ["CAKE-USDT"], "allocation": 3000,
                 "expected_return": 90, "volatility": 0.4, "period_days": 365},
            ],
            "flat_correlation": 0.5,
        })
        result = cmd_portfolio(path)
        assert result["weights"] == {"bnb": 0.25, "cake": 0.75}
        assert result["total_investment"] == 4000
        assert result["expected_final_value"] == 4140
        assert result["average_correlation"] == 0.5
        assert "Weights" in capsys.readouterr().out

    def test_explicit_correlations(self, tmp_path):
        path = write_json(tmp_path, "portfolio.json", {
            "positions": [
                {"assets": ["WBNB"], "allocation": 500, "expected_return": 10, "volatility": 0.3},
                {"assets": ["CAKE"], "allocation": 500, "expected_return": 10, "volatility": 0.3},
            ],
            "correlations": {"WBNB": {"CAKE": 1.0}, "CAKE": {}},
        })
        result = cmd_portfolio(path)
        assert result["diversification_benefit_pct"] == pytest.approx(0.0, abs=0.01)
        assert list(result["weights"]) == ["position 1", "position 2"]

    def test_pair_strings_are_single_assets(self, tmp_path):
        path = write_json(tmp_path, "portfolio.json", {
            "positions": [
                {"assets": "WBNB-USDT", "allocation": 1000, "expected_return": 50, "volatility": 0.2},
                {"pair": "CAKE-USDT", "allocation": 1000, "expected_return": 50, "volatility": 0.4},
            ],
        })
        result = cmd_portfolio(path)
        assert set(result["correlation_matrix"]) == {"WBNB", "CAKE"}

    def test_empty_portfolio(self, tmp_path):
        path = write_json(tmp_path, "empty.json", {"positions": []})
        with pytest.raises(ValueError):
            cmd_portfolio(path)


class TestCmdLending:
    def test_fixed_harvest(self, tmp_path, capsys):
        path = write_json(tmp_path, "lending.json", {
            "asset": "USDT",
            "initial_value": 10_000,
            "days": 30,
            "harvest_days": 7,
            "num_simulations": 50,
            "utilization": {"mean": 0.6, "std": 0.05},
        })
        result = cmd_lending(path, seed=5)
        assert result["asset"] == "USDT"
        assert result["harvest_days"] == 7
        assert result["harvest_count"] == 4
        assert result["num_simulations"] == 50
        assert 5.0 <= result["mean_utilization_pct"] <= 98.0
        assert "USDT lending" in capsys.readouterr().out

    def test_custom_rate_model_and_bad_debt(self, tmp_path):
        path = write_json(tmp_path, "lending.json", {
            "asset": "CAKE",
            "initial_value": 1000,
            "days": 60,
            "harvest_days": 30,
            "num_simulations": 20,
            "utilization": {"mean": 0.5, "std": 0.0},
            "rate_model": {
                "base_rate_per_year": 0.0, "multiplier_per_year": 0.1,
                "jump_multiplier_per_year": 1.0, "kink": 0.8, "reserve_factor": 0.0,
            },
            "bad_debt": {"events_per_year": 0, "annualized_bad_debt_rate": 0.0},
        })
        result = cmd_lending(path, seed=1)
        # borrow = 0.1·0.5, supply = borrow·0.5
        assert result["mean_supply_apy_pct"] == pytest.approx(2.5)
        assert result["expected_bad_debt_loss"] == 0.0

    @pytest.mark.parametrize("section,body", [
        ("bad_debt", {"events": 1}),
        ("rate_model", {"kink": 0.8}),
    ])
    def test_bad_section_keys(self, tmp_path, section, body):
        path = write_json(tmp_path, "lending.json", {
            "initial_value": 1000, "days": 30, "num_simulations": 5,
            "utilization": {"mean": 0.5, "std": 0.0},
            section: body,
        })
        with pytest.raises(ValueError, match="InterestRateModel|BadDebtProfile"):
            cmd_lending(path)
        assert main(["lending", "-i", path]) == 1

    def test_missing_utilization(self, tmp_path):
        path = write_json(tmp_path, "lending.json", {"initial_value": 1000, "days": 30})
        with pytest.raises(ValueError, match="utilization"):
            cmd_lending(path)


# ═══════════════════════════════════════════════════════════════════════════
# 5. run.py
# ═══════════════════════════════════════════════════════════════════════════

from run import create_parser, main


class TestCreateParser:
    @pytest.mark.parametrize("argv", [
        ["info"],
        ["simulate", "--input", "s.json"],
        ["portfolio", "--input", "p.json"],
        ["lending", "-i", "l.json"],
    ])
    def test_all_subcommands_exist(self, argv):
        args = create_parser().parse_args(argv)
        assert args.command == argv[0]

    def test_simulate_defaults(self):
        args = create_parser().parse_args(["simulate", "-i", "s.json"])
        assert args.draws is None
        assert args.seed is None
        assert args.optimize is False
        assert args.prorate is False
        assert args.workers is None

    def test_simulate_flags(self):
        args = create_parser().parse_args(
            ["simulate", "-i", "s.json", "-n", "500", "--seed", "7", "--optimize", "--workers", "4"]
        )
        assert (args.draws, args.seed, args.optimize, args.workers) == (500, 7, True, 4)

    def test_input_required(self):
        with pytest.raises(SystemExit):
            create_parser().parse_args(["simulate"])

    def test_version_flag(self):
        with pytest.raises(SystemExit) as exc_info:
            create_parser().parse_args(["--version"])
        assert exc_info.value.code == 0

    def test_no_command_returns_none(self):
        args = create_parser().parse_args([])
        assert args.command is None


class TestMainExitCodes:
    def test_no_command_prints_help(self, capsys):
        assert main([]) == 0
        assert "usage" in capsys.readouterr().out.lower()

    def test_info(self):
        assert main(["info"]) == 0

    def test_simulate_ok(self, flat_scenario):
        assert main(["simulate", "-i", flat_scenario, "-n", "20", "--seed", "1"]) == 0

    def test_insufficient_prices(self, tmp_path, capsys):
        path = write_json(tmp_path, "short.json", {
            "prices": [650.0],
            "pool": POOL,
            "position": {"initial_value": 1000, "days": 30, "initial_price": 650},
        })
        assert main(["simulate", "-i", path]) == 2
        assert "InsufficientDataError" in capsys.readouterr().out

    def test_missing_snapshot_field(self, tmp_path, capsys):
        pool = {k: v for k, v in POOL.items() if k != "TVL_lp"}
        path = write_json(tmp_path, "nopool.json", {
            "prices": [650.0, 651.0, 649.0],
            "pool": pool,
            "position": {"initial_value": 1000, "days": 30, "initial_price": 650},
        })
        assert main(["simulate", "-i", path]) == 2
        assert "tvl_lp" in capsys.readouterr().out

    def test_missing_file(self, tmp_path, capsys):
        assert main(["portfolio", "-i", str(tmp_path / "nope.json")]) == 1
        assert "Invalid input" in capsys.readouterr().out
