#!/usr/bin/env python3
"""
LP Yield Simulator -- Monte Carlo risk for DeFi positions
=========================================================

Simulates full-range (V2) and range-bounded (V3) liquidity positions,
lending positions, and portfolios of them.

Usage:
  python run.py simulate  --input scenario.json                 Simulate one LP position
  python run.py simulate  --input scenario.json --optimize      Search the best range + harvest
  python run.py simulate  --input scenario.json --seed 42       Reproducible run
  python run.py portfolio --input portfolio.json                Portfolio VaR / Sharpe / correlation
  python run.py lending   --input lending.json                  Simulate a lending position
  python run.py info                                            Engine overview + defaults

Sources:
  Uniswap V2 Whitepaper : https://uniswap.org/whitepaper.pdf
  Uniswap V3 Whitepaper : https://uniswap.org/whitepaper-v3.pdf
  Compound rate model   : https://docs.compound.finance/v2/#protocol-math
"""

import sys
import argparse
from pathlib import Path

# ── Imports ───────────────────────────────────────────────────────────────

project_root = Path(__file__).parent
sys.path.insert(0, str(project_root))

from yield_cli.central_config import PROJECT_VERSION
from yield_cli.commands import (
    cmd_info,
    cmd_lending,
    cmd_portfolio,
    cmd_simulate,
)
from yield_cli.errors import SimulationError


# ── CLI Parser ────────────────────────────────────────────────────────────


def create_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="lp-yield-sim",
        description=f"LP Yield Simulator v{PROJECT_VERSION} — Monte Carlo risk for DeFi positions",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python run.py simulate  --input bnb_usdt.json                 Full-range or explicit range
  python run.py simulate  --input bnb_usdt.json --optimize      Optimize range width + harvest
  python run.py simulate  --input bnb_usdt.json --draws 5000    More price paths
  python run.py simulate  --input bnb_usdt.json --workers 4     Parallel optimizer grid
  python run.py portfolio --input portfolio.json                Aggregate positions
  python run.py lending   --input usdt_venus.json --seed 7      Lending Monte Carlo
  python run.py info                                            Engine overview

⚠️ Educational simulation — NOT financial advice.
        """,
    )
    parser.add_argument(
        "--version", action="version", version=f"%(prog)s {PROJECT_VERSION}"
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # info
    subparsers.add_parser("info", help="Engine overview and defaults")

    # simulate
    sim = subparsers.add_parser("simulate", help="Simulate one liquidity position")
    sim.add_argument("--input", "-i", required=True, help="Scenario JSON file")
    sim.add_argument("--draws", "-n", type=int, default=None, help="Number of simulations")
    sim.add_argument("--seed", type=int, default=None, help="Random seed")
    sim.add_argument(
        "--optimize",
        action="store_true",
        help="Search range width × harvest interval (range-bounded)",
    )
    sim.add_argument(
        "--prorate",
        action="store_true",
        help="Accrue yield for the partial period after the last harvest",
    )
    sim.add_argument(
        "--workers", type=int, default=None, help="Processes for the optimizer grid"
    )

    # portfolio
    port = subparsers.add_parser("portfolio", help="Aggregate several positions")
    port.add_argument("--input", "-i", required=True, help="Portfolio JSON file")

    # lending
    lend = subparsers.add_parser("lending", help="Simulate a lending position")
    lend.add_argument("--input", "-i", required=True, help="Lending JSON file")
    lend.add_argument("--seed", type=int, default=None, help="Random seed")

    return parser


# ── Main ──────────────────────────────────────────────────────────────────


def main(argv=None) -> int:
    parser = create_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 0

    try:
        if args.command == "info":
            cmd_info()
            return 0
        if args.command == "simulate":
            cmd_simulate(
                args.input,
                draws=args.draws,
                seed=args.seed,
                optimize=args.optimize,
                prorate=args.prorate,
                workers=args.workers,
            )
            return 0
        if args.command == "portfolio":
            cmd_portfolio(args.input)
            return 0
        if args.command == "lending":
            cmd_lending(args.input, seed=args.seed)
            return 0
    except SimulationError as e:
        print(f"❌ {type(e).__name__}: {e}")
        return 2
    except (ValueError, KeyError, OSError) as e:
        print(f"❌ Invalid input: {e}")
        return 1

    parser.print_help()
    return 0


if __name__ == "__main__":
    try:
        sys.exit(main())
    except KeyboardInterrupt:
        print("\n❌ Cancelled.")
        sys.exit(130)
