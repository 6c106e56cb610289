"""CLI for registering and listing backtest strategies.

Usage:
    python scripts/strategies.py list
    python scripts/strategies.py add --name "RSI reversion" --entry rsi_entry --exit rsi_exit
    python scripts/strategies.py add --name "Periodic" --entry periodic_entry --exit holding_period_exit \
        --entry-params '{"every": 20}' --exit-params '{"max_bars": 5}'
"""

import argparse
import asyncio
import json
import sys

from simtrade.services.backtest.store import BacktestStore
from simtrade.services.strategy import EVALUATOR_MAP
from simtrade.services.strategy.rules import build_evaluator


async def list_strategies() -> None:
    strategies = await BacktestStore().list_strategies()
    if not strategies:
        print("No strategies registered.")
        return

    print(f"  {'ID':>4}  {'Name':<24} {'Entry':<20} {'Exit':<20}")
    for s in strategies:
        print(f"  {s.id:>4}  {s.name:<24} {s.entry_rule:<20} {s.exit_rule:<20}")


async def add_strategy(args: argparse.Namespace) -> None:
    try:
        entry_params = json.loads(args.entry_params)
        exit_params = json.loads(args.exit_params)
        # Reject bad params now rather than at backtest time
        build_evaluator(args.entry, entry_params)
        build_evaluator(args.exit, exit_params)
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)

    strategy_id = await BacktestStore().create_strategy(
        args.name, args.entry, args.exit, entry_params, exit_params
    )
    print(f"Registered strategy {strategy_id}: {args.name}")


def main() -> None:
    parser = argparse.ArgumentParser(description="Manage backtest strategy definitions")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("list", help="List registered strategies")

    add = sub.add_parser("add", help="Register a strategy")
    add.add_argument("--name", required=True)
    add.add_argument("--entry", required=True, choices=sorted(EVALUATOR_MAP))
    add.add_argument("--exit", required=True, choices=sorted(EVALUATOR_MAP))
    add.add_argument("--entry-params", default="{}", help="JSON object of entry rule params")
    add.add_argument("--exit-params", default="{}", help="JSON object of exit rule params")
    args = parser.parse_args()

    if args.command == "list":
        asyncio.run(list_strategies())
    else:
        asyncio.run(add_strategy(args))


if __name__ == "__main__":
    main()
