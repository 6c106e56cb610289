"""CLI for running backtests against historical data.

Usage:
    python scripts/backtest.py --strategy-id 1 --symbol AAPL --horizon SWING --start 2024-01-01 --end 2024-12-31
    python scripts/backtest.py --strategy-id 2 --symbol MSFT --horizon SHORT_TERM --start 2024-09-01 --end 2024-10-01 \
        --sizing FIXED_DOLLAR --size 2000
    python scripts/backtest.py --show 42 --json
"""

import argparse
import asyncio
import json
import logging
import sys
from datetime import datetime, timezone

from simtrade.config import settings
from simtrade.services.backtest import (
    BacktestConfig,
    BacktestController,
    BacktestError,
    PerformanceAnalytics,
    PositionSizing,
    TimeHorizon,
)
from simtrade.services.backtest.records import OrderSide, PerformanceMetrics, TradeRecord
from simtrade.services.backtest.store import BacktestStore


def _fmt(value: float | None, spec: str = ".2f", suffix: str = "") -> str:
    return "n/a" if value is None else f"{value:{spec}}{suffix}"


def format_report(run, metrics: PerformanceMetrics, trades: list[TradeRecord]) -> str:
    """Format a completed run as a readable console report."""
    lines = []
    sep = "=" * 68

    lines.append(sep)
    lines.append(f"  Backtest Report  (run {run.id})")
    lines.append(sep)
    lines.append(
        f"  Strategy:    #{run.strategy_id:<15d}"
        f"Symbol:  {run.symbol} ({run.time_horizon})"
    )
    lines.append(
        f"  Period:      {run.start_date:%Y-%m-%d} to {run.end_date:%Y-%m-%d} "
        f"({run.execution_time_ms or 0} ms)"
    )
    lines.append("-" * 68)

    # Performance
    lines.append("  PERFORMANCE")
    lines.append(f"  Starting Capital:       ${run.initial_cash:>12,.2f}")
    lines.append(f"  Ending Equity:          ${metrics.final_equity:>12,.2f}")
    lines.append(f"  Total Return:           {metrics.total_return_pct:+.2f}%")
    lines.append(f"  Annualized Return:      {metrics.annualized_return_pct:+.2f}%")
    lines.append(f"  Sharpe Ratio:           {_fmt(metrics.sharpe_ratio)}")
    lines.append(f"  Sortino Ratio:          {_fmt(metrics.sortino_ratio)}")
    dd_date = (
        f" on {metrics.max_drawdown_date:%Y-%m-%d}" if metrics.max_drawdown_date else ""
    )
    lines.append(f"  Max Drawdown:           {_fmt(metrics.max_drawdown, suffix='%')}{dd_date}")

    lines.append("")

    # Trade stats
    lines.append("  TRADES")
    lines.append(
        f"  Total: {metrics.total_trades}   "
        f"Win Rate: {metrics.win_rate:.1f}% "
        f"({metrics.winning_trades}W / {metrics.losing_trades}L)"
    )
    lines.append(f"  Profit Factor:          {_fmt(metrics.profit_factor)}")
    lines.append(f"  Avg Win:                {_fmt(metrics.avg_win_pct, '+.2f', '%')}")
    lines.append(f"  Avg Loss:               {_fmt(metrics.avg_loss_pct, '+.2f', '%')}")
    lines.append(f"  Expectancy:             {_fmt(metrics.expectancy, '+.2f', '%')}")
    lines.append(
        f"  Max Consecutive:        {metrics.max_consecutive_wins} wins, "
        f"{metrics.max_consecutive_losses} losses"
    )
    lines.append(f"  Avg Holding:            {metrics.avg_holding_period:.1f} days")

    lines.append("")

    # Costs
    lines.append("  COSTS")
    lines.append(f"  Commission Paid:        ${metrics.total_commission:>8,.2f}")
    lines.append(f"  Slippage Paid:          ${metrics.total_slippage:>8,.2f}")

    sells = [t for t in trades if t.side == OrderSide.SELL]
    if sells:
        lines.append("")
        lines.append("  RECENT TRADES (last 10)")
        lines.append(f"  {'Entry':>10} {'Exit':>10} {'P&L':>10} {'Days':>5} {'Reason':<14}")
        for t in sells[-10:]:
            pnl_str = f"${t.realized_pl:+,.2f}"
            lines.append(
                f"  ${t.entry_price:>9,.2f} "
                f"${t.executed_price:>9,.2f} "
                f"{pnl_str:>10} "
                f"{t.holding_period:>5} "
                f"{t.exit_reason or '':<14}"
            )

    lines.append(sep)
    return "\n".join(lines)


def _parse_date(value: str) -> datetime:
    return datetime.strptime(value, "%Y-%m-%d").replace(tzinfo=timezone.utc)


async def show_run(run_id: int, as_json: bool) -> None:
    """Recompute metrics for a stored run and print them."""
    store = BacktestStore()
    run = await store.get_run(run_id)
    if run is None:
        print(f"Error: backtest run {run_id} not found", file=sys.stderr)
        sys.exit(1)
    if run.status != "COMPLETED":
        print(f"Run {run_id} is {run.status}: {run.error_message or ''}", file=sys.stderr)
        sys.exit(1)

    metrics = await PerformanceAnalytics(store=store).calculate_metrics(run_id)
    if as_json:
        print(json.dumps({"run_id": run_id, **metrics.to_dict()}, indent=2))
    else:
        print(format_report(run, metrics, await store.list_trades(run_id)))


async def run_backtest(args: argparse.Namespace) -> None:
    """Run a backtest and print its results."""
    config = BacktestConfig(
        strategy_id=args.strategy_id,
        symbol=args.symbol.upper(),
        time_horizon=TimeHorizon(args.horizon),
        start_date=_parse_date(args.start),
        end_date=_parse_date(args.end),
        initial_cash=args.cash,
        position_sizing=PositionSizing(args.sizing),
        position_size=args.size,
    )
    if args.slippage is not None:
        config.slippage_bps = args.slippage
    if args.commission is not None:
        config.commission_per_trade = args.commission

    try:
        run_id = await BacktestController().run_backtest(config)
    except BacktestError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)

    await show_run(run_id, args.json)


def main() -> None:
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    parser = argparse.ArgumentParser(
        description="Backtest a stored strategy against historical bars"
    )
    parser.add_argument(
        "--show", type=int, metavar="RUN_ID",
        help="Print the report for an existing run instead of starting one",
    )
    parser.add_argument("--strategy-id", type=int, help="Stored strategy to evaluate")
    parser.add_argument("--symbol", help="Ticker to backtest (e.g. AAPL, MSFT)")
    parser.add_argument(
        "--horizon", default=TimeHorizon.SWING.value,
        choices=[h.value for h in TimeHorizon],
        help="Time horizon; SHORT_TERM uses 15m bars, others daily (default: SWING)",
    )
    parser.add_argument("--start", help="Start date, YYYY-MM-DD")
    parser.add_argument("--end", help="End date, YYYY-MM-DD")
    parser.add_argument(
        "--cash", type=float, default=100_000.0,
        help="Starting cash in dollars (default: 100000)",
    )
    parser.add_argument(
        "--sizing", default=PositionSizing.PERCENT_EQUITY.value,
        choices=[s.value for s in PositionSizing],
        help="Position sizing mode (default: PERCENT_EQUITY)",
    )
    parser.add_argument(
        "--size", type=float, default=10.0,
        help="Dollars, shares or percent depending on --sizing (default: 10)",
    )
    parser.add_argument("--slippage", type=float, help="Slippage in basis points")
    parser.add_argument("--commission", type=float, help="Flat commission per trade")
    parser.add_argument(
        "--json", action="store_true",
        help="Output result as JSON instead of formatted report",
    )
    args = parser.parse_args()

    if args.show is not None:
        asyncio.run(show_run(args.show, args.json))
        return

    missing = [f for f in ("strategy_id", "symbol", "start", "end") if getattr(args, f) is None]
    if missing:
        parser.error("missing required arguments: " + ", ".join(
            "--" + f.replace("_", "-") for f in missing
        ))

    asyncio.run(run_backtest(args))


if __name__ == "__main__":
    main()
