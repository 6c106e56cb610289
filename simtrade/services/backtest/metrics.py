"""Compute performance metrics from a run's trade ledger and equity curve."""

import logging
import math
from collections.abc import Sequence
from datetime import datetime

from simtrade.config import settings
from simtrade.services.backtest.data_provider import interval_for_horizon
from simtrade.services.backtest.records import (
    EquityPoint,
    OrderSide,
    PerformanceMetrics,
    TradeRecord,
)

logger = logging.getLogger(__name__)

# Annualization factors (bars per year) by convention and interval
BARS_PER_YEAR: dict[str, dict[str, int]] = {
    "trading": {
        "15m": 252 * 26,
        "1h": 252 * 7,
        "1d": 252,
    },
    "calendar": {
        "15m": 365 * 96,
        "1h": 8760,  # 365 * 24
        "1d": 365,
    },
}


def bars_per_year(interval: str, annualization: str = "trading") -> int:
    if annualization not in BARS_PER_YEAR:
        raise ValueError(f"Unknown annualization convention: {annualization}")
    return BARS_PER_YEAR[annualization].get(interval, BARS_PER_YEAR[annualization]["1d"])


class PerformanceAnalytics:
    """Trade-level and risk-adjusted metrics for completed backtests.

    ``risk_free_rate`` is annual and converted to a per-bar rate using the
    same bars-per-year factor that annualizes the ratios.
    """

    def __init__(
        self,
        store=None,
        risk_free_rate: float | None = None,
        annualization: str | None = None,
    ) -> None:
        self._store = store
        self._risk_free_rate = (
            settings.metrics_risk_free_rate if risk_free_rate is None else risk_free_rate
        )
        self._annualization = annualization or settings.metrics_annualization
        # Fail fast on a bad convention rather than at the end of a run
        bars_per_year("1d", self._annualization)

    async def calculate_metrics(self, run_id: int) -> PerformanceMetrics:
        """Recompute metrics for a stored run from its persisted ledger and curve."""
        if self._store is None:
            raise RuntimeError("PerformanceAnalytics needs a store to load run data")

        run = await self._store.get_run(run_id)
        if run is None:
            raise LookupError(f"Backtest run {run_id} not found")

        trades = await self._store.list_trades(run_id)
        equity_curve = await self._store.list_equity_curve(run_id)
        return self.compute(
            trades, equity_curve, run.initial_cash, interval_for_horizon(run.time_horizon)
        )

    def compute(
        self,
        trades: Sequence[TradeRecord],
        equity_curve: Sequence[EquityPoint],
        initial_cash: float,
        interval: str = "1d",
    ) -> PerformanceMetrics:
        """Compute all metrics from an in-memory ledger and equity curve."""
        periods = bars_per_year(interval, self._annualization)

        if equity_curve:
            final_equity = equity_curve[-1].total_equity
            final_cash = equity_curve[-1].cash
        else:
            final_equity = initial_cash
            final_cash = initial_cash

        total_return = final_equity - initial_cash
        total_return_pct = total_return / initial_cash * 100 if initial_cash > 0 else 0.0

        returns = _period_returns(equity_curve)
        rf_per_period = self._risk_free_rate / periods
        max_dd, max_dd_date = _max_drawdown(equity_curve)
        stats = _trade_stats(trades)

        metrics = PerformanceMetrics(
            total_trades=stats["total_trades"],
            winning_trades=stats["winning_trades"],
            losing_trades=stats["losing_trades"],
            win_rate=stats["win_rate"],
            final_cash=final_cash,
            final_equity=final_equity,
            total_return=total_return,
            total_return_pct=total_return_pct,
            annualized_return_pct=_annualize_return(
                total_return_pct, max(len(equity_curve) - 1, 0), periods
            ),
            sharpe_ratio=_sharpe(returns, rf_per_period, periods),
            sortino_ratio=_sortino(returns, rf_per_period, periods),
            max_drawdown=max_dd,
            max_drawdown_date=max_dd_date,
            avg_win_pct=stats["avg_win_pct"],
            avg_loss_pct=stats["avg_loss_pct"],
            profit_factor=stats["profit_factor"],
            expectancy=stats["expectancy"],
            max_consecutive_wins=stats["max_consecutive_wins"],
            max_consecutive_losses=stats["max_consecutive_losses"],
            avg_holding_period=stats["avg_holding_period"],
            total_commission=sum(t.commission for t in trades),
            total_slippage=sum(t.slippage_amount for t in trades),
        )
        logger.debug("Computed metrics: %s", metrics)
        return metrics


def _period_returns(equity_curve: Sequence[EquityPoint]) -> list[float]:
    """Per-bar simple returns of total equity."""
    returns = []
    for prev, curr in zip(equity_curve, equity_curve[1:]):
        if prev.total_equity > 0:
            returns.append((curr.total_equity - prev.total_equity) / prev.total_equity)
    return returns


def _sharpe(returns: list[float], rf_per_period: float, periods: int) -> float | None:
    """Annualized Sharpe ratio: mean excess return / std of returns * sqrt(periods)."""
    if len(returns) < 2:
        return None

    mean_excess = sum(r - rf_per_period for r in returns) / len(returns)
    mean_ret = sum(returns) / len(returns)
    variance = sum((r - mean_ret) ** 2 for r in returns) / (len(returns) - 1)
    std_ret = math.sqrt(variance)

    if std_ret == 0:
        return None
    return mean_excess / std_ret * math.sqrt(periods)


def _sortino(returns: list[float], rf_per_period: float, periods: int) -> float | None:
    """Annualized Sortino ratio. Downside deviation uses negative excess returns only."""
    if len(returns) < 2:
        return None

    excess = [r - rf_per_period for r in returns]
    mean_excess = sum(excess) / len(excess)
    downside = [e for e in excess if e < 0]
    if not downside:
        return None

    downside_dev = math.sqrt(sum(e ** 2 for e in downside) / len(downside))
    if downside_dev == 0:
        return None
    return mean_excess / downside_dev * math.sqrt(periods)


def _max_drawdown(equity_curve: Sequence[EquityPoint]) -> tuple[float | None, datetime | None]:
    """Deepest drawdown percentage (<= 0) and when it occurred."""
    if not equity_curve:
        return None, None

    worst = min(equity_curve, key=lambda p: p.drawdown_pct)
    if worst.drawdown_pct >= 0:
        return 0.0, None
    return worst.drawdown_pct, worst.timestamp


def _annualize_return(total_return_pct: float, bars: int, periods: int) -> float:
    """Compound annualized return over ``bars`` bars."""
    if bars <= 0:
        return 0.0
    years = bars / periods
    total_factor = 1 + total_return_pct / 100
    if total_factor <= 0:
        return -100.0
    try:
        return (total_factor ** (1 / years) - 1) * 100
    except OverflowError:
        return math.inf if total_factor > 1 else -100.0


def _trade_stats(trades: Sequence[TradeRecord]) -> dict:
    """Win rate, profit factor, average win/loss, expectancy, streaks."""
    sells = [t for t in trades if t.side == OrderSide.SELL]
    if not sells:
        return {
            "total_trades": 0,
            "winning_trades": 0,
            "losing_trades": 0,
            "win_rate": 0.0,
            "avg_win_pct": None,
            "avg_loss_pct": None,
            "profit_factor": None,
            "expectancy": None,
            "max_consecutive_wins": 0,
            "max_consecutive_losses": 0,
            "avg_holding_period": 0.0,
        }

    wins = [t for t in sells if (t.realized_pl or 0) > 0]
    losses = [t for t in sells if (t.realized_pl or 0) < 0]

    gross_profit = sum(t.realized_pl for t in wins)
    gross_loss = abs(sum(t.realized_pl for t in losses))

    avg_win_pct = sum(t.realized_pl_pct or 0 for t in wins) / len(wins) if wins else None
    avg_loss_pct = sum(t.realized_pl_pct or 0 for t in losses) / len(losses) if losses else None

    win_fraction = len(wins) / len(sells)
    expectancy = (
        win_fraction * (avg_win_pct or 0.0)
        - (1 - win_fraction) * abs(avg_loss_pct or 0.0)
    )

    # Consecutive streaks (breakeven trades end both streaks)
    max_wins = 0
    max_losses = 0
    current_wins = 0
    current_losses = 0
    for t in sells:
        pl = t.realized_pl or 0
        if pl > 0:
            current_wins += 1
            current_losses = 0
        elif pl < 0:
            current_losses += 1
            current_wins = 0
        else:
            current_wins = 0
            current_losses = 0
        max_wins = max(max_wins, current_wins)
        max_losses = max(max_losses, current_losses)

    total_holding = sum(t.holding_period or 0 for t in sells)

    return {
        "total_trades": len(sells),
        "winning_trades": len(wins),
        "losing_trades": len(losses),
        "win_rate": win_fraction * 100,
        "avg_win_pct": avg_win_pct,
        "avg_loss_pct": avg_loss_pct,
        "profit_factor": gross_profit / gross_loss if gross_loss > 0 else None,
        "expectancy": expectancy,
        "max_consecutive_wins": max_wins,
        "max_consecutive_losses": max_losses,
        "avg_holding_period": total_holding / len(sells),
    }
