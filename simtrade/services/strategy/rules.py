"""Built-in entry and exit rules, and the registry that resolves them by name.

Unknown rule names and bad params raise ValueError.
"""

import logging

import pandas as pd

from simtrade.services.data.bars import HistoricalBar
from simtrade.services.strategy.base import SignalEvaluator, Strategy
from simtrade.services.strategy.indicators import rsi, sma

logger = logging.getLogger(__name__)


class PeriodicEntry(SignalEvaluator):
    """Enter on every Nth bar of the run (bar indices every, 2*every, ...)."""

    def __init__(self, every: int = 50) -> None:
        if every < 1:
            raise ValueError("every must be >= 1")
        self._every = every

    @property
    def name(self) -> str:
        return "periodic_entry"

    def evaluate(self, bar: HistoricalBar, window: pd.DataFrame, position) -> bool:
        index = len(window) - 1
        return index > 0 and index % self._every == 0


class HoldingPeriodExit(SignalEvaluator):
    """Exit after ``max_bars`` bars held, or at a take-profit / stop-loss percentage.

    Percentages are unrealized P&L on the position's cost basis.
    """

    def __init__(
        self,
        max_bars: int = 10,
        take_profit_pct: float = 5.0,
        stop_loss_pct: float = -2.0,
    ) -> None:
        self._max_bars = max_bars
        self._take_profit_pct = take_profit_pct
        self._stop_loss_pct = stop_loss_pct

    @property
    def name(self) -> str:
        return "holding_period_exit"

    def evaluate(self, bar: HistoricalBar, window: pd.DataFrame, position) -> bool:
        if position is None:
            return False
        bars_held = int((window.index > position.entry_bar).sum())
        return (
            bars_held >= self._max_bars
            or position.unrealized_pl_pct >= self._take_profit_pct
            or position.unrealized_pl_pct <= self._stop_loss_pct
        )


class RsiEntry(SignalEvaluator):
    """Enter when RSI closes below an oversold threshold."""

    def __init__(self, period: int = 14, threshold: float = 30.0) -> None:
        self._period = period
        self._threshold = threshold

    @property
    def name(self) -> str:
        return "rsi_entry"

    def evaluate(self, bar: HistoricalBar, window: pd.DataFrame, position) -> bool:
        if len(window) <= self._period:
            return False
        current = rsi(window["close"], self._period).iloc[-1]
        return bool(not pd.isna(current) and current < self._threshold)


class RsiExit(SignalEvaluator):
    """Exit when RSI closes above an overbought threshold."""

    def __init__(self, period: int = 14, threshold: float = 70.0) -> None:
        self._period = period
        self._threshold = threshold

    @property
    def name(self) -> str:
        return "rsi_exit"

    def evaluate(self, bar: HistoricalBar, window: pd.DataFrame, position) -> bool:
        if len(window) <= self._period:
            return False
        current = rsi(window["close"], self._period).iloc[-1]
        return bool(not pd.isna(current) and current > self._threshold)


class _SmaCross(SignalEvaluator):
    def __init__(self, fast: int = 10, slow: int = 30) -> None:
        if fast >= slow:
            raise ValueError("fast period must be shorter than slow period")
        self._fast = fast
        self._slow = slow

    def _spread(self, window: pd.DataFrame) -> tuple[float, float] | None:
        """(previous, current) fast-minus-slow spread, or None during warmup."""
        if len(window) < self._slow + 1:
            return None
        close = window["close"]
        spread = sma(close, self._fast) - sma(close, self._slow)
        prev, curr = spread.iloc[-2], spread.iloc[-1]
        if pd.isna(prev) or pd.isna(curr):
            return None
        return prev, curr


class SmaCrossEntry(_SmaCross):
    """Enter when the fast SMA crosses above the slow SMA."""

    @property
    def name(self) -> str:
        return "sma_cross_entry"

    def evaluate(self, bar: HistoricalBar, window: pd.DataFrame, position) -> bool:
        spread = self._spread(window)
        return bool(spread is not None and spread[0] <= 0 < spread[1])


class SmaCrossExit(_SmaCross):
    """Exit when the fast SMA crosses below the slow SMA."""

    @property
    def name(self) -> str:
        return "sma_cross_exit"

    def evaluate(self, bar: HistoricalBar, window: pd.DataFrame, position) -> bool:
        spread = self._spread(window)
        return bool(spread is not None and spread[0] >= 0 > spread[1])


EVALUATOR_MAP: dict[str, type[SignalEvaluator]] = {
    "periodic_entry": PeriodicEntry,
    "holding_period_exit": HoldingPeriodExit,
    "rsi_entry": RsiEntry,
    "rsi_exit": RsiExit,
    "sma_cross_entry": SmaCrossEntry,
    "sma_cross_exit": SmaCrossExit,
}


def build_evaluator(rule: str, params: dict | None = None) -> SignalEvaluator:
    """Instantiate a registered rule with its params."""
    if rule not in EVALUATOR_MAP:
        raise ValueError(
            f"Unknown signal rule '{rule}'. Available: {', '.join(sorted(EVALUATOR_MAP))}"
        )
    try:
        return EVALUATOR_MAP[rule](**(params or {}))
    except (TypeError, ValueError) as e:
        raise ValueError(f"Invalid params for rule '{rule}': {e}") from e


def build_strategy(definition) -> Strategy:
    """Resolve a stored strategy definition into evaluators."""
    strategy = Strategy(
        name=definition.name,
        entry=build_evaluator(definition.entry_rule, definition.entry_params),
        exit=build_evaluator(definition.exit_rule, definition.exit_params),
    )
    logger.debug(
        "Built strategy %s: entry=%s exit=%s",
        strategy.name, strategy.entry.name, strategy.exit.name,
    )
    return strategy
