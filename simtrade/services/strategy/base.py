"""Signal evaluator contract for backtests.

The backtest core only ever asks one question per bar: given this bar, the
bars so far, and the open position (or None), should we act? Indicator logic
lives behind that boolean.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass

import pandas as pd

from simtrade.services.data.bars import HistoricalBar


class SignalEvaluator(ABC):
    """Pluggable boolean decision function."""

    @property
    @abstractmethod
    def name(self) -> str:
        ...

    @abstractmethod
    def evaluate(self, bar: HistoricalBar, window: pd.DataFrame, position) -> bool:
        """Decide for ``bar``.

        Args:
            bar: The bar being processed.
            window: OHLCV DataFrame of every bar up to and including ``bar``.
            position: The open position when evaluating an exit, else None.
        """


@dataclass
class Strategy:
    """An entry rule paired with an exit rule."""

    name: str
    entry: SignalEvaluator
    exit: SignalEvaluator
