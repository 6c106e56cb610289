"""SQLAlchemy models for SimTrade."""

from simtrade.models.backtest import (
    BacktestAlert,
    BacktestEquityPoint,
    BacktestPosition,
    BacktestRun,
    BacktestTrade,
)
from simtrade.models.ohlcv import OHLCV
from simtrade.models.strategy import StrategyConfig

__all__ = [
    "OHLCV",
    "StrategyConfig",
    "BacktestRun",
    "BacktestPosition",
    "BacktestTrade",
    "BacktestEquityPoint",
    "BacktestAlert",
]
