"""Backtest simulation core.

Walk-forward simulator: historical bars in, a persisted run with trades,
equity curve and performance metrics out.
"""

from simtrade.services.backtest.controller import (
    BacktestConfig,
    BacktestController,
    PositionSizing,
    calculate_position_size,
)
from simtrade.services.backtest.data_provider import HistoricalDataProvider, TimeHorizon
from simtrade.services.backtest.errors import (
    BacktestError,
    DataUnavailableError,
    InvalidConfigError,
    RunCancelledError,
    RunExecutionError,
)
from simtrade.services.backtest.metrics import PerformanceAnalytics
from simtrade.services.backtest.portfolio import VirtualPortfolioEngine

__all__ = [
    "BacktestConfig",
    "BacktestController",
    "BacktestError",
    "DataUnavailableError",
    "HistoricalDataProvider",
    "InvalidConfigError",
    "PerformanceAnalytics",
    "PositionSizing",
    "RunCancelledError",
    "RunExecutionError",
    "TimeHorizon",
    "VirtualPortfolioEngine",
    "calculate_position_size",
]
