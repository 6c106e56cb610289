"""Price bar type shared by the price source, the bar cache and the backtest core."""

from dataclasses import dataclass
from datetime import datetime


@dataclass(frozen=True)
class HistoricalBar:
    """One OHLCV bar in dollars, UTC timestamp. Never modified once produced."""

    timestamp: datetime
    open: float
    high: float
    low: float
    close: float
    volume: float
