"""Historical bar loading for backtests: cache first, fetch what's missing."""

import logging
import math
from datetime import datetime
from enum import Enum

import pandas as pd

from simtrade.config import settings
from simtrade.services.backtest.errors import DataUnavailableError
from simtrade.services.backtest.records import HistoricalBar
from simtrade.services.data.bar_cache import BarCache
from simtrade.services.data.yfinance_feed import PriceSourceError, YFinanceHistorySource

logger = logging.getLogger(__name__)


class TimeHorizon(str, Enum):
    SHORT_TERM = "SHORT_TERM"
    SWING = "SWING"
    LONG_TERM = "LONG_TERM"


INTERVAL_FOR_HORIZON: dict[TimeHorizon, str] = {
    TimeHorizon.SHORT_TERM: "15m",  # day trading
    TimeHorizon.SWING: "1d",
    TimeHorizon.LONG_TERM: "1d",
}

# Bars per US session (09:30-16:00) by interval
BARS_PER_SESSION: dict[str, int] = {
    "15m": 26,
    "1h": 7,
    "1d": 1,
}

TRADING_DAY_RATIO = 5 / 7  # weekdays only
HOLIDAY_FACTOR = 0.96  # ~10 market holidays a year


def interval_for_horizon(time_horizon: TimeHorizon | str) -> str:
    return INTERVAL_FOR_HORIZON.get(TimeHorizon(time_horizon), "1d")


def expected_bar_count(start: datetime, end: datetime, interval: str = "1d") -> int:
    """Approximate bars between two dates, skipping weekends and holidays."""
    days = math.ceil(abs((end - start).total_seconds()) / 86400)
    trading_days = math.floor(days * TRADING_DAY_RATIO * HOLIDAY_FACTOR)
    return max(trading_days * BARS_PER_SESSION.get(interval, 1), 1)


def bars_to_frame(bars: list[HistoricalBar]) -> pd.DataFrame:
    """Bars as a timestamp-indexed OHLCV DataFrame."""
    df = pd.DataFrame(
        {
            "timestamp": [b.timestamp for b in bars],
            "open": [b.open for b in bars],
            "high": [b.high for b in bars],
            "low": [b.low for b in bars],
            "close": [b.close for b in bars],
            "volume": [b.volume for b in bars],
        }
    )
    df.set_index("timestamp", inplace=True)
    return df


class HistoricalDataProvider:
    """Supplies ascending bars for a symbol and date range.

    Strategy:
    1. Map the time horizon to a bar interval
    2. Read the cache
    3. If coverage is below the threshold, fetch the range and re-read
    4. Drop malformed bars
    5. Require a minimum bar count
    """

    def __init__(
        self,
        cache: BarCache | None = None,
        source=None,
        min_bars: int | None = None,
        coverage_threshold: float | None = None,
    ) -> None:
        self._cache = cache or BarCache()
        self._source = source or YFinanceHistorySource()
        self._min_bars = settings.data_min_bars if min_bars is None else min_bars
        self._coverage_threshold = (
            settings.data_cache_coverage_threshold
            if coverage_threshold is None
            else coverage_threshold
        )

    async def load_historical_bars(
        self,
        symbol: str,
        time_horizon: TimeHorizon | str,
        start_date: datetime,
        end_date: datetime,
    ) -> list[HistoricalBar]:
        interval = interval_for_horizon(time_horizon)
        logger.info(
            "Loading %s bars for %s from %s to %s",
            interval, symbol, start_date.isoformat(), end_date.isoformat(),
        )

        bars = await self._cache.load_bars(symbol, interval, start_date, end_date)
        expected = expected_bar_count(start_date, end_date, interval)
        coverage = len(bars) / expected
        logger.info(
            "Cache coverage for %s: %.1f%% (%d/%d bars)",
            symbol, coverage * 100, len(bars), expected,
        )

        if not bars or coverage < self._coverage_threshold:
            bars = await self._fetch_and_reload(symbol, interval, start_date, end_date, bars)

        bars = _drop_malformed(bars, symbol)

        if len(bars) < self._min_bars:
            raise DataUnavailableError(
                f"Insufficient data for {symbol}: only {len(bars)} {interval} bars "
                f"available (minimum {self._min_bars} required)"
            )
        return bars

    async def _fetch_and_reload(
        self,
        symbol: str,
        interval: str,
        start_date: datetime,
        end_date: datetime,
        cached: list[HistoricalBar],
    ) -> list[HistoricalBar]:
        logger.info("Insufficient cached data for %s, fetching from source", symbol)
        try:
            fetched = await self._source.fetch(symbol, interval, start_date, end_date)
            await self._cache.store_bars(symbol, interval, fetched)
        except PriceSourceError as e:
            if cached:
                logger.warning(
                    "Fetch failed for %s (%s); using %d partially cached bars",
                    symbol, e, len(cached),
                )
                return cached
            raise DataUnavailableError(
                f"No historical data available for {symbol}. Fetch failed: {e}"
            ) from e

        bars = await self._cache.load_bars(symbol, interval, start_date, end_date)
        logger.info("Loaded %d bars for %s after fetching", len(bars), symbol)
        return bars


def _drop_malformed(bars: list[HistoricalBar], symbol: str) -> list[HistoricalBar]:
    valid = [b for b in bars if b.close > 0 and b.high >= b.low]
    dropped = len(bars) - len(valid)
    if dropped:
        logger.warning("Dropped %d malformed bars for %s", dropped, symbol)
    return valid
