"""yfinance price-history source for backtests.

Free, no authentication. yfinance is synchronous, so fetches run in a worker
thread to keep the event loop responsive.
"""

import asyncio
import logging
from datetime import datetime, timedelta, timezone

import pandas as pd
import yfinance as yf
from yfinance.exceptions import YFRateLimitError

from simtrade.services.data.bars import HistoricalBar

logger = logging.getLogger(__name__)


class PriceSourceError(Exception):
    """The price-history source could not return bars."""


class PriceSourceRateLimitError(PriceSourceError):
    """The upstream API throttled the request."""


class PriceSourceNoDataError(PriceSourceError):
    """The upstream API returned no bars for the symbol and range."""


class YFinanceHistorySource:
    """Fetch historical OHLCV bars from yfinance."""

    def _fetch_sync(
        self, symbol: str, interval: str, start: datetime, end: datetime
    ) -> list[HistoricalBar]:
        """Synchronous fetch. ``end`` is inclusive."""
        try:
            ticker = yf.Ticker(symbol)
            # yfinance treats end as exclusive
            df = ticker.history(
                start=start,
                end=end + timedelta(days=1),
                interval=interval,
                auto_adjust=False,
            )
        except YFRateLimitError as e:
            raise PriceSourceRateLimitError(f"yfinance rate limit hit for {symbol}") from e
        except Exception as e:
            raise PriceSourceError(f"yfinance fetch failed for {symbol}: {e}") from e

        if df is None or df.empty:
            raise PriceSourceNoDataError(
                f"No {interval} data returned for {symbol} between "
                f"{start.date()} and {end.date()}"
            )

        return frame_to_bars(df)

    async def fetch(
        self, symbol: str, interval: str, start: datetime, end: datetime
    ) -> list[HistoricalBar]:
        """Fetch bars for ``symbol`` at ``interval`` between ``start`` and ``end``."""
        bars = await asyncio.to_thread(self._fetch_sync, symbol, interval, start, end)
        logger.info("Fetched %d %s bars for %s from yfinance", len(bars), interval, symbol)
        return bars


def frame_to_bars(df: pd.DataFrame) -> list[HistoricalBar]:
    """Convert a yfinance history frame into ascending HistoricalBars."""
    bars = []
    for ts, row in df.sort_index().iterrows():
        # yfinance returns timezone-aware DatetimeIndex
        ts_dt = ts.to_pydatetime() if hasattr(ts, "to_pydatetime") else ts
        if ts_dt.tzinfo is None:
            ts_dt = ts_dt.replace(tzinfo=timezone.utc)
        else:
            ts_dt = ts_dt.astimezone(timezone.utc)

        bars.append(
            HistoricalBar(
                timestamp=ts_dt,
                open=float(row["Open"]),
                high=float(row["High"]),
                low=float(row["Low"]),
                close=float(row["Close"]),
                volume=float(row.get("Volume", 0) or 0),
            )
        )
    return bars
