"""Tests for the yfinance price source and the bar cache upsert."""

from datetime import datetime, timezone
from unittest.mock import MagicMock, patch

import pandas as pd
import pytest
from sqlalchemy.dialects import postgresql

from simtrade.services.data.bar_cache import build_upsert
from simtrade.services.data.yfinance_feed import (
    PriceSourceError,
    PriceSourceNoDataError,
    YFinanceHistorySource,
    frame_to_bars,
)


def _history_frame() -> pd.DataFrame:
    index = pd.DatetimeIndex(
        ["2024-03-05 09:30", "2024-03-04 09:30"], tz="America/New_York", name="Date"
    )
    return pd.DataFrame(
        {
            "Open": [101.0, 100.0],
            "High": [103.0, 102.0],
            "Low": [100.5, 99.0],
            "Close": [102.5, 101.0],
            "Volume": [1_500, 1_200],
        },
        index=index,
    )


class TestFrameToBars:
    def test_sorted_and_utc(self):
        bars = frame_to_bars(_history_frame())
        assert [b.timestamp for b in bars] == [
            datetime(2024, 3, 4, 14, 30, tzinfo=timezone.utc),
            datetime(2024, 3, 5, 14, 30, tzinfo=timezone.utc),
        ]
        assert bars[0].close == 101.0
        assert bars[1].volume == 1_500.0

    def test_naive_index_assumed_utc(self):
        df = _history_frame().tz_localize(None)
        bars = frame_to_bars(df)
        assert bars[0].timestamp.tzinfo == timezone.utc


class TestYFinanceHistorySource:
    @pytest.mark.asyncio
    async def test_fetch(self):
        ticker = MagicMock()
        ticker.history.return_value = _history_frame()
        with patch("simtrade.services.data.yfinance_feed.yf.Ticker", return_value=ticker):
            bars = await YFinanceHistorySource().fetch(
                "AAPL", "1d",
                datetime(2024, 3, 4, tzinfo=timezone.utc),
                datetime(2024, 3, 5, tzinfo=timezone.utc),
            )
        assert len(bars) == 2
        kwargs = ticker.history.call_args.kwargs
        assert kwargs["interval"] == "1d"
        # End is inclusive, so one day is added for yfinance
        assert kwargs["end"] == datetime(2024, 3, 6, tzinfo=timezone.utc)

    @pytest.mark.asyncio
    async def test_empty_history(self):
        ticker = MagicMock()
        ticker.history.return_value = pd.DataFrame()
        with patch("simtrade.services.data.yfinance_feed.yf.Ticker", return_value=ticker):
            with pytest.raises(PriceSourceNoDataError):
                await YFinanceHistorySource().fetch(
                    "NOPE", "1d",
                    datetime(2024, 3, 4, tzinfo=timezone.utc),
                    datetime(2024, 3, 5, tzinfo=timezone.utc),
                )

    @pytest.mark.asyncio
    async def test_upstream_failure_is_wrapped(self):
        ticker = MagicMock()
        ticker.history.side_effect = ConnectionError("reset by peer")
        with patch("simtrade.services.data.yfinance_feed.yf.Ticker", return_value=ticker):
            with pytest.raises(PriceSourceError, match="reset by peer"):
                await YFinanceHistorySource().fetch(
                    "AAPL", "15m",
                    datetime(2024, 3, 4, tzinfo=timezone.utc),
                    datetime(2024, 3, 5, tzinfo=timezone.utc),
                )


class TestBarCacheUpsert:
    def test_duplicates_are_ignored(self):
        rows = [
            {
                "symbol": "AAPL",
                "interval": "1d",
                "timestamp": datetime(2024, 3, 4, tzinfo=timezone.utc),
                "open": 100.0,
                "high": 102.0,
                "low": 99.0,
                "close": 101.0,
                "volume": 1_200,
            }
        ]
        sql = str(build_upsert(rows).compile(dialect=postgresql.dialect()))
        assert "ON CONFLICT" in sql
        assert sql.rstrip().endswith("DO NOTHING")
