"""OHLCV bar cache backed by PostgreSQL.

Uses upsert logic so re-fetching a range never creates duplicates.
"""

import logging
from datetime import datetime

from sqlalchemy import select
from sqlalchemy.dialects.postgresql import insert as pg_insert

from simtrade.database import async_session
from simtrade.models.ohlcv import OHLCV
from simtrade.services.data.bars import HistoricalBar

logger = logging.getLogger(__name__)

UPSERT_CHUNK_SIZE = 1000


def build_upsert(rows: list[dict]):
    """INSERT ... ON CONFLICT (symbol, interval, timestamp) DO NOTHING."""
    return (
        pg_insert(OHLCV)
        .values(rows)
        .on_conflict_do_nothing(index_elements=["symbol", "interval", "timestamp"])
    )


class BarCache:
    """Read and write cached bars for (symbol, interval)."""

    def __init__(self, session_factory=None) -> None:
        self._session_factory = session_factory or async_session

    async def load_bars(
        self, symbol: str, interval: str, start: datetime, end: datetime
    ) -> list[HistoricalBar]:
        """Cached bars in [start, end], ascending by timestamp."""
        async with self._session_factory() as session:
            stmt = (
                select(OHLCV)
                .where(
                    OHLCV.symbol == symbol,
                    OHLCV.interval == interval,
                    OHLCV.timestamp >= start,
                    OHLCV.timestamp <= end,
                )
                .order_by(OHLCV.timestamp.asc())
            )
            result = await session.execute(stmt)
            rows = result.scalars().all()

        return [
            HistoricalBar(
                timestamp=r.timestamp,
                open=r.open,
                high=r.high,
                low=r.low,
                close=r.close,
                volume=float(r.volume),
            )
            for r in rows
        ]

    async def store_bars(self, symbol: str, interval: str, bars: list[HistoricalBar]) -> int:
        """Upsert bars. Returns the number of rows submitted."""
        if not bars:
            return 0

        rows = [
            {
                "symbol": symbol,
                "interval": interval,
                "timestamp": b.timestamp,
                "open": b.open,
                "high": b.high,
                "low": b.low,
                "close": b.close,
                "volume": int(b.volume),
            }
            for b in bars
        ]
        async with self._session_factory() as session:
            # Chunked to stay under PostgreSQL's bind parameter limit
            for i in range(0, len(rows), UPSERT_CHUNK_SIZE):
                await session.execute(build_upsert(rows[i : i + UPSERT_CHUNK_SIZE]))
            await session.commit()

        logger.info("Cached %d %s bars for %s", len(rows), interval, symbol)
        return len(rows)
