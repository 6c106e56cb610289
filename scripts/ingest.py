"""CLI for warming the OHLCV bar cache ahead of backtests.

Usage:
    python scripts/ingest.py --symbols AAPL MSFT --horizon SWING --start 2023-01-01 --end 2024-12-31
    python scripts/ingest.py --symbols SPY --horizon SHORT_TERM --start 2024-09-01 --end 2024-10-01
"""

import argparse
import asyncio
import logging
import sys
from datetime import datetime, timezone

from simtrade.config import settings

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s %(levelname)-5s [%(name)s] %(message)s",
    datefmt="%H:%M:%S",
)
logger = logging.getLogger(__name__)


async def do_prefetch(symbols: list[str], horizon: str, start: datetime, end: datetime) -> int:
    """Load each symbol through the data provider, fetching whatever the cache lacks."""
    from simtrade.services.backtest import DataUnavailableError, HistoricalDataProvider

    provider = HistoricalDataProvider()
    failures = 0

    print("\n=== Cache Results ===")
    for symbol in symbols:
        try:
            bars = await provider.load_historical_bars(symbol, horizon, start, end)
        except DataUnavailableError as e:
            logger.error("%s: %s", symbol, e)
            print(f"  {symbol}: FAILED")
            failures += 1
            continue
        print(f"  {symbol}: {len(bars):,} bars ({bars[0].timestamp:%Y-%m-%d} to {bars[-1].timestamp:%Y-%m-%d})")
    print("=====================\n")
    return failures


def main() -> None:
    parser = argparse.ArgumentParser(description="Prefetch historical bars into the cache")
    parser.add_argument("--symbols", nargs="+", required=True, help="Tickers to cache")
    parser.add_argument(
        "--horizon", default="SWING",
        choices=["SHORT_TERM", "SWING", "LONG_TERM"],
        help="Time horizon that determines the bar interval (default: SWING)",
    )
    parser.add_argument("--start", required=True, help="Start date, YYYY-MM-DD")
    parser.add_argument("--end", required=True, help="End date, YYYY-MM-DD")
    args = parser.parse_args()

    start = datetime.strptime(args.start, "%Y-%m-%d").replace(tzinfo=timezone.utc)
    end = datetime.strptime(args.end, "%Y-%m-%d").replace(tzinfo=timezone.utc)
    if start >= end:
        parser.error("--start must be before --end")

    failures = asyncio.run(
        do_prefetch([s.upper() for s in args.symbols], args.horizon, start, end)
    )
    if failures:
        sys.exit(1)


if __name__ == "__main__":
    main()
