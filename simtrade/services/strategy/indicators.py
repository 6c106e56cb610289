"""Technical indicators used by the built-in signal rules.

Pure pandas/numpy implementations, no external TA library needed.
"""

import numpy as np
import pandas as pd


def rsi(series: pd.Series, period: int = 14) -> pd.Series:
    """Relative Strength Index (0-100).

    Args:
        series: Price series (typically closes).
        period: Lookback period.

    Returns:
        RSI values as a Series. NaN until ``period`` bars are available.
    """
    delta = series.diff()
    gain = delta.where(delta > 0, 0.0)
    loss = -delta.where(delta < 0, 0.0)

    avg_gain = gain.ewm(alpha=1 / period, min_periods=period).mean()
    avg_loss = loss.ewm(alpha=1 / period, min_periods=period).mean()

    rs = avg_gain / avg_loss.replace(0, np.nan)
    values = 100 - (100 / (1 + rs))
    # No losses in the window means maximum strength, not undefined
    return values.where(~(avg_loss == 0) | avg_gain.isna(), 100.0)


def sma(series: pd.Series, period: int = 20) -> pd.Series:
    """Simple Moving Average.

    Args:
        series: Price series.
        period: Lookback period.

    Returns:
        SMA values as a Series. NaN until ``period`` bars are available.
    """
    return series.rolling(window=period).mean()
