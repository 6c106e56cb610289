"""Backtest error and warning taxonomy.

Errors abort a run. Warnings describe a single skipped order and never abort;
the portfolio engine hands them back on its diagnostics channel instead of
raising them.
"""


class BacktestError(Exception):
    """Base class for errors that fail a backtest run."""


class DataUnavailableError(BacktestError):
    """Not enough historical bars to simulate, even after fetching."""


class InvalidConfigError(BacktestError):
    """Run configuration or strategy definition cannot be used."""


class RunCancelledError(BacktestError):
    """The caller asked the run to stop between bars."""


class RunExecutionError(BacktestError):
    """Unexpected failure while a run was executing.

    Wraps the original exception, which is also chained as ``__cause__``.
    """

    def __init__(self, run_id: int, original: BaseException) -> None:
        super().__init__(f"Backtest run {run_id} failed: {original}")
        self.run_id = run_id
        self.original = original


class BacktestWarning(UserWarning):
    """An order was skipped. Carries enough context to act on programmatically."""

    def __init__(self, symbol: str, message: str) -> None:
        super().__init__(message)
        self.symbol = symbol
        self.message = message


class InsufficientFundsWarning(BacktestWarning):
    """Buy skipped because its net cost exceeds available cash."""

    def __init__(self, symbol: str, required: float, available: float) -> None:
        super().__init__(
            symbol,
            f"Insufficient cash for {symbol}: need ${required:.2f}, have ${available:.2f}",
        )
        self.required = required
        self.available = available


class NoOpenPositionWarning(BacktestWarning):
    """Sell skipped because there is no open position to sell from."""

    def __init__(self, symbol: str) -> None:
        super().__init__(symbol, f"No open position for {symbol}")
