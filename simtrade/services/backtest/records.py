"""Backtest data structures. All money in dollars, all timestamps UTC."""

from dataclasses import asdict, dataclass
from datetime import datetime
from enum import Enum

from simtrade.services.data.bars import HistoricalBar

__all__ = [
    "EquityPoint",
    "HistoricalBar",
    "OrderSide",
    "PerformanceMetrics",
    "RunStatus",
    "TradeRecord",
]


class OrderSide(str, Enum):
    BUY = "BUY"
    SELL = "SELL"


class RunStatus(str, Enum):
    RUNNING = "RUNNING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


@dataclass(frozen=True)
class TradeRecord:
    """An executed simulated order. Append-only ledger entry."""

    symbol: str
    side: OrderSide
    quantity: float
    target_price: float
    executed_price: float
    slippage_amount: float
    commission: float
    gross_amount: float
    net_amount: float
    signal_bar: datetime
    execution_bar: datetime
    entry_reason: str | None = None
    exit_reason: str | None = None
    # Sells only
    entry_price: float | None = None
    realized_pl: float | None = None
    realized_pl_pct: float | None = None
    holding_period: int | None = None  # days


@dataclass(frozen=True)
class EquityPoint:
    """Portfolio value at the close of one bar."""

    timestamp: datetime
    cash: float
    stock_value: float
    total_equity: float
    high_water_mark: float
    drawdown: float
    drawdown_pct: float
    cumulative_return: float  # percent
    trade_count: int


@dataclass
class PerformanceMetrics:
    """Final metrics for a completed run. Ratios are None when undefined."""

    total_trades: int
    winning_trades: int
    losing_trades: int
    win_rate: float
    final_cash: float
    final_equity: float
    total_return: float
    total_return_pct: float
    annualized_return_pct: float
    sharpe_ratio: float | None
    sortino_ratio: float | None
    max_drawdown: float | None
    max_drawdown_date: datetime | None
    avg_win_pct: float | None
    avg_loss_pct: float | None
    profit_factor: float | None
    expectancy: float | None
    max_consecutive_wins: int
    max_consecutive_losses: int
    avg_holding_period: float
    total_commission: float
    total_slippage: float

    def to_dict(self) -> dict:
        """Serialize to a JSON-safe dict."""
        d = asdict(self)
        if self.max_drawdown_date is not None:
            d["max_drawdown_date"] = self.max_drawdown_date.isoformat()
        return d
