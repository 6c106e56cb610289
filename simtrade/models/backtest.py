"""Backtest run, position, trade, equity curve and alert models. Money in dollars."""

from datetime import datetime, timezone

from sqlalchemy import Boolean, DateTime, Float, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from simtrade.database import Base


class BacktestRun(Base):
    """One simulation run: its configuration, lifecycle and final metrics."""

    __tablename__ = "backtest_runs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    # No FK: a run for an unknown strategy is recorded and then marked FAILED
    strategy_id: Mapped[int] = mapped_column(Integer, nullable=False)
    symbol: Mapped[str] = mapped_column(String(20), nullable=False)
    time_horizon: Mapped[str] = mapped_column(String(20), nullable=False)  # SHORT_TERM, SWING, LONG_TERM
    start_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    end_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    initial_cash: Mapped[float] = mapped_column(Float, nullable=False)
    position_sizing: Mapped[str] = mapped_column(String(20), nullable=False)
    position_size: Mapped[float] = mapped_column(Float, nullable=False)
    slippage_bps: Mapped[float] = mapped_column(Float, nullable=False)
    commission_per_trade: Mapped[float] = mapped_column(Float, nullable=False)

    status: Mapped[str] = mapped_column(String(20), nullable=False)  # RUNNING, COMPLETED, FAILED
    execution_time_ms: Mapped[int | None] = mapped_column(Integer, nullable=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc)
    )
    finished_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    # Final metrics (null until COMPLETED)
    total_trades: Mapped[int | None] = mapped_column(Integer, nullable=True)
    winning_trades: Mapped[int | None] = mapped_column(Integer, nullable=True)
    losing_trades: Mapped[int | None] = mapped_column(Integer, nullable=True)
    win_rate: Mapped[float | None] = mapped_column(Float, nullable=True)
    final_cash: Mapped[float | None] = mapped_column(Float, nullable=True)
    final_equity: Mapped[float | None] = mapped_column(Float, nullable=True)
    total_return: Mapped[float | None] = mapped_column(Float, nullable=True)
    total_return_pct: Mapped[float | None] = mapped_column(Float, nullable=True)
    annualized_return_pct: Mapped[float | None] = mapped_column(Float, nullable=True)
    sharpe_ratio: Mapped[float | None] = mapped_column(Float, nullable=True)
    sortino_ratio: Mapped[float | None] = mapped_column(Float, nullable=True)
    max_drawdown: Mapped[float | None] = mapped_column(Float, nullable=True)
    max_drawdown_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    avg_win_pct: Mapped[float | None] = mapped_column(Float, nullable=True)
    avg_loss_pct: Mapped[float | None] = mapped_column(Float, nullable=True)
    profit_factor: Mapped[float | None] = mapped_column(Float, nullable=True)
    expectancy: Mapped[float | None] = mapped_column(Float, nullable=True)
    max_consecutive_wins: Mapped[int | None] = mapped_column(Integer, nullable=True)
    max_consecutive_losses: Mapped[int | None] = mapped_column(Integer, nullable=True)
    avg_holding_period: Mapped[float | None] = mapped_column(Float, nullable=True)
    total_commission: Mapped[float | None] = mapped_column(Float, nullable=True)
    total_slippage: Mapped[float | None] = mapped_column(Float, nullable=True)

    __table_args__ = (
        Index("ix_backtest_runs_status", "status"),
        Index("ix_backtest_runs_strategy", "strategy_id"),
    )


class BacktestPosition(Base):
    """Last known state of a simulated position. One row per run and symbol."""

    __tablename__ = "backtest_positions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    backtest_run_id: Mapped[int] = mapped_column(ForeignKey("backtest_runs.id"), nullable=False)
    symbol: Mapped[str] = mapped_column(String(20), nullable=False)
    quantity: Mapped[float] = mapped_column(Float, nullable=False)
    avg_entry_price: Mapped[float] = mapped_column(Float, nullable=False)
    total_cost: Mapped[float] = mapped_column(Float, nullable=False)
    current_price: Mapped[float] = mapped_column(Float, nullable=False)
    market_value: Mapped[float] = mapped_column(Float, nullable=False)
    unrealized_pl: Mapped[float] = mapped_column(Float, nullable=False)
    unrealized_pl_pct: Mapped[float] = mapped_column(Float, nullable=False)
    high_water_mark: Mapped[float] = mapped_column(Float, nullable=False)
    max_drawdown_pct: Mapped[float] = mapped_column(Float, nullable=False)
    entry_bar: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    last_update_bar: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    exit_bar: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    is_open: Mapped[bool] = mapped_column(Boolean, nullable=False)

    __table_args__ = (
        Index("ix_backtest_positions_run_symbol", "backtest_run_id", "symbol", unique=True),
    )


class BacktestTrade(Base):
    """Executed simulated order. Rows are inserted once and never updated."""

    __tablename__ = "backtest_trades"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    backtest_run_id: Mapped[int] = mapped_column(ForeignKey("backtest_runs.id"), nullable=False)
    symbol: Mapped[str] = mapped_column(String(20), nullable=False)
    side: Mapped[str] = mapped_column(String(4), nullable=False)  # BUY, SELL
    quantity: Mapped[float] = mapped_column(Float, nullable=False)
    target_price: Mapped[float] = mapped_column(Float, nullable=False)
    executed_price: Mapped[float] = mapped_column(Float, nullable=False)
    slippage_amount: Mapped[float] = mapped_column(Float, nullable=False)
    commission: Mapped[float] = mapped_column(Float, nullable=False)
    gross_amount: Mapped[float] = mapped_column(Float, nullable=False)
    net_amount: Mapped[float] = mapped_column(Float, nullable=False)
    signal_bar: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    execution_bar: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    entry_reason: Mapped[str | None] = mapped_column(String(50), nullable=True)
    exit_reason: Mapped[str | None] = mapped_column(String(50), nullable=True)
    entry_price: Mapped[float | None] = mapped_column(Float, nullable=True)
    realized_pl: Mapped[float | None] = mapped_column(Float, nullable=True)
    realized_pl_pct: Mapped[float | None] = mapped_column(Float, nullable=True)
    holding_period: Mapped[int | None] = mapped_column(Integer, nullable=True)  # days

    __table_args__ = (
        Index("ix_backtest_trades_run_bar", "backtest_run_id", "execution_bar"),
    )


class BacktestEquityPoint(Base):
    """One equity-curve sample per simulated bar."""

    __tablename__ = "backtest_equity_curve"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    backtest_run_id: Mapped[int] = mapped_column(ForeignKey("backtest_runs.id"), nullable=False)
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    cash: Mapped[float] = mapped_column(Float, nullable=False)
    stock_value: Mapped[float] = mapped_column(Float, nullable=False)
    total_equity: Mapped[float] = mapped_column(Float, nullable=False)
    high_water_mark: Mapped[float] = mapped_column(Float, nullable=False)
    drawdown: Mapped[float] = mapped_column(Float, nullable=False)
    drawdown_pct: Mapped[float] = mapped_column(Float, nullable=False)
    cumulative_return: Mapped[float] = mapped_column(Float, nullable=False)
    trade_count: Mapped[int] = mapped_column(Integer, nullable=False)

    __table_args__ = (
        Index("ix_backtest_equity_run_ts", "backtest_run_id", "timestamp"),
    )


class BacktestAlert(Base):
    """Performance-degradation alert raised after a run completes."""

    __tablename__ = "backtest_alerts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    backtest_run_id: Mapped[int] = mapped_column(ForeignKey("backtest_runs.id"), nullable=False)
    alert_type: Mapped[str] = mapped_column(String(30), nullable=False)
    severity: Mapped[str] = mapped_column(String(10), nullable=False)  # HIGH, MEDIUM
    message: Mapped[str] = mapped_column(Text, nullable=False)
    threshold: Mapped[float] = mapped_column(Float, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc)
    )
