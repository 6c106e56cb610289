"""Walk-forward backtest runs: load bars, drive the portfolio engine, record results."""

import asyncio
import logging
import math
import time
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum

from simtrade.config import settings
from simtrade.services.backtest.alerts import BacktestAlertService
from simtrade.services.backtest.data_provider import (
    HistoricalDataProvider,
    TimeHorizon,
    bars_to_frame,
    interval_for_horizon,
)
from simtrade.services.backtest.errors import (
    BacktestError,
    InvalidConfigError,
    RunCancelledError,
    RunExecutionError,
)
from simtrade.services.backtest.metrics import PerformanceAnalytics
from simtrade.services.backtest.portfolio import VirtualPortfolioEngine
from simtrade.services.backtest.records import OrderSide
from simtrade.services.backtest.store import BacktestStore
from simtrade.services.strategy import Strategy, build_strategy

logger = logging.getLogger(__name__)

ENTRY_REASON = "STRATEGY_ENTRY"
EXIT_REASON = "STRATEGY_EXIT"


class PositionSizing(str, Enum):
    FIXED_DOLLAR = "FIXED_DOLLAR"
    FIXED_SHARES = "FIXED_SHARES"
    PERCENT_EQUITY = "PERCENT_EQUITY"


@dataclass
class BacktestConfig:
    """Everything needed to reproduce a run. Money in dollars."""

    strategy_id: int
    symbol: str
    time_horizon: TimeHorizon
    start_date: datetime
    end_date: datetime
    initial_cash: float = 100_000.0
    position_sizing: PositionSizing = PositionSizing.PERCENT_EQUITY
    position_size: float = 10.0
    slippage_bps: float = field(default_factory=lambda: settings.default_slippage_bps)
    commission_per_trade: float = field(
        default_factory=lambda: settings.default_commission_per_trade
    )


def calculate_position_size(
    mode: PositionSizing | str, size: float, price: float, cash: float
) -> int:
    """Whole shares to buy at ``price`` under the given sizing mode.

    FIXED_DOLLAR spends up to ``size`` dollars, FIXED_SHARES buys ``size`` shares
    if affordable, PERCENT_EQUITY spends ``size`` percent of cash.
    """
    if price <= 0:
        return 0
    try:
        mode = PositionSizing(mode)
    except ValueError as e:
        raise InvalidConfigError(f"Unknown position sizing mode: {mode}") from e

    if mode == PositionSizing.FIXED_DOLLAR:
        shares = math.floor(min(size, cash) / price)
    elif mode == PositionSizing.FIXED_SHARES:
        shares = min(math.floor(size), math.floor(cash / price))
    else:
        shares = math.floor(cash * size / 100 / price)
    return max(shares, 0)


class BacktestController:
    """Runs one backtest per call. Holds collaborators only, never per-run state.

    Run lifecycle: RUNNING -> COMPLETED | FAILED. A run is COMPLETED only after
    the equity curve has been flushed and the metrics saved.
    """

    def __init__(
        self,
        store=None,
        data_provider: HistoricalDataProvider | None = None,
        analytics: PerformanceAnalytics | None = None,
        alert_service: BacktestAlertService | None = None,
        strategy_builder=build_strategy,
    ) -> None:
        self._store = store or BacktestStore()
        self._data_provider = data_provider or HistoricalDataProvider()
        self._analytics = analytics or PerformanceAnalytics(store=self._store)
        self._alert_service = alert_service or BacktestAlertService()
        self._strategy_builder = strategy_builder

    async def run_backtest(
        self, config: BacktestConfig, cancel_event: asyncio.Event | None = None
    ) -> int:
        """Execute a backtest and return its run id.

        Steps:
        1. Create the run record
        2. Validate the config and resolve the strategy
        3. Load historical bars
        4. Walk forward bar by bar through a fresh portfolio engine
        5. Compute metrics, flush the equity curve, mark COMPLETED
        6. Check for performance alerts
        """
        run_id = await self._store.create_run(config)
        started = time.monotonic()
        logger.info(
            "Starting backtest run %d: strategy %s on %s (%s, %s to %s)",
            run_id, config.strategy_id, config.symbol, config.time_horizon,
            config.start_date.date(), config.end_date.date(),
        )

        try:
            metrics = await self._execute(run_id, config, cancel_event)
            await self._store.complete_run(run_id, metrics, _elapsed_ms(started))
        except BacktestError as e:
            logger.error("Backtest run %d failed: %s", run_id, e)
            await self._mark_failed(run_id, str(e), started)
            raise
        except Exception as e:
            logger.exception("Backtest run %d failed unexpectedly", run_id)
            await self._mark_failed(run_id, str(e), started)
            raise RunExecutionError(run_id, e) from e

        logger.info(
            "Backtest run %d complete: return=%.2f%%, trades=%d, win_rate=%.1f%%",
            run_id, metrics.total_return_pct, metrics.total_trades, metrics.win_rate,
        )

        alerts = self._alert_service.check(metrics)
        if alerts:
            try:
                await self._store.save_alerts(run_id, alerts)
            except Exception:
                # Run is already COMPLETED; alerts are advisory
                logger.exception("Failed to save %d alerts for run %d", len(alerts), run_id)
        return run_id

    async def _mark_failed(self, run_id: int, message: str, started: float) -> None:
        """Record FAILED without masking the error that caused it."""
        try:
            await self._store.fail_run(run_id, message, _elapsed_ms(started))
        except Exception:
            logger.exception("Could not mark backtest run %d as FAILED", run_id)

    async def _execute(self, run_id: int, config: BacktestConfig, cancel_event):
        sizing = self._validate(config)
        strategy = await self._load_strategy(config.strategy_id)

        bars = await self._data_provider.load_historical_bars(
            config.symbol, config.time_horizon, config.start_date, config.end_date
        )
        frame = bars_to_frame(bars)

        engine = VirtualPortfolioEngine(run_id=run_id, store=self._store)
        engine.initialize(
            config.initial_cash, config.slippage_bps, config.commission_per_trade
        )

        symbol = config.symbol
        for i, bar in enumerate(bars):
            if cancel_event is not None and cancel_event.is_set():
                raise RunCancelledError(f"Backtest run {run_id} cancelled at bar {i}")

            window = frame.iloc[: i + 1]  # Expanding window, no look-ahead
            position = engine.get_position(symbol)

            if position is not None:
                engine.update_current_price(symbol, bar.close, bar.timestamp)
                if strategy.exit.evaluate(bar, window, position):
                    await engine.execute_sell_order(
                        symbol, position.quantity, bar.close,
                        bar.timestamp, bar.timestamp, EXIT_REASON,
                    )
            elif strategy.entry.evaluate(bar, window, None):
                fill_price = engine.estimate_fill_price(bar.close, OrderSide.BUY)
                quantity = calculate_position_size(
                    sizing, config.position_size, fill_price, engine.cash
                )
                if quantity > 0:
                    await engine.execute_buy_order(
                        symbol, quantity, bar.close,
                        bar.timestamp, bar.timestamp, ENTRY_REASON,
                    )

            engine.record_equity_curve_snapshot(bar.timestamp)

        if engine.warnings:
            logger.info("Run %d skipped %d orders", run_id, len(engine.warnings))

        metrics = self._analytics.compute(
            engine.trades,
            engine.equity_curve,
            config.initial_cash,
            interval_for_horizon(config.time_horizon),
        )
        await engine.finalize_equity_curve()
        return metrics

    def _validate(self, config: BacktestConfig) -> PositionSizing:
        try:
            sizing = PositionSizing(config.position_sizing)
        except ValueError as e:
            raise InvalidConfigError(
                f"Unknown position sizing mode: {config.position_sizing}"
            ) from e
        try:
            TimeHorizon(config.time_horizon)
        except ValueError as e:
            raise InvalidConfigError(f"Unknown time horizon: {config.time_horizon}") from e

        if not config.symbol:
            raise InvalidConfigError("symbol is required")
        if config.start_date >= config.end_date:
            raise InvalidConfigError("start_date must be before end_date")
        if config.initial_cash <= 0:
            raise InvalidConfigError("initial_cash must be positive")
        if config.position_size <= 0:
            raise InvalidConfigError("position_size must be positive")
        if config.slippage_bps < 0 or config.commission_per_trade < 0:
            raise InvalidConfigError("slippage_bps and commission_per_trade must be >= 0")
        return sizing

    async def _load_strategy(self, strategy_id: int) -> Strategy:
        definition = await self._store.get_strategy(strategy_id)
        if definition is None:
            raise InvalidConfigError(f"Strategy {strategy_id} not found")
        try:
            return self._strategy_builder(definition)
        except ValueError as e:
            raise InvalidConfigError(str(e)) from e


def _elapsed_ms(started: float) -> int:
    return int((time.monotonic() - started) * 1000)
