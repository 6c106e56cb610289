"""Tests for the backtest controller: sizing, the bar loop and the run lifecycle."""

import asyncio
from datetime import datetime, timedelta, timezone

import numpy as np
import pytest

from simtrade.services.backtest import (
    BacktestConfig,
    BacktestController,
    DataUnavailableError,
    HistoricalDataProvider,
    InvalidConfigError,
    PositionSizing,
    RunCancelledError,
    RunExecutionError,
    TimeHorizon,
    calculate_position_size,
)
from simtrade.services.backtest.alerts import AlertSeverity
from simtrade.services.backtest.records import HistoricalBar, OrderSide
from simtrade.services.backtest.store import StrategyDefinition
from simtrade.services.data.yfinance_feed import PriceSourceNoDataError
from simtrade.services.strategy import SignalEvaluator, Strategy

T0 = datetime(2024, 1, 1, 21, 0, tzinfo=timezone.utc)


# ---------- helpers ----------


def make_bars(closes: list[float]) -> list[HistoricalBar]:
    return [
        HistoricalBar(
            timestamp=T0 + timedelta(days=i),
            open=c,
            high=c * 1.01,
            low=c * 0.99,
            close=c,
            volume=1_000_000,
        )
        for i, c in enumerate(closes)
    ]


def random_walk(n: int = 120, seed: int = 7) -> list[float]:
    rng = np.random.RandomState(seed)
    prices = 100 * np.cumprod(1 + rng.randn(n) * 0.01)
    return [float(p) for p in prices]


class StaticProvider:
    """Returns the same bars for any request."""

    def __init__(self, bars: list[HistoricalBar]) -> None:
        self.bars = bars
        self.calls = 0

    async def load_historical_bars(self, symbol, time_horizon, start_date, end_date):
        self.calls += 1
        return list(self.bars)


class AtBars(SignalEvaluator):
    """Fires on the given bar indices."""

    def __init__(self, *indices: int) -> None:
        self._indices = set(indices)

    @property
    def name(self) -> str:
        return "at_bars"

    def evaluate(self, bar, window, position) -> bool:
        return len(window) - 1 in self._indices


class Exploding(SignalEvaluator):
    @property
    def name(self) -> str:
        return "exploding"

    def evaluate(self, bar, window, position) -> bool:
        if len(window) > 5:
            raise ZeroDivisionError("bad indicator")
        return False


def make_config(**kwargs) -> BacktestConfig:
    defaults = {
        "strategy_id": 1,
        "symbol": "AAPL",
        "time_horizon": TimeHorizon.SWING,
        "start_date": T0,
        "end_date": T0 + timedelta(days=90),
        "initial_cash": 10_000.0,
        "position_sizing": PositionSizing.FIXED_DOLLAR,
        "position_size": 2_000.0,
        "slippage_bps": 10.0,
        "commission_per_trade": 1.0,
    }
    defaults.update(kwargs)
    return BacktestConfig(**defaults)


def make_controller(store, bars, entry, exit_, **kwargs) -> BacktestController:
    store.strategies[1] = StrategyDefinition(
        id=1, name="test", entry_rule="custom", exit_rule="custom"
    )
    return BacktestController(
        store=store,
        data_provider=StaticProvider(bars),
        strategy_builder=lambda d: Strategy(name=d.name, entry=entry, exit=exit_),
        **kwargs,
    )


# Flat at $50 through bar 10, $55 in between, $60 from bar 50
SCENARIO_CLOSES = [50.0] * 11 + [55.0] * 39 + [60.0] * 10


class TestPositionSizing:
    def test_percent_equity(self):
        assert calculate_position_size(PositionSizing.PERCENT_EQUITY, 10, 25.0, 5_000.0) == 20

    def test_fixed_dollar(self):
        assert calculate_position_size(PositionSizing.FIXED_DOLLAR, 2_000, 50.05, 10_000.0) == 39

    def test_fixed_dollar_limited_by_cash(self):
        assert calculate_position_size("FIXED_DOLLAR", 5_000, 100.0, 1_000.0) == 10

    def test_fixed_shares(self):
        assert calculate_position_size(PositionSizing.FIXED_SHARES, 25, 10.0, 10_000.0) == 25

    def test_fixed_shares_limited_by_cash(self):
        assert calculate_position_size(PositionSizing.FIXED_SHARES, 50, 100.0, 1_000.0) == 10

    def test_non_positive_price(self):
        assert calculate_position_size(PositionSizing.FIXED_DOLLAR, 2_000, 0.0, 10_000.0) == 0
        assert calculate_position_size(PositionSizing.FIXED_DOLLAR, 2_000, -1.0, 10_000.0) == 0

    def test_unknown_mode(self):
        with pytest.raises(InvalidConfigError):
            calculate_position_size("KELLY", 1, 10.0, 1_000.0)


class TestRunLifecycle:
    @pytest.mark.asyncio
    async def test_scenario_round_trip(self, store):
        controller = make_controller(
            store, make_bars(SCENARIO_CLOSES), entry=AtBars(10), exit_=AtBars(50)
        )
        run_id = await controller.run_backtest(make_config())

        run = store.runs[run_id]
        assert run.status == "COMPLETED"
        assert run.execution_time_ms >= 0

        buy, sell = store.trades[run_id]
        assert buy.side == OrderSide.BUY
        assert buy.quantity == 39
        assert buy.executed_price == pytest.approx(50.05)
        assert buy.net_amount == pytest.approx(1952.95)
        assert buy.entry_reason == "STRATEGY_ENTRY"
        assert sell.executed_price == pytest.approx(59.94)
        assert sell.net_amount == pytest.approx(2336.66)
        assert sell.realized_pl == pytest.approx(383.71, abs=0.01)
        assert sell.exit_reason == "STRATEGY_EXIT"

        metrics = run.metrics
        assert metrics.final_cash == pytest.approx(10_383.71)
        assert metrics.final_equity == pytest.approx(10_383.71)
        assert metrics.total_trades == 1
        assert metrics.win_rate == 100.0

    @pytest.mark.asyncio
    async def test_one_snapshot_per_bar_written_once(self, store):
        bars = make_bars(SCENARIO_CLOSES)
        controller = make_controller(store, bars, entry=AtBars(10), exit_=AtBars(50))
        run_id = await controller.run_backtest(make_config())

        curve = store.equity_curves[run_id]
        assert len(curve) == len(bars)
        assert [p.timestamp for p in curve] == [b.timestamp for b in bars]
        assert store.equity_inserts[run_id] == 1
        assert all(p.total_equity == pytest.approx(p.cash + p.stock_value) for p in curve)

    @pytest.mark.asyncio
    async def test_open_position_is_marked_each_bar(self, store):
        controller = make_controller(
            store, make_bars(SCENARIO_CLOSES), entry=AtBars(10), exit_=AtBars()
        )
        run_id = await controller.run_backtest(make_config())

        final = store.positions[(run_id, "AAPL")]
        assert final["is_open"] is True
        assert final["current_price"] == 60.0
        assert final["market_value"] == pytest.approx(39 * 60.0)
        assert store.equity_curves[run_id][-1].stock_value == pytest.approx(39 * 60.0)

    @pytest.mark.asyncio
    async def test_entry_not_evaluated_while_holding(self, store):
        controller = make_controller(
            store, make_bars(SCENARIO_CLOSES), entry=AtBars(10, 20, 30), exit_=AtBars(40)
        )
        run_id = await controller.run_backtest(make_config())
        sides = [t.side for t in store.trades[run_id]]
        assert sides == [OrderSide.BUY, OrderSide.SELL]

    @pytest.mark.asyncio
    async def test_zero_size_skips_buy(self, store):
        controller = make_controller(
            store, make_bars(SCENARIO_CLOSES), entry=AtBars(10), exit_=AtBars(50)
        )
        run_id = await controller.run_backtest(make_config(position_size=10.0))
        assert store.trades[run_id] == []
        assert store.runs[run_id].status == "COMPLETED"

    @pytest.mark.asyncio
    async def test_deterministic(self, store):
        bars = make_bars(random_walk())
        entry, exit_ = AtBars(5, 30, 60, 90), AtBars(20, 45, 75, 110)
        controller = make_controller(store, bars, entry=entry, exit_=exit_)

        first = await controller.run_backtest(make_config())
        second = await controller.run_backtest(make_config())

        assert first != second
        assert store.trades[first] == store.trades[second]
        assert store.equity_curves[first] == store.equity_curves[second]
        assert store.runs[first].metrics == store.runs[second].metrics

    @pytest.mark.asyncio
    async def test_built_in_rules(self, store):
        store.strategies[1] = StrategyDefinition(
            id=1,
            name="periodic",
            entry_rule="periodic_entry",
            exit_rule="holding_period_exit",
            entry_params={"every": 10},
            exit_params={"max_bars": 5, "take_profit_pct": 50, "stop_loss_pct": -50},
        )
        controller = BacktestController(
            store=store, data_provider=StaticProvider(make_bars(random_walk()))
        )
        run_id = await controller.run_backtest(
            make_config(position_sizing=PositionSizing.PERCENT_EQUITY, position_size=50)
        )

        trades = store.trades[run_id]
        assert store.runs[run_id].status == "COMPLETED"
        assert trades
        # Strictly alternating, starting with a buy
        assert [t.side for t in trades[::2]] == [OrderSide.BUY] * len(trades[::2])
        assert [t.side for t in trades[1::2]] == [OrderSide.SELL] * len(trades[1::2])
        assert all(t.holding_period == 5 for t in trades[1::2])


class TestFailures:
    @pytest.mark.asyncio
    async def test_no_data_fails_run(self, store):
        class EmptyCache:
            async def load_bars(self, symbol, interval, start, end):
                return []

            async def store_bars(self, symbol, interval, bars):
                return 0

        class NoDataSource:
            async def fetch(self, symbol, interval, start, end):
                raise PriceSourceNoDataError(f"No data for {symbol}")

        store.strategies[1] = StrategyDefinition(
            id=1, name="p", entry_rule="periodic_entry", exit_rule="holding_period_exit"
        )
        controller = BacktestController(
            store=store,
            data_provider=HistoricalDataProvider(cache=EmptyCache(), source=NoDataSource()),
        )
        with pytest.raises(DataUnavailableError):
            await controller.run_backtest(make_config())

        run = store.runs[1]
        assert run.status == "FAILED"
        assert "No historical data" in run.error_message
        assert store.trades[1] == []
        assert store.equity_curves[1] == []

    @pytest.mark.asyncio
    async def test_missing_strategy(self, store):
        controller = BacktestController(
            store=store, data_provider=StaticProvider(make_bars(SCENARIO_CLOSES))
        )
        with pytest.raises(InvalidConfigError, match="not found"):
            await controller.run_backtest(make_config(strategy_id=42))
        assert store.runs[1].status == "FAILED"

    @pytest.mark.asyncio
    async def test_unknown_rule(self, store):
        store.strategies[1] = StrategyDefinition(
            id=1, name="bad", entry_rule="moon_phase", exit_rule="rsi_exit"
        )
        provider = StaticProvider(make_bars(SCENARIO_CLOSES))
        controller = BacktestController(store=store, data_provider=provider)
        with pytest.raises(InvalidConfigError, match="moon_phase"):
            await controller.run_backtest(make_config())
        assert store.runs[1].status == "FAILED"
        assert provider.calls == 0

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "overrides",
        [
            {"position_sizing": "KELLY"},
            {"time_horizon": "INTRADAY"},
            {"initial_cash": 0.0},
            {"position_size": -1.0},
            {"slippage_bps": -5.0},
            {"end_date": T0},
        ],
    )
    async def test_invalid_config(self, store, overrides):
        controller = make_controller(
            store, make_bars(SCENARIO_CLOSES), entry=AtBars(10), exit_=AtBars(50)
        )
        with pytest.raises(InvalidConfigError):
            await controller.run_backtest(make_config(**overrides))
        assert store.runs[1].status == "FAILED"

    @pytest.mark.asyncio
    async def test_unexpected_error_is_wrapped(self, store):
        controller = make_controller(
            store, make_bars(SCENARIO_CLOSES), entry=Exploding(), exit_=AtBars()
        )
        with pytest.raises(RunExecutionError) as exc_info:
            await controller.run_backtest(make_config())

        err = exc_info.value
        assert err.run_id == 1
        assert isinstance(err.original, ZeroDivisionError)
        assert err.__cause__ is err.original
        assert store.runs[1].status == "FAILED"
        assert "bad indicator" in store.runs[1].error_message

    @pytest.mark.asyncio
    async def test_cancellation(self, store):
        controller = make_controller(
            store, make_bars(SCENARIO_CLOSES), entry=AtBars(10), exit_=AtBars(50)
        )
        cancel = asyncio.Event()
        cancel.set()
        with pytest.raises(RunCancelledError):
            await controller.run_backtest(make_config(), cancel_event=cancel)
        assert store.runs[1].status == "FAILED"
        assert store.equity_curves[1] == []

    @pytest.mark.asyncio
    async def test_fail_run_error_does_not_mask_original(self, store):
        async def db_down(*args, **kwargs):
            raise ConnectionError("database unavailable")

        store.fail_run = db_down
        controller = BacktestController(
            store=store, data_provider=StaticProvider(make_bars(SCENARIO_CLOSES))
        )
        with pytest.raises(InvalidConfigError, match="not found"):
            await controller.run_backtest(make_config(strategy_id=42))

    @pytest.mark.asyncio
    async def test_fail_run_error_keeps_wrapped_cause(self, store):
        async def db_down(*args, **kwargs):
            raise ConnectionError("database unavailable")

        store.fail_run = db_down
        controller = make_controller(
            store, make_bars(SCENARIO_CLOSES), entry=Exploding(), exit_=AtBars()
        )
        with pytest.raises(RunExecutionError) as exc_info:
            await controller.run_backtest(make_config())
        assert isinstance(exc_info.value.original, ZeroDivisionError)


class TestAlerts:
    @pytest.mark.asyncio
    async def test_losing_run_raises_alerts(self, store):
        closes = [50.0] * 11 + [45.0] * 39 + [40.0] * 10
        controller = make_controller(
            store, make_bars(closes), entry=AtBars(10), exit_=AtBars(50)
        )
        run_id = await controller.run_backtest(make_config())

        alerts = {a.alert_type: a for a in store.alerts[run_id]}
        assert alerts["WIN_RATE_DROP"].severity == AlertSeverity.HIGH
        assert alerts["PROFIT_FACTOR_LOW"].threshold == 1.5

    @pytest.mark.asyncio
    async def test_no_alerts_saved_for_failed_run(self, store):
        controller = make_controller(
            store, make_bars(SCENARIO_CLOSES), entry=Exploding(), exit_=AtBars()
        )
        with pytest.raises(RunExecutionError):
            await controller.run_backtest(make_config())
        assert store.alerts[1] == []

    @pytest.mark.asyncio
    async def test_alert_save_failure_still_returns_run_id(self, store):
        async def db_down(*args, **kwargs):
            raise ConnectionError("database unavailable")

        store.save_alerts = db_down
        closes = [50.0] * 11 + [45.0] * 39 + [40.0] * 10
        controller = make_controller(
            store, make_bars(closes), entry=AtBars(10), exit_=AtBars(50)
        )
        run_id = await controller.run_backtest(make_config())
        assert run_id == 1
        assert store.runs[run_id].status == "COMPLETED"
