"""Shared test fixtures."""

from collections import defaultdict
from dataclasses import replace
from types import SimpleNamespace

import pytest

from simtrade.services.backtest.records import RunStatus


class InMemoryStore:
    """Drop-in for BacktestStore that keeps everything in dicts."""

    def __init__(self) -> None:
        self.runs: dict[int, SimpleNamespace] = {}
        self.strategies: dict = {}
        self.positions: dict[tuple[int, str], dict] = {}
        self.trades: dict[int, list] = defaultdict(list)
        self.equity_curves: dict[int, list] = defaultdict(list)
        self.equity_inserts: dict[int, int] = defaultdict(int)
        self.alerts: dict[int, list] = defaultdict(list)
        self._next_id = 1

    async def create_run(self, config) -> int:
        run_id = self._next_id
        self._next_id += 1
        self.runs[run_id] = SimpleNamespace(
            id=run_id,
            strategy_id=config.strategy_id,
            symbol=config.symbol,
            time_horizon=getattr(config.time_horizon, "value", config.time_horizon),
            initial_cash=config.initial_cash,
            status=RunStatus.RUNNING.value,
            error_message=None,
            execution_time_ms=None,
            metrics=None,
        )
        return run_id

    async def get_run(self, run_id: int):
        return self.runs.get(run_id)

    async def complete_run(self, run_id, metrics, execution_time_ms) -> None:
        run = self._running(run_id)
        run.status = RunStatus.COMPLETED.value
        run.metrics = metrics
        run.execution_time_ms = execution_time_ms

    async def fail_run(self, run_id, error_message, execution_time_ms) -> None:
        run = self._running(run_id)
        run.status = RunStatus.FAILED.value
        run.error_message = error_message
        run.execution_time_ms = execution_time_ms

    def _running(self, run_id):
        run = self.runs[run_id]
        if run.status != RunStatus.RUNNING.value:
            raise RuntimeError(f"Backtest run {run_id} is not RUNNING; cannot finalize")
        return run

    async def get_strategy(self, strategy_id):
        return self.strategies.get(strategy_id)

    async def save_position(self, run_id, position) -> None:
        self.positions[(run_id, position.symbol)] = position.to_dict()

    async def insert_trade(self, run_id, trade) -> None:
        self.trades[run_id].append(replace(trade))

    async def list_trades(self, run_id):
        return sorted(self.trades[run_id], key=lambda t: t.execution_bar)

    async def insert_equity_curve(self, run_id, points) -> int:
        self.equity_curves[run_id].extend(points)
        self.equity_inserts[run_id] += 1
        return len(points)

    async def list_equity_curve(self, run_id):
        return sorted(self.equity_curves[run_id], key=lambda p: p.timestamp)

    async def save_alerts(self, run_id, alerts) -> None:
        self.alerts[run_id].extend(alerts)


@pytest.fixture
def store() -> InMemoryStore:
    """Fresh in-memory store for each test."""
    return InMemoryStore()
