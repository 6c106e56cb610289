"""Persistence for backtest runs, positions, trades, equity curves and alerts.

All reads used by analytics are ordered range queries; the equity curve is
written with a single batch insert per run.
"""

import json
import logging
from collections.abc import Sequence
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone

from sqlalchemy import insert, select, update

from simtrade.database import async_session
from simtrade.models.backtest import (
    BacktestAlert,
    BacktestEquityPoint,
    BacktestPosition,
    BacktestRun,
    BacktestTrade,
)
from simtrade.models.strategy import StrategyConfig
from simtrade.services.backtest.records import (
    EquityPoint,
    OrderSide,
    PerformanceMetrics,
    RunStatus,
    TradeRecord,
)

logger = logging.getLogger(__name__)


@dataclass
class StrategyDefinition:
    """Entry/exit rule names plus their parameters."""

    id: int
    name: str
    entry_rule: str
    exit_rule: str
    entry_params: dict = field(default_factory=dict)
    exit_params: dict = field(default_factory=dict)


def strategy_from_row(row: StrategyConfig) -> StrategyDefinition:
    params = json.loads(row.params) if row.params else {}
    return StrategyDefinition(
        id=row.id,
        name=row.name,
        entry_rule=row.entry_rule,
        exit_rule=row.exit_rule,
        entry_params=params.get("entry", {}),
        exit_params=params.get("exit", {}),
    )


def trade_from_row(row: BacktestTrade) -> TradeRecord:
    return TradeRecord(
        symbol=row.symbol,
        side=OrderSide(row.side),
        quantity=row.quantity,
        target_price=row.target_price,
        executed_price=row.executed_price,
        slippage_amount=row.slippage_amount,
        commission=row.commission,
        gross_amount=row.gross_amount,
        net_amount=row.net_amount,
        signal_bar=row.signal_bar,
        execution_bar=row.execution_bar,
        entry_reason=row.entry_reason,
        exit_reason=row.exit_reason,
        entry_price=row.entry_price,
        realized_pl=row.realized_pl,
        realized_pl_pct=row.realized_pl_pct,
        holding_period=row.holding_period,
    )


def equity_point_from_row(row: BacktestEquityPoint) -> EquityPoint:
    return EquityPoint(
        timestamp=row.timestamp,
        cash=row.cash,
        stock_value=row.stock_value,
        total_equity=row.total_equity,
        high_water_mark=row.high_water_mark,
        drawdown=row.drawdown,
        drawdown_pct=row.drawdown_pct,
        cumulative_return=row.cumulative_return,
        trade_count=row.trade_count,
    )


class BacktestStore:
    """SQLAlchemy-backed store. One short session per call."""

    def __init__(self, session_factory=None) -> None:
        self._session_factory = session_factory or async_session

    # ---------- runs ----------

    async def create_run(self, config) -> int:
        """Insert a RUNNING run for ``config`` and return its id."""
        async with self._session_factory() as session:
            run = BacktestRun(
                strategy_id=config.strategy_id,
                symbol=config.symbol,
                time_horizon=str(getattr(config.time_horizon, "value", config.time_horizon)),
                start_date=config.start_date,
                end_date=config.end_date,
                initial_cash=config.initial_cash,
                position_sizing=str(getattr(config.position_sizing, "value", config.position_sizing)),
                position_size=config.position_size,
                slippage_bps=config.slippage_bps,
                commission_per_trade=config.commission_per_trade,
                status=RunStatus.RUNNING.value,
            )
            session.add(run)
            await session.commit()
            await session.refresh(run)
            return run.id

    async def get_run(self, run_id: int) -> BacktestRun | None:
        async with self._session_factory() as session:
            return await session.get(BacktestRun, run_id)

    async def complete_run(
        self, run_id: int, metrics: PerformanceMetrics, execution_time_ms: int
    ) -> None:
        """Persist final metrics and mark the run COMPLETED in one update."""
        await self._finish(
            run_id,
            status=RunStatus.COMPLETED.value,
            execution_time_ms=execution_time_ms,
            **asdict(metrics),
        )

    async def fail_run(self, run_id: int, error_message: str, execution_time_ms: int) -> None:
        await self._finish(
            run_id,
            status=RunStatus.FAILED.value,
            error_message=error_message,
            execution_time_ms=execution_time_ms,
        )

    async def _finish(self, run_id: int, **values) -> None:
        # Only a RUNNING run may transition; terminal states are final
        async with self._session_factory() as session:
            result = await session.execute(
                update(BacktestRun)
                .where(BacktestRun.id == run_id, BacktestRun.status == RunStatus.RUNNING.value)
                .values(finished_at=datetime.now(timezone.utc), **values)
            )
            await session.commit()
        if result.rowcount == 0:
            raise RuntimeError(f"Backtest run {run_id} is not RUNNING; cannot finalize")

    # ---------- strategies ----------

    async def get_strategy(self, strategy_id: int) -> StrategyDefinition | None:
        async with self._session_factory() as session:
            row = await session.get(StrategyConfig, strategy_id)
        return strategy_from_row(row) if row is not None else None

    async def create_strategy(
        self,
        name: str,
        entry_rule: str,
        exit_rule: str,
        entry_params: dict | None = None,
        exit_params: dict | None = None,
    ) -> int:
        async with self._session_factory() as session:
            row = StrategyConfig(
                name=name,
                entry_rule=entry_rule,
                exit_rule=exit_rule,
                params=json.dumps({"entry": entry_params or {}, "exit": exit_params or {}}),
            )
            session.add(row)
            await session.commit()
            await session.refresh(row)
            return row.id

    async def list_strategies(self) -> list[StrategyDefinition]:
        async with self._session_factory() as session:
            result = await session.execute(select(StrategyConfig).order_by(StrategyConfig.id))
            return [strategy_from_row(r) for r in result.scalars().all()]

    # ---------- positions & trades ----------

    async def save_position(self, run_id: int, position) -> None:
        """Create or overwrite the position row for (run, symbol)."""
        async with self._session_factory() as session:
            existing = (
                await session.execute(
                    select(BacktestPosition).where(
                        BacktestPosition.backtest_run_id == run_id,
                        BacktestPosition.symbol == position.symbol,
                    )
                )
            ).scalar_one_or_none()
            if existing is None:
                existing = BacktestPosition(backtest_run_id=run_id, symbol=position.symbol)
                session.add(existing)

            for name, value in position.to_dict().items():
                if name != "symbol":
                    setattr(existing, name, value)
            await session.commit()

    async def insert_trade(self, run_id: int, trade: TradeRecord) -> None:
        async with self._session_factory() as session:
            session.add(BacktestTrade(backtest_run_id=run_id, **_trade_values(trade)))
            await session.commit()

    async def list_trades(self, run_id: int) -> list[TradeRecord]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(BacktestTrade)
                .where(BacktestTrade.backtest_run_id == run_id)
                .order_by(BacktestTrade.execution_bar.asc(), BacktestTrade.id.asc())
            )
            return [trade_from_row(r) for r in result.scalars().all()]

    # ---------- equity curve ----------

    async def insert_equity_curve(self, run_id: int, points: Sequence[EquityPoint]) -> int:
        """Batch insert the full equity curve for a run."""
        if not points:
            return 0
        rows = [
            {
                "backtest_run_id": run_id,
                "timestamp": p.timestamp,
                "cash": p.cash,
                "stock_value": p.stock_value,
                "total_equity": p.total_equity,
                "high_water_mark": p.high_water_mark,
                "drawdown": p.drawdown,
                "drawdown_pct": p.drawdown_pct,
                "cumulative_return": p.cumulative_return,
                "trade_count": p.trade_count,
            }
            for p in points
        ]
        async with self._session_factory() as session:
            await session.execute(insert(BacktestEquityPoint), rows)
            await session.commit()
        logger.info("Saved %d equity curve points for run %d", len(rows), run_id)
        return len(rows)

    async def list_equity_curve(self, run_id: int) -> list[EquityPoint]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(BacktestEquityPoint)
                .where(BacktestEquityPoint.backtest_run_id == run_id)
                .order_by(BacktestEquityPoint.timestamp.asc())
            )
            return [equity_point_from_row(r) for r in result.scalars().all()]

    # ---------- alerts ----------

    async def save_alerts(self, run_id: int, alerts: Sequence) -> None:
        if not alerts:
            return
        async with self._session_factory() as session:
            for a in alerts:
                session.add(
                    BacktestAlert(
                        backtest_run_id=run_id,
                        alert_type=a.alert_type,
                        severity=getattr(a.severity, "value", a.severity),
                        message=a.message,
                        threshold=a.threshold,
                    )
                )
            await session.commit()


def _trade_values(trade: TradeRecord) -> dict:
    return {
        "symbol": trade.symbol,
        "side": trade.side.value,
        "quantity": trade.quantity,
        "target_price": trade.target_price,
        "executed_price": trade.executed_price,
        "slippage_amount": trade.slippage_amount,
        "commission": trade.commission,
        "gross_amount": trade.gross_amount,
        "net_amount": trade.net_amount,
        "signal_bar": trade.signal_bar,
        "execution_bar": trade.execution_bar,
        "entry_reason": trade.entry_reason,
        "exit_reason": trade.exit_reason,
        "entry_price": trade.entry_price,
        "realized_pl": trade.realized_pl,
        "realized_pl_pct": trade.realized_pl_pct,
        "holding_period": trade.holding_period,
    }
