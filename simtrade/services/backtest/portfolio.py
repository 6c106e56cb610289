"""Virtual portfolio for backtesting. Handles fills, slippage, commissions, marks.

One engine instance per run. It owns cash, the open positions (one per
symbol), the append-only trade ledger and the buffered equity curve. Nothing
here is shared between runs, and an instance must not be mutated concurrently.
"""

import logging
import math
from dataclasses import dataclass
from datetime import datetime
from typing import Callable

from simtrade.services.backtest.errors import (
    BacktestWarning,
    InsufficientFundsWarning,
    NoOpenPositionWarning,
)
from simtrade.services.backtest.records import EquityPoint, OrderSide, TradeRecord

logger = logging.getLogger(__name__)

# Remaining quantity at or below this closes the position (float rounding)
CLOSE_TOLERANCE = 0.001


class PositionState:
    """Open position tracked during a backtest."""

    __slots__ = (
        "symbol", "quantity", "avg_entry_price", "total_cost", "current_price",
        "market_value", "unrealized_pl", "unrealized_pl_pct", "high_water_mark",
        "max_drawdown_pct", "entry_bar", "last_update_bar", "exit_bar", "is_open",
    )

    def __init__(
        self,
        symbol: str,
        quantity: float,
        total_cost: float,
        current_price: float,
        entry_bar: datetime,
    ) -> None:
        self.symbol = symbol
        self.quantity = quantity
        self.total_cost = total_cost
        self.avg_entry_price = total_cost / quantity
        self.current_price = current_price
        self.market_value = 0.0
        self.unrealized_pl = 0.0
        self.unrealized_pl_pct = 0.0
        self.high_water_mark = 0.0  # peak unrealized P&L
        self.max_drawdown_pct = 0.0
        self.entry_bar = entry_bar
        self.last_update_bar = entry_bar
        self.exit_bar: datetime | None = None
        self.is_open = True
        self.revalue(current_price)

    def revalue(self, price: float) -> None:
        """Recompute market value and unrealized P&L at ``price``."""
        self.current_price = price
        self.market_value = self.quantity * price
        self.unrealized_pl = self.market_value - self.total_cost
        self.unrealized_pl_pct = (
            self.unrealized_pl / self.total_cost * 100 if self.total_cost > 0 else 0.0
        )

    def to_dict(self) -> dict:
        return {name: getattr(self, name) for name in self.__slots__}


@dataclass
class OrderResult:
    """Outcome of an order request: the executed trade, or why it was skipped."""

    trade: TradeRecord | None = None
    warning: BacktestWarning | None = None

    @property
    def executed(self) -> bool:
        return self.trade is not None


class VirtualPortfolioEngine:
    """Simulates order execution and bookkeeping for a single backtest run.

    Rules:
    - Buys fill at target * (1 + slippage), sells at target * (1 - slippage)
    - A flat commission is charged on every fill
    - Buys that cost more than available cash are skipped, never partially filled
    - Sells against a missing position are skipped
    - Equity snapshots are buffered and written once by finalize_equity_curve()

    Skipped orders are reported through the returned OrderResult, collected on
    ``warnings``, and passed to ``on_warning`` when given.
    """

    def __init__(
        self,
        run_id: int | None = None,
        store=None,
        on_warning: Callable[[BacktestWarning], None] | None = None,
    ) -> None:
        self._run_id = run_id
        self._store = store
        self._on_warning = on_warning
        self._initialized = False
        self._finalized = False

        self.cash: float = 0.0
        self.initial_cash: float = 0.0
        self.slippage_bps: float = 0.0
        self.commission_per_trade: float = 0.0
        self.portfolio_high_water_mark: float = 0.0
        self._positions: dict[str, PositionState] = {}
        self._closed_positions: list[PositionState] = []
        self._trades: list[TradeRecord] = []
        self._equity_curve: list[EquityPoint] = []
        self.warnings: list[BacktestWarning] = []

    def initialize(
        self, initial_cash: float, slippage_bps: float, commission_per_trade: float
    ) -> None:
        """Reset to a flat portfolio holding only ``initial_cash``."""
        if initial_cash <= 0:
            raise ValueError(f"initial_cash must be positive, got {initial_cash}")
        if slippage_bps < 0 or commission_per_trade < 0:
            raise ValueError("slippage_bps and commission_per_trade must be >= 0")

        self.cash = float(initial_cash)
        self.initial_cash = float(initial_cash)
        self.slippage_bps = float(slippage_bps)
        self.commission_per_trade = float(commission_per_trade)
        self.portfolio_high_water_mark = float(initial_cash)
        self._positions.clear()
        self._closed_positions.clear()
        self._trades.clear()
        self._equity_curve.clear()
        self.warnings.clear()
        self._initialized = True
        self._finalized = False

        logger.info(
            "Portfolio initialized: $%.2f cash, slippage %.1f bps, commission $%.2f",
            self.cash, self.slippage_bps, self.commission_per_trade,
        )

    @property
    def trades(self) -> tuple[TradeRecord, ...]:
        return tuple(self._trades)

    @property
    def equity_curve(self) -> tuple[EquityPoint, ...]:
        return tuple(self._equity_curve)

    @property
    def open_positions(self) -> tuple[PositionState, ...]:
        return tuple(self._positions.values())

    def get_position(self, symbol: str) -> PositionState | None:
        """The open position for ``symbol``, or None."""
        return self._positions.get(symbol)

    def estimate_fill_price(self, price: float, side: OrderSide) -> float:
        """Price an order at ``price`` would fill at after slippage."""
        if side == OrderSide.BUY:
            return price * (1 + self.slippage_bps / 10000)
        return price * (1 - self.slippage_bps / 10000)

    async def execute_buy_order(
        self,
        symbol: str,
        quantity: float,
        target_price: float,
        signal_bar: datetime,
        execution_bar: datetime,
        reason: str,
    ) -> OrderResult:
        """Buy ``quantity`` shares, adding to any open position.

        Steps:
        1. Apply slippage to get the execution price
        2. Net cost = quantity * execution price + commission
        3. Skip if net cost exceeds cash
        4. Deduct cash, open or average into the position
        5. Append the trade to the ledger
        """
        self._check_order(quantity, target_price)

        executed_price = self.estimate_fill_price(target_price, OrderSide.BUY)
        slippage_per_share = executed_price - target_price
        gross_amount = quantity * executed_price
        commission = self.commission_per_trade
        net_cost = gross_amount + commission

        if net_cost > self.cash:
            return self._warn(InsufficientFundsWarning(symbol, net_cost, self.cash))

        self.cash -= net_cost

        position = self._positions.get(symbol)
        if position is not None:
            # Cost-weighted average across the combined quantity
            position.quantity += quantity
            position.total_cost += net_cost
            position.avg_entry_price = position.total_cost / position.quantity
            position.last_update_bar = execution_bar
            position.revalue(target_price)
            logger.debug(
                "Added %s shares of %s @ %.4f, avg entry now %.4f",
                quantity, symbol, executed_price, position.avg_entry_price,
            )
        else:
            position = PositionState(
                symbol=symbol,
                quantity=quantity,
                total_cost=net_cost,
                current_price=target_price,
                entry_bar=execution_bar,
            )
            self._positions[symbol] = position
            logger.debug("Opened %s: %s shares @ %.4f", symbol, quantity, executed_price)

        trade = TradeRecord(
            symbol=symbol,
            side=OrderSide.BUY,
            quantity=quantity,
            target_price=target_price,
            executed_price=executed_price,
            slippage_amount=slippage_per_share * quantity,
            commission=commission,
            gross_amount=gross_amount,
            net_amount=net_cost,
            signal_bar=signal_bar,
            execution_bar=execution_bar,
            entry_reason=reason,
        )
        await self._record_trade(trade, position)

        logger.info(
            "BUY %s %s @ %.4f (slippage $%.4f/share), cash remaining $%.2f",
            quantity, symbol, executed_price, slippage_per_share, self.cash,
        )
        return OrderResult(trade=trade)

    async def execute_sell_order(
        self,
        symbol: str,
        quantity: float,
        target_price: float,
        signal_bar: datetime,
        execution_bar: datetime,
        reason: str,
    ) -> OrderResult:
        """Sell ``quantity`` shares of the open position and realize P&L.

        Selling more than is held sells the whole position.
        """
        self._check_order(quantity, target_price)

        position = self._positions.get(symbol)
        if position is None or not position.is_open:
            return self._warn(NoOpenPositionWarning(symbol))

        quantity = min(quantity, position.quantity)
        executed_price = self.estimate_fill_price(target_price, OrderSide.SELL)
        slippage_per_share = target_price - executed_price
        gross_amount = quantity * executed_price
        commission = self.commission_per_trade
        net_proceeds = gross_amount - commission

        entry_price = position.avg_entry_price
        cost_basis = entry_price * quantity
        realized_pl = net_proceeds - cost_basis
        realized_pl_pct = realized_pl / cost_basis * 100 if cost_basis > 0 else 0.0

        self.cash += net_proceeds

        remaining = position.quantity - quantity
        position.last_update_bar = execution_bar
        if remaining <= CLOSE_TOLERANCE:
            position.quantity = 0.0
            position.total_cost = 0.0
            position.is_open = False
            position.exit_bar = execution_bar
            position.revalue(target_price)
            del self._positions[symbol]
            self._closed_positions.append(position)
            logger.debug("Closed %s: realized P&L $%+.2f", symbol, realized_pl)
        else:
            position.quantity = remaining
            position.total_cost = entry_price * remaining
            position.revalue(target_price)
            logger.debug("Partial sell of %s: %s shares remaining", symbol, remaining)

        trade = TradeRecord(
            symbol=symbol,
            side=OrderSide.SELL,
            quantity=quantity,
            target_price=target_price,
            executed_price=executed_price,
            slippage_amount=slippage_per_share * quantity,
            commission=commission,
            gross_amount=gross_amount,
            net_amount=net_proceeds,
            signal_bar=signal_bar,
            execution_bar=execution_bar,
            exit_reason=reason,
            entry_price=entry_price,
            realized_pl=realized_pl,
            realized_pl_pct=realized_pl_pct,
            holding_period=(execution_bar - position.entry_bar).days,
        )
        await self._record_trade(trade, position)

        logger.info(
            "SELL %s %s @ %.4f | P&L $%+.2f (%+.2f%%) | cash $%.2f",
            quantity, symbol, executed_price, realized_pl, realized_pl_pct, self.cash,
        )
        return OrderResult(trade=trade)

    def update_current_price(self, symbol: str, price: float, timestamp: datetime) -> None:
        """Mark the open position for ``symbol`` to ``price``.

        The position's high-water mark only rises and its max drawdown only falls.
        """
        position = self._positions.get(symbol)
        if position is None or not position.is_open:
            return

        position.revalue(price)
        position.last_update_bar = timestamp
        position.high_water_mark = max(position.high_water_mark, position.unrealized_pl)
        if position.total_cost > 0:
            drawdown_pct = (
                (position.unrealized_pl - position.high_water_mark) / position.total_cost * 100
            )
            position.max_drawdown_pct = min(position.max_drawdown_pct, drawdown_pct)

    def record_equity_curve_snapshot(self, timestamp: datetime) -> EquityPoint:
        """Buffer a snapshot of cash + open position value for this bar."""
        stock_value = sum(p.market_value for p in self._positions.values() if p.is_open)
        total_equity = self.cash + stock_value

        self.portfolio_high_water_mark = max(self.portfolio_high_water_mark, total_equity)
        drawdown = total_equity - self.portfolio_high_water_mark
        drawdown_pct = (
            drawdown / self.portfolio_high_water_mark * 100
            if self.portfolio_high_water_mark > 0
            else 0.0
        )

        point = EquityPoint(
            timestamp=timestamp,
            cash=self.cash,
            stock_value=stock_value,
            total_equity=total_equity,
            high_water_mark=self.portfolio_high_water_mark,
            drawdown=drawdown,
            drawdown_pct=drawdown_pct,
            cumulative_return=(total_equity - self.initial_cash) / self.initial_cash * 100,
            trade_count=len(self._trades),
        )
        self._equity_curve.append(point)
        return point

    async def finalize_equity_curve(self) -> int:
        """Write the buffered equity curve in one batch. Call exactly once per run.

        Also persists the final marks of positions still open.
        Returns the number of points written.
        """
        if self._finalized:
            raise RuntimeError("Equity curve already finalized for this run")

        if self._store is not None:
            for position in self._positions.values():
                await self._store.save_position(self._run_id, position)
            await self._store.insert_equity_curve(self._run_id, self._equity_curve)

        self._finalized = True
        logger.info("Equity curve finalized: %d points", len(self._equity_curve))
        return len(self._equity_curve)

    def _check_order(self, quantity: float, target_price: float) -> None:
        if not self._initialized:
            raise RuntimeError("Portfolio not initialized; call initialize() first")
        if self._finalized:
            raise RuntimeError("Portfolio already finalized")
        if not quantity > 0 or not math.isfinite(quantity):
            raise ValueError(f"Order quantity must be positive, got {quantity}")
        if not target_price > 0 or not math.isfinite(target_price):
            raise ValueError(f"Order price must be positive, got {target_price}")

    def _warn(self, warning: BacktestWarning) -> OrderResult:
        self.warnings.append(warning)
        logger.warning("Order skipped: %s", warning.message)
        if self._on_warning is not None:
            self._on_warning(warning)
        return OrderResult(warning=warning)

    async def _record_trade(self, trade: TradeRecord, position: PositionState) -> None:
        self._trades.append(trade)
        if self._store is not None:
            await self._store.insert_trade(self._run_id, trade)
            await self._store.save_position(self._run_id, position)
