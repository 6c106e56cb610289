"""Post-run performance alerts.

Flags completed runs whose metrics fall below configured thresholds:
- WIN_RATE_DROP: win rate below the minimum (HIGH below the severe threshold)
- MAX_DRAWDOWN_BREACH: max drawdown deeper than the limit
- SHARPE_DECLINE: Sharpe ratio below the minimum
- PROFIT_FACTOR_LOW: profit factor below the minimum
"""

import logging
from dataclasses import dataclass
from enum import Enum

from simtrade.config import settings
from simtrade.services.backtest.records import PerformanceMetrics

logger = logging.getLogger(__name__)


class AlertSeverity(str, Enum):
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"


@dataclass(frozen=True)
class BacktestAlert:
    alert_type: str
    severity: AlertSeverity
    message: str
    threshold: float


class BacktestAlertService:
    """Compare run metrics against thresholds from settings.

    Undefined (None) metrics never alert, and a run without closed trades
    skips the win-rate check.
    """

    def __init__(
        self,
        min_win_rate_pct: float | None = None,
        high_severity_win_rate_pct: float | None = None,
        max_drawdown_pct: float | None = None,
        min_sharpe: float | None = None,
        min_profit_factor: float | None = None,
    ) -> None:
        self._min_win_rate = _or_default(min_win_rate_pct, settings.alert_min_win_rate_pct)
        self._high_win_rate = _or_default(
            high_severity_win_rate_pct, settings.alert_high_severity_win_rate_pct
        )
        self._max_drawdown = _or_default(max_drawdown_pct, settings.alert_max_drawdown_pct)
        self._min_sharpe = _or_default(min_sharpe, settings.alert_min_sharpe)
        self._min_profit_factor = _or_default(
            min_profit_factor, settings.alert_min_profit_factor
        )

    def check(self, metrics: PerformanceMetrics) -> list[BacktestAlert]:
        alerts: list[BacktestAlert] = []

        if metrics.total_trades > 0 and metrics.win_rate < self._min_win_rate:
            alerts.append(
                BacktestAlert(
                    alert_type="WIN_RATE_DROP",
                    severity=(
                        AlertSeverity.HIGH
                        if metrics.win_rate < self._high_win_rate
                        else AlertSeverity.MEDIUM
                    ),
                    message=f"Win rate dropped to {metrics.win_rate:.1f}%",
                    threshold=self._min_win_rate,
                )
            )

        if metrics.max_drawdown is not None and metrics.max_drawdown < self._max_drawdown:
            alerts.append(
                BacktestAlert(
                    alert_type="MAX_DRAWDOWN_BREACH",
                    severity=AlertSeverity.HIGH,
                    message=(
                        f"Max drawdown exceeded {self._max_drawdown:g}% threshold "
                        f"({metrics.max_drawdown:.2f}%)"
                    ),
                    threshold=self._max_drawdown,
                )
            )

        if metrics.sharpe_ratio is not None and metrics.sharpe_ratio < self._min_sharpe:
            alerts.append(
                BacktestAlert(
                    alert_type="SHARPE_DECLINE",
                    severity=AlertSeverity.MEDIUM,
                    message=(
                        f"Sharpe ratio below {self._min_sharpe:g} ({metrics.sharpe_ratio:.2f})"
                    ),
                    threshold=self._min_sharpe,
                )
            )

        if (
            metrics.profit_factor is not None
            and metrics.profit_factor < self._min_profit_factor
        ):
            alerts.append(
                BacktestAlert(
                    alert_type="PROFIT_FACTOR_LOW",
                    severity=AlertSeverity.MEDIUM,
                    message=(
                        f"Profit factor below {self._min_profit_factor:g} "
                        f"({metrics.profit_factor:.2f})"
                    ),
                    threshold=self._min_profit_factor,
                )
            )

        for alert in alerts:
            log_fn = logger.error if alert.severity == AlertSeverity.HIGH else logger.warning
            log_fn("ALERT [%s]: %s", alert.alert_type, alert.message)
        return alerts


def _or_default(value: float | None, default: float) -> float:
    return default if value is None else value
