"""Stored strategy definitions referenced by backtest runs."""

from datetime import datetime, timezone

from sqlalchemy import DateTime, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from simtrade.database import Base


class StrategyConfig(Base):
    """Names the entry and exit rules a backtest evaluates, plus their params."""

    __tablename__ = "strategies"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    entry_rule: Mapped[str] = mapped_column(String(50), nullable=False)
    exit_rule: Mapped[str] = mapped_column(String(50), nullable=False)
    params: Mapped[str | None] = mapped_column(Text, nullable=True)  # JSON: {"entry": {...}, "exit": {...}}
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc)
    )
