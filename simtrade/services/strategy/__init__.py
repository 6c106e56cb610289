"""Signal evaluators and the rules registry."""

from simtrade.services.strategy.base import SignalEvaluator, Strategy
from simtrade.services.strategy.rules import EVALUATOR_MAP, build_strategy

__all__ = ["SignalEvaluator", "Strategy", "EVALUATOR_MAP", "build_strategy"]
