"""Intents — cross-chain deposit intents с доверенным executor."""

from .estimator import QuoteBisectionEstimator, SpotPriceEstimator, UnitEstimator
from .intent_manager import (
    IntentCancellationResult,
    IntentConfig,
    IntentExecutionResult,
    IntentManager,
)

__all__ = [
    "IntentManager",
    "IntentConfig",
    "IntentExecutionResult",
    "IntentCancellationResult",
    "UnitEstimator",
    "QuoteBisectionEstimator",
    "SpotPriceEstimator",
]
