"""
Domain models and value objects.

Contains escrow entities: TradingSession, OffChainPurchaseRecord, DepositIntent,
and portfolio agent state: HorsePosition, OracleReading.
"""

from src.core.domain.intent import DepositIntent, IntentStatus
from src.core.domain.portfolio import MAX_ORACLE_SCORE, HorsePosition, OracleReading
from src.core.domain.session import (
    LateSettlementPolicy,
    OffChainPurchaseRecord,
    SessionStatus,
    TradingSession,
)
from src.core.domain.units import (
    BPS_DENOMINATOR,
    DEFAULT_SLIPPAGE_TOLERANCE_BPS,
    ONE_NATIVE,
    ONE_SHARE,
    ONE_USDT,
    format_units,
    max_cost_with_slippage,
    refund_after_cost,
    validate_amount,
)

__all__ = [
    # Units module
    "BPS_DENOMINATOR",
    "DEFAULT_SLIPPAGE_TOLERANCE_BPS",
    "ONE_NATIVE",
    "ONE_SHARE",
    "ONE_USDT",
    "format_units",
    "max_cost_with_slippage",
    "refund_after_cost",
    "validate_amount",
    # Session models
    "TradingSession",
    "OffChainPurchaseRecord",
    "SessionStatus",
    "LateSettlementPolicy",
    # Intent model
    "DepositIntent",
    "IntentStatus",
    # Portfolio models
    "HorsePosition",
    "OracleReading",
    "MAX_ORACLE_SCORE",
]
