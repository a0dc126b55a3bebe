"""
Contract Validation Module

Модуль для валидации JSON контрактов сессий, intents и audit events.
"""

from .validators import (
    AuditEventValidator,
    ContractValidator,
    DepositIntentValidator,
    SchemaLoader,
    TradingSessionValidator,
    validate_audit_event,
    validate_deposit_intent,
    validate_trading_session,
)

__all__ = [
    # Classes
    "SchemaLoader",
    "ContractValidator",
    "TradingSessionValidator",
    "DepositIntentValidator",
    "AuditEventValidator",
    # Functions
    "validate_trading_session",
    "validate_deposit_intent",
    "validate_audit_event",
]
