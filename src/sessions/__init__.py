"""Sessions — gasless trading сессии (escrow + off-chain fills + settlement)."""

from .session_manager import (
    CancellationResult,
    SessionConfig,
    SessionManager,
    SettlementResult,
)

__all__ = [
    "SessionManager",
    "SessionConfig",
    "SettlementResult",
    "CancellationResult",
]
