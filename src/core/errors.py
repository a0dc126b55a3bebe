"""
Errors — таксономия ошибок escrow-компонентов

Все ошибки фатальны для вызова: операция откатывается целиком, частичных
состояний не бывает. Повторы — ответственность внешнего вызывающего
(relayer / off-chain agent).

Группы:
- AuthorizationError: неверная identity для привилегированного действия
- StatePreconditionError: нет активной сессии/intent, терминальное состояние,
  неверный nonce, истёкший срок
- ValidationFailure: некорректные входные параметры (суммы, дедлайны)
- EconomicBoundError: slippage, quote > escrow, under-delivery
- ExternalCallError: сбой quote/purchase/transfer во внешней системе

Каждая ошибка имеет стабильный `code` (snake_case) для логов и audit events.
"""

from typing import ClassVar


class EscrowError(Exception):
    """Базовая ошибка escrow-компонентов."""

    code: ClassVar[str] = "escrow_error"


# =============================================================================
# AUTHORIZATION
# =============================================================================


class AuthorizationError(EscrowError):
    code = "authorization_error"


class Unauthorized(AuthorizationError):
    code = "unauthorized"


# =============================================================================
# STATE PRECONDITIONS
# =============================================================================


class StatePreconditionError(EscrowError):
    code = "state_precondition_error"


class InvalidInstrument(StatePreconditionError):
    code = "invalid_instrument"


class TerminalInstrument(StatePreconditionError):
    """Инструмент graduated — торговля закрыта."""

    code = "terminal_instrument"


class SessionAlreadyActive(StatePreconditionError):
    code = "session_already_active"


class NoActiveSession(StatePreconditionError):
    code = "no_active_session"


class SessionExpired(StatePreconditionError):
    """Новые fills после expiry + grace не принимаются."""

    code = "session_expired"


class SessionStale(StatePreconditionError):
    """Settlement после expiry + grace отклонён политикой."""

    code = "session_stale"


class BadNonce(StatePreconditionError):
    code = "bad_nonce"


class NothingRecorded(StatePreconditionError):
    code = "nothing_recorded"


class NotFound(StatePreconditionError):
    code = "not_found"


class AlreadyCompleted(StatePreconditionError):
    code = "already_completed"


class Expired(StatePreconditionError):
    code = "expired"


class NotYetExpired(StatePreconditionError):
    code = "not_yet_expired"


class UnknownTarget(StatePreconditionError):
    code = "unknown_target"


class InvalidTransition(StatePreconditionError):
    code = "invalid_transition"


class ReentrantCall(StatePreconditionError):
    code = "reentrant_call"


class StrategyInactive(StatePreconditionError):
    """Инвестиционная стратегия агента выключена."""

    code = "strategy_inactive"


class OracleDataStale(StatePreconditionError):
    """Нет валидных данных oracle или они старше допустимого возраста."""

    code = "oracle_data_stale"


class ScoreTooLow(StatePreconditionError):
    code = "score_too_low"


class PortfolioFull(StatePreconditionError):
    code = "portfolio_full"


# =============================================================================
# INPUT VALIDATION
# =============================================================================


class ValidationFailure(EscrowError, ValueError):
    code = "validation_failure"


class BelowMinimum(ValidationFailure):
    code = "below_minimum"


class AmountMismatch(ValidationFailure):
    code = "amount_mismatch"


class ZeroMinUnits(ValidationFailure):
    code = "zero_min_units"


class DeadlineTooSoon(ValidationFailure):
    code = "deadline_too_soon"


class DeadlineTooFar(ValidationFailure):
    code = "deadline_too_far"


class InvalidAmount(ValidationFailure):
    code = "invalid_amount"


class UnsupportedAsset(ValidationFailure):
    code = "unsupported_asset"


class InvalidScore(ValidationFailure):
    code = "invalid_score"


# =============================================================================
# ECONOMIC BOUNDS
# =============================================================================


class EconomicBoundError(EscrowError):
    """Защита пользователя от неблагоприятного движения цены."""

    code = "economic_bound_error"


class SlippageExceeded(EconomicBoundError):
    code = "slippage_exceeded"


class Overdrawn(EconomicBoundError):
    code = "overdrawn"


class QuoteExceedsEscrow(EconomicBoundError):
    code = "quote_exceeds_escrow"


class UnderDelivered(EconomicBoundError):
    code = "under_delivered"


class PositionLimitExceeded(EconomicBoundError):
    code = "position_limit_exceeded"


class InsufficientFunds(EconomicBoundError):
    code = "insufficient_funds"


# =============================================================================
# EXTERNAL CALLS
# =============================================================================


class ExternalCallError(EscrowError):
    code = "external_call_error"


class TransferFailed(ExternalCallError):
    code = "transfer_failed"


class PurchaseFailed(ExternalCallError):
    code = "purchase_failed"
