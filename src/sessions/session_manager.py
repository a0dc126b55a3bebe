"""Session Manager — gasless trading сессии поверх bonding curve.

Поток:
1. open_session: пользователь блокирует средства (native или token) под инструмент
2. record_off_chain_fill: единственный доверенный relayer записывает off-chain
   fills (nonce строго 0, 1, 2, ...)
3. settle: владелец сессии исполняет накопленную покупку одной on-chain
   операцией по ТЕКУЩЕЙ цене с проверкой slippage, получает units и остаток
4. cancel: полный возврат locked_amount в любой момент пока сессия OPEN

Временные пороги:
- expiry: номинальный конец сессии
- expiry + grace_period: после него fills не принимаются, settle
  обрабатывается согласно LateSettlementPolicy

Effects-before-interactions: сессия помечается терминальной и запись fills
удаляется ДО вызова purchase и refund transfer.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, FrozenSet, List, Optional, Tuple

from src.core.access import AccessControl
from src.core.atomic import NonReentrant, non_reentrant, transactional
from src.core.domain.session import (
    LateSettlementPolicy,
    OffChainPurchaseRecord,
    SessionStatus,
    TradingSession,
)
from src.core.domain.units import (
    DEFAULT_SLIPPAGE_TOLERANCE_BPS,
    ONE_NATIVE,
    max_cost_with_slippage,
    refund_after_cost,
)
from src.core.errors import (
    AmountMismatch,
    BadNonce,
    BelowMinimum,
    InvalidAmount,
    InvalidInstrument,
    NoActiveSession,
    NothingRecorded,
    Overdrawn,
    SessionAlreadyActive,
    SessionExpired,
    SessionStale,
    SlippageExceeded,
    TerminalInstrument,
    UnderDelivered,
    UnsupportedAsset,
)
from src.core.events import EventLog
from src.core.lifecycle import TransitionResult, ensure_transition
from src.core.ports import Clock, PricingSource, Registry, SettlementMedium


logger = logging.getLogger(__name__)

SessionKey = Tuple[str, str]


# =============================================================================
# CONFIG
# =============================================================================


@dataclass(frozen=True)
class SessionConfig:
    """Конфигурация Session Manager."""

    session_duration_sec: int = 3600
    grace_period_sec: int = 300

    # Защита от dust-сессий: 0.001 native
    min_session_amount: int = ONE_NATIVE // 1000

    slippage_tolerance_bps: int = DEFAULT_SLIPPAGE_TOLERANCE_BPS
    late_settlement: LateSettlementPolicy = LateSettlementPolicy.REJECT

    native_asset: str = "ETH"
    accepted_assets: FrozenSet[str] = field(default_factory=lambda: frozenset({"ETH"}))

    def __post_init__(self):
        if self.session_duration_sec <= 0:
            raise ValueError(f"session_duration_sec must be positive: {self.session_duration_sec}")
        if self.grace_period_sec < 0:
            raise ValueError(f"grace_period_sec cannot be negative: {self.grace_period_sec}")
        if self.min_session_amount <= 0:
            raise ValueError(f"min_session_amount must be positive: {self.min_session_amount}")
        if self.slippage_tolerance_bps < 0:
            raise ValueError(f"slippage_tolerance_bps cannot be negative: {self.slippage_tolerance_bps}")


# =============================================================================
# RESULTS
# =============================================================================


@dataclass(frozen=True)
class SettlementResult:
    """Результат settle."""

    user: str
    instrument: str
    locked_amount: int
    units_purchased: int
    cost_paid: int
    refund: int
    auto_cancelled: bool
    transition: TransitionResult


@dataclass(frozen=True)
class CancellationResult:
    """Результат cancel."""

    user: str
    instrument: str
    refund: int
    transition: TransitionResult


# =============================================================================
# SESSION MANAGER
# =============================================================================


class SessionManager:
    """Time-boxed escrow сессии (user, instrument) с off-chain fills.

    Инварианты:
    - не более одной OPEN сессии на (user, instrument)
    - накопленный cost_basis fills <= locked_amount
    - settle: refund + cost_paid == locked_amount
    - cancel: возврат ровно locked_amount
    """

    emitter = "SessionManager"

    def __init__(
        self,
        pricing: PricingSource,
        registry: Registry,
        ledger: SettlementMedium,
        clock: Clock,
        owner: str,
        relayer: str,
        config: Optional[SessionConfig] = None,
        event_log: Optional[EventLog] = None,
        account: str = "session-manager",
    ):
        """
        Args:
            pricing: внешняя bonding curve
            registry: внешняя factory (проверка инструмента)
            ledger: settlement medium (escrow и переводы)
            clock: источник времени
            owner: административная identity
            relayer: единственный доверенный relayer off-chain fills
            config: конфигурация (по умолчанию SessionConfig())
            event_log: audit log (по умолчанию собственный)
            account: счёт escrow в ledger
        """
        self.pricing = pricing
        self.registry = registry
        self.ledger = ledger
        self.clock = clock
        self.config = config or SessionConfig()
        self.event_log = event_log if event_log is not None else EventLog()
        self.account = account
        self.access = AccessControl(owner, self.event_log, self.emitter, relayer=relayer)

        self._guard = NonReentrant(self.emitter)
        self._sessions: Dict[SessionKey, TradingSession] = {}
        self._records: Dict[SessionKey, OffChainPurchaseRecord] = {}

    @property
    def relayer(self) -> Optional[str]:
        return self.access.holder("relayer")

    # -------------------------------------------------------------------------
    # Операции
    # -------------------------------------------------------------------------

    @non_reentrant
    @transactional
    def open_session(
        self,
        caller: str,
        instrument: str,
        payment_asset: str,
        amount: int,
        value: int = 0,
    ) -> TradingSession:
        """
        Открытие сессии и escrow средств.

        Args:
            caller: пользователь
            instrument: share token
            payment_asset: native_asset (оплата через value) или token (через allowance)
            amount: объявленная сумма escrow
            value: приложенная native сумма (должна совпадать с amount для native)

        Returns:
            Новая OPEN сессия
        """
        if not instrument or not self.registry.is_instrument(instrument):
            raise InvalidInstrument(f"Unknown instrument: {instrument!r}")
        if self.pricing.is_terminal(instrument):
            raise TerminalInstrument(f"{instrument}: already graduated")
        if payment_asset not in self.config.accepted_assets:
            raise UnsupportedAsset(f"Payment asset not accepted: {payment_asset}")
        if amount < self.config.min_session_amount:
            raise BelowMinimum(f"amount {amount} below minimum {self.config.min_session_amount}")

        key = (caller, instrument)
        existing = self._sessions.get(key)
        if existing is not None and existing.active:
            raise SessionAlreadyActive(f"{caller}: session for {instrument} already active")

        native = payment_asset == self.config.native_asset
        if (native and value != amount) or (not native and value != 0):
            raise AmountMismatch(f"value {value} does not match amount {amount} ({payment_asset})")

        now = self.clock.now()
        transition = ensure_transition(
            existing.status if existing is not None else SessionStatus.CLOSED,
            SessionStatus.OPEN,
            "session_opened",
        )
        session = TradingSession(
            user=caller,
            instrument=instrument,
            payment_asset=payment_asset,
            locked_amount=amount,
            opened_at=now,
            expiry=now + self.config.session_duration_sec,
        )
        self._sessions[key] = session
        self._records[key] = OffChainPurchaseRecord()

        if native:
            self.ledger.transfer(payment_asset, caller, self.account, value)
        else:
            self.ledger.transfer_from(payment_asset, caller, self.account, amount)

        self.event_log.emit(
            "SessionOpened",
            ts=now,
            emitter=self.emitter,
            user=caller,
            instrument=instrument,
            payment_asset=payment_asset,
            locked_amount=amount,
            expiry=session.expiry,
        )
        logger.info(
            "session %s/%s: %s → %s, locked=%d expiry=%d",
            caller, instrument, transition.previous_state.value, transition.new_state.value,
            amount, session.expiry,
        )
        return session

    @transactional
    def record_off_chain_fill(
        self,
        caller: str,
        user: str,
        instrument: str,
        amount: int,
        cost_basis: int,
        nonce: int,
    ) -> OffChainPurchaseRecord:
        """
        Запись off-chain fill (только relayer).

        Отклонённая запись не меняет состояние.

        Returns:
            Обновлённая OffChainPurchaseRecord
        """
        self.access.require_role("relayer", caller, "record_off_chain_fill")
        if amount <= 0:
            raise InvalidAmount(f"fill amount must be positive: {amount}")
        if cost_basis < 0:
            raise InvalidAmount(f"fill cost_basis cannot be negative: {cost_basis}")

        key = (user, instrument)
        session = self._require_active(key)
        now = self.clock.now()
        if session.is_stale(now, self.config.grace_period_sec):
            raise SessionExpired(
                f"{user}/{instrument}: expired at {session.expiry} "
                f"(+{self.config.grace_period_sec}s grace), now={now}"
            )

        record = self._records.get(key, OffChainPurchaseRecord())
        if nonce != record.nonce:
            raise BadNonce(f"{user}/{instrument}: expected nonce {record.nonce}, got {nonce}")
        if record.cost_basis + cost_basis > session.locked_amount:
            raise Overdrawn(
                f"{user}/{instrument}: cost basis {record.cost_basis + cost_basis} "
                f"exceeds locked {session.locked_amount}"
            )

        updated = record.accumulate(amount, cost_basis)
        self._records[key] = updated
        self.event_log.emit(
            "OffChainFillRecorded",
            ts=now,
            emitter=self.emitter,
            user=user,
            instrument=instrument,
            amount=amount,
            cost_basis=cost_basis,
            nonce=nonce,
        )
        logger.debug("fill %s/%s nonce=%d amount=%d cost=%d", user, instrument, nonce, amount, cost_basis)
        return updated

    @non_reentrant
    @transactional
    def settle(self, caller: str, instrument: str) -> SettlementResult:
        """
        On-chain settlement накопленных fills владельцем сессии.

        Стоимость пересчитывается по текущему quote; отклоняется, если
        current_cost > cost_basis * (1 + slippage_tolerance_bps / 10000).
        """
        key = (caller, instrument)
        session = self._require_active(key)
        record = self._records.get(key)
        if record is None or record.amount == 0:
            raise NothingRecorded(f"{caller}/{instrument}: no off-chain fills recorded")

        now = self.clock.now()
        if session.is_stale(now, self.config.grace_period_sec):
            policy = self.config.late_settlement
            if policy == LateSettlementPolicy.REJECT:
                raise SessionStale(
                    f"{caller}/{instrument}: grace period ended at "
                    f"{session.expiry + self.config.grace_period_sec}, cancel to refund"
                )
            if policy == LateSettlementPolicy.AUTO_CANCEL:
                cancellation = self._close_with_refund(key, session, "late_settlement_auto_cancel")
                return SettlementResult(
                    user=caller,
                    instrument=instrument,
                    locked_amount=session.locked_amount,
                    units_purchased=0,
                    cost_paid=0,
                    refund=cancellation.refund,
                    auto_cancelled=True,
                    transition=cancellation.transition,
                )
            logger.info("late settlement allowed for %s/%s", caller, instrument)

        base_cost, fee = self.pricing.quote_cost(instrument, record.amount)
        current_cost = base_cost + fee
        max_cost = max_cost_with_slippage(record.cost_basis, self.config.slippage_tolerance_bps)
        logger.debug(
            "settle quote %s/%s: current=%d recorded=%d max=%d",
            caller, instrument, current_cost, record.cost_basis, max_cost,
        )
        if current_cost > max_cost:
            raise SlippageExceeded(
                f"{caller}/{instrument}: current cost {current_cost} exceeds {max_cost} "
                f"(recorded {record.cost_basis}, tolerance {self.config.slippage_tolerance_bps} bps)"
            )
        if current_cost > session.locked_amount:
            raise Overdrawn(
                f"{caller}/{instrument}: current cost {current_cost} exceeds locked {session.locked_amount}"
            )

        # Effects
        transition = ensure_transition(session.status, SessionStatus.SETTLED, "session_settled")
        self._sessions[key] = session.evolve(locked_amount=0, status=SessionStatus.SETTLED)
        del self._records[key]

        # Interactions
        asset = session.payment_asset
        self.ledger.approve(asset, self.account, self.pricing.account, current_cost)
        balance_before = self.ledger.balance_of(asset, self.account)
        units = self.pricing.purchase(
            self.account, instrument, record.amount, asset, current_cost, now
        )
        cost_paid = balance_before - self.ledger.balance_of(asset, self.account)
        self.ledger.approve(asset, self.account, self.pricing.account, 0)
        if units < record.amount:
            raise UnderDelivered(f"{caller}/{instrument}: received {units} < recorded {record.amount}")

        refund = refund_after_cost(session.locked_amount, cost_paid)
        self.ledger.transfer(instrument, self.account, caller, units)
        if refund > 0:
            self.ledger.transfer(asset, self.account, caller, refund)

        self.event_log.emit(
            "SessionSettled",
            ts=now,
            emitter=self.emitter,
            user=caller,
            instrument=instrument,
            units=units,
            cost_paid=cost_paid,
            refund=refund,
        )
        logger.info(
            "session %s/%s settled: units=%d cost=%d refund=%d",
            caller, instrument, units, cost_paid, refund,
        )
        return SettlementResult(
            user=caller,
            instrument=instrument,
            locked_amount=session.locked_amount,
            units_purchased=units,
            cost_paid=cost_paid,
            refund=refund,
            auto_cancelled=False,
            transition=transition,
        )

    @non_reentrant
    @transactional
    def cancel(self, caller: str, instrument: str) -> CancellationResult:
        """Полный возврат locked_amount владельцу сессии, без проверки slippage."""
        key = (caller, instrument)
        session = self._require_active(key)
        return self._close_with_refund(key, session, "session_cancelled")

    @transactional
    def update_relayer(self, caller: str, new_relayer: str) -> None:
        """Замена доверенного relayer (только owner)."""
        self.access.update_role(caller, "relayer", new_relayer, ts=self.clock.now())

    # -------------------------------------------------------------------------
    # Чтение
    # -------------------------------------------------------------------------

    def get_session(self, user: str, instrument: str) -> Optional[TradingSession]:
        return self._sessions.get((user, instrument))

    def get_purchase_record(self, user: str, instrument: str) -> Optional[OffChainPurchaseRecord]:
        return self._records.get((user, instrument))

    def has_active_session(self, user: str, instrument: str) -> bool:
        session = self._sessions.get((user, instrument))
        return session is not None and session.active

    def next_nonce(self, user: str, instrument: str) -> int:
        record = self._records.get((user, instrument))
        return record.nonce if record is not None else 0

    def is_session_expired(self, user: str, instrument: str) -> bool:
        """
        Истекла ли сессия (номинальный expiry).

        Raises:
            NoActiveSession: сессия для (user, instrument) никогда не открывалась
        """
        session = self._sessions.get((user, instrument))
        if session is None:
            raise NoActiveSession(f"{user}: no session for {instrument}")
        return session.is_expired(self.clock.now())

    def active_sessions(self) -> List[TradingSession]:
        return [s for s in self._sessions.values() if s.active]

    # -------------------------------------------------------------------------
    # Journaled
    # -------------------------------------------------------------------------

    def snapshot(self) -> tuple:
        return dict(self._sessions), dict(self._records)

    def restore(self, state: tuple) -> None:
        sessions, records = state
        self._sessions = dict(sessions)
        self._records = dict(records)

    # -------------------------------------------------------------------------

    def _participants(self) -> tuple:
        return (self, self.access, self.event_log, self.ledger, self.pricing, self.registry)

    def _require_active(self, key: SessionKey) -> TradingSession:
        session = self._sessions.get(key)
        if session is None or not session.active:
            raise NoActiveSession(f"{key[0]}: no active session for {key[1]}")
        return session

    def _close_with_refund(
        self, key: SessionKey, session: TradingSession, reason: str
    ) -> CancellationResult:
        transition = ensure_transition(session.status, SessionStatus.CANCELLED, reason)
        self._sessions[key] = session.evolve(locked_amount=0, status=SessionStatus.CANCELLED)
        self._records.pop(key, None)

        self.ledger.transfer(session.payment_asset, self.account, session.user, session.locked_amount)

        self.event_log.emit(
            "SessionCancelled",
            ts=self.clock.now(),
            emitter=self.emitter,
            user=session.user,
            instrument=session.instrument,
            refund=session.locked_amount,
            reason=reason,
        )
        logger.info(
            "session %s/%s cancelled (%s): refund=%d",
            session.user, session.instrument, reason, session.locked_amount,
        )
        return CancellationResult(
            user=session.user,
            instrument=session.instrument,
            refund=session.locked_amount,
            transition=transition,
        )
