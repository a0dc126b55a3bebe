"""Intent Manager — cross-chain deposit intents.

Поток:
1. create_intent: пользователь блокирует deposit asset под horse id с дедлайном
2. execute_intent: доверенный executor (bridge) или owner покупает min_units
   от имени пользователя, units и остаток уходят депозитору
3. cancel_intent: депозитор после дедлайна или owner в любой момент,
   полный возврат

Escrow каждого intent выплачивается ровно один раз: либо purchase + refund,
либо полный refund. Статус помечается терминальным ДО внешних вызовов.
"""

import hashlib
import logging
from dataclasses import dataclass
from typing import Dict, List, Optional

from src.core.access import AccessControl
from src.core.atomic import NonReentrant, non_reentrant, transactional
from src.core.domain.intent import DepositIntent, IntentStatus
from src.core.domain.units import ONE_USDT, USDT_DECIMALS, format_units
from src.core.errors import (
    AlreadyCompleted,
    BelowMinimum,
    DeadlineTooFar,
    DeadlineTooSoon,
    Expired,
    NotFound,
    NotYetExpired,
    QuoteExceedsEscrow,
    TerminalInstrument,
    Unauthorized,
    UnderDelivered,
    UnknownTarget,
    ZeroMinUnits,
)
from src.core.events import EventLog
from src.core.lifecycle import TransitionResult, ensure_transition
from src.core.ports import Clock, PricingSource, Registry, SettlementMedium
from src.intents.estimator import QuoteBisectionEstimator, UnitEstimator


logger = logging.getLogger(__name__)


# =============================================================================
# CONFIG
# =============================================================================


@dataclass(frozen=True)
class IntentConfig:
    """Конфигурация Intent Manager."""

    deposit_asset: str = "USDT"
    deposit_decimals: int = USDT_DECIMALS

    # Защита от dust: 1 USDT
    min_deposit_amount: int = ONE_USDT

    # Максимальное окно дедлайна: 24 часа
    max_deadline_window_sec: int = 86_400

    def __post_init__(self):
        if self.min_deposit_amount <= 0:
            raise ValueError(f"min_deposit_amount must be positive: {self.min_deposit_amount}")
        if self.max_deadline_window_sec <= 0:
            raise ValueError(f"max_deadline_window_sec must be positive: {self.max_deadline_window_sec}")
        if self.deposit_decimals < 0:
            raise ValueError(f"deposit_decimals cannot be negative: {self.deposit_decimals}")


# =============================================================================
# RESULTS
# =============================================================================


@dataclass(frozen=True)
class IntentExecutionResult:
    intent: DepositIntent
    quoted_cost: int
    transition: TransitionResult


@dataclass(frozen=True)
class IntentCancellationResult:
    intent: DepositIntent
    refund: int
    by_owner: bool
    transition: TransitionResult


# =============================================================================
# INTENT MANAGER
# =============================================================================


class IntentManager:
    """Одноразовые deposit intents с доверенным executor."""

    emitter = "IntentManager"

    def __init__(
        self,
        pricing: PricingSource,
        registry: Registry,
        ledger: SettlementMedium,
        clock: Clock,
        owner: str,
        executor: str,
        config: Optional[IntentConfig] = None,
        event_log: Optional[EventLog] = None,
        estimator: Optional[UnitEstimator] = None,
        account: str = "intent-manager",
    ):
        """
        Args:
            pricing: внешняя bonding curve
            registry: внешняя factory (horse id → share token)
            ledger: settlement medium
            clock: источник времени
            owner: административная identity (override исполнения и отмены)
            executor: доверенный executor (bridge contract или оператор)
            config: конфигурация (по умолчанию IntentConfig())
            event_log: audit log (по умолчанию собственный)
            estimator: стратегия estimate_units (по умолчанию QuoteBisectionEstimator)
            account: счёт escrow в ledger
        """
        self.pricing = pricing
        self.registry = registry
        self.ledger = ledger
        self.clock = clock
        self.config = config or IntentConfig()
        self.event_log = event_log if event_log is not None else EventLog()
        self.estimator = estimator or QuoteBisectionEstimator()
        self.account = account
        self.access = AccessControl(owner, self.event_log, self.emitter, executor=executor)

        self._guard = NonReentrant(self.emitter)
        self._intents: Dict[str, DepositIntent] = {}
        self._user_intents: Dict[str, List[str]] = {}
        self._counter = 0

    @property
    def executor(self) -> Optional[str]:
        return self.access.holder("executor")

    # -------------------------------------------------------------------------
    # Операции
    # -------------------------------------------------------------------------

    @non_reentrant
    @transactional
    def create_intent(
        self,
        caller: str,
        target_id: int,
        deposit_amount: int,
        min_units: int,
        deadline: int,
    ) -> DepositIntent:
        """
        Создание intent и escrow deposit_amount (через allowance).

        Returns:
            Новый DepositIntent в состоянии CREATED
        """
        if deposit_amount < self.config.min_deposit_amount:
            raise BelowMinimum(
                f"deposit {deposit_amount} below minimum {self.config.min_deposit_amount}"
            )
        if min_units <= 0:
            raise ZeroMinUnits(f"min_units must be positive: {min_units}")

        now = self.clock.now()
        if deadline <= now:
            raise DeadlineTooSoon(f"deadline {deadline} is not after now {now}")
        if deadline > now + self.config.max_deadline_window_sec:
            raise DeadlineTooFar(
                f"deadline {deadline} beyond {now + self.config.max_deadline_window_sec} "
                f"({self.config.max_deadline_window_sec}s window)"
            )

        if not self.registry.is_registered(target_id):
            raise UnknownTarget(f"Target not registered: {target_id}")
        instrument = self.registry.resolve(target_id)
        if self.pricing.is_terminal(instrument):
            raise TerminalInstrument(f"{instrument} (target {target_id}): already graduated")

        intent_id = self._derive_intent_id(caller, target_id, deposit_amount, min_units, deadline)
        self._counter += 1
        intent = DepositIntent(
            intent_id=intent_id,
            user=caller,
            target_id=target_id,
            instrument=instrument,
            deposit_amount=deposit_amount,
            min_units=min_units,
            deadline=deadline,
            created_at=now,
        )
        self._intents[intent_id] = intent
        self._user_intents[caller] = self._user_intents.get(caller, []) + [intent_id]

        self.ledger.transfer_from(self.config.deposit_asset, caller, self.account, deposit_amount)

        self.event_log.emit(
            "DepositIntentCreated",
            ts=now,
            emitter=self.emitter,
            intent_id=intent_id,
            user=caller,
            target_id=target_id,
            deposit_amount=deposit_amount,
            min_units=min_units,
            deadline=deadline,
        )
        logger.info(
            "intent %s created by %s: target=%d deposit=%s %s min_units=%d deadline=%d",
            intent_id, caller, target_id,
            format_units(deposit_amount, self.config.deposit_decimals), self.config.deposit_asset,
            min_units, deadline,
        )
        return intent

    @non_reentrant
    @transactional
    def execute_intent(self, caller: str, intent_id: str) -> IntentExecutionResult:
        """
        Исполнение intent executor'ом или owner'ом.

        Покупка min_units с max_cost = deposit_amount; фактическая стоимость
        измеряется по изменению баланса escrow.
        """
        self.access.require_role("executor", caller, "execute_intent", allow_owner=True)
        intent = self._require_intent(intent_id)
        if intent.completed:
            raise AlreadyCompleted(f"intent {intent_id} already {intent.status.value}")
        now = self.clock.now()
        if intent.is_expired(now):
            raise Expired(f"intent {intent_id} expired at {intent.deadline}, now={now}")

        base_cost, fee = self.pricing.quote_cost(intent.instrument, intent.min_units)
        quoted_cost = base_cost + fee
        logger.debug("intent %s quote: %d for %d units", intent_id, quoted_cost, intent.min_units)
        if quoted_cost > intent.deposit_amount:
            raise QuoteExceedsEscrow(
                f"intent {intent_id}: quote {quoted_cost} exceeds escrow {intent.deposit_amount}"
            )

        # Effects
        transition = ensure_transition(intent.status, IntentStatus.EXECUTED, "intent_executed")
        self._intents[intent_id] = intent.evolve(status=IntentStatus.EXECUTED)

        # Interactions
        asset = self.config.deposit_asset
        self.ledger.approve(asset, self.account, self.pricing.account, intent.deposit_amount)
        balance_before = self.ledger.balance_of(asset, self.account)
        units = self.pricing.purchase(
            self.account,
            intent.instrument,
            intent.min_units,
            asset,
            intent.deposit_amount,
            intent.deadline,
        )
        cost_paid = balance_before - self.ledger.balance_of(asset, self.account)
        self.ledger.approve(asset, self.account, self.pricing.account, 0)
        if units < intent.min_units:
            raise UnderDelivered(f"intent {intent_id}: received {units} < min_units {intent.min_units}")

        refund = intent.deposit_amount - cost_paid
        self.ledger.transfer(intent.instrument, self.account, intent.user, units)
        if refund > 0:
            self.ledger.transfer(asset, self.account, intent.user, refund)

        executed = intent.evolve(
            status=IntentStatus.EXECUTED,
            units_received=units,
            cost_paid=cost_paid,
            refund=refund,
        )
        self._intents[intent_id] = executed
        self.event_log.emit(
            "DepositIntentExecuted",
            ts=now,
            emitter=self.emitter,
            intent_id=intent_id,
            executor=caller,
            units=units,
            cost_paid=cost_paid,
            refund=refund,
        )
        logger.info(
            "intent %s executed by %s: units=%d cost=%s refund=%s",
            intent_id, caller, units,
            format_units(cost_paid, self.config.deposit_decimals),
            format_units(refund, self.config.deposit_decimals),
        )
        return IntentExecutionResult(intent=executed, quoted_cost=quoted_cost, transition=transition)

    @non_reentrant
    @transactional
    def cancel_intent(self, caller: str, intent_id: str) -> IntentCancellationResult:
        """
        Отмена intent с полным возвратом депозитору.

        Депозитор — только после дедлайна; owner — в любой момент.
        """
        intent = self._require_intent(intent_id)
        if intent.completed:
            raise AlreadyCompleted(f"intent {intent_id} already {intent.status.value}")

        by_owner = self.access.is_owner(caller)
        now = self.clock.now()
        if not by_owner:
            if caller != intent.user:
                logger.warning("cancel_intent %s rejected for %s", intent_id, caller)
                raise Unauthorized(f"cancel_intent: {caller} is neither depositor nor owner")
            if not intent.is_expired(now):
                raise NotYetExpired(f"intent {intent_id} cancellable after {intent.deadline}, now={now}")

        transition = ensure_transition(intent.status, IntentStatus.CANCELLED, "intent_cancelled")
        cancelled = intent.evolve(status=IntentStatus.CANCELLED)
        self._intents[intent_id] = cancelled

        self.ledger.transfer(self.config.deposit_asset, self.account, intent.user, intent.deposit_amount)

        self.event_log.emit(
            "DepositIntentCancelled",
            ts=now,
            emitter=self.emitter,
            intent_id=intent_id,
            cancelled_by=caller,
            refund=intent.deposit_amount,
        )
        logger.info(
            "intent %s cancelled by %s: refund=%s",
            intent_id, caller, format_units(intent.deposit_amount, self.config.deposit_decimals),
        )
        return IntentCancellationResult(
            intent=cancelled,
            refund=intent.deposit_amount,
            by_owner=by_owner,
            transition=transition,
        )

    @transactional
    def update_executor(self, caller: str, new_executor: str) -> None:
        """Замена доверенного executor (только owner)."""
        self.access.update_role(caller, "executor", new_executor, ts=self.clock.now())

    # -------------------------------------------------------------------------
    # Чтение
    # -------------------------------------------------------------------------

    def get_intent(self, intent_id: str) -> DepositIntent:
        return self._require_intent(intent_id)

    def is_intent_expired(self, intent_id: str) -> bool:
        return self._require_intent(intent_id).is_expired(self.clock.now())

    def intents_of(self, user: str) -> List[DepositIntent]:
        return [self._intents[i] for i in self._user_intents.get(user, [])]

    def estimate_units(self, target_id: int, deposit_amount: int) -> int:
        """
        Оценка units на deposit_amount (подсказка для min_units).

        Raises:
            UnknownTarget: target не зарегистрирован
        """
        if not self.registry.is_registered(target_id):
            raise UnknownTarget(f"Target not registered: {target_id}")
        instrument = self.registry.resolve(target_id)
        return self.estimator.estimate(self.pricing, instrument, deposit_amount)

    # -------------------------------------------------------------------------
    # Journaled
    # -------------------------------------------------------------------------

    def snapshot(self) -> tuple:
        return dict(self._intents), {u: list(ids) for u, ids in self._user_intents.items()}, self._counter

    def restore(self, state: tuple) -> None:
        intents, user_intents, counter = state
        self._intents = dict(intents)
        self._user_intents = {u: list(ids) for u, ids in user_intents.items()}
        self._counter = counter

    # -------------------------------------------------------------------------

    def _participants(self) -> tuple:
        return (self, self.access, self.event_log, self.ledger, self.pricing, self.registry)

    def _require_intent(self, intent_id: str) -> DepositIntent:
        try:
            return self._intents[intent_id]
        except KeyError:
            raise NotFound(f"intent not found: {intent_id}") from None

    def _derive_intent_id(
        self, user: str, target_id: int, deposit_amount: int, min_units: int, deadline: int
    ) -> str:
        material = "|".join(
            str(part)
            for part in (self.account, user, target_id, deposit_amount, min_units, deadline, self._counter)
        )
        return "0x" + hashlib.sha3_256(material.encode("utf-8")).hexdigest()
