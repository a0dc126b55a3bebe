"""Portfolio Agent — автоматические инвестиции в horse shares по оценкам oracle.

Поток:
1. owner настраивает стратегию (update_strategy) и включает её
   (set_strategy_active)
2. доверенный oracle публикует оценки horses 0-100 (update_oracle_data)
3. агент пополняется investment asset обычным переводом на свой счёт
4. execute_investment: owner покупает units horse на заданную сумму,
   если стратегия активна, оценка свежая и не ниже порога, horse не
   graduated и позиция/портфель не превышают лимитов

Позиции хранят фактически списанную стоимость (изменение баланса агента),
а не quote.
"""

import dataclasses
import logging
from dataclasses import dataclass
from typing import Dict, List, Optional

from src.core.access import AccessControl
from src.core.atomic import NonReentrant, non_reentrant, transactional
from src.core.domain.portfolio import MAX_ORACLE_SCORE, HorsePosition, OracleReading
from src.core.domain.units import (
    BPS_DENOMINATOR,
    ONE_SHARE,
    ONE_USDT,
    USDT_DECIMALS,
    format_units,
)
from src.core.errors import (
    InsufficientFunds,
    InvalidAmount,
    InvalidScore,
    OracleDataStale,
    PortfolioFull,
    PositionLimitExceeded,
    ScoreTooLow,
    StrategyInactive,
    TerminalInstrument,
    UnderDelivered,
    UnknownTarget,
)
from src.core.events import EventLog
from src.core.ports import Clock, PricingSource, Registry, SettlementMedium
from src.intents.estimator import QuoteBisectionEstimator, UnitEstimator


logger = logging.getLogger(__name__)


# =============================================================================
# CONFIG
# =============================================================================


@dataclass(frozen=True)
class StrategyConfig:
    """Инвестиционная стратегия (меняется owner'ом через update_strategy)."""

    target_portfolio_size: int = 5

    # Лимит вложений в одну horse: 10,000 USDT
    max_position_size: int = 10_000 * ONE_USDT

    min_oracle_score: int = 60
    rebalance_threshold_bps: int = 500
    is_active: bool = False

    def __post_init__(self):
        if self.target_portfolio_size <= 0:
            raise ValueError(f"target_portfolio_size must be positive: {self.target_portfolio_size}")
        if self.max_position_size <= 0:
            raise ValueError(f"max_position_size must be positive: {self.max_position_size}")
        if not 0 <= self.min_oracle_score <= MAX_ORACLE_SCORE:
            raise ValueError(f"min_oracle_score out of [0, {MAX_ORACLE_SCORE}]: {self.min_oracle_score}")
        if not 0 <= self.rebalance_threshold_bps <= BPS_DENOMINATOR:
            raise ValueError(f"rebalance_threshold_bps out of range: {self.rebalance_threshold_bps}")


@dataclass(frozen=True)
class AgentConfig:
    """Статическая конфигурация агента."""

    investment_asset: str = "USDT"
    investment_decimals: int = USDT_DECIMALS

    # Oracle данные старше часа не используются
    oracle_max_age_sec: int = 3600

    # Размер целого unit share токена (для оценки стоимости позиции)
    share_unit: int = ONE_SHARE

    def __post_init__(self):
        if self.oracle_max_age_sec <= 0:
            raise ValueError(f"oracle_max_age_sec must be positive: {self.oracle_max_age_sec}")
        if self.investment_decimals < 0:
            raise ValueError(f"investment_decimals cannot be negative: {self.investment_decimals}")
        if self.share_unit <= 0:
            raise ValueError(f"share_unit must be positive: {self.share_unit}")


# =============================================================================
# RESULTS
# =============================================================================


@dataclass(frozen=True)
class InvestmentResult:
    horse_id: int
    instrument: str
    units: int
    cost_paid: int
    position: HorsePosition


@dataclass(frozen=True)
class PortfolioValue:
    """Сводка портфеля: все units и все вложенные средства."""

    total_units: int
    total_invested: int


# =============================================================================
# PORTFOLIO AGENT
# =============================================================================


class HorsePortfolioAgent:
    """Агент, инвестирующий собственный баланс в horse shares."""

    emitter = "HorsePortfolioAgent"

    def __init__(
        self,
        pricing: PricingSource,
        registry: Registry,
        ledger: SettlementMedium,
        clock: Clock,
        owner: str,
        oracle: str,
        strategy: Optional[StrategyConfig] = None,
        config: Optional[AgentConfig] = None,
        event_log: Optional[EventLog] = None,
        estimator: Optional[UnitEstimator] = None,
        account: str = "portfolio-agent",
    ):
        """
        Args:
            pricing: внешняя bonding curve
            registry: внешняя factory (horse id → share token)
            ledger: settlement medium
            clock: источник времени
            owner: административная identity (стратегия, инвестиции)
            oracle: доверенный источник оценок horses
            strategy: начальная стратегия (по умолчанию StrategyConfig(), выключена)
            config: конфигурация (по умолчанию AgentConfig())
            event_log: audit log (по умолчанию собственный)
            estimator: расчёт units на сумму (по умолчанию QuoteBisectionEstimator)
            account: счёт агента в ledger
        """
        self.pricing = pricing
        self.registry = registry
        self.ledger = ledger
        self.clock = clock
        self.config = config or AgentConfig()
        self.strategy = strategy or StrategyConfig()
        self.event_log = event_log if event_log is not None else EventLog()
        self.estimator = estimator or QuoteBisectionEstimator()
        self.account = account
        self.access = AccessControl(owner, self.event_log, self.emitter, oracle=oracle)

        self._guard = NonReentrant(self.emitter)
        self._oracle_cache: Dict[int, OracleReading] = {}
        self._positions: Dict[int, HorsePosition] = {}
        self._portfolio: List[int] = []

    @property
    def oracle(self) -> Optional[str]:
        return self.access.holder("oracle")

    # -------------------------------------------------------------------------
    # Стратегия и oracle
    # -------------------------------------------------------------------------

    @transactional
    def update_strategy(
        self,
        caller: str,
        target_portfolio_size: int,
        max_position_size: int,
        min_oracle_score: int,
        rebalance_threshold_bps: int,
    ) -> StrategyConfig:
        """Замена параметров стратегии (только owner), is_active сохраняется."""
        self.access.require_owner(caller, "update_strategy")
        self.strategy = dataclasses.replace(
            self.strategy,
            target_portfolio_size=target_portfolio_size,
            max_position_size=max_position_size,
            min_oracle_score=min_oracle_score,
            rebalance_threshold_bps=rebalance_threshold_bps,
        )
        self._emit_strategy()
        return self.strategy

    @transactional
    def set_strategy_active(self, caller: str, active: bool) -> StrategyConfig:
        self.access.require_owner(caller, "set_strategy_active")
        self.strategy = dataclasses.replace(self.strategy, is_active=active)
        self._emit_strategy()
        logger.info("strategy %s by %s", "activated" if active else "deactivated", caller)
        return self.strategy

    @transactional
    def update_oracle(self, caller: str, new_oracle: str) -> None:
        """Замена доверенного oracle (только owner)."""
        self.access.update_role(caller, "oracle", new_oracle, ts=self.clock.now())

    @transactional
    def update_oracle_data(
        self, caller: str, horse_id: int, score: int, valid: bool = True
    ) -> OracleReading:
        """
        Публикация оценки horse (только oracle).

        valid=False отзывает оценку: инвестиции в horse блокируются до
        следующей валидной публикации.

        Raises:
            Unauthorized: caller не oracle
            UnknownTarget: horse не зарегистрирована
            InvalidScore: оценка вне 0-100
        """
        self.access.require_role("oracle", caller, "update_oracle_data")
        if not self.registry.is_registered(horse_id):
            raise UnknownTarget(f"Target not registered: {horse_id}")
        if isinstance(score, bool) or not 0 <= score <= MAX_ORACLE_SCORE:
            raise InvalidScore(f"score must be within [0, {MAX_ORACLE_SCORE}]: {score}")

        now = self.clock.now()
        reading = OracleReading(
            horse_id=horse_id, performance_score=score, timestamp=now, is_valid=valid
        )
        self._oracle_cache[horse_id] = reading
        self.event_log.emit(
            "OracleDataUpdated",
            ts=now,
            emitter=self.emitter,
            horse_id=horse_id,
            performance_score=score,
            is_valid=valid,
        )
        logger.debug("oracle %s: horse %d score=%d valid=%s", caller, horse_id, score, valid)
        return reading

    def is_oracle_data_stale(self, horse_id: int) -> bool:
        """Нет оценки либо она старше oracle_max_age_sec."""
        reading = self._oracle_cache.get(horse_id)
        if reading is None:
            return True
        return reading.is_stale(self.clock.now(), self.config.oracle_max_age_sec)

    # -------------------------------------------------------------------------
    # Инвестиции
    # -------------------------------------------------------------------------

    @non_reentrant
    @transactional
    def execute_investment(self, caller: str, horse_id: int, amount: int) -> InvestmentResult:
        """
        Покупка units horse на amount из баланса агента.

        Проверки по порядку: стратегия, сумма, horse, свежесть и порог
        оценки, graduation, заполненность портфеля, лимит позиции, баланс.

        Raises:
            Unauthorized: caller не owner
            StrategyInactive, OracleDataStale, ScoreTooLow, PortfolioFull
            TerminalInstrument: horse уже graduated
            PositionLimitExceeded: позиция превысит max_position_size
            InsufficientFunds: баланса агента не хватает или сумма не покупает ни одного unit
        """
        self.access.require_owner(caller, "execute_investment")
        strategy = self.strategy
        if not strategy.is_active:
            raise StrategyInactive("strategy is not active")
        if isinstance(amount, bool) or amount <= 0:
            raise InvalidAmount(f"amount must be positive: {amount}")
        if not self.registry.is_registered(horse_id):
            raise UnknownTarget(f"Target not registered: {horse_id}")

        reading = self._oracle_cache.get(horse_id)
        if reading is None or not reading.is_valid or self.is_oracle_data_stale(horse_id):
            raise OracleDataStale(f"horse {horse_id}: no fresh oracle data")
        if reading.performance_score < strategy.min_oracle_score:
            raise ScoreTooLow(
                f"horse {horse_id}: score {reading.performance_score} "
                f"below minimum {strategy.min_oracle_score}"
            )

        instrument = self.registry.resolve(horse_id)
        if self.pricing.is_terminal(instrument):
            raise TerminalInstrument(f"{instrument} (horse {horse_id}): already graduated")

        position = self._positions.get(horse_id)
        if position is None:
            if len(self._portfolio) >= strategy.target_portfolio_size:
                raise PortfolioFull(
                    f"portfolio holds {len(self._portfolio)} of {strategy.target_portfolio_size} horses"
                )
            position = HorsePosition(horse_id=horse_id, instrument=instrument)
        if position.cost_basis + amount > strategy.max_position_size:
            raise PositionLimitExceeded(
                f"horse {horse_id}: position {position.cost_basis} + {amount} "
                f"exceeds {strategy.max_position_size}"
            )

        asset = self.config.investment_asset
        balance_before = self.ledger.balance_of(asset, self.account)
        if balance_before < amount:
            raise InsufficientFunds(f"balance {balance_before} below investment {amount}")

        units = self.estimator.estimate(self.pricing, instrument, amount)
        if units <= 0:
            raise InsufficientFunds(f"{amount} buys no units of {instrument}")

        now = self.clock.now()
        self.ledger.approve(asset, self.account, self.pricing.account, amount)
        delivered = self.pricing.purchase(self.account, instrument, units, asset, amount, now)
        cost_paid = balance_before - self.ledger.balance_of(asset, self.account)
        self.ledger.approve(asset, self.account, self.pricing.account, 0)
        if delivered < units:
            raise UnderDelivered(f"horse {horse_id}: received {delivered} < {units}")

        position = position.accumulate(delivered, cost_paid, now)
        if horse_id not in self._positions:
            self._portfolio.append(horse_id)
        self._positions[horse_id] = position

        self.event_log.emit(
            "InvestmentExecuted",
            ts=now,
            emitter=self.emitter,
            horse_id=horse_id,
            instrument=instrument,
            units=delivered,
            cost_paid=cost_paid,
            position_units=position.units,
        )
        logger.info(
            "invested %s %s in horse %d: units=%d position_cost=%s",
            format_units(cost_paid, self.config.investment_decimals), asset, horse_id,
            delivered, format_units(position.cost_basis, self.config.investment_decimals),
        )
        return InvestmentResult(
            horse_id=horse_id,
            instrument=instrument,
            units=delivered,
            cost_paid=cost_paid,
            position=position,
        )

    # -------------------------------------------------------------------------
    # Чтение
    # -------------------------------------------------------------------------

    def get_position(self, horse_id: int) -> Optional[HorsePosition]:
        return self._positions.get(horse_id)

    def get_oracle_data(self, horse_id: int) -> Optional[OracleReading]:
        return self._oracle_cache.get(horse_id)

    def get_portfolio_size(self) -> int:
        return len(self._portfolio)

    def get_portfolio_horses(self) -> List[int]:
        """Horse ids в порядке первой инвестиции."""
        return list(self._portfolio)

    def get_portfolio_value(self) -> PortfolioValue:
        positions = self._positions.values()
        return PortfolioValue(
            total_units=sum(p.units for p in positions),
            total_invested=sum(p.cost_basis for p in positions),
        )

    def position_drift_bps(self, horse_id: int) -> int:
        """
        Отклонение текущей стоимости позиции от cost_basis, в bps.

        Стоимость — units по текущей цене unit на curve (без fee).
        """
        position = self._positions.get(horse_id)
        if position is None or position.cost_basis == 0:
            return 0
        price = self.pricing.current_unit_price(position.instrument)
        value = price * position.units // self.config.share_unit
        return (value - position.cost_basis) * BPS_DENOMINATOR // position.cost_basis

    def needs_rebalance(self, horse_id: int) -> bool:
        return abs(self.position_drift_bps(horse_id)) >= self.strategy.rebalance_threshold_bps

    # -------------------------------------------------------------------------
    # Journaled
    # -------------------------------------------------------------------------

    def snapshot(self) -> tuple:
        return self.strategy, dict(self._oracle_cache), dict(self._positions), list(self._portfolio)

    def restore(self, state: tuple) -> None:
        strategy, oracle_cache, positions, portfolio = state
        self.strategy = strategy
        self._oracle_cache = dict(oracle_cache)
        self._positions = dict(positions)
        self._portfolio = list(portfolio)

    # -------------------------------------------------------------------------

    def _participants(self) -> tuple:
        return (self, self.access, self.event_log, self.ledger, self.pricing, self.registry)

    def _emit_strategy(self) -> None:
        s = self.strategy
        self.event_log.emit(
            "StrategyUpdated",
            ts=self.clock.now(),
            emitter=self.emitter,
            target_portfolio_size=s.target_portfolio_size,
            max_position_size=s.max_position_size,
            min_oracle_score=s.min_oracle_score,
            rebalance_threshold_bps=s.rebalance_threshold_bps,
            is_active=s.is_active,
        )
