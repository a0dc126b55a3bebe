"""
TradingSession / OffChainPurchaseRecord — модели gasless trading сессии

Сессия: escrow пользователя под конкретный инструмент с ограниченным
временем жизни. Relayer записывает off-chain fills в OffChainPurchaseRecord,
затем владелец сессии делает settlement одной on-chain операцией или отменяет
сессию с полным возвратом.

Immutable Pydantic модели: любое изменение создаёт новый провалидированный
экземпляр (evolve / accumulate).
"""

from enum import Enum
from typing import Any

from pydantic import BaseModel, Field, model_validator


# =============================================================================
# ENUMS
# =============================================================================


class SessionStatus(str, Enum):
    """
    Состояние сессии.

    CLOSED → OPEN → {SETTLED | CANCELLED}
    CLOSED не хранится: отсутствие записи означает CLOSED.
    """

    CLOSED = "CLOSED"
    OPEN = "OPEN"
    SETTLED = "SETTLED"
    CANCELLED = "CANCELLED"


class LateSettlementPolicy(str, Enum):
    """Поведение settle после expiry + grace period."""

    REJECT = "REJECT"
    ALLOW = "ALLOW"
    AUTO_CANCEL = "AUTO_CANCEL"


# =============================================================================
# MODELS
# =============================================================================


class TradingSession(BaseModel):
    """
    Time-boxed escrow сессия, ключ (user, instrument).

    Инварианты:
    - locked_amount == 0 в терминальных состояниях
    - expiry > opened_at
    """

    user: str = Field(..., min_length=1, description="Владелец сессии")
    instrument: str = Field(..., min_length=1, description="Share token инструмента")
    payment_asset: str = Field(..., min_length=1, description="Актив escrow (native или token)")
    locked_amount: int = Field(..., ge=0, description="Escrow в минимальных единицах")
    opened_at: int = Field(..., ge=0, description="Время открытия (unix sec)")
    expiry: int = Field(..., gt=0, description="Окончание сессии для новых fills (unix sec)")
    status: SessionStatus = Field(default=SessionStatus.OPEN, description="Состояние сессии")

    model_config = {"frozen": True}

    @model_validator(mode="after")
    def validate_terminal_escrow(self) -> "TradingSession":
        """Терминальная сессия не может удерживать средства."""
        if self.status in (SessionStatus.SETTLED, SessionStatus.CANCELLED) and self.locked_amount != 0:
            raise ValueError(
                f"terminal session {self.status.value} still locks {self.locked_amount}"
            )
        if self.status == SessionStatus.CLOSED:
            raise ValueError("CLOSED sessions are not materialized")
        if self.expiry <= self.opened_at:
            raise ValueError(f"expiry {self.expiry} must be after opened_at {self.opened_at}")
        return self

    def evolve(self, **changes: Any) -> "TradingSession":
        """Новый экземпляр с изменениями (с повторной валидацией)."""
        return type(self).model_validate({**self.model_dump(), **changes})

    @property
    def active(self) -> bool:
        return self.status == SessionStatus.OPEN

    def is_expired(self, now: int) -> bool:
        """Номинальное истечение сессии (без учёта grace period)."""
        return now > self.expiry

    def is_stale(self, now: int, grace_period_sec: int) -> bool:
        """Истёк ли и grace period."""
        return now > self.expiry + grace_period_sec

    def to_contract(self) -> dict[str, Any]:
        """JSON-совместимое представление (схема trading_session)."""
        data = self.model_dump(mode="json")
        data["active"] = self.active
        return data


class OffChainPurchaseRecord(BaseModel):
    """
    Накопленные off-chain fills, ключ (user, instrument).

    nonce — следующий ожидаемый nonce (0, 1, 2, ...).
    """

    amount: int = Field(default=0, ge=0, description="Накопленное количество units")
    cost_basis: int = Field(default=0, ge=0, description="Накопленная стоимость")
    nonce: int = Field(default=0, ge=0, description="Следующий ожидаемый nonce")

    model_config = {"frozen": True}

    def accumulate(self, amount: int, cost_basis: int) -> "OffChainPurchaseRecord":
        """Новая запись с добавленным fill и продвинутым nonce."""
        return OffChainPurchaseRecord(
            amount=self.amount + amount,
            cost_basis=self.cost_basis + cost_basis,
            nonce=self.nonce + 1,
        )
