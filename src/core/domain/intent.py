"""
DepositIntent — модель cross-chain deposit intent

Одноразовый escrow депозита с дедлайном. Доверенный executor (bridge или
оператор) покупает units от имени пользователя после прихода средств, либо
intent отменяется с полным возвратом.

EXECUTED и CANCELLED разделены (вместо одного флага completed) для аудита.
"""

from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field, model_validator


# =============================================================================
# ENUMS
# =============================================================================


class IntentStatus(str, Enum):
    """CREATED → {EXECUTED | CANCELLED}, оба перехода односторонние."""

    CREATED = "CREATED"
    EXECUTED = "EXECUTED"
    CANCELLED = "CANCELLED"


# =============================================================================
# MODEL
# =============================================================================


class DepositIntent(BaseModel):
    """
    Deposit intent, ключ intent_id.

    Инварианты:
    - deadline > created_at
    - units_received / cost_paid / refund заполнены только для EXECUTED;
      пока purchase не завершён, EXECUTED intent их ещё не содержит
    """

    intent_id: str = Field(..., pattern="^0x[0-9a-f]{64}$", description="Идентификатор intent")
    user: str = Field(..., min_length=1, description="Депозитор")
    target_id: int = Field(..., ge=0, description="Внешний идентификатор (horse id)")
    instrument: str = Field(..., min_length=1, description="Share token, разрешённый через registry")
    deposit_amount: int = Field(..., gt=0, description="Escrow в единицах deposit asset")
    min_units: int = Field(..., gt=0, description="Минимум units (slippage floor)")
    deadline: int = Field(..., gt=0, description="Дедлайн исполнения (unix sec)")
    created_at: int = Field(..., ge=0, description="Время создания (unix sec)")
    status: IntentStatus = Field(default=IntentStatus.CREATED)

    # Результат исполнения
    units_received: Optional[int] = Field(default=None, ge=0)
    cost_paid: Optional[int] = Field(default=None, ge=0)
    refund: Optional[int] = Field(default=None, ge=0)

    model_config = {"frozen": True}

    @model_validator(mode="after")
    def validate_outcome_fields(self) -> "DepositIntent":
        if self.deadline <= self.created_at:
            raise ValueError(f"deadline {self.deadline} must be after created_at {self.created_at}")
        outcome = (self.units_received, self.cost_paid, self.refund)
        if self.status == IntentStatus.EXECUTED:
            if all(v is None for v in outcome):
                return self
            if any(v is None for v in outcome):
                raise ValueError("EXECUTED intent outcome must be complete")
            if self.cost_paid + self.refund != self.deposit_amount:
                raise ValueError(
                    f"cost_paid {self.cost_paid} + refund {self.refund} != deposit {self.deposit_amount}"
                )
        elif any(v is not None for v in outcome):
            raise ValueError(f"{self.status.value} intent cannot carry execution outcome")
        return self

    def evolve(self, **changes: Any) -> "DepositIntent":
        """Новый экземпляр с изменениями (с повторной валидацией)."""
        return type(self).model_validate({**self.model_dump(), **changes})

    @property
    def completed(self) -> bool:
        return self.status != IntentStatus.CREATED

    def is_expired(self, now: int) -> bool:
        return now > self.deadline

    def to_contract(self) -> dict[str, Any]:
        """JSON-совместимое представление (схема deposit_intent)."""
        data = self.model_dump(mode="json")
        data["completed"] = self.completed
        return data
