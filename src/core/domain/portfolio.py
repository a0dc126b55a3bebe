"""
Portfolio — модели позиций и oracle данных portfolio agent

OracleReading: последняя оценка performance horse от oracle (0-100).
HorsePosition: накопленная позиция агента в share токене horse.

Immutable Pydantic модели: каждая инвестиция создаёт новую позицию
через accumulate.
"""

from typing import Final

from pydantic import BaseModel, Field


MAX_ORACLE_SCORE: Final[int] = 100


# =============================================================================
# ORACLE
# =============================================================================


class OracleReading(BaseModel):
    """Оценка horse от oracle, ключ horse_id."""

    horse_id: int = Field(..., ge=0, description="Внешний идентификатор horse")
    performance_score: int = Field(..., ge=0, le=MAX_ORACLE_SCORE, description="Оценка 0-100")
    timestamp: int = Field(..., ge=0, description="Время записи (unix sec)")
    is_valid: bool = Field(default=True, description="Oracle подтвердил оценку")

    model_config = {"frozen": True}

    def is_stale(self, now: int, max_age_sec: int) -> bool:
        """Оценка старше max_age_sec."""
        return now > self.timestamp + max_age_sec


# =============================================================================
# POSITION
# =============================================================================


class HorsePosition(BaseModel):
    """
    Позиция агента, ключ horse_id.

    cost_basis — сумма фактически списанных средств по всем покупкам.
    """

    horse_id: int = Field(..., ge=0, description="Внешний идентификатор horse")
    instrument: str = Field(..., min_length=1, description="Share token horse")
    units: int = Field(default=0, ge=0, description="Накопленные units")
    cost_basis: int = Field(default=0, ge=0, description="Вложено в единицах investment asset")
    last_update: int = Field(default=0, ge=0, description="Время последней покупки (unix sec)")

    model_config = {"frozen": True}

    def accumulate(self, units: int, cost: int, now: int) -> "HorsePosition":
        """Новая позиция с добавленной покупкой."""
        return HorsePosition(
            horse_id=self.horse_id,
            instrument=self.instrument,
            units=self.units + units,
            cost_basis=self.cost_basis + cost,
            last_update=now,
        )
