"""
Unit estimators — оценка количества units на бюджет

Заменяемая стратегия, не несущий инвариант: результат используется только
для подсказки min_units перед create_intent. Реальная граница исполнения —
quote на момент execute_intent.

- QuoteBisectionEstimator: точный максимум q с quote(q) <= budget
  (экспоненциальный поиск верхней границы + бисекция)
- SpotPriceEstimator: линейное приближение по текущей цене unit,
  делится пополам пока quote превышает бюджет
"""

import logging
from dataclasses import dataclass
from typing import Protocol

from src.core.domain.units import ONE_SHARE
from src.core.errors import ExternalCallError
from src.core.ports import PricingSource


logger = logging.getLogger(__name__)


class UnitEstimator(Protocol):
    def estimate(self, pricing: PricingSource, instrument: str, budget: int) -> int:
        """Количество units (минимальные единицы), покупаемое на budget."""
        ...


def _total_quote(pricing: PricingSource, instrument: str, quantity: int) -> int:
    base, fee = pricing.quote_cost(instrument, quantity)
    return base + fee


def _affordable(pricing: PricingSource, instrument: str, quantity: int, budget: int) -> bool:
    # Quote, отклонённый pricing source (например, сверх graduation), = недоступно
    try:
        return _total_quote(pricing, instrument, quantity) <= budget
    except ExternalCallError as e:
        logger.debug("quote %s x%d rejected: %s", instrument, quantity, e)
        return False


@dataclass(frozen=True)
class QuoteBisectionEstimator:
    """Максимальное q с quote(q) <= budget."""

    max_doublings: int = 256

    def estimate(self, pricing: PricingSource, instrument: str, budget: int) -> int:
        if budget <= 0 or not _affordable(pricing, instrument, 1, budget):
            return 0

        # Экспоненциальный поиск: low доступно, high — нет
        low, high = 1, 2
        for _ in range(self.max_doublings):
            if not _affordable(pricing, instrument, high, budget):
                break
            low, high = high, high * 2
        else:
            return low

        while high - low > 1:
            mid = (low + high) // 2
            if _affordable(pricing, instrument, mid, budget):
                low = mid
            else:
                high = mid
        return low


@dataclass(frozen=True)
class SpotPriceEstimator:
    """budget * unit / spot_price, пополам пока quote превышает budget."""

    unit: int = ONE_SHARE
    max_halvings: int = 128

    def estimate(self, pricing: PricingSource, instrument: str, budget: int) -> int:
        price = pricing.current_unit_price(instrument)
        if budget <= 0 or price <= 0:
            return 0
        quantity = budget * self.unit // price
        for _ in range(self.max_halvings):
            if quantity == 0 or _affordable(pricing, instrument, quantity, budget):
                return quantity
            quantity //= 2
        return 0
