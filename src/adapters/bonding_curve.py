"""
LinearBondingCurve — эталонный pricing source

Линейная кривая на инструмент:
    price(s) = base_price + slope * s / unit
    cost(s, q) = ∫[s, s+q] price = base_price * q / unit + slope * q * (2s + q) / (2 * unit²)
    fee = cost * fee_bps / 10000

s — уже проданные units (минимальные единицы), unit — размер целого unit
(10**18 для share токенов). При sold >= graduation_threshold инструмент
graduated и покупки закрыты.

Математика реальной кривой принадлежит внешней системе; эта реализация
нужна для тестов и локальной симуляции.
"""

import logging
from dataclasses import dataclass, replace
from typing import Dict, Final, Tuple

from src.adapters.ledger import InMemoryLedger
from src.core.domain.units import BPS_DENOMINATOR, ONE_SHARE
from src.core.errors import PurchaseFailed
from src.core.ports import Clock


logger = logging.getLogger(__name__)


# 800M shares
GRADUATION_THRESHOLD_UNITS: Final[int] = 800_000_000 * ONE_SHARE


@dataclass(frozen=True)
class CurveParams:
    """Параметры кривой одного инструмента."""

    payment_asset: str
    base_price: int  # цена целого unit при s=0 (минимальные единицы payment asset)
    slope: int = 0  # прирост цены на каждый проданный целый unit
    fee_bps: int = 100
    unit: int = ONE_SHARE
    graduation_threshold: int = GRADUATION_THRESHOLD_UNITS


@dataclass(frozen=True)
class CurveState:
    params: CurveParams
    sold: int = 0

    @property
    def graduated(self) -> bool:
        return self.sold >= self.params.graduation_threshold


class LinearBondingCurve:
    """PricingSource на линейной кривой поверх InMemoryLedger."""

    def __init__(self, ledger: InMemoryLedger, clock: Clock, account: str = "bonding-curve"):
        self.ledger = ledger
        self.clock = clock
        self.account = account
        self._curves: Dict[str, CurveState] = {}

    def list_instrument(self, instrument: str, params: CurveParams) -> None:
        if instrument in self._curves:
            raise ValueError(f"Instrument already listed: {instrument}")
        if params.base_price <= 0:
            raise ValueError(f"base_price must be positive: {params.base_price}")
        self._curves[instrument] = CurveState(params=params)

    def shares_sold(self, instrument: str) -> int:
        return self._state(instrument).sold

    # -------------------------------------------------------------------------
    # PricingSource
    # -------------------------------------------------------------------------

    def quote_cost(self, instrument: str, quantity: int) -> Tuple[int, int]:
        state = self._state(instrument)
        if quantity <= 0:
            raise PurchaseFailed(f"quantity must be positive: {quantity}")
        p = state.params
        s = state.sold
        base = p.base_price * quantity // p.unit
        curve = p.slope * quantity * (2 * s + quantity) // (2 * p.unit * p.unit)
        cost = base + curve
        fee = cost * p.fee_bps // BPS_DENOMINATOR
        return cost, fee

    def is_terminal(self, instrument: str) -> bool:
        return self._state(instrument).graduated

    def current_unit_price(self, instrument: str) -> int:
        state = self._state(instrument)
        return state.params.base_price + state.params.slope * state.sold // state.params.unit

    def purchase(
        self,
        buyer: str,
        instrument: str,
        quantity: int,
        payment_asset: str,
        max_cost: int,
        deadline: int,
    ) -> int:
        """
        Raises:
            PurchaseFailed: graduated, дедлайн, чужой payment asset,
                превышение max_cost или graduation threshold
            TransferFailed: недостаточно allowance/баланса у buyer
        """
        state = self._state(instrument)
        p = state.params
        if state.graduated:
            raise PurchaseFailed(f"{instrument}: graduated")
        if self.clock.now() > deadline:
            raise PurchaseFailed(f"{instrument}: deadline {deadline} passed")
        if payment_asset != p.payment_asset:
            raise PurchaseFailed(f"{instrument}: priced in {p.payment_asset}, not {payment_asset}")
        if state.sold + quantity > p.graduation_threshold:
            raise PurchaseFailed(f"{instrument}: purchase exceeds graduation threshold")

        cost, fee = self.quote_cost(instrument, quantity)
        total = cost + fee
        if total > max_cost:
            raise PurchaseFailed(f"{instrument}: cost {total} exceeds max_cost {max_cost}")

        self.ledger.transfer_from(payment_asset, buyer, self.account, total)
        self._curves[instrument] = replace(state, sold=state.sold + quantity)
        self.ledger.mint(instrument, buyer, quantity)
        logger.debug("purchase %s x%d for %d by %s", instrument, quantity, total, buyer)
        return quantity

    # -------------------------------------------------------------------------
    # Journaled
    # -------------------------------------------------------------------------

    def snapshot(self) -> Dict[str, CurveState]:
        return dict(self._curves)

    def restore(self, state: Dict[str, CurveState]) -> None:
        self._curves = dict(state)

    # -------------------------------------------------------------------------

    def _state(self, instrument: str) -> CurveState:
        try:
            return self._curves[instrument]
        except KeyError:
            raise PurchaseFailed(f"Instrument not listed: {instrument}") from None

