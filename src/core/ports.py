"""
Ports — интерфейсы внешних систем

Escrow-компоненты не владеют этими системами и только вызывают их:
- PricingSource: bonding curve (quote, graduation, purchase)
- Registry: factory (horse id → share token)
- SettlementMedium: перевод стоимости (native, USDT, share токены)
- Clock: текущее время

Любое исключение из этих вызовов фатально для операции.
"""

from typing import Protocol, Tuple, runtime_checkable


class PricingSource(Protocol):
    """Внешняя bonding curve."""

    # Счёт, которому выдаётся allowance на оплату purchase
    account: str

    def quote_cost(self, instrument: str, quantity: int) -> Tuple[int, int]:
        """Стоимость покупки quantity units: (base_cost, fee)."""
        ...

    def is_terminal(self, instrument: str) -> bool:
        """Инструмент graduated — покупки закрыты."""
        ...

    def current_unit_price(self, instrument: str) -> int:
        """Текущая цена одного целого unit (10**18 минимальных единиц)."""
        ...

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
        Покупка quantity units для buyer.

        Списывает стоимость с buyer в payment_asset (не больше max_cost),
        зачисляет units на buyer. Возвращает полученное количество units.
        """
        ...


class Registry(Protocol):
    """Внешняя factory: внешний идентификатор → торгуемый инструмент."""

    def is_registered(self, target_id: int) -> bool:
        ...

    def resolve(self, target_id: int) -> str:
        ...

    def is_instrument(self, instrument: str) -> bool:
        ...


class SettlementMedium(Protocol):
    """Мультиактивный перевод стоимости. Сбой перевода — TransferFailed."""

    def balance_of(self, asset: str, account: str) -> int:
        ...

    def transfer(self, asset: str, sender: str, recipient: str, amount: int) -> None:
        ...

    def approve(self, asset: str, owner: str, spender: str, amount: int) -> None:
        """Разрешение spender списать до amount с owner."""
        ...

    def transfer_from(self, asset: str, owner: str, recipient: str, amount: int) -> None:
        """Перевод от owner по allowance, выданному recipient'у."""
        ...


class Clock(Protocol):
    def now(self) -> int:
        """Unix time в секундах."""
        ...


@runtime_checkable
class Journaled(Protocol):
    """Участник атомарной операции: снапшот и откат состояния."""

    def snapshot(self) -> object:
        ...

    def restore(self, state: object) -> None:
        ...
