"""
InMemoryLedger — мультиактивный settlement medium

Балансы и allowances для native, USDT и share токенов в одной книге.
Используется как эталонная реализация SettlementMedium для тестов и
локальной симуляции. Поддерживает snapshot/restore (Journaled).
"""

import logging
from collections import defaultdict
from typing import Dict, Tuple

from src.core.domain.units import validate_amount
from src.core.errors import TransferFailed


logger = logging.getLogger(__name__)


class InMemoryLedger:
    """Балансы (asset, account) → int и allowances (asset, owner, spender) → int."""

    def __init__(self):
        self._balances: Dict[Tuple[str, str], int] = defaultdict(int)
        self._allowances: Dict[Tuple[str, str, str], int] = defaultdict(int)

    # -------------------------------------------------------------------------
    # Чтение
    # -------------------------------------------------------------------------

    def balance_of(self, asset: str, account: str) -> int:
        return self._balances.get((asset, account), 0)

    def allowance(self, asset: str, owner: str, spender: str) -> int:
        return self._allowances.get((asset, owner, spender), 0)

    def total_supply(self, asset: str) -> int:
        return sum(v for (a, _), v in self._balances.items() if a == asset)

    # -------------------------------------------------------------------------
    # Изменение
    # -------------------------------------------------------------------------

    def mint(self, asset: str, account: str, amount: int) -> None:
        self._check_amount(amount)
        self._balances[(asset, account)] += amount

    def burn(self, asset: str, account: str, amount: int) -> None:
        self._check_amount(amount)
        self._debit(asset, account, amount)

    def approve(self, asset: str, owner: str, spender: str, amount: int) -> None:
        self._check_amount(amount)
        self._allowances[(asset, owner, spender)] = amount

    def transfer(self, asset: str, sender: str, recipient: str, amount: int) -> None:
        """
        Raises:
            TransferFailed: недостаточно средств или некорректная сумма
        """
        self._check_amount(amount)
        self._debit(asset, sender, amount)
        self._balances[(asset, recipient)] += amount
        logger.debug("transfer %s %d: %s → %s", asset, amount, sender, recipient)

    def transfer_from(self, asset: str, owner: str, recipient: str, amount: int) -> None:
        """
        Перевод по allowance (owner → recipient), recipient — spender.

        Raises:
            TransferFailed: недостаточно allowance или средств
        """
        self._check_amount(amount)
        key = (asset, owner, recipient)
        allowed = self._allowances.get(key, 0)
        if allowed < amount:
            raise TransferFailed(
                f"{asset}: allowance {allowed} of {owner} for {recipient} < {amount}"
            )
        self._debit(asset, owner, amount)
        self._allowances[key] = allowed - amount
        self._balances[(asset, recipient)] += amount
        logger.debug("transfer_from %s %d: %s → %s", asset, amount, owner, recipient)

    # -------------------------------------------------------------------------
    # Journaled
    # -------------------------------------------------------------------------

    def snapshot(self) -> tuple:
        return dict(self._balances), dict(self._allowances)

    def restore(self, state: tuple) -> None:
        balances, allowances = state
        self._balances = defaultdict(int, balances)
        self._allowances = defaultdict(int, allowances)

    # -------------------------------------------------------------------------

    def _debit(self, asset: str, account: str, amount: int) -> None:
        balance = self._balances.get((asset, account), 0)
        if balance < amount:
            raise TransferFailed(f"{asset}: balance {balance} of {account} < {amount}")
        self._balances[(asset, account)] = balance - amount

    @staticmethod
    def _check_amount(amount: int) -> None:
        try:
            validate_amount(amount)
        except (TypeError, ValueError) as e:
            raise TransferFailed(f"invalid transfer amount: {e}") from e
