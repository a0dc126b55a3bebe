"""
HorseRegistry — эталонная factory

horse id → (share token, vault), как getHorseContracts во внешней factory.
"""

from dataclasses import dataclass
from typing import Dict

from src.core.errors import UnknownTarget


@dataclass(frozen=True)
class HorseContracts:
    share_token: str
    vault: str


class HorseRegistry:
    """Registry: horse id → share token."""

    def __init__(self):
        self._horses: Dict[int, HorseContracts] = {}

    def register(self, horse_id: int, share_token: str, vault: str = "") -> HorseContracts:
        if horse_id in self._horses:
            raise ValueError(f"Horse already registered: {horse_id}")
        if not share_token:
            raise ValueError("share_token must be non-empty")
        contracts = HorseContracts(share_token=share_token, vault=vault or f"vault-{horse_id}")
        self._horses[horse_id] = contracts
        return contracts

    def horse_contracts(self, horse_id: int) -> HorseContracts:
        try:
            return self._horses[horse_id]
        except KeyError:
            raise UnknownTarget(f"Horse not registered: {horse_id}") from None

    # Registry

    def is_registered(self, target_id: int) -> bool:
        return target_id in self._horses

    def resolve(self, target_id: int) -> str:
        return self.horse_contracts(target_id).share_token

    def is_instrument(self, instrument: str) -> bool:
        return any(c.share_token == instrument for c in self._horses.values())
