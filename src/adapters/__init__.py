"""
In-memory reference collaborators.

Эталонные реализации внешних систем (bonding curve, factory, ledger, clock)
для тестов и локальной симуляции escrow-компонентов.
"""

from .bonding_curve import GRADUATION_THRESHOLD_UNITS, CurveParams, LinearBondingCurve
from .clock import ManualClock, SystemClock
from .ledger import InMemoryLedger
from .registry import HorseContracts, HorseRegistry

__all__ = [
    "CurveParams",
    "GRADUATION_THRESHOLD_UNITS",
    "LinearBondingCurve",
    "InMemoryLedger",
    "HorseContracts",
    "HorseRegistry",
    "ManualClock",
    "SystemClock",
]
