"""
Общие fixtures для тестов escrow-компонентов.

ScriptedPricing — pricing source с явно задаваемыми quotes для сценариев,
где важны конкретные числа (например, quote 380 за 500 units).
"""

from typing import Callable, Dict, List, Optional, Set, Tuple

import pytest

from src.adapters import HorseRegistry, InMemoryLedger, ManualClock
from src.core.errors import PurchaseFailed
from src.intents import IntentConfig, IntentManager
from src.sessions import SessionConfig, SessionManager


START_TS = 1_700_000_000

OWNER = "owner"
RELAYER = "relayer"
EXECUTOR = "lifi-diamond"
ALICE = "alice"
BOB = "bob"

HORSE_ID = 1
HORSE = "HORSE-1"
GRADUATED_HORSE_ID = 2
GRADUATED_HORSE = "HORSE-2"

INITIAL_BALANCE = 1_000_000


class ScriptedPricing:
    """Pricing source с задаваемыми quotes и поведением purchase."""

    def __init__(self, ledger: InMemoryLedger, account: str = "scripted-curve"):
        self.ledger = ledger
        self.account = account
        self.quotes: Dict[Tuple[str, int], Tuple[int, int]] = {}
        self.terminal: Set[str] = set()
        self.unit_prices: Dict[str, int] = {}

        # Переопределения для сценариев расхождения quote / исполнения
        self.charge_override: Optional[int] = None
        self.deliver_override: Optional[int] = None
        self.on_purchase: Optional[Callable[[], None]] = None

        self.purchases: List[dict] = []

    def set_quote(self, instrument: str, quantity: int, base: int, fee: int = 0) -> None:
        self.quotes[(instrument, quantity)] = (base, fee)

    def quote_cost(self, instrument: str, quantity: int) -> Tuple[int, int]:
        try:
            return self.quotes[(instrument, quantity)]
        except KeyError:
            raise PurchaseFailed(f"no quote for {instrument} x{quantity}") from None

    def is_terminal(self, instrument: str) -> bool:
        return instrument in self.terminal

    def current_unit_price(self, instrument: str) -> int:
        return self.unit_prices.get(instrument, 1)

    def purchase(self, buyer, instrument, quantity, payment_asset, max_cost, deadline) -> int:
        if self.on_purchase is not None:
            self.on_purchase()
        base, fee = self.quote_cost(instrument, quantity)
        total = base + fee if self.charge_override is None else self.charge_override
        if total > max_cost:
            raise PurchaseFailed(f"cost {total} exceeds max_cost {max_cost}")
        self.ledger.transfer_from(payment_asset, buyer, self.account, total)
        delivered = quantity if self.deliver_override is None else self.deliver_override
        self.ledger.mint(instrument, buyer, delivered)
        self.purchases.append(
            {"buyer": buyer, "instrument": instrument, "quantity": quantity, "cost": total}
        )
        return delivered


# =============================================================================
# FIXTURES
# =============================================================================


@pytest.fixture
def clock():
    return ManualClock(START_TS)


@pytest.fixture
def ledger():
    ledger = InMemoryLedger()
    for user in (ALICE, BOB):
        ledger.mint("ETH", user, INITIAL_BALANCE)
        ledger.mint("USDT", user, INITIAL_BALANCE)
    return ledger


@pytest.fixture
def registry():
    registry = HorseRegistry()
    registry.register(HORSE_ID, HORSE)
    registry.register(GRADUATED_HORSE_ID, GRADUATED_HORSE)
    return registry


@pytest.fixture
def pricing(ledger):
    pricing = ScriptedPricing(ledger)
    pricing.terminal.add(GRADUATED_HORSE)
    return pricing


@pytest.fixture
def session_config():
    return SessionConfig(
        session_duration_sec=3600,
        grace_period_sec=300,
        min_session_amount=1,
        accepted_assets=frozenset({"ETH", "USDT"}),
    )


@pytest.fixture
def session_manager(pricing, registry, ledger, clock, session_config):
    return SessionManager(
        pricing=pricing,
        registry=registry,
        ledger=ledger,
        clock=clock,
        owner=OWNER,
        relayer=RELAYER,
        config=session_config,
    )


@pytest.fixture
def intent_config():
    return IntentConfig(min_deposit_amount=1)


@pytest.fixture
def intent_manager(pricing, registry, ledger, clock, intent_config):
    return IntentManager(
        pricing=pricing,
        registry=registry,
        ledger=ledger,
        clock=clock,
        owner=OWNER,
        executor=EXECUTOR,
        config=intent_config,
    )
