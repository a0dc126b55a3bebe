"""Тесты для Session Manager.

Coverage:
- open_session: валидации, escrow native/token, одна OPEN сессия на ключ
- record_off_chain_fill: relayer-only, nonce ordering, grace period, overdrawn
- settle: slippage, refund, effects-before-interactions, откат при сбое
- cancel: полный возврат
- LateSettlementPolicy
- Reentrancy
"""

import pytest

from src.core.contracts import validate_trading_session
from src.core.domain import LateSettlementPolicy, SessionStatus
from src.core.errors import (
    AmountMismatch,
    BadNonce,
    BelowMinimum,
    InvalidAmount,
    InvalidInstrument,
    NoActiveSession,
    NothingRecorded,
    Overdrawn,
    PurchaseFailed,
    ReentrantCall,
    SessionAlreadyActive,
    SessionExpired,
    SessionStale,
    SlippageExceeded,
    TerminalInstrument,
    TransferFailed,
    Unauthorized,
    UnderDelivered,
    UnsupportedAsset,
)
from src.core.events import EventLog
from src.sessions import SessionConfig, SessionManager
from tests.conftest import (
    ALICE,
    BOB,
    GRADUATED_HORSE,
    HORSE,
    INITIAL_BALANCE,
    OWNER,
    RELAYER,
    START_TS,
)


def _open(sm, user=ALICE, amount=1000):
    return sm.open_session(user, HORSE, "ETH", amount, value=amount)


class TestOpenSession:
    """Тесты open_session."""

    def test_open_native_session(self, session_manager, ledger):
        """Native escrow: value == amount, средства на счёте менеджера."""
        session = _open(session_manager)

        assert session.active
        assert session.locked_amount == 1000
        assert session.opened_at == START_TS
        assert session.expiry == START_TS + 3600
        assert ledger.balance_of("ETH", ALICE) == INITIAL_BALANCE - 1000
        assert ledger.balance_of("ETH", "session-manager") == 1000
        assert session_manager.next_nonce(ALICE, HORSE) == 0
        assert session_manager.event_log.last("SessionOpened").payload["locked_amount"] == 1000

    def test_open_token_session_via_allowance(self, session_manager, ledger):
        """Token escrow: value == 0, перевод через allowance."""
        ledger.approve("USDT", ALICE, "session-manager", 500)

        session = session_manager.open_session(ALICE, HORSE, "USDT", 500)

        assert session.payment_asset == "USDT"
        assert ledger.balance_of("USDT", "session-manager") == 500
        assert ledger.allowance("USDT", ALICE, "session-manager") == 0

    def test_token_session_without_allowance_rolls_back(self, session_manager, ledger):
        """Сбой transfer_from откатывает создание сессии."""
        with pytest.raises(TransferFailed):
            session_manager.open_session(ALICE, HORSE, "USDT", 500)

        assert session_manager.get_session(ALICE, HORSE) is None
        assert session_manager.get_purchase_record(ALICE, HORSE) is None
        assert len(session_manager.event_log) == 0

    def test_unknown_instrument(self, session_manager):
        with pytest.raises(InvalidInstrument):
            session_manager.open_session(ALICE, "HORSE-99", "ETH", 1000, value=1000)

    def test_empty_instrument(self, session_manager):
        with pytest.raises(InvalidInstrument):
            session_manager.open_session(ALICE, "", "ETH", 1000, value=1000)

    def test_graduated_instrument(self, session_manager):
        with pytest.raises(TerminalInstrument):
            session_manager.open_session(ALICE, GRADUATED_HORSE, "ETH", 1000, value=1000)

    def test_unsupported_asset(self, session_manager):
        with pytest.raises(UnsupportedAsset):
            session_manager.open_session(ALICE, HORSE, "DAI", 1000)

    def test_below_minimum(self, pricing, registry, ledger, clock):
        sm = SessionManager(
            pricing, registry, ledger, clock, OWNER, RELAYER,
            config=SessionConfig(min_session_amount=100),
        )

        with pytest.raises(BelowMinimum):
            sm.open_session(ALICE, HORSE, "ETH", 99, value=99)

        assert sm.open_session(ALICE, HORSE, "ETH", 100, value=100).active

    def test_native_value_mismatch(self, session_manager, ledger):
        with pytest.raises(AmountMismatch):
            session_manager.open_session(ALICE, HORSE, "ETH", 1000, value=999)

        assert ledger.balance_of("ETH", ALICE) == INITIAL_BALANCE

    def test_token_with_native_value(self, session_manager, ledger):
        ledger.approve("USDT", ALICE, "session-manager", 500)

        with pytest.raises(AmountMismatch):
            session_manager.open_session(ALICE, HORSE, "USDT", 500, value=500)

    def test_single_active_session_per_pair(self, session_manager):
        """Вторая OPEN сессия на (user, instrument) запрещена."""
        _open(session_manager)

        with pytest.raises(SessionAlreadyActive):
            _open(session_manager)

    def test_other_user_independent(self, session_manager):
        _open(session_manager, ALICE)
        session = _open(session_manager, BOB)

        assert session.user == BOB
        assert len(session_manager.active_sessions()) == 2

    def test_reopen_after_cancel_starts_fresh(self, session_manager, clock):
        """После cancel новый open создаёт новую сессию с nonce 0."""
        _open(session_manager)
        session_manager.record_off_chain_fill(RELAYER, ALICE, HORSE, 10, 5, 0)
        session_manager.cancel(ALICE, HORSE)

        clock.advance(60)
        session = _open(session_manager, amount=2000)

        assert session.locked_amount == 2000
        assert session.opened_at == START_TS + 60
        assert session_manager.next_nonce(ALICE, HORSE) == 0


class TestRecordOffChainFill:
    """Тесты record_off_chain_fill."""

    def test_relayer_records_fill(self, session_manager):
        _open(session_manager)

        record = session_manager.record_off_chain_fill(RELAYER, ALICE, HORSE, 500, 400, 0)

        assert record.amount == 500
        assert record.cost_basis == 400
        assert record.nonce == 1

    def test_non_relayer_rejected(self, session_manager):
        _open(session_manager)

        for caller in (ALICE, OWNER, BOB):
            with pytest.raises(Unauthorized):
                session_manager.record_off_chain_fill(caller, ALICE, HORSE, 500, 400, 0)

        assert session_manager.next_nonce(ALICE, HORSE) == 0

    def test_no_active_session(self, session_manager):
        with pytest.raises(NoActiveSession):
            session_manager.record_off_chain_fill(RELAYER, ALICE, HORSE, 500, 400, 0)

    def test_nonce_sequence(self, session_manager):
        """Принимается ровно 0, 1, 2, ... без пропусков и повторов."""
        _open(session_manager)

        for nonce in range(5):
            session_manager.record_off_chain_fill(RELAYER, ALICE, HORSE, 10, 10, nonce)

        record = session_manager.get_purchase_record(ALICE, HORSE)
        assert record.nonce == 5
        assert record.amount == 50
        assert record.cost_basis == 50

    def test_out_of_order_nonce_rejected(self, session_manager):
        """nonce=2 при ожидаемом 0 отклоняется, запись не меняется."""
        _open(session_manager)
        events_before = len(session_manager.event_log)

        with pytest.raises(BadNonce):
            session_manager.record_off_chain_fill(RELAYER, ALICE, HORSE, 500, 400, 2)

        record = session_manager.get_purchase_record(ALICE, HORSE)
        assert record.amount == 0
        assert record.cost_basis == 0
        assert record.nonce == 0
        assert len(session_manager.event_log) == events_before

    def test_replayed_nonce_rejected(self, session_manager):
        _open(session_manager)
        session_manager.record_off_chain_fill(RELAYER, ALICE, HORSE, 10, 10, 0)
        session_manager.record_off_chain_fill(RELAYER, ALICE, HORSE, 10, 10, 1)

        with pytest.raises(BadNonce):
            session_manager.record_off_chain_fill(RELAYER, ALICE, HORSE, 10, 10, 1)

        assert session_manager.get_purchase_record(ALICE, HORSE).amount == 20

    def test_fill_within_grace_period(self, session_manager, clock):
        _open(session_manager)
        clock.advance(3600 + 300)

        record = session_manager.record_off_chain_fill(RELAYER, ALICE, HORSE, 10, 10, 0)

        assert record.nonce == 1

    def test_fill_after_grace_period(self, session_manager, clock):
        _open(session_manager)
        clock.advance(3600 + 301)

        with pytest.raises(SessionExpired):
            session_manager.record_off_chain_fill(RELAYER, ALICE, HORSE, 10, 10, 0)

    def test_overdrawn(self, session_manager):
        """Накопленный cost_basis не может превышать locked_amount."""
        _open(session_manager, amount=1000)
        session_manager.record_off_chain_fill(RELAYER, ALICE, HORSE, 500, 600, 0)

        with pytest.raises(Overdrawn):
            session_manager.record_off_chain_fill(RELAYER, ALICE, HORSE, 500, 401, 1)

        session_manager.record_off_chain_fill(RELAYER, ALICE, HORSE, 500, 400, 1)
        assert session_manager.get_purchase_record(ALICE, HORSE).cost_basis == 1000

    def test_zero_amount_rejected(self, session_manager):
        _open(session_manager)

        with pytest.raises(InvalidAmount):
            session_manager.record_off_chain_fill(RELAYER, ALICE, HORSE, 0, 0, 0)


class TestSettle:
    """Тесты settle."""

    def test_settle_refunds_unspent_escrow(self, session_manager, pricing, ledger):
        """Locked 1000, fill 500 @ 400, текущий quote 380 → refund 620."""
        _open(session_manager, amount=1000)
        session_manager.record_off_chain_fill(RELAYER, ALICE, HORSE, 500, 400, 0)
        pricing.set_quote(HORSE, 500, base=370, fee=10)

        result = session_manager.settle(ALICE, HORSE)

        assert result.refund == 620
        assert result.cost_paid == 380
        assert result.units_purchased == 500
        assert result.refund + result.cost_paid == result.locked_amount
        assert not result.auto_cancelled
        assert result.transition.new_state == SessionStatus.SETTLED

        session = session_manager.get_session(ALICE, HORSE)
        assert not session.active
        assert session.locked_amount == 0
        assert session_manager.get_purchase_record(ALICE, HORSE) is None

        assert ledger.balance_of(HORSE, ALICE) == 500
        assert ledger.balance_of("ETH", ALICE) == INITIAL_BALANCE - 380
        assert ledger.balance_of("ETH", "session-manager") == 0
        assert ledger.allowance("ETH", "session-manager", pricing.account) == 0

    def test_nothing_recorded(self, session_manager):
        _open(session_manager)

        with pytest.raises(NothingRecorded):
            session_manager.settle(ALICE, HORSE)

    def test_no_active_session(self, session_manager):
        with pytest.raises(NoActiveSession):
            session_manager.settle(ALICE, HORSE)

    def test_only_owner_of_session_settles(self, session_manager, pricing):
        """Ключ settle — (caller, instrument): чужая сессия не видна."""
        _open(session_manager)
        session_manager.record_off_chain_fill(RELAYER, ALICE, HORSE, 500, 400, 0)
        pricing.set_quote(HORSE, 500, base=380)

        with pytest.raises(NoActiveSession):
            session_manager.settle(BOB, HORSE)

    def test_slippage_boundary(self, session_manager, pricing):
        """cost_basis 400, tolerance 5% → допустимо до 420 включительно."""
        _open(session_manager)
        session_manager.record_off_chain_fill(RELAYER, ALICE, HORSE, 500, 400, 0)
        pricing.set_quote(HORSE, 500, base=420)

        result = session_manager.settle(ALICE, HORSE)

        assert result.cost_paid == 420
        assert result.refund == 580

    def test_slippage_exceeded_leaves_state(self, session_manager, pricing, ledger):
        _open(session_manager)
        session_manager.record_off_chain_fill(RELAYER, ALICE, HORSE, 500, 400, 0)
        pricing.set_quote(HORSE, 500, base=411, fee=10)

        with pytest.raises(SlippageExceeded):
            session_manager.settle(ALICE, HORSE)

        assert session_manager.has_active_session(ALICE, HORSE)
        assert session_manager.get_purchase_record(ALICE, HORSE).amount == 500
        assert ledger.balance_of("ETH", "session-manager") == 1000
        assert pricing.purchases == []

    def test_current_cost_above_escrow(self, session_manager, pricing):
        """Quote в пределах slippage, но больше escrow → Overdrawn."""
        _open(session_manager, amount=1000)
        session_manager.record_off_chain_fill(RELAYER, ALICE, HORSE, 500, 990, 0)
        pricing.set_quote(HORSE, 500, base=1030)

        with pytest.raises(Overdrawn):
            session_manager.settle(ALICE, HORSE)

        assert session_manager.has_active_session(ALICE, HORSE)

    def test_purchase_failure_rolls_back(self, session_manager, pricing, ledger):
        """Сбой внешнего purchase откатывает state flip и удаление записи."""
        _open(session_manager)
        session_manager.record_off_chain_fill(RELAYER, ALICE, HORSE, 500, 400, 0)
        pricing.set_quote(HORSE, 500, base=380)

        def fail():
            raise PurchaseFailed("curve paused")

        pricing.on_purchase = fail

        with pytest.raises(PurchaseFailed):
            session_manager.settle(ALICE, HORSE)

        session = session_manager.get_session(ALICE, HORSE)
        assert session.active
        assert session.locked_amount == 1000
        assert session_manager.get_purchase_record(ALICE, HORSE).amount == 500
        assert ledger.balance_of("ETH", "session-manager") == 1000
        assert ledger.allowance("ETH", "session-manager", pricing.account) == 0
        assert session_manager.event_log.last("SessionSettled") is None

    def test_under_delivery_rolls_back(self, session_manager, pricing, ledger):
        _open(session_manager)
        session_manager.record_off_chain_fill(RELAYER, ALICE, HORSE, 500, 400, 0)
        pricing.set_quote(HORSE, 500, base=380)
        pricing.deliver_override = 499

        with pytest.raises(UnderDelivered):
            session_manager.settle(ALICE, HORSE)

        assert session_manager.has_active_session(ALICE, HORSE)
        assert ledger.balance_of(HORSE, "session-manager") == 0
        assert ledger.balance_of("ETH", "session-manager") == 1000

    def test_actual_cost_below_quote(self, session_manager, pricing, ledger):
        """Refund считается по фактическому списанию."""
        _open(session_manager)
        session_manager.record_off_chain_fill(RELAYER, ALICE, HORSE, 500, 400, 0)
        pricing.set_quote(HORSE, 500, base=380)
        pricing.charge_override = 350

        result = session_manager.settle(ALICE, HORSE)

        assert result.cost_paid == 350
        assert result.refund == 650
        assert ledger.balance_of("ETH", "session-manager") == 0

    def test_reentrant_settle_rejected(self, session_manager, pricing):
        """Повторный settle из purchase callback отклоняется ReentrantCall."""
        _open(session_manager)
        session_manager.record_off_chain_fill(RELAYER, ALICE, HORSE, 500, 400, 0)
        pricing.set_quote(HORSE, 500, base=380)
        nested_errors = []

        def reenter():
            try:
                session_manager.settle(ALICE, HORSE)
            except ReentrantCall as e:
                nested_errors.append(e)

        pricing.on_purchase = reenter

        result = session_manager.settle(ALICE, HORSE)

        assert len(nested_errors) == 1
        assert result.refund == 620
        assert len(pricing.purchases) == 1
        assert len(session_manager.event_log.events("SessionSettled")) == 1

    def test_cancel_and_open_rejected_during_settle(self, session_manager, pricing, ledger):
        """cancel и open_session из purchase callback не выплачивают escrow повторно."""
        _open(session_manager)
        session_manager.record_off_chain_fill(RELAYER, ALICE, HORSE, 500, 400, 0)
        pricing.set_quote(HORSE, 500, base=380)
        nested_errors = []

        def reenter():
            for attempt in (
                lambda: session_manager.cancel(ALICE, HORSE),
                lambda: session_manager.open_session(BOB, HORSE, "ETH", 1000, value=1000),
            ):
                try:
                    attempt()
                except ReentrantCall as e:
                    nested_errors.append(e)

        pricing.on_purchase = reenter

        result = session_manager.settle(ALICE, HORSE)

        assert [e.code for e in nested_errors] == ["reentrant_call", "reentrant_call"]
        assert result.refund == 620
        assert ledger.balance_of("ETH", ALICE) == INITIAL_BALANCE - 380
        assert ledger.balance_of("ETH", BOB) == INITIAL_BALANCE
        assert ledger.balance_of("ETH", "session-manager") == 0
        assert not session_manager.has_active_session(BOB, HORSE)
        assert session_manager.event_log.events("SessionCancelled") == []
        assert session_manager.event_log.events("SessionOpened")[-1].payload["user"] == ALICE

    def test_token_session_settle(self, session_manager, pricing, ledger):
        ledger.approve("USDT", ALICE, "session-manager", 1000)
        session_manager.open_session(ALICE, HORSE, "USDT", 1000)
        session_manager.record_off_chain_fill(RELAYER, ALICE, HORSE, 100, 200, 0)
        pricing.set_quote(HORSE, 100, base=190, fee=5)

        result = session_manager.settle(ALICE, HORSE)

        assert result.refund == 805
        assert ledger.balance_of("USDT", ALICE) == INITIAL_BALANCE - 195
        assert ledger.balance_of(HORSE, ALICE) == 100


class TestLateSettlement:
    """Тесты LateSettlementPolicy после expiry + grace."""

    def _manager(self, pricing, registry, ledger, clock, policy):
        return SessionManager(
            pricing, registry, ledger, clock, OWNER, RELAYER,
            config=SessionConfig(min_session_amount=1, late_settlement=policy),
        )

    def _prepare(self, sm, pricing, clock):
        _open(sm)
        sm.record_off_chain_fill(RELAYER, ALICE, HORSE, 500, 400, 0)
        pricing.set_quote(HORSE, 500, base=380)

    def test_settle_within_grace(self, pricing, registry, ledger, clock):
        sm = self._manager(pricing, registry, ledger, clock, LateSettlementPolicy.REJECT)
        self._prepare(sm, pricing, clock)
        clock.advance(3600 + 300)

        assert sm.settle(ALICE, HORSE).refund == 620

    def test_reject_after_grace(self, pricing, registry, ledger, clock):
        sm = self._manager(pricing, registry, ledger, clock, LateSettlementPolicy.REJECT)
        self._prepare(sm, pricing, clock)
        clock.advance(3600 + 301)

        with pytest.raises(SessionStale):
            sm.settle(ALICE, HORSE)

        # Отмена по-прежнему доступна
        assert sm.cancel(ALICE, HORSE).refund == 1000

    def test_allow_after_grace(self, pricing, registry, ledger, clock):
        sm = self._manager(pricing, registry, ledger, clock, LateSettlementPolicy.ALLOW)
        self._prepare(sm, pricing, clock)
        clock.advance(3600 + 301)

        result = sm.settle(ALICE, HORSE)

        assert not result.auto_cancelled
        assert result.refund == 620

    def test_auto_cancel_after_grace(self, pricing, registry, ledger, clock):
        sm = self._manager(pricing, registry, ledger, clock, LateSettlementPolicy.AUTO_CANCEL)
        self._prepare(sm, pricing, clock)
        clock.advance(3600 + 301)

        result = sm.settle(ALICE, HORSE)

        assert result.auto_cancelled
        assert result.refund == 1000
        assert result.units_purchased == 0
        assert sm.get_session(ALICE, HORSE).status == SessionStatus.CANCELLED
        assert ledger.balance_of("ETH", ALICE) == INITIAL_BALANCE
        assert pricing.purchases == []


class TestCancel:
    """Тесты cancel."""

    def test_cancel_refunds_locked_amount(self, session_manager, ledger):
        _open(session_manager, amount=1000)
        session_manager.record_off_chain_fill(RELAYER, ALICE, HORSE, 500, 400, 0)

        result = session_manager.cancel(ALICE, HORSE)

        assert result.refund == 1000
        assert result.transition.new_state == SessionStatus.CANCELLED
        session = session_manager.get_session(ALICE, HORSE)
        assert not session.active
        assert session.locked_amount == 0
        assert session_manager.get_purchase_record(ALICE, HORSE) is None
        assert ledger.balance_of("ETH", ALICE) == INITIAL_BALANCE
        assert session_manager.event_log.last("SessionCancelled").payload["reason"] == "session_cancelled"

    def test_cancel_after_expiry(self, session_manager, clock):
        _open(session_manager)
        clock.advance(10 * 3600)

        assert session_manager.cancel(ALICE, HORSE).refund == 1000

    def test_cancel_twice(self, session_manager):
        _open(session_manager)
        session_manager.cancel(ALICE, HORSE)

        with pytest.raises(NoActiveSession):
            session_manager.cancel(ALICE, HORSE)

    def test_fill_after_cancel_rejected(self, session_manager):
        _open(session_manager)
        session_manager.cancel(ALICE, HORSE)

        with pytest.raises(NoActiveSession):
            session_manager.record_off_chain_fill(RELAYER, ALICE, HORSE, 10, 10, 0)


class TestRelayerAndAccessors:
    """Тесты update_relayer и read accessors."""

    def test_update_relayer(self, session_manager):
        _open(session_manager)

        session_manager.update_relayer(OWNER, "relayer-2")

        assert session_manager.relayer == "relayer-2"
        event = session_manager.event_log.last("RelayerUpdated")
        assert event.payload == {"previous": RELAYER, "current": "relayer-2"}
        with pytest.raises(Unauthorized):
            session_manager.record_off_chain_fill(RELAYER, ALICE, HORSE, 10, 10, 0)
        session_manager.record_off_chain_fill("relayer-2", ALICE, HORSE, 10, 10, 0)

    def test_injected_empty_event_log_is_used(self, pricing, registry, ledger, clock, session_config):
        """Пустой общий EventLog не подменяется собственным."""
        shared = EventLog()
        sm = SessionManager(
            pricing, registry, ledger, clock, OWNER, RELAYER,
            config=session_config, event_log=shared,
        )

        sm.update_relayer(OWNER, "relayer-2")

        assert sm.event_log is shared
        assert [e.name for e in shared] == ["RelayerUpdated"]

    def test_update_relayer_requires_owner(self, session_manager):
        with pytest.raises(Unauthorized):
            session_manager.update_relayer(RELAYER, "relayer-2")

        assert session_manager.relayer == RELAYER

    def test_is_session_expired(self, session_manager, clock):
        _open(session_manager)
        assert not session_manager.is_session_expired(ALICE, HORSE)

        clock.advance(3601)
        assert session_manager.is_session_expired(ALICE, HORSE)

    def test_is_session_expired_unknown(self, session_manager):
        with pytest.raises(NoActiveSession):
            session_manager.is_session_expired(ALICE, HORSE)

    def test_session_contract(self, session_manager, pricing):
        session = _open(session_manager)
        validate_trading_session(session.to_contract())

        session_manager.record_off_chain_fill(RELAYER, ALICE, HORSE, 500, 400, 0)
        pricing.set_quote(HORSE, 500, base=380)
        session_manager.settle(ALICE, HORSE)

        contract = session_manager.get_session(ALICE, HORSE).to_contract()
        validate_trading_session(contract)
        assert contract["status"] == "SETTLED"
        assert contract["active"] is False
