"""
Tests for the post-dated cheque lifecycle: clear, bounce, cancel
"""

import pytest
from decimal import Decimal

from bullion_ledger.audit import AuditEventType
from bullion_ledger.entries import PDCStatus
from bullion_ledger.ledger import RegistryType
from bullion_ledger.exceptions import InvalidStateError, NotFoundError

from ledger_fixtures import (
    Clock, build_system, cash_request, cash_line, cheque_line, cash_of,
    TOMORROW, PARTY, BANK, CASH, PDC_ISSUE, PDC_RECEIPT
)


class TestPDCReceipt:
    """A post-dated cheque received from the party"""

    def setup_method(self):
        self.clock = Clock()
        self.system = build_system(self.clock)
        self.orchestrator = self.system.orchestrator
        self.entry = self.orchestrator.create_entry(cash_request(
            [cheque_line("1000", cheque_date=TOMORROW, line_id="chq-1")],
            entry_type="currency-receipt"
        ), user_id="clerk")

    def _schedule(self):
        return self.system.pdc_manager.schedules_for_entry(self.entry.id)[0]

    def test_clear(self):
        """Test clearing a receipt cheque moves it to the bank"""
        self.clock.advance(1)
        entry = self.orchestrator.clear_pdc(self.entry.id, "chq-1", user_id="treasury")

        line = entry.find_cash_line("chq-1")
        assert line.pdc_status == PDCStatus.CLEARED
        assert line.is_pdc
        assert self._schedule().pdc_status == PDCStatus.CLEARED
        assert self._schedule().processed_by == "treasury"

        assert cash_of(self.system, PARTY) == Decimal('1000')
        assert cash_of(self.system, PDC_RECEIPT) == Decimal('0')
        assert cash_of(self.system, BANK) == Decimal('-1000')

        rows = [r for r in self.system.registry.rows_for_reference("CR001") if r.created_by == "treasury"]
        assert {r.row_type for r in rows} == {RegistryType.PDC_ENTRY, RegistryType.BULLION_ENTRY}
        assert all(r.transaction_date == self.clock.day for r in rows)
        assert len({r.transaction_id for r in rows}) == 1

        persisted = self.system.entries.require(self.entry.id)
        assert persisted.cash[0].pdc_status == PDCStatus.CLEARED
        assert persisted.version == self.entry.version + 1

    def test_bounce_undoes_party_effect(self):
        """Test bouncing a cheque undoes the party effect"""
        entry = self.orchestrator.bounce_pdc(self.entry.id, "chq-1")

        assert entry.cash[0].pdc_status == PDCStatus.BOUNCED
        assert self._schedule().pdc_status == PDCStatus.BOUNCED
        assert cash_of(self.system, PARTY) == Decimal('0')
        assert cash_of(self.system, PDC_RECEIPT) == Decimal('0')
        assert cash_of(self.system, BANK) == Decimal('0')
        assert self.system.registry.verify_reference("CR001")['balanced']

    def test_cancel_clears_pdc_flag(self):
        """Test cancelling a cheque clears its PDC flag"""
        entry = self.orchestrator.cancel_pdc(self.entry.id, "chq-1")

        assert entry.cash[0].pdc_status == PDCStatus.CANCELLED
        assert not entry.cash[0].is_pdc
        assert self._schedule().pdc_status == PDCStatus.CANCELLED
        assert cash_of(self.system, PARTY) == Decimal('0')

    def test_positional_line_reference(self):
        """Test PDC actions accept a line position"""
        entry = self.orchestrator.clear_pdc(self.entry.id, 0)
        assert entry.cash[0].pdc_status == PDCStatus.CLEARED

    @pytest.mark.parametrize("first,second", [
        ("clear_pdc", "clear_pdc"),
        ("clear_pdc", "bounce_pdc"),
        ("bounce_pdc", "clear_pdc"),
        ("cancel_pdc", "bounce_pdc"),
    ])
    def test_terminal_states(self, first, second):
        """Test no action is allowed after a terminal state"""
        getattr(self.orchestrator, first)(self.entry.id, "chq-1")
        before = (cash_of(self.system, PARTY), cash_of(self.system, BANK), self.system.storage.count("registry"))

        with pytest.raises(InvalidStateError):
            getattr(self.orchestrator, second)(self.entry.id, "chq-1")

        after = (cash_of(self.system, PARTY), cash_of(self.system, BANK), self.system.storage.count("registry"))
        assert before == after

    def test_audit_events(self):
        """Test PDC actions are audited"""
        self.orchestrator.clear_pdc(self.entry.id, "chq-1", user_id="treasury")

        assert self.system.audit_trail.get_events_by_type(AuditEventType.PDC_SCHEDULED)
        cleared = self.system.audit_trail.get_events_by_type(AuditEventType.PDC_CLEARED)
        assert cleared[-1].entity_id == self.entry.id
        assert cleared[-1].user_id == "treasury"

    def test_unknown_entry_or_line(self):
        """Test unknown entry or line raises NotFoundError"""
        with pytest.raises(NotFoundError):
            self.orchestrator.clear_pdc("missing", "chq-1")
        with pytest.raises(NotFoundError):
            self.orchestrator.clear_pdc(self.entry.id, "chq-9")
        with pytest.raises(NotFoundError):
            self.system.pdc_manager.require_schedule("missing")


class TestPDCPayment:
    """A post-dated cheque issued to the party"""

    def setup_method(self):
        self.system = build_system()
        self.orchestrator = self.system.orchestrator
        self.entry = self.orchestrator.create_entry(cash_request(
            [cheque_line("400", cheque_date=TOMORROW, line_id="chq-1"),
             cash_line("100", cash_type="cash", account_id=CASH, line_id="cash-1")],
            entry_type="currency-payment", voucher_code="CP001"
        ))

    def test_clear_moves_pdc_issue_to_bank(self):
        """Test clearing a payment cheque moves it from PDC issue to the bank"""
        assert cash_of(self.system, PDC_ISSUE) == Decimal('400')

        self.orchestrator.clear_pdc(self.entry.id, "chq-1")

        assert cash_of(self.system, PARTY) == Decimal('-500')
        assert cash_of(self.system, PDC_ISSUE) == Decimal('0')
        assert cash_of(self.system, BANK) == Decimal('400')

    def test_bounce(self):
        """Test bouncing a payment cheque"""
        self.orchestrator.bounce_pdc(self.entry.id, "chq-1")

        assert cash_of(self.system, PARTY) == Decimal('-100')
        assert cash_of(self.system, PDC_ISSUE) == Decimal('0')

    def test_direct_line_is_not_a_pdc(self):
        """Test PDC actions refuse a directly posted line"""
        with pytest.raises(InvalidStateError, match="not a pending PDC"):
            self.orchestrator.clear_pdc(self.entry.id, "cash-1")
