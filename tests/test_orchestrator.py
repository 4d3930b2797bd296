"""
Tests for the voucher lifecycle: create, edit, status changes, delete
"""

import pytest
from enum import Enum
from decimal import Decimal
from datetime import timedelta

import bullion_ledger.orchestrator as orchestrator_module
from bullion_ledger.audit import AuditEventType
from bullion_ledger.entries import EntryStatus, PDCStatus, PostingRoute
from bullion_ledger.orchestrator import EntryOrchestrator
from bullion_ledger.exceptions import InvalidEntryError, InvalidStateError

from ledger_fixtures import (
    Clock, build_system, metal_request, cash_request, cash_line, cheque_line,
    cash_of, gold_of, all_balances,
    TODAY, TOMORROW, USD, PARTY, OTHER_PARTY, BANK, CASH, TRANSFER, PDC_RECEIPT
)


class TestCreate:

    def setup_method(self):
        self.system = build_system()
        self.orchestrator = self.system.orchestrator

    def test_status_defaults_to_draft(self):
        """Test new vouchers default to draft"""
        request = cash_request([cash_line()])
        del request['status']
        entry = self.orchestrator.create_entry(request)

        assert entry.status == EntryStatus.DRAFT
        assert cash_of(self.system, PARTY) == Decimal('0')

    def test_entry_type_alias(self):
        """Test entry_type is accepted in place of type"""
        request = cash_request([cash_line()])
        request['entry_type'] = request.pop('type')
        assert self.orchestrator.create_entry(request).entry_type.value == "cash-receipt"

    def test_unknown_type(self):
        """Test unknown voucher type is rejected"""
        with pytest.raises(InvalidEntryError, match="Invalid type"):
            self.orchestrator.create_entry(cash_request([cash_line()], entry_type="gold-swap"))

    def test_duplicate_voucher_code(self):
        """Test a duplicate voucher code posts nothing"""
        self.orchestrator.create_entry(cash_request([cash_line()]))
        with pytest.raises(InvalidEntryError, match="already exists"):
            self.orchestrator.create_entry(cash_request([cash_line("5")]))
        assert cash_of(self.system, PARTY) == Decimal('1000')

    def test_missing_party_or_voucher(self):
        """Test party and voucher code are required"""
        with pytest.raises(InvalidEntryError, match="party_id"):
            self.orchestrator.create_entry(cash_request([cash_line()], party_id=None))
        with pytest.raises(InvalidEntryError, match="voucher_code"):
            self.orchestrator.create_entry(cash_request([cash_line()], voucher_code=""))

    @pytest.mark.parametrize("request_data,field", [
        (cash_request([cash_line(cash_type="cheque", account_id=None, cheque_bank_id=BANK,
                                cheque_date="2024-13-45")], entry_type="currency-receipt"), "cheque_date"),
        (dict(cash_request([cash_line()]), voucher_date="10/06/2024"), "voucher_date"),
        (metal_request(pieces="two"), "pieces"),
    ])
    def test_malformed_values_are_validation_errors(self, request_data, field):
        """Test unparseable dates and piece counts are rejected as invalid entries"""
        with pytest.raises(InvalidEntryError) as excinfo:
            self.orchestrator.create_entry(request_data)

        assert excinfo.value.details == {"field": field}
        assert all_balances(self.system) == {}
        assert self.system.registry.rows_for_reference(request_data["voucher_code"]) == []

    def test_entered_by_and_audit(self):
        """Test the creating user is recorded and audited"""
        entry = self.orchestrator.create_entry(cash_request([cash_line()]), user_id="clerk")

        assert entry.entered_by == "clerk"
        events = self.system.audit_trail.get_events_for_entity("entry", entry.id)
        assert [e.event_type for e in events] == [AuditEventType.ENTRY_CREATED, AuditEventType.ENTRY_POSTED]

    def test_get_entry(self):
        """Test fetching an entry"""
        entry = self.orchestrator.create_entry(metal_request())
        loaded = self.orchestrator.get_entry(entry.id)
        assert loaded.voucher_code == "MR001"
        assert loaded.stock_items[0].pure_weight == Decimal('99.5000')


class TestUpdateStatus:

    def setup_method(self):
        self.clock = Clock()
        self.system = build_system(self.clock)
        self.orchestrator = self.system.orchestrator

    def test_approve_posts(self):
        """Test approving a draft posts it"""
        entry = self.orchestrator.create_entry(cash_request([cash_line()], status="draft"))
        approved = self.orchestrator.update_status(entry.id, "approved", user_id="manager")

        assert approved.status == EntryStatus.APPROVED
        assert approved.version == entry.version + 1
        assert cash_of(self.system, PARTY) == Decimal('1000')
        assert self.system.registry.rows_for_reference("CR001")[0].created_by == "manager"

    def test_approve_to_draft_reverses(self):
        """Test moving back to draft reverses the posting"""
        entry = self.orchestrator.create_entry(cash_request([cash_line()]))
        draft = self.orchestrator.update_status(entry.id, EntryStatus.DRAFT)

        assert draft.status == EntryStatus.DRAFT
        assert draft.cash[0].posting_route is None
        assert all_balances(self.system) == {}
        assert self.system.registry.rows_for_reference("CR001") == []

    def test_same_status_is_a_no_op(self):
        """Test setting the current status changes nothing"""
        entry = self.orchestrator.create_entry(cash_request([cash_line()]))
        unchanged = self.orchestrator.update_status(entry.id, "approved")

        assert unchanged.version == entry.version
        assert cash_of(self.system, PARTY) == Decimal('1000')

    def test_cheque_not_dated_today_cannot_be_approved(self):
        """Test a cheque not dated today blocks approval"""
        entry = self.orchestrator.create_entry(cash_request(
            [cheque_line(cheque_date=TOMORROW)], entry_type="currency-receipt", status="draft"
        ))

        with pytest.raises(InvalidStateError, match="dated today"):
            self.orchestrator.update_status(entry.id, "approved")

        assert self.system.entries.require(entry.id).status == EntryStatus.DRAFT
        assert all_balances(self.system) == {}

    def test_cheque_approved_on_its_date(self):
        """Test a cheque can be approved on its own date"""
        entry = self.orchestrator.create_entry(cash_request(
            [cheque_line(cheque_date=TOMORROW)], entry_type="currency-receipt", status="draft"
        ))
        self.clock.advance(1)

        approved = self.orchestrator.update_status(entry.id, "approved")

        assert approved.cash[0].posting_route == PostingRoute.DIRECT
        assert cash_of(self.system, BANK) == Decimal('-1000')

    def test_invalid_status(self):
        """Test unknown status is rejected"""
        entry = self.orchestrator.create_entry(cash_request([cash_line()]))
        with pytest.raises(InvalidEntryError):
            self.orchestrator.update_status(entry.id, "posted")


class TestEdit:

    def setup_method(self):
        self.system = build_system()
        self.orchestrator = self.system.orchestrator

    def test_metal_receipt_to_payment(self):
        """Test a receipt edited into a payment leaves only the payment effect"""
        entry = self.orchestrator.create_entry(metal_request())
        assert gold_of(self.system) == Decimal('99.5')

        edited = self.orchestrator.edit_entry(entry.id, {'type': "metal-payment"})

        assert edited.entry_type.value == "metal-payment"
        assert gold_of(self.system) == Decimal('-99.5')
        assert self.system.registry.gold_position(PARTY) == Decimal('-99.5')
        assert self.system.inventory.get_position("GOLD-24K")['pure_weight'] == Decimal('-99.5')
        logs = self.system.inventory.logs_for_voucher("MR001")
        assert [log['is_outgoing'] for log in logs] == [True]

    def test_amount_change_reposts(self):
        """Test an amount change reposts the voucher"""
        entry = self.orchestrator.create_entry(cash_request([cash_line("1000", line_id="L1")]))
        edited = self.orchestrator.edit_entry(entry.id, {'cash': [cash_line("600", line_id="L1")]})

        assert cash_of(self.system, PARTY) == Decimal('600')
        assert cash_of(self.system, BANK) == Decimal('-600')
        rows = self.system.registry.rows_for_reference("CR001")
        assert len(rows) == 2
        assert edited.cash[0].line_id == "L1"
        assert edited.version == entry.version + 1

    def test_type_change_keeps_lines(self):
        """Test a type change keeps the existing lines"""
        entry = self.orchestrator.create_entry(cash_request([cash_line("300")]))
        edited = self.orchestrator.edit_entry(entry.id, {'type': "cash-payment"})

        assert edited.cash[0].line_id == entry.cash[0].line_id
        assert cash_of(self.system, PARTY) == Decimal('-300')
        assert cash_of(self.system, BANK) == Decimal('300')

    def test_party_change(self):
        """Test moving a voucher to another party"""
        entry = self.orchestrator.create_entry(cash_request([cash_line("300")]))
        self.orchestrator.edit_entry(entry.id, {'party_id': OTHER_PARTY})

        assert cash_of(self.system, PARTY) == Decimal('0')
        assert cash_of(self.system, OTHER_PARTY) == Decimal('300')

    def test_cheque_not_dated_today_forces_draft(self):
        """Test an edit with a cheque not dated today forces draft"""
        entry = self.orchestrator.create_entry(cash_request([cash_line("300")]))
        edited = self.orchestrator.edit_entry(entry.id, {
            'status': "approved",
            'cash': [cheque_line("300", cheque_date=TOMORROW)],
        })

        assert edited.status == EntryStatus.DRAFT
        assert all_balances(self.system) == {}
        assert self.system.registry.rows_for_reference("CR001") == []

    def test_voucher_code_is_immutable(self):
        """Test voucher_code cannot be edited"""
        entry = self.orchestrator.create_entry(cash_request([cash_line()]))
        with pytest.raises(InvalidEntryError, match="voucher_code"):
            self.orchestrator.edit_entry(entry.id, {'voucher_code': "CR999"})
        assert self.system.entries.require(entry.id).voucher_code == "CR001"

    def test_invalid_edit_leaves_everything(self):
        """Test a rejected edit leaves the old posting in place"""
        entry = self.orchestrator.create_entry(cash_request([cash_line("300")]))
        before = all_balances(self.system)

        with pytest.raises(InvalidEntryError):
            self.orchestrator.edit_entry(entry.id, {'cash': [cash_line("-5")]})

        assert all_balances(self.system) == before
        assert len(self.system.registry.rows_for_reference("CR001")) == 2

    def test_malformed_voucher_date_on_edit(self):
        """Test an edit with an unparseable voucher_date keeps the old posting"""
        entry = self.orchestrator.create_entry(cash_request([cash_line("300")]))
        before = all_balances(self.system)

        with pytest.raises(InvalidEntryError, match="voucher_date"):
            self.orchestrator.edit_entry(entry.id, {'voucher_date': "2024-02-30"})

        assert all_balances(self.system) == before
        assert self.system.entries.require(entry.id).voucher_date == TODAY

    def test_edit_draft_to_approved(self):
        """Test an edit can approve a draft"""
        entry = self.orchestrator.create_entry(cash_request([cash_line("300")], status="draft"))
        self.orchestrator.edit_entry(entry.id, {'status': "approved"})
        assert cash_of(self.system, PARTY) == Decimal('300')

    def test_edit_with_pending_pdc_cancels_schedule(self):
        """Test an edit cancels the old pending PDC schedule"""
        entry = self.orchestrator.create_entry(cash_request(
            [cheque_line("1000", cheque_date=TOMORROW)], entry_type="currency-receipt"
        ))
        self.orchestrator.edit_entry(entry.id, {
            'cash': [cash_line("1000", cash_type="cash", account_id=CASH)]
        })

        schedules = self.system.pdc_manager.schedules_for_entry(entry.id)
        assert [s.pdc_status for s in schedules] == [PDCStatus.CANCELLED]
        assert cash_of(self.system, PDC_RECEIPT) == Decimal('0')
        assert cash_of(self.system, CASH) == Decimal('-1000')
        assert cash_of(self.system, PARTY) == Decimal('1000')


class TestDelete:

    def setup_method(self):
        self.system = build_system()
        self.orchestrator = self.system.orchestrator

    def test_delete_with_pending_pdc(self):
        """Test deleting a voucher cancels its pending PDC"""
        entry = self.orchestrator.create_entry(cash_request(
            [cheque_line("1000", cheque_date=TOMORROW)], entry_type="currency-receipt"
        ))

        self.orchestrator.delete_entry(entry.id, user_id="manager")

        assert self.system.entries.get(entry.id) is None
        assert self.system.registry.rows_for_reference("CR001") == []
        schedules = self.system.pdc_manager.schedules_for_entry(entry.id)
        assert [s.pdc_status for s in schedules] == [PDCStatus.CANCELLED]
        assert self.system.pdc_manager.due_schedules(TOMORROW + timedelta(days=365)) == []
        assert all_balances(self.system) == {}

    def test_delete_draft(self):
        """Test deleting a draft"""
        entry = self.orchestrator.create_entry(metal_request(status="draft"))
        self.orchestrator.delete_entry(entry.id)
        assert self.system.entries.get(entry.id) is None

    def test_delete_is_audited(self):
        """Test deletion is audited"""
        entry = self.orchestrator.create_entry(metal_request())
        self.orchestrator.delete_entry(entry.id, user_id="manager")

        event = self.system.audit_trail.get_events_by_type(AuditEventType.ENTRY_DELETED)[-1]
        assert event.entity_id == entry.id
        assert event.user_id == "manager"
        assert self.system.audit_trail.verify_integrity()['valid']


class TestReversalRestoresBalances:
    """Applying then reversing a voucher leaves every balance as it was"""

    def setup_method(self):
        self.clock = Clock()
        self.system = build_system(self.clock)
        self.orchestrator = self.system.orchestrator
        # Unrelated activity that must survive every reversal untouched
        self.orchestrator.create_entry(cash_request([cash_line("77")], voucher_code="BASE1"))
        self.orchestrator.create_entry(metal_request(voucher_code="BASE2", gross_weight="3"))
        self.before = all_balances(self.system)

    def _round_trip(self, request):
        entry = self.orchestrator.create_entry(request)
        assert all_balances(self.system) != self.before
        return entry

    def _assert_restored(self, voucher_code):
        assert all_balances(self.system) == self.before
        assert self.system.registry.rows_for_reference(voucher_code) == []
        assert self.system.registry.verify_reference("BASE1")['rows'] == 2

    @pytest.mark.parametrize("request_data", [
        metal_request(voucher_code="V1"),
        metal_request(entry_type="metal-payment", voucher_code="V1"),
        cash_request([cash_line("100"), cash_line("5", currency_id=USD, fx_rate="3.6", fx_base_rate="3.7")],
                     voucher_code="V1"),
        cash_request([cash_line("40", cash_type="transfer", account_id=None, transfer_account_id=TRANSFER)],
                     entry_type="cash-payment", voucher_code="V1"),
        cash_request([cheque_line("250", cheque_date=TODAY)], entry_type="currency-payment", voucher_code="V1"),
        cash_request([cheque_line("250", cheque_date=TOMORROW), cash_line("10", cash_type="cash", account_id=CASH)],
                     entry_type="currency-receipt", voucher_code="V1"),
    ])
    def test_delete(self, request_data):
        """Test deleting restores every balance"""
        entry = self._round_trip(request_data)
        self.orchestrator.delete_entry(entry.id)
        self._assert_restored("V1")

    def test_back_to_draft(self):
        """Test returning to draft restores every balance"""
        entry = self._round_trip(metal_request(voucher_code="V1"))
        self.orchestrator.update_status(entry.id, "draft")
        self._assert_restored("V1")
        assert self.system.inventory.logs_for_voucher("V1") == []

    def test_cleared_pdc(self):
        """Test deleting after a manual clear restores every balance"""
        entry = self._round_trip(cash_request(
            [cheque_line("250", cheque_date=TOMORROW)], entry_type="currency-payment", voucher_code="V1"
        ))
        self.orchestrator.clear_pdc(entry.id, 0)
        self.orchestrator.delete_entry(entry.id)
        self._assert_restored("V1")

    def test_matured_pdc(self):
        """Test deleting after maturity restores every balance"""
        entry = self._round_trip(cash_request(
            [cheque_line("250", cheque_date=TOMORROW)], entry_type="currency-receipt", voucher_code="V1"
        ))
        self.clock.advance(10)
        result = self.system.maturity.process_matured_pdcs()
        assert result.processed == 1
        self.orchestrator.delete_entry(entry.id)
        self._assert_restored("V1")

    def test_bounced_pdc(self):
        """Test deleting after a bounce restores every balance"""
        entry = self._round_trip(cash_request(
            [cheque_line("250", cheque_date=TOMORROW)], entry_type="currency-receipt", voucher_code="V1"
        ))
        self.orchestrator.bounce_pdc(entry.id, 0)
        self.orchestrator.delete_entry(entry.id)
        self._assert_restored("V1")


class TestAtomicity:

    def setup_method(self):
        self.system = build_system()
        self.orchestrator = self.system.orchestrator

    def test_failure_after_ledger_write_rolls_back_create(self, monkeypatch):
        """Test a failure late in create rolls back everything"""
        def broken(*args, **kwargs):
            raise RuntimeError("inventory offline")

        monkeypatch.setattr(self.system.inventory, "update_inventory", broken)

        with pytest.raises(RuntimeError):
            self.orchestrator.create_entry(metal_request())

        assert self.system.entries.find_by_voucher("MR001") is None
        assert self.system.storage.count("registry") == 0
        assert gold_of(self.system) == Decimal('0')
        assert self.system.sequence.generate_transaction_id() == "TXN00000001"
        assert self.system.audit_trail.verify_integrity()['valid']

    def test_failed_edit_keeps_the_old_posting(self, monkeypatch):
        """Test a failure during edit keeps the old posting"""
        entry = self.orchestrator.create_entry(cash_request([cash_line("300")]))
        rows_before = [r.id for r in self.system.registry.rows_for_reference("CR001")]
        balances_before = all_balances(self.system)

        def broken(rows):
            raise RuntimeError("ledger offline")

        # Reversal of the old posting succeeds; posting the new one fails
        monkeypatch.setattr(self.system.registry, "post", broken)

        with pytest.raises(RuntimeError):
            self.orchestrator.edit_entry(entry.id, {'cash': [cash_line("500")]})

        monkeypatch.undo()
        assert [r.id for r in self.system.registry.rows_for_reference("CR001")] == rows_before
        assert all_balances(self.system) == balances_before
        persisted = self.system.entries.require(entry.id)
        assert persisted.cash[0].amount == Decimal('300')
        assert persisted.status == EntryStatus.APPROVED


class TestHandlerTable:

    def test_missing_handler_fails_at_construction(self, monkeypatch):
        """Test a voucher type without a handler fails at construction"""
        extended = Enum("EntryType", {
            'METAL_RECEIPT': "metal-receipt",
            'METAL_PAYMENT': "metal-payment",
            'CASH_RECEIPT': "cash-receipt",
            'CASH_PAYMENT': "cash-payment",
            'CURRENCY_RECEIPT': "currency-receipt",
            'CURRENCY_PAYMENT': "currency-payment",
            'METAL_SWAP': "metal-swap",
        })
        system = build_system()
        monkeypatch.setattr(orchestrator_module, "EntryType", extended)

        with pytest.raises(RuntimeError, match="metal-swap"):
            EntryOrchestrator(
                system.storage, system.entries, system.metal_handler, system.cash_handler,
                system.pdc_manager, system.registry, system.inventory, system.audit_trail
            )
