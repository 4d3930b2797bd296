"""
Tests for metal receipts and payments
"""

import pytest
from decimal import Decimal

from bullion_ledger.ledger import RegistryType
from bullion_ledger.exceptions import InvalidEntryError, NotFoundError

from ledger_fixtures import build_system, metal_request, gold_of, PARTY


class TestMetalReceipt:

    def setup_method(self):
        self.system = build_system()
        self.orchestrator = self.system.orchestrator

    def test_party_gold_credited(self):
        """Test metal receipt credits party gold with pure weight"""
        entry = self.orchestrator.create_entry(metal_request(), user_id="clerk")

        assert entry.stock_items[0].pure_weight == Decimal('99.5000')
        assert gold_of(self.system) == Decimal('99.5')

    def test_rows(self):
        """Test metal receipt ledger rows"""
        self.orchestrator.create_entry(metal_request(), user_id="clerk")

        rows = self.system.registry.rows_for_reference("MR001")
        by_type = {row.row_type: row for row in rows}
        assert len(rows) == 3
        assert by_type[RegistryType.GOLD_STOCK].gold_debit == Decimal('99.5')
        assert by_type[RegistryType.GOLD].gold_credit == Decimal('99.5')
        party = by_type[RegistryType.PARTY_GOLD_BALANCE]
        assert party.gold_credit == Decimal('99.5')
        assert party.account_id == PARTY
        assert party.gross_weight == Decimal('100')
        assert len({row.transaction_id for row in rows}) == 1
        assert all(row.created_by == "clerk" for row in rows)
        assert self.system.registry.verify_reference("MR001")['balanced']

    def test_inventory_moves_in(self):
        """Test metal receipt adds to inventory"""
        self.orchestrator.create_entry(metal_request(pieces=3))

        position = self.system.inventory.get_position("GOLD-24K")
        assert position['pieces'] == 3
        assert position['pure_weight'] == Decimal('99.5')
        assert len(self.system.inventory.logs_for_voucher("MR001")) == 1

    def test_several_items(self):
        """Test pure weights of several items are summed"""
        request = metal_request()
        request['stock_items'].append({'stock_id': "GOLD-22K", 'gross_weight': "10", 'purity': "0.916"})
        self.orchestrator.create_entry(request)

        assert gold_of(self.system) == Decimal('108.66')
        assert len(self.system.registry.rows_for_reference("MR001")) == 6

    def test_draft_posts_nothing(self):
        """Test draft metal vouchers post nothing"""
        self.orchestrator.create_entry(metal_request(status="draft"))

        assert gold_of(self.system) == Decimal('0')
        assert self.system.registry.rows_for_reference("MR001") == []
        assert self.system.inventory.logs_for_voucher("MR001") == []


class TestMetalPayment:

    def setup_method(self):
        self.system = build_system()
        self.orchestrator = self.system.orchestrator

    def test_party_gold_debited_and_stock_out(self):
        """Test metal payment debits party gold and takes stock out"""
        self.orchestrator.create_entry(metal_request(entry_type="metal-payment", voucher_code="MP001"))

        assert gold_of(self.system) == Decimal('-99.5')
        rows = {row.row_type: row for row in self.system.registry.rows_for_reference("MP001")}
        assert rows[RegistryType.GOLD_STOCK].gold_credit == Decimal('99.5')
        assert rows[RegistryType.GOLD].gold_debit == Decimal('99.5')
        assert rows[RegistryType.PARTY_GOLD_BALANCE].gold_debit == Decimal('99.5')
        assert self.system.inventory.get_position("GOLD-24K")['pure_weight'] == Decimal('-99.5')

    def test_receipt_then_payment_nets_out(self):
        """Test equal receipt and payment net to zero"""
        self.orchestrator.create_entry(metal_request())
        self.orchestrator.create_entry(metal_request(entry_type="metal-payment", voucher_code="MP001"))

        assert gold_of(self.system) == Decimal('0')
        assert self.system.registry.gold_position(PARTY) == Decimal('0')


class TestMetalValidation:

    def setup_method(self):
        self.system = build_system()

    def test_unknown_party_rejected_without_writes(self):
        """Test unknown party is rejected before any write"""
        with pytest.raises(NotFoundError):
            self.system.orchestrator.create_entry(metal_request(party_id="nobody"))

        assert self.system.entries.find_by_voucher("MR001") is None
        assert self.system.storage.count("registry") == 0

    def test_cash_lines_on_metal_voucher_rejected(self):
        """Test cash lines on a metal voucher are rejected"""
        request = metal_request()
        request['cash'] = [{'currency_id': "cur-aed", 'amount': "1", 'cash_type': "cash", 'account_id': "cash-1"}]
        with pytest.raises(InvalidEntryError):
            self.system.orchestrator.create_entry(request)

    def test_bad_purity_rejected(self):
        """Test purity above one is rejected"""
        with pytest.raises(InvalidEntryError):
            self.system.orchestrator.create_entry(metal_request(purity="1.5"))
