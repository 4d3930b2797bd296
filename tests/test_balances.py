"""
Tests for embedded balances and the transaction id sequence
"""

import pytest
import threading
from decimal import Decimal

from bullion_ledger.storage import InMemoryStorage
from bullion_ledger.audit import AuditTrail
from bullion_ledger.accounts import AccountStore, AccountKind
from bullion_ledger.balances import BalanceStore
from bullion_ledger.sequence import SequenceGenerator
from bullion_ledger.exceptions import (
    BalanceConflictError, NotFoundError, InvalidEntryError, SequenceError
)


class AlwaysStaleStorage(InMemoryStorage):
    """Storage where every conditional write loses the race"""

    def compare_and_swap(self, table, record_id, expected_version, data):
        return False


class TestBalanceStore:

    def setup_method(self):
        self.storage = InMemoryStorage()
        self.accounts = AccountStore(self.storage, AuditTrail(self.storage))
        self.accounts.create_account("P001", "Trader", AccountKind.PARTY, account_id="party")
        self.balances = BalanceStore(self.storage)

    def test_cash_balance_created_on_first_use(self):
        """Test a currency balance appears on its first adjustment"""
        assert self.balances.get_cash("party", "AED") == Decimal('0')
        assert self.balances.adjust_cash("party", "AED", Decimal('250.50')) == Decimal('250.50')
        assert self.balances.adjust_cash("party", "AED", Decimal('-50.50')) == Decimal('200.00')
        assert self.balances.adjust_cash("party", "USD", Decimal('10')) == Decimal('10')

        account = self.accounts.require_account("party")
        assert {b.currency_id for b in account.cash_balance} == {"AED", "USD"}

    def test_gold_balance(self):
        """Test gold adjustments accumulate in grams"""
        self.balances.adjust_gold("party", Decimal('99.5'))
        self.balances.adjust_gold("party", Decimal('-0.5'))
        assert self.balances.get_gold("party") == Decimal('99.0')

    def test_each_adjustment_bumps_version(self):
        """Test every adjustment increments the account version"""
        before = self.accounts.require_account("party").version
        self.balances.adjust_cash("party", "AED", Decimal('1'))
        self.balances.adjust_gold("party", Decimal('1'))
        assert self.accounts.require_account("party").version == before + 2

    def test_missing_account(self):
        """Test adjusting an unknown account raises NotFoundError"""
        with pytest.raises(NotFoundError):
            self.balances.adjust_cash("ghost", "AED", Decimal('1'))
        with pytest.raises(NotFoundError):
            self.balances.adjust_gold(None, Decimal('1'))

    def test_concurrent_adjustments_lose_nothing(self):
        """Test concurrent adjustments all land"""
        balances = BalanceStore(self.storage, max_retries=100)

        def deposit():
            for _ in range(25):
                balances.adjust_cash("party", "AED", Decimal('1'))

        threads = [threading.Thread(target=deposit) for _ in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert self.balances.get_cash("party", "AED") == Decimal('100')

    def test_conflict_after_retries(self):
        """Test a permanently stale version raises BalanceConflictError"""
        storage = AlwaysStaleStorage()
        AccountStore(storage, AuditTrail(storage)).create_account(
            "P001", "Trader", AccountKind.PARTY, account_id="party"
        )
        balances = BalanceStore(storage, max_retries=3)

        with pytest.raises(BalanceConflictError) as exc_info:
            balances.adjust_cash("party", "AED", Decimal('5'))
        assert exc_info.value.status_code == 409
        assert balances.get_cash("party", "AED") == Decimal('0')


class TestAccountStore:

    def setup_method(self):
        self.storage = InMemoryStorage()
        self.accounts = AccountStore(self.storage, AuditTrail(self.storage))
        self.accounts.create_account("B001", "Bank", AccountKind.BANK, account_id="bank")
        self.accounts.create_account("PDCI", "PDC Issue", AccountKind.PDC, account_id="pdc-issue")

    def test_bank_detail(self):
        """Test adding PDC configuration to a bank account"""
        self.accounts.add_bank_detail("bank", "Main", pdc_issue="pdc-issue", maturity_days=2,
                                      detail_id="bd")
        account = self.accounts.require_account("bank")
        assert account.bank_detail_for("bd").maturity_days == 2
        assert account.bank_detail_for().pdc_issue == "pdc-issue"
        assert account.bank_detail_for("other") is None

    def test_bank_detail_requires_linked_accounts(self):
        """Test bank details must point at existing accounts"""
        with pytest.raises(NotFoundError):
            self.accounts.add_bank_detail("bank", "Main", pdc_receipt="missing")
        assert self.accounts.require_account("bank").bank_details == []

    def test_negative_maturity_days_rejected(self):
        """Test maturity offsets cannot be negative"""
        with pytest.raises(InvalidEntryError):
            self.accounts.add_bank_detail("bank", "Main", maturity_days=-1)


class TestSequenceGenerator:

    def test_format_and_monotonic(self):
        """Test transaction ids are zero padded and increasing"""
        sequence = SequenceGenerator(InMemoryStorage())
        assert sequence.generate_transaction_id() == "TXN00000001"
        assert sequence.generate_transaction_id() == "TXN00000002"

    def test_custom_prefix_and_width(self):
        """Test transaction id prefix and width are configurable"""
        sequence = SequenceGenerator(InMemoryStorage(), prefix="JV", width=4)
        assert sequence.generate_transaction_id() == "JV0001"

    def test_counter_rolls_back_with_unit(self):
        """Test an id allocated in a failed unit is reused"""
        storage = InMemoryStorage()
        sequence = SequenceGenerator(storage)
        sequence.generate_transaction_id()

        with pytest.raises(RuntimeError):
            with storage.atomic():
                sequence.generate_transaction_id()
                raise RuntimeError("posting failed")

        assert sequence.generate_transaction_id() == "TXN00000002"

    def test_unique_across_threads(self):
        """Test ids stay unique across threads"""
        sequence = SequenceGenerator(InMemoryStorage(), max_retries=50)
        seen = []

        def allocate():
            for _ in range(20):
                seen.append(sequence.generate_transaction_id())

        threads = [threading.Thread(target=allocate) for _ in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(set(seen)) == 80

    def test_contention_raises(self):
        """Test exhausted allocation attempts raise SequenceError"""
        storage = AlwaysStaleStorage()
        storage.save("sequences", "transaction", {'id': "transaction", 'value': 1, 'version': 1})
        sequence = SequenceGenerator(storage, max_retries=2)

        with pytest.raises(SequenceError):
            sequence.generate_transaction_id()
