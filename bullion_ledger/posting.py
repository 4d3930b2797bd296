"""
Posting batches

A PostingBatch collects the rows of one posting unit together with the
balance movements they represent. Rows are derived from signed account
deltas, so the ledger and the embedded balances always come from the same
numbers: a positive delta is a credit to the account, a negative delta a
debit.
"""

from decimal import Decimal
from datetime import date
from typing import List, Optional, Tuple

from .ledger import Registry, RegistryRow, RegistryType, ZERO
from .balances import BalanceStore


class PostingBatch:
    """Rows and balance deltas of one transaction id"""

    def __init__(
        self,
        transaction_id: str,
        entry_type: str,
        reference: str,
        transaction_date: date,
        entry_id: Optional[str] = None,
        created_by: Optional[str] = None
    ):
        self.transaction_id = transaction_id
        self.entry_type = entry_type
        self.reference = reference
        self.transaction_date = transaction_date
        self.entry_id = entry_id
        self.created_by = created_by
        self.rows: List[RegistryRow] = []
        self.cash_deltas: List[Tuple[str, str, Decimal]] = []
        self.gold_deltas: List[Tuple[str, Decimal]] = []

    def _append(self, row_type: RegistryType, description: str, **fields) -> RegistryRow:
        line_no = len(self.rows) + 1
        row = RegistryRow(
            id=f"{self.transaction_id}-{line_no}",
            transaction_id=self.transaction_id,
            line_no=line_no,
            row_type=row_type,
            entry_type=self.entry_type,
            reference=self.reference,
            description=description,
            transaction_date=self.transaction_date,
            entry_id=self.entry_id,
            created_by=self.created_by,
            **fields
        )
        self.rows.append(row)
        return row

    def cash_leg(
        self,
        row_type: RegistryType,
        account_id: str,
        currency_id: str,
        delta: Decimal,
        description: str,
        cash_line_id: Optional[str] = None,
        mirror_cash: bool = False
    ) -> RegistryRow:
        """
        Move delta on an account's cash balance and record the row.

        mirror_cash also fills cash_debit/cash_credit, as bank, PDC and
        maturity rows carry both.
        """
        amount = abs(delta)
        fields = {'debit': amount} if delta < ZERO else {'credit': amount}
        if mirror_cash:
            fields.update({'cash_debit': amount} if delta < ZERO else {'cash_credit': amount})

        self.cash_deltas.append((account_id, currency_id, delta))
        return self._append(
            row_type, description,
            account_id=account_id, currency_id=currency_id, cash_line_id=cash_line_id,
            **fields
        )

    def gold_leg(
        self,
        account_id: str,
        delta: Decimal,
        description: str,
        metal_id: Optional[str] = None,
        gross_weight: Optional[Decimal] = None,
        purity: Optional[Decimal] = None
    ) -> RegistryRow:
        """Move delta grams on an account's gold balance"""
        grams = abs(delta)
        fields = {'gold_debit': grams} if delta < ZERO else {'gold_credit': grams}
        self.gold_deltas.append((account_id, delta))
        return self._append(
            RegistryType.PARTY_GOLD_BALANCE, description,
            account_id=account_id, metal_id=metal_id,
            gross_weight=gross_weight, pure_weight=grams, purity=purity,
            **fields
        )

    def stock_leg(
        self,
        metal_id: str,
        delta: Decimal,
        description: str,
        gross_weight: Optional[Decimal] = None,
        purity: Optional[Decimal] = None
    ) -> RegistryRow:
        """
        Record a stock movement of delta grams. Stock is an asset: metal
        coming in is a debit. No account balance is touched.
        """
        grams = abs(delta)
        fields = {'gold_debit': grams} if delta > ZERO else {'gold_credit': grams}
        return self._append(
            RegistryType.GOLD_STOCK, description,
            metal_id=metal_id, gross_weight=gross_weight, pure_weight=grams, purity=purity,
            **fields
        )

    def memo(self, row_type: RegistryType, description: str, **fields) -> RegistryRow:
        """Informational row with no balance effect"""
        if not row_type.is_memo:
            raise ValueError(f"{row_type.value} is not a memo row type")
        return self._append(row_type, description, **fields)

    def apply_balances(self, balances: BalanceStore, sign: int = 1) -> None:
        """Apply (sign=1) or undo (sign=-1) the batch's balance movements"""
        for account_id, currency_id, delta in self.cash_deltas:
            balances.adjust_cash(account_id, currency_id, delta * sign)
        for account_id, delta in self.gold_deltas:
            balances.adjust_gold(account_id, delta * sign)

    def commit(self, registry: Registry, balances: BalanceStore) -> List[RegistryRow]:
        """Post the rows, then apply the balance movements"""
        posted = registry.post(self.rows)
        self.apply_balances(balances)
        return posted
