"""
Ledger Registry

Append-only store of double-entry registry rows. Rows are never updated in
place: a voucher's rows are appended together under one transaction id and
removed together by voucher reference when the voucher is reversed.

Balance-bearing rows of one posting must net to zero per currency and in
gold grams. Memo rows (gold asset mirror, FX, VAT, card charge) are
informational and excluded from that check.
"""

from decimal import Decimal
from datetime import date, datetime, timezone
from dataclasses import dataclass, field, asdict
from typing import Any, Dict, Iterable, List, Optional
from enum import Enum

from .storage import StorageInterface, DuplicateRecordError
from .audit import AuditTrail, AuditEventType
from .exceptions import DuplicateTransactionError, UnbalancedPostingError
from .dates import parse_date
from .logging_config import get_logger, log_action


logger = get_logger("bullion.ledger")

ZERO = Decimal('0')


class RegistryType(Enum):
    """Semantic ledger buckets"""
    PARTY_CASH_BALANCE = "PARTY_CASH_BALANCE"
    PARTY_GOLD_BALANCE = "PARTY_GOLD_BALANCE"
    GOLD_STOCK = "GOLD_STOCK"
    GOLD = "GOLD"
    BULLION_ENTRY = "BULLION_ENTRY"
    PDC_ENTRY = "PDC_ENTRY"
    PDC_MATURITY = "PDC_MATURITY"
    FX_EXCHANGE = "FX_EXCHANGE"
    VAT_AMOUNT = "VAT_AMOUNT"
    CARD_CHARGE = "CARD_CHARGE"

    @property
    def is_memo(self) -> bool:
        return self in MEMO_TYPES


MEMO_TYPES = frozenset({
    RegistryType.GOLD,
    RegistryType.FX_EXCHANGE,
    RegistryType.VAT_AMOUNT,
    RegistryType.CARD_CHARGE,
})

_DECIMAL_FIELDS = (
    'debit', 'credit', 'cash_debit', 'cash_credit', 'gold_debit', 'gold_credit',
    'gross_weight', 'pure_weight', 'purity'
)


@dataclass(frozen=True)
class RegistryRow:
    """One immutable ledger posting"""
    id: str
    transaction_id: str
    line_no: int
    row_type: RegistryType
    entry_type: str
    reference: str
    description: str
    transaction_date: date
    entry_id: Optional[str] = None
    account_id: Optional[str] = None
    currency_id: Optional[str] = None
    metal_id: Optional[str] = None
    cash_line_id: Optional[str] = None
    debit: Decimal = ZERO
    credit: Decimal = ZERO
    cash_debit: Decimal = ZERO
    cash_credit: Decimal = ZERO
    gold_debit: Decimal = ZERO
    gold_credit: Decimal = ZERO
    gross_weight: Optional[Decimal] = None
    pure_weight: Optional[Decimal] = None
    purity: Optional[Decimal] = None
    created_by: Optional[str] = None
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def is_memo(self) -> bool:
        return self.row_type.is_memo

    def to_dict(self) -> Dict[str, Any]:
        result = asdict(self)
        result['row_type'] = self.row_type.value
        result['transaction_date'] = self.transaction_date.isoformat()
        result['created_at'] = self.created_at.isoformat()
        for key in _DECIMAL_FIELDS:
            if result[key] is not None:
                result[key] = str(result[key])
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'RegistryRow':
        data = dict(data)
        data['row_type'] = RegistryType(data['row_type'])
        data['transaction_date'] = parse_date(data['transaction_date'])
        data['created_at'] = datetime.fromisoformat(data['created_at'])
        for key in _DECIMAL_FIELDS:
            if data.get(key) is not None:
                data[key] = Decimal(data[key])
        return cls(**data)


def check_balanced(rows: Iterable[RegistryRow]) -> Dict[str, Any]:
    """
    Per-dimension debit/credit totals of the balance-bearing rows.

    Returns:
        {'currencies': {currency_id: {debit, credit, balanced}},
         'gold': {debit, credit, balanced}, 'balanced': bool}
    """
    currencies: Dict[str, Dict[str, Decimal]] = {}
    gold = {'debit': ZERO, 'credit': ZERO}

    for row in rows:
        if row.is_memo:
            continue
        if row.debit or row.credit:
            totals = currencies.setdefault(row.currency_id or "", {'debit': ZERO, 'credit': ZERO})
            totals['debit'] += row.debit
            totals['credit'] += row.credit
        gold['debit'] += row.gold_debit
        gold['credit'] += row.gold_credit

    result = {'currencies': {}, 'gold': dict(gold, balanced=gold['debit'] == gold['credit'])}
    for currency_id, totals in currencies.items():
        result['currencies'][currency_id] = dict(totals, balanced=totals['debit'] == totals['credit'])

    result['balanced'] = result['gold']['balanced'] and all(
        totals['balanced'] for totals in result['currencies'].values()
    )
    return result


class Registry:
    """
    Ledger poster and audit-trail reconstruction over registry rows
    """

    def __init__(self, storage: StorageInterface, audit_trail: AuditTrail):
        self.storage = storage
        self.audit_trail = audit_trail
        self.table_name = "registry"

    def post(self, rows: List[RegistryRow]) -> List[RegistryRow]:
        """
        Append a posting unit atomically.

        Raises:
            DuplicateTransactionError: If a transaction id is already in the ledger
            UnbalancedPostingError: If balance-bearing rows do not net to zero
        """
        if not rows:
            return []

        by_transaction: Dict[str, List[RegistryRow]] = {}
        for row in rows:
            by_transaction.setdefault(row.transaction_id, []).append(row)

        for transaction_id, group in by_transaction.items():
            check = check_balanced(group)
            if not check['balanced']:
                raise UnbalancedPostingError(
                    f"Posting {transaction_id} does not balance",
                    {'transaction_id': transaction_id, 'totals': _stringify(check)}
                )

        with self.storage.atomic():
            for transaction_id in by_transaction:
                if self.storage.find(self.table_name, {'transaction_id': transaction_id}):
                    raise DuplicateTransactionError(
                        f"Transaction {transaction_id} already posted",
                        {'transaction_id': transaction_id}
                    )
            for row in rows:
                try:
                    self.storage.insert(self.table_name, row.id, row.to_dict())
                except DuplicateRecordError as e:
                    raise DuplicateTransactionError(
                        f"Ledger row {row.id} already exists",
                        {'transaction_id': row.transaction_id}
                    ) from e

            for transaction_id, group in by_transaction.items():
                self.audit_trail.log_event(
                    event_type=AuditEventType.LEDGER_POSTED,
                    entity_type="ledger",
                    entity_id=transaction_id,
                    metadata={
                        'reference': group[0].reference,
                        'rows': len(group),
                        'types': sorted({r.row_type.value for r in group})
                    },
                    user_id=group[0].created_by
                )

        log_action(
            logger, "info", "Ledger rows posted",
            user_id=rows[0].created_by, action="ledger_post", resource=rows[0].reference,
            extra={'transactions': list(by_transaction), 'rows': len(rows)}
        )
        return rows

    def delete_by_reference(self, reference: str, user_id: Optional[str] = None) -> int:
        """Remove every row tagged with a voucher code; returns the number removed"""
        with self.storage.atomic():
            removed = self.storage.delete_where(self.table_name, {'reference': reference})
            if removed:
                self.audit_trail.log_event(
                    event_type=AuditEventType.LEDGER_ROWS_DELETED,
                    entity_type="ledger",
                    entity_id=reference,
                    metadata={'rows': removed},
                    user_id=user_id
                )

        log_action(logger, "info", "Ledger rows deleted", user_id=user_id,
                   action="ledger_delete", resource=reference, extra={'rows': removed})
        return removed

    def _rows(self, filters: Dict[str, Any]) -> List[RegistryRow]:
        rows = [RegistryRow.from_dict(data) for data in self.storage.find(self.table_name, filters)]
        rows.sort(key=lambda r: (r.transaction_date, r.transaction_id, r.line_no))
        return rows

    def rows_for_reference(self, reference: str) -> List[RegistryRow]:
        return self._rows({'reference': reference})

    def rows_for_transaction(self, transaction_id: str) -> List[RegistryRow]:
        return self._rows({'transaction_id': transaction_id})

    def rows_for_account(self, account_id: str) -> List[RegistryRow]:
        return self._rows({'account_id': account_id})

    def cash_position(self, account_id: str, currency_id: str, as_of: Optional[date] = None) -> Decimal:
        """Net credit minus debit of balance-bearing cash rows, up to and including as_of"""
        total = ZERO
        for row in self.rows_for_account(account_id):
            if row.is_memo or row.currency_id != currency_id:
                continue
            if as_of and row.transaction_date > as_of:
                continue
            total += row.credit - row.debit
        return total

    def gold_position(self, account_id: str, as_of: Optional[date] = None) -> Decimal:
        """Net gold credit minus debit in grams, up to and including as_of"""
        total = ZERO
        for row in self.rows_for_account(account_id):
            if row.is_memo or (as_of and row.transaction_date > as_of):
                continue
            total += row.gold_credit - row.gold_debit
        return total

    def opening_balance(self, party_id: str, as_of: date) -> Dict[str, Any]:
        """
        Party position carried into a day: party cash and gold rows dated
        strictly before as_of.

        Returns:
            {'cash': {currency_id: Decimal}, 'gold': Decimal}
        """
        cash: Dict[str, Decimal] = {}
        gold = ZERO
        for row in self.rows_for_account(party_id):
            if row.transaction_date >= as_of:
                continue
            if row.row_type == RegistryType.PARTY_CASH_BALANCE:
                cash[row.currency_id] = cash.get(row.currency_id, ZERO) + row.credit - row.debit
            elif row.row_type == RegistryType.PARTY_GOLD_BALANCE:
                gold += row.gold_credit - row.gold_debit
        return {'cash': cash, 'gold': gold}

    def type_balance(self, row_type: RegistryType, account_id: Optional[str] = None) -> Dict[str, Decimal]:
        """Debit/credit totals of one row type, optionally for one account"""
        filters: Dict[str, Any] = {'row_type': row_type.value}
        if account_id:
            filters['account_id'] = account_id

        totals = {'debit': ZERO, 'credit': ZERO, 'gold_debit': ZERO, 'gold_credit': ZERO}
        for row in self._rows(filters):
            totals['debit'] += row.debit
            totals['credit'] += row.credit
            totals['gold_debit'] += row.gold_debit
            totals['gold_credit'] += row.gold_credit
        totals['net'] = totals['credit'] - totals['debit']
        totals['gold_net'] = totals['gold_credit'] - totals['gold_debit']
        return totals

    def has_maturity_row(self, entry_id: str, reference: str, cash_line_id: str) -> bool:
        """True when a PDC maturity posting already exists for one cash line"""
        return bool(self.storage.find(self.table_name, {
            'row_type': RegistryType.PDC_MATURITY.value,
            'entry_id': entry_id,
            'reference': reference,
            'cash_line_id': cash_line_id
        }))

    def verify_reference(self, reference: str) -> Dict[str, Any]:
        """Per-dimension totals of one voucher's balance-bearing rows"""
        rows = self.rows_for_reference(reference)
        result = check_balanced(rows)
        result['reference'] = reference
        result['rows'] = len(rows)
        return result


def _stringify(value: Any) -> Any:
    if isinstance(value, dict):
        return {k: _stringify(v) for k, v in value.items()}
    if isinstance(value, Decimal):
        return str(value)
    return value
