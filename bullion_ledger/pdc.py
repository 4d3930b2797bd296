"""
Post-dated cheque lifecycle

A post-dated cheque parks its settlement in the bank's PDC issue or PDC
receipt account until it matures. From pending a cheque moves to exactly one
of cleared, bounced or cancelled:

    clear   PDC account released, bank account settled
    mature  same as clear, posted by the maturity sweep as PDC_MATURITY
    bounce  PDC account released, party effect undone
    cancel  same as bounce, for a voucher withdrawn before maturity

Sign convention follows the ledger: s = +1 for receipts, -1 for payments.
At posting the party moved by +s*amount and the PDC account by -s*amount.
"""

from decimal import Decimal
from datetime import date, datetime, timezone
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Union
import uuid

from .storage import StorageInterface, StorageRecord
from .audit import AuditTrail, AuditEventType
from .ledger import Registry, RegistryType
from .posting import PostingBatch
from .balances import BalanceStore
from .sequence import SequenceGenerator
from .currency import CurrencyRegistry
from .entries import Entry, CashLine, EntryRepository, PDCStatus
from .dates import Today, today_utc, parse_date, format_date
from .exceptions import InvalidStateError, NotFoundError
from .logging_config import get_logger, log_action


logger = get_logger("bullion.pdc")


@dataclass
class PDCSchedule(StorageRecord):
    """Maturity schedule of one post-dated cheque line"""
    entry_id: str
    cash_line_id: str
    cash_item_index: int
    voucher_code: str
    entry_type: str
    party_id: str
    currency_id: str
    amount: Decimal
    cheque_date: date
    maturity_posting_date: date
    pdc_account_id: str
    bank_account_id: str
    pdc_status: PDCStatus = PDCStatus.PENDING
    processed_at: Optional[datetime] = None
    processed_by: Optional[str] = None
    remarks: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'created_at': self.created_at.isoformat(),
            'updated_at': self.updated_at.isoformat(),
            'entry_id': self.entry_id,
            'cash_line_id': self.cash_line_id,
            'cash_item_index': self.cash_item_index,
            'voucher_code': self.voucher_code,
            'entry_type': self.entry_type,
            'party_id': self.party_id,
            'currency_id': self.currency_id,
            'amount': str(self.amount),
            'cheque_date': format_date(self.cheque_date),
            'maturity_posting_date': format_date(self.maturity_posting_date),
            'pdc_account_id': self.pdc_account_id,
            'bank_account_id': self.bank_account_id,
            'pdc_status': self.pdc_status.value,
            'processed_at': self.processed_at.isoformat() if self.processed_at else None,
            'processed_by': self.processed_by,
            'remarks': self.remarks
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'PDCSchedule':
        return cls(
            id=data['id'],
            created_at=datetime.fromisoformat(data['created_at']),
            updated_at=datetime.fromisoformat(data['updated_at']),
            entry_id=data['entry_id'],
            cash_line_id=data['cash_line_id'],
            cash_item_index=data['cash_item_index'],
            voucher_code=data['voucher_code'],
            entry_type=data['entry_type'],
            party_id=data['party_id'],
            currency_id=data['currency_id'],
            amount=Decimal(data['amount']),
            cheque_date=parse_date(data['cheque_date']),
            maturity_posting_date=parse_date(data['maturity_posting_date']),
            pdc_account_id=data['pdc_account_id'],
            bank_account_id=data['bank_account_id'],
            pdc_status=PDCStatus(data['pdc_status']),
            processed_at=datetime.fromisoformat(data['processed_at']) if data.get('processed_at') else None,
            processed_by=data.get('processed_by'),
            remarks=data.get('remarks')
        )


_AUDIT_EVENTS = {
    PDCStatus.CLEARED: AuditEventType.PDC_CLEARED,
    PDCStatus.BOUNCED: AuditEventType.PDC_BOUNCED,
    PDCStatus.CANCELLED: AuditEventType.PDC_CANCELLED,
}


class PDCLifecycleManager:
    """
    Creates PDC schedules and drives their transitions
    """

    def __init__(
        self,
        storage: StorageInterface,
        entries: EntryRepository,
        registry: Registry,
        balances: BalanceStore,
        sequence: SequenceGenerator,
        currencies: CurrencyRegistry,
        audit_trail: AuditTrail,
        today: Today = today_utc
    ):
        self.storage = storage
        self.entries = entries
        self.registry = registry
        self.balances = balances
        self.sequence = sequence
        self.currencies = currencies
        self.audit_trail = audit_trail
        self.today = today
        self.table_name = "pdc_schedules"

    # Schedules

    def schedule(self, entry: Entry, line: CashLine, user_id: Optional[str] = None) -> PDCSchedule:
        """Create the pending schedule for a line just posted through a PDC account"""
        now = datetime.now(timezone.utc)
        schedule = PDCSchedule(
            id=str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            entry_id=entry.id,
            cash_line_id=line.line_id,
            cash_item_index=entry.cash_index(line.line_id),
            voucher_code=entry.voucher_code,
            entry_type=entry.entry_type.value,
            party_id=entry.party_id,
            currency_id=line.currency_id,
            amount=line.amount,
            cheque_date=line.cheque_date,
            maturity_posting_date=line.maturity_posting_date,
            pdc_account_id=line.pdc_account_id,
            bank_account_id=line.bank_account_id,
            remarks=line.remarks or entry.remarks
        )
        self.storage.insert(self.table_name, schedule.id, schedule.to_dict())

        self.audit_trail.log_event(
            event_type=AuditEventType.PDC_SCHEDULED,
            entity_type="pdc_schedule",
            entity_id=schedule.id,
            metadata={
                'voucher_code': entry.voucher_code,
                'cash_line_id': line.line_id,
                'maturity_posting_date': schedule.maturity_posting_date
            },
            user_id=user_id
        )
        return schedule

    def get_schedule(self, schedule_id: str) -> Optional[PDCSchedule]:
        data = self.storage.load(self.table_name, schedule_id)
        if data:
            return PDCSchedule.from_dict(data)
        return None

    def save_schedule(self, schedule: PDCSchedule) -> None:
        schedule.updated_at = datetime.now(timezone.utc)
        self.storage.save(self.table_name, schedule.id, schedule.to_dict())

    def schedules_for_entry(self, entry_id: str) -> List[PDCSchedule]:
        return [PDCSchedule.from_dict(d) for d in self.storage.find(self.table_name, {'entry_id': entry_id})]

    def pending_schedule_for(self, entry_id: str, cash_line_id: str) -> Optional[PDCSchedule]:
        for data in self.storage.find(self.table_name, {
            'entry_id': entry_id,
            'cash_line_id': cash_line_id,
            'pdc_status': PDCStatus.PENDING.value
        }):
            return PDCSchedule.from_dict(data)
        return None

    def due_schedules(self, as_of: date) -> List[PDCSchedule]:
        """Pending schedules whose maturity posting date is on or before as_of"""
        due = [
            PDCSchedule.from_dict(d)
            for d in self.storage.find(self.table_name, {'pdc_status': PDCStatus.PENDING.value})
        ]
        due = [s for s in due if s.maturity_posting_date <= as_of]
        due.sort(key=lambda s: (s.maturity_posting_date, s.created_at))
        return due

    def cancel_stray_schedules(self, entry: Entry, user_id: Optional[str] = None) -> int:
        """Cancel pending schedules that no longer match a pending PDC line of the entry"""
        pending_lines = {
            line.line_id for line in entry.cash
            if entry.is_approved and line.is_pdc and line.pdc_status == PDCStatus.PENDING
        }
        cancelled = 0
        for data in self.storage.find(self.table_name, {
            'voucher_code': entry.voucher_code,
            'pdc_status': PDCStatus.PENDING.value
        }):
            schedule = PDCSchedule.from_dict(data)
            if schedule.cash_line_id in pending_lines:
                continue
            self._close_schedule(schedule, PDCStatus.CANCELLED, user_id)
            cancelled += 1
        return cancelled

    def _close_schedule(self, schedule: PDCSchedule, status: PDCStatus, user_id: Optional[str]) -> None:
        schedule.pdc_status = status
        schedule.processed_at = datetime.now(timezone.utc)
        schedule.processed_by = user_id
        self.save_schedule(schedule)

    # Transitions on an already loaded entry; callers persist the entry

    @staticmethod
    def _sign(entry: Entry) -> int:
        return 1 if entry.entry_type.is_receipt else -1

    def _batch(self, entry: Entry, user_id: Optional[str],
               posting_date: Optional[date] = None) -> PostingBatch:
        return PostingBatch(
            transaction_id=self.sequence.generate_transaction_id(),
            entry_type=entry.entry_type.value,
            reference=entry.voucher_code,
            transaction_date=posting_date or self.today(),
            entry_id=entry.id,
            created_by=user_id
        )

    def _require_pending(self, entry: Entry, line: CashLine, action: str) -> None:
        if not line.is_pdc or line.pdc_status != PDCStatus.PENDING:
            raise InvalidStateError(
                f"Cannot {action}: cash line {line.line_id} is not a pending PDC",
                {"entry_id": entry.id, "line_id": line.line_id,
                 "pdc_status": line.pdc_status.value if line.pdc_status else None}
            )

    def settle_line(self, entry: Entry, line: CashLine, user_id: Optional[str] = None,
                    matured: bool = False, posting_date: Optional[date] = None) -> PostingBatch:
        """
        Move a pending cheque from the PDC account to the bank account.

        The rows are dated posting_date when given (the maturity sweep passes
        the day it sweeps for), otherwise today.
        """
        self._require_pending(entry, line, "clear")
        s = self._sign(entry)
        amount = line.amount
        code = self.currencies.require_currency(line.currency_id).code
        side = "PDC Receipt" if s > 0 else "PDC Issue"

        batch = self._batch(entry, user_id, posting_date)
        if matured:
            batch.cash_leg(RegistryType.PDC_MATURITY, line.pdc_account_id, line.currency_id, s * amount,
                           f"PDC Matured - {side} released - {code} {amount}",
                           cash_line_id=line.line_id, mirror_cash=True)
            batch.cash_leg(RegistryType.PDC_MATURITY, line.bank_account_id, line.currency_id, -s * amount,
                           f"PDC Matured to Bank - {code} {amount}",
                           cash_line_id=line.line_id, mirror_cash=True)
        else:
            batch.cash_leg(RegistryType.PDC_ENTRY, line.pdc_account_id, line.currency_id, s * amount,
                           f"PDC Cleared - {side} reversed - {code} {amount}",
                           cash_line_id=line.line_id, mirror_cash=True)
            batch.cash_leg(RegistryType.BULLION_ENTRY, line.bank_account_id, line.currency_id, -s * amount,
                           f"PDC Cleared to Bank - {code} {amount}",
                           cash_line_id=line.line_id, mirror_cash=True)
        batch.commit(self.registry, self.balances)

        line.pdc_status = PDCStatus.CLEARED
        self._finish(entry, line, PDCStatus.CLEARED, user_id, matured=matured)
        return batch

    def void_line(self, entry: Entry, line: CashLine, status: PDCStatus,
                  user_id: Optional[str] = None) -> PostingBatch:
        """Undo a pending cheque entirely: PDC account and party both restored"""
        action = "bounce" if status == PDCStatus.BOUNCED else "cancel"
        self._require_pending(entry, line, action)
        s = self._sign(entry)
        amount = line.amount
        code = self.currencies.require_currency(line.currency_id).code
        label = "Bounced" if status == PDCStatus.BOUNCED else "Cancelled"

        batch = self._batch(entry, user_id)
        batch.cash_leg(RegistryType.PDC_ENTRY, line.pdc_account_id, line.currency_id, s * amount,
                       f"PDC {label} - {code} {amount}",
                       cash_line_id=line.line_id, mirror_cash=True)
        batch.cash_leg(RegistryType.PARTY_CASH_BALANCE, entry.party_id, line.currency_id, -s * amount,
                       f"PDC {label} - party reversal - {code} {amount}",
                       cash_line_id=line.line_id)
        batch.commit(self.registry, self.balances)

        line.pdc_status = status
        if status == PDCStatus.CANCELLED:
            line.is_pdc = False
        self._finish(entry, line, status, user_id)
        return batch

    def _finish(self, entry: Entry, line: CashLine, status: PDCStatus,
                user_id: Optional[str], matured: bool = False) -> None:
        schedule = self.pending_schedule_for(entry.id, line.line_id)
        if schedule is not None:
            self._close_schedule(schedule, status, user_id)

        event_type = AuditEventType.PDC_MATURED if matured else _AUDIT_EVENTS[status]
        self.audit_trail.log_event(
            event_type=event_type,
            entity_type="entry",
            entity_id=entry.id,
            metadata={
                'voucher_code': entry.voucher_code,
                'cash_line_id': line.line_id,
                'schedule_id': schedule.id if schedule else None,
                'amount': line.amount
            },
            user_id=user_id
        )
        log_action(
            logger, "info", f"PDC {'matured' if matured else status.value}",
            user_id=user_id, action=f"pdc_{'matured' if matured else status.value}",
            resource=entry.voucher_code,
            extra={'entry_id': entry.id, 'cash_line_id': line.line_id, 'amount': str(line.amount)}
        )

    # Public operations

    def _transition(self, entry_id: str, line_ref: Union[str, int], apply) -> Entry:
        with self.storage.atomic():
            entry = self.entries.require(entry_id)
            line = entry.find_cash_line(line_ref)
            apply(entry, line)
            entry.version += 1
            self.entries.save(entry)
            return entry

    def clear_pdc(self, entry_id: str, line_ref: Union[str, int], user_id: Optional[str] = None) -> Entry:
        """Clear a pending cheque to the bank account"""
        return self._transition(entry_id, line_ref,
                                lambda entry, line: self.settle_line(entry, line, user_id))

    def bounce_pdc(self, entry_id: str, line_ref: Union[str, int], user_id: Optional[str] = None) -> Entry:
        """Bounce a pending cheque; the party effect is undone"""
        return self._transition(entry_id, line_ref,
                                lambda entry, line: self.void_line(entry, line, PDCStatus.BOUNCED, user_id))

    def cancel_pdc(self, entry_id: str, line_ref: Union[str, int], user_id: Optional[str] = None) -> Entry:
        """Cancel a pending cheque of a withdrawn voucher"""
        return self._transition(entry_id, line_ref,
                                lambda entry, line: self.void_line(entry, line, PDCStatus.CANCELLED, user_id))

    def require_schedule(self, schedule_id: str) -> PDCSchedule:
        schedule = self.get_schedule(schedule_id)
        if schedule is None:
            raise NotFoundError(f"PDC schedule {schedule_id} not found", {"schedule_id": schedule_id})
        return schedule
