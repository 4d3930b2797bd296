"""
Entry Orchestrator

Top-level voucher use cases: create, edit, change status and delete. Every
operation validates first, then runs as one atomic storage unit, so a
rejected or failed call leaves entries, ledger rows, balances, schedules and
inventory exactly as they were.

Ledger and balance effects exist only while an entry is approved. Leaving
approved (status change, edit or delete) reverses the handler effect and
then removes everything tagged with the voucher code.
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Union
import uuid

from .storage import StorageInterface
from .audit import AuditTrail, AuditEventType
from .ledger import Registry
from .inventory import InventoryService
from .entries import (
    Entry, EntryType, EntryStatus, EntryRepository, CashType,
    parse_enum, parse_lines, parse_request_date
)
from .handlers import EntryHandler, MetalHandler, CashHandler
from .pdc import PDCLifecycleManager
from .dates import Today, today_utc
from .exceptions import InvalidEntryError, InvalidStateError
from .logging_config import get_logger, log_action


logger = get_logger("bullion.entries")


class EntryOrchestrator:
    """
    Voucher lifecycle manager
    """

    def __init__(
        self,
        storage: StorageInterface,
        entries: EntryRepository,
        metal_handler: MetalHandler,
        cash_handler: CashHandler,
        pdc_manager: PDCLifecycleManager,
        registry: Registry,
        inventory: InventoryService,
        audit_trail: AuditTrail,
        today: Today = today_utc,
        weight_places: int = 4
    ):
        self.storage = storage
        self.entries = entries
        self.pdc_manager = pdc_manager
        self.registry = registry
        self.inventory = inventory
        self.audit_trail = audit_trail
        self.today = today
        self.weight_places = weight_places

        self._handlers: Dict[EntryType, EntryHandler] = {
            EntryType.METAL_RECEIPT: metal_handler,
            EntryType.METAL_PAYMENT: metal_handler,
            EntryType.CASH_RECEIPT: cash_handler,
            EntryType.CASH_PAYMENT: cash_handler,
            EntryType.CURRENCY_RECEIPT: cash_handler,
            EntryType.CURRENCY_PAYMENT: cash_handler,
        }
        missing = [t.value for t in EntryType if t not in self._handlers]
        if missing:
            raise RuntimeError(f"No handler registered for entry types: {', '.join(missing)}")

    def handler_for(self, entry_type: EntryType) -> EntryHandler:
        return self._handlers[entry_type]

    # Building entries from requests

    def _build_entry(self, data: Dict[str, Any], base: Optional[Entry] = None) -> Entry:
        raw_type = data.get('type', data.get('entry_type'))
        if raw_type is None and base is not None:
            entry_type = base.entry_type
        else:
            entry_type = parse_enum(EntryType, raw_type, 'type')

        raw_status = data.get('status')
        if raw_status is None:
            status = base.status if base else EntryStatus.DRAFT
        else:
            status = parse_enum(EntryStatus, raw_status, 'status')

        party_id = data.get('party_id') or (base.party_id if base else None)
        if not party_id:
            raise InvalidEntryError("party_id is required", {"field": "party_id"})

        voucher_code = data.get('voucher_code') or (base.voucher_code if base else None)
        if not voucher_code:
            raise InvalidEntryError("voucher_code is required", {"field": "voucher_code"})

        voucher_date = (parse_request_date(data.get('voucher_date'), 'voucher_date')
                        or (base.voucher_date if base else self.today()))

        lines = data
        if base is not None and 'stock_items' not in data and 'cash' not in data:
            lines = {
                'stock_items': [item.to_dict() for item in base.stock_items],
                'cash': [line.to_dict() for line in base.cash],
            }
        stock_items, cash = parse_lines(entry_type, lines, self.weight_places)

        now = datetime.now(timezone.utc)
        return Entry(
            id=base.id if base else str(uuid.uuid4()),
            created_at=base.created_at if base else now,
            updated_at=now,
            entry_type=entry_type,
            status=status,
            party_id=party_id,
            voucher_code=voucher_code,
            voucher_date=voucher_date,
            stock_items=stock_items,
            cash=cash,
            entered_by=data.get('entered_by') or (base.entered_by if base else None),
            remarks=data.get('remarks', base.remarks if base else None),
            version=base.version + 1 if base else 1
        )

    def _cheques_not_today(self, entry: Entry) -> List[str]:
        today = self.today()
        return [
            line.line_id for line in entry.cash
            if line.cash_type == CashType.CHEQUE and line.cheque_date != today
        ]

    # Posting and reversal

    def _post(self, entry: Entry, user_id: Optional[str]) -> None:
        self.handler_for(entry.entry_type).apply(entry, user_id)
        self.audit_trail.log_event(
            event_type=AuditEventType.ENTRY_POSTED,
            entity_type="entry",
            entity_id=entry.id,
            metadata={'voucher_code': entry.voucher_code, 'type': entry.entry_type},
            user_id=user_id
        )

    def _reverse(self, entry: Entry, user_id: Optional[str]) -> None:
        self.handler_for(entry.entry_type).reverse(entry, user_id)
        self.cleanup(entry, user_id)
        for line in entry.cash:
            line.clear_posting_state()
        self.audit_trail.log_event(
            event_type=AuditEventType.ENTRY_REVERSED,
            entity_type="entry",
            entity_id=entry.id,
            metadata={'voucher_code': entry.voucher_code, 'type': entry.entry_type},
            user_id=user_id
        )

    def cleanup(self, entry: Entry, user_id: Optional[str] = None) -> Dict[str, int]:
        """
        Remove every trace of a voucher: its ledger rows, its inventory logs
        and any schedule still pending for it.
        """
        removed = {
            'ledger_rows': self.registry.delete_by_reference(entry.voucher_code, user_id),
            'inventory_logs': self.inventory.delete_logs_for_voucher(entry.voucher_code),
            'schedules_cancelled': self.pdc_manager.cancel_stray_schedules(entry, user_id),
        }
        log_action(logger, "info", "Voucher cleaned up", user_id=user_id,
                   action="entry_cleanup", resource=entry.voucher_code, extra=removed)
        return removed

    # Public operations

    def create_entry(self, data: Dict[str, Any], user_id: Optional[str] = None) -> Entry:
        """
        Create a voucher; an approved voucher is posted immediately.

        Raises:
            InvalidEntryError: Bad type, shape, amounts, references or PDC configuration
            NotFoundError: Party, account or currency missing
        """
        entry = self._build_entry(data)
        entry.entered_by = entry.entered_by or user_id

        if entry.is_approved:
            self.handler_for(entry.entry_type).validate(entry)

        with self.storage.atomic():
            self.entries.save(entry)
            self.audit_trail.log_event(
                event_type=AuditEventType.ENTRY_CREATED,
                entity_type="entry",
                entity_id=entry.id,
                metadata={'voucher_code': entry.voucher_code, 'type': entry.entry_type,
                          'status': entry.status},
                user_id=user_id
            )
            if entry.is_approved:
                self._post(entry, user_id)
                self.entries.save(entry)

        log_action(logger, "info", "Entry created", user_id=user_id, action="entry_created",
                   resource=entry.voucher_code,
                   extra={'entry_id': entry.id, 'type': entry.entry_type.value, 'status': entry.status.value})
        return entry

    def get_entry(self, entry_id: str) -> Entry:
        return self.entries.require(entry_id)

    def edit_entry(self, entry_id: str, data: Dict[str, Any], user_id: Optional[str] = None) -> Entry:
        """
        Replace a voucher's fields. An approved voucher is reversed first
        and re-posted from the new fields. A voucher with a cheque not dated
        today comes out of an edit as draft.

        Raises:
            InvalidEntryError: Invalid new fields or an attempt to change the voucher code
            NotFoundError: Unknown entry
        """
        current = self.entries.require(entry_id)
        new_code = data.get('voucher_code')
        if new_code and new_code != current.voucher_code:
            raise InvalidEntryError(
                "voucher_code cannot be changed",
                {"voucher_code": current.voucher_code}
            )

        updated = self._build_entry(data, base=current)
        if updated.is_approved and self._cheques_not_today(updated):
            updated.status = EntryStatus.DRAFT

        if updated.is_approved:
            self.handler_for(updated.entry_type).validate(updated)

        with self.storage.atomic():
            if current.is_approved:
                self._reverse(current, user_id)
            self.entries.save(updated)
            if updated.is_approved:
                self._post(updated, user_id)
                self.entries.save(updated)
            self.audit_trail.log_event(
                event_type=AuditEventType.ENTRY_UPDATED,
                entity_type="entry",
                entity_id=updated.id,
                metadata={'voucher_code': updated.voucher_code, 'type': updated.entry_type,
                          'status': updated.status, 'previous_status': current.status},
                user_id=user_id
            )

        log_action(logger, "info", "Entry edited", user_id=user_id, action="entry_edited",
                   resource=updated.voucher_code,
                   extra={'entry_id': updated.id, 'status': updated.status.value,
                          'reversed': current.is_approved})
        return updated

    def update_status(self, entry_id: str, status: Union[str, EntryStatus],
                      user_id: Optional[str] = None) -> Entry:
        """
        Move a voucher between draft and approved.

        Raises:
            InvalidStateError: Approving a voucher whose cheque is not dated today
        """
        new_status = parse_enum(EntryStatus, status, 'status')
        entry = self.entries.require(entry_id)
        previous = entry.status
        if new_status == previous:
            return entry

        if new_status == EntryStatus.APPROVED:
            not_today = self._cheques_not_today(entry)
            if not_today:
                raise InvalidStateError(
                    "Cheque entries can only be approved when the cheque is dated today",
                    {"entry_id": entry.id, "line_ids": not_today}
                )
            entry.status = EntryStatus.APPROVED
            self.handler_for(entry.entry_type).validate(entry)

        with self.storage.atomic():
            if new_status == EntryStatus.APPROVED:
                self._post(entry, user_id)
            else:
                self._reverse(entry, user_id)
                entry.status = EntryStatus.DRAFT
            entry.version += 1
            self.entries.save(entry)
            self.audit_trail.log_event(
                event_type=AuditEventType.ENTRY_STATUS_CHANGED,
                entity_type="entry",
                entity_id=entry.id,
                metadata={'voucher_code': entry.voucher_code, 'from': previous, 'to': new_status},
                user_id=user_id
            )

        log_action(logger, "info", "Entry status changed", user_id=user_id,
                   action="entry_status_changed", resource=entry.voucher_code,
                   extra={'entry_id': entry.id, 'from': previous.value, 'to': new_status.value})
        return entry

    def delete_entry(self, entry_id: str, user_id: Optional[str] = None) -> Entry:
        """Reverse an approved voucher, then remove it with all its ledger rows"""
        entry = self.entries.require(entry_id)

        with self.storage.atomic():
            if entry.is_approved:
                self._reverse(entry, user_id)
            else:
                self.cleanup(entry, user_id)
            self.entries.delete(entry.id)
            self.audit_trail.log_event(
                event_type=AuditEventType.ENTRY_DELETED,
                entity_type="entry",
                entity_id=entry.id,
                metadata={'voucher_code': entry.voucher_code, 'status': entry.status},
                user_id=user_id
            )

        log_action(logger, "info", "Entry deleted", user_id=user_id, action="entry_deleted",
                   resource=entry.voucher_code, extra={'entry_id': entry.id})
        return entry

    def clear_pdc(self, entry_id: str, line_ref: Union[str, int], user_id: Optional[str] = None) -> Entry:
        return self.pdc_manager.clear_pdc(entry_id, line_ref, user_id)

    def bounce_pdc(self, entry_id: str, line_ref: Union[str, int], user_id: Optional[str] = None) -> Entry:
        return self.pdc_manager.bounce_pdc(entry_id, line_ref, user_id)

    def cancel_pdc(self, entry_id: str, line_ref: Union[str, int], user_id: Optional[str] = None) -> Entry:
        return self.pdc_manager.cancel_pdc(entry_id, line_ref, user_id)
