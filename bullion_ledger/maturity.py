"""
PDC maturity sweep

Called by an external scheduler (typically once a day). Safe to run
repeatedly and alongside manual clear/bounce/cancel calls: every schedule
is re-checked inside its own atomic unit, and an existing PDC_MATURITY row
for the cash line means the posting already happened.
"""

from datetime import date
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from .storage import StorageInterface
from .audit import AuditTrail, AuditEventType
from .ledger import Registry
from .entries import EntryRepository, PDCStatus
from .pdc import PDCLifecycleManager, PDCSchedule
from .dates import Today, today_utc
from .exceptions import InvalidEntryError
from .logging_config import get_logger, log_action


logger = get_logger("bullion.maturity")


@dataclass
class MaturityResult:
    """Outcome of one sweep"""
    as_of: date
    processed: int = 0
    skipped: int = 0
    errors: List[Dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'as_of': self.as_of.isoformat(),
            'processed': self.processed,
            'skipped': self.skipped,
            'errors': list(self.errors)
        }


class MaturityProcessor:
    """Posts every pending PDC whose maturity posting date has arrived"""

    def __init__(
        self,
        storage: StorageInterface,
        entries: EntryRepository,
        pdc_manager: PDCLifecycleManager,
        registry: Registry,
        audit_trail: AuditTrail,
        today: Today = today_utc,
        default_actor: str = "system"
    ):
        self.storage = storage
        self.entries = entries
        self.pdc_manager = pdc_manager
        self.registry = registry
        self.audit_trail = audit_trail
        self.today = today
        self.default_actor = default_actor

    def process_matured_pdcs(self, triggered_by: Optional[str] = None,
                             as_of: Optional[date] = None) -> MaturityResult:
        """
        Run the sweep.

        A failure on one schedule is recorded in the result and the sweep
        moves on to the next one.

        Args:
            triggered_by: Actor recorded on the maturity postings
            as_of: Day to sweep for; defaults to today and may not be later than today

        Returns:
            MaturityResult with processed, skipped and per-schedule errors

        Raises:
            InvalidEntryError: If as_of is later than today
        """
        today = self.today()
        as_of = as_of or today
        if as_of > today:
            raise InvalidEntryError(
                f"Cannot sweep for {as_of.isoformat()}: later than today ({today.isoformat()})",
                {"field": "as_of", "as_of": as_of.isoformat()}
            )
        actor = triggered_by or self.default_actor
        result = MaturityResult(as_of=as_of)

        for schedule in self.pdc_manager.due_schedules(as_of):
            try:
                with self.storage.atomic():
                    posted = self._process_schedule(schedule.id, as_of, actor)
            except Exception as e:
                result.errors.append({
                    'schedule_id': schedule.id,
                    'voucher_code': schedule.voucher_code,
                    'error': str(e)
                })
                log_action(
                    logger, "error", "PDC maturity failed",
                    user_id=actor, action="pdc_maturity_failed", resource=schedule.voucher_code,
                    extra={'schedule_id': schedule.id}, exc_info=True
                )
                continue

            if posted:
                result.processed += 1
            else:
                result.skipped += 1

        self.audit_trail.log_event(
            event_type=AuditEventType.MATURITY_SWEEP,
            entity_type="pdc_schedule",
            entity_id=as_of.isoformat(),
            metadata={'processed': result.processed, 'skipped': result.skipped,
                      'errors': len(result.errors)},
            user_id=actor
        )
        log_action(logger, "info", "PDC maturity sweep finished", user_id=actor,
                   action="pdc_maturity_sweep", extra=result.to_dict())
        return result

    def _process_schedule(self, schedule_id: str, as_of: date, actor: str) -> bool:
        """Returns True when a maturity posting was made, False when skipped"""
        schedule = self.pdc_manager.get_schedule(schedule_id)
        if schedule is None or schedule.pdc_status != PDCStatus.PENDING:
            return False

        entry = self.entries.get(schedule.entry_id)
        if entry is None or not entry.is_approved:
            return False

        line = next((l for l in entry.cash if l.line_id == schedule.cash_line_id), None)
        if line is None or not line.is_pdc:
            return False

        if line.pdc_status != PDCStatus.PENDING:
            # Line settled elsewhere; bring the schedule in line with it
            self._reconcile(schedule, line.pdc_status, actor)
            return False

        if line.maturity_posting_date and line.maturity_posting_date > as_of:
            return False

        if self.registry.has_maturity_row(entry.id, entry.voucher_code, line.line_id):
            line.pdc_status = PDCStatus.CLEARED
            entry.version += 1
            self.entries.save(entry)
            self._reconcile(schedule, PDCStatus.CLEARED, actor)
            return False

        self.pdc_manager.settle_line(entry, line, actor, matured=True, posting_date=as_of)
        entry.version += 1
        self.entries.save(entry)
        return True

    def _reconcile(self, schedule: PDCSchedule, status: PDCStatus, actor: str) -> None:
        if schedule.pdc_status == status:
            return
        schedule.pdc_status = status
        schedule.processed_by = actor
        self.pdc_manager.save_schedule(schedule)
