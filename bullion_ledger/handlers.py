"""
Voucher type handlers

Each handler validates a voucher before anything is written, applies its
ledger and balance effect, and reverses that effect exactly. The metal
handler serves metal receipts and payments; the cash handler serves cash
and currency receipts and payments, including post-dated cheque routing.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import date
from typing import List, Optional

from .accounts import AccountStore
from .balances import BalanceStore
from .currency import CurrencyRegistry, calculate_fx_gain_loss, ZERO
from .entries import Entry, CashLine, CashType, PostingRoute, PDCStatus
from .inventory import InventoryService, InventoryMovement
from .ledger import Registry, RegistryType
from .pdc import PDCLifecycleManager
from .posting import PostingBatch
from .sequence import SequenceGenerator
from .dates import Today, today_utc, is_post_dated, add_days
from .exceptions import InvalidEntryError, PDCConfigurationError
from .logging_config import get_logger, log_action


logger = get_logger("bullion.entries")


class EntryHandler(ABC):
    """Posting behaviour of one family of voucher types"""

    def __init__(self, registry: Registry, balances: BalanceStore, sequence: SequenceGenerator):
        self.registry = registry
        self.balances = balances
        self.sequence = sequence

    @abstractmethod
    def validate(self, entry: Entry) -> None:
        """Raise before any write if the voucher cannot be posted"""

    @abstractmethod
    def apply(self, entry: Entry, user_id: Optional[str] = None) -> None:
        """Post the voucher; updates computed fields on the entry in place"""

    @abstractmethod
    def reverse(self, entry: Entry, user_id: Optional[str] = None) -> None:
        """Undo the balance effect of a previously applied voucher"""

    def _batch(self, entry: Entry, user_id: Optional[str], transaction_id: Optional[str] = None) -> PostingBatch:
        return PostingBatch(
            transaction_id=transaction_id or self.sequence.generate_transaction_id(),
            entry_type=entry.entry_type.value,
            reference=entry.voucher_code,
            transaction_date=entry.voucher_date,
            entry_id=entry.id,
            created_by=user_id
        )

    def _replay_batch(self, entry: Entry, user_id: Optional[str]) -> PostingBatch:
        # Balance-only rebuild of an earlier posting; never sent to the registry
        return self._batch(entry, user_id, transaction_id=f"{entry.voucher_code}-replay")


class MetalHandler(EntryHandler):
    """Metal receipt and metal payment"""

    def __init__(self, registry: Registry, balances: BalanceStore, sequence: SequenceGenerator,
                 accounts: AccountStore, inventory: InventoryService):
        super().__init__(registry, balances, sequence)
        self.accounts = accounts
        self.inventory = inventory

    def validate(self, entry: Entry) -> None:
        self.accounts.require_account(entry.party_id)
        if not entry.stock_items:
            raise InvalidEntryError(f"{entry.entry_type.value} requires stock_items")

    def _build(self, entry: Entry, batch: PostingBatch) -> PostingBatch:
        s = 1 if entry.entry_type.is_receipt else -1
        for item in entry.stock_items:
            desc = item.remarks or ("Metal receipt" if s > 0 else "Metal payment")
            batch.stock_leg(item.stock_id, s * item.pure_weight, desc,
                            gross_weight=item.gross_weight, purity=item.purity)
            gold_side = {'gold_credit': item.pure_weight} if s > 0 else {'gold_debit': item.pure_weight}
            batch.memo(RegistryType.GOLD, desc, metal_id=item.stock_id,
                       gross_weight=item.gross_weight, pure_weight=item.pure_weight,
                       purity=item.purity, **gold_side)
            batch.gold_leg(entry.party_id, s * item.pure_weight, desc, metal_id=item.stock_id,
                           gross_weight=item.gross_weight, purity=item.purity)
        return batch

    def _move_inventory(self, entry: Entry, outgoing: bool, user_id: Optional[str]) -> None:
        for item in entry.stock_items:
            self.inventory.update_inventory(
                InventoryMovement(
                    stock_id=item.stock_id,
                    gross_weight=item.gross_weight,
                    purity=item.purity,
                    pure_weight=item.pure_weight,
                    pieces=item.pieces,
                    voucher_code=entry.voucher_code,
                    voucher_type=entry.entry_type.value,
                    voucher_date=entry.voucher_date,
                    party_id=entry.party_id
                ),
                outgoing,
                user_id
            )

    def apply(self, entry: Entry, user_id: Optional[str] = None) -> None:
        self.validate(entry)
        self._build(entry, self._batch(entry, user_id)).commit(self.registry, self.balances)
        self._move_inventory(entry, outgoing=entry.entry_type.is_payment, user_id=user_id)

    def reverse(self, entry: Entry, user_id: Optional[str] = None) -> None:
        self._build(entry, self._replay_batch(entry, user_id)).apply_balances(self.balances, sign=-1)
        self._move_inventory(entry, outgoing=entry.entry_type.is_receipt, user_id=user_id)


@dataclass
class CashRoute:
    """Where one cash line's opposite side posts"""
    line: CashLine
    route: PostingRoute
    opposite_account_id: str
    bank_account_id: Optional[str] = None
    pdc_account_id: Optional[str] = None
    maturity_posting_date: Optional[date] = None


class CashHandler(EntryHandler):
    """Cash and currency receipts and payments"""

    def __init__(self, registry: Registry, balances: BalanceStore, sequence: SequenceGenerator,
                 accounts: AccountStore, currencies: CurrencyRegistry,
                 pdc_manager: PDCLifecycleManager, today: Today = today_utc):
        super().__init__(registry, balances, sequence)
        self.accounts = accounts
        self.currencies = currencies
        self.pdc_manager = pdc_manager
        self.today = today

    def is_pdc_line(self, entry: Entry, line: CashLine) -> bool:
        """PDC routing applies to currency vouchers paying by a cheque dated after today"""
        return (
            entry.entry_type.is_currency
            and line.cash_type == CashType.CHEQUE
            and is_post_dated(line.cheque_date, self.today())
        )

    def _route(self, entry: Entry, line: CashLine) -> CashRoute:
        self.currencies.require_currency(line.currency_id)

        if line.cash_type == CashType.TRANSFER:
            if not line.transfer_account_id:
                raise InvalidEntryError("Transfer line requires transfer_account_id",
                                        {"line_id": line.line_id})
            target = self.accounts.require_account(line.transfer_account_id)
            return CashRoute(line, PostingRoute.DIRECT, target.id)

        bank_id = line.cheque_bank_id or line.account_id
        if not bank_id:
            raise InvalidEntryError("Cash line requires account_id or cheque_bank_id",
                                    {"line_id": line.line_id})
        bank = self.accounts.require_account(bank_id)

        if not self.is_pdc_line(entry, line):
            return CashRoute(line, PostingRoute.DIRECT, bank.id,
                             bank_account_id=bank.id if line.is_cheque else None)

        detail = bank.bank_detail_for(line.bank_detail_id)
        if entry.entry_type.is_receipt:
            pdc_account = detail.pdc_receipt if detail else None
            days = detail.pdc_receipt_maturity_days if detail else None
            label = "PDC Receipt"
        else:
            pdc_account = detail.pdc_issue if detail else None
            days = detail.maturity_days if detail else None
            label = "PDC Issue"

        if not pdc_account:
            raise PDCConfigurationError(f"{label} account not configured for this bank",
                                        {"bank_account_id": bank.id, "line_id": line.line_id})
        if days is None or days < 0:
            raise PDCConfigurationError(f"{label} maturity days not configured for this bank",
                                        {"bank_account_id": bank.id, "line_id": line.line_id})
        self.accounts.require_account(pdc_account)

        return CashRoute(
            line, PostingRoute.PDC, pdc_account,
            bank_account_id=bank.id,
            pdc_account_id=pdc_account,
            maturity_posting_date=add_days(line.cheque_date, days)
        )

    def plan(self, entry: Entry) -> List[CashRoute]:
        self.accounts.require_account(entry.party_id)
        if not entry.cash:
            raise InvalidEntryError(f"{entry.entry_type.value} requires cash lines")
        return [self._route(entry, line) for line in entry.cash]

    def validate(self, entry: Entry) -> None:
        self.plan(entry)

    def apply(self, entry: Entry, user_id: Optional[str] = None) -> None:
        routes = self.plan(entry)
        is_receipt = entry.entry_type.is_receipt
        s = 1 if is_receipt else -1
        batch = self._batch(entry, user_id)

        for route in routes:
            line = route.line
            code = self.currencies.require_currency(line.currency_id).code
            amount = line.amount

            fx = calculate_fx_gain_loss(amount, line.fx_rate, line.fx_base_rate, is_payment=not is_receipt)
            line.fx_gain = fx.gain
            line.fx_loss = fx.loss
            line.posting_route = route.route
            line.opposite_account_id = route.opposite_account_id
            line.bank_account_id = route.bank_account_id
            if route.route == PostingRoute.PDC:
                line.is_pdc = True
                line.pdc_status = PDCStatus.PENDING
                line.pdc_account_id = route.pdc_account_id
                line.maturity_posting_date = route.maturity_posting_date
            else:
                line.is_pdc = False
                line.pdc_status = None
                line.pdc_account_id = None
                line.maturity_posting_date = None

            pdc_note = " (PDC)" if route.route == PostingRoute.PDC else ""
            remarks = f" - {line.remarks}" if line.remarks else ""
            desc = (f"{'Received' if is_receipt else 'Paid'} {amount} {code} "
                    f"via {line.cash_type.value}{pdc_note}{remarks}")

            batch.cash_leg(RegistryType.PARTY_CASH_BALANCE, entry.party_id, line.currency_id,
                           s * amount, desc, cash_line_id=line.line_id)
            if route.route == PostingRoute.PDC:
                batch.cash_leg(RegistryType.PDC_ENTRY, route.opposite_account_id, line.currency_id,
                               -s * amount,
                               f"{desc} - {'PDC Receipt' if is_receipt else 'PDC Issue'} (NOW)",
                               cash_line_id=line.line_id, mirror_cash=True)
            else:
                batch.cash_leg(RegistryType.BULLION_ENTRY, route.opposite_account_id, line.currency_id,
                               -s * amount, desc, cash_line_id=line.line_id, mirror_cash=True)

            self._memo_rows(batch, entry, line, is_receipt)

        batch.commit(self.registry, self.balances)

        for route in routes:
            if route.route == PostingRoute.PDC:
                self.pdc_manager.schedule(entry, route.line, user_id)

    def _memo_rows(self, batch: PostingBatch, entry: Entry, line: CashLine, is_receipt: bool) -> None:
        counterpart = "Receipt from" if is_receipt else "Payment to"
        rates = f"(Rate: {line.fx_rate} vs Base: {line.fx_base_rate})"
        common = {'account_id': entry.party_id, 'currency_id': line.currency_id, 'cash_line_id': line.line_id}

        if line.fx_gain > ZERO:
            batch.memo(RegistryType.FX_EXCHANGE, f"Foreign Exchange Gain - {counterpart} Party {rates}",
                       credit=line.fx_gain, cash_credit=line.fx_gain, **common)
        if line.fx_loss > ZERO:
            batch.memo(RegistryType.FX_EXCHANGE, f"Foreign Exchange Loss - {counterpart} Party {rates}",
                       debit=line.fx_loss, cash_debit=line.fx_loss, **common)
        if line.vat_amount > ZERO:
            vat_side = {'debit': line.vat_amount} if is_receipt else {'credit': line.vat_amount}
            batch.memo(RegistryType.VAT_AMOUNT, f"VAT {line.vat_percentage}%", **vat_side, **common)
        if line.cash_type == CashType.CARD and line.card_charge_amount > ZERO:
            batch.memo(RegistryType.CARD_CHARGE, f"Card charge {line.card_charge_percent}%",
                       debit=line.card_charge_amount, currency_id=line.currency_id,
                       cash_line_id=line.line_id)

    def reverse(self, entry: Entry, user_id: Optional[str] = None) -> None:
        """
        Undo each line according to how it was posted:

            direct               party and opposite account restored
            pdc, pending         cheque cancelled through the PDC lifecycle
            pdc, cleared         party and bank account restored
            pdc, bounced/cancel  nothing left to undo
        """
        s = 1 if entry.entry_type.is_receipt else -1
        replay = self._replay_batch(entry, user_id)

        for line in entry.cash:
            delta = s * line.amount
            if line.posting_route == PostingRoute.DIRECT:
                replay.cash_leg(RegistryType.PARTY_CASH_BALANCE, entry.party_id, line.currency_id, delta, "")
                replay.cash_leg(RegistryType.BULLION_ENTRY, line.opposite_account_id, line.currency_id, -delta, "")
            elif line.posting_route == PostingRoute.PDC:
                if line.pdc_status == PDCStatus.PENDING:
                    self.pdc_manager.void_line(entry, line, PDCStatus.CANCELLED, user_id)
                elif line.pdc_status == PDCStatus.CLEARED:
                    replay.cash_leg(RegistryType.PARTY_CASH_BALANCE, entry.party_id, line.currency_id, delta, "")
                    replay.cash_leg(RegistryType.BULLION_ENTRY, line.bank_account_id, line.currency_id, -delta, "")

        replay.apply_balances(self.balances, sign=-1)
        log_action(logger, "debug", "Cash voucher reversed", user_id=user_id,
                   action="cash_reversed", resource=entry.voucher_code,
                   extra={'lines': len(entry.cash)})
