"""
Entry (voucher) model

A voucher is either a metal movement (stock items) or a cash movement (cash
lines), never both. Cash lines carry a stable line id so post-dated cheque
operations can address them independently of their position.
"""

from decimal import Decimal
from datetime import date, datetime, timezone
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Type, Union
from enum import Enum
import uuid

from .storage import StorageInterface, StorageRecord
from .currency import to_decimal, quantize, ZERO
from .dates import parse_date, format_date
from .exceptions import InvalidEntryError, NotFoundError


class EntryType(Enum):
    """The six recognized voucher types"""
    METAL_RECEIPT = "metal-receipt"
    METAL_PAYMENT = "metal-payment"
    CASH_RECEIPT = "cash-receipt"
    CASH_PAYMENT = "cash-payment"
    CURRENCY_RECEIPT = "currency-receipt"
    CURRENCY_PAYMENT = "currency-payment"

    @property
    def is_metal(self) -> bool:
        return self in (EntryType.METAL_RECEIPT, EntryType.METAL_PAYMENT)

    @property
    def is_currency(self) -> bool:
        return self in (EntryType.CURRENCY_RECEIPT, EntryType.CURRENCY_PAYMENT)

    @property
    def is_receipt(self) -> bool:
        return self.value.endswith("-receipt")

    @property
    def is_payment(self) -> bool:
        return self.value.endswith("-payment")


class EntryStatus(Enum):
    DRAFT = "draft"
    APPROVED = "approved"


class CashType(Enum):
    CASH = "cash"
    BANK = "bank"
    CHEQUE = "cheque"
    CARD = "card"
    TRANSFER = "transfer"


class PostingRoute(Enum):
    """How an approved cash line reached the ledger"""
    DIRECT = "direct"  # Party against bank, cash or transfer account
    PDC = "pdc"        # Party against a PDC holding account


class PDCStatus(Enum):
    PENDING = "pending"
    CLEARED = "cleared"
    BOUNCED = "bounced"
    CANCELLED = "cancelled"


def parse_enum(enum_cls: Type[Enum], value: Any, field_name: str):
    if isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(value)
    except ValueError as e:
        allowed = ", ".join(m.value for m in enum_cls)
        raise InvalidEntryError(
            f"Invalid {field_name} '{value}'; expected one of: {allowed}",
            {"field": field_name}
        ) from e


def parse_request_date(value: Any, field_name: str) -> Optional[date]:
    """parse_date for caller input; a malformed day is a validation error"""
    try:
        return parse_date(value)
    except (TypeError, ValueError) as e:
        raise InvalidEntryError(
            f"{field_name} must be an ISO date (YYYY-MM-DD), got '{value}'", {"field": field_name}
        ) from e


def _dec(value: Optional[str]) -> Optional[Decimal]:
    return Decimal(value) if value is not None else None


@dataclass
class StockItem:
    """Metal line of a voucher"""
    stock_id: str
    gross_weight: Decimal
    purity: Decimal
    pure_weight: Decimal
    pieces: int = 0
    remarks: Optional[str] = None

    @classmethod
    def from_request(cls, data: Dict[str, Any], weight_places: int = 4) -> 'StockItem':
        stock_id = data.get('stock_id')
        if not stock_id:
            raise InvalidEntryError("Stock item requires stock_id", {"field": "stock_id"})

        gross_weight = to_decimal(data.get('gross_weight'), 'gross_weight')
        if gross_weight <= ZERO:
            raise InvalidEntryError("gross_weight must be positive", {"field": "gross_weight"})

        purity = to_decimal(data.get('purity'), 'purity')
        if purity <= ZERO or purity > Decimal('1'):
            raise InvalidEntryError("purity must be in (0, 1]", {"field": "purity"})

        try:
            pieces = int(data.get('pieces') or 0)
        except (TypeError, ValueError) as e:
            raise InvalidEntryError("pieces must be a whole number", {"field": "pieces"}) from e
        if pieces < 0:
            raise InvalidEntryError("pieces cannot be negative", {"field": "pieces"})

        return cls(
            stock_id=stock_id,
            gross_weight=gross_weight,
            purity=purity,
            pure_weight=quantize(gross_weight * purity, weight_places),
            pieces=pieces,
            remarks=data.get('remarks')
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            'stock_id': self.stock_id,
            'gross_weight': str(self.gross_weight),
            'purity': str(self.purity),
            'pure_weight': str(self.pure_weight),
            'pieces': self.pieces,
            'remarks': self.remarks
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'StockItem':
        return cls(
            stock_id=data['stock_id'],
            gross_weight=Decimal(data['gross_weight']),
            purity=Decimal(data['purity']),
            pure_weight=Decimal(data['pure_weight']),
            pieces=data.get('pieces', 0),
            remarks=data.get('remarks')
        )


@dataclass
class CashLine:
    """Cash line of a voucher, including computed FX and PDC state"""
    line_id: str
    currency_id: str
    amount: Decimal
    cash_type: CashType
    account_id: Optional[str] = None
    cheque_bank_id: Optional[str] = None
    bank_detail_id: Optional[str] = None
    transfer_account_id: Optional[str] = None
    cheque_no: Optional[str] = None
    cheque_date: Optional[date] = None
    fx_rate: Decimal = Decimal('1')
    fx_base_rate: Decimal = Decimal('1')
    fx_gain: Decimal = ZERO
    fx_loss: Decimal = ZERO
    vat_amount: Decimal = ZERO
    vat_percentage: Decimal = ZERO
    card_charge_amount: Decimal = ZERO
    card_charge_percent: Decimal = ZERO
    is_pdc: bool = False
    pdc_status: Optional[PDCStatus] = None
    maturity_posting_date: Optional[date] = None
    bank_account_id: Optional[str] = None
    pdc_account_id: Optional[str] = None
    opposite_account_id: Optional[str] = None
    posting_route: Optional[PostingRoute] = None
    remarks: Optional[str] = None

    @property
    def is_cheque(self) -> bool:
        return self.cash_type == CashType.CHEQUE

    def clear_posting_state(self) -> None:
        """Forget how the line was posted; used when the voucher leaves approved"""
        self.fx_gain = ZERO
        self.fx_loss = ZERO
        self.is_pdc = False
        self.pdc_status = None
        self.maturity_posting_date = None
        self.bank_account_id = None
        self.pdc_account_id = None
        self.opposite_account_id = None
        self.posting_route = None

    @classmethod
    def from_request(cls, data: Dict[str, Any]) -> 'CashLine':
        currency_id = data.get('currency_id')
        if not currency_id:
            raise InvalidEntryError("Cash line requires currency_id", {"field": "currency_id"})

        amount = to_decimal(data.get('amount'), 'amount')
        if amount <= ZERO:
            raise InvalidEntryError("amount must be positive", {"field": "amount"})

        cash_type = parse_enum(CashType, data.get('cash_type'), 'cash_type')

        cheque_date = parse_request_date(data.get('cheque_date'), 'cheque_date')
        if cash_type == CashType.CHEQUE and cheque_date is None:
            raise InvalidEntryError("Cheque lines require cheque_date", {"field": "cheque_date"})

        rates = {}
        for name in ('fx_rate', 'fx_base_rate'):
            raw = data.get(name)
            rates[name] = to_decimal(raw, name) if raw not in (None, "") else Decimal('1')
            if rates[name] <= ZERO:
                raise InvalidEntryError(f"{name} must be positive", {"field": name})

        charges = {}
        for name in ('vat_amount', 'vat_percentage', 'card_charge_amount', 'card_charge_percent'):
            raw = data.get(name)
            charges[name] = to_decimal(raw, name) if raw not in (None, "") else ZERO
            if charges[name] < ZERO:
                raise InvalidEntryError(f"{name} cannot be negative", {"field": name})
        if cash_type != CashType.CARD and charges['card_charge_amount'] > ZERO:
            raise InvalidEntryError("Card charges apply to card lines only", {"field": "card_charge_amount"})

        if cash_type == CashType.TRANSFER and not data.get('transfer_account_id'):
            raise InvalidEntryError("Transfer lines require transfer_account_id",
                                    {"field": "transfer_account_id"})
        if cash_type != CashType.TRANSFER and not (data.get('cheque_bank_id') or data.get('account_id')):
            raise InvalidEntryError("Cash line requires account_id or cheque_bank_id",
                                    {"field": "account_id"})

        return cls(
            line_id=data.get('line_id') or str(uuid.uuid4()),
            currency_id=currency_id,
            amount=amount,
            cash_type=cash_type,
            account_id=data.get('account_id'),
            cheque_bank_id=data.get('cheque_bank_id'),
            bank_detail_id=data.get('bank_detail_id'),
            transfer_account_id=data.get('transfer_account_id'),
            cheque_no=data.get('cheque_no'),
            cheque_date=cheque_date,
            fx_rate=rates['fx_rate'],
            fx_base_rate=rates['fx_base_rate'],
            remarks=data.get('remarks'),
            **charges
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            'line_id': self.line_id,
            'currency_id': self.currency_id,
            'amount': str(self.amount),
            'cash_type': self.cash_type.value,
            'account_id': self.account_id,
            'cheque_bank_id': self.cheque_bank_id,
            'bank_detail_id': self.bank_detail_id,
            'transfer_account_id': self.transfer_account_id,
            'cheque_no': self.cheque_no,
            'cheque_date': format_date(self.cheque_date),
            'fx_rate': str(self.fx_rate),
            'fx_base_rate': str(self.fx_base_rate),
            'fx_gain': str(self.fx_gain),
            'fx_loss': str(self.fx_loss),
            'vat_amount': str(self.vat_amount),
            'vat_percentage': str(self.vat_percentage),
            'card_charge_amount': str(self.card_charge_amount),
            'card_charge_percent': str(self.card_charge_percent),
            'is_pdc': self.is_pdc,
            'pdc_status': self.pdc_status.value if self.pdc_status else None,
            'maturity_posting_date': format_date(self.maturity_posting_date),
            'bank_account_id': self.bank_account_id,
            'pdc_account_id': self.pdc_account_id,
            'opposite_account_id': self.opposite_account_id,
            'posting_route': self.posting_route.value if self.posting_route else None,
            'remarks': self.remarks
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'CashLine':
        return cls(
            line_id=data['line_id'],
            currency_id=data['currency_id'],
            amount=Decimal(data['amount']),
            cash_type=CashType(data['cash_type']),
            account_id=data.get('account_id'),
            cheque_bank_id=data.get('cheque_bank_id'),
            bank_detail_id=data.get('bank_detail_id'),
            transfer_account_id=data.get('transfer_account_id'),
            cheque_no=data.get('cheque_no'),
            cheque_date=parse_date(data.get('cheque_date')),
            fx_rate=Decimal(data.get('fx_rate', '1')),
            fx_base_rate=Decimal(data.get('fx_base_rate', '1')),
            fx_gain=Decimal(data.get('fx_gain', '0')),
            fx_loss=Decimal(data.get('fx_loss', '0')),
            vat_amount=Decimal(data.get('vat_amount', '0')),
            vat_percentage=Decimal(data.get('vat_percentage', '0')),
            card_charge_amount=Decimal(data.get('card_charge_amount', '0')),
            card_charge_percent=Decimal(data.get('card_charge_percent', '0')),
            is_pdc=data.get('is_pdc', False),
            pdc_status=PDCStatus(data['pdc_status']) if data.get('pdc_status') else None,
            maturity_posting_date=parse_date(data.get('maturity_posting_date')),
            bank_account_id=data.get('bank_account_id'),
            pdc_account_id=data.get('pdc_account_id'),
            opposite_account_id=data.get('opposite_account_id'),
            posting_route=PostingRoute(data['posting_route']) if data.get('posting_route') else None,
            remarks=data.get('remarks')
        )


@dataclass
class Entry(StorageRecord):
    """
    Voucher document. Ledger and balance effects exist only while the
    status is approved.
    """
    entry_type: EntryType
    status: EntryStatus
    party_id: str
    voucher_code: str
    voucher_date: date
    stock_items: List[StockItem] = field(default_factory=list)
    cash: List[CashLine] = field(default_factory=list)
    entered_by: Optional[str] = None
    remarks: Optional[str] = None
    version: int = 0

    @property
    def is_approved(self) -> bool:
        return self.status == EntryStatus.APPROVED

    def find_cash_line(self, line_ref: Union[str, int]) -> CashLine:
        """
        Locate a cash line by stable id or, for older callers, by position.

        Raises:
            NotFoundError: If no line matches
        """
        if isinstance(line_ref, int) or (isinstance(line_ref, str) and line_ref.isdigit()):
            index = int(line_ref)
            if 0 <= index < len(self.cash):
                return self.cash[index]
        else:
            for line in self.cash:
                if line.line_id == line_ref:
                    return line
        raise NotFoundError(
            f"Cash line {line_ref} not found on entry {self.id}",
            {"entry_id": self.id, "line_ref": line_ref}
        )

    def cash_index(self, line_id: str) -> int:
        for index, line in enumerate(self.cash):
            if line.line_id == line_id:
                return index
        return -1

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'created_at': self.created_at.isoformat(),
            'updated_at': self.updated_at.isoformat(),
            'entry_type': self.entry_type.value,
            'status': self.status.value,
            'party_id': self.party_id,
            'voucher_code': self.voucher_code,
            'voucher_date': self.voucher_date.isoformat(),
            'stock_items': [item.to_dict() for item in self.stock_items],
            'cash': [line.to_dict() for line in self.cash],
            'entered_by': self.entered_by,
            'remarks': self.remarks,
            'version': self.version
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Entry':
        return cls(
            id=data['id'],
            created_at=datetime.fromisoformat(data['created_at']),
            updated_at=datetime.fromisoformat(data['updated_at']),
            entry_type=EntryType(data['entry_type']),
            status=EntryStatus(data['status']),
            party_id=data['party_id'],
            voucher_code=data['voucher_code'],
            voucher_date=parse_date(data['voucher_date']),
            stock_items=[StockItem.from_dict(item) for item in data.get('stock_items', [])],
            cash=[CashLine.from_dict(line) for line in data.get('cash', [])],
            entered_by=data.get('entered_by'),
            remarks=data.get('remarks'),
            version=data.get('version', 0)
        )


def parse_lines(entry_type: EntryType, data: Dict[str, Any], weight_places: int = 4):
    """
    Validate the stock/cash shape for a voucher type and parse the lines.

    Exactly one of stock_items or cash is populated: stock items for metal
    types, cash lines for cash and currency types.
    """
    raw_stock = data.get('stock_items') or []
    raw_cash = data.get('cash') or []

    if raw_stock and raw_cash:
        raise InvalidEntryError("An entry carries stock_items or cash, not both")

    if entry_type.is_metal:
        if not raw_stock:
            raise InvalidEntryError(f"{entry_type.value} requires stock_items", {"field": "stock_items"})
        return [StockItem.from_request(item, weight_places) for item in raw_stock], []

    if not raw_cash:
        raise InvalidEntryError(f"{entry_type.value} requires cash lines", {"field": "cash"})

    lines = [CashLine.from_request(line) for line in raw_cash]
    seen = set()
    for line in lines:
        if line.line_id in seen:
            raise InvalidEntryError(f"Duplicate cash line id {line.line_id}", {"field": "line_id"})
        seen.add(line.line_id)
    return [], lines


class EntryRepository:
    """Entry persistence with voucher code uniqueness"""

    def __init__(self, storage: StorageInterface):
        self.storage = storage
        self.table_name = "entries"

    def save(self, entry: Entry) -> Entry:
        for other in self.storage.find(self.table_name, {'voucher_code': entry.voucher_code}):
            if other['id'] != entry.id:
                raise InvalidEntryError(
                    f"Voucher code {entry.voucher_code} already exists",
                    {"voucher_code": entry.voucher_code}
                )
        entry.updated_at = datetime.now(timezone.utc)
        self.storage.save(self.table_name, entry.id, entry.to_dict())
        return entry

    def get(self, entry_id: str) -> Optional[Entry]:
        data = self.storage.load(self.table_name, entry_id)
        if data:
            return Entry.from_dict(data)
        return None

    def require(self, entry_id: str) -> Entry:
        entry = self.get(entry_id)
        if entry is None:
            raise NotFoundError(f"Entry {entry_id} not found", {"entry_id": entry_id})
        return entry

    def find_by_voucher(self, voucher_code: str) -> Optional[Entry]:
        matches = self.storage.find(self.table_name, {'voucher_code': voucher_code})
        if matches:
            return Entry.from_dict(matches[0])
        return None

    def delete(self, entry_id: str) -> bool:
        return self.storage.delete(self.table_name, entry_id)
