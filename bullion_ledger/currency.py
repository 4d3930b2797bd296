"""
Currency Support Module

Currency master data, Decimal helpers and the foreign-exchange gain/loss
calculator. NEVER uses float for monetary values.
"""

from decimal import Decimal, ROUND_HALF_UP, InvalidOperation, getcontext
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, List, Optional
import uuid

from .storage import StorageInterface, StorageRecord
from .exceptions import InvalidEntryError, NotFoundError

# Set global decimal context for financial precision
getcontext().prec = 28

ZERO = Decimal('0')


def to_decimal(value: Any, field_name: str = "value") -> Decimal:
    """
    Convert an incoming value to Decimal without passing through float.

    Raises:
        InvalidEntryError: If the value is not a finite number
    """
    if isinstance(value, Decimal):
        result = value
    elif isinstance(value, float):
        result = Decimal(str(value))
    else:
        try:
            result = Decimal(str(value).strip())
        except (InvalidOperation, ValueError) as e:
            raise InvalidEntryError(f"{field_name} must be a number", {"field": field_name}) from e
    if not result.is_finite():
        raise InvalidEntryError(f"{field_name} must be a finite number", {"field": field_name})
    return result


def quantize(value: Decimal, places: int) -> Decimal:
    """Round half-up to a fixed number of decimal places"""
    return value.quantize(Decimal('0.1') ** places, rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class FxResult:
    """Outcome of comparing a transacted rate with the market rate"""
    gain: Decimal
    loss: Decimal

    @property
    def is_zero(self) -> bool:
        return self.gain == ZERO and self.loss == ZERO


def calculate_fx_gain_loss(
    amount: Decimal,
    fx_rate: Decimal,
    fx_base_rate: Decimal,
    is_payment: bool
) -> FxResult:
    """
    Compute FX gain or loss for one cash line.

    The given value (amount at the transacted rate) is compared with the
    market value (amount at the base rate). On a payment a positive
    difference is a loss; on a receipt it is a gain. At most one side is
    non-zero.

    Args:
        amount: Line amount in the line currency
        fx_rate: Rate used in the transaction
        fx_base_rate: Reference/market rate
        is_payment: True for *-payment entry types

    Returns:
        FxResult with gain and loss, both non-negative
    """
    given_value = amount * fx_rate
    market_value = amount * fx_base_rate
    diff = market_value - given_value

    if is_payment:
        gain = -diff if diff < ZERO else ZERO
        loss = diff if diff > ZERO else ZERO
    else:
        gain = diff if diff > ZERO else ZERO
        loss = -diff if diff < ZERO else ZERO

    return FxResult(gain=gain, loss=loss)


@dataclass
class CurrencyMaster(StorageRecord):
    """Currency master data record"""
    code: str
    name: str
    precision: int = 2


class CurrencyRegistry:
    """Currency lookup collaborator backed by storage"""

    def __init__(self, storage: StorageInterface):
        self.storage = storage
        self.table_name = "currencies"

    def add_currency(self, code: str, name: str, precision: int = 2,
                     currency_id: Optional[str] = None) -> CurrencyMaster:
        """Register a currency; codes are unique"""
        code = code.strip().upper()
        if not code:
            raise InvalidEntryError("Currency code is required")
        if self.find_by_code(code):
            raise InvalidEntryError(f"Currency {code} already exists", {"code": code})

        now = datetime.now(timezone.utc)
        currency = CurrencyMaster(
            id=currency_id or str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            code=code,
            name=name,
            precision=precision
        )
        self.storage.insert(self.table_name, currency.id, currency.to_dict())
        return currency

    def get_currency(self, currency_id: str) -> Optional[CurrencyMaster]:
        data = self.storage.load(self.table_name, currency_id)
        if data:
            return CurrencyMaster.from_dict(data)
        return None

    def require_currency(self, currency_id: str) -> CurrencyMaster:
        currency = self.get_currency(currency_id) if currency_id else None
        if currency is None:
            raise NotFoundError(f"Currency {currency_id} not found", {"currency_id": currency_id})
        return currency

    def find_by_code(self, code: str) -> Optional[CurrencyMaster]:
        matches = self.storage.find(self.table_name, {"code": code.strip().upper()})
        if matches:
            return CurrencyMaster.from_dict(matches[0])
        return None

    def list_currencies(self) -> List[CurrencyMaster]:
        return [CurrencyMaster.from_dict(data) for data in self.storage.load_all(self.table_name)]
