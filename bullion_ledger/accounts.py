"""
Account Documents Module

Party, bank, cash, PDC and transfer accounts. Each account document embeds
its cash balances (one per currency) and its single gold balance, plus the
bank details that carry post-dated cheque configuration.
"""

from decimal import Decimal
from datetime import datetime, timezone
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional
from enum import Enum
import uuid

from .storage import StorageInterface, StorageRecord
from .audit import AuditTrail, AuditEventType
from .exceptions import InvalidEntryError, NotFoundError


class AccountKind(Enum):
    """Role an account plays in postings"""
    PARTY = "party"        # Trading counterparty
    BANK = "bank"          # Bank account, may carry PDC configuration
    CASH = "cash"          # Cash in hand
    PDC = "pdc"            # PDC issue / PDC receipt holding account
    TRANSFER = "transfer"  # Transfer target
    INCOME = "income"      # FX, VAT or card charge accounts


@dataclass
class CashBalance:
    """Balance of one currency on an account"""
    currency_id: str
    amount: Decimal
    last_updated: datetime

    def to_dict(self) -> Dict[str, Any]:
        return {
            'currency_id': self.currency_id,
            'amount': str(self.amount),
            'last_updated': self.last_updated.isoformat()
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'CashBalance':
        return cls(
            currency_id=data['currency_id'],
            amount=Decimal(data['amount']),
            last_updated=datetime.fromisoformat(data['last_updated'])
        )


@dataclass
class GoldBalance:
    """Aggregate pure gold held for or owed by an account, in grams"""
    total_grams: Decimal = Decimal('0')
    last_updated: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'total_grams': str(self.total_grams),
            'last_updated': self.last_updated.isoformat() if self.last_updated else None
        }

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> 'GoldBalance':
        if not data:
            return cls()
        return cls(
            total_grams=Decimal(data.get('total_grams', '0')),
            last_updated=datetime.fromisoformat(data['last_updated']) if data.get('last_updated') else None
        )


@dataclass
class BankDetail:
    """
    Bank detail record of a bank account.

    pdc_issue / maturity_days configure cheques we issue (payments);
    pdc_receipt / pdc_receipt_maturity_days configure cheques we receive.
    """
    id: str
    bank_name: str
    pdc_issue: Optional[str] = None
    pdc_receipt: Optional[str] = None
    maturity_days: Optional[int] = None
    pdc_receipt_maturity_days: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'bank_name': self.bank_name,
            'pdc_issue': self.pdc_issue,
            'pdc_receipt': self.pdc_receipt,
            'maturity_days': self.maturity_days,
            'pdc_receipt_maturity_days': self.pdc_receipt_maturity_days
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'BankDetail':
        return cls(**data)


@dataclass
class Account(StorageRecord):
    """Account document with embedded balances"""
    code: str
    name: str
    kind: AccountKind
    cash_balance: List[CashBalance] = field(default_factory=list)
    gold_balance: GoldBalance = field(default_factory=GoldBalance)
    bank_details: List[BankDetail] = field(default_factory=list)
    version: int = 0

    def cash_for(self, currency_id: str) -> Decimal:
        """Balance in one currency, zero when none has been posted yet"""
        for balance in self.cash_balance:
            if balance.currency_id == currency_id:
                return balance.amount
        return Decimal('0')

    def bank_detail_for(self, bank_detail_id: Optional[str] = None) -> Optional[BankDetail]:
        """The matching bank detail, falling back to the first one"""
        if not self.bank_details:
            return None
        if bank_detail_id:
            for detail in self.bank_details:
                if detail.id == bank_detail_id:
                    return detail
        return self.bank_details[0]

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'created_at': self.created_at.isoformat(),
            'updated_at': self.updated_at.isoformat(),
            'code': self.code,
            'name': self.name,
            'kind': self.kind.value,
            'cash_balance': [b.to_dict() for b in self.cash_balance],
            'gold_balance': self.gold_balance.to_dict(),
            'bank_details': [d.to_dict() for d in self.bank_details],
            'version': self.version
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Account':
        return cls(
            id=data['id'],
            created_at=datetime.fromisoformat(data['created_at']),
            updated_at=datetime.fromisoformat(data['updated_at']),
            code=data['code'],
            name=data['name'],
            kind=AccountKind(data['kind']),
            cash_balance=[CashBalance.from_dict(b) for b in data.get('cash_balance', [])],
            gold_balance=GoldBalance.from_dict(data.get('gold_balance')),
            bank_details=[BankDetail.from_dict(d) for d in data.get('bank_details', [])],
            version=data.get('version', 0)
        )


class AccountStore:
    """
    Minimal account master-data hooks used by the posting engine
    """

    def __init__(self, storage: StorageInterface, audit_trail: AuditTrail):
        self.storage = storage
        self.audit_trail = audit_trail
        self.table_name = "accounts"

    def create_account(
        self,
        code: str,
        name: str,
        kind: AccountKind,
        account_id: Optional[str] = None
    ) -> Account:
        """Create an account document with empty balances"""
        if not code:
            raise InvalidEntryError("Account code is required")

        now = datetime.now(timezone.utc)
        account = Account(
            id=account_id or str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            code=code,
            name=name,
            kind=kind
        )

        with self.storage.atomic():
            self.storage.insert(self.table_name, account.id, account.to_dict())
            self.audit_trail.log_event(
                event_type=AuditEventType.ACCOUNT_CREATED,
                entity_type="account",
                entity_id=account.id,
                metadata={'code': code, 'kind': kind.value}
            )
        return account

    def get_account(self, account_id: str) -> Optional[Account]:
        data = self.storage.load(self.table_name, account_id) if account_id else None
        if data:
            return Account.from_dict(data)
        return None

    def require_account(self, account_id: str) -> Account:
        account = self.get_account(account_id)
        if account is None:
            raise NotFoundError(f"Account {account_id} not found", {"account_id": account_id})
        return account

    def add_bank_detail(
        self,
        account_id: str,
        bank_name: str,
        pdc_issue: Optional[str] = None,
        pdc_receipt: Optional[str] = None,
        maturity_days: Optional[int] = None,
        pdc_receipt_maturity_days: Optional[int] = None,
        detail_id: Optional[str] = None
    ) -> BankDetail:
        """Attach a bank detail (PDC configuration) to a bank account"""
        for days in (maturity_days, pdc_receipt_maturity_days):
            if days is not None and days < 0:
                raise InvalidEntryError("Maturity days cannot be negative")

        detail = BankDetail(
            id=detail_id or str(uuid.uuid4()),
            bank_name=bank_name,
            pdc_issue=pdc_issue,
            pdc_receipt=pdc_receipt,
            maturity_days=maturity_days,
            pdc_receipt_maturity_days=pdc_receipt_maturity_days
        )

        with self.storage.atomic():
            for linked in (pdc_issue, pdc_receipt):
                if linked:
                    self.require_account(linked)
            account = self.require_account(account_id)
            account.bank_details.append(detail)
            account.updated_at = datetime.now(timezone.utc)
            account.version += 1
            self.storage.save(self.table_name, account.id, account.to_dict())
            self.audit_trail.log_event(
                event_type=AuditEventType.BANK_DETAIL_ADDED,
                entity_type="account",
                entity_id=account.id,
                metadata=detail.to_dict()
            )
        return detail
